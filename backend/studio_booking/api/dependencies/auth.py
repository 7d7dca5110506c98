# backend/studio_booking/api/dependencies/auth.py
"""
Access guards.

Customer and staff authentication live in front of this service; the only
guard enforced here protects the cron-triggered maintenance endpoint.
"""

import hmac
import logging
from typing import Optional

from fastapi import Header, HTTPException, status

from ...core.config import settings

logger = logging.getLogger(__name__)


def require_cron_secret(x_cron_secret: Optional[str] = Header(default=None)) -> None:
    expected = settings.cron_secret or ""
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"message": "Maintenance trigger is not configured", "code": "CRON_DISABLED"},
        )
    if not x_cron_secret or not hmac.compare_digest(x_cron_secret, expected):
        logger.warning("Rejected maintenance trigger with a bad or missing secret")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": "Invalid cron secret", "code": "INVALID_CRON_SECRET"},
        )
