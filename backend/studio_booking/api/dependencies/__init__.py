# backend/studio_booking/api/dependencies/__init__.py
"""
Central export point for all dependencies.
"""

from .auth import require_cron_secret
from .database import get_db
from .services import (
    get_availability_service,
    get_booking_service,
    get_giftcard_hold_service,
    get_schedule_service,
)

__all__ = [
    "get_db",
    "require_cron_secret",
    "get_availability_service",
    "get_booking_service",
    "get_giftcard_hold_service",
    "get_schedule_service",
]
