# backend/studio_booking/routes/v1/health.py
"""
Health check and Prometheus scrape endpoints.
"""

from datetime import datetime, timezone
import logging
from typing import Dict

from fastapi import APIRouter, Response

from ...core.config import settings
from ...monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> Dict[str, str]:
    return {
        "status": "healthy",
        "environment": settings.environment,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    }


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(
        content=prometheus_metrics.get_metrics(),
        media_type=prometheus_metrics.get_content_type(),
    )
