# backend/studio_booking/routes/v1/maintenance.py
"""
Maintenance trigger - API v1

``POST /expire`` runs the same sweeps as the Celery beat schedule, for
deployments that drive them from an external cron instead. Guarded by the
``X-Cron-Secret`` header.
"""

import asyncio
import logging
from typing import Dict

from fastapi import APIRouter, Depends

from ...api.dependencies import get_booking_service, get_giftcard_hold_service, require_cron_secret
from ...services.booking_service import BookingService
from ...services.giftcard_hold_service import GiftcardHoldService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["maintenance-v1"], dependencies=[Depends(require_cron_secret)])


@router.post("/expire")
async def run_expiry_sweeps(
    booking_service: BookingService = Depends(get_booking_service),
    hold_service: GiftcardHoldService = Depends(get_giftcard_hold_service),
) -> Dict[str, int]:
    expired_bookings = await asyncio.to_thread(booking_service.expire_stale_bookings)
    expired_holds = await asyncio.to_thread(hold_service.expire_stale_holds)
    notified_holds = await asyncio.to_thread(hold_service.notify_expiring_holds)
    logger.info(
        "Maintenance sweep finished",
        extra={
            "expired_bookings": expired_bookings,
            "expired_holds": expired_holds,
            "notified_holds": notified_holds,
        },
    )
    return {
        "expired_bookings": expired_bookings,
        "expired_holds": expired_holds,
        "notified_holds": notified_holds,
    }
