# backend/studio_booking/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

Every request gets services bound to its own session; services hold no
cross-request state.
"""

from fastapi import Depends
from sqlalchemy.orm import Session

from ...services.availability_service import AvailabilityService
from ...services.booking_service import BookingService
from ...services.giftcard_hold_service import GiftcardHoldService
from ...services.schedule_service import ScheduleService
from .database import get_db


def get_availability_service(db: Session = Depends(get_db)) -> AvailabilityService:
    return AvailabilityService(db)


def get_giftcard_hold_service(db: Session = Depends(get_db)) -> GiftcardHoldService:
    return GiftcardHoldService(db)


def get_booking_service(
    db: Session = Depends(get_db),
    availability_service: AvailabilityService = Depends(get_availability_service),
    hold_service: GiftcardHoldService = Depends(get_giftcard_hold_service),
) -> BookingService:
    """BookingService sharing the request session with its collaborators."""
    return BookingService(
        db,
        availability_service=availability_service,
        hold_service=hold_service,
        publisher=hold_service.publisher,
    )


def get_schedule_service(db: Session = Depends(get_db)) -> ScheduleService:
    return ScheduleService(db)
