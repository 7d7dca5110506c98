# backend/studio_booking/tasks/expiry_tasks.py
"""
Periodic expiry sweeps.

Each task opens its own session and is idempotent: running it twice, or
concurrently with a lazy expiry on read, changes nothing the second time.
"""

from contextlib import contextmanager
from typing import Iterator

from celery.utils.log import get_task_logger
from sqlalchemy.orm import Session

from ..database import SessionLocal
from ..services.booking_service import BookingService
from ..services.giftcard_hold_service import GiftcardHoldService
from .celery_app import typed_task

logger = get_task_logger(__name__)


@contextmanager
def _session_scope() -> Iterator[Session]:
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@typed_task(name="studio_booking.tasks.expiry_tasks.expire_stale_bookings", max_retries=0)
def expire_stale_bookings() -> int:
    """Expire lapsed pre-reservations and release their holds."""
    with _session_scope() as session:
        expired = BookingService(session).expire_stale_bookings()
    if expired:
        logger.info("Expired %s pre-reservations", expired)
    return expired


@typed_task(name="studio_booking.tasks.expiry_tasks.expire_stale_holds", max_retries=0)
def expire_stale_holds() -> int:
    with _session_scope() as session:
        expired = GiftcardHoldService(session).expire_stale_holds()
    if expired:
        logger.info("Expired %s gift card holds", expired)
    return expired


@typed_task(name="studio_booking.tasks.expiry_tasks.notify_expiring_holds", max_retries=0)
def notify_expiring_holds() -> int:
    with _session_scope() as session:
        return GiftcardHoldService(session).notify_expiring_holds()
