# backend/studio_booking/repositories/booking_repository.py
"""
Booking Repository

Ledger queries used by capacity aggregation, expiry sweeps and the payment
reconciliation flow. ``BookingSlot`` rows are kept in step with
``Booking.slots`` here and nowhere else.
"""

from __future__ import annotations

from datetime import date, datetime
import logging
from typing import Any, Dict, Iterable, List, Optional, cast

from sqlalchemy.orm import Session, selectinload

from ..core.enums import BookingStatus
from ..core.exceptions import RepositoryException
from ..domain.slots import parse_slot_date
from ..models.booking import Booking, BookingAuditEvent, BookingPayment, BookingSlot
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

CAPACITY_HOLDING_STATUSES = (BookingStatus.PRE_RESERVED.value, BookingStatus.PAID.value)


class BookingRepository(BaseRepository[Booking]):
    def __init__(self, db: Session):
        super().__init__(db, Booking)

    def get_with_details(self, booking_id: str) -> Optional[Booking]:
        try:
            return cast(
                Optional[Booking],
                self.db.query(Booking)
                .options(selectinload(Booking.payments), selectinload(Booking.holds))
                .filter(Booking.id == booking_id)
                .first(),
            )
        except Exception as exc:
            self.logger.error("Failed to load booking %s: %s", booking_id, str(exc))
            raise RepositoryException("Failed to load booking") from exc

    def get_by_code(self, booking_code: str) -> Optional[Booking]:
        try:
            return cast(
                Optional[Booking],
                self.db.query(Booking).filter(Booking.booking_code == booking_code).first(),
            )
        except Exception as exc:
            self.logger.error("Failed to load booking by code %s: %s", booking_code, str(exc))
            raise RepositoryException("Failed to load booking by code") from exc

    def code_exists(self, booking_code: str) -> bool:
        return self.exists(booking_code=booking_code)

    def get_capacity_holding_bookings(
        self,
        *,
        start_date: date,
        end_date: date,
        technique: Optional[str] = None,
    ) -> List[Booking]:
        """
        Bookings that may consume capacity on a slot in ``[start_date, end_date)``.

        Returns paid and pre-reserved bookings; whether a pre-reservation is
        still live is decided by the caller against its own ``now``.
        """
        try:
            slot_filter = self.db.query(BookingSlot.booking_id).filter(
                BookingSlot.slot_date >= start_date,
                BookingSlot.slot_date < end_date,
            )
            if technique:
                slot_filter = slot_filter.filter(
                    (BookingSlot.technique == technique) | BookingSlot.technique.is_(None)
                )
            query = self.db.query(Booking).filter(
                Booking.status.in_(CAPACITY_HOLDING_STATUSES),
                Booking.id.in_(slot_filter),
            )
            return cast(List[Booking], query.all())
        except Exception as exc:
            self.logger.error("Failed to load ledger for capacity: %s", str(exc))
            raise RepositoryException("Failed to load booking ledger") from exc

    def get_stale_pre_reservations(self, *, now: datetime, limit: int) -> List[Booking]:
        try:
            query = (
                self.db.query(Booking)
                .filter(
                    Booking.status == BookingStatus.PRE_RESERVED.value,
                    Booking.is_paid.is_(False),
                    Booking.expires_at.is_not(None),
                    Booking.expires_at <= now,
                )
                .order_by(Booking.expires_at.asc(), Booking.id.asc())
                .limit(limit)
            )
            return cast(List[Booking], query.all())
        except Exception as exc:
            self.logger.error("Failed to load stale pre-reservations: %s", str(exc))
            raise RepositoryException("Failed to load stale pre-reservations") from exc

    def find_live_duplicate(
        self,
        *,
        product_id: str,
        email: str,
        persisted_slots: List[Dict[str, Any]],
    ) -> Optional[Booking]:
        """Same customer, same product, same slots, still holding capacity."""
        if not email:
            return None
        try:
            candidates = (
                self.db.query(Booking)
                .filter(
                    Booking.product_id == product_id,
                    Booking.status.in_(CAPACITY_HOLDING_STATUSES),
                )
                .order_by(Booking.created_at.desc())
                .all()
            )
        except Exception as exc:
            self.logger.error("Failed to look up duplicate booking: %s", str(exc))
            raise RepositoryException("Failed to look up duplicate booking") from exc

        wanted = _slot_signature(persisted_slots)
        normalized_email = email.strip().lower()
        for booking in candidates:
            booking_email = str((booking.user_info or {}).get("email", "")).strip().lower()
            if booking_email == normalized_email and _slot_signature(booking.slots) == wanted:
                return cast(Booking, booking)
        return None

    def replace_slots(self, booking: Booking, persisted_slots: List[Dict[str, Any]], technique: Optional[str]) -> None:
        """Write ``Booking.slots`` and its queryable mirror in one step."""
        try:
            booking.slots = list(persisted_slots)
            booking.slot_rows = [
                BookingSlot(
                    position=index,
                    slot_date=parse_slot_date(raw["date"]),
                    slot_time=raw["time"],
                    instructor_id=raw.get("instructorId"),
                    technique=technique,
                )
                for index, raw in enumerate(persisted_slots)
            ]
            self.db.flush()
        except RepositoryException:
            raise
        except Exception as exc:
            self.logger.error("Failed to write booking slots: %s", str(exc))
            raise RepositoryException("Failed to write booking slots") from exc

    def add_payment(self, booking: Booking, **fields: Any) -> BookingPayment:
        try:
            payment = BookingPayment(booking_id=booking.id, **fields)
            booking.payments.append(payment)
            self.db.flush()
            return payment
        except Exception as exc:
            self.logger.error("Failed to add payment to booking %s: %s", booking.id, str(exc))
            raise RepositoryException("Failed to add payment") from exc

    def get_payment(self, booking_id: str, payment_id: str) -> Optional[BookingPayment]:
        try:
            return cast(
                Optional[BookingPayment],
                self.db.query(BookingPayment)
                .filter(BookingPayment.id == payment_id, BookingPayment.booking_id == booking_id)
                .first(),
            )
        except Exception as exc:
            self.logger.error("Failed to load payment %s: %s", payment_id, str(exc))
            raise RepositoryException("Failed to load payment") from exc

    def add_audit_event(
        self,
        booking: Booking,
        *,
        action: str,
        created_at: datetime,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> BookingAuditEvent:
        try:
            event = BookingAuditEvent(
                booking_id=booking.id,
                action=action,
                reason=reason,
                actor=actor,
                payload=payload,
                created_at=created_at,
            )
            booking.audit_events.append(event)
            self.db.flush()
            return event
        except Exception as exc:
            self.logger.error("Failed to write audit event for %s: %s", booking.id, str(exc))
            raise RepositoryException("Failed to write audit event") from exc


def _slot_signature(raw_slots: Optional[Iterable[Dict[str, Any]]]) -> List[tuple]:
    return sorted((str(s.get("date")), str(s.get("time"))) for s in raw_slots or [])
