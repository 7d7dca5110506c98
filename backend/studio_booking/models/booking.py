# backend/studio_booking/models/booking.py
"""
Booking ledger models.

A Booking owns its ordered ``slots`` list (``{date, time, instructorId}``
dicts). ``BookingSlot`` rows mirror that list so capacity queries can filter
by date without parsing JSON; they are written and cleared together with the
booking and never edited on their own.
"""

from datetime import datetime
import logging
from typing import Any, Dict, List

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import BookingStatus
from ..core.timezone_utils import ensure_utc
from ..database import Base

logger = logging.getLogger(__name__)


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    booking_code = Column(String(40), nullable=False, unique=True, index=True)

    product_id = Column(String(26), ForeignKey("products.id"), nullable=False)
    product_type = Column(String(40), nullable=False)
    technique = Column(String(30), nullable=True)
    booking_mode = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default=BookingStatus.PRE_RESERVED.value, index=True)

    slots = Column(JSON, nullable=False, default=list)
    user_info = Column(JSON, nullable=False, default=dict)
    participants = Column(Integer, nullable=False, default=1)
    client_note = Column(Text, nullable=True)

    price_cents = Column(Integer, nullable=False)
    pending_balance_cents = Column(Integer, nullable=False)
    is_paid = Column(Boolean, nullable=False, default=False)

    accepted_no_refund = Column(Boolean, nullable=False, default=False)
    requires_no_refund_ack = Column(Boolean, nullable=False, default=False)

    giftcard_id = Column(String(26), ForeignKey("giftcards.id"), nullable=True)
    giftcard_redeemed_cents = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True, index=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(String(500), nullable=True)

    slot_rows = relationship(
        "BookingSlot",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingSlot.position",
    )
    payments = relationship(
        "BookingPayment",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingPayment.received_at",
    )
    audit_events = relationship(
        "BookingAuditEvent",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingAuditEvent.created_at",
    )
    holds = relationship("GiftcardHold", back_populates="booking")

    __table_args__ = (
        CheckConstraint("price_cents >= 0", name="ck_booking_price_non_negative"),
        CheckConstraint("pending_balance_cents >= 0", name="ck_booking_pending_non_negative"),
        CheckConstraint("participants >= 1", name="ck_booking_participants_positive"),
        Index("ix_bookings_status_expires", "status", "expires_at"),
    )

    @property
    def booking_status(self) -> BookingStatus:
        return BookingStatus(self.status)

    @property
    def active_payments(self) -> List["BookingPayment"]:
        return [p for p in self.payments if p.deleted_at is None]

    @property
    def total_paid_cents(self) -> int:
        return sum(p.amount_cents for p in self.active_payments)

    def is_stale(self, now: datetime) -> bool:
        """Unpaid pre-reservation whose expiry has elapsed."""
        if self.status != BookingStatus.PRE_RESERVED.value or self.is_paid:
            return False
        expires_at = ensure_utc(self.expires_at)
        return expires_at is not None and expires_at <= now

    def holds_capacity(self, now: datetime) -> bool:
        if self.status == BookingStatus.PAID.value:
            return True
        if self.status != BookingStatus.PRE_RESERVED.value:
            return False
        expires_at = ensure_utc(self.expires_at)
        # Pre-reservations with a recorded payment have no expiry
        return expires_at is None or expires_at > now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "booking_code": self.booking_code,
            "product_id": self.product_id,
            "status": self.status,
            "slots": list(self.slots or []),
            "is_paid": self.is_paid,
        }

    def __repr__(self) -> str:
        return f"<Booking {self.booking_code} status={self.status} paid={self.is_paid}>"


class BookingSlot(Base):
    """Queryable mirror of one entry in ``Booking.slots``."""

    __tablename__ = "booking_slots"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(String(26), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False)
    slot_date = Column(Date, nullable=False)
    slot_time = Column(String(5), nullable=False)
    instructor_id = Column(String(26), nullable=True)
    technique = Column(String(30), nullable=True)

    booking = relationship("Booking", back_populates="slot_rows")

    __table_args__ = (Index("ix_booking_slots_date_time", "slot_date", "slot_time"),)


class BookingPayment(Base):
    """
    One payment entry on a booking.

    Entries are append-only; edits and deletions go through the booking
    service which records a ``BookingAuditEvent``. Deletion is soft.
    """

    __tablename__ = "booking_payments"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(String(26), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    amount_cents = Column(Integer, nullable=False)
    method = Column(String(20), nullable=False)
    received_at = Column(DateTime(timezone=True), nullable=False)

    giftcard_id = Column(String(26), ForeignKey("giftcards.id"), nullable=True)
    giftcard_amount_cents = Column(Integer, nullable=True)
    hold_id = Column(String(26), ForeignKey("giftcard_holds.id"), nullable=True)
    note = Column(String(500), nullable=True)

    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deletion_reason = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    booking = relationship("Booking", back_populates="payments")

    __table_args__ = (CheckConstraint("amount_cents > 0", name="ck_payment_amount_positive"),)

    def __repr__(self) -> str:
        return f"<BookingPayment {self.id} booking={self.booking_id} amount={self.amount_cents}>"


class BookingAuditEvent(Base):
    """Who changed what on a booking, and why."""

    __tablename__ = "booking_audit_events"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(String(26), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(String(40), nullable=False)
    reason = Column(String(500), nullable=True)
    actor = Column(String(100), nullable=True)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    booking = relationship("Booking", back_populates="audit_events")

    def __repr__(self) -> str:
        return f"<BookingAuditEvent {self.action} booking={self.booking_id}>"
