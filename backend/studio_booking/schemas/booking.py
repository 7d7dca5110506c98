"""
Booking request and response schemas.

Money is integer cents throughout. Slot lists use the persisted
``{date, time, instructorId}`` shape.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ConfigDict, EmailStr, Field, field_validator

from ..core.enums import BookingMode, BookingStatus, PaymentMethod
from ..core.timezone_utils import ensure_utc
from ..models.booking import Booking, BookingAuditEvent, BookingPayment
from .base import StandardizedModel, StrictRequestModel
from .slots import EnrichedSlotResponse, SlotSelection


class CustomerInfo(StrictRequestModel):
    """Contact details captured at the customer step. Extra keys are kept as-is."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    phone: Optional[str] = Field(default=None, max_length=40)

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value


class ValidateSelectionRequest(StrictRequestModel):
    product_id: str
    mode: BookingMode = BookingMode.FLEXIBLE
    slots: List[SlotSelection] = Field(default_factory=list)
    participants: Optional[int] = Field(default=None, ge=1, le=50)


class ValidateSelectionResponse(StandardizedModel):
    ok: bool
    reason: Optional[str] = None
    kind: Optional[str] = None
    slots: List[EnrichedSlotResponse] = Field(default_factory=list)
    unavailable: List[Dict[str, Any]] = Field(default_factory=list)
    requires_no_refund_ack: bool = False


class BookingCreate(StrictRequestModel):
    product_id: str
    mode: BookingMode = BookingMode.FLEXIBLE
    slots: List[SlotSelection] = Field(default_factory=list)
    customer_info: CustomerInfo
    participants: Optional[int] = Field(default=None, ge=1, le=50)
    giftcard_hold_id: Optional[str] = None
    accepted_no_refund: bool = False
    booking_code: Optional[str] = Field(default=None, max_length=40)
    client_note: Optional[str] = Field(default=None, max_length=2000)


class BookingCreateResponse(StandardizedModel):
    ok: bool = True
    created: bool
    booking_id: str
    booking_code: str
    status: BookingStatus
    pending_balance_cents: int
    requires_no_refund_ack: bool
    expires_at: Optional[datetime] = None


class PaymentCreate(StrictRequestModel):
    amount_cents: int = Field(..., gt=0)
    method: PaymentMethod
    received_at: Optional[datetime] = None
    note: Optional[str] = Field(default=None, max_length=500)


class PaymentUpdate(StrictRequestModel):
    amount_cents: Optional[int] = Field(default=None, gt=0)
    method: Optional[PaymentMethod] = None
    received_at: Optional[datetime] = None
    note: Optional[str] = Field(default=None, max_length=500)
    reason: Optional[str] = Field(default=None, max_length=500)


class RescheduleRequest(StrictRequestModel):
    """Move one class; omit ``from_slot`` to schedule a class not yet booked."""

    from_slot: Optional[SlotSelection] = None
    to_slot: SlotSelection


class ReasonRequest(StrictRequestModel):
    """Body for cancellations and payment deletions."""

    reason: str = Field(..., min_length=1, max_length=500)

    @field_validator("reason")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Reason cannot be blank")
        return value.strip()


class PaymentResponse(StandardizedModel):
    id: str
    amount_cents: int
    method: str
    received_at: datetime
    giftcard_id: Optional[str] = None
    hold_id: Optional[str] = None
    note: Optional[str] = None
    deleted_at: Optional[datetime] = None
    deletion_reason: Optional[str] = None

    @classmethod
    def from_payment(cls, payment: BookingPayment) -> "PaymentResponse":
        return cls(
            id=payment.id,
            amount_cents=payment.amount_cents,
            method=payment.method,
            received_at=ensure_utc(payment.received_at),
            giftcard_id=payment.giftcard_id,
            hold_id=payment.hold_id,
            note=payment.note,
            deleted_at=ensure_utc(payment.deleted_at),
            deletion_reason=payment.deletion_reason,
        )


class AuditEventResponse(StandardizedModel):
    action: str
    reason: Optional[str] = None
    actor: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    created_at: datetime

    @classmethod
    def from_event(cls, event: BookingAuditEvent) -> "AuditEventResponse":
        return cls(
            action=event.action,
            reason=event.reason,
            actor=event.actor,
            payload=event.payload,
            created_at=ensure_utc(event.created_at),
        )


class BookingResponse(StandardizedModel):
    id: str
    booking_code: str
    product_id: str
    product_type: str
    technique: Optional[str] = None
    booking_mode: BookingMode
    status: BookingStatus
    slots: List[Dict[str, Any]]
    user_info: Dict[str, Any]
    participants: int
    client_note: Optional[str] = None
    price_cents: int
    pending_balance_cents: int
    is_paid: bool
    accepted_no_refund: bool
    requires_no_refund_ack: bool
    giftcard_id: Optional[str] = None
    giftcard_redeemed_cents: int = 0
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    payments: List[PaymentResponse] = Field(default_factory=list)
    audit_events: List[AuditEventResponse] = Field(default_factory=list)

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        return cls(
            id=booking.id,
            booking_code=booking.booking_code,
            product_id=booking.product_id,
            product_type=booking.product_type,
            technique=booking.technique,
            booking_mode=booking.booking_mode,
            status=booking.status,
            slots=list(booking.slots or []),
            user_info=dict(booking.user_info or {}),
            participants=booking.participants,
            client_note=booking.client_note,
            price_cents=booking.price_cents,
            pending_balance_cents=booking.pending_balance_cents,
            is_paid=booking.is_paid,
            accepted_no_refund=booking.accepted_no_refund,
            requires_no_refund_ack=booking.requires_no_refund_ack,
            giftcard_id=booking.giftcard_id,
            giftcard_redeemed_cents=booking.giftcard_redeemed_cents or 0,
            created_at=ensure_utc(booking.created_at),
            expires_at=ensure_utc(booking.expires_at),
            confirmed_at=ensure_utc(booking.confirmed_at),
            expired_at=ensure_utc(booking.expired_at),
            cancelled_at=ensure_utc(booking.cancelled_at),
            cancellation_reason=booking.cancellation_reason,
            payments=[PaymentResponse.from_payment(p) for p in booking.payments],
            audit_events=[AuditEventResponse.from_event(e) for e in booking.audit_events],
        )
