"""Booking and gift card hold domain events."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class BookingConfirmed:
    """Fired after a booking is paid in full."""

    booking_id: str
    booking_code: str
    product_id: str
    confirmed_at: datetime
    customer_email: Optional[str] = None
    slots: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingCancelled:
    booking_id: str
    booking_code: str
    reason: str
    cancelled_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingExpired:
    """Fired when an unpaid pre-reservation lapses and its capacity is released."""

    booking_id: str
    booking_code: str
    expired_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingRescheduled:
    booking_id: str
    booking_code: str
    from_slot: Optional[Dict[str, Any]]
    to_slot: Dict[str, Any]
    rescheduled_at: datetime
    customer_email: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class HoldExpiring:
    """Fired once per hold shortly before it lapses."""

    hold_id: str
    giftcard_id: str
    amount_cents: int
    expires_at: datetime
    booking_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
