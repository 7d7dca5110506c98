# backend/studio_booking/domain/context.py
"""
Explicit state carried between the booking wizard steps.

Each step receives the context produced by the previous one and returns a new
one; nothing is stashed on shared module state. A client-supplied booking code
is only ever a lookup key and is re-validated against the ledger.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..core.enums import BookingMode
from .slots import SlotRef


@dataclass(frozen=True)
class BookingRequestContext:
    product_id: str
    mode: BookingMode
    chosen_slots: List[SlotRef] = field(default_factory=list)
    customer_info: Dict[str, Any] = field(default_factory=dict)
    participants: Optional[int] = None
    giftcard_hold_id: Optional[str] = None
    accepted_no_refund: bool = False
    booking_code: Optional[str] = None
    client_note: Optional[str] = None
    now: Optional[datetime] = None

    def with_slots(self, slots: List[SlotRef]) -> "BookingRequestContext":
        return replace(self, chosen_slots=list(slots))

    def with_booking_code(self, booking_code: str) -> "BookingRequestContext":
        return replace(self, booking_code=booking_code)
