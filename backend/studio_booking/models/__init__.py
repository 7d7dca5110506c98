"""
Database models for the studio booking engine.

- Products and the weekly schedule (rules + per-date overrides)
- The booking ledger (bookings, slot index, payments, audit trail)
- Gift cards with their holds and redemptions
"""

from .booking import Booking, BookingAuditEvent, BookingPayment, BookingSlot
from .giftcard import Giftcard, GiftcardHold, GiftcardRedemption
from .product import Product
from .schedule import RecurringRule, ScheduleOverride

__all__ = [
    "Booking",
    "BookingAuditEvent",
    "BookingPayment",
    "BookingSlot",
    "Giftcard",
    "GiftcardHold",
    "GiftcardRedemption",
    "Product",
    "RecurringRule",
    "ScheduleOverride",
]
