# backend/studio_booking/core/enums.py
"""
Core enums for the studio booking engine.

String enums so values round-trip through JSON columns and API payloads
unchanged.
"""

from enum import Enum


class BookingMode(str, Enum):
    """How the customer picks slots. Chosen once per booking."""

    FLEXIBLE = "flexible"
    MONTHLY = "monthly"


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PRE_RESERVED = "pre_reserved"  # Unpaid, holds capacity until expires_at
    PAID = "paid"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (BookingStatus.EXPIRED, BookingStatus.CANCELLED)


class Technique(str, Enum):
    POTTERS_WHEEL = "potters_wheel"
    MOLDING = "molding"
    HAND_MODELING = "hand_modeling"
    PAINTING = "painting"


class PaymentMethod(str, Enum):
    CASH = "Cash"
    CARD = "Card"
    TRANSFER = "Transfer"
    GIFTCARD = "Giftcard"
    MANUAL = "Manual"


class HoldStatus(str, Enum):
    ACTIVE = "active"
    CONSUMED = "consumed"
    RELEASED = "released"
    EXPIRED = "expired"


class ConsumptionBasis(str, Enum):
    """Which bookings consume a slot's capacity."""

    PAID_ONLY = "paid_only"
    PAID_AND_PENDING = "paid_and_pending"


class AuditAction(str, Enum):
    PAYMENT_ADDED = "payment_added"
    PAYMENT_UPDATED = "payment_updated"
    PAYMENT_DELETED = "payment_deleted"
    GIFTCARD_REDEEMED = "giftcard_redeemed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    RESCHEDULED = "rescheduled"


class ProductType(str, Enum):
    """Closed set of sellable product variants. Capabilities live in domain.products."""

    CLASS_PACKAGE = "CLASS_PACKAGE"
    SINGLE_CLASS = "SINGLE_CLASS"
    INTRODUCTORY_CLASS = "INTRODUCTORY_CLASS"
    OPEN_STUDIO_SUBSCRIPTION = "OPEN_STUDIO_SUBSCRIPTION"
    GROUP_EXPERIENCE = "GROUP_EXPERIENCE"
    COUPLES_EXPERIENCE = "COUPLES_EXPERIENCE"
    GROUP_CLASS = "GROUP_CLASS"
