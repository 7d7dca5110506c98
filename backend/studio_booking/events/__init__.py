from .booking_events import (
    BookingCancelled,
    BookingConfirmed,
    BookingExpired,
    BookingRescheduled,
    HoldExpiring,
)
from .publisher import EventPublisher

__all__ = [
    "BookingCancelled",
    "BookingConfirmed",
    "BookingExpired",
    "BookingRescheduled",
    "EventPublisher",
    "HoldExpiring",
]
