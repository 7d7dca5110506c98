# backend/studio_booking/domain/slots.py
"""
Slot value objects.

Slots are immutable: the generator builds them, the aggregator wraps them in
new ``EnrichedSlot`` objects, and nothing patches either afterwards.
"""

from dataclasses import dataclass, field
from datetime import date
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..core.exceptions import ValidationException

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

SlotKey = Tuple[date, str, Optional[str]]


def validate_slot_time(value: str) -> str:
    if not isinstance(value, str) or not _TIME_RE.match(value):
        raise ValidationException(
            f"Invalid slot time '{value}', expected HH:mm",
            code="INVALID_SLOT_TIME",
        )
    return value


def parse_slot_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise ValidationException(
            f"Invalid slot date '{value}', expected YYYY-MM-DD",
            code="INVALID_SLOT_DATE",
        ) from exc


@dataclass(frozen=True)
class Slot:
    date: date
    time: str
    technique: Optional[str] = None
    instructor_id: Optional[str] = field(default=None, compare=False)
    capacity: int = field(default=0, compare=False)
    is_one_off: bool = field(default=False, compare=False)

    @property
    def key(self) -> SlotKey:
        return (self.date, self.time, self.technique)

    def to_persisted(self) -> Dict[str, Any]:
        """Shape stored on ``Booking.slots``."""
        return {
            "date": self.date.isoformat(),
            "time": self.time,
            "instructorId": self.instructor_id,
        }


@dataclass(frozen=True)
class SlotRef:
    """A slot as chosen by a customer; resolved against generated slots."""

    date: date
    time: str
    instructor_id: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "SlotRef":
        return cls(
            date=parse_slot_date(raw.get("date")),
            time=validate_slot_time(raw.get("time", "")),
            instructor_id=raw.get("instructorId") or raw.get("instructor_id"),
        )

    def to_persisted(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "time": self.time,
            "instructorId": self.instructor_id,
        }

    def key(self, technique: Optional[str]) -> SlotKey:
        return (self.date, self.time, technique)


@dataclass(frozen=True)
class EnrichedSlot:
    slot: Slot
    paid_bookings_count: int
    total_bookings_count: int
    max_capacity: int
    available: int

    @property
    def is_available(self) -> bool:
        return self.available > 0

    @property
    def key(self) -> SlotKey:
        return self.slot.key

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.slot.date.isoformat(),
            "time": self.slot.time,
            "instructorId": self.slot.instructor_id,
            "technique": self.slot.technique,
            "paidBookingsCount": self.paid_bookings_count,
            "totalBookingsCount": self.total_bookings_count,
            "maxCapacity": self.max_capacity,
            "available": self.available,
            "isAvailable": self.is_available,
        }


def index_slots(slots: Iterable[EnrichedSlot]) -> Dict[SlotKey, EnrichedSlot]:
    return {s.key: s for s in slots}


def slot_refs_from_persisted(raw_slots: Optional[List[Dict[str, Any]]]) -> List[SlotRef]:
    return [SlotRef.from_dict(raw) for raw in raw_slots or []]
