"""
Slot schemas.

Slots keep the camelCase keys they are persisted with on ``Booking.slots``
(``instructorId``), so the same shape travels from listing to submission.
"""

from datetime import date
from typing import List, Optional

from pydantic import Field, field_validator

from ..core.enums import BookingMode
from ..core.exceptions import ValidationException
from ..domain.slots import EnrichedSlot, SlotRef, validate_slot_time
from .base import StandardizedModel, StrictRequestModel


class SlotSelection(StrictRequestModel):
    date: date
    time: str
    instructor_id: Optional[str] = Field(default=None, alias="instructorId")

    @field_validator("time")
    @classmethod
    def _check_time(cls, value: str) -> str:
        try:
            return validate_slot_time(value)
        except ValidationException as exc:
            raise ValueError(exc.message) from exc

    def to_ref(self) -> SlotRef:
        return SlotRef(date=self.date, time=self.time, instructor_id=self.instructor_id)


class EnrichedSlotResponse(StandardizedModel):
    date: date
    time: str
    instructor_id: Optional[str] = Field(default=None, serialization_alias="instructorId")
    technique: Optional[str] = None
    paid_bookings_count: int = Field(serialization_alias="paidBookingsCount")
    total_bookings_count: int = Field(serialization_alias="totalBookingsCount")
    max_capacity: int = Field(serialization_alias="maxCapacity")
    available: int
    is_available: bool = Field(serialization_alias="isAvailable")

    @classmethod
    def from_enriched(cls, slot: EnrichedSlot) -> "EnrichedSlotResponse":
        return cls(
            date=slot.slot.date,
            time=slot.slot.time,
            instructor_id=slot.slot.instructor_id,
            technique=slot.slot.technique,
            paid_bookings_count=slot.paid_bookings_count,
            total_bookings_count=slot.total_bookings_count,
            max_capacity=slot.max_capacity,
            available=slot.available,
            is_available=slot.is_available,
        )


class SlotListResponse(StandardizedModel):
    product_id: str
    mode: BookingMode
    window_start: date
    window_end: date
    slots: List[EnrichedSlotResponse]
