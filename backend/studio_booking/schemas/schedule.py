"""Schedule maintenance schemas."""

from datetime import date
from typing import List, Optional

from pydantic import Field, field_validator

from ..core.exceptions import ValidationException
from ..domain.slots import validate_slot_time
from ..models.schedule import RecurringRule, ScheduleOverride
from .base import StandardizedModel, StrictRequestModel


def _slot_time(value: str) -> str:
    try:
        return validate_slot_time(value)
    except ValidationException as exc:
        raise ValueError(exc.message) from exc


class RuleCreate(StrictRequestModel):
    day_of_week: int = Field(..., ge=0, le=6, description="0 = Monday")
    time: str
    instructor_id: str = Field(..., min_length=1)
    capacity: int = Field(..., ge=0)
    technique: str = Field(..., min_length=1)
    product_id: Optional[str] = None

    @field_validator("time")
    @classmethod
    def _check_time(cls, value: str) -> str:
        return _slot_time(value)


class RuleResponse(StandardizedModel):
    id: str
    day_of_week: int
    time: str
    instructor_id: str
    capacity: int
    technique: str
    product_id: Optional[str] = None
    is_active: bool

    @classmethod
    def from_rule(cls, rule: RecurringRule) -> "RuleResponse":
        return cls.model_validate(rule)


class OverrideEntry(StrictRequestModel):
    time: str
    instructor_id: Optional[str] = Field(default=None, alias="instructorId")
    capacity: Optional[int] = Field(default=None, ge=0)

    @field_validator("time")
    @classmethod
    def _check_time(cls, value: str) -> str:
        return _slot_time(value)


class OverrideUpsert(StrictRequestModel):
    technique: Optional[str] = None
    product_id: Optional[str] = None
    is_blocked: bool = False
    capacity: Optional[int] = Field(default=None, ge=0)
    entries: List[OverrideEntry] = Field(default_factory=list)
    replace_rules: bool = False
    reason: Optional[str] = Field(default=None, max_length=255)


class OverrideResponse(StandardizedModel):
    id: str
    date: date
    technique: Optional[str] = None
    product_id: Optional[str] = None
    is_blocked: bool
    capacity: Optional[int] = None
    entries: List[dict]
    replace_rules: bool
    reason: Optional[str] = None

    @classmethod
    def from_override(cls, override: ScheduleOverride) -> "OverrideResponse":
        return cls.model_validate(override)
