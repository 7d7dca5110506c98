# backend/studio_booking/models/schedule.py
"""
Weekly class schedule and date-specific overrides.

Slots are never stored: they are generated from these two tables on demand.
"""

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
    UniqueConstraint,
)
from sqlalchemy.sql import func
import ulid

from ..database import Base


class RecurringRule(Base):
    """One weekly occurrence: weekday + wall time + instructor + capacity."""

    __tablename__ = "recurring_rules"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    # 0 = Monday ... 6 = Sunday
    day_of_week = Column(Integer, nullable=False)
    time = Column(String(5), nullable=False)
    instructor_id = Column(String(26), nullable=False)
    capacity = Column(Integer, nullable=False)
    technique = Column(String(30), nullable=False)
    # Null means studio-wide for the technique
    product_id = Column(String(26), ForeignKey("products.id", ondelete="CASCADE"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_rule_day_of_week"),
        CheckConstraint("capacity >= 0", name="ck_rule_capacity_non_negative"),
        Index("ix_recurring_rules_technique_day", "technique", "day_of_week"),
    )

    def __repr__(self) -> str:
        return f"<RecurringRule dow={self.day_of_week} {self.time} {self.technique} cap={self.capacity}>"


class ScheduleOverride(Base):
    """
    Per-date exception to the weekly rules.

    ``entries`` is a JSON list of ``{"time", "instructorId", "capacity"?}``.
    """

    __tablename__ = "schedule_overrides"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    date = Column(Date, nullable=False, index=True)
    technique = Column(String(30), nullable=True)
    product_id = Column(String(26), ForeignKey("products.id", ondelete="CASCADE"), nullable=True)

    is_blocked = Column(Boolean, nullable=False, default=False)
    capacity = Column(Integer, nullable=True)
    entries = Column(JSON, nullable=False, default=list)
    replace_rules = Column(Boolean, nullable=False, default=False)
    reason = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    __table_args__ = (
        UniqueConstraint("date", "technique", "product_id", name="uq_override_scope"),
        CheckConstraint("capacity IS NULL OR capacity >= 0", name="ck_override_capacity"),
    )

    def __repr__(self) -> str:
        return f"<ScheduleOverride {self.date} technique={self.technique} blocked={self.is_blocked}>"
