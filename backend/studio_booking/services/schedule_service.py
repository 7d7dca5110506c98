# backend/studio_booking/services/schedule_service.py
"""
Schedule Service

Staff-facing maintenance of the weekly rules and per-date overrides. Slots
are generated from these rows on every read, so a change here is visible to
the next availability query. An override may not strand a booking: lowering
capacity below the seats already held, or removing a slot that has bookings,
is rejected.
"""

from datetime import date, datetime, timedelta
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import ConflictException, NotFoundException, ValidationException
from ..core.slot_lock import slot_lock_key, slot_locks
from ..core.timezone_utils import ensure_utc, utc_now
from ..database import with_store_retry
from ..domain.products import normalize_technique
from ..domain.slots import Slot, validate_slot_time
from ..models.product import Product
from ..models.schedule import RecurringRule, ScheduleOverride
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .capacity_aggregator import consumed_seats
from .slot_generator import generate_slots

logger = logging.getLogger(__name__)


def _clean_entries(entries: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    cleaned = []
    for entry in entries or []:
        capacity = entry.get("capacity")
        if capacity is not None and int(capacity) < 0:
            raise ValidationException("Entry capacity cannot be negative", code="INVALID_CAPACITY")
        cleaned.append(
            {
                "time": validate_slot_time(str(entry.get("time", ""))),
                "instructorId": entry.get("instructorId") or entry.get("instructor_id"),
                "capacity": None if capacity is None else int(capacity),
            }
        )
    return cleaned


class ScheduleService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.schedule_repository = RepositoryFactory.create_schedule_repository(db)
        self.product_repository = RepositoryFactory.create_product_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)

    def _product(self, product_id: Optional[str]) -> Optional[Product]:
        if product_id is None:
            return None
        product = self.product_repository.get_active(product_id)
        if product is None:
            raise NotFoundException(f"Product {product_id} not found", code="PRODUCT_NOT_FOUND")
        return product

    @BaseService.measure_operation("create_rule")
    def create_rule(
        self,
        *,
        day_of_week: int,
        time: str,
        instructor_id: str,
        capacity: int,
        technique: str,
        product_id: Optional[str] = None,
    ) -> RecurringRule:
        """Add a weekly class. A second active rule for the same slot identity is a conflict."""
        if not 0 <= day_of_week <= 6:
            raise ValidationException("day_of_week must be between 0 and 6", code="INVALID_DAY_OF_WEEK")
        if capacity < 0:
            raise ValidationException("Capacity cannot be negative", code="INVALID_CAPACITY")
        slot_time = validate_slot_time(time)
        normalized = normalize_technique(technique)
        if not normalized:
            raise ValidationException("Technique is required", code="TECHNIQUE_REQUIRED")
        self._product(product_id)

        with self.transaction():
            existing = self.schedule_repository.find_rule(
                day_of_week=day_of_week,
                time=slot_time,
                technique=normalized,
                product_id=product_id,
            )
            if existing is not None:
                raise ConflictException(
                    "A class already runs at this weekday and time",
                    code="DUPLICATE_RULE",
                    details={"rule_id": existing.id},
                )
            rule = self.schedule_repository.create(
                day_of_week=day_of_week,
                time=slot_time,
                instructor_id=instructor_id,
                capacity=capacity,
                technique=normalized,
                product_id=product_id,
                is_active=True,
            )
        self.logger.info(
            "Recurring rule created",
            extra={"rule_id": rule.id, "day_of_week": day_of_week, "time": slot_time},
        )
        return rule

    def list_rules(self, *, technique: Optional[str] = None) -> List[RecurringRule]:
        return self.schedule_repository.get_active_rules(technique=normalize_technique(technique))

    def _rules_for_scope(
        self, technique: Optional[str], product: Optional[Product]
    ) -> List[RecurringRule]:
        if product is not None:
            return self.schedule_repository.get_rules(technique=technique, product_id=product.id)
        return self.schedule_repository.get_active_rules(technique=technique)

    def _slots_on(self, on_date: date, rules: List[RecurringRule], technique: Optional[str]) -> List[Slot]:
        return generate_slots(
            rules,
            self.schedule_repository.get_overrides_on(on_date),
            on_date,
            1,
            technique=technique,
            default_capacity=settings.default_class_capacity,
        )

    @BaseService.measure_operation("upsert_override")
    def upsert_override(
        self,
        on_date: date,
        *,
        technique: Optional[str] = None,
        product_id: Optional[str] = None,
        is_blocked: bool = False,
        capacity: Optional[int] = None,
        entries: Optional[List[Dict[str, Any]]] = None,
        replace_rules: bool = False,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ScheduleOverride:
        """
        Create or replace the override for ``on_date`` in the given scope.

        Raises:
            ValidationException: negative capacity or malformed entry times
            ConflictException: the result would leave held seats without capacity
        """
        current = ensure_utc(now) or utc_now()
        if capacity is not None and capacity < 0:
            raise ValidationException("Capacity cannot be negative", code="INVALID_CAPACITY")
        cleaned = _clean_entries(entries)
        product = self._product(product_id)
        scope_technique = normalize_technique(technique)
        slot_technique = scope_technique or (normalize_technique(product.technique) if product else None)
        rules = self._rules_for_scope(slot_technique, product)

        before = self._slots_on(on_date, rules, slot_technique)
        lock_keys = {slot_lock_key(on_date.isoformat(), s.time, s.technique) for s in before}
        lock_keys.update(slot_lock_key(on_date.isoformat(), e["time"], slot_technique) for e in cleaned)

        def _upsert() -> ScheduleOverride:
            with slot_locks(sorted(lock_keys)):
                self.db.expire_all()
                with self.transaction():
                    override = self.schedule_repository.get_override(
                        on_date=on_date, technique=scope_technique, product_id=product_id
                    )
                    if override is None:
                        override = ScheduleOverride(
                            date=on_date, technique=scope_technique, product_id=product_id
                        )
                    override.is_blocked = is_blocked
                    override.capacity = capacity
                    override.entries = cleaned
                    override.replace_rules = replace_rules
                    override.reason = reason
                    self.schedule_repository.save_override(override)

                    after = self._slots_on(on_date, rules, slot_technique)
                    self._assert_seats_kept(on_date, after, slot_technique, current)
                    return override

        override = with_store_retry("upsert_override", _upsert, on_retry=self.db.rollback)
        self.logger.info(
            "Schedule override saved",
            extra={
                "date": on_date.isoformat(),
                "technique": scope_technique,
                "product_id": product_id,
                "is_blocked": is_blocked,
            },
        )
        return override

    def _assert_seats_kept(
        self, on_date: date, slots: List[Slot], technique: Optional[str], now: datetime
    ) -> None:
        bookings = self.booking_repository.get_capacity_holding_bookings(
            start_date=on_date, end_date=on_date + timedelta(days=1), technique=technique
        )
        stranded = []
        for (slot_date, slot_time, booking_technique), held in consumed_seats(bookings, now=now).items():
            if technique and booking_technique and booking_technique != technique:
                continue
            capacities = [
                s.capacity
                for s in slots
                if s.time == slot_time
                and (s.technique is None or booking_technique is None or s.technique == booking_technique)
            ]
            capacity = max(capacities, default=0)
            if capacity < held:
                stranded.append(
                    {
                        "date": slot_date,
                        "time": slot_time,
                        "technique": booking_technique,
                        "capacity": capacity,
                        "held": held,
                    }
                )
        if stranded:
            raise ConflictException(
                "Override would leave existing bookings without a seat",
                code="OVERRIDE_BELOW_CONSUMPTION",
                details={"slots": stranded},
            )
