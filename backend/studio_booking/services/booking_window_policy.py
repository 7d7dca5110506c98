# backend/studio_booking/services/booking_window_policy.py
"""
Booking window policy.

Flexible mode: N distinct slots inside a window anchored on the earliest pick,
``[anchor, anchor + flexible_window_days]``.

Monthly mode: one anchor slot plus the same time and instructor 7, 14 and 21
days later. All weeks must be available at once or the whole selection fails.

``validate`` never raises for a bad selection; it returns a ``SelectionResult``
so the summary step can show the reason. Submission turns a failed result into
``ValidationException`` (bad shape) or ``CapacityConflictException`` (a slot
filled up).
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..core.config import settings
from ..core.enums import BookingMode
from ..core.exceptions import CapacityConflictException, ValidationException
from ..core.timezone_utils import slot_start_utc
from ..domain.products import ProductCapabilities
from ..domain.slots import EnrichedSlot, SlotKey, SlotRef

logger = logging.getLogger(__name__)

INVALID = "invalid"
UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class SelectionResult:
    ok: bool
    reason: Optional[str] = None
    kind: Optional[str] = None
    slots: List[EnrichedSlot] = field(default_factory=list)
    unavailable: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def invalid(cls, reason: str) -> "SelectionResult":
        return cls(ok=False, reason=reason, kind=INVALID)

    @classmethod
    def full(cls, reason: str, unavailable: List[Dict[str, Any]]) -> "SelectionResult":
        return cls(ok=False, reason=reason, kind=UNAVAILABLE, unavailable=unavailable)

    def raise_for_failure(self) -> None:
        """Raise the exception a failed result maps to at submission time."""
        if self.ok:
            return
        if self.kind == UNAVAILABLE:
            raise CapacityConflictException(self.reason, slots=self.unavailable)
        raise ValidationException(self.reason or "Invalid slot selection", code="INVALID_SELECTION")


def derive_monthly_slots(anchor: SlotRef, weeks: Optional[int] = None) -> List[SlotRef]:
    """The anchor and the same time/instructor on each following week."""
    count = weeks or settings.monthly_weeks
    return [
        SlotRef(
            date=anchor.date + timedelta(days=7 * week),
            time=anchor.time,
            instructor_id=anchor.instructor_id,
        )
        for week in range(count)
    ]


def flexible_window_end(anchor: date, window_days: Optional[int] = None) -> date:
    return anchor + timedelta(days=window_days or settings.flexible_window_days)


class FlexibleSelection:
    """
    Slot picking state for flexible mode.

    Picks before the anchor or after ``anchor + window_days`` are rejected when
    they are made. Removing the anchor re-anchors on the earliest remaining pick.
    """

    def __init__(self, package_size: int, window_days: Optional[int] = None):
        self.package_size = package_size
        self.window_days = window_days or settings.flexible_window_days
        self._picks: List[EnrichedSlot] = []

    @property
    def picks(self) -> List[EnrichedSlot]:
        return sorted(self._picks, key=lambda s: (s.slot.date, s.slot.time))

    @property
    def anchor(self) -> Optional[date]:
        if not self._picks:
            return None
        return min(p.slot.date for p in self._picks)

    @property
    def window_end(self) -> Optional[date]:
        anchor = self.anchor
        return flexible_window_end(anchor, self.window_days) if anchor else None

    @property
    def is_complete(self) -> bool:
        return len(self._picks) == self.package_size

    def add(self, slot: EnrichedSlot) -> None:
        if any(p.key == slot.key for p in self._picks):
            raise ValidationException("Slot already selected", code="DUPLICATE_SLOT")
        if len(self._picks) >= self.package_size:
            raise ValidationException(
                f"This package includes {self.package_size} classes", code="PACKAGE_FULL"
            )
        if not slot.is_available:
            raise CapacityConflictException(
                "This slot is full", slots=[slot.to_dict()]
            )
        anchor, end = self.anchor, self.window_end
        if anchor is not None and end is not None and not (anchor <= slot.slot.date <= end):
            raise ValidationException(
                f"Classes must be between {anchor.isoformat()} and {end.isoformat()}",
                code="OUTSIDE_WINDOW",
                details={"anchor": anchor.isoformat(), "window_end": end.isoformat()},
            )
        self._picks.append(slot)

    def remove(self, slot: EnrichedSlot) -> None:
        self._picks = [p for p in self._picks if p.key != slot.key]


class BookingWindowPolicy:
    def __init__(
        self,
        *,
        flexible_window_days: Optional[int] = None,
        monthly_weeks: Optional[int] = None,
    ):
        self.flexible_window_days = flexible_window_days or settings.flexible_window_days
        self.monthly_weeks = monthly_weeks or settings.monthly_weeks

    def validate(
        self,
        mode: BookingMode,
        chosen: Sequence[SlotRef],
        enriched_index: Mapping[SlotKey, EnrichedSlot],
        capabilities: ProductCapabilities,
        *,
        package_size: int,
        technique: Optional[str],
        now: datetime,
        units_needed: int = 1,
    ) -> SelectionResult:
        """
        Check a candidate selection against live availability.

        Args:
            mode: booking mode chosen for this booking
            chosen: slots the customer picked
            enriched_index: enriched slots keyed by ``(date, time, technique)``
            capabilities: what the product type allows
            package_size: number of slots the product includes
            technique: normalized technique used for slot identity
            now: evaluation instant; slots that already started are rejected
            units_needed: consumption units the booking takes on each slot
        """
        if not capabilities.has_slots:
            if chosen:
                return SelectionResult.invalid("This product is not booked on specific slots")
            return SelectionResult(ok=True)

        if not chosen:
            if capabilities.allows_deferred_scheduling and mode == BookingMode.FLEXIBLE:
                return SelectionResult(ok=True)
            return SelectionResult.invalid("Select at least one slot")

        if mode == BookingMode.MONTHLY:
            return self._validate_monthly(
                chosen,
                enriched_index,
                capabilities,
                package_size=package_size,
                technique=technique,
                now=now,
                units_needed=units_needed,
            )
        return self._validate_flexible(
            chosen,
            enriched_index,
            package_size=package_size,
            technique=technique,
            now=now,
            units_needed=units_needed,
        )

    def validate_reschedule(
        self,
        kept: Sequence[SlotRef],
        target: SlotRef,
        enriched_index: Mapping[SlotKey, EnrichedSlot],
        capabilities: ProductCapabilities,
        *,
        package_size: int,
        technique: Optional[str],
        now: datetime,
        units_needed: int = 1,
    ) -> SelectionResult:
        """
        Check one slot moving into a booking that keeps ``kept``.

        Kept slots are already held by the booking, so only the target is
        checked against capacity. The resulting set must still fit the
        flexible window anchored on its earliest slot.
        """
        if not capabilities.has_slots:
            return SelectionResult.invalid("This product is not booked on specific slots")
        if any(ref.key(technique) == target.key(technique) for ref in kept):
            return SelectionResult.invalid("The booking already includes this class")
        if len(kept) + 1 > package_size:
            return SelectionResult.invalid(f"This package includes {package_size} classes")

        combined = [*kept, target]
        anchor = min(ref.date for ref in combined)
        end = flexible_window_end(anchor, self.flexible_window_days)
        if any(ref.date > end for ref in combined):
            return SelectionResult.invalid(
                f"All classes must fall between {anchor.isoformat()} and {end.isoformat()}"
            )
        return self._resolve([target], enriched_index, technique, now, units_needed)

    def _resolve(
        self,
        refs: Sequence[SlotRef],
        enriched_index: Mapping[SlotKey, EnrichedSlot],
        technique: Optional[str],
        now: datetime,
        units_needed: int,
        *,
        require_instructor: bool = False,
    ) -> SelectionResult:
        resolved: List[EnrichedSlot] = []
        unavailable: List[Dict[str, Any]] = []
        for ref in refs:
            slot = enriched_index.get(ref.key(technique))
            if slot is None or (
                require_instructor
                and ref.instructor_id
                and slot.slot.instructor_id
                and slot.slot.instructor_id != ref.instructor_id
            ):
                unavailable.append({**ref.to_persisted(), "reason": "not_scheduled"})
                continue
            if slot_start_utc(slot.slot.date, slot.slot.time) <= now:
                return SelectionResult.invalid(
                    f"The class on {ref.date.isoformat()} at {ref.time} has already started"
                )
            if slot.available < units_needed:
                unavailable.append({**slot.to_dict(), "reason": "full"})
                continue
            resolved.append(slot)
        if unavailable:
            return SelectionResult.full(
                "One or more selected slots are no longer available", unavailable
            )
        return SelectionResult(ok=True, slots=resolved)

    def _validate_flexible(
        self,
        chosen: Sequence[SlotRef],
        enriched_index: Mapping[SlotKey, EnrichedSlot],
        *,
        package_size: int,
        technique: Optional[str],
        now: datetime,
        units_needed: int,
    ) -> SelectionResult:
        keys = {ref.key(technique) for ref in chosen}
        if len(keys) != len(chosen):
            return SelectionResult.invalid("Each class must be a different slot")
        if len(chosen) != package_size:
            return SelectionResult.invalid(
                f"Select exactly {package_size} classes (got {len(chosen)})"
            )
        anchor = min(ref.date for ref in chosen)
        end = flexible_window_end(anchor, self.flexible_window_days)
        outside = [ref for ref in chosen if ref.date > end]
        if outside:
            return SelectionResult.invalid(
                f"All classes must fall between {anchor.isoformat()} and {end.isoformat()}"
            )
        result = self._resolve(chosen, enriched_index, technique, now, units_needed)
        if result.ok:
            ordered = sorted(result.slots, key=lambda s: (s.slot.date, s.slot.time))
            return SelectionResult(ok=True, slots=ordered)
        return result

    def _validate_monthly(
        self,
        chosen: Sequence[SlotRef],
        enriched_index: Mapping[SlotKey, EnrichedSlot],
        capabilities: ProductCapabilities,
        *,
        package_size: int,
        technique: Optional[str],
        now: datetime,
        units_needed: int,
    ) -> SelectionResult:
        if not capabilities.supports_monthly_mode:
            return SelectionResult.invalid("Monthly booking is not offered for this product")
        if package_size != self.monthly_weeks:
            return SelectionResult.invalid(
                f"Monthly booking needs a {self.monthly_weeks}-class package"
            )
        if len(chosen) not in (1, self.monthly_weeks):
            return SelectionResult.invalid(
                f"Monthly booking needs one slot, or all {self.monthly_weeks} weekly slots"
            )

        anchor = min(chosen, key=lambda ref: (ref.date, ref.time))
        anchor_slot = enriched_index.get(anchor.key(technique))
        if anchor.instructor_id is None and anchor_slot is not None:
            anchor = SlotRef(anchor.date, anchor.time, anchor_slot.slot.instructor_id)
        derived = derive_monthly_slots(anchor, self.monthly_weeks)

        if len(chosen) == self.monthly_weeks:
            chosen_keys = {(ref.date, ref.time) for ref in chosen}
            derived_keys = {(ref.date, ref.time) for ref in derived}
            if chosen_keys != derived_keys:
                return SelectionResult.invalid(
                    f"Monthly slots must be the same weekday and time for "
                    f"{self.monthly_weeks} consecutive weeks"
                )

        # All-or-nothing: any missing or full week rejects the whole selection
        result = self._resolve(
            derived,
            enriched_index,
            technique,
            now,
            units_needed,
            require_instructor=True,
        )
        if not result.ok and result.kind == UNAVAILABLE:
            weeks = [
                index + 1
                for index, ref in enumerate(derived)
                if any(
                    u.get("date") == ref.date.isoformat() and u.get("time") == ref.time
                    for u in result.unavailable
                )
            ]
            label = "Week {} is" if len(weeks) == 1 else "Weeks {} are"
            return SelectionResult.full(
                label.format(", ".join(str(w) for w in weeks))
                + " not available; choose a different starting class",
                result.unavailable,
            )
        return result
