# backend/studio_booking/services/slot_generator.py
"""
Calendar window generator.

Turns weekly recurring rules plus per-date overrides into concrete dated
slots for a bounded window. Pure: the same inputs always produce the same,
sorted list, and no slot is modified after it is built (overrides produce new
slot values via ``dataclasses.replace``).

Override semantics, applied per date in this order:

- ``is_blocked`` removes every slot in the override's scope
- ``replace_rules`` drops the rule-generated slots in scope; only entries remain
- ``capacity`` sets the capacity of every slot in scope
- each entry either adjusts the slot at the same time or injects a one-off slot

An override without a technique applies to every technique on that date.
"""

from collections import defaultdict
from dataclasses import replace
from datetime import date, timedelta
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ..domain.products import normalize_technique
from ..domain.slots import Slot, validate_slot_time

logger = logging.getLogger(__name__)

_DayKey = Tuple[str, Optional[str]]


def _in_scope(slot: Slot, override_technique: Optional[str]) -> bool:
    return override_technique is None or slot.technique == override_technique


def _entry_capacity(
    entry: Mapping[str, Any],
    override_capacity: Optional[int],
    technique: Optional[str],
    default_capacity: Mapping[str, int],
) -> int:
    if entry.get("capacity") is not None:
        return int(entry["capacity"])
    if override_capacity is not None:
        return int(override_capacity)
    return int(default_capacity.get(technique or "", 0))


def _apply_override(
    day_slots: Dict[_DayKey, Slot],
    override: Any,
    on_date: date,
    fallback_technique: Optional[str],
    default_capacity: Mapping[str, int],
) -> Dict[_DayKey, Slot]:
    scope = normalize_technique(getattr(override, "technique", None))
    if getattr(override, "is_blocked", False):
        return {k: s for k, s in day_slots.items() if not _in_scope(s, scope)}

    result = dict(day_slots)
    if getattr(override, "replace_rules", False):
        result = {k: s for k, s in result.items() if s.is_one_off or not _in_scope(s, scope)}

    override_capacity = getattr(override, "capacity", None)
    if override_capacity is not None:
        result = {
            k: (replace(s, capacity=int(override_capacity)) if _in_scope(s, scope) else s)
            for k, s in result.items()
        }

    for entry in getattr(override, "entries", None) or []:
        slot_time = validate_slot_time(entry.get("time", ""))
        technique = scope or fallback_technique
        key = (slot_time, technique)
        instructor_id = entry.get("instructorId") or entry.get("instructor_id")
        matching = [k for k, s in result.items() if k[0] == slot_time and _in_scope(s, scope)]
        if matching:
            changes: Dict[str, Any] = {}
            if entry.get("capacity") is not None:
                changes["capacity"] = int(entry["capacity"])
            if instructor_id:
                changes["instructor_id"] = instructor_id
            for match in matching:
                result[match] = replace(result[match], **changes)
            continue
        result[key] = Slot(
            date=on_date,
            time=slot_time,
            technique=technique,
            instructor_id=instructor_id,
            capacity=_entry_capacity(entry, override_capacity, technique, default_capacity),
            is_one_off=True,
        )
    return result


def _override_order(override: Any) -> Tuple[int, str]:
    # Date-wide overrides first so technique-specific ones refine them
    technique = getattr(override, "technique", None)
    return (0 if technique is None else 1, technique or "")


def generate_slots(
    rules: Iterable[Any],
    overrides: Iterable[Any],
    window_start: date,
    window_days: int,
    *,
    technique: Optional[str] = None,
    default_capacity: Optional[Mapping[str, int]] = None,
) -> List[Slot]:
    """
    Produce every slot in ``[window_start, window_start + window_days)``.

    Args:
        rules: objects with ``day_of_week`` (0=Monday), ``time``, ``instructor_id``,
            ``capacity`` and ``technique``
        overrides: objects with ``date``, ``technique``, ``is_blocked``,
            ``capacity``, ``entries`` and ``replace_rules``
        window_start: first calendar date of the window
        window_days: number of days in the window
        technique: technique given to one-off slots injected by date-wide overrides
        default_capacity: per-technique capacity for injected slots without one

    Returns:
        Slots sorted by date, time, technique. Capacity-0 slots are included.
    """
    if window_days <= 0:
        return []
    capacities = default_capacity or {}
    fallback_technique = normalize_technique(technique)

    rules_by_weekday: Dict[int, List[Any]] = defaultdict(list)
    for rule in rules:
        rules_by_weekday[int(rule.day_of_week)].append(rule)

    overrides_by_date: Dict[date, List[Any]] = defaultdict(list)
    for override in overrides:
        overrides_by_date[override.date].append(override)

    slots: List[Slot] = []
    for offset in range(window_days):
        on_date = window_start + timedelta(days=offset)
        day_slots: Dict[_DayKey, Slot] = {}
        for rule in rules_by_weekday.get(on_date.weekday(), ()):
            rule_technique = normalize_technique(rule.technique)
            key = (validate_slot_time(rule.time), rule_technique)
            if key in day_slots:
                # Identity is (date, time, technique); the first rule wins
                logger.warning(
                    "Duplicate recurring rule for %s %s %s ignored",
                    on_date.isoformat(),
                    rule.time,
                    rule_technique,
                )
                continue
            day_slots[key] = Slot(
                date=on_date,
                time=rule.time,
                technique=rule_technique,
                instructor_id=rule.instructor_id,
                capacity=int(rule.capacity),
            )

        for override in sorted(overrides_by_date.get(on_date, ()), key=_override_order):
            day_slots = _apply_override(
                day_slots, override, on_date, fallback_technique, capacities
            )
        slots.extend(day_slots.values())

    slots.sort(key=lambda s: (s.date, s.time, s.technique or ""))
    return slots

