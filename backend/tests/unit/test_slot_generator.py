"""Calendar window generation from weekly rules and per-date overrides."""

from datetime import date
from types import SimpleNamespace

import pytest

from studio_booking.core.exceptions import ValidationException
from studio_booking.services.slot_generator import generate_slots

MONDAY = date(2025, 3, 3)
TUESDAY = date(2025, 3, 4)


def _rule(day_of_week=1, time="18:00", capacity=6, technique="potters_wheel", instructor_id="ana"):
    return SimpleNamespace(
        day_of_week=day_of_week,
        time=time,
        capacity=capacity,
        technique=technique,
        instructor_id=instructor_id,
    )


def _override(on_date, **fields):
    base = dict(
        date=on_date,
        technique=None,
        is_blocked=False,
        capacity=None,
        entries=[],
        replace_rules=False,
    )
    base.update(fields)
    return SimpleNamespace(**base)


class TestRules:
    def test_weekly_rule_repeats_on_its_weekday(self):
        slots = generate_slots([_rule()], [], MONDAY, 14)

        assert [s.date for s in slots] == [TUESDAY, date(2025, 3, 11)]
        assert all(s.time == "18:00" and s.capacity == 6 for s in slots)
        assert all(not s.is_one_off for s in slots)

    def test_window_is_half_open(self):
        # Window of one day starting Monday must not include Tuesday
        assert generate_slots([_rule()], [], MONDAY, 1) == []
        assert len(generate_slots([_rule()], [], MONDAY, 2)) == 1

    def test_empty_window(self):
        assert generate_slots([_rule()], [], MONDAY, 0) == []

    def test_capacity_zero_slots_are_kept(self):
        slots = generate_slots([_rule(capacity=0)], [], MONDAY, 7)

        assert len(slots) == 1
        assert slots[0].capacity == 0

    def test_sorted_by_date_time_technique(self):
        rules = [
            _rule(day_of_week=1, time="19:00"),
            _rule(day_of_week=1, time="10:00", technique="molding"),
            _rule(day_of_week=0, time="18:00"),
            _rule(day_of_week=1, time="10:00"),
        ]
        slots = generate_slots(rules, [], MONDAY, 7)

        assert [(s.date, s.time, s.technique) for s in slots] == [
            (MONDAY, "18:00", "potters_wheel"),
            (TUESDAY, "10:00", "molding"),
            (TUESDAY, "10:00", "potters_wheel"),
            (TUESDAY, "19:00", "potters_wheel"),
        ]

    def test_duplicate_rule_identity_first_wins(self):
        rules = [_rule(instructor_id="ana"), _rule(instructor_id="bruno", capacity=3)]
        slots = generate_slots(rules, [], MONDAY, 7)

        assert len(slots) == 1
        assert slots[0].instructor_id == "ana"

    def test_painting_and_hand_modeling_share_molding_identity(self):
        slots = generate_slots([_rule(technique="painting")], [], MONDAY, 7)

        assert slots[0].technique == "molding"

    def test_malformed_rule_time_is_rejected(self):
        with pytest.raises(ValidationException):
            generate_slots([_rule(time="6pm")], [], MONDAY, 7)

    def test_pure_and_repeatable(self):
        rules = [_rule(), _rule(day_of_week=3, time="11:00")]
        overrides = [_override(TUESDAY, capacity=4)]

        first = generate_slots(rules, overrides, MONDAY, 28)
        second = generate_slots(rules, overrides, MONDAY, 28)

        assert first == second
        assert [s.capacity for s in first] == [s.capacity for s in second]
        assert rules[0].capacity == 6


class TestOverrides:
    def test_blocked_date_removes_every_slot(self):
        rules = [_rule(), _rule(time="10:00", technique="molding")]
        slots = generate_slots(rules, [_override(TUESDAY, is_blocked=True)], MONDAY, 7)

        assert slots == []

    def test_blocked_technique_keeps_other_techniques(self):
        rules = [_rule(), _rule(time="10:00", technique="molding")]
        overrides = [_override(TUESDAY, is_blocked=True, technique="potters_wheel")]
        slots = generate_slots(rules, overrides, MONDAY, 7)

        assert [(s.time, s.technique) for s in slots] == [("10:00", "molding")]

    def test_capacity_override_applies_to_scope(self):
        slots = generate_slots([_rule()], [_override(TUESDAY, capacity=2)], MONDAY, 7)

        assert slots[0].capacity == 2

    def test_entry_adjusts_existing_slot(self):
        overrides = [_override(TUESDAY, entries=[{"time": "18:00", "instructorId": "carla", "capacity": 3}])]
        slots = generate_slots([_rule()], overrides, MONDAY, 7)

        assert len(slots) == 1
        assert slots[0].instructor_id == "carla"
        assert slots[0].capacity == 3
        assert not slots[0].is_one_off

    def test_entry_injects_one_off_slot(self):
        overrides = [
            _override(
                TUESDAY,
                technique="potters_wheel",
                entries=[{"time": "11:00", "instructorId": "carla", "capacity": 4}],
            )
        ]
        slots = generate_slots([_rule()], overrides, MONDAY, 7)

        assert [(s.time, s.is_one_off) for s in slots] == [("11:00", True), ("18:00", False)]

    def test_one_off_without_capacity_uses_technique_default(self):
        overrides = [_override(TUESDAY, entries=[{"time": "11:00", "instructorId": "carla"}])]
        slots = generate_slots(
            [],
            overrides,
            MONDAY,
            7,
            technique="molding",
            default_capacity={"molding": 22},
        )

        assert slots[0].technique == "molding"
        assert slots[0].capacity == 22

    def test_replace_rules_keeps_only_entries(self):
        overrides = [
            _override(
                TUESDAY,
                replace_rules=True,
                technique="potters_wheel",
                entries=[{"time": "12:00", "instructorId": "carla", "capacity": 5}],
            )
        ]
        slots = generate_slots([_rule(), _rule(time="19:00")], overrides, MONDAY, 7)

        assert [s.time for s in slots] == ["12:00"]

    def test_override_on_other_date_has_no_effect(self):
        overrides = [_override(date(2025, 3, 11), is_blocked=True)]
        slots = generate_slots([_rule()], overrides, MONDAY, 7)

        assert [s.date for s in slots] == [TUESDAY]

    def test_technique_override_refines_date_wide_one(self):
        overrides = [
            _override(TUESDAY, technique="potters_wheel", capacity=1),
            _override(TUESDAY, capacity=3),
        ]
        slots = generate_slots(
            [_rule(), _rule(time="10:00", technique="molding")], overrides, MONDAY, 7
        )

        capacities = {s.technique: s.capacity for s in slots}
        assert capacities == {"molding": 3, "potters_wheel": 1}
