"""Rule and override maintenance must never strand an existing booking."""

from datetime import timedelta

import pytest

from studio_booking.core.exceptions import ConflictException, NotFoundException, ValidationException
from studio_booking.core.enums import BookingMode
from studio_booking.domain.context import BookingRequestContext
from studio_booking.domain.slots import SlotRef
from studio_booking.services.availability_service import AvailabilityService
from studio_booking.services.booking_service import BookingService
from studio_booking.services.schedule_service import ScheduleService
from tests.factories import NOW, TUESDAY, customer, make_product, make_rule

CLASS_DAY = TUESDAY + timedelta(days=7)


@pytest.fixture
def schedule(db):
    return ScheduleService(db)


def _book(db, publisher, product, count):
    service = BookingService(db, publisher=publisher)
    for index in range(count):
        service.submit_booking(
            BookingRequestContext(
                product_id=product.id,
                mode=BookingMode.FLEXIBLE,
                chosen_slots=[SlotRef(CLASS_DAY, "18:00")],
                customer_info=customer(index),
                now=NOW,
            )
        )


class TestRules:
    def test_create_and_list(self, db, schedule):
        rule = schedule.create_rule(
            day_of_week=1, time="18:00", instructor_id="ana", capacity=6, technique="potters_wheel"
        )

        assert rule.id
        assert [r.id for r in schedule.list_rules(technique="potters_wheel")] == [rule.id]
        assert schedule.list_rules(technique="molding") == []

    def test_duplicate_rule_is_a_conflict(self, db, schedule):
        schedule.create_rule(day_of_week=1, time="18:00", instructor_id="ana", capacity=6, technique="potters_wheel")

        with pytest.raises(ConflictException) as exc_info:
            schedule.create_rule(
                day_of_week=1, time="18:00", instructor_id="bruno", capacity=4, technique="potters_wheel"
            )

        assert exc_info.value.code == "DUPLICATE_RULE"

    def test_painting_rule_is_stored_as_molding(self, db, schedule):
        rule = schedule.create_rule(day_of_week=2, time="10:00", instructor_id="ana", capacity=22, technique="painting")

        assert rule.technique == "molding"

    @pytest.mark.parametrize(
        "fields, code",
        [
            ({"day_of_week": 7}, "INVALID_DAY_OF_WEEK"),
            ({"capacity": -1}, "INVALID_CAPACITY"),
            ({"time": "25:00"}, "INVALID_SLOT_TIME"),
            ({"technique": ""}, "TECHNIQUE_REQUIRED"),
        ],
    )
    def test_invalid_rules(self, schedule, fields, code):
        payload = dict(day_of_week=1, time="18:00", instructor_id="ana", capacity=6, technique="potters_wheel")
        payload.update(fields)

        with pytest.raises(ValidationException) as exc_info:
            schedule.create_rule(**payload)

        assert exc_info.value.code == code

    def test_rule_for_unknown_product(self, schedule):
        with pytest.raises(NotFoundException):
            schedule.create_rule(
                day_of_week=1,
                time="18:00",
                instructor_id="ana",
                capacity=6,
                technique="potters_wheel",
                product_id="missing",
            )


class TestOverrides:
    def test_capacity_override_is_visible_to_next_listing(self, db, schedule):
        make_rule(db, capacity=6)
        product = make_product(db)

        schedule.upsert_override(CLASS_DAY, technique="potters_wheel", capacity=3, now=NOW)

        window = AvailabilityService(db).list_available_slots(product.id, start=CLASS_DAY, days=1, now=NOW)
        assert [s.max_capacity for s in window.slots] == [3]

    def test_upsert_replaces_existing_override(self, db, schedule):
        make_rule(db, capacity=6)
        first = schedule.upsert_override(CLASS_DAY, technique="potters_wheel", capacity=3, now=NOW)
        second = schedule.upsert_override(CLASS_DAY, technique="potters_wheel", capacity=5, reason="Extra wheel", now=NOW)

        assert second.id == first.id
        assert second.capacity == 5
        assert second.reason == "Extra wheel"

    def test_lowering_capacity_below_held_seats_is_rejected(self, db, schedule, publisher):
        make_rule(db, capacity=6)
        product = make_product(db)
        _book(db, publisher, product, 4)

        with pytest.raises(ConflictException) as exc_info:
            schedule.upsert_override(CLASS_DAY, technique="potters_wheel", capacity=3, now=NOW)

        assert exc_info.value.code == "OVERRIDE_BELOW_CONSUMPTION"
        [stranded] = exc_info.value.details["slots"]
        assert stranded["held"] == 4
        assert stranded["capacity"] == 3

        # Nothing was saved
        window = AvailabilityService(db).list_available_slots(product.id, start=CLASS_DAY, days=1, now=NOW)
        assert window.slots[0].max_capacity == 6

    def test_lowering_to_exactly_held_seats_is_allowed(self, db, schedule, publisher):
        make_rule(db, capacity=6)
        product = make_product(db)
        _book(db, publisher, product, 4)

        override = schedule.upsert_override(CLASS_DAY, technique="potters_wheel", capacity=4, now=NOW)

        assert override.capacity == 4

    def test_blocking_a_booked_date_is_rejected(self, db, schedule, publisher):
        make_rule(db, capacity=6)
        product = make_product(db)
        _book(db, publisher, product, 1)

        with pytest.raises(ConflictException):
            schedule.upsert_override(CLASS_DAY, is_blocked=True, now=NOW)

    def test_lapsed_bookings_do_not_hold_seats(self, db, schedule, publisher):
        make_rule(db, capacity=6)
        product = make_product(db)
        _book(db, publisher, product, 4)

        override = schedule.upsert_override(
            CLASS_DAY, is_blocked=True, now=NOW + timedelta(minutes=121)
        )

        assert override.is_blocked

    def test_one_off_entry(self, db, schedule):
        make_rule(db, capacity=6)
        product = make_product(db)

        schedule.upsert_override(
            CLASS_DAY,
            technique="potters_wheel",
            entries=[{"time": "11:00", "instructorId": "carla", "capacity": 4}],
            now=NOW,
        )

        window = AvailabilityService(db).list_available_slots(product.id, start=CLASS_DAY, days=1, now=NOW)
        assert [(s.slot.time, s.max_capacity) for s in window.slots] == [("11:00", 4), ("18:00", 6)]

    def test_invalid_entries(self, schedule):
        with pytest.raises(ValidationException):
            schedule.upsert_override(CLASS_DAY, entries=[{"time": "nope"}], now=NOW)
        with pytest.raises(ValidationException):
            schedule.upsert_override(CLASS_DAY, capacity=-2, now=NOW)
