"""Ledger counts joined onto generated slots."""

from datetime import date, datetime, timedelta
from types import SimpleNamespace

import pytest
import pytz

from studio_booking.core.exceptions import (
    FatalInvariantException,
    RepositoryException,
    TransientStoreException,
    ValidationException,
)
from studio_booking.domain.slots import Slot
from studio_booking.services.capacity_aggregator import (
    consumed_seats,
    enrich,
    enrich_from_store,
    fully_booked,
    units_for,
)

NOW = datetime(2025, 3, 3, 9, 0, tzinfo=pytz.UTC)
TUESDAY = date(2025, 3, 4)


def _slot(time="18:00", capacity=6, technique="potters_wheel"):
    return Slot(date=TUESDAY, time=time, technique=technique, instructor_id="ana", capacity=capacity)


def _booking(status="pre_reserved", *, paid=False, participants=1, technique="potters_wheel", expires_in=60, slots=None):
    return SimpleNamespace(
        status=status,
        is_paid=paid,
        participants=participants,
        technique=technique,
        expires_at=None if expires_in is None else NOW + timedelta(minutes=expires_in),
        slots=slots if slots is not None else [{"date": TUESDAY.isoformat(), "time": "18:00"}],
    )


def test_units_for_rounds_up_to_whole_units():
    assert units_for(1, 1) == 1
    assert units_for(2, 2) == 1
    assert units_for(3, 2) == 2
    assert units_for(None, 2) == 1


def test_counts_paid_and_pending_separately():
    bookings = [_booking("paid", paid=True, expires_in=None), _booking(), _booking()]

    [slot] = enrich([_slot()], bookings, "potters_wheel", now=NOW)

    assert slot.paid_bookings_count == 1
    assert slot.total_bookings_count == 3
    assert slot.max_capacity == 6
    assert slot.available == 3
    assert slot.is_available


def test_paid_only_basis_ignores_pending():
    bookings = [_booking("paid", paid=True, expires_in=None), _booking(), _booking()]

    [slot] = enrich([_slot()], bookings, "potters_wheel", now=NOW, basis="paid_only")

    assert slot.total_bookings_count == 3
    assert slot.available == 5


def test_expired_and_cancelled_bookings_do_not_count():
    bookings = [
        _booking(expires_in=-1),
        _booking("expired"),
        _booking("cancelled"),
        _booking(),
    ]

    [slot] = enrich([_slot()], bookings, "potters_wheel", now=NOW)

    assert slot.total_bookings_count == 1
    assert slot.available == 5


def test_other_technique_on_same_time_is_ignored():
    bookings = [_booking(technique="molding"), _booking()]

    [slot] = enrich([_slot()], bookings, "potters_wheel", now=NOW)

    assert slot.total_bookings_count == 1


def test_untagged_booking_matches_on_date_and_time():
    [slot] = enrich([_slot()], [_booking(technique=None)], None, now=NOW)

    assert slot.total_bookings_count == 1


def test_pair_product_counts_couples_and_floors_capacity():
    bookings = [_booking(participants=2), _booking(participants=2)]

    [slot] = enrich([_slot(capacity=7)], bookings, "potters_wheel", now=NOW, unit_size=2)

    # 7 seats hold three couples; the seventh seat is never sold
    assert slot.max_capacity == 3
    assert slot.total_bookings_count == 2
    assert slot.available == 1


def test_capacity_zero_slot_is_unavailable():
    [slot] = enrich([_slot(capacity=0)], [], "potters_wheel", now=NOW)

    assert slot.available == 0
    assert not slot.is_available


def test_negative_availability_is_fatal():
    bookings = [_booking() for _ in range(3)]

    with pytest.raises(FatalInvariantException) as exc_info:
        enrich([_slot(capacity=2)], bookings, "potters_wheel", now=NOW)

    assert exc_info.value.details["consumed"] == 3
    assert exc_info.value.http_status == 500


def test_invalid_unit_size():
    with pytest.raises(ValidationException):
        enrich([_slot()], [], None, now=NOW, unit_size=0)


def test_enrich_does_not_mutate_slots():
    slots = [_slot()]
    enrich(slots, [_booking()], "potters_wheel", now=NOW)

    assert slots[0].capacity == 6


def test_fully_booked_marks_everything_unavailable():
    enriched = fully_booked([_slot(), _slot(time="19:00", capacity=4)])

    assert [s.available for s in enriched] == [0, 0]
    assert [s.total_bookings_count for s in enriched] == [6, 4]


def test_enrich_from_store_fails_closed():
    def broken_loader():
        raise RepositoryException("database went away")

    with pytest.raises(TransientStoreException) as exc_info:
        enrich_from_store([_slot()], broken_loader, "potters_wheel", now=NOW)

    fallback = exc_info.value.fallback
    assert len(fallback) == 1
    assert fallback[0].available == 0
    assert exc_info.value.http_status == 503


def test_enrich_from_store_uses_loader():
    calls = []

    def loader():
        calls.append(1)
        return [_booking()]

    [slot] = enrich_from_store([_slot()], loader, "potters_wheel", now=NOW)

    assert calls == [1]
    assert slot.available == 5


def test_consumed_seats_per_slot_identity():
    bookings = [
        _booking(participants=2),
        _booking("paid", paid=True, expires_in=None),
        _booking(technique="molding"),
        _booking("cancelled"),
    ]

    seats = consumed_seats(bookings, now=NOW)

    assert seats == {
        (TUESDAY.isoformat(), "18:00", "potters_wheel"): 3,
        (TUESDAY.isoformat(), "18:00", "molding"): 1,
    }
    assert consumed_seats(bookings, now=NOW, basis="paid_only") == {
        (TUESDAY.isoformat(), "18:00", "potters_wheel"): 1,
    }
