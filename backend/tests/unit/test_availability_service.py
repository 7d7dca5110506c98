from datetime import timedelta

import pytest

from studio_booking.core.config import settings
from studio_booking.core.enums import BookingMode, ProductType
from studio_booking.core.exceptions import (
    NotFoundException,
    RepositoryException,
    TransientStoreException,
    ValidationException,
)
from studio_booking.domain.slots import SlotRef
from studio_booking.models.booking import Booking
from studio_booking.services.availability_service import AvailabilityService
from tests.factories import NOW, TUESDAY, make_override, make_product, make_rule


@pytest.fixture
def availability(db):
    return AvailabilityService(db)


@pytest.fixture
def package(db):
    make_rule(db, day_of_week=1, time="18:00", capacity=6)
    make_rule(db, day_of_week=3, time="11:00", capacity=6)
    return make_product(db, product_type=ProductType.CLASS_PACKAGE, classes=4, price_cents=16000)


def test_window_starts_today_and_is_bounded(db, availability, package):
    window = availability.list_available_slots(package.id, start=NOW.date() - timedelta(days=30), days=14, now=NOW)

    assert window.window_start == NOW.date()
    assert window.window_end == NOW.date() + timedelta(days=14)
    assert [s.slot.date.weekday() for s in window.slots] == [1, 3, 1, 3]


def test_days_capped_at_configured_window(db, availability, package, monkeypatch):
    monkeypatch.setattr(settings, "availability_window_days", 7)

    window = availability.list_available_slots(package.id, days=60, now=NOW)

    assert (window.window_end - window.window_start).days == 7


def test_inactive_or_unknown_product(db, availability):
    product = make_product(db)
    product.is_active = False
    db.commit()

    with pytest.raises(NotFoundException):
        availability.list_available_slots(product.id, now=NOW)
    with pytest.raises(NotFoundException):
        availability.list_available_slots("missing", now=NOW)


def test_monthly_view_takes_minimum_across_weeks(db, availability, package):
    make_override(db, TUESDAY + timedelta(days=14), technique="potters_wheel", capacity=0)

    window = availability.list_available_slots(
        package.id, start=TUESDAY, days=7, mode=BookingMode.MONTHLY, now=NOW
    )

    by_day = {s.slot.date: s.available for s in window.slots}
    # The Tuesday chain runs into the blocked third week; Thursday's does not
    assert by_day[TUESDAY] == 0
    assert by_day[TUESDAY + timedelta(days=2)] == 6


def test_monthly_listing_needs_monthly_product(db, availability):
    make_rule(db)
    single = make_product(db)

    with pytest.raises(ValidationException) as exc_info:
        availability.list_available_slots(single.id, mode=BookingMode.MONTHLY, now=NOW)

    assert exc_info.value.code == "MODE_NOT_SUPPORTED"


def test_validate_selection_never_persists(db, availability, package):
    refs = [SlotRef(TUESDAY + timedelta(days=7), "18:00")]

    outcome = availability.validate_selection(package.id, BookingMode.MONTHLY, refs, now=NOW)

    assert outcome.ok
    assert len(outcome.slots) == 4
    assert not outcome.requires_no_refund_ack
    assert db.query(Booking).count() == 0


def test_validate_selection_flags_no_refund(db, availability, package):
    outcome = availability.validate_selection(
        package.id, BookingMode.MONTHLY, [SlotRef(TUESDAY, "18:00")], now=NOW
    )

    assert outcome.ok
    assert outcome.requires_no_refund_ack


def test_listing_fails_closed_when_ledger_unavailable(db, availability, package, monkeypatch):
    def broken(**_kwargs):
        raise RepositoryException("could not connect: timeout")

    monkeypatch.setattr(availability.booking_repository, "get_capacity_holding_bookings", broken)
    monkeypatch.setattr(settings, "store_retry_attempts", 2)

    with pytest.raises(TransientStoreException) as exc_info:
        availability.list_available_slots(package.id, start=TUESDAY, days=7, now=NOW)

    assert exc_info.value.fallback
    assert all(s.available == 0 for s in exc_info.value.fallback)
