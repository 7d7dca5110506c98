"""
A Tuesday 18:00 wheel class followed through three customers: a plain
booking, an abandoned gift card booking, and a monthly package that runs into
a sold-out third week.
"""

from datetime import timedelta

import pytest

from studio_booking.core.enums import BookingMode, PaymentMethod, ProductType
from studio_booking.core.exceptions import CapacityConflictException
from studio_booking.domain.context import BookingRequestContext
from studio_booking.domain.slots import SlotRef
from studio_booking.models.booking import Booking
from studio_booking.services.availability_service import AvailabilityService
from studio_booking.services.booking_service import BookingService, PaymentInput
from studio_booking.services.giftcard_hold_service import GiftcardHoldService
from tests.factories import NOW, TUESDAY, customer, make_giftcard, make_product, make_rule

CLASS_DAY = TUESDAY + timedelta(days=7)


def _ctx(product, index, refs, *, mode=BookingMode.FLEXIBLE, now=NOW, **fields):
    return BookingRequestContext(
        product_id=product.id,
        mode=mode,
        chosen_slots=refs,
        customer_info=customer(index),
        now=now,
        **fields,
    )


def _slot_on(availability, product, on_date, now):
    window = availability.list_available_slots(product.id, start=on_date, days=1, now=now)
    [slot] = window.slots
    return slot


def test_tuesday_class(db, publisher):
    make_rule(db, day_of_week=1, time="18:00", capacity=6)
    single = make_product(db, price_cents=6000)
    monthly = make_product(db, product_type=ProductType.CLASS_PACKAGE, classes=4, price_cents=20000)
    bookings = BookingService(db, publisher=publisher)
    holds = GiftcardHoldService(db, publisher=publisher)
    availability = AvailabilityService(db)
    tuesday_18 = [SlotRef(CLASS_DAY, "18:00")]

    # A books one flexible slot and pays at the desk
    booked = bookings.submit_booking(_ctx(single, 0, tuesday_18))
    bookings.confirm_payment(booked.booking.id, PaymentInput(amount_cents=6000, method=PaymentMethod.CASH), now=NOW)
    assert _slot_on(availability, single, CLASS_DAY, NOW).available == 5

    # B holds a 50.00 gift card against the booking, then never pays the rest
    card = make_giftcard(db, code="GIFT-B", value_cents=5000)
    hold = holds.create_hold(amount_cents=5000, giftcard_id=card.id, now=NOW)
    abandoned = bookings.submit_booking(_ctx(single, 1, tuesday_18, giftcard_hold_id=hold.id))
    assert abandoned.pending_balance_cents == 1000
    assert holds.get_balance("GIFT-B", now=NOW)["available_cents"] == 0
    assert _slot_on(availability, single, CLASS_DAY, NOW).total_bookings_count == 2

    after_ttl = NOW + timedelta(minutes=121)
    assert bookings.expire_stale_bookings(now=after_ttl) == 1
    balance = holds.get_balance("GIFT-B", now=after_ttl)
    assert balance["balance_cents"] == 5000
    assert balance["available_cents"] == 5000
    assert _slot_on(availability, single, CLASS_DAY, after_ttl).total_bookings_count == 1

    # Week 3 sells out with paid bookings
    week_3 = CLASS_DAY + timedelta(days=14)
    for index in range(10, 16):
        booked = bookings.submit_booking(_ctx(single, index, [SlotRef(week_3, "18:00")], now=after_ttl))
        bookings.confirm_payment(
            booked.booking.id,
            PaymentInput(amount_cents=6000, method=PaymentMethod.CARD),
            now=after_ttl,
        )
    sold_out = _slot_on(availability, single, week_3, after_ttl)
    assert sold_out.paid_bookings_count == 6
    assert sold_out.available == 0

    # C's monthly selection is rejected as a whole
    before = db.query(Booking).count()
    with pytest.raises(CapacityConflictException):
        bookings.submit_booking(_ctx(monthly, 2, tuesday_18, mode=BookingMode.MONTHLY, now=after_ttl))
    assert db.query(Booking).count() == before
    assert _slot_on(availability, single, CLASS_DAY, after_ttl).available == 5
