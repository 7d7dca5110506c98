from datetime import date, datetime, timedelta

import pytest
import pytz

from studio_booking.core.exceptions import PolicyViolationException
from studio_booking.domain.slots import Slot, SlotRef
from studio_booking.services.no_refund_policy import (
    earliest_start,
    enforce_no_refund_acknowledgement,
    requires_no_refund_acceptance,
)

NOW = datetime(2025, 3, 3, 9, 0, tzinfo=pytz.UTC)


def _ref_at(delta: timedelta) -> SlotRef:
    start = NOW + delta
    return SlotRef(start.date(), start.strftime("%H:%M"))


def test_slot_inside_horizon_requires_acceptance():
    assert requires_no_refund_acceptance([_ref_at(timedelta(hours=47))], 48, now=NOW)


def test_slot_exactly_at_horizon_does_not():
    assert not requires_no_refund_acceptance([_ref_at(timedelta(hours=48))], 48, now=NOW)


def test_any_slot_inside_horizon_flags_the_booking():
    slots = [_ref_at(timedelta(days=10)), _ref_at(timedelta(hours=2))]

    assert requires_no_refund_acceptance(slots, 48, now=NOW)


def test_accepts_persisted_dicts_and_slots():
    start = NOW + timedelta(hours=30)
    persisted = [{"date": start.date().isoformat(), "time": start.strftime("%H:%M")}]
    generated = [Slot(date=start.date(), time=start.strftime("%H:%M"))]

    assert requires_no_refund_acceptance(persisted, 48, now=NOW)
    assert requires_no_refund_acceptance(generated, 48, now=NOW)


def test_no_slots_never_flags():
    assert not requires_no_refund_acceptance([], 48, now=NOW)
    assert earliest_start([]) is None


def test_wall_time_is_read_in_studio_timezone(monkeypatch):
    from studio_booking.core.config import settings

    monkeypatch.setattr(settings, "studio_timezone", "Europe/Madrid")
    # 18:00 in Madrid on 4 March is 17:00 UTC, 32 hours after NOW
    slots = [SlotRef(date(2025, 3, 4), "18:00")]

    assert earliest_start(slots) == datetime(2025, 3, 4, 17, 0, tzinfo=pytz.UTC)
    assert requires_no_refund_acceptance(slots, 32, now=NOW) is False
    assert requires_no_refund_acceptance(slots, 33, now=NOW) is True


def test_enforce_raises_without_acceptance():
    with pytest.raises(PolicyViolationException) as exc_info:
        enforce_no_refund_acknowledgement([_ref_at(timedelta(hours=47))], False, now=NOW, horizon_hours=48)

    assert exc_info.value.code == "NO_REFUND_ACK_REQUIRED"


def test_enforce_returns_flag():
    inside = [_ref_at(timedelta(hours=47))]
    outside = [_ref_at(timedelta(hours=72))]

    assert enforce_no_refund_acknowledgement(inside, True, now=NOW, horizon_hours=48) is True
    assert enforce_no_refund_acknowledgement(outside, False, now=NOW, horizon_hours=48) is False


def test_predicate_is_pure():
    slots = [_ref_at(timedelta(hours=47))]

    results = {requires_no_refund_acceptance(slots, 48, now=NOW) for _ in range(3)}

    assert results == {True}
    assert slots == [_ref_at(timedelta(hours=47))]
