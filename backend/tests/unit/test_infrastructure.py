"""Store retries, slot locks, event publishing and the beat schedule."""

from datetime import datetime
import threading

import pytest
import pytz
from sqlalchemy.exc import OperationalError

from studio_booking.core.exceptions import (
    RepositoryException,
    TransientStoreException,
    ValidationException,
)
from studio_booking.core.slot_lock import giftcard_lock_key, slot_lock_key, slot_locks
from studio_booking.database import is_transient_store_error, with_store_retry
from studio_booking.events.booking_events import BookingExpired
from studio_booking.events.publisher import EventPublisher
from studio_booking.monitoring.prometheus_metrics import prometheus_metrics
from studio_booking.tasks.beat_schedule import CELERYBEAT_SCHEDULE, get_beat_schedule


class TestStoreRetry:
    def test_transient_errors_are_retried(self):
        calls = []
        rollbacks = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise OperationalError("SELECT 1", {}, Exception("database is locked"))
            return "ok"

        assert with_store_retry("flaky", flaky, max_attempts=3, on_retry=lambda: rollbacks.append(1)) == "ok"
        assert len(calls) == 3
        assert len(rollbacks) == 2

    def test_exhausted_retries_surface_as_transient(self):
        def always_down():
            raise RepositoryException("connection refused")

        with pytest.raises(TransientStoreException) as exc_info:
            with_store_retry("down", always_down, max_attempts=2)

        assert exc_info.value.details["operation"] == "down"

    def test_domain_errors_are_not_retried(self):
        calls = []

        def invalid():
            calls.append(1)
            raise ValidationException("bad input")

        with pytest.raises(ValidationException):
            with_store_retry("invalid", invalid, max_attempts=5)

        assert calls == [1]

    def test_classification(self):
        assert is_transient_store_error(TransientStoreException())
        assert is_transient_store_error(RepositoryException("deadlock detected"))
        assert not is_transient_store_error(RepositoryException("constraint failed"))
        assert not is_transient_store_error(ValueError("timeout"))


class TestSlotLocks:
    def test_key_formats(self):
        assert slot_lock_key("2025-03-04", "18:00", "potters_wheel") == "slot:2025-03-04:18:00:potters_wheel"
        assert slot_lock_key("2025-03-04", "18:00", None) == "slot:2025-03-04:18:00:*"
        assert giftcard_lock_key("abc") == "giftcard:abc"

    def test_keys_are_sorted_and_deduplicated(self):
        with slot_locks(["slot:b", "slot:a", "slot:b"]) as held:
            assert held == ["slot:a", "slot:b"]

    def test_timeout_is_a_retryable_error(self):
        acquired = threading.Event()
        release = threading.Event()

        def holder():
            with slot_locks(["slot:contended"]):
                acquired.set()
                release.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        try:
            acquired.wait(5)
            with pytest.raises(TransientStoreException) as exc_info:
                with slot_locks(["slot:contended"], timeout_s=0.05):
                    pass
            assert exc_info.value.details["lock_key"] == "slot:contended"
        finally:
            release.set()
            thread.join()

    def test_locks_are_released_on_error(self):
        with pytest.raises(RuntimeError):
            with slot_locks(["slot:released"]):
                raise RuntimeError("boom")

        with slot_locks(["slot:released"], timeout_s=0.05) as held:
            assert held == ["slot:released"]


class TestEventPublisher:
    def _event(self):
        return BookingExpired(
            booking_id="b1",
            booking_code="C-ALMA-TEST0001",
            expired_at=datetime(2025, 3, 3, 11, 0, tzinfo=pytz.UTC),
        )

    def test_disabled_publisher_logs_only(self):
        publisher = EventPublisher(enabled=False)

        assert publisher.publish(self._event())
        assert publisher.published == ["BookingExpired"]

    def test_enabled_publisher_hands_event_to_worker(self, monkeypatch):
        from studio_booking.tasks import notification_tasks

        sent = []
        monkeypatch.setattr(
            notification_tasks.deliver_notification,
            "delay",
            lambda event_type, payload: sent.append((event_type, payload)),
        )

        assert EventPublisher(enabled=True).publish(self._event())

        [(event_type, payload)] = sent
        assert event_type == "event:BookingExpired"
        assert payload["expired_at"] == "2025-03-03T11:00:00+00:00"

    def test_delivery_failure_is_swallowed(self, monkeypatch):
        from studio_booking.tasks import notification_tasks

        def broken(*_args):
            raise ConnectionError("broker down")

        monkeypatch.setattr(notification_tasks.deliver_notification, "delay", broken)
        publisher = EventPublisher(enabled=True)

        assert publisher.publish(self._event()) is False
        assert publisher.published == []

    def test_notification_task_runs_inline(self):
        from studio_booking.tasks.notification_tasks import deliver_notification

        result = deliver_notification.apply(args=("event:BookingExpired", {"booking_id": "b1"}))

        assert result.get() == "event:BookingExpired"


class TestBeatSchedule:
    def test_every_sweep_is_scheduled(self):
        tasks = {entry["task"] for entry in CELERYBEAT_SCHEDULE.values()}

        assert tasks == {
            "studio_booking.tasks.expiry_tasks.expire_stale_bookings",
            "studio_booking.tasks.expiry_tasks.expire_stale_holds",
            "studio_booking.tasks.expiry_tasks.notify_expiring_holds",
        }

    def test_non_production_uses_default_queue(self):
        schedule = get_beat_schedule("development")

        assert {entry["options"]["queue"] for entry in schedule.values()} == {"celery"}
        assert CELERYBEAT_SCHEDULE["expire-stale-giftcard-holds"]["options"]["queue"] == "maintenance"

    def test_production_keeps_dedicated_queues(self):
        schedule = get_beat_schedule("production")

        assert schedule["notify-expiring-giftcard-holds"]["options"]["queue"] == "notifications"


def test_metrics_exposition_includes_engine_counters():
    prometheus_metrics.record_capacity_conflict("flexible")

    body = prometheus_metrics.get_metrics().decode()

    assert "capacity_conflicts_total" in body


class TestExpiryTasks:
    @pytest.fixture(autouse=True)
    def _task_sessions(self, engine, monkeypatch):
        from sqlalchemy.orm import sessionmaker

        from studio_booking.tasks import expiry_tasks

        monkeypatch.setattr(
            expiry_tasks,
            "SessionLocal",
            sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False),
        )

    def test_hold_sweep_task(self, db):
        from studio_booking.services.giftcard_hold_service import GiftcardHoldService
        from studio_booking.tasks.expiry_tasks import expire_stale_holds
        from tests.factories import NOW, make_giftcard

        card = make_giftcard(db)
        GiftcardHoldService(db).create_hold(amount_cents=1000, giftcard_id=card.id, ttl_minutes=5, now=NOW)

        assert expire_stale_holds.apply().get() == 1
        assert expire_stale_holds.apply().get() == 0

    def test_booking_sweep_task_with_nothing_to_do(self):
        from studio_booking.tasks.expiry_tasks import expire_stale_bookings

        assert expire_stale_bookings.apply().get() == 0
