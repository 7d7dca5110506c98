# backend/studio_booking/tasks/beat_schedule.py
"""
Celery Beat schedule for the booking engine.

Expiry is also applied lazily when a booking is read, so the sweeps only need
to keep capacity and gift card balances tidy between reads.
"""

from typing import Any, Dict

from celery.schedules import crontab

CELERYBEAT_SCHEDULE: Dict[str, Dict[str, Any]] = {
    "expire-stale-pre-reservations": {
        "task": "studio_booking.tasks.expiry_tasks.expire_stale_bookings",
        "schedule": crontab(minute="*"),
        "options": {"queue": "maintenance", "priority": 6},
    },
    "expire-stale-giftcard-holds": {
        "task": "studio_booking.tasks.expiry_tasks.expire_stale_holds",
        "schedule": crontab(minute="*"),
        "options": {"queue": "maintenance", "priority": 6},
    },
    "notify-expiring-giftcard-holds": {
        "task": "studio_booking.tasks.expiry_tasks.notify_expiring_holds",
        "schedule": crontab(minute="*"),
        "options": {"queue": "notifications", "priority": 4},
    },
}


def get_beat_schedule(environment: str = "development") -> Dict[str, Dict[str, Any]]:
    """Return the schedule for ``environment``. Non-production runs everything on the default queue."""
    if environment == "production":
        return dict(CELERYBEAT_SCHEDULE)
    schedule: Dict[str, Dict[str, Any]] = {}
    for name, entry in CELERYBEAT_SCHEDULE.items():
        options = {**entry.get("options", {}), "queue": "celery"}
        schedule[name] = {**entry, "options": options}
    return schedule
