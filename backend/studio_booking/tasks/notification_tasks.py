# backend/studio_booking/tasks/notification_tasks.py
"""
Notification delivery.

Message composition and channels live outside the engine; this task is the
hand-off point. It records the event and logs it for the downstream consumer.
"""

from typing import Any, Dict

from celery.utils.log import get_task_logger

from ..monitoring.prometheus_metrics import prometheus_metrics
from .celery_app import typed_task

logger = get_task_logger(__name__)


@typed_task(
    name="studio_booking.tasks.notification_tasks.deliver_notification",
    bind=True,
    max_retries=5,
    default_retry_delay=30,
)
def deliver_notification(self: Any, event_type: str, payload: Dict[str, Any]) -> str:
    """Deliver a single domain event."""
    logger.info(
        "Delivering %s (attempt %s)",
        event_type,
        self.request.retries + 1,
        extra={"event_type": event_type, "payload": payload},
    )
    prometheus_metrics.record_notification(event_type, "delivered")
    return event_type
