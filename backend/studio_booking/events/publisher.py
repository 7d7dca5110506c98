"""Event publisher - hands domain events to the notification worker."""

from datetime import datetime
import logging
from typing import Any, Dict, List, Protocol

from ..core.config import settings

logger = logging.getLogger(__name__)


class Event(Protocol):
    """Protocol for event types."""

    def to_dict(self) -> Dict[str, Any]:
        ...


def _serialize(payload: Dict[str, Any]) -> Dict[str, Any]:
    # Celery uses JSON; datetimes go over the wire as ISO strings
    for key, value in payload.items():
        if isinstance(value, datetime):
            payload[key] = value.isoformat()
    return payload


class EventPublisher:
    """
    Best-effort, fire-and-forget publisher.

    A failure to publish is logged and swallowed: the booking it describes has
    already been committed and must not be rolled back over a notification.
    """

    def __init__(self, enabled: bool | None = None):
        self.enabled = settings.notifications_enabled if enabled is None else enabled
        self.published: List[str] = []

    def publish(self, event: Event) -> bool:
        event_type = type(event).__name__
        try:
            payload = _serialize(event.to_dict())
            if self.enabled:
                from ..tasks.notification_tasks import deliver_notification

                deliver_notification.delay(f"event:{event_type}", payload)
            else:
                logger.info(
                    "Notification event (delivery disabled): %s",
                    event_type,
                    extra={"event_type": event_type, "payload": payload},
                )
            self.published.append(event_type)
            return True
        except Exception as exc:
            logger.warning(
                "Failed to publish %s: %s",
                event_type,
                exc,
                extra={"event_type": event_type, "error_type": type(exc).__name__},
            )
            return False
