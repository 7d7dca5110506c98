# backend/studio_booking/tasks/celery_app.py
"""
Celery application for the booking engine.

Redis is the broker and result backend. Workers run the expiry sweeps on the
beat schedule and deliver notification events handed over by the
``EventPublisher``.
"""

import logging
import os
from typing import Any, Callable, Dict, Type, TypeVar, cast

from celery import Celery, Task
from celery.signals import setup_logging

from ..core.config import settings

F = TypeVar("F", bound=Callable[..., Any])


def _broker_url() -> str:
    # Priority: CELERY_BROKER_URL -> REDIS_URL -> settings.redis_url -> default
    url = (
        os.getenv("CELERY_BROKER_URL")
        or os.getenv("REDIS_URL")
        or settings.redis_url
        or "redis://localhost:6379"
    )
    if not any(url.endswith(f"/{i}") for i in range(16)):
        url = f"{url}/0"
    return url


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Returns:
        Celery: Configured Celery application instance
    """
    broker_url = _broker_url()
    celery_app = Celery(
        "studio_booking",
        broker=broker_url,
        backend=os.getenv("CELERY_RESULT_BACKEND") or broker_url,
    )

    celery_app.conf.update(
        {
            "task_serializer": "json",
            "accept_content": ["json"],
            "result_serializer": "json",
            "timezone": settings.studio_timezone,
            "enable_utc": True,
            "worker_prefetch_multiplier": 4,
            "worker_max_tasks_per_child": 1000,
            # Sweeps run every minute; a stuck run must not overlap the next one for long
            "task_soft_time_limit": 50,
            "task_time_limit": 120,
            "task_acks_late": True,
            "task_reject_on_worker_lost": True,
            "task_default_retry_delay": 30,
            "task_max_retries": 3,
            "worker_hijack_root_logger": False,
            "worker_redirect_stdouts": True,
            "worker_redirect_stdouts_level": "INFO",
            # Tests run tasks inline
            "task_always_eager": settings.is_testing,
        }
    )

    celery_app.conf.imports = tuple(
        set(celery_app.conf.imports or ())
        | {
            "studio_booking.tasks.expiry_tasks",
            "studio_booking.tasks.notification_tasks",
        }
    )

    celery_app.conf.task_routes = {
        "studio_booking.tasks.expiry_tasks.*": {"queue": "maintenance"},
        "studio_booking.tasks.notification_tasks.*": {"queue": "notifications"},
    }

    from .beat_schedule import get_beat_schedule

    celery_app.conf.beat_schedule = get_beat_schedule(settings.environment)

    return celery_app


@setup_logging.connect  # type: ignore[misc]
def config_loggers(*args: Any, **kwargs: Any) -> None:
    """Keep worker logs in the application's format."""
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


celery_app = create_celery_app()


class BaseTask(Task):  # type: ignore[misc]
    """Base task with failure and retry logging."""

    autoretry_for = (Exception,)
    retry_kwargs = {"max_retries": 3, "countdown": 30}
    retry_backoff = True
    retry_backoff_max = 300
    retry_jitter = True

    def on_failure(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logging.getLogger(__name__).error(
            f"Task {self.name}[{task_id}] failed with exception: {exc}",
            exc_info=True,
            extra={"task_id": task_id, "task_name": self.name},
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logging.getLogger(__name__).warning(
            f"Task {self.name}[{task_id}] retry {self.request.retries} due to: {exc}",
            extra={
                "task_id": task_id,
                "task_name": self.name,
                "retry_count": self.request.retries,
            },
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)


celery_app.Task = cast(Type[Task], BaseTask)


def typed_task(*task_args: Any, **task_kwargs: Any) -> Callable[[F], F]:
    """``celery_app.task`` with the decorated function's signature preserved for type checkers."""
    return cast(Callable[[F], F], celery_app.task(*task_args, **task_kwargs))


@typed_task(name="studio_booking.tasks.health_check")
def health_check() -> Dict[str, str]:
    from datetime import datetime, timezone

    current_task = celery_app.current_task
    return {
        "status": "healthy",
        "worker": current_task.request.hostname if current_task else "unknown",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
