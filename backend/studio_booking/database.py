# backend/studio_booking/database.py
"""
Database engine, session factory, and metadata shared across the application.
"""

from __future__ import annotations

from datetime import datetime
import logging
import random
import time
from typing import Any, Callable, Generator, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import DeclarativeMeta, Session, declarative_base, sessionmaker

from .core.config import settings
from .core.exceptions import RepositoryException, TransientStoreException

logger = logging.getLogger(__name__)


Base: DeclarativeMeta = declarative_base()


def _build_engine_kwargs(db_url: str) -> dict[str, Any]:
    if db_url.startswith("sqlite"):
        return {
            "connect_args": {"check_same_thread": False, "timeout": 30},
            "future": True,
        }
    return {
        "pool_size": 10,
        "max_overflow": 5,
        # Fail fast when the pool is exhausted so callers get a retryable 503
        "pool_timeout": 2,
        "pool_recycle": 1800,
        "pool_pre_ping": True,
        "future": True,
        "connect_args": {"connect_timeout": 5, "application_name": "studio_booking"},
    }


def create_db_engine(db_url: str) -> Engine:
    return create_engine(db_url, **_build_engine_kwargs(db_url))


engine: Engine = create_db_engine(settings.get_database_url())


@event.listens_for(engine, "connect")
def receive_connect(dbapi_connection: Any, connection_record: Any) -> None:
    connection_record.info["connect_time"] = datetime.now()
    logger.debug("Database connection established")


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def get_db() -> Generator[Session, None, None]:
    """Get database session with proper cleanup."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


T = TypeVar("T")

_RETRYABLE_ERROR_SNIPPETS = (
    "server closed the connection",
    "ssl connection has been closed unexpectedly",
    "could not serialize access",
    "deadlock detected",
    "database is locked",
    "queuepool limit",
    "connection refused",
    "timeout",
)


def is_transient_store_error(exc: BaseException) -> bool:
    if isinstance(exc, TransientStoreException):
        return True
    if isinstance(exc, (OperationalError, DBAPIError)):
        if getattr(exc, "connection_invalidated", False):
            return True
    if isinstance(exc, (OperationalError, DBAPIError, RepositoryException)):
        message = str(exc).lower()
        return any(snippet in message for snippet in _RETRYABLE_ERROR_SNIPPETS)
    return False


def _retry_delay(attempt: int) -> float:
    base = settings.store_retry_base_delay_seconds * (2 ** (attempt - 1))
    return base + random.uniform(0, 0.05 * attempt)


def with_store_retry(
    op_name: str,
    func: Callable[[], T],
    *,
    max_attempts: int | None = None,
    on_retry: Callable[[], None] | None = None,
) -> T:
    """
    Execute a ledger operation with bounded retries for transient failures.

    Non-transient errors propagate untouched on the first attempt. When the
    attempts are exhausted the last transient error is raised as
    ``TransientStoreException`` so callers can distinguish retryable from fatal.
    """
    attempts = max_attempts or settings.store_retry_attempts
    attempt = 1
    while True:
        try:
            return func()
        except Exception as exc:
            if not is_transient_store_error(exc):
                raise
            if attempt >= attempts:
                logger.error(
                    "Transient store failure persisted, giving up",
                    extra={"event": "store_retry_exhausted", "op": op_name, "attempts": attempt},
                )
                if isinstance(exc, TransientStoreException):
                    raise
                raise TransientStoreException(
                    details={"operation": op_name, "error": str(exc)}
                ) from exc

            delay = _retry_delay(attempt)
            logger.warning(
                "Transient store failure detected, retrying",
                extra={
                    "event": "store_retry",
                    "op": op_name,
                    "attempt": attempt,
                    "delay": delay,
                    "error": str(exc),
                },
            )
            if on_retry is not None:
                on_retry()
            time.sleep(delay)
            attempt += 1


__all__ = [
    "Base",
    "SessionLocal",
    "create_db_engine",
    "engine",
    "get_db",
    "is_transient_store_error",
    "with_store_retry",
]
