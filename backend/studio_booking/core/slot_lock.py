"""
Per-key mutual exclusion for capacity and gift card decisions.

Keys look like ``slot:2025-03-04:18:00:molding`` or ``giftcard:<id>``. With a
Redis URL configured the locks are shared across processes; otherwise a
process-local registry of ``threading.Lock`` objects is used. Unlike a
best-effort lock, a timeout here is surfaced to the caller as a retryable
error, never treated as acquired.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
from typing import Any, Iterable, Iterator, List, Optional

from redis import Redis

from ..monitoring.prometheus_metrics import prometheus_metrics
from .config import settings
from .exceptions import TransientStoreException

logger = logging.getLogger(__name__)

_SYNC_REDIS: Optional[Redis] = None
_SYNC_REDIS_CHECKED = False
_SYNC_REDIS_LOCK = threading.Lock()

_LOCAL_LOCKS: dict[str, threading.Lock] = {}
_LOCAL_REGISTRY_LOCK = threading.Lock()


def _namespaced_key(key: str) -> str:
    return f"studio:lock:{key}"


def _get_sync_redis() -> Optional[Redis]:
    global _SYNC_REDIS, _SYNC_REDIS_CHECKED
    if _SYNC_REDIS_CHECKED:
        return _SYNC_REDIS
    with _SYNC_REDIS_LOCK:
        if _SYNC_REDIS_CHECKED:
            return _SYNC_REDIS
        _SYNC_REDIS_CHECKED = True
        if not settings.redis_url:
            return None
        try:
            client = Redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            client.ping()
        except Exception as exc:
            logger.warning("slot_lock_redis_unavailable: %s", exc)
            return None
        _SYNC_REDIS = client
        return _SYNC_REDIS


def _local_lock(key: str) -> threading.Lock:
    with _LOCAL_REGISTRY_LOCK:
        lock = _LOCAL_LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _LOCAL_LOCKS[key] = lock
        return lock


def _acquire_one(key: str, timeout_s: float, ttl_s: int) -> Any:
    client = _get_sync_redis()
    if client is not None:
        lock = client.lock(_namespaced_key(key), timeout=ttl_s, blocking_timeout=timeout_s)
        acquired = bool(lock.acquire(blocking=True))
    else:
        lock = _local_lock(key)
        acquired = lock.acquire(timeout=timeout_s)
    if not acquired:
        prometheus_metrics.record_slot_lock("acquire", "timeout")
        return None
    prometheus_metrics.record_slot_lock("acquire", "success")
    return lock


def _release_one(key: str, lock: Any) -> None:
    try:
        lock.release()
        prometheus_metrics.record_slot_lock("release", "success")
    except Exception as exc:
        # Redis locks can lapse after their TTL; the holder has already finished.
        prometheus_metrics.record_slot_lock("release", "error")
        logger.warning(
            "slot_lock_release_failed",
            extra={"lock_key": key, "error": str(exc), "error_type": type(exc).__name__},
        )


@contextmanager
def slot_locks(
    keys: Iterable[str],
    *,
    timeout_s: Optional[float] = None,
    ttl_s: Optional[int] = None,
) -> Iterator[List[str]]:
    """
    Hold every lock in ``keys`` for the duration of the block.

    Keys are de-duplicated and acquired in sorted order so two callers that
    need overlapping sets cannot deadlock.

    Raises:
        TransientStoreException: if any lock cannot be acquired in time
    """
    ordered = sorted(set(keys))
    wait = settings.slot_lock_timeout_seconds if timeout_s is None else timeout_s
    ttl = settings.slot_lock_ttl_seconds if ttl_s is None else ttl_s
    held: list[tuple[str, Any]] = []
    try:
        for key in ordered:
            lock = _acquire_one(key, wait, ttl)
            if lock is None:
                logger.warning("slot_lock_timeout", extra={"lock_key": key, "timeout_s": wait})
                raise TransientStoreException(
                    "Another booking is being processed for this slot, please retry",
                    details={"lock_key": key},
                )
            held.append((key, lock))
        yield ordered
    finally:
        for key, lock in reversed(held):
            _release_one(key, lock)


def slot_lock_key(slot_date: str, slot_time: str, technique: Optional[str]) -> str:
    return f"slot:{slot_date}:{slot_time}:{technique or '*'}"


def giftcard_lock_key(giftcard_id: str) -> str:
    return f"giftcard:{giftcard_id}"
