# backend/studio_booking/services/no_refund_policy.py
"""
No-refund boundary.

A booking whose earliest class starts less than ``horizon_hours`` from now
cannot be refunded or rescheduled, so the customer must accept that
explicitly. The predicate is recomputed server-side at the summary step and
again at submission; a client-side flag is never trusted.
"""

from datetime import datetime, timedelta
import logging
from typing import Any, Iterable, List, Optional

from ..core.config import settings
from ..core.exceptions import PolicyViolationException
from ..core.timezone_utils import ensure_utc, slot_start_utc, utc_now
from ..domain.slots import parse_slot_date

logger = logging.getLogger(__name__)


def _slot_starts(slots: Iterable[Any]) -> List[datetime]:
    starts = []
    for slot in slots:
        if isinstance(slot, dict):
            starts.append(slot_start_utc(parse_slot_date(slot.get("date")), str(slot.get("time"))))
        else:
            starts.append(slot_start_utc(slot.date, slot.time))
    return starts


def requires_no_refund_acceptance(
    slots: Iterable[Any],
    horizon_hours: Optional[int] = None,
    *,
    now: Optional[datetime] = None,
) -> bool:
    """
    True when any slot starts less than ``horizon_hours`` after ``now``.

    Slots may be ``Slot``/``SlotRef`` objects or persisted ``{date, time}`` dicts.
    """
    horizon = timedelta(hours=settings.no_refund_horizon_hours if horizon_hours is None else horizon_hours)
    evaluated_at = ensure_utc(now) if now is not None else utc_now()
    return any(start - evaluated_at < horizon for start in _slot_starts(slots))


def earliest_start(slots: Iterable[Any]) -> Optional[datetime]:
    starts = _slot_starts(slots)
    return min(starts) if starts else None


def enforce_no_refund_acknowledgement(
    slots: Iterable[Any],
    accepted: bool,
    *,
    now: Optional[datetime] = None,
    horizon_hours: Optional[int] = None,
) -> bool:
    """
    Return whether the booking is flagged; raise if flagged and not accepted.

    Raises:
        PolicyViolationException: flagged booking without ``accepted_no_refund``
    """
    slot_list = list(slots)
    horizon = settings.no_refund_horizon_hours if horizon_hours is None else horizon_hours
    flagged = requires_no_refund_acceptance(slot_list, horizon, now=now)
    if flagged and not accepted:
        first = earliest_start(slot_list)
        logger.info(
            "Rejected booking inside no-refund horizon without acknowledgement",
            extra={"horizon_hours": horizon, "earliest_slot": first.isoformat() if first else None},
        )
        raise PolicyViolationException(horizon, first.isoformat() if first else None)
    return flagged
