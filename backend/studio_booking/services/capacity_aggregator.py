# backend/studio_booking/services/capacity_aggregator.py
"""
Capacity aggregator.

Joins generated slots with the booking ledger. Counts are expressed in
consumption units: for pair products one couple is one unit, and a slot's
seat capacity is floored to whole units so a fractional unit is never sold.

``enrich`` is pure. ``enrich_from_store`` wraps the ledger read and fails
closed: if bookings cannot be loaded the caller gets a retryable error whose
fallback marks every slot as fully booked.
"""

from collections import defaultdict
from datetime import datetime
import logging
import math
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..core.config import settings
from ..core.enums import BookingStatus, ConsumptionBasis
from ..core.exceptions import (
    FatalInvariantException,
    RepositoryException,
    TransientStoreException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc
from ..database import with_store_retry
from ..domain.products import normalize_technique
from ..domain.slots import EnrichedSlot, Slot

logger = logging.getLogger(__name__)

# (date iso, time) -> technique -> [paid units, pending units]
_Ledger = Dict[Tuple[str, str], Dict[Optional[str], List[int]]]


def units_for(participants: Optional[int], unit_size: int) -> int:
    """Units one booking consumes on each of its slots."""
    return max(1, math.ceil(max(1, int(participants or 1)) / unit_size))


def _booking_state(booking: Any, now: datetime) -> Optional[str]:
    status = getattr(booking, "status", None)
    if status == BookingStatus.PAID.value:
        return "paid"
    if status != BookingStatus.PRE_RESERVED.value:
        return None
    if getattr(booking, "is_paid", False):
        return "paid"
    expires_at = ensure_utc(getattr(booking, "expires_at", None))
    if expires_at is not None and expires_at <= now:
        return None
    return "pending"


def _build_ledger(
    bookings: Iterable[Any],
    *,
    technique: Optional[str],
    now: datetime,
    unit_size: int,
) -> _Ledger:
    ledger: _Ledger = defaultdict(lambda: defaultdict(lambda: [0, 0]))
    for booking in bookings:
        state = _booking_state(booking, now)
        if state is None:
            continue
        booking_technique = normalize_technique(getattr(booking, "technique", None))
        if technique and booking_technique and booking_technique != technique:
            continue
        units = units_for(getattr(booking, "participants", 1), unit_size)
        index = 0 if state == "paid" else 1
        for raw in getattr(booking, "slots", None) or []:
            counts = ledger[(str(raw.get("date")), str(raw.get("time")))][booking_technique]
            counts[index] += units
    return ledger


def _counts_for(slot: Slot, ledger: _Ledger) -> Tuple[int, int]:
    per_technique = ledger.get((slot.date.isoformat(), slot.time))
    if not per_technique:
        return 0, 0
    paid = pending = 0
    for booking_technique, (paid_units, pending_units) in per_technique.items():
        # Untagged bookings or slots match on date and time alone
        if slot.technique and booking_technique and booking_technique != slot.technique:
            continue
        paid += paid_units
        pending += pending_units
    return paid, pending


def enrich(
    slots: Sequence[Slot],
    bookings: Iterable[Any],
    technique: Optional[str] = None,
    *,
    now: datetime,
    unit_size: int = 1,
    basis: Optional[str] = None,
) -> List[EnrichedSlot]:
    """
    Attach live ledger counts to each slot.

    Raises:
        ValidationException: if ``unit_size`` is not positive
        FatalInvariantException: if any slot would end up with negative availability
    """
    if unit_size < 1:
        raise ValidationException("Capacity unit size must be at least 1", code="INVALID_UNIT_SIZE")
    consumption = ConsumptionBasis(basis or settings.capacity_consumption_basis)
    now_utc = ensure_utc(now)
    ledger = _build_ledger(
        bookings, technique=normalize_technique(technique), now=now_utc, unit_size=unit_size
    )

    enriched: List[EnrichedSlot] = []
    for slot in slots:
        paid, pending = _counts_for(slot, ledger)
        total = paid + pending
        max_capacity = max(0, int(slot.capacity)) // unit_size
        consumed = paid if consumption == ConsumptionBasis.PAID_ONLY else total
        available = max_capacity - consumed
        if available < 0:
            logger.critical(
                "Negative availability computed for slot %s %s %s",
                slot.date.isoformat(),
                slot.time,
                slot.technique,
                extra={
                    "event": "capacity_invariant_violated",
                    "max_capacity": max_capacity,
                    "paid_units": paid,
                    "total_units": total,
                    "basis": consumption.value,
                },
            )
            raise FatalInvariantException(
                "Slot capacity is oversubscribed",
                details={
                    "date": slot.date.isoformat(),
                    "time": slot.time,
                    "technique": slot.technique,
                    "max_capacity": max_capacity,
                    "consumed": consumed,
                },
            )
        enriched.append(
            EnrichedSlot(
                slot=slot,
                paid_bookings_count=paid,
                total_bookings_count=total,
                max_capacity=max_capacity,
                available=available,
            )
        )
    return enriched


def fully_booked(slots: Sequence[Slot], unit_size: int = 1) -> List[EnrichedSlot]:
    """Fail-closed rendering used when the ledger is unreachable."""
    result = []
    for slot in slots:
        max_capacity = max(0, int(slot.capacity)) // max(1, unit_size)
        result.append(
            EnrichedSlot(
                slot=slot,
                paid_bookings_count=0,
                total_bookings_count=max_capacity,
                max_capacity=max_capacity,
                available=0,
            )
        )
    return result


def enrich_from_store(
    slots: Sequence[Slot],
    load_bookings: Callable[[], List[Any]],
    technique: Optional[str] = None,
    *,
    now: datetime,
    unit_size: int = 1,
    basis: Optional[str] = None,
) -> List[EnrichedSlot]:
    """
    Load the ledger with bounded retries, then enrich.

    Raises:
        TransientStoreException: ledger unavailable; ``fallback`` holds every
            slot marked fully booked
    """
    try:
        bookings = with_store_retry("load_booking_ledger", load_bookings)
    except (TransientStoreException, RepositoryException) as exc:
        logger.error(
            "Booking ledger unavailable, treating slots as fully booked",
            extra={"event": "capacity_fail_closed", "slot_count": len(slots), "error": str(exc)},
        )
        raise TransientStoreException(
            "Availability is temporarily unavailable, please retry",
            details={"reason": "ledger_unavailable"},
            fallback=fully_booked(slots, unit_size),
        ) from exc
    return enrich(slots, bookings, technique, now=now, unit_size=unit_size, basis=basis)


def consumed_seats(
    bookings: Iterable[Any],
    *,
    now: datetime,
    basis: Optional[str] = None,
) -> Dict[Tuple[str, str, Optional[str]], int]:
    """Seats held per ``(date iso, time, technique)`` under the consumption basis."""
    consumption = ConsumptionBasis(basis or settings.capacity_consumption_basis)
    ledger = _build_ledger(bookings, technique=None, now=ensure_utc(now), unit_size=1)
    seats: Dict[Tuple[str, str, Optional[str]], int] = {}
    for (slot_date, slot_time), per_technique in ledger.items():
        for technique, (paid, pending) in per_technique.items():
            held = paid if consumption == ConsumptionBasis.PAID_ONLY else paid + pending
            if held:
                seats[(slot_date, slot_time, technique)] = held
    return seats
