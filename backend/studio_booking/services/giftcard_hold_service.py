# backend/studio_booking/services/giftcard_hold_service.py
"""
Gift card hold reconciler.

A hold is a short-lived claim on a gift card balance taken while a customer
finishes checkout. Invariants, per gift card:

- ``balance == initial_value - sum(redemptions)``
- ``sum(live holds) + sum(redemptions) <= initial_value``

Every balance decision runs under the per-card lock and a row lock on the
card. Methods prefixed ``*_locked`` expect the caller to already hold the
card lock and to own the surrounding transaction; the booking service uses
them so a hold is consumed in the same commit as the payment it funds.
"""

from datetime import datetime
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import HoldStatus
from ..core.exceptions import (
    BusinessRuleException,
    ConflictException,
    FatalInvariantException,
    HoldAlreadyConsumedException,
    HoldExpiredException,
    InsufficientGiftcardBalanceException,
    NotFoundException,
    ValidationException,
)
from ..core.slot_lock import giftcard_lock_key, slot_locks
from ..core.timezone_utils import ensure_utc, minutes_from_now, utc_now
from ..database import with_store_retry
from ..events.booking_events import HoldExpiring
from ..events.publisher import EventPublisher
from ..models.giftcard import Giftcard, GiftcardHold, GiftcardRedemption
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


class GiftcardHoldService(BaseService):
    def __init__(self, db: Session, publisher: Optional[EventPublisher] = None):
        super().__init__(db)
        self.giftcard_repository = RepositoryFactory.create_giftcard_repository(db)
        self.publisher = publisher or EventPublisher()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _get_card(self, *, giftcard_id: Optional[str] = None, code: Optional[str] = None) -> Giftcard:
        card: Optional[Giftcard] = None
        if giftcard_id:
            card = self.giftcard_repository.get_by_id(giftcard_id)
        elif code:
            card = self.giftcard_repository.get_by_code(code)
        else:
            raise ValidationException("A gift card id or code is required", code="GIFTCARD_REQUIRED")
        if card is None:
            raise NotFoundException("Gift card not found", code="GIFTCARD_NOT_FOUND")
        return card

    def get_hold(self, hold_id: str) -> GiftcardHold:
        hold = self.giftcard_repository.get_hold(hold_id)
        if hold is None:
            raise NotFoundException("Gift card hold not found", code="HOLD_NOT_FOUND")
        return hold

    def spendable_cents(self, card: Giftcard, now: datetime) -> int:
        held = self.giftcard_repository.get_total_live_holds(giftcard_id=card.id, now=now)
        return int(card.balance_cents) - held

    @BaseService.measure_operation("get_giftcard_balance")
    def get_balance(self, code: str, *, now: Optional[datetime] = None) -> Dict[str, Any]:
        current = ensure_utc(now) or utc_now()
        card = self._get_card(code=code)
        held = self.giftcard_repository.get_total_live_holds(giftcard_id=card.id, now=current)
        return {
            "giftcard_id": card.id,
            "code": card.code,
            "initial_value_cents": card.initial_value_cents,
            "balance_cents": card.balance_cents,
            "held_cents": held,
            "available_cents": int(card.balance_cents) - held,
            "expires_at": ensure_utc(card.expires_at),
        }

    # ------------------------------------------------------------------
    # Hold lifecycle
    # ------------------------------------------------------------------

    @BaseService.measure_operation("create_hold")
    def create_hold(
        self,
        *,
        amount_cents: int,
        giftcard_id: Optional[str] = None,
        code: Optional[str] = None,
        ttl_minutes: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> GiftcardHold:
        """
        Reserve ``amount_cents`` of a card's spendable balance.

        Raises:
            ValidationException: non-positive amount
            NotFoundException: unknown card
            BusinessRuleException: card expired
            InsufficientGiftcardBalanceException: amount exceeds balance minus live holds
        """
        if amount_cents <= 0:
            raise ValidationException("Hold amount must be positive", code="INVALID_AMOUNT")
        card_id = self._get_card(giftcard_id=giftcard_id, code=code).id
        ttl = ttl_minutes or settings.giftcard_hold_ttl_minutes

        def _create() -> GiftcardHold:
            current = ensure_utc(now) or utc_now()
            with slot_locks([giftcard_lock_key(card_id)]):
                with self.transaction():
                    card = self.giftcard_repository.get_by_id(card_id, for_update=True)
                    if card is None:
                        raise NotFoundException("Gift card not found", code="GIFTCARD_NOT_FOUND")
                    card_expiry = ensure_utc(card.expires_at)
                    if card_expiry is not None and card_expiry <= current:
                        raise BusinessRuleException("Gift card has expired", code="GIFTCARD_EXPIRED")
                    available = self.spendable_cents(card, current)
                    if amount_cents > available:
                        raise InsufficientGiftcardBalanceException(card.id, amount_cents, max(0, available))
                    hold = self.giftcard_repository.create_hold(
                        giftcard_id=card.id,
                        code=card.code,
                        amount_cents=amount_cents,
                        status=HoldStatus.ACTIVE.value,
                        expires_at=minutes_from_now(ttl, current),
                    )
            return hold

        hold = with_store_retry("create_giftcard_hold", _create, on_retry=self.db.rollback)
        prometheus_metrics.record_hold_event("created")
        self.logger.info(
            "Gift card hold created",
            extra={"hold_id": hold.id, "giftcard_id": card_id, "amount_cents": amount_cents},
        )
        return hold

    def attach_hold_locked(self, hold: GiftcardHold, booking_id: str, expires_at: Optional[datetime], *, now: datetime) -> GiftcardHold:
        """Bind a live hold to a booking and align its expiry with the booking's."""
        if hold.status == HoldStatus.CONSUMED.value:
            raise HoldAlreadyConsumedException(hold.id, hold.booking_id)
        if not hold.is_live(now):
            self._mark_lapsed_locked(hold, now)
            raise HoldExpiredException(hold.id, hold.status)
        if hold.booking_id and hold.booking_id != booking_id:
            raise ConflictException(
                "Gift card hold is already applied to another booking",
                code="HOLD_ATTACHED_ELSEWHERE",
                details={"hold_id": hold.id, "booking_id": hold.booking_id},
            )
        hold.booking_id = booking_id
        if expires_at is not None:
            hold.expires_at = expires_at
        self.giftcard_repository.flush()
        return hold

    def consume_hold_locked(self, hold: GiftcardHold, booking_id: str, *, now: datetime) -> GiftcardRedemption:
        """
        Convert a hold into a permanent redemption. Caller owns lock and transaction.

        Consuming an already-consumed hold for the same booking returns the
        existing redemption.
        """
        if hold.status == HoldStatus.CONSUMED.value:
            if hold.booking_id == booking_id:
                existing = self.giftcard_repository.get_redemption_for_hold(hold.id)
                if existing is not None:
                    return existing
            raise HoldAlreadyConsumedException(hold.id, hold.booking_id)
        if not hold.is_live(now):
            self._mark_lapsed_locked(hold, now)
            raise HoldExpiredException(hold.id, hold.status)
        if hold.booking_id and hold.booking_id != booking_id:
            raise HoldAlreadyConsumedException(hold.id, hold.booking_id)

        card = self.giftcard_repository.get_by_id(hold.giftcard_id, for_update=True)
        if card is None:
            raise NotFoundException("Gift card not found", code="GIFTCARD_NOT_FOUND")
        if card.balance_cents < hold.amount_cents:
            logger.critical(
                "Gift card balance below an active hold",
                extra={
                    "event": "giftcard_invariant_violated",
                    "giftcard_id": card.id,
                    "hold_id": hold.id,
                    "balance_cents": card.balance_cents,
                    "hold_cents": hold.amount_cents,
                },
            )
            raise FatalInvariantException(
                "Gift card balance is lower than an active hold",
                details={"giftcard_id": card.id, "hold_id": hold.id},
            )

        card.balance_cents = int(card.balance_cents) - int(hold.amount_cents)
        hold.status = HoldStatus.CONSUMED.value
        hold.booking_id = booking_id
        hold.consumed_at = now
        redemption = self.giftcard_repository.create_redemption(
            giftcard_id=card.id,
            hold_id=hold.id,
            booking_id=booking_id,
            amount_cents=hold.amount_cents,
            redeemed_at=now,
        )
        prometheus_metrics.record_hold_event("consumed")
        return redemption

    def release_hold_locked(self, hold: GiftcardHold, *, now: datetime, status: HoldStatus = HoldStatus.RELEASED) -> bool:
        """Return an active hold's amount to the spendable balance. No-op otherwise."""
        if hold.status != HoldStatus.ACTIVE.value:
            return False
        hold.status = status.value
        hold.released_at = now
        self.giftcard_repository.flush()
        prometheus_metrics.record_hold_event(status.value)
        return True

    def _mark_lapsed_locked(self, hold: GiftcardHold, now: datetime) -> None:
        if hold.status == HoldStatus.ACTIVE.value:
            self.release_hold_locked(hold, now=now, status=HoldStatus.EXPIRED)

    @BaseService.measure_operation("consume_hold")
    def consume_hold(self, hold_id: str, booking_id: str, *, now: Optional[datetime] = None) -> GiftcardRedemption:
        hold = self.get_hold(hold_id)

        def _consume() -> GiftcardRedemption:
            current = ensure_utc(now) or utc_now()
            with slot_locks([giftcard_lock_key(hold.giftcard_id)]):
                with self.transaction():
                    locked = self.giftcard_repository.get_hold(hold_id, for_update=True)
                    if locked is None:
                        raise NotFoundException("Gift card hold not found", code="HOLD_NOT_FOUND")
                    return self.consume_hold_locked(locked, booking_id, now=current)

        return with_store_retry("consume_giftcard_hold", _consume, on_retry=self.db.rollback)

    @BaseService.measure_operation("attach_hold")
    def attach_hold(
        self,
        hold_id: str,
        booking_id: str,
        expires_at: Optional[datetime] = None,
        *,
        now: Optional[datetime] = None,
    ) -> GiftcardHold:
        hold = self.get_hold(hold_id)

        def _attach() -> GiftcardHold:
            current = ensure_utc(now) or utc_now()
            with slot_locks([giftcard_lock_key(hold.giftcard_id)]):
                with self.transaction():
                    locked = self.giftcard_repository.get_hold(hold_id, for_update=True)
                    if locked is None:
                        raise NotFoundException("Gift card hold not found", code="HOLD_NOT_FOUND")
                    return self.attach_hold_locked(
                        locked, booking_id, ensure_utc(expires_at), now=current
                    )

        return with_store_retry("attach_giftcard_hold", _attach, on_retry=self.db.rollback)

    @BaseService.measure_operation("release_hold")
    def release_hold(self, hold_id: str, *, now: Optional[datetime] = None) -> GiftcardHold:
        """Release a hold. Safe to call any number of times."""
        hold = self.get_hold(hold_id)

        def _release() -> GiftcardHold:
            current = ensure_utc(now) or utc_now()
            with slot_locks([giftcard_lock_key(hold.giftcard_id)]):
                with self.transaction():
                    locked = self.giftcard_repository.get_hold(hold_id, for_update=True)
                    if locked is None:
                        raise NotFoundException("Gift card hold not found", code="HOLD_NOT_FOUND")
                    self.release_hold_locked(locked, now=current)
                    return locked

        return with_store_retry("release_giftcard_hold", _release, on_retry=self.db.rollback)

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    @BaseService.measure_operation("expire_stale_holds")
    def expire_stale_holds(self, *, now: Optional[datetime] = None, limit: Optional[int] = None) -> int:
        """Mark active holds past their expiry as expired. Idempotent."""
        current = ensure_utc(now) or utc_now()
        batch = limit or settings.expiry_sweep_batch_size
        expired = 0
        for candidate in self.giftcard_repository.get_expired_active_holds(now=current, limit=batch):
            hold_id, card_id = candidate.id, candidate.giftcard_id

            def _expire() -> bool:
                with slot_locks([giftcard_lock_key(card_id)]):
                    with self.transaction():
                        locked = self.giftcard_repository.get_hold(hold_id, for_update=True)
                        if locked is None or locked.is_live(current):
                            return False
                        return self.release_hold_locked(locked, now=current, status=HoldStatus.EXPIRED)

            if with_store_retry("expire_giftcard_hold", _expire, on_retry=self.db.rollback):
                expired += 1
        if expired:
            self.logger.info("Expired stale gift card holds", extra={"count": expired})
        return expired

    @BaseService.measure_operation("notify_expiring_holds")
    def notify_expiring_holds(self, *, now: Optional[datetime] = None) -> int:
        """Publish one ``HoldExpiring`` event per hold entering the notice window."""
        current = ensure_utc(now) or utc_now()
        cutoff = minutes_from_now(settings.hold_expiring_notice_minutes, current)
        holds: List[GiftcardHold] = self.giftcard_repository.get_holds_expiring_before(
            now=current, cutoff=cutoff, limit=settings.expiry_sweep_batch_size
        )
        if not holds:
            return 0
        with self.transaction():
            for hold in holds:
                hold.expiring_notified_at = current
        for hold in holds:
            self.publisher.publish(
                HoldExpiring(
                    hold_id=hold.id,
                    giftcard_id=hold.giftcard_id,
                    amount_cents=hold.amount_cents,
                    expires_at=ensure_utc(hold.expires_at),
                    booking_id=hold.booking_id,
                )
            )
        return len(holds)
