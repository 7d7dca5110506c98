# backend/studio_booking/services/booking_service.py
"""
Booking Service

Owns the booking state machine:

    pre_reserved -> paid | expired | cancelled

Capacity decisions happen inside per-slot locks, in the same transaction that
persists the booking. Gift card holds are consumed in the same transaction as
the payment they fund. Notifications go out after commit and never affect the
outcome.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import secrets
import string
import time
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import (
    AuditAction,
    BookingMode,
    BookingStatus,
    ConsumptionBasis,
    HoldStatus,
    PaymentMethod,
)
from ..core.exceptions import (
    BookingStateException,
    BusinessRuleException,
    CapacityConflictException,
    ConflictException,
    NotFoundException,
    ValidationException,
)
from ..core.slot_lock import giftcard_lock_key, slot_lock_key, slot_locks
from ..core.timezone_utils import ensure_utc, minutes_from_now, utc_now
from ..database import with_store_retry
from ..domain.context import BookingRequestContext
from ..domain.slots import SlotRef, slot_refs_from_persisted
from ..events.booking_events import (
    BookingCancelled,
    BookingConfirmed,
    BookingExpired,
    BookingRescheduled,
)
from ..events.publisher import EventPublisher
from ..models.booking import Booking, BookingPayment
from ..models.giftcard import GiftcardHold
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .availability_service import AvailabilityService, ProductContext
from .base import BaseService
from .booking_window_policy import derive_monthly_slots
from .capacity_aggregator import units_for
from .giftcard_hold_service import GiftcardHoldService
from .no_refund_policy import (
    earliest_start,
    enforce_no_refund_acknowledgement,
    requires_no_refund_acceptance,
)

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_booking_code(prefix: Optional[str] = None) -> str:
    """``<prefix>-`` + 4 base36 chars of the clock + 4 random base36 chars."""
    stamp = _to_base36(int(time.time() * 1000))[-4:].rjust(4, "0")
    tail = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"{prefix or settings.booking_code_prefix}-{stamp}{tail}"


@dataclass(frozen=True)
class PaymentInput:
    amount_cents: int
    method: PaymentMethod
    received_at: Optional[datetime] = None
    note: Optional[str] = None


@dataclass(frozen=True)
class SubmissionResult:
    ok: bool
    booking: Booking
    created: bool
    requires_no_refund_ack: bool

    @property
    def booking_code(self) -> str:
        return self.booking.booking_code

    @property
    def pending_balance_cents(self) -> int:
        return int(self.booking.pending_balance_cents)


@dataclass(frozen=True)
class ConfirmationResult:
    ok: bool
    booking: Booking
    became_paid: bool


class BookingService(BaseService):
    def __init__(
        self,
        db: Session,
        *,
        availability_service: Optional[AvailabilityService] = None,
        hold_service: Optional[GiftcardHoldService] = None,
        publisher: Optional[EventPublisher] = None,
    ):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.giftcard_repository = RepositoryFactory.create_giftcard_repository(db)
        self.publisher = publisher or EventPublisher()
        self.availability_service = availability_service or AvailabilityService(db)
        self.hold_service = hold_service or GiftcardHoldService(db, publisher=self.publisher)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _load(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_with_details(booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")
        return booking

    @BaseService.measure_operation("get_booking")
    def get_booking(self, booking_id: str, *, now: Optional[datetime] = None) -> Booking:
        """Load a booking, expiring it first if its pre-reservation lapsed."""
        current = ensure_utc(now) or utc_now()
        booking = self._load(booking_id)
        if booking.is_stale(current):
            self.expire_booking_if_stale(booking.id, now=current)
            booking = self._load(booking_id)
        return booking

    @BaseService.measure_operation("get_booking_by_code")
    def get_booking_by_code(self, booking_code: str, *, now: Optional[datetime] = None) -> Booking:
        """
        Resume lookup for a client that believes it has a saved booking.

        The code is only a key; the returned state always comes from the ledger.
        """
        booking = self.booking_repository.get_by_code(booking_code.strip().upper())
        if booking is None:
            raise NotFoundException("Booking not found", code="BOOKING_NOT_FOUND")
        return self.get_booking(booking.id, now=now)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def _refs_to_reserve(self, ctx: BookingRequestContext) -> List[SlotRef]:
        if ctx.mode == BookingMode.MONTHLY and len(ctx.chosen_slots) == 1:
            return derive_monthly_slots(ctx.chosen_slots[0])
        return list(ctx.chosen_slots)

    def _new_booking_code(self) -> str:
        for _ in range(5):
            code = generate_booking_code()
            if not self.booking_repository.code_exists(code):
                return code
        raise ConflictException("Could not allocate a booking code, please retry", code="BOOKING_CODE_COLLISION")

    def _existing_submission(self, ctx: BookingRequestContext) -> Optional[Booking]:
        if not ctx.booking_code:
            return None
        existing = self.booking_repository.get_by_code(ctx.booking_code.strip().upper())
        if existing is None:
            return None
        if existing.product_id != ctx.product_id:
            raise ConflictException(
                "Booking code belongs to a different booking", code="BOOKING_CODE_IN_USE"
            )
        return existing

    @BaseService.measure_operation("submit_booking")
    def submit_booking(self, ctx: BookingRequestContext) -> SubmissionResult:
        """
        Create a pre-reservation, re-validating the selection against the ledger.

        Resubmitting with an existing booking code, or the same customer
        booking the same slots again while the first booking is live, returns
        the existing booking instead of creating a second one.
        A code whose booking already expired or was cancelled cannot be reused.

        Raises:
            ValidationException: malformed selection or customer info
            CapacityConflictException: a slot filled up since selection
            PolicyViolationException: no-refund acknowledgement missing
            BookingStateException: resubmitted code belongs to a terminal booking
            HoldExpiredException / HoldAlreadyConsumedException: gift card race lost
            TransientStoreException: ledger or locks unavailable after retries
        """
        current = ensure_utc(ctx.now) or utc_now()

        existing = self._existing_submission(ctx)
        if existing is not None:
            if existing.is_stale(current):
                existing = self.get_booking(existing.id, now=current)
            if BookingStatus(existing.status).is_terminal:
                raise BookingStateException(existing.id, existing.status, "resubmit")
            self.logger.info("Idempotent resubmission", extra={"booking_code": existing.booking_code})
            return SubmissionResult(
                ok=True,
                booking=existing,
                created=False,
                requires_no_refund_ack=existing.requires_no_refund_ack,
            )

        product_ctx = self.availability_service.get_product_context(ctx.product_id)
        email = str(ctx.customer_info.get("email") or "").strip()
        if not email:
            raise ValidationException("Customer email is required", code="CUSTOMER_EMAIL_REQUIRED")

        refs = self._refs_to_reserve(ctx)
        if refs:
            duplicate = self.booking_repository.find_live_duplicate(
                product_id=ctx.product_id,
                email=email,
                persisted_slots=[ref.to_persisted() for ref in refs],
            )
            if duplicate is not None and duplicate.holds_capacity(current):
                self.logger.info(
                    "Duplicate submission for the same slots",
                    extra={"booking_code": duplicate.booking_code},
                )
                return SubmissionResult(
                    ok=True,
                    booking=duplicate,
                    created=False,
                    requires_no_refund_ack=duplicate.requires_no_refund_ack,
                )

        hold_card_id: Optional[str] = None
        if ctx.giftcard_hold_id:
            hold_card_id = self.hold_service.get_hold(ctx.giftcard_hold_id).giftcard_id

        lock_keys = [slot_lock_key(r.date.isoformat(), r.time, product_ctx.technique) for r in refs]
        if hold_card_id:
            lock_keys.append(giftcard_lock_key(hold_card_id))

        booking_code = (ctx.booking_code or "").strip().upper() or self._new_booking_code()

        def _submit() -> SubmissionResult:
            with slot_locks(lock_keys):
                # Counts must come from the ledger as of now, not the session cache
                self.db.expire_all()
                return self._submit_locked(ctx, product_ctx, booking_code, email, current)

        result = with_store_retry("submit_booking", _submit, on_retry=self.db.rollback)

        self.logger.info(
            "Booking submitted",
            extra={
                "booking_id": result.booking.id,
                "booking_code": result.booking_code,
                "mode": ctx.mode.value,
                "slot_count": len(result.booking.slots or []),
                "status": result.booking.status,
            },
        )
        if result.booking.status == BookingStatus.PAID.value:
            self._publish_confirmed(result.booking)
        return result

    def _submit_locked(
        self,
        ctx: BookingRequestContext,
        product_ctx: ProductContext,
        booking_code: str,
        email: str,
        now: datetime,
    ) -> SubmissionResult:
        selection = self.availability_service.evaluate_selection(
            product_ctx,
            ctx.mode,
            ctx.chosen_slots,
            participants=ctx.participants,
            now=now,
        )
        if not selection.ok:
            if selection.kind == "unavailable":
                prometheus_metrics.record_capacity_conflict(ctx.mode.value)
            selection.raise_for_failure()

        persisted = [s.slot.to_persisted() for s in selection.slots]
        flagged = enforce_no_refund_acknowledgement(
            [s.slot for s in selection.slots], ctx.accepted_no_refund, now=now
        )

        participants = ctx.participants or product_ctx.product.participants_default
        expires_at = minutes_from_now(settings.pre_reservation_ttl_minutes, now)
        price = int(product_ctx.product.price_cents)

        with self.transaction():
            booking = Booking(
                booking_code=booking_code,
                product_id=product_ctx.product.id,
                product_type=product_ctx.product.product_type,
                technique=product_ctx.technique,
                booking_mode=ctx.mode.value,
                status=BookingStatus.PRE_RESERVED.value,
                user_info={**ctx.customer_info, "email": email},
                participants=participants,
                client_note=ctx.client_note,
                price_cents=price,
                pending_balance_cents=price,
                is_paid=False,
                accepted_no_refund=bool(ctx.accepted_no_refund),
                requires_no_refund_ack=flagged,
                created_at=now,
                expires_at=expires_at,
            )
            self.booking_repository.add(booking)
            self.booking_repository.replace_slots(booking, persisted, product_ctx.technique)

            if ctx.giftcard_hold_id:
                hold = self.giftcard_repository.get_hold(ctx.giftcard_hold_id, for_update=True)
                if hold is None:
                    raise NotFoundException("Gift card hold not found", code="HOLD_NOT_FOUND")
                if hold.amount_cents > price:
                    raise ValidationException(
                        "Gift card hold exceeds the booking price",
                        code="HOLD_EXCEEDS_PRICE",
                        details={"hold_cents": hold.amount_cents, "price_cents": price},
                    )
                self.hold_service.attach_hold_locked(hold, booking.id, expires_at, now=now)
                booking.giftcard_id = hold.giftcard_id
                if hold.amount_cents >= price:
                    # Fully covered: confirm in the same commit
                    self._redeem_hold_locked(booking, hold, now=now)
            self._recompute_balance(booking, now)
        return SubmissionResult(ok=True, booking=booking, created=True, requires_no_refund_ack=flagged)

    # ------------------------------------------------------------------
    # Payment reconciliation
    # ------------------------------------------------------------------

    def _active_holds(self, booking: Booking) -> List[GiftcardHold]:
        return self.giftcard_repository.get_holds_for_booking(
            booking_id=booking.id, statuses=[HoldStatus.ACTIVE.value]
        )

    def _active_hold(self, booking: Booking) -> Optional[GiftcardHold]:
        holds = self._active_holds(booking)
        return holds[0] if holds else None

    def _redeem_hold_locked(self, booking: Booking, hold: GiftcardHold, *, now: datetime) -> BookingPayment:
        redemption = self.hold_service.consume_hold_locked(hold, booking.id, now=now)
        booking.giftcard_id = hold.giftcard_id
        booking.giftcard_redeemed_cents = int(booking.giftcard_redeemed_cents or 0) + int(
            redemption.amount_cents
        )
        payment = self.booking_repository.add_payment(
            booking,
            amount_cents=redemption.amount_cents,
            method=PaymentMethod.GIFTCARD.value,
            received_at=now,
            giftcard_id=hold.giftcard_id,
            giftcard_amount_cents=redemption.amount_cents,
            hold_id=hold.id,
        )
        self.booking_repository.add_audit_event(
            booking,
            action=AuditAction.GIFTCARD_REDEEMED.value,
            created_at=now,
            payload={"hold_id": hold.id, "amount_cents": redemption.amount_cents},
        )
        return payment

    def _keep_hold_for_booking(self, booking: Booking, hold: GiftcardHold, now: datetime) -> None:
        """
        A partial payment stops the booking's clock, so its hold must outlive
        the pre-reservation TTL it was aligned to at submission.
        """
        keep_until = earliest_start(booking.slots or []) or now + timedelta(
            days=settings.availability_window_days
        )
        if ensure_utc(hold.expires_at) < keep_until:
            hold.expires_at = keep_until
            self.giftcard_repository.flush()

    def _recompute_balance(self, booking: Booking, now: datetime) -> bool:
        """
        Refresh pending balance and paid state from the payment entries.

        Returns True when this call moved the booking to paid.
        """
        hold_cents = sum(h.amount_cents for h in self._active_holds(booking))
        paid_cents = booking.total_paid_cents
        price = int(booking.price_cents)
        booking.pending_balance_cents = max(0, price - paid_cents - hold_cents)

        was_paid = bool(booking.is_paid)
        booking.is_paid = paid_cents >= price
        if booking.active_payments:
            # Any recorded payment stops the pre-reservation clock
            booking.expires_at = None
        if booking.is_paid:
            booking.status = BookingStatus.PAID.value
            if booking.confirmed_at is None:
                booking.confirmed_at = now
        elif booking.status == BookingStatus.PAID.value:
            booking.status = BookingStatus.PRE_RESERVED.value
            booking.confirmed_at = None
        self.booking_repository.flush()
        return booking.is_paid and not was_paid

    def _assert_capacity_for_confirmation(self, booking: Booking, now: datetime) -> None:
        """Under paid-only admission a pre-reservation may not fit once it is paid."""
        if settings.capacity_consumption_basis != ConsumptionBasis.PAID_ONLY.value or not booking.slots:
            return
        product_ctx = self.availability_service.get_product_context(booking.product_id)
        refs = slot_refs_from_persisted(booking.slots)
        index = self.availability_service.index_for_refs(product_ctx, refs, now=now)
        units = units_for(booking.participants, product_ctx.unit_size)
        full = []
        for ref in refs:
            slot = index.get(ref.key(product_ctx.technique))
            if slot is None or slot.available < units:
                full.append(ref.to_persisted())
        if full:
            prometheus_metrics.record_capacity_conflict(booking.booking_mode)
            raise CapacityConflictException(slots=full)

    def _lock_keys_for(self, booking: Booking, *, include_slots: bool) -> List[str]:
        keys = [giftcard_lock_key(h.giftcard_id) for h in self._active_holds(booking)]
        if include_slots:
            keys.extend(
                slot_lock_key(ref.date.isoformat(), ref.time, booking.technique)
                for ref in slot_refs_from_persisted(booking.slots)
            )
        return keys

    @BaseService.measure_operation("confirm_payment")
    def confirm_payment(
        self,
        booking_id: str,
        payment: PaymentInput,
        *,
        actor: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ConfirmationResult:
        """
        Record a payment; once the balance reaches zero the booking is paid.

        An attached gift card hold is redeemed only by the payment that settles
        the rest of the balance, in the same transaction, so the card is never
        debited for a booking that stays unpaid or vice versa. A partial
        payment leaves the hold active.
        """
        current = ensure_utc(now) or utc_now()
        if payment.amount_cents <= 0:
            raise ValidationException("Payment amount must be positive", code="INVALID_AMOUNT")
        if payment.method == PaymentMethod.GIFTCARD:
            raise ValidationException(
                "Gift card payments are applied through a hold", code="GIFTCARD_REQUIRES_HOLD"
            )

        booking = self.get_booking(booking_id, now=current)
        self._assert_payable(booking)
        paid_only = settings.capacity_consumption_basis == ConsumptionBasis.PAID_ONLY.value
        lock_keys = self._lock_keys_for(booking, include_slots=paid_only)

        def _confirm() -> ConfirmationResult:
            with slot_locks(lock_keys):
                self.db.expire_all()
                with self.transaction():
                    locked = self._load(booking_id)
                    if locked.is_stale(current):
                        raise BookingStateException(locked.id, BookingStatus.EXPIRED.value, "confirm payment")
                    self._assert_payable(locked)
                    hold = self._active_hold(locked)
                    hold_cents = hold.amount_cents if hold is not None else 0
                    outstanding = int(locked.price_cents) - locked.total_paid_cents - hold_cents
                    if payment.amount_cents > outstanding:
                        raise ValidationException(
                            "Payment exceeds the pending balance",
                            code="PAYMENT_EXCEEDS_BALANCE",
                            details={"pending_balance_cents": max(0, outstanding)},
                        )
                    settles = payment.amount_cents == outstanding
                    if paid_only and settles:
                        self._assert_capacity_for_confirmation(locked, current)

                    recorded = self.booking_repository.add_payment(
                        locked,
                        amount_cents=payment.amount_cents,
                        method=payment.method.value,
                        received_at=ensure_utc(payment.received_at) or current,
                        note=payment.note,
                    )
                    if hold is not None:
                        if settles:
                            self._redeem_hold_locked(locked, hold, now=current)
                        else:
                            self._keep_hold_for_booking(locked, hold, current)
                    self.booking_repository.add_audit_event(
                        locked,
                        action=AuditAction.PAYMENT_ADDED.value,
                        created_at=current,
                        actor=actor,
                        payload={
                            "payment_id": recorded.id,
                            "amount_cents": payment.amount_cents,
                            "method": payment.method.value,
                        },
                    )
                    became_paid = self._recompute_balance(locked, current)
                    return ConfirmationResult(ok=True, booking=locked, became_paid=became_paid)

        result = with_store_retry("confirm_payment", _confirm, on_retry=self.db.rollback)
        self.logger.info(
            "Payment recorded",
            extra={
                "booking_id": booking_id,
                "amount_cents": payment.amount_cents,
                "pending_balance_cents": result.booking.pending_balance_cents,
                "is_paid": result.booking.is_paid,
            },
        )
        if result.became_paid:
            self._publish_confirmed(result.booking)
        return result

    def _assert_payable(self, booking: Booking) -> None:
        if booking.status in (BookingStatus.CANCELLED.value, BookingStatus.EXPIRED.value):
            raise BookingStateException(booking.id, booking.status, "confirm payment")
        if booking.is_paid:
            raise BookingStateException(booking.id, booking.status, "add a payment to")

    def _payment_for_edit(self, booking: Booking, payment_id: str) -> BookingPayment:
        payment = self.booking_repository.get_payment(booking.id, payment_id)
        if payment is None or payment.deleted_at is not None:
            raise NotFoundException("Payment not found", code="PAYMENT_NOT_FOUND")
        if payment.method == PaymentMethod.GIFTCARD.value:
            raise ValidationException(
                "Gift card redemptions cannot be edited or deleted", code="GIFTCARD_PAYMENT_LOCKED"
            )
        return payment

    @BaseService.measure_operation("update_payment")
    def update_payment(
        self,
        booking_id: str,
        payment_id: str,
        *,
        amount_cents: Optional[int] = None,
        method: Optional[PaymentMethod] = None,
        received_at: Optional[datetime] = None,
        note: Optional[str] = None,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        Edit a payment entry; the previous values go to the audit trail.

        An edit that settles the balance is a confirmation: it runs under the
        booking's slot locks, re-checks capacity under paid-only admission and
        redeems an attached gift card hold. The recorded total may never exceed
        the price.
        """
        current = ensure_utc(now) or utc_now()
        if amount_cents is not None and amount_cents <= 0:
            raise ValidationException("Payment amount must be positive", code="INVALID_AMOUNT")
        if method == PaymentMethod.GIFTCARD:
            raise ValidationException(
                "Gift card payments are applied through a hold", code="GIFTCARD_REQUIRES_HOLD"
            )

        booking = self.get_booking(booking_id, now=current)
        self._assert_editable(booking, "edit payments on")
        paid_only = settings.capacity_consumption_basis == ConsumptionBasis.PAID_ONLY.value
        lock_keys = self._lock_keys_for(booking, include_slots=paid_only)

        def _update() -> ConfirmationResult:
            with slot_locks(lock_keys):
                self.db.expire_all()
                with self.transaction():
                    locked = self._load(booking_id)
                    self._assert_editable(locked, "edit payments on")
                    payment = self._payment_for_edit(locked, payment_id)
                    before = _payment_snapshot(payment)

                    hold = self._active_hold(locked)
                    hold_cents = hold.amount_cents if hold is not None else 0
                    price = int(locked.price_cents)
                    new_amount = payment.amount_cents if amount_cents is None else amount_cents
                    new_total = locked.total_paid_cents - int(payment.amount_cents) + new_amount
                    if new_total + hold_cents > price:
                        raise ValidationException(
                            "Payment exceeds the booking price",
                            code="PAYMENT_EXCEEDS_BALANCE",
                            details={
                                "price_cents": price,
                                "pending_balance_cents": max(
                                    0, price - (new_total - new_amount) - hold_cents
                                ),
                            },
                        )
                    settles = not locked.is_paid and new_total + hold_cents == price
                    if paid_only and settles:
                        self._assert_capacity_for_confirmation(locked, current)

                    payment.amount_cents = new_amount
                    if method is not None:
                        payment.method = method.value
                    if received_at is not None:
                        payment.received_at = ensure_utc(received_at)
                    if note is not None:
                        payment.note = note
                    if hold is not None and settles:
                        self._redeem_hold_locked(locked, hold, now=current)
                    self.booking_repository.add_audit_event(
                        locked,
                        action=AuditAction.PAYMENT_UPDATED.value,
                        created_at=current,
                        reason=reason,
                        actor=actor,
                        payload={"payment_id": payment.id, "before": before, "after": _payment_snapshot(payment)},
                    )
                    became_paid = self._recompute_balance(locked, current)
                    return ConfirmationResult(ok=True, booking=locked, became_paid=became_paid)

        result = with_store_retry("update_payment", _update, on_retry=self.db.rollback)
        if result.became_paid:
            self._publish_confirmed(result.booking)
        return result.booking

    def _assert_editable(self, booking: Booking, action: str) -> None:
        if BookingStatus(booking.status).is_terminal:
            raise BookingStateException(booking.id, booking.status, action)

    @BaseService.measure_operation("delete_payment")
    def delete_payment(
        self,
        booking_id: str,
        payment_id: str,
        *,
        reason: str,
        actor: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        """Soft-delete a payment entry. A reason is mandatory."""
        current = ensure_utc(now) or utc_now()
        if not reason or not reason.strip():
            raise ValidationException("A reason is required to delete a payment", code="REASON_REQUIRED")

        self._assert_editable(self.get_booking(booking_id, now=current), "delete payments on")
        with self.transaction():
            booking = self._load(booking_id)
            self._assert_editable(booking, "delete payments on")
            payment = self._payment_for_edit(booking, payment_id)
            payment.deleted_at = current
            payment.deletion_reason = reason.strip()
            self.booking_repository.add_audit_event(
                booking,
                action=AuditAction.PAYMENT_DELETED.value,
                created_at=current,
                reason=reason.strip(),
                actor=actor,
                payload={"payment_id": payment.id, "before": _payment_snapshot(payment)},
            )
            self._recompute_balance(booking, current)
        return booking

    # ------------------------------------------------------------------
    # Rescheduling
    # ------------------------------------------------------------------

    def _assert_outside_horizon(self, slot: SlotRef, now: datetime) -> None:
        if requires_no_refund_acceptance([slot], now=now):
            raise BusinessRuleException(
                f"Classes starting within {settings.no_refund_horizon_hours} hours cannot be rescheduled",
                code="RESCHEDULE_WINDOW_CLOSED",
                details={"slot": slot.to_persisted(), "horizon_hours": settings.no_refund_horizon_hours},
            )

    def _slots_without(self, booking: Booking, from_slot: Optional[SlotRef]) -> List[SlotRef]:
        refs = slot_refs_from_persisted(booking.slots)
        if from_slot is None:
            return refs
        kept = [ref for ref in refs if (ref.date, ref.time) != (from_slot.date, from_slot.time)]
        if len(kept) == len(refs):
            raise ValidationException(
                "The booking does not include this class",
                code="SLOT_NOT_IN_BOOKING",
                details={"slot": from_slot.to_persisted()},
            )
        return kept

    @BaseService.measure_operation("reschedule_slot")
    def reschedule_slot(
        self,
        booking_id: str,
        to_slot: SlotRef,
        *,
        from_slot: Optional[SlotRef] = None,
        actor: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        Move one class of a live booking to another slot.

        Without ``from_slot`` the class is added to a booking that has not
        scheduled all of its classes yet, such as a package bought without
        picking dates. Classes inside the no-refund horizon cannot be moved,
        and nothing can be moved into it.

        Raises:
            BookingStateException: booking expired or cancelled
            BusinessRuleException: source or target inside the no-refund horizon
            ValidationException: source not in the booking, or the new set breaks the window
            CapacityConflictException: target slot is full
        """
        current = ensure_utc(now) or utc_now()
        if from_slot is not None and (from_slot.date, from_slot.time) == (to_slot.date, to_slot.time):
            raise ValidationException("The class is already on this slot", code="SAME_SLOT")

        booking = self.get_booking(booking_id, now=current)
        self._assert_editable(booking, "reschedule")
        moved = [to_slot] if from_slot is None else [from_slot, to_slot]
        for slot in moved:
            self._assert_outside_horizon(slot, current)
        product_ctx = self.availability_service.get_product_context(booking.product_id)
        lock_keys = [slot_lock_key(ref.date.isoformat(), ref.time, product_ctx.technique) for ref in moved]

        def _reschedule() -> Booking:
            with slot_locks(lock_keys):
                self.db.expire_all()
                with self.transaction():
                    locked = self._load(booking_id)
                    self._assert_editable(locked, "reschedule")
                    kept = self._slots_without(locked, from_slot)
                    result = self.availability_service.policy.validate_reschedule(
                        kept,
                        to_slot,
                        self.availability_service.index_for_refs(product_ctx, [to_slot], now=current),
                        product_ctx.capabilities,
                        package_size=product_ctx.package_size,
                        technique=product_ctx.technique,
                        now=current,
                        units_needed=units_for(locked.participants, product_ctx.unit_size),
                    )
                    if not result.ok:
                        if result.kind == "unavailable":
                            prometheus_metrics.record_capacity_conflict(locked.booking_mode)
                        result.raise_for_failure()

                    target = result.slots[0].slot.to_persisted()
                    persisted = sorted(
                        [ref.to_persisted() for ref in kept] + [target],
                        key=lambda raw: (raw["date"], raw["time"]),
                    )
                    self.booking_repository.replace_slots(locked, persisted, product_ctx.technique)
                    self.booking_repository.add_audit_event(
                        locked,
                        action=AuditAction.RESCHEDULED.value,
                        created_at=current,
                        actor=actor,
                        payload={
                            "from": from_slot.to_persisted() if from_slot is not None else None,
                            "to": target,
                        },
                    )
                    return locked

        rescheduled = with_store_retry("reschedule_slot", _reschedule, on_retry=self.db.rollback)
        self.logger.info(
            "Booking rescheduled",
            extra={
                "booking_id": rescheduled.id,
                "from_slot": from_slot.to_persisted() if from_slot is not None else None,
                "to_slot": to_slot.to_persisted(),
            },
        )
        self.publisher.publish(
            BookingRescheduled(
                booking_id=rescheduled.id,
                booking_code=rescheduled.booking_code,
                from_slot=from_slot.to_persisted() if from_slot is not None else None,
                to_slot=to_slot.to_persisted(),
                rescheduled_at=current,
                customer_email=(rescheduled.user_info or {}).get("email"),
            )
        )
        return rescheduled

    # ------------------------------------------------------------------
    # Cancellation and expiry
    # ------------------------------------------------------------------

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(
        self,
        booking_id: str,
        *,
        reason: str,
        actor: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        """Staff cancellation of a non-terminal booking; releases capacity and any live hold."""
        current = ensure_utc(now) or utc_now()
        if not reason or not reason.strip():
            raise ValidationException("A cancellation reason is required", code="REASON_REQUIRED")

        booking = self.get_booking(booking_id, now=current)
        if BookingStatus(booking.status).is_terminal:
            raise BookingStateException(booking.id, booking.status, "cancel")
        lock_keys = self._lock_keys_for(booking, include_slots=False)

        def _cancel() -> Booking:
            with slot_locks(lock_keys):
                self.db.expire_all()
                with self.transaction():
                    locked = self._load(booking_id)
                    if BookingStatus(locked.status).is_terminal:
                        raise BookingStateException(locked.id, locked.status, "cancel")
                    released = self._release_holds_locked(locked, current, HoldStatus.RELEASED)
                    locked.status = BookingStatus.CANCELLED.value
                    locked.cancelled_at = current
                    locked.cancellation_reason = reason.strip()
                    locked.expires_at = None
                    self.booking_repository.add_audit_event(
                        locked,
                        action=AuditAction.CANCELLED.value,
                        created_at=current,
                        reason=reason.strip(),
                        actor=actor,
                        payload={"released_holds": released, "was_paid": bool(locked.is_paid)},
                    )
                    return locked

        cancelled = with_store_retry("cancel_booking", _cancel, on_retry=self.db.rollback)
        self.logger.info(
            "Booking cancelled",
            extra={"booking_id": cancelled.id, "booking_code": cancelled.booking_code},
        )
        self.publisher.publish(
            BookingCancelled(
                booking_id=cancelled.id,
                booking_code=cancelled.booking_code,
                reason=cancelled.cancellation_reason or "",
                cancelled_at=current,
            )
        )
        return cancelled

    def _release_holds_locked(self, booking: Booking, now: datetime, status: HoldStatus) -> List[str]:
        released = []
        for hold in self._active_holds(booking):
            if self.hold_service.release_hold_locked(hold, now=now, status=status):
                released.append(hold.id)
        return released

    @BaseService.measure_operation("expire_booking")
    def expire_booking_if_stale(self, booking_id: str, *, now: Optional[datetime] = None) -> bool:
        """
        Move a lapsed pre-reservation to expired and release its hold.

        Idempotent and safe to race with a sweep or a payment: the state is
        re-checked under the locks before anything changes.
        """
        current = ensure_utc(now) or utc_now()
        booking = self._load(booking_id)
        if not booking.is_stale(current):
            return False
        lock_keys = [giftcard_lock_key(h.giftcard_id) for h in self._active_holds(booking)]

        def _expire() -> bool:
            with slot_locks(lock_keys):
                self.db.expire_all()
                with self.transaction():
                    locked = self._load(booking_id)
                    if not locked.is_stale(current):
                        return False
                    released = self._release_holds_locked(locked, current, HoldStatus.RELEASED)
                    locked.status = BookingStatus.EXPIRED.value
                    locked.expired_at = current
                    self.booking_repository.add_audit_event(
                        locked,
                        action=AuditAction.EXPIRED.value,
                        created_at=current,
                        payload={"released_holds": released},
                    )
                    return True

        changed = with_store_retry("expire_booking", _expire, on_retry=self.db.rollback)
        if changed:
            self.logger.info("Pre-reservation expired", extra={"booking_id": booking_id})
            self.publisher.publish(
                BookingExpired(
                    booking_id=booking.id,
                    booking_code=booking.booking_code,
                    expired_at=current,
                )
            )
        return changed

    @BaseService.measure_operation("expire_stale_bookings")
    def expire_stale_bookings(self, *, now: Optional[datetime] = None, limit: Optional[int] = None) -> int:
        current = ensure_utc(now) or utc_now()
        batch = limit or settings.expiry_sweep_batch_size
        stale_ids = [
            b.id for b in self.booking_repository.get_stale_pre_reservations(now=current, limit=batch)
        ]
        expired = sum(1 for booking_id in stale_ids if self.expire_booking_if_stale(booking_id, now=current))
        if expired:
            self.logger.info("Expired stale pre-reservations", extra={"count": expired})
        return expired

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _publish_confirmed(self, booking: Booking) -> None:
        self.publisher.publish(
            BookingConfirmed(
                booking_id=booking.id,
                booking_code=booking.booking_code,
                product_id=booking.product_id,
                confirmed_at=ensure_utc(booking.confirmed_at) or utc_now(),
                customer_email=(booking.user_info or {}).get("email"),
                slots=list(booking.slots or []),
            )
        )


def _payment_snapshot(payment: BookingPayment) -> Dict[str, Any]:
    received_at = ensure_utc(payment.received_at)
    return {
        "amount_cents": payment.amount_cents,
        "method": payment.method,
        "received_at": received_at.isoformat() if received_at else None,
        "note": payment.note,
    }

