# backend/studio_booking/services/availability_service.py
"""
Availability Service

Runs generator -> aggregator -> window policy for a product. Used directly by
the slot listing and selection validation endpoints, and by the booking
service to re-check a selection inside its slot locks.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import BookingMode
from ..core.exceptions import NotFoundException, ValidationException
from ..core.timezone_utils import ensure_utc, get_studio_timezone, utc_now
from ..domain.products import ProductCapabilities, capabilities_for, normalize_technique
from ..domain.slots import EnrichedSlot, SlotKey, SlotRef, index_slots
from ..models.product import Product
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .booking_window_policy import BookingWindowPolicy, SelectionResult, derive_monthly_slots
from .capacity_aggregator import enrich_from_store, units_for
from .no_refund_policy import requires_no_refund_acceptance
from .slot_generator import generate_slots

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProductContext:
    """A product resolved together with its booking capabilities."""

    product: Product
    capabilities: ProductCapabilities
    technique: Optional[str]

    @property
    def package_size(self) -> int:
        return self.capabilities.package_size(self.product)

    @property
    def unit_size(self) -> int:
        return self.capabilities.capacity_unit_size

    def units_needed(self, participants: Optional[int]) -> int:
        return units_for(participants or self.product.participants_default, self.unit_size)


@dataclass(frozen=True)
class AvailabilityWindow:
    product_id: str
    mode: BookingMode
    window_start: date
    window_end: date
    slots: List[EnrichedSlot] = field(default_factory=list)


@dataclass(frozen=True)
class SelectionOutcome:
    ok: bool
    reason: Optional[str] = None
    kind: Optional[str] = None
    slots: List[EnrichedSlot] = field(default_factory=list)
    unavailable: List[Dict[str, Any]] = field(default_factory=list)
    requires_no_refund_ack: bool = False


class AvailabilityService(BaseService):
    def __init__(self, db: Session, policy: Optional[BookingWindowPolicy] = None):
        super().__init__(db)
        self.product_repository = RepositoryFactory.create_product_repository(db)
        self.schedule_repository = RepositoryFactory.create_schedule_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.policy = policy or BookingWindowPolicy()

    def get_product_context(self, product_id: str) -> ProductContext:
        product = self.product_repository.get_active(product_id)
        if product is None:
            raise NotFoundException(f"Product {product_id} not found", code="PRODUCT_NOT_FOUND")
        return ProductContext(
            product=product,
            capabilities=capabilities_for(product.product_type),
            technique=normalize_technique(product.technique),
        )

    def enriched_slots(
        self,
        ctx: ProductContext,
        window_start: date,
        window_days: int,
        *,
        now: datetime,
    ) -> List[EnrichedSlot]:
        """Generated and enriched slots for ``[window_start, window_start + window_days)``."""
        if not ctx.capabilities.has_slots or window_days <= 0:
            return []
        window_end = window_start + timedelta(days=window_days)
        rules = self.schedule_repository.get_rules(technique=ctx.technique, product_id=ctx.product.id)
        overrides = self.schedule_repository.get_overrides(
            start_date=window_start,
            end_date=window_end,
            technique=ctx.technique,
            product_id=ctx.product.id,
        )
        slots = generate_slots(
            rules,
            overrides,
            window_start,
            window_days,
            technique=ctx.technique,
            default_capacity=settings.default_class_capacity,
        )
        if not slots:
            return []
        return enrich_from_store(
            slots,
            lambda: self.booking_repository.get_capacity_holding_bookings(
                start_date=window_start, end_date=window_end, technique=ctx.technique
            ),
            ctx.technique,
            now=now,
            unit_size=ctx.unit_size,
        )

    def index_for_refs(
        self, ctx: ProductContext, refs: Sequence[SlotRef], *, now: datetime
    ) -> Dict[SlotKey, EnrichedSlot]:
        """Enriched slots covering every date in ``refs`` (and monthly follow-ups)."""
        if not refs:
            return {}
        first = min(ref.date for ref in refs)
        last = max(ref.date for ref in refs) + timedelta(days=7 * (settings.monthly_weeks - 1))
        return index_slots(self.enriched_slots(ctx, first, (last - first).days + 1, now=now))

    @BaseService.measure_operation("list_available_slots")
    def list_available_slots(
        self,
        product_id: str,
        *,
        start: Optional[date] = None,
        days: Optional[int] = None,
        mode: BookingMode = BookingMode.FLEXIBLE,
        now: Optional[datetime] = None,
    ) -> AvailabilityWindow:
        """
        Enriched slots for a product over a bounded window.

        In monthly mode a slot's ``available`` is the minimum across its four
        weekly occurrences, and zero if any of them is missing or full.
        """
        current = ensure_utc(now) or utc_now()
        ctx = self.get_product_context(product_id)
        if mode == BookingMode.MONTHLY and not ctx.capabilities.supports_monthly_mode:
            raise ValidationException(
                "Monthly booking is not offered for this product", code="MODE_NOT_SUPPORTED"
            )

        today = current.astimezone(get_studio_timezone()).date()
        window_start = max(start or today, today)
        window_days = min(days or settings.availability_window_days, settings.availability_window_days)
        if window_days < 1:
            raise ValidationException("days must be at least 1", code="INVALID_WINDOW")
        window_end = window_start + timedelta(days=window_days)

        if mode == BookingMode.MONTHLY:
            lookahead = 7 * (settings.monthly_weeks - 1)
            enriched = self.enriched_slots(ctx, window_start, window_days + lookahead, now=current)
            slots = self._monthly_view(enriched, window_end)
        else:
            slots = self.enriched_slots(ctx, window_start, window_days, now=current)

        return AvailabilityWindow(
            product_id=product_id,
            mode=mode,
            window_start=window_start,
            window_end=window_end,
            slots=slots,
        )

    def _monthly_view(self, enriched: List[EnrichedSlot], window_end: date) -> List[EnrichedSlot]:
        index = index_slots(enriched)
        view: List[EnrichedSlot] = []
        for anchor in enriched:
            if anchor.slot.date >= window_end:
                break
            chain = []
            for ref in derive_monthly_slots(
                SlotRef(anchor.slot.date, anchor.slot.time, anchor.slot.instructor_id)
            ):
                match = index.get(ref.key(anchor.slot.technique))
                if match is None or match.slot.instructor_id != anchor.slot.instructor_id:
                    chain = []
                    break
                chain.append(match)
            available = min((s.available for s in chain), default=0)
            view.append(
                EnrichedSlot(
                    slot=anchor.slot,
                    paid_bookings_count=anchor.paid_bookings_count,
                    total_bookings_count=anchor.total_bookings_count,
                    max_capacity=anchor.max_capacity,
                    available=available,
                )
            )
        return view

    def evaluate_selection(
        self,
        ctx: ProductContext,
        mode: BookingMode,
        chosen: Sequence[SlotRef],
        *,
        participants: Optional[int],
        now: datetime,
    ) -> SelectionResult:
        index = self.index_for_refs(ctx, chosen, now=now)
        return self.policy.validate(
            mode,
            chosen,
            index,
            ctx.capabilities,
            package_size=ctx.package_size,
            technique=ctx.technique,
            now=now,
            units_needed=ctx.units_needed(participants),
        )

    @BaseService.measure_operation("validate_selection")
    def validate_selection(
        self,
        product_id: str,
        mode: BookingMode,
        chosen: Sequence[SlotRef],
        *,
        participants: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> SelectionOutcome:
        """Summary-step check. Never persists anything."""
        current = ensure_utc(now) or utc_now()
        ctx = self.get_product_context(product_id)
        result = self.evaluate_selection(ctx, mode, chosen, participants=participants, now=current)
        evaluated = [s.slot for s in result.slots] if result.ok else list(chosen)
        flagged = requires_no_refund_acceptance(evaluated, now=current)
        return SelectionOutcome(
            ok=result.ok,
            reason=result.reason,
            kind=result.kind,
            slots=result.slots,
            unavailable=result.unavailable,
            requires_no_refund_ack=flagged,
        )
