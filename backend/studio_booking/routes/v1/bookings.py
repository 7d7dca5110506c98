# backend/studio_booking/routes/v1/bookings.py
"""
Booking routes - API v1

Versioned booking endpoints under /api/v1/bookings.
All business logic delegated to AvailabilityService and BookingService.

Endpoints:
    POST /validate-selection                   - Summary-step check, never persists
    POST /                                     - Submit a pre-reservation
    GET /code/{booking_code}                   - Resume lookup by booking code
    GET /{booking_id}                          - Booking with payments and audit trail
    POST /{booking_id}/confirm-payment         - Record a payment
    POST /{booking_id}/cancel                  - Staff cancellation
    POST /{booking_id}/reschedule              - Move or schedule one class
    PATCH /{booking_id}/payments/{payment_id}  - Edit a payment entry
    DELETE /{booking_id}/payments/{payment_id} - Soft-delete a payment entry
"""

import asyncio
import logging
from typing import NoReturn, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Response, status

from ...api.dependencies import get_availability_service, get_booking_service
from ...core.exceptions import DomainException
from ...domain.context import BookingRequestContext
from ...schemas.booking import (
    BookingCreate,
    BookingCreateResponse,
    BookingResponse,
    PaymentCreate,
    PaymentUpdate,
    ReasonRequest,
    RescheduleRequest,
    ValidateSelectionRequest,
    ValidateSelectionResponse,
)
from ...schemas.slots import EnrichedSlotResponse
from ...services.availability_service import AvailabilityService
from ...services.booking_service import BookingService, PaymentInput

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["bookings-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


# ============================================================================
# SECTION 1: Static routes (no path parameters)
# ============================================================================


@router.post("/validate-selection", response_model=ValidateSelectionResponse)
async def validate_selection(
    payload: ValidateSelectionRequest = Body(...),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> ValidateSelectionResponse:
    """A failed check is a normal 200 answer with ``ok=false`` and a reason."""
    try:
        outcome = await asyncio.to_thread(
            availability_service.validate_selection,
            payload.product_id,
            payload.mode,
            [s.to_ref() for s in payload.slots],
            participants=payload.participants,
        )
    except DomainException as exc:
        handle_domain_exception(exc)

    return ValidateSelectionResponse(
        ok=outcome.ok,
        reason=outcome.reason,
        kind=outcome.kind,
        slots=[EnrichedSlotResponse.from_enriched(s) for s in outcome.slots],
        unavailable=outcome.unavailable,
        requires_no_refund_ack=outcome.requires_no_refund_ack,
    )


@router.post("", response_model=BookingCreateResponse)
async def submit_booking(
    response: Response,
    payload: BookingCreate = Body(...),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingCreateResponse:
    """
    Create a pre-reservation.

    Returns 201 for a new booking and 200 when an existing one is returned for
    an idempotent resubmission.
    """
    ctx = BookingRequestContext(
        product_id=payload.product_id,
        mode=payload.mode,
        chosen_slots=[s.to_ref() for s in payload.slots],
        customer_info=payload.customer_info.model_dump(),
        participants=payload.participants,
        giftcard_hold_id=payload.giftcard_hold_id,
        accepted_no_refund=payload.accepted_no_refund,
        booking_code=payload.booking_code,
        client_note=payload.client_note,
    )
    try:
        result = await asyncio.to_thread(booking_service.submit_booking, ctx)
    except DomainException as exc:
        handle_domain_exception(exc)

    response.status_code = status.HTTP_201_CREATED if result.created else status.HTTP_200_OK
    booking = result.booking
    return BookingCreateResponse(
        ok=result.ok,
        created=result.created,
        booking_id=booking.id,
        booking_code=booking.booking_code,
        status=booking.status,
        pending_balance_cents=result.pending_balance_cents,
        requires_no_refund_ack=result.requires_no_refund_ack,
        expires_at=booking.expires_at,
    )


@router.get("/code/{booking_code}", response_model=BookingResponse)
async def get_booking_by_code(
    booking_code: str,
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(booking_service.get_booking_by_code, booking_code)
    except DomainException as exc:
        handle_domain_exception(exc)
    return BookingResponse.from_booking(booking)


# ============================================================================
# SECTION 2: Routes with a booking id
# ============================================================================


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str,
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(booking_service.get_booking, booking_id)
    except DomainException as exc:
        handle_domain_exception(exc)
    return BookingResponse.from_booking(booking)


@router.post("/{booking_id}/confirm-payment", response_model=BookingResponse)
async def confirm_payment(
    booking_id: str,
    payload: PaymentCreate = Body(...),
    x_actor: Optional[str] = Header(default=None),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        result = await asyncio.to_thread(
            booking_service.confirm_payment,
            booking_id,
            PaymentInput(
                amount_cents=payload.amount_cents,
                method=payload.method,
                received_at=payload.received_at,
                note=payload.note,
            ),
            actor=x_actor,
        )
    except DomainException as exc:
        handle_domain_exception(exc)
    return BookingResponse.from_booking(result.booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: str,
    payload: ReasonRequest = Body(...),
    x_actor: Optional[str] = Header(default=None),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.cancel_booking, booking_id, reason=payload.reason, actor=x_actor
        )
    except DomainException as exc:
        handle_domain_exception(exc)
    return BookingResponse.from_booking(booking)


@router.patch("/{booking_id}/payments/{payment_id}", response_model=BookingResponse)
async def update_payment(
    booking_id: str,
    payment_id: str,
    payload: PaymentUpdate = Body(...),
    x_actor: Optional[str] = Header(default=None),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.update_payment,
            booking_id,
            payment_id,
            amount_cents=payload.amount_cents,
            method=payload.method,
            received_at=payload.received_at,
            note=payload.note,
            reason=payload.reason,
            actor=x_actor,
        )
    except DomainException as exc:
        handle_domain_exception(exc)
    return BookingResponse.from_booking(booking)


@router.delete("/{booking_id}/payments/{payment_id}", response_model=BookingResponse)
async def delete_payment(
    booking_id: str,
    payment_id: str,
    payload: ReasonRequest = Body(...),
    x_actor: Optional[str] = Header(default=None),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.delete_payment,
            booking_id,
            payment_id,
            reason=payload.reason,
            actor=x_actor,
        )
    except DomainException as exc:
        handle_domain_exception(exc)
    return BookingResponse.from_booking(booking)


@router.post("/{booking_id}/reschedule", response_model=BookingResponse)
async def reschedule_booking_slot(
    booking_id: str,
    payload: RescheduleRequest = Body(...),
    x_actor: Optional[str] = Header(default=None),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.reschedule_slot,
            booking_id,
            payload.to_slot.to_ref(),
            from_slot=payload.from_slot.to_ref() if payload.from_slot else None,
            actor=x_actor,
        )
    except DomainException as exc:
        handle_domain_exception(exc)
    return BookingResponse.from_booking(booking)
