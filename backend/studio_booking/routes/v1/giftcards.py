# backend/studio_booking/routes/v1/giftcards.py
"""
Gift card routes - API v1

Endpoints:
    POST /holds                    - Reserve part of a balance
    POST /holds/{hold_id}/release  - Release a hold (idempotent)
    GET /{code}/balance            - Balance, held and spendable amounts
"""

import asyncio
import logging
from typing import NoReturn

from fastapi import APIRouter, Body, Depends, HTTPException, status

from ...api.dependencies import get_giftcard_hold_service
from ...core.exceptions import DomainException
from ...schemas.giftcard import GiftcardBalanceResponse, HoldCreate, HoldResponse
from ...services.giftcard_hold_service import GiftcardHoldService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["giftcards-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.post("/holds", response_model=HoldResponse, status_code=status.HTTP_201_CREATED)
async def create_hold(
    payload: HoldCreate = Body(...),
    hold_service: GiftcardHoldService = Depends(get_giftcard_hold_service),
) -> HoldResponse:
    try:
        hold = await asyncio.to_thread(
            hold_service.create_hold,
            amount_cents=payload.amount_cents,
            giftcard_id=payload.giftcard_id,
            code=payload.code,
            ttl_minutes=payload.ttl_minutes,
        )
    except DomainException as exc:
        handle_domain_exception(exc)
    return HoldResponse.from_hold(hold)


@router.post("/holds/{hold_id}/release", response_model=HoldResponse)
async def release_hold(
    hold_id: str,
    hold_service: GiftcardHoldService = Depends(get_giftcard_hold_service),
) -> HoldResponse:
    try:
        hold = await asyncio.to_thread(hold_service.release_hold, hold_id)
    except DomainException as exc:
        handle_domain_exception(exc)
    return HoldResponse.from_hold(hold)


@router.get("/{code}/balance", response_model=GiftcardBalanceResponse)
async def get_balance(
    code: str,
    hold_service: GiftcardHoldService = Depends(get_giftcard_hold_service),
) -> GiftcardBalanceResponse:
    try:
        balance = await asyncio.to_thread(hold_service.get_balance, code)
    except DomainException as exc:
        handle_domain_exception(exc)
    return GiftcardBalanceResponse(**balance)
