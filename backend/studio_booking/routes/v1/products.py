# backend/studio_booking/routes/v1/products.py
"""
Product catalogue and slot availability - API v1

Endpoints:
    GET /                     - Active products
    GET /{product_id}/slots   - Enriched slots for a window
"""

import asyncio
from datetime import date
import logging
from typing import List, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ...api.dependencies import get_availability_service, get_db
from ...core.enums import BookingMode
from ...core.exceptions import DomainException, TransientStoreException
from ...repositories.factory import RepositoryFactory
from ...schemas.product import ProductResponse
from ...schemas.slots import EnrichedSlotResponse, SlotListResponse
from ...services.availability_service import AvailabilityService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["products-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.get("", response_model=List[ProductResponse])
async def list_products(db: Session = Depends(get_db)) -> List[ProductResponse]:
    repository = RepositoryFactory.create_product_repository(db)
    products = await asyncio.to_thread(repository.list_active)
    return [ProductResponse.model_validate(p) for p in products]


@router.get("/{product_id}/slots", response_model=SlotListResponse)
async def list_available_slots(
    product_id: str,
    start: Optional[date] = Query(None, description="First date of the window (defaults to today)"),
    days: Optional[int] = Query(None, ge=1, le=366),
    mode: BookingMode = Query(BookingMode.FLEXIBLE),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> SlotListResponse:
    """
    Slots with live paid and total counts.

    When the ledger is unreachable the 503 body carries every slot marked
    fully booked under ``errors.fallback_slots`` so a client can keep rendering.
    """
    try:
        window = await asyncio.to_thread(
            availability_service.list_available_slots,
            product_id,
            start=start,
            days=days,
            mode=mode,
        )
    except TransientStoreException as exc:
        http_exc = exc.to_http_exception()
        http_exc.detail["details"] = {
            **exc.details,
            "fallback_slots": [
                EnrichedSlotResponse.from_enriched(s).model_dump(mode="json", by_alias=True)
                for s in exc.fallback
            ],
        }
        raise http_exc
    except DomainException as exc:
        handle_domain_exception(exc)

    return SlotListResponse(
        product_id=window.product_id,
        mode=window.mode,
        window_start=window.window_start,
        window_end=window.window_end,
        slots=[EnrichedSlotResponse.from_enriched(s) for s in window.slots],
    )
