# backend/studio_booking/routes/v1/schedule.py
"""
Schedule maintenance routes - API v1

Endpoints:
    GET /rules              - Active weekly rules
    POST /rules             - Add a weekly class
    PUT /overrides/{date}   - Create or replace the override for a date
"""

import asyncio
from datetime import date
import logging
from typing import List, NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from ...api.dependencies import get_schedule_service
from ...core.exceptions import DomainException
from ...schemas.schedule import OverrideResponse, OverrideUpsert, RuleCreate, RuleResponse
from ...services.schedule_service import ScheduleService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["schedule-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.get("/rules", response_model=List[RuleResponse])
async def list_rules(
    technique: Optional[str] = Query(None),
    schedule_service: ScheduleService = Depends(get_schedule_service),
) -> List[RuleResponse]:
    rules = await asyncio.to_thread(schedule_service.list_rules, technique=technique)
    return [RuleResponse.from_rule(r) for r in rules]


@router.post("/rules", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    payload: RuleCreate = Body(...),
    schedule_service: ScheduleService = Depends(get_schedule_service),
) -> RuleResponse:
    try:
        rule = await asyncio.to_thread(schedule_service.create_rule, **payload.model_dump())
    except DomainException as exc:
        handle_domain_exception(exc)
    return RuleResponse.from_rule(rule)


@router.put("/overrides/{override_date}", response_model=OverrideResponse)
async def upsert_override(
    override_date: date,
    payload: OverrideUpsert = Body(...),
    schedule_service: ScheduleService = Depends(get_schedule_service),
) -> OverrideResponse:
    """Lowering capacity below the seats already held is rejected with 409."""
    try:
        override = await asyncio.to_thread(
            schedule_service.upsert_override,
            override_date,
            technique=payload.technique,
            product_id=payload.product_id,
            is_blocked=payload.is_blocked,
            capacity=payload.capacity,
            entries=[e.model_dump(by_alias=True) for e in payload.entries],
            replace_rules=payload.replace_rules,
            reason=payload.reason,
        )
    except DomainException as exc:
        handle_domain_exception(exc)
    return OverrideResponse.from_override(override)
