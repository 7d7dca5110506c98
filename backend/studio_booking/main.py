# backend/studio_booking/main.py
"""
FastAPI application for the studio booking engine.

Run locally with ``uvicorn studio_booking.main:app --reload`` from ``backend/``.
"""

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator, Awaitable, Callable

from fastapi import APIRouter, FastAPI, Request, Response
import ulid

from .core.config import settings
from .core.request_context import attach_request_id_filter, reset_request_id, set_request_id
from .errors import register_error_handlers
from .routes.v1 import bookings as bookings_v1
from .routes.v1 import giftcards as giftcards_v1
from .routes.v1 import health as health_v1
from .routes.v1 import maintenance as maintenance_v1
from .routes.v1 import products as products_v1
from .routes.v1 import schedule as schedule_v1

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s",
)
attach_request_id_filter()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown."""
    logger.info("Studio booking API starting up...")
    logger.info(
        f"Environment: {settings.environment} "
        f"(capacity basis={settings.capacity_consumption_basis}, "
        f"notifications={'on' if settings.notifications_enabled else 'off'})"
    )
    if settings.is_sqlite and not settings.is_testing:
        from .init_db import init_db

        init_db()
    yield
    logger.info("Studio booking API shutting down...")


app = FastAPI(
    title="Studio Booking API",
    description="Slot availability, capacity and gift card hold reconciliation for studio classes",
    version="1.0.0",
    lifespan=app_lifespan,
)

register_error_handlers(app)


@app.middleware("http")
async def request_id_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Propagate or mint an X-Request-ID for logs and problem bodies."""
    request_id = request.headers.get("X-Request-ID") or str(ulid.ULID())
    token = set_request_id(request_id)
    try:
        response = await call_next(request)
    finally:
        reset_request_id(token)
    response.headers["X-Request-ID"] = request_id
    return response


api_v1 = APIRouter(prefix="/api/v1")
api_v1.include_router(products_v1.router, prefix="/products")
api_v1.include_router(bookings_v1.router, prefix="/bookings")
api_v1.include_router(giftcards_v1.router, prefix="/giftcards")
api_v1.include_router(schedule_v1.router, prefix="/schedule")
api_v1.include_router(maintenance_v1.router, prefix="/maintenance")

app.include_router(api_v1)
app.include_router(health_v1.router)
