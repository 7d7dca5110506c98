# backend/studio_booking/core/config.py
import logging
import os
from pathlib import Path
from typing import Dict, Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


class Settings(BaseSettings):
    environment: str = Field(default="development", description="Deployment environment")
    is_testing: bool = Field(default=False, description="Set by the test harness")

    database_url: str = Field(
        default="sqlite:///./studio_booking.db",
        description="SQLAlchemy URL of the booking ledger",
    )
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL for cross-process slot locks and the Celery broker",
    )

    # Calendar window
    availability_window_days: int = Field(default=90, ge=1, le=366)
    studio_timezone: str = Field(default="UTC", description="Zone used to read slot wall times")

    # Booking window policy
    flexible_window_days: int = Field(default=30, ge=1)
    monthly_weeks: int = Field(default=4, ge=1)

    # No-refund boundary
    no_refund_horizon_hours: int = Field(default=48, ge=0)

    # Holds and pre-reservations
    pre_reservation_ttl_minutes: int = Field(default=120, ge=1)
    giftcard_hold_ttl_minutes: int = Field(default=15, ge=1)
    hold_expiring_notice_minutes: int = Field(default=5, ge=0)
    expiry_sweep_batch_size: int = Field(default=500, ge=1)

    # Capacity
    capacity_consumption_basis: Literal["paid_and_pending", "paid_only"] = Field(
        default="paid_and_pending",
        description="Which bookings count against a slot when admitting new ones",
    )
    default_class_capacity: Dict[str, int] = Field(
        default_factory=lambda: {"potters_wheel": 8, "molding": 22},
        description="Fallback capacity per technique when a rule does not set one",
    )

    # Concurrency
    slot_lock_timeout_seconds: float = Field(default=5.0, gt=0)
    slot_lock_ttl_seconds: int = Field(default=30, ge=1)
    store_retry_attempts: int = Field(default=3, ge=1)
    store_retry_base_delay_seconds: float = Field(default=0.05, ge=0)

    # Booking codes
    booking_code_prefix: str = Field(default="C-ALMA")

    # Notifications and maintenance
    notifications_enabled: bool = Field(default=False)
    cron_secret: Optional[str] = Field(default=None)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("booking_code_prefix")
    @classmethod
    def _normalize_prefix(cls, value: str) -> str:
        cleaned = value.strip().upper()
        if not cleaned:
            raise ValueError("booking_code_prefix must not be empty")
        return cleaned

    @field_validator("database_url")
    @classmethod
    def _normalize_database_url(cls, value: str) -> str:
        # Heroku-style URLs use the deprecated scheme
        if value.startswith("postgres://"):
            return "postgresql://" + value[len("postgres://") :]
        return value

    def get_database_url(self) -> str:
        return self.database_url

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


settings = Settings()
