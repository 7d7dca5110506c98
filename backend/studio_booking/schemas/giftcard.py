"""Gift card hold and balance schemas."""

from datetime import datetime
from typing import Optional

from pydantic import Field, model_validator

from ..core.timezone_utils import ensure_utc
from ..models.giftcard import GiftcardHold
from .base import StandardizedModel, StrictRequestModel


class HoldCreate(StrictRequestModel):
    """Reserve part of a gift card balance. Identify the card by id or code."""

    giftcard_id: Optional[str] = None
    code: Optional[str] = Field(default=None, max_length=40)
    amount_cents: int = Field(..., gt=0)
    ttl_minutes: Optional[int] = Field(default=None, ge=1, le=24 * 60)

    @model_validator(mode="after")
    def _card_reference(self) -> "HoldCreate":
        if not self.giftcard_id and not self.code:
            raise ValueError("Either giftcard_id or code is required")
        return self


class HoldResponse(StandardizedModel):
    id: str
    giftcard_id: str
    code: str
    amount_cents: int
    status: str
    expires_at: datetime
    booking_id: Optional[str] = None
    consumed_at: Optional[datetime] = None
    released_at: Optional[datetime] = None

    @classmethod
    def from_hold(cls, hold: GiftcardHold) -> "HoldResponse":
        return cls(
            id=hold.id,
            giftcard_id=hold.giftcard_id,
            code=hold.code,
            amount_cents=hold.amount_cents,
            status=hold.status,
            expires_at=ensure_utc(hold.expires_at),
            booking_id=hold.booking_id,
            consumed_at=ensure_utc(hold.consumed_at),
            released_at=ensure_utc(hold.released_at),
        )


class GiftcardBalanceResponse(StandardizedModel):
    giftcard_id: str
    code: str
    initial_value_cents: int
    balance_cents: int
    held_cents: int
    available_cents: int
    expires_at: Optional[datetime] = None
