# backend/studio_booking/repositories/giftcard_repository.py
"""
Gift card Repository

Balance, hold and redemption queries behind the hold reconciler.
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import List, Optional, cast

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from ..core.enums import HoldStatus
from ..core.exceptions import RepositoryException
from ..models.giftcard import Giftcard, GiftcardHold, GiftcardRedemption
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class GiftcardRepository(BaseRepository[Giftcard]):
    def __init__(self, db: Session):
        super().__init__(db, Giftcard)

    def get_by_code(self, code: str, *, for_update: bool = False) -> Optional[Giftcard]:
        try:
            query = self.db.query(Giftcard).filter(
                func.upper(Giftcard.code) == code.strip().upper()
            )
            if for_update and self.dialect_name != "sqlite":
                query = query.with_for_update()
            return cast(Optional[Giftcard], query.first())
        except Exception as exc:
            self.logger.error("Failed to load gift card by code: %s", str(exc))
            raise RepositoryException("Failed to load gift card") from exc

    def get_hold(self, hold_id: str, *, for_update: bool = False) -> Optional[GiftcardHold]:
        try:
            query = self.db.query(GiftcardHold).filter(GiftcardHold.id == hold_id)
            if for_update and self.dialect_name != "sqlite":
                query = query.with_for_update()
            return cast(Optional[GiftcardHold], query.first())
        except Exception as exc:
            self.logger.error("Failed to load hold %s: %s", hold_id, str(exc))
            raise RepositoryException("Failed to load gift card hold") from exc

    def get_total_live_holds(self, *, giftcard_id: str, now: datetime) -> int:
        """Sum of active, unexpired holds on a card, in cents."""
        try:
            result = (
                self.db.query(func.sum(GiftcardHold.amount_cents))
                .filter(
                    and_(
                        GiftcardHold.giftcard_id == giftcard_id,
                        GiftcardHold.status == HoldStatus.ACTIVE.value,
                        GiftcardHold.expires_at > now,
                    )
                )
                .scalar()
            )
            return int(result or 0)
        except Exception as exc:
            self.logger.error("Failed to total holds: %s", str(exc))
            raise RepositoryException("Failed to total gift card holds") from exc

    def get_total_redeemed(self, *, giftcard_id: str) -> int:
        try:
            result = (
                self.db.query(func.sum(GiftcardRedemption.amount_cents))
                .filter(GiftcardRedemption.giftcard_id == giftcard_id)
                .scalar()
            )
            return int(result or 0)
        except Exception as exc:
            self.logger.error("Failed to total redemptions: %s", str(exc))
            raise RepositoryException("Failed to total gift card redemptions") from exc

    def get_holds_for_booking(self, *, booking_id: str, statuses: Optional[List[str]] = None) -> List[GiftcardHold]:
        try:
            query = self.db.query(GiftcardHold).filter(GiftcardHold.booking_id == booking_id)
            if statuses:
                query = query.filter(GiftcardHold.status.in_(statuses))
            return cast(List[GiftcardHold], query.order_by(GiftcardHold.created_at.asc()).all())
        except Exception as exc:
            self.logger.error("Failed to load holds for booking %s: %s", booking_id, str(exc))
            raise RepositoryException("Failed to load holds for booking") from exc

    def get_expired_active_holds(self, *, now: datetime, limit: int) -> List[GiftcardHold]:
        try:
            query = (
                self.db.query(GiftcardHold)
                .filter(
                    GiftcardHold.status == HoldStatus.ACTIVE.value,
                    GiftcardHold.expires_at <= now,
                )
                .order_by(GiftcardHold.expires_at.asc(), GiftcardHold.id.asc())
                .limit(limit)
            )
            return cast(List[GiftcardHold], query.all())
        except Exception as exc:
            self.logger.error("Failed to load expired holds: %s", str(exc))
            raise RepositoryException("Failed to load expired holds") from exc

    def get_holds_expiring_before(self, *, now: datetime, cutoff: datetime, limit: int) -> List[GiftcardHold]:
        """Active holds expiring in ``(now, cutoff]`` that have not been notified yet."""
        try:
            query = (
                self.db.query(GiftcardHold)
                .filter(
                    GiftcardHold.status == HoldStatus.ACTIVE.value,
                    GiftcardHold.expires_at > now,
                    GiftcardHold.expires_at <= cutoff,
                    GiftcardHold.expiring_notified_at.is_(None),
                )
                .order_by(GiftcardHold.expires_at.asc())
                .limit(limit)
            )
            return cast(List[GiftcardHold], query.all())
        except Exception as exc:
            self.logger.error("Failed to load expiring holds: %s", str(exc))
            raise RepositoryException("Failed to load expiring holds") from exc

    def create_hold(self, **fields) -> GiftcardHold:
        try:
            hold = GiftcardHold(**fields)
            self.db.add(hold)
            self.db.flush()
            return hold
        except Exception as exc:
            self.logger.error("Failed to create hold: %s", str(exc))
            raise RepositoryException(f"Failed to create gift card hold: {exc}") from exc

    def get_redemption_for_hold(self, hold_id: str) -> Optional[GiftcardRedemption]:
        try:
            return cast(
                Optional[GiftcardRedemption],
                self.db.query(GiftcardRedemption)
                .filter(GiftcardRedemption.hold_id == hold_id)
                .first(),
            )
        except Exception as exc:
            self.logger.error("Failed to load redemption for hold %s: %s", hold_id, str(exc))
            raise RepositoryException("Failed to load redemption") from exc

    def create_redemption(self, **fields) -> GiftcardRedemption:
        try:
            redemption = GiftcardRedemption(**fields)
            self.db.add(redemption)
            self.db.flush()
            return redemption
        except Exception as exc:
            self.logger.error("Failed to create redemption: %s", str(exc))
            raise RepositoryException(f"Failed to create redemption: {exc}") from exc
