# backend/studio_booking/models/giftcard.py
"""
Gift card balance, short-lived holds, and permanent redemptions.

Conservation: ``balance == initial_value - sum(redemptions)`` and
``sum(active holds) + sum(redemptions) <= initial_value``.
"""

from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import HoldStatus
from ..core.timezone_utils import ensure_utc
from ..database import Base


class Giftcard(Base):
    __tablename__ = "giftcards"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    code = Column(String(40), nullable=False, unique=True, index=True)
    initial_value_cents = Column(Integer, nullable=False)
    balance_cents = Column(Integer, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    holds = relationship("GiftcardHold", back_populates="giftcard", cascade="all, delete-orphan")
    redemptions = relationship(
        "GiftcardRedemption", back_populates="giftcard", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("balance_cents >= 0", name="ck_giftcard_balance_non_negative"),
        CheckConstraint("balance_cents <= initial_value_cents", name="ck_giftcard_balance_le_initial"),
    )

    def __repr__(self) -> str:
        return f"<Giftcard {self.code} balance={self.balance_cents}>"


class GiftcardHold(Base):
    __tablename__ = "giftcard_holds"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    giftcard_id = Column(String(26), ForeignKey("giftcards.id", ondelete="CASCADE"), nullable=False)
    code = Column(String(40), nullable=False)
    amount_cents = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=HoldStatus.ACTIVE.value)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    booking_id = Column(String(26), ForeignKey("bookings.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    consumed_at = Column(DateTime(timezone=True), nullable=True)
    released_at = Column(DateTime(timezone=True), nullable=True)
    expiring_notified_at = Column(DateTime(timezone=True), nullable=True)

    giftcard = relationship("Giftcard", back_populates="holds")
    booking = relationship("Booking", back_populates="holds")

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_hold_amount_positive"),
        Index("ix_giftcard_holds_card_status", "giftcard_id", "status"),
        Index("ix_giftcard_holds_status_expires", "status", "expires_at"),
    )

    def is_live(self, now: datetime) -> bool:
        """Active and not yet past its expiry."""
        expires_at = ensure_utc(self.expires_at)
        return self.status == HoldStatus.ACTIVE.value and expires_at is not None and expires_at > now

    def __repr__(self) -> str:
        return f"<GiftcardHold {self.id} amount={self.amount_cents} status={self.status}>"


class GiftcardRedemption(Base):
    __tablename__ = "giftcard_redemptions"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    giftcard_id = Column(String(26), ForeignKey("giftcards.id", ondelete="CASCADE"), nullable=False)
    # One redemption per hold, ever
    hold_id = Column(String(26), ForeignKey("giftcard_holds.id"), nullable=False, unique=True)
    booking_id = Column(String(26), ForeignKey("bookings.id"), nullable=False)
    amount_cents = Column(Integer, nullable=False)
    redeemed_at = Column(DateTime(timezone=True), nullable=False)

    giftcard = relationship("Giftcard", back_populates="redemptions")

    def __repr__(self) -> str:
        return f"<GiftcardRedemption hold={self.hold_id} amount={self.amount_cents}>"
