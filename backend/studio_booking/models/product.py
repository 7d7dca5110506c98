# backend/studio_booking/models/product.py
"""Sellable product (class package, experience, subscription...)."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func
import ulid

from ..database import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    product_type = Column(String(40), nullable=False, index=True)
    technique = Column(String(30), nullable=True)

    price_cents = Column(Integer, nullable=False, default=0)
    # Number of sessions included; only meaningful for packages
    classes = Column(Integer, nullable=True)
    # Seats one booking takes by default (2 for couples)
    participants_default = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    def __repr__(self) -> str:
        return f"<Product {self.id} type={self.product_type} technique={self.technique}>"
