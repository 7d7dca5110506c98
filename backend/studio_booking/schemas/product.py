"""Product catalogue schemas."""

from typing import Optional

from .base import StandardizedModel


class ProductResponse(StandardizedModel):
    id: str
    name: str
    description: Optional[str] = None
    product_type: str
    technique: Optional[str] = None
    price_cents: int
    classes: Optional[int] = None
    participants_default: int
