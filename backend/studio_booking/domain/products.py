# backend/studio_booking/domain/products.py
"""
Capabilities of each product type.

Every ``ProductType`` member must have an entry in ``PRODUCT_CAPABILITIES``;
the module refuses to import otherwise, so a new product type cannot ship
without deciding how it books.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional

from ..core.enums import ProductType, Technique
from ..core.exceptions import ValidationException
from ..models.product import Product


def _package_classes(product: Product) -> int:
    return int(product.classes or 1)


def _one(_product: Product) -> int:
    return 1


def _none(_product: Product) -> int:
    return 0


@dataclass(frozen=True)
class ProductCapabilities:
    has_slots: bool
    capacity_unit_size: int
    supports_monthly_mode: bool
    allows_deferred_scheduling: bool
    package_size: Callable[[Product], int]


PRODUCT_CAPABILITIES: Dict[ProductType, ProductCapabilities] = {
    ProductType.CLASS_PACKAGE: ProductCapabilities(
        has_slots=True,
        capacity_unit_size=1,
        supports_monthly_mode=True,
        allows_deferred_scheduling=False,
        package_size=_package_classes,
    ),
    ProductType.SINGLE_CLASS: ProductCapabilities(
        has_slots=True,
        capacity_unit_size=1,
        supports_monthly_mode=False,
        allows_deferred_scheduling=False,
        package_size=_one,
    ),
    ProductType.INTRODUCTORY_CLASS: ProductCapabilities(
        has_slots=True,
        capacity_unit_size=1,
        supports_monthly_mode=False,
        allows_deferred_scheduling=False,
        package_size=_one,
    ),
    ProductType.GROUP_CLASS: ProductCapabilities(
        has_slots=True,
        capacity_unit_size=1,
        supports_monthly_mode=False,
        allows_deferred_scheduling=False,
        package_size=_one,
    ),
    ProductType.GROUP_EXPERIENCE: ProductCapabilities(
        has_slots=True,
        capacity_unit_size=1,
        supports_monthly_mode=False,
        allows_deferred_scheduling=True,
        package_size=_one,
    ),
    ProductType.COUPLES_EXPERIENCE: ProductCapabilities(
        has_slots=True,
        capacity_unit_size=2,
        supports_monthly_mode=False,
        allows_deferred_scheduling=True,
        package_size=_one,
    ),
    ProductType.OPEN_STUDIO_SUBSCRIPTION: ProductCapabilities(
        has_slots=False,
        capacity_unit_size=1,
        supports_monthly_mode=False,
        allows_deferred_scheduling=False,
        package_size=_none,
    ),
}

_missing = set(ProductType) - set(PRODUCT_CAPABILITIES)
if _missing:
    raise RuntimeError(
        "Product types without capabilities: " + ", ".join(sorted(m.value for m in _missing))
    )


def capabilities_for(product_type: str) -> ProductCapabilities:
    try:
        return PRODUCT_CAPABILITIES[ProductType(product_type)]
    except ValueError as exc:
        raise ValidationException(
            f"Unknown product type '{product_type}'",
            code="UNKNOWN_PRODUCT_TYPE",
        ) from exc


_TECHNIQUE_ALIASES = {
    Technique.HAND_MODELING.value: Technique.MOLDING.value,
    Technique.PAINTING.value: Technique.MOLDING.value,
}


def normalize_technique(technique: Optional[str]) -> Optional[str]:
    """Hand modeling and painting share the molding room and its capacity."""
    if not technique:
        return None
    return _TECHNIQUE_ALIASES.get(technique, technique)
