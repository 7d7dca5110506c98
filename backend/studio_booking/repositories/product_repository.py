# backend/studio_booking/repositories/product_repository.py
"""Product lookups."""

import logging
from typing import List, Optional, cast

from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.product import Product
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ProductRepository(BaseRepository[Product]):
    def __init__(self, db: Session):
        super().__init__(db, Product)

    def get_active(self, product_id: str) -> Optional[Product]:
        try:
            return cast(
                Optional[Product],
                self.db.query(Product)
                .filter(Product.id == product_id, Product.is_active.is_(True))
                .first(),
            )
        except Exception as exc:
            self.logger.error("Failed to load product %s: %s", product_id, str(exc))
            raise RepositoryException("Failed to load product") from exc

    def list_active(self) -> List[Product]:
        try:
            return cast(
                List[Product],
                self.db.query(Product)
                .filter(Product.is_active.is_(True))
                .order_by(Product.name.asc())
                .all(),
            )
        except Exception as exc:
            self.logger.error("Failed to list products: %s", str(exc))
            raise RepositoryException("Failed to list products") from exc
