# backend/studio_booking/repositories/factory.py
"""
Repository Factory

Centralizes repository creation so services never construct repositories
with ad hoc arguments.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

if TYPE_CHECKING:
    from .booking_repository import BookingRepository
    from .giftcard_repository import GiftcardRepository
    from .product_repository import ProductRepository
    from .schedule_repository import ScheduleRepository


class RepositoryFactory:
    @staticmethod
    def create_product_repository(db: Session) -> "ProductRepository":
        from .product_repository import ProductRepository

        return ProductRepository(db)

    @staticmethod
    def create_schedule_repository(db: Session) -> "ScheduleRepository":
        from .schedule_repository import ScheduleRepository

        return ScheduleRepository(db)

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_giftcard_repository(db: Session) -> "GiftcardRepository":
        from .giftcard_repository import GiftcardRepository

        return GiftcardRepository(db)
