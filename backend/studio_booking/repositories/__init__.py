"""Data access layer. Repositories flush; services commit."""

from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .factory import RepositoryFactory
from .giftcard_repository import GiftcardRepository
from .product_repository import ProductRepository
from .schedule_repository import ScheduleRepository

__all__ = [
    "BaseRepository",
    "BookingRepository",
    "GiftcardRepository",
    "ProductRepository",
    "RepositoryFactory",
    "ScheduleRepository",
]
