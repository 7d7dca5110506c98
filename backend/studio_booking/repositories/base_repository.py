# backend/studio_booking/repositories/base_repository.py
"""
Base repository for the booking engine.

Repositories only talk to the session: they never commit. Transaction
boundaries belong to the service layer. Every SQLAlchemy failure is re-raised
as ``RepositoryException`` so services can tell data-access errors apart from
domain errors.
"""

import logging
from typing import Any, Generic, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import RepositoryException

T = TypeVar("T")

logger = logging.getLogger(__name__)


class BaseRepository(Generic[T]):
    """
    Common data access patterns for a single model.

    Attributes:
        db: SQLAlchemy session (managed by service layer)
        model: SQLAlchemy model class
    """

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    @property
    def dialect_name(self) -> str:
        bind = self.db.get_bind()
        return bind.dialect.name if bind is not None else ""

    def _query(self) -> Query:
        return self.db.query(self.model)

    def get_by_id(self, id: str, *, for_update: bool = False) -> Optional[T]:
        """
        Retrieve an entity by its primary key.

        ``for_update`` takes a row lock where the dialect supports it; SQLite
        ignores it and relies on its database-level write lock.
        """
        try:
            query = self._query().filter(self.model.id == id)
            if for_update and self.dialect_name != "sqlite":
                query = query.with_for_update()
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting {self.model.__name__} by id {id}: {str(e)}")
            raise RepositoryException(f"Failed to retrieve {self.model.__name__}: {str(e)}")

    def create(self, **kwargs: Any) -> T:
        """
        Create a new entity.

        Note: Does NOT commit - transaction management is handled by service layer.
        """
        try:
            entity = self.model(**kwargs)
            self.db.add(entity)
            self.db.flush()  # Get ID without committing
            return entity
        except IntegrityError as exc:
            self.logger.error("Integrity error creating %s: %s", self.model.__name__, exc)
            self.db.rollback()
            raise RepositoryException(f"Integrity constraint violated: {exc}") from exc
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating {self.model.__name__}: {str(e)}")
            self.db.rollback()
            raise RepositoryException(f"Failed to create {self.model.__name__}: {str(e)}")

    def add(self, entity: T) -> T:
        try:
            self.db.add(entity)
            self.db.flush()
            return entity
        except SQLAlchemyError as e:
            self.logger.error(f"Error adding {self.model.__name__}: {str(e)}")
            self.db.rollback()
            raise RepositoryException(f"Failed to add {self.model.__name__}: {str(e)}")

    def exists(self, **kwargs: Any) -> bool:
        try:
            return self._query().filter_by(**kwargs).first() is not None
        except SQLAlchemyError as e:
            self.logger.error(f"Error checking existence: {str(e)}")
            raise RepositoryException(f"Failed to check existence: {str(e)}")

    def flush(self) -> None:
        """Flush pending ORM changes."""
        try:
            self.db.flush()
        except SQLAlchemyError as e:
            self.logger.error(f"Error flushing {self.model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to flush {self.model.__name__}: {str(e)}")
