# backend/studio_booking/repositories/schedule_repository.py
"""
Schedule Repository

Reads the weekly rules and per-date overrides the slot generator works from.
A product sees its own rules plus the studio-wide rules of its technique.
"""

from datetime import date
import logging
from typing import List, Optional, cast

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.schedule import RecurringRule, ScheduleOverride
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


def _scope_filter(model, technique: Optional[str], product_id: Optional[str]):
    # Rows without a product apply to every product of the technique
    clauses = []
    if technique:
        clauses.append(and_(model.product_id.is_(None), model.technique == technique))
    else:
        clauses.append(and_(model.product_id.is_(None), model.technique.is_(None)))
    if product_id:
        clauses.append(model.product_id == product_id)
    return or_(*clauses)


class ScheduleRepository(BaseRepository[RecurringRule]):
    def __init__(self, db: Session):
        super().__init__(db, RecurringRule)

    def get_rules(self, *, technique: Optional[str], product_id: Optional[str]) -> List[RecurringRule]:
        try:
            query = self.db.query(RecurringRule).filter(
                RecurringRule.is_active.is_(True),
                _scope_filter(RecurringRule, technique, product_id),
            )
            return cast(
                List[RecurringRule],
                query.order_by(RecurringRule.day_of_week, RecurringRule.time).all(),
            )
        except Exception as exc:
            self.logger.error("Failed to load recurring rules: %s", str(exc))
            raise RepositoryException("Failed to load recurring rules") from exc

    def get_overrides(
        self,
        *,
        start_date: date,
        end_date: date,
        technique: Optional[str],
        product_id: Optional[str],
    ) -> List[ScheduleOverride]:
        """Overrides in ``[start_date, end_date)`` for the product's scope, plus date-wide ones."""
        try:
            scope = or_(
                _scope_filter(ScheduleOverride, technique, product_id),
                and_(ScheduleOverride.product_id.is_(None), ScheduleOverride.technique.is_(None)),
            )
            query = self.db.query(ScheduleOverride).filter(
                ScheduleOverride.date >= start_date,
                ScheduleOverride.date < end_date,
                scope,
            )
            return cast(List[ScheduleOverride], query.order_by(ScheduleOverride.date).all())
        except Exception as exc:
            self.logger.error("Failed to load schedule overrides: %s", str(exc))
            raise RepositoryException("Failed to load schedule overrides") from exc

    def get_override(
        self, *, on_date: date, technique: Optional[str], product_id: Optional[str]
    ) -> Optional[ScheduleOverride]:
        try:
            query = self.db.query(ScheduleOverride).filter(ScheduleOverride.date == on_date)
            query = query.filter(
                ScheduleOverride.technique.is_(None)
                if technique is None
                else ScheduleOverride.technique == technique
            )
            query = query.filter(
                ScheduleOverride.product_id.is_(None)
                if product_id is None
                else ScheduleOverride.product_id == product_id
            )
            return cast(Optional[ScheduleOverride], query.first())
        except Exception as exc:
            self.logger.error("Failed to load override for %s: %s", on_date, str(exc))
            raise RepositoryException("Failed to load schedule override") from exc

    def save_override(self, override: ScheduleOverride) -> ScheduleOverride:
        try:
            self.db.add(override)
            self.db.flush()
            return override
        except Exception as exc:
            self.logger.error("Failed to save override: %s", str(exc))
            raise RepositoryException("Failed to save schedule override") from exc

    def get_active_rules(self, *, technique: Optional[str] = None) -> List[RecurringRule]:
        """Every active rule, optionally narrowed to one technique across all products."""
        try:
            query = self.db.query(RecurringRule).filter(RecurringRule.is_active.is_(True))
            if technique:
                query = query.filter(RecurringRule.technique == technique)
            return cast(
                List[RecurringRule],
                query.order_by(RecurringRule.day_of_week, RecurringRule.time).all(),
            )
        except Exception as exc:
            self.logger.error("Failed to load recurring rules: %s", str(exc))
            raise RepositoryException("Failed to load recurring rules") from exc

    def find_rule(
        self,
        *,
        day_of_week: int,
        time: str,
        technique: str,
        product_id: Optional[str],
    ) -> Optional[RecurringRule]:
        try:
            query = self.db.query(RecurringRule).filter(
                RecurringRule.is_active.is_(True),
                RecurringRule.day_of_week == day_of_week,
                RecurringRule.time == time,
                RecurringRule.technique == technique,
            )
            query = query.filter(
                RecurringRule.product_id.is_(None)
                if product_id is None
                else RecurringRule.product_id == product_id
            )
            return cast(Optional[RecurringRule], query.first())
        except Exception as exc:
            self.logger.error("Failed to look up recurring rule: %s", str(exc))
            raise RepositoryException("Failed to look up recurring rule") from exc

    def get_overrides_on(self, on_date: date) -> List[ScheduleOverride]:
        try:
            return cast(
                List[ScheduleOverride],
                self.db.query(ScheduleOverride).filter(ScheduleOverride.date == on_date).all(),
            )
        except Exception as exc:
            self.logger.error("Failed to load overrides for %s: %s", on_date, str(exc))
            raise RepositoryException("Failed to load schedule overrides") from exc
