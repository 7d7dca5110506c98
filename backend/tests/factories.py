"""Builders for rows the tests need, committed so every service sees them."""

from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

import pytz
from sqlalchemy.orm import Session

from studio_booking.core.enums import ProductType, Technique
from studio_booking.models.giftcard import Giftcard
from studio_booking.models.product import Product
from studio_booking.models.schedule import RecurringRule, ScheduleOverride

# Monday 3 March 2025, 09:00 UTC. Tuesday the 4th is the first class day.
NOW = datetime(2025, 3, 3, 9, 0, tzinfo=pytz.UTC)
TUESDAY = date(2025, 3, 4)


def make_product(
    db: Session,
    *,
    product_type: ProductType = ProductType.SINGLE_CLASS,
    technique: Optional[str] = Technique.POTTERS_WHEEL.value,
    price_cents: int = 5000,
    classes: Optional[int] = None,
    participants_default: int = 1,
    name: str = "Wheel class",
) -> Product:
    product = Product(
        name=name,
        product_type=product_type.value,
        technique=technique,
        price_cents=price_cents,
        classes=classes,
        participants_default=participants_default,
        is_active=True,
    )
    db.add(product)
    db.commit()
    return product


def make_rule(
    db: Session,
    *,
    day_of_week: int = 1,
    time: str = "18:00",
    capacity: int = 6,
    technique: str = Technique.POTTERS_WHEEL.value,
    instructor_id: str = "instructor-ana",
    product_id: Optional[str] = None,
) -> RecurringRule:
    rule = RecurringRule(
        day_of_week=day_of_week,
        time=time,
        instructor_id=instructor_id,
        capacity=capacity,
        technique=technique,
        product_id=product_id,
        is_active=True,
    )
    db.add(rule)
    db.commit()
    return rule


def make_override(db: Session, on_date: date, **fields: Any) -> ScheduleOverride:
    override = ScheduleOverride(date=on_date, entries=fields.pop("entries", []), **fields)
    db.add(override)
    db.commit()
    return override


def make_giftcard(
    db: Session,
    *,
    code: str = "GIFT-0001",
    value_cents: int = 10000,
    expires_at: Optional[datetime] = None,
) -> Giftcard:
    card = Giftcard(
        code=code,
        initial_value_cents=value_cents,
        balance_cents=value_cents,
        expires_at=expires_at,
    )
    db.add(card)
    db.commit()
    return card


def customer(index: int = 0) -> Dict[str, Any]:
    return {"name": f"Customer {index}", "email": f"customer{index}@example.com", "phone": "600000000"}


def slot_dict(on_date: date, time: str = "18:00", instructor_id: Optional[str] = "instructor-ana") -> Dict[str, Any]:
    return {"date": on_date.isoformat(), "time": time, "instructorId": instructor_id}


def weekly_dates(start: date, weeks: int = 4) -> List[date]:
    return [start + timedelta(days=7 * week) for week in range(weeks)]


def next_weekday(weekday: int, *, min_days: int = 7) -> date:
    """The first ``weekday`` at least ``min_days`` from today (studio time is UTC in tests)."""
    candidate = datetime.now(pytz.UTC).date() + timedelta(days=min_days)
    while candidate.weekday() != weekday:
        candidate += timedelta(days=1)
    return candidate
