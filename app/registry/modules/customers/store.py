"""
Record store for customers.

The registry talks to its datastore through five operations only
(insert / select / get / count / delete) on the single `customers` collection.
Filters are typed objects compiled to bound SQLAlchemy expressions; callers
never build filter strings.

Each store call behaves like one request to a hosted backend: it commits on
success, and on failure rolls back and raises StoreError with a message that
is safe to show to staff.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Sequence, Union

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.registry.modules.customers.models import Customer

logger = logging.getLogger(__name__)

FILTERABLE_FIELDS = frozenset(
    {
        "id",
        "full_name",
        "national_id",
        "age",
        "phone_primary",
        "phone_secondary",
        "external_note",
        "birth_date",
        "created_at",
    }
)


class StoreError(RuntimeError):
    pass


def _column(name: str):
    if name not in FILTERABLE_FIELDS:
        raise ValueError(f"Unknown customer field: {name!r}")
    return getattr(Customer, name)


@dataclass(frozen=True)
class Eq:
    field: str
    value: Any

    def compile(self):
        return _column(self.field) == self.value


@dataclass(frozen=True, init=False)
class In:
    field: str
    values: tuple

    def __init__(self, field: str, values: Iterable[Any]) -> None:
        object.__setattr__(self, "field", field)
        object.__setattr__(self, "values", tuple(values))

    def compile(self):
        return _column(self.field).in_(self.values)


@dataclass(frozen=True)
class Range:
    """Half-open range: gte <= field < lt. Either bound may be omitted."""

    field: str
    gte: Any = None
    lt: Any = None

    def compile(self):
        col = _column(self.field)
        clauses = []
        if self.gte is not None:
            clauses.append(col >= self.gte)
        if self.lt is not None:
            clauses.append(col < self.lt)
        if not clauses:
            raise ValueError("Range needs at least one bound.")
        return and_(*clauses)


@dataclass(frozen=True)
class ILike:
    """Case-insensitive pattern match (% and _ wildcards)."""

    field: str
    pattern: str

    def compile(self):
        return _column(self.field).ilike(self.pattern)


@dataclass(frozen=True, init=False)
class AnyOf:
    filters: tuple

    def __init__(self, *filters: "Filter") -> None:
        object.__setattr__(self, "filters", tuple(filters))

    def compile(self):
        if not self.filters:
            raise ValueError("AnyOf needs at least one filter.")
        return or_(*(f.compile() for f in self.filters))


Filter = Union[Eq, In, Range, ILike, AnyOf]


def birth_month_pattern(month: int) -> str:
    """
    Pattern for a birth month against the stored YYYY-MM-DD text.
    Matches any year; the trailing dash keeps the day part from matching.
    """
    if not 1 <= int(month) <= 12:
        raise ValueError("month must be between 1 and 12")
    return f"%-{int(month):02d}-%"


def birth_day_pattern(month: int, day: int) -> str:
    if not 1 <= int(month) <= 12 or not 1 <= int(day) <= 31:
        raise ValueError("invalid month/day")
    return f"%-{int(month):02d}-{int(day):02d}"


@dataclass(frozen=True)
class NewCustomer:
    """A validated record ready for insert (id and created_at are assigned by the store)."""

    full_name: str
    national_id: str
    age: int
    phone_primary: str
    birth_date: str
    phone_secondary: str | None = None
    external_note: str | None = None


class CustomerStore:
    def __init__(self, s: Session) -> None:
        self.s = s

    def _where(self, filters: Sequence[Filter]):
        return [f.compile() for f in filters]

    def insert(self, records: Sequence[NewCustomer]) -> list[Customer]:
        """
        Insert all records in one transaction (all or nothing).
        """
        if not records:
            return []
        now = datetime.utcnow()
        rows = [
            Customer(
                full_name=r.full_name,
                national_id=r.national_id,
                age=r.age,
                phone_primary=r.phone_primary,
                phone_secondary=r.phone_secondary,
                external_note=r.external_note,
                birth_date=r.birth_date,
                created_at=now,
            )
            for r in records
        ]
        try:
            self.s.add_all(rows)
            self.s.commit()
        except IntegrityError as e:
            self.s.rollback()
            logger.warning("Customer insert rejected (%d records): %s", len(rows), e.orig)
            raise StoreError("A customer with this national ID is already registered.") from e
        except SQLAlchemyError as e:
            self.s.rollback()
            logger.exception("Customer insert failed (%d records)", len(rows))
            raise StoreError(f"Could not save customers: {e.__class__.__name__}") from e
        return rows

    def select(self, *filters: Filter, order_by: Sequence[str] = ("full_name",), limit: int | None = None) -> list[Customer]:
        stmt = select(Customer).where(*self._where(filters))
        stmt = stmt.order_by(*(_column(name).asc() for name in order_by), Customer.id.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            return list(self.s.scalars(stmt).all())
        except SQLAlchemyError as e:
            self.s.rollback()
            logger.exception("Customer select failed")
            raise StoreError("Could not load customers.") from e

    def get(self, customer_id: str) -> Customer | None:
        try:
            return self.s.get(Customer, customer_id)
        except SQLAlchemyError as e:
            self.s.rollback()
            logger.exception("Customer lookup failed (id=%s)", customer_id)
            raise StoreError("Could not load customer.") from e

    def count(self, *filters: Filter) -> int:
        stmt = select(func.count()).select_from(Customer).where(*self._where(filters))
        try:
            return int(self.s.scalar(stmt) or 0)
        except SQLAlchemyError as e:
            self.s.rollback()
            logger.exception("Customer count failed")
            raise StoreError("Could not count customers.") from e

    def delete(self, customer_id: str) -> bool:
        c = self.get(customer_id)
        if c is None:
            return False
        try:
            self.s.delete(c)
            self.s.commit()
        except SQLAlchemyError as e:
            self.s.rollback()
            logger.exception("Customer delete failed (id=%s)", customer_id)
            raise StoreError("Could not delete customer.") from e
        return True