from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import extract, func, select
from sqlalchemy.orm import Session

from models import Transaction, TransactionType

GROUP_COLUMNS = {
    "type": Transaction.type,
    "category": Transaction.category,
    "year": extract("year", Transaction.date),
    "month": extract("month", Transaction.date),
}


@dataclass
class TransactionFilters:
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    type: Optional[TransactionType] = None
    category: Optional[str] = None


@dataclass(frozen=True)
class GroupSum:
    key: dict[str, object]
    total_cents: int


def _coerce_key(name: str, value: object) -> object:
    # extract() comes back as a float/Decimal on some backends
    if name in ("year", "month") and value is not None:
        return int(value)
    return value


class AggregationRepository:
    """Grouped sums and filtered reads over a single user's transactions."""

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _conditions(self, filters: Optional[TransactionFilters]) -> list:
        conditions = [Transaction.user_id == self.user_id]
        if filters is None:
            return conditions
        if filters.start is not None:
            conditions.append(Transaction.date >= filters.start)
        if filters.end is not None:
            conditions.append(Transaction.date <= filters.end)
        if filters.type is not None:
            conditions.append(Transaction.type == filters.type)
        if filters.category:
            conditions.append(
                Transaction.category.in_(self._matching_categories(filters.category))
            )
        return conditions

    def _matching_categories(self, category: str) -> list[str]:
        # SQLite lower() only folds ASCII, so case matching happens in Python
        wanted = category.casefold()
        return [
            name
            for name in self.distinct_categories()
            if isinstance(name, str) and name.casefold() == wanted
        ]

    def sum_by_group(
        self,
        filters: Optional[TransactionFilters],
        group_keys: Sequence[str],
        *,
        order_by_total: bool = False,
    ) -> list[GroupSum]:
        """
        Sum amounts grouped by any combination of type, category, year and month.

        Rows come back ascending by the group keys in the order given, or
        descending by total when order_by_total is set.
        """
        unknown = [key for key in group_keys if key not in GROUP_COLUMNS]
        if unknown or not group_keys:
            raise ValueError(f"Unsupported group keys: {list(group_keys)}")

        expressions = [GROUP_COLUMNS[key] for key in group_keys]
        total = func.sum(Transaction.amount_cents).label("total")
        stmt = (
            select(
                *(expr.label(key) for key, expr in zip(group_keys, expressions)),
                total,
            )
            .where(*self._conditions(filters))
            .group_by(*expressions)
        )
        if order_by_total:
            stmt = stmt.order_by(total.desc(), *expressions)
        else:
            stmt = stmt.order_by(*expressions)

        return [
            GroupSum(
                key={key: _coerce_key(key, getattr(row, key)) for key in group_keys},
                total_cents=int(row.total or 0),
            )
            for row in self.session.execute(stmt).all()
        ]

    def totals_by_type(
        self, filters: Optional[TransactionFilters] = None
    ) -> dict[TransactionType, int]:
        rows = self.sum_by_group(filters, ["type"])
        return {row.key["type"]: row.total_cents for row in rows}

    def totals_by_category(
        self,
        txn_type: TransactionType,
        filters: Optional[TransactionFilters] = None,
    ) -> list[GroupSum]:
        scoped = (
            replace(filters, type=txn_type)
            if filters
            else TransactionFilters(type=txn_type)
        )
        return self.sum_by_group(scoped, ["category"], order_by_total=True)

    def monthly_totals(
        self, filters: Optional[TransactionFilters] = None
    ) -> list[GroupSum]:
        return self.sum_by_group(filters, ["year", "month", "type"])

    def yearly_totals(
        self, filters: Optional[TransactionFilters] = None
    ) -> list[GroupSum]:
        return self.sum_by_group(filters, ["year", "type"])

    def list_transactions(
        self, filters: Optional[TransactionFilters] = None
    ) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(*self._conditions(filters))
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def distinct_categories(self) -> list[str]:
        stmt = (
            select(Transaction.category)
            .where(Transaction.user_id == self.user_id)
            .distinct()
        )
        return list(self.session.scalars(stmt).all())
