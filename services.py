from __future__ import annotations

import logging
import math
from datetime import datetime, time
from typing import Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from aggregates import AggregationRepository, GroupSum, TransactionFilters
from config import get_settings
from models import CategoryLimit, Transaction, TransactionType
from periods import (
    DEFAULT_TREND_MONTHS,
    DateInput,
    iter_months,
    local_now,
    month_key,
    month_label,
    normalize_months,
    resolve_report_range,
    trend_window_start,
)
from sanitize import normalize_category, sanitize_text
from schemas import (
    AnalyticsSnapshot,
    CategoryLimitIn,
    CategoryLimitUsage,
    ChartSeries,
    Charts,
    ReportFilters,
    ReportSnapshot,
    ReportSummary,
    Rollup,
    Totals,
    TransactionIn,
    TransactionOut,
    TransactionPage,
    TrendSeries,
)

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"


class TransactionNotFound(ValueError):
    pass


class CategoryLimitNotFound(ValueError):
    pass


class DuplicateCategoryLimit(ValueError):
    pass


def get_current_user_id() -> int:
    return get_settings().default_user_id


def cents_to_amount(cents: int) -> float:
    return cents / 100


def percent_of(part_cents: int, whole_cents: int) -> float:
    if whole_cents <= 0:
        return 0.0
    return part_cents * 100 / whole_cents


def transaction_out(txn: Transaction) -> TransactionOut:
    return TransactionOut(
        id=txn.id,
        date=txn.date,
        type=txn.type,
        category=txn.category,
        description=txn.description,
        amount=cents_to_amount(txn.amount_cents),
    )


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id if user_id is not None else get_current_user_id()

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise TransactionNotFound("Transaction not found.")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        txn = Transaction(user_id=self.user_id)
        self._apply(txn, data)
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(
            f"transaction_created: user={self.user_id} id={txn.id} type={txn.type.value}"
        )
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        self._apply(txn, data)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()

    def delete_all(self) -> int:
        result = self.session.execute(
            delete(Transaction).where(Transaction.user_id == self.user_id)
        )
        self.session.commit()
        deleted = result.rowcount or 0
        logger.info(f"transactions_purged: user={self.user_id} deleted={deleted}")
        return deleted

    def list_page(self, page: int = 1, per_page: int = 10) -> TransactionPage:
        page = max(page, 1)
        total = int(
            self.session.execute(
                select(func.count(Transaction.id)).where(
                    Transaction.user_id == self.user_id
                )
            ).scalar_one()
            or 0
        )
        total_pages = max(math.ceil(total / per_page), 1)
        items = self.session.scalars(
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        ).all()
        return TransactionPage(
            items=[transaction_out(txn) for txn in items],
            page=page,
            total_pages=total_pages,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
        )

    @staticmethod
    def _apply(txn: Transaction, data: TransactionIn) -> None:
        txn.amount_cents = data.amount_cents
        txn.date = datetime.combine(data.date, time.min)
        txn.type = data.type
        txn.category = data.category
        txn.description = data.description


class CategoryLimitService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id if user_id is not None else get_current_user_id()

    def list_all(self) -> list[CategoryLimit]:
        stmt = (
            select(CategoryLimit)
            .where(CategoryLimit.user_id == self.user_id)
            .order_by(CategoryLimit.normalized_category, CategoryLimit.id)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, limit_id: int) -> CategoryLimit:
        limit = self.session.get(CategoryLimit, limit_id)
        if not limit or limit.user_id != self.user_id:
            raise CategoryLimitNotFound("Category limit not found.")
        return limit

    def upsert(self, data: CategoryLimitIn) -> CategoryLimit:
        """
        Update the limit named by data.limit_id, or otherwise insert-or-replace
        the limit whose normalized category matches. Last write wins.
        """
        normalized = normalize_category(data.category)
        if data.limit_id is not None:
            limit = self.get(data.limit_id)
        else:
            limit = self.session.scalar(
                select(CategoryLimit).where(
                    CategoryLimit.user_id == self.user_id,
                    CategoryLimit.normalized_category == normalized,
                )
            )
            if limit is None:
                limit = CategoryLimit(user_id=self.user_id)
                self.session.add(limit)

        limit.category = data.category
        limit.normalized_category = normalized
        limit.limit_cents = data.limit_cents
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateCategoryLimit(
                "A limit for this category already exists."
            ) from exc
        self.session.refresh(limit)
        logger.info(
            f"category_limit_upserted: user={self.user_id} id={limit.id} "
            f"category={normalized!r} limit_cents={limit.limit_cents}"
        )
        return limit

    def delete(self, limit_id: int) -> None:
        limit = self.get(limit_id)
        self.session.delete(limit)
        self.session.commit()


class AnalyticsService:
    """Dashboard totals, chart series and category-limit usage for one user."""

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id if user_id is not None else get_current_user_id()
        self.aggregates = AggregationRepository(session, self.user_id)
        self.limit_service = CategoryLimitService(session, self.user_id)

    def build(
        self,
        months: object = DEFAULT_TREND_MONTHS,
        *,
        now: Optional[datetime] = None,
    ) -> AnalyticsSnapshot:
        months = normalize_months(months)
        now = now or local_now()
        range_start = trend_window_start(now, months)

        type_totals = self.aggregates.totals_by_type()
        expense_rows = self.aggregates.totals_by_category(TransactionType.expense)
        income_rows = self.aggregates.totals_by_category(TransactionType.income)
        monthly_rows = self.aggregates.monthly_totals(
            TransactionFilters(start=range_start, end=now)
        )
        limits = self.limit_service.list_all()

        income_cents = type_totals.get(TransactionType.income, 0)
        expense_cents = type_totals.get(TransactionType.expense, 0)
        savings_cents = income_cents - expense_cents

        snapshot = AnalyticsSnapshot(
            totals=Totals(
                income=cents_to_amount(income_cents),
                expense=cents_to_amount(expense_cents),
                savings=cents_to_amount(savings_cents),
                savings_rate=percent_of(savings_cents, income_cents),
            ),
            charts=Charts(
                income_vs_expense=ChartSeries(
                    labels=["Income", "Expense"],
                    data=[
                        cents_to_amount(income_cents),
                        cents_to_amount(expense_cents),
                    ],
                    has_values=income_cents > 0 or expense_cents > 0,
                ),
                savings_trend=self._savings_trend(monthly_rows, range_start, months),
                expense_by_category=self._category_chart(expense_rows),
                income_by_source=self._category_chart(income_rows),
            ),
            category_limits=self._limit_usage(limits, expense_rows),
        )
        logger.info(
            f"analytics_built: user={self.user_id} months={months} "
            f"range_start={range_start.date()} limits={len(limits)}"
        )
        return snapshot

    @staticmethod
    def _savings_trend(
        rows: Sequence[GroupSum], range_start: datetime, months: int
    ) -> TrendSeries:
        buckets: dict[str, dict[TransactionType, int]] = {}
        for row in rows:
            key = month_key(row.key["year"], row.key["month"])
            buckets.setdefault(key, {})[row.key["type"]] = row.total_cents

        labels: list[str] = []
        income: list[int] = []
        expense: list[int] = []
        for month_start in iter_months(range_start.date(), months):
            values = buckets.get(month_key(month_start.year, month_start.month), {})
            labels.append(month_label(month_start.year, month_start.month))
            income.append(values.get(TransactionType.income, 0))
            expense.append(values.get(TransactionType.expense, 0))

        return TrendSeries(
            labels=labels,
            income=[cents_to_amount(value) for value in income],
            expense=[cents_to_amount(value) for value in expense],
            savings=[cents_to_amount(i - e) for i, e in zip(income, expense)],
            has_values=any(value > 0 for value in income)
            or any(value > 0 for value in expense),
        )

    @staticmethod
    def _category_chart(rows: Sequence[GroupSum]) -> ChartSeries:
        return ChartSeries(
            labels=[row.key["category"] or UNCATEGORIZED for row in rows],
            data=[cents_to_amount(row.total_cents) for row in rows],
            has_values=any(row.total_cents > 0 for row in rows),
        )

    @staticmethod
    def _limit_usage(
        limits: Sequence[CategoryLimit], expense_rows: Sequence[GroupSum]
    ) -> list[CategoryLimitUsage]:
        # raw categories differing only in case/spacing share one spend bucket
        spent_by_category: dict[str, int] = {}
        for row in expense_rows:
            normalized = normalize_category(row.key["category"])
            if normalized:
                spent_by_category[normalized] = (
                    spent_by_category.get(normalized, 0) + row.total_cents
                )

        usage: list[CategoryLimitUsage] = []
        for limit in limits:
            spent = spent_by_category.get(limit.normalized_category, 0)
            exceeded = spent > limit.limit_cents
            usage.append(
                CategoryLimitUsage(
                    id=limit.id,
                    category=limit.category,
                    limit=cents_to_amount(limit.limit_cents),
                    spent=cents_to_amount(spent),
                    remaining=cents_to_amount(max(limit.limit_cents - spent, 0)),
                    percentage_used=percent_of(spent, limit.limit_cents),
                    percentage_exceeded=(
                        percent_of(spent - limit.limit_cents, limit.limit_cents)
                        if exceeded
                        else 0.0
                    ),
                    exceeded=exceeded,
                )
            )
        return usage


class ReportService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id if user_id is not None else get_current_user_id()
        self.aggregates = AggregationRepository(session, self.user_id)

    def build(
        self,
        start_date: DateInput = None,
        end_date: DateInput = None,
        category: Optional[str] = None,
    ) -> ReportSnapshot:
        report_range = resolve_report_range(start_date, end_date)
        category_filter = sanitize_text(category or "")
        filters = TransactionFilters(
            start=report_range.start,
            end=report_range.end,
            category=category_filter or None,
        )

        transactions = self.aggregates.list_transactions(filters)
        monthly_rows = self.aggregates.monthly_totals(filters)
        yearly_rows = self.aggregates.yearly_totals(filters)
        categories = self.aggregates.distinct_categories()

        # Totals come from the fetched list so they always agree with the
        # transactions that end up in the export.
        income_cents = 0
        expense_cents = 0
        for txn in transactions:
            if txn.type == TransactionType.income:
                income_cents += txn.amount_cents
            elif txn.type == TransactionType.expense:
                expense_cents += txn.amount_cents

        return ReportSnapshot(
            filters=ReportFilters(
                start_date=(
                    report_range.start.date().isoformat() if report_range.start else ""
                ),
                end_date=(
                    report_range.end.date().isoformat() if report_range.end else ""
                ),
                category=category_filter,
                display_range=report_range.label,
            ),
            summary=ReportSummary(
                total_income=cents_to_amount(income_cents),
                total_expense=cents_to_amount(expense_cents),
                net=cents_to_amount(income_cents - expense_cents),
                transaction_count=len(transactions),
            ),
            monthly=self._rollups(
                monthly_rows,
                lambda key: (key["year"], key["month"]),
                lambda bucket: month_label(*bucket),
            ),
            yearly=self._rollups(
                yearly_rows,
                lambda key: (key["year"],),
                lambda bucket: str(bucket[0]),
            ),
            transactions=[transaction_out(txn) for txn in transactions],
            categories=self._available_categories(categories),
        )

    @staticmethod
    def _rollups(rows: Sequence[GroupSum], bucket_of, label_of) -> list[Rollup]:
        """Merge per-type sums into one row per time bucket, newest first."""
        buckets: dict[tuple[int, ...], dict[TransactionType, int]] = {}
        for row in rows:
            buckets.setdefault(bucket_of(row.key), {})[row.key["type"]] = (
                row.total_cents
            )

        rollups: list[Rollup] = []
        for bucket in sorted(buckets, reverse=True):
            income = buckets[bucket].get(TransactionType.income, 0)
            expense = buckets[bucket].get(TransactionType.expense, 0)
            rollups.append(
                Rollup(
                    label=label_of(bucket),
                    income=cents_to_amount(income),
                    expense=cents_to_amount(expense),
                    net=cents_to_amount(income - expense),
                )
            )
        return rollups

    @staticmethod
    def _available_categories(raw: Sequence[object]) -> list[str]:
        cleaned = {
            sanitize_text(value) for value in raw if isinstance(value, str)
        }
        cleaned.discard("")
        return sorted(cleaned, key=lambda name: (name.casefold(), name))
