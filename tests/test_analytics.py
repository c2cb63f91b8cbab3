from datetime import date, datetime
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import Transaction, TransactionType
from schemas import CategoryLimitIn, TransactionIn
from services import AnalyticsService, CategoryLimitService, TransactionService

NOW = datetime(2025, 3, 15, 12, 0)


def _add(
    session: Session,
    amount_cents: int,
    day: date,
    txn_type: TransactionType,
    category: str,
    description: Optional[str] = None,
    user_id: int = 1,
) -> Transaction:
    return TransactionService(session, user_id).create(
        TransactionIn(
            amount_cents=amount_cents,
            date=day,
            type=txn_type,
            category=category,
            description=description,
        )
    )


def test_single_month_income_and_food_expense() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _add(session, 100_000, date(2025, 3, 2), TransactionType.income, "Salary")
        _add(session, 30_000, date(2025, 3, 10), TransactionType.expense, "Food")

        snapshot = AnalyticsService(session, 1).build(1, now=NOW)

        assert snapshot.totals.income == 1000
        assert snapshot.totals.expense == 300
        assert snapshot.totals.savings == 700
        assert snapshot.totals.savings_rate == 70
        expense_chart = snapshot.charts.expense_by_category
        assert expense_chart.labels == ["Food"]
        assert expense_chart.data == [300]
        assert expense_chart.has_values is True
        assert snapshot.charts.income_vs_expense.labels == ["Income", "Expense"]
        assert snapshot.charts.income_vs_expense.data == [1000, 300]
        trend = snapshot.charts.savings_trend
        assert trend.labels == ["Mar 2025"]
        assert trend.income == [1000]
        assert trend.expense == [300]
        assert trend.savings == [700]


def test_user_without_transactions_has_empty_charts() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _add(session, 5_000, date(2025, 3, 1), TransactionType.expense, "Food", user_id=2)

        snapshot = AnalyticsService(session, 1).build(6, now=NOW)

        assert snapshot.totals.income == 0
        assert snapshot.totals.expense == 0
        assert snapshot.totals.savings == 0
        assert snapshot.totals.savings_rate == 0
        charts = snapshot.charts
        assert charts.income_vs_expense.has_values is False
        assert charts.savings_trend.has_values is False
        assert charts.expense_by_category.has_values is False
        assert charts.income_by_source.has_values is False
        assert charts.savings_trend.income == [0] * 6
        assert charts.savings_trend.expense == [0] * 6
        assert snapshot.category_limits == []


def test_trend_is_zero_filled_and_chronological_across_year_boundary() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        # outside the three month window, still part of all-time totals
        _add(session, 99_900, date(2024, 10, 31), TransactionType.income, "Salary")
        _add(session, 200_000, date(2024, 12, 1), TransactionType.income, "Salary")
        _add(session, 50_000, date(2024, 12, 24), TransactionType.expense, "Gifts")
        _add(session, 12_345, date(2025, 2, 3), TransactionType.expense, "Food")

        snapshot = AnalyticsService(session, 1).build(
            3, now=datetime(2025, 2, 10, 8, 30)
        )

        trend = snapshot.charts.savings_trend
        assert trend.labels == ["Dec 2024", "Jan 2025", "Feb 2025"]
        assert trend.income == [2000, 0, 0]
        assert trend.expense == [500, 0, 123.45]
        assert trend.savings == [1500, 0, -123.45]
        assert trend.has_values is True
        assert snapshot.totals.income == pytest.approx(2999.0)


def test_trend_window_ends_at_now() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _add(session, 10_000, date(2025, 3, 20), TransactionType.expense, "Rent")

        snapshot = AnalyticsService(session, 1).build(2, now=NOW)

        assert snapshot.charts.savings_trend.expense == [0, 0]
        assert snapshot.charts.savings_trend.has_values is False
        assert snapshot.totals.expense == 100


@pytest.mark.parametrize("months", [0, -3, None, "abc", 2.5, True])
def test_invalid_month_count_falls_back_to_six(months) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        snapshot = AnalyticsService(session, 1).build(months, now=NOW)

        trend = snapshot.charts.savings_trend
        assert len(trend.labels) == 6
        assert trend.labels[0] == "Oct 2024"
        assert trend.labels[-1] == "Mar 2025"


def test_savings_rate_is_zero_without_income() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _add(session, 4_200, date(2025, 3, 1), TransactionType.expense, "Food")

        totals = AnalyticsService(session, 1).build(1, now=NOW).totals

        assert totals.savings == pytest.approx(totals.income - totals.expense)
        assert totals.savings == -42
        assert totals.savings_rate == 0


def test_savings_rate_tracks_ratio_of_income() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _add(session, 33_333, date(2025, 1, 1), TransactionType.income, "Salary")
        _add(session, 12_345, date(2025, 2, 1), TransactionType.expense, "Rent")
        _add(session, 40_000, date(2025, 2, 2), TransactionType.expense, "Travel")

        totals = AnalyticsService(session, 1).build(6, now=NOW).totals

        assert totals.savings == pytest.approx(totals.income - totals.expense)
        assert totals.savings_rate == pytest.approx(
            totals.savings / totals.income * 100
        )
        assert totals.savings_rate < 0


def test_category_breakdowns_sorted_by_total() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _add(session, 1_000, date(2025, 1, 5), TransactionType.expense, "Coffee")
        _add(session, 9_000, date(2025, 1, 6), TransactionType.expense, "Rent")
        _add(session, 2_500, date(2025, 2, 7), TransactionType.expense, "Coffee")
        _add(session, 50_000, date(2025, 1, 1), TransactionType.income, "Salary")
        _add(session, 75_000, date(2025, 2, 1), TransactionType.income, "Freelance")

        charts = AnalyticsService(session, 1).build(now=NOW).charts

        assert charts.expense_by_category.labels == ["Rent", "Coffee"]
        assert charts.expense_by_category.data == [90, 35]
        assert charts.income_by_source.labels == ["Freelance", "Salary"]
        assert charts.income_by_source.data == [750, 500]


def test_limit_exceeded_usage() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        CategoryLimitService(session, 1).upsert(
            CategoryLimitIn(category="Food", limit_cents=20_000)
        )
        _add(session, 30_000, date(2025, 3, 3), TransactionType.expense, "Food")

        usage = AnalyticsService(session, 1).build(now=NOW).category_limits

        assert len(usage) == 1
        food = usage[0]
        assert food.category == "Food"
        assert food.limit == 200
        assert food.spent == 300
        assert food.remaining == 0
        assert food.percentage_used == 150
        assert food.exceeded is True
        assert food.percentage_exceeded == 50


def test_limit_usage_matches_normalized_categories_and_sorts_by_name() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        limits = CategoryLimitService(session, 1)
        limits.upsert(CategoryLimitIn(category="Travel", limit_cents=100_000))
        limits.upsert(CategoryLimitIn(category="eating  out", limit_cents=10_000))
        _add(session, 2_000, date(2025, 3, 3), TransactionType.expense, "Eating Out")
        _add(session, 3_000, date(2025, 3, 4), TransactionType.expense, "eating out")
        _add(session, 7_000, date(2025, 3, 5), TransactionType.income, "Eating Out")

        usage = AnalyticsService(session, 1).build(now=NOW).category_limits

        assert [u.category for u in usage] == ["eating out", "Travel"]
        eating, travel = usage
        assert eating.spent == 50
        assert eating.remaining == 50
        assert eating.percentage_used == 50
        assert eating.exceeded is False
        assert eating.percentage_exceeded == 0
        assert travel.spent == 0
        assert travel.remaining == 1000
        assert travel.percentage_used == 0


def test_snapshot_serializes_with_camel_case_keys() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        CategoryLimitService(session, 1).upsert(
            CategoryLimitIn(category="Food", limit_cents=1_000)
        )
        payload = AnalyticsService(session, 1).build(now=NOW).model_dump(by_alias=True)

        assert set(payload) == {"totals", "charts", "categoryLimits"}
        assert set(payload["totals"]) == {"income", "expense", "savings", "savingsRate"}
        assert set(payload["charts"]) == {
            "incomeVsExpense",
            "savingsTrend",
            "expenseByCategory",
            "incomeBySource",
        }
        assert set(payload["charts"]["savingsTrend"]) == {
            "labels",
            "income",
            "expense",
            "savings",
            "hasValues",
        }
        assert set(payload["categoryLimits"][0]) == {
            "id",
            "category",
            "limit",
            "spent",
            "remaining",
            "percentageUsed",
            "percentageExceeded",
            "exceeded",
        }


@pytest.mark.parametrize("months", [121, 30_000])
def test_oversized_month_count_falls_back_to_six(months) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        snapshot = AnalyticsService(session, 1).build(months, now=datetime(2025, 3, 1))

        assert len(snapshot.charts.savings_trend.labels) == 6


def test_longest_trend_window() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        trend = AnalyticsService(session, 1).build(120, now=NOW).charts.savings_trend

        assert len(trend.labels) == 120
        assert trend.labels[0] == "Apr 2015"
        assert trend.labels[-1] == "Mar 2025"
