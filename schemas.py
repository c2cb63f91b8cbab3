from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from models import TransactionType
from sanitize import sanitize_text


class TransactionIn(BaseModel):
    amount_cents: int = Field(..., gt=0)
    date: date
    type: TransactionType
    category: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=300)

    @field_validator("category", mode="before")
    @classmethod
    def _clean_category(cls, value: object) -> str:
        return sanitize_text(value)

    @field_validator("description", mode="before")
    @classmethod
    def _clean_description(cls, value: object) -> Optional[str]:
        cleaned = sanitize_text(value)
        return cleaned or None


class CategoryLimitIn(BaseModel):
    category: str = Field(..., min_length=2, max_length=100)
    limit_cents: int = Field(..., gt=0)
    limit_id: Optional[int] = None

    @field_validator("category", mode="before")
    @classmethod
    def _clean_category(cls, value: object) -> str:
        return sanitize_text(value)


class Snapshot(BaseModel):
    """Read-model value computed per request. Serialized with camelCase keys."""

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )


class Totals(Snapshot):
    income: float
    expense: float
    savings: float
    savings_rate: float


class ChartSeries(Snapshot):
    labels: list[str]
    data: list[float]
    has_values: bool


class TrendSeries(Snapshot):
    labels: list[str]
    income: list[float]
    expense: list[float]
    savings: list[float]
    has_values: bool


class Charts(Snapshot):
    income_vs_expense: ChartSeries
    savings_trend: TrendSeries
    expense_by_category: ChartSeries
    income_by_source: ChartSeries


class CategoryLimitUsage(Snapshot):
    id: int
    category: str
    limit: float
    spent: float
    remaining: float
    percentage_used: float
    percentage_exceeded: float
    exceeded: bool


class AnalyticsSnapshot(Snapshot):
    totals: Totals
    charts: Charts
    category_limits: list[CategoryLimitUsage]


class ReportFilters(Snapshot):
    start_date: str
    end_date: str
    category: str
    display_range: str


class ReportSummary(Snapshot):
    total_income: float
    total_expense: float
    net: float
    transaction_count: int


class Rollup(Snapshot):
    label: str
    income: float
    expense: float
    net: float


class TransactionOut(Snapshot):
    id: int
    date: datetime
    type: TransactionType
    category: str
    description: Optional[str]
    amount: float


class ReportSnapshot(Snapshot):
    filters: ReportFilters
    summary: ReportSummary
    monthly: list[Rollup]
    yearly: list[Rollup]
    transactions: list[TransactionOut]
    categories: list[str]


class TransactionPage(Snapshot):
    items: list[TransactionOut]
    page: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool
