from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Literal, Optional, Union
from zoneinfo import ZoneInfo

from config import get_settings

DEFAULT_TREND_MONTHS = 6
MAX_TREND_MONTHS = 120

DateInput = Union[str, date, None]


@dataclass(frozen=True)
class ReportRange:
    start: Optional[datetime]
    end: Optional[datetime]

    @property
    def label(self) -> str:
        if self.start and self.end:
            return f"{format_medium_date(self.start)} - {format_medium_date(self.end)}"
        if self.start:
            return f"From {format_medium_date(self.start)}"
        if self.end:
            return f"Up to {format_medium_date(self.end)}"
        return "All time"


def local_now() -> datetime:
    """Current wall-clock time in the configured timezone, as a naive datetime."""
    tz = ZoneInfo(get_settings().timezone)
    return datetime.now(tz).replace(tzinfo=None)


def normalize_months(months: object) -> int:
    if isinstance(months, bool) or not isinstance(months, int):
        return DEFAULT_TREND_MONTHS
    if 0 < months <= MAX_TREND_MONTHS:
        return months
    return DEFAULT_TREND_MONTHS


def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def trend_window_start(now: datetime, months: int) -> datetime:
    first = add_months(now.date().replace(day=1), -(months - 1))
    return datetime.combine(first, time.min)


def iter_months(start: date, count: int) -> list[date]:
    return [add_months(start, offset) for offset in range(count)]


def month_key(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def month_label(year: int, month: int) -> str:
    return date(year, month, 1).strftime("%b %Y")


def format_medium_date(value: date) -> str:
    # e.g. "Jan 5, 2024"
    return f"{value.strftime('%b')} {value.day}, {value.year}"


def parse_report_bound(
    value: DateInput, boundary: Literal["start", "end"]
) -> Optional[datetime]:
    """
    Parse a report filter date. Bounds are inclusive: a start snaps to the first
    instant of its day, an end to the last. Unparseable input yields None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        day = value.date()
    elif isinstance(value, date):
        day = value
    else:
        raw = str(value).strip()
        try:
            day = date.fromisoformat(raw)
        except ValueError:
            try:
                day = datetime.fromisoformat(raw).date()
            except ValueError:
                return None
    if boundary == "start":
        return datetime.combine(day, time.min)
    return datetime.combine(day, time.max)


def resolve_report_range(start: DateInput, end: DateInput) -> ReportRange:
    return ReportRange(
        start=parse_report_bound(start, "start"),
        end=parse_report_bound(end, "end"),
    )
