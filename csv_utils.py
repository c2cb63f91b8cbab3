import csv
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Sequence

from sanitize import sanitize_text
from schemas import ReportSnapshot, Rollup

REPORT_TITLE = "Expense Tracker Report"


def parse_amount(value: str) -> int:
    clean = value.strip().replace("₹", "").replace("$", "").replace(" ", "")
    if clean.lower().startswith("rs"):
        clean = clean[2:]
    clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Amount must be a positive number.") from exc
    if not amount.is_finite():
        raise ValueError("Amount must be a positive number.")
    cents = int((amount * 100).quantize(Decimal("1")))
    if cents <= 0:
        raise ValueError("Amount must be a positive number.")
    return cents


def format_amount(value: float) -> str:
    return f"{value:.2f}"


def _write_rollups(
    writer, title: str, first_column: str, rollups: Sequence[Rollup]
) -> None:
    if not rollups:
        return
    writer.writerow([title])
    writer.writerow([first_column, "Income", "Expense", "Net"])
    for entry in rollups:
        writer.writerow(
            [
                entry.label,
                format_amount(entry.income),
                format_amount(entry.expense),
                format_amount(entry.net),
            ]
        )
    writer.writerow([])


def build_report_csv(report: ReportSnapshot) -> str:
    """
    Render a report as a sectioned CSV document with CRLF line endings.
    Fields containing commas, quotes or newlines are quoted by the csv module.
    """
    output = StringIO()
    writer = csv.writer(output, lineterminator="\r\n")

    writer.writerow([REPORT_TITLE])
    writer.writerow(["Date Range", report.filters.display_range])
    if report.filters.category:
        writer.writerow(["Category", report.filters.category])
    writer.writerow([])

    summary = report.summary
    writer.writerow(["Summary"])
    writer.writerow(["Total Income", "Total Expense", "Net", "Transaction Count"])
    writer.writerow(
        [
            format_amount(summary.total_income),
            format_amount(summary.total_expense),
            format_amount(summary.net),
            summary.transaction_count,
        ]
    )
    writer.writerow([])

    _write_rollups(writer, "Monthly Summary", "Month", report.monthly)
    _write_rollups(writer, "Yearly Summary", "Year", report.yearly)

    writer.writerow(["Transactions"])
    writer.writerow(["Date", "Type", "Category", "Description", "Amount"])
    for txn in report.transactions:
        writer.writerow(
            [
                txn.date.strftime("%Y-%m-%d"),
                txn.type.value,
                sanitize_text(txn.category or ""),
                sanitize_text(txn.description or ""),
                format_amount(txn.amount),
            ]
        )
    return output.getvalue()
