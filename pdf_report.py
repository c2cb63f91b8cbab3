from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from config import get_settings
from sanitize import sanitize_text
from schemas import ReportSnapshot

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

MAX_MONTHLY_ROWS = 24
MAX_TRANSACTIONS = 50

PAGE_CSS = """
    @page {
        size: A4;
        margin: 14mm 14mm 18mm 14mm;
        @bottom-center {
            content: "Page " counter(page) " of " counter(pages);
            color: #555555;
            font-size: 9pt;
        }
    }
"""


class PDFRenderError(RuntimeError):
    pass


_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
)


def format_report_currency(value: float, prefix: Optional[str] = None) -> str:
    if prefix is None:
        prefix = get_settings().currency_prefix
    return f"{prefix} {value:.2f}"


_env.filters["report_currency"] = format_report_currency


def build_pdf_context(
    report: ReportSnapshot, generated_at: Optional[datetime] = None
) -> dict[str, object]:
    generated_at = generated_at or datetime.now()
    transactions = [
        {
            "date": txn.date.strftime("%Y-%m-%d"),
            "type": txn.type.value.upper(),
            "category": sanitize_text(txn.category or "") or "Uncategorized",
            "description": sanitize_text(txn.description or ""),
            "amount": txn.amount,
        }
        for txn in report.transactions[:MAX_TRANSACTIONS]
    ]
    truncated_note = None
    if len(report.transactions) > MAX_TRANSACTIONS:
        truncated_note = f"(Showing first {MAX_TRANSACTIONS} transactions)"
    return {
        "title": "Expense Tracker Report",
        "generated_at": generated_at.strftime("%Y-%m-%d %H:%M:%S"),
        "filters": report.filters,
        "summary": report.summary,
        "monthly": report.monthly[:MAX_MONTHLY_ROWS],
        "yearly": report.yearly,
        "transactions": transactions,
        "truncated_note": truncated_note,
    }


def render_report_html(
    report: ReportSnapshot, generated_at: Optional[datetime] = None
) -> str:
    context = build_pdf_context(report, generated_at)
    return _env.get_template("report.html").render(**context)


def render_report_pdf(
    report: ReportSnapshot, generated_at: Optional[datetime] = None
) -> bytes:
    html = render_report_html(report, generated_at)
    try:
        from weasyprint import CSS, HTML
    except Exception as exc:
        raise PDFRenderError(
            "PDF export requires WeasyPrint system dependencies; install them for your OS and retry."
        ) from exc

    try:
        pdf_bytes = HTML(string=html, base_url=str(TEMPLATES_DIR)).write_pdf(
            stylesheets=[CSS(string=PAGE_CSS)]
        )
    except Exception as exc:
        raise PDFRenderError("Failed to render PDF report") from exc
    if not pdf_bytes:
        raise PDFRenderError("PDF renderer returned an empty document")
    logger.debug(f"pdf_rendered: size_bytes={len(pdf_bytes)}")
    return pdf_bytes
