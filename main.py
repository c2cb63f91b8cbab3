import logging
from datetime import date, datetime
from typing import Optional
from urllib.parse import urlencode

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response, StreamingResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from config import get_settings
from csrf import generate_csrf_token, validate_csrf_token
from csv_utils import build_report_csv, parse_amount
from database import SessionLocal
from models import TransactionType
from pdf_report import TEMPLATES_DIR, PDFRenderError, render_report_pdf
from periods import local_now
from schemas import (
    AnalyticsSnapshot,
    CategoryLimitIn,
    ReportSnapshot,
    TransactionIn,
    TransactionPage,
)
from services import (
    AnalyticsService,
    CategoryLimitNotFound,
    CategoryLimitService,
    ReportService,
    TransactionNotFound,
    TransactionService,
    get_current_user_id,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Expense Tracker")
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

DASHBOARD_MONTHS = 6
TRANSACTIONS_PER_PAGE = 10


def format_currency(value: float) -> str:
    return f"{get_settings().currency_prefix} {value:,.2f}"


templates.env.filters["currency"] = format_currency
templates.env.globals["TransactionType"] = TransactionType


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_user_id() -> int:
    return get_current_user_id()


def render(request: Request, template: str, context: dict[str, object]) -> HTMLResponse:
    return templates.TemplateResponse(request, template, context)


def parse_months(raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


async def form_with_csrf(request: Request, user_id: int):
    form = await request.form()
    if not validate_csrf_token(str(form.get("csrf_token", "")), user_id):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    return form


def transaction_payload_from_form(form) -> TransactionIn:
    raw_type = str(form.get("type") or "").strip().lower()
    try:
        txn_type = TransactionType(raw_type)
    except ValueError as exc:
        raise ValueError("Type must be income or expense.") from exc
    return TransactionIn(
        amount_cents=parse_amount(str(form.get("amount") or "")),
        date=date.fromisoformat(str(form.get("date") or "").strip()),
        type=txn_type,
        category=form.get("category"),
        description=form.get("description"),
    )


def limit_payload_from_form(form) -> CategoryLimitIn:
    raw_id = str(form.get("limitId") or "").strip()
    try:
        limit_id = int(raw_id) if raw_id else None
    except ValueError as exc:
        raise ValueError("Invalid category limit identifier.") from exc
    return CategoryLimitIn(
        category=form.get("category"),
        limit_cents=parse_amount(str(form.get("limit") or "")),
        limit_id=limit_id,
    )


def changed_response(request: Request, trigger: str) -> Response:
    headers = {"HX-Trigger": trigger}
    if request.headers.get("HX-Request"):
        return Response(status_code=204, headers=headers)
    return RedirectResponse(
        url=request.app.url_path_for("dashboard"), status_code=303, headers=headers
    )


@app.get("/")
def index(request: Request):
    return RedirectResponse(url=request.app.url_path_for("dashboard"), status_code=303)


@app.get("/transactions", response_class=HTMLResponse, name="dashboard")
def dashboard(
    request: Request,
    page: int = 1,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    transactions = TransactionService(db, user_id).list_page(
        page, per_page=TRANSACTIONS_PER_PAGE
    )
    analytics = AnalyticsService(db, user_id).build(DASHBOARD_MONTHS)
    return render(
        request,
        "dashboard.html",
        {
            "transactions": transactions,
            "analytics": analytics,
            "charts_json": analytics.charts.model_dump(by_alias=True),
            "csrf": generate_csrf_token(user_id),
            "today": local_now().date().isoformat(),
        },
    )


@app.get("/api/transactions", response_model=TransactionPage)
def api_transactions(
    page: int = 1,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    return TransactionService(db, user_id).list_page(
        page, per_page=TRANSACTIONS_PER_PAGE
    )


@app.post("/transactions")
async def create_transaction(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    form = await form_with_csrf(request, user_id)
    try:
        data = transaction_payload_from_form(form)
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    TransactionService(db, user_id).create(data)
    return changed_response(request, "transactions-changed")


@app.post("/transactions/delete-all")
async def delete_all_transactions(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    await form_with_csrf(request, user_id)
    deleted = TransactionService(db, user_id).delete_all()
    return {
        "success": True,
        "message": f"Successfully deleted {deleted} transaction(s).",
        "deletedCount": deleted,
    }


@app.post("/transactions/{transaction_id}/edit")
async def update_transaction(
    transaction_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    form = await form_with_csrf(request, user_id)
    try:
        data = transaction_payload_from_form(form)
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        TransactionService(db, user_id).update(transaction_id, data)
    except TransactionNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return changed_response(request, "transactions-changed")


@app.post("/transactions/{transaction_id}/delete")
async def delete_transaction(
    transaction_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    await form_with_csrf(request, user_id)
    try:
        TransactionService(db, user_id).delete(transaction_id)
    except TransactionNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return changed_response(request, "transactions-changed")


@app.get("/api/analytics", response_model=AnalyticsSnapshot)
def api_analytics(
    months: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    return AnalyticsService(db, user_id).build(parse_months(months))


@app.get("/api/category-limits")
def api_category_limits(
    db: Session = Depends(get_db), user_id: int = Depends(get_user_id)
):
    return [
        {
            "id": limit.id,
            "category": limit.category,
            "normalizedCategory": limit.normalized_category,
            "limit": limit.limit_cents / 100,
        }
        for limit in CategoryLimitService(db, user_id).list_all()
    ]


@app.post("/category-limits")
async def upsert_category_limit(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    form = await form_with_csrf(request, user_id)
    try:
        data = limit_payload_from_form(form)
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        CategoryLimitService(db, user_id).upsert(data)
    except CategoryLimitNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return changed_response(request, "limits-changed")


@app.post("/category-limits/{limit_id}/delete")
async def delete_category_limit(
    limit_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    await form_with_csrf(request, user_id)
    try:
        CategoryLimitService(db, user_id).delete(limit_id)
    except CategoryLimitNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return changed_response(request, "limits-changed")


@app.get("/reports", response_class=HTMLResponse)
def reports_page(
    request: Request,
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    category: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    report = ReportService(db, user_id).build(start_date, end_date, category)
    export_params = {
        "startDate": report.filters.start_date,
        "endDate": report.filters.end_date,
        "category": report.filters.category,
    }
    query = urlencode({key: value for key, value in export_params.items() if value})
    return render(
        request,
        "reports.html",
        {"report": report, "query_suffix": f"&{query}" if query else ""},
    )


@app.get("/api/reports", response_model=ReportSnapshot)
def api_reports(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    category: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    return ReportService(db, user_id).build(start_date, end_date, category)


@app.get("/reports/export")
def export_report(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    category: Optional[str] = None,
    export_format: str = Query("pdf", alias="format"),
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    start_time = datetime.now()
    report = ReportService(db, user_id).build(start_date, end_date, category)

    if export_format.strip().lower() == "csv":
        csv_text = build_report_csv(report)
        logger.info(
            f"report_generated: format=csv range={report.filters.display_range!r} "
            f"transactions={report.summary.transaction_count} "
            f"duration={(datetime.now() - start_time).total_seconds():.2f}s"
        )
        return StreamingResponse(
            iter([csv_text]),
            media_type="text/csv",
            headers={"Content-Disposition": 'attachment; filename="expense-report.csv"'},
        )

    try:
        pdf_bytes = render_report_pdf(report)
    except PDFRenderError as exc:
        logger.exception("Error generating PDF report")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    logger.info(
        f"report_generated: format=pdf range={report.filters.display_range!r} "
        f"transactions={report.summary.transaction_count} "
        f"pdf_size_bytes={len(pdf_bytes)} "
        f"duration={(datetime.now() - start_time).total_seconds():.2f}s"
    )
    return StreamingResponse(
        iter([pdf_bytes]),
        media_type="application/pdf",
        headers={
            "Content-Disposition": 'attachment; filename="expense-report.pdf"',
            "Content-Length": str(len(pdf_bytes)),
        },
    )


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
