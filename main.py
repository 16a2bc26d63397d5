import logging
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import AuthenticationError, current_owner_id
from config import get_settings
from database import get_db
from models import LimitKind, TransactionStatus, TransactionType
from periods import Period, local_today, resolve_period
from scheduler import SchedulerManager
from schemas import (
    CardIn,
    CategoryIn,
    CategoryLimitIn,
    LimitIn,
    TransactionIn,
    TransactionStatusIn,
)
from services import (
    AVAILABLE_REPORTS,
    EXPORT_FORMATS,
    BudgetService,
    CardService,
    CategoryService,
    InvalidInputError,
    LimitService,
    NotFoundError,
    ReportService,
    StorageError,
    TransactionService,
    card_to_dict,
    category_to_dict,
    limit_to_dict,
    transaction_to_dict,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Budget Limits API")
scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    if settings.scheduler_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def ok(data: object) -> dict[str, object]:
    return {"success": True, "data": data}


def error_response(
    status_code: int, message: str, errors: Optional[list] = None
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, "errors": errors or []},
    )


@app.exception_handler(InvalidInputError)
async def invalid_input_handler(request: Request, exc: InvalidInputError):
    return error_response(400, str(exc))


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return error_response(404, str(exc))


@app.exception_handler(AuthenticationError)
async def authentication_handler(request: Request, exc: AuthenticationError):
    return error_response(401, str(exc))


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error(
        f"request_failed: method={request.method} path={request.url.path} "
        f"operation={exc.operation}"
    )
    return error_response(500, "Internal storage error")


@app.exception_handler(RequestValidationError)
async def validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
    return error_response(422, "Invalid request data", errors)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail))


def period_from_request(request: Request, default: str = "this_month") -> Period:
    try:
        return resolve_period(
            request.query_params.get("period"),
            request.query_params.get("start"),
            request.query_params.get("end"),
            default=default,
        )
    except ValueError as exc:
        raise InvalidInputError(str(exc)) from exc


def report_year(year: Optional[int]) -> int:
    year = year or local_today().year
    if year < 1970 or year > 3000:
        raise InvalidInputError("Year out of range")
    return year


@app.get("/api/health")
def health():
    return ok({"status": "ok"})


# Categories


@app.get("/api/categories")
def list_categories(
    type: Optional[TransactionType] = None,
    include_archived: bool = False,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    categories = CategoryService(db, owner_id).list_all(
        type=type, include_archived=include_archived
    )
    return ok([category_to_dict(c) for c in categories])


@app.post("/api/categories", status_code=201)
def create_category(
    data: CategoryIn,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    return ok(category_to_dict(CategoryService(db, owner_id).create(data)))


@app.post("/api/categories/{category_id}/archive")
def archive_category(
    category_id: int,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    CategoryService(db, owner_id).archive(category_id)
    return ok(None)


# Cards


@app.get("/api/cards")
def list_cards(
    include_archived: bool = False,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    cards = CardService(db, owner_id).list_all(include_archived=include_archived)
    return ok([card_to_dict(c) for c in cards])


@app.post("/api/cards", status_code=201)
def create_card(
    data: CardIn,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    return ok(card_to_dict(CardService(db, owner_id).create(data)))


@app.post("/api/cards/{card_id}/archive")
def archive_card(
    card_id: int,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    CardService(db, owner_id).archive(card_id)
    return ok(None)


# Transactions


@app.get("/api/transactions")
def list_transactions(
    request: Request,
    type: Optional[TransactionType] = None,
    status: Optional[TransactionStatus] = None,
    category_id: Optional[int] = None,
    card_id: Optional[int] = None,
    page: int = 1,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    period = period_from_request(request)
    page = max(page, 1)
    limit = 50
    items = TransactionService(db, owner_id).list(
        period,
        type=type,
        status=status,
        category_id=category_id,
        card_id=card_id,
        limit=limit + 1,
        offset=(page - 1) * limit,
    )
    return ok(
        {
            "start": period.start.isoformat(),
            "end": period.end.isoformat(),
            "page": page,
            "has_more": len(items) > limit,
            "items": [transaction_to_dict(t) for t in items[:limit]],
        }
    )


@app.post("/api/transactions", status_code=201)
def create_transaction(
    data: TransactionIn,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    return ok(transaction_to_dict(TransactionService(db, owner_id).create(data)))


@app.get("/api/transactions/{transaction_id}")
def get_transaction(
    transaction_id: int,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    return ok(transaction_to_dict(TransactionService(db, owner_id).get(transaction_id)))


@app.post("/api/transactions/{transaction_id}/status")
def set_transaction_status(
    transaction_id: int,
    data: TransactionStatusIn,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    txn = TransactionService(db, owner_id).set_status(transaction_id, data.status)
    return ok(transaction_to_dict(txn))


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    TransactionService(db, owner_id).soft_delete(transaction_id)
    return ok(None)


# Limits


@app.get("/api/limits")
def list_limits(
    kind: Optional[LimitKind] = None,
    include_inactive: bool = False,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    limits = LimitService(db, owner_id).list_all(
        kind, active_only=not include_inactive
    )
    return ok([limit_to_dict(limit) for limit in limits])


@app.post("/api/limits", status_code=201)
def create_limit(
    data: LimitIn,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    return ok(limit_to_dict(LimitService(db, owner_id).create(data)))


@app.get("/api/limits/alerts")
def limit_alerts(
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    return ok([limit_to_dict(limit) for limit in LimitService(db, owner_id).alerts()])


@app.get("/api/limits/stats")
def limit_stats(
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    return ok(LimitService(db, owner_id).stats())


@app.get("/api/limits/{limit_id}")
def get_limit(
    limit_id: int,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    return ok(limit_to_dict(LimitService(db, owner_id).get(limit_id)))


@app.put("/api/limits/{limit_id}")
def update_limit(
    limit_id: int,
    data: LimitIn,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    return ok(limit_to_dict(LimitService(db, owner_id).update(limit_id, data)))


@app.delete("/api/limits/{limit_id}")
def delete_limit(
    limit_id: int,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    LimitService(db, owner_id).delete(limit_id)
    return ok(None)


@app.post("/api/limits/{limit_id}/reset")
def reset_limit(
    limit_id: int,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    return ok(limit_to_dict(LimitService(db, owner_id).reset(limit_id)))


@app.post("/api/limits/{limit_id}/recalculate")
def recalculate_limit(
    limit_id: int,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    return ok(limit_to_dict(LimitService(db, owner_id).recalculate(limit_id)))


# Category limits (monthly budget view)


@app.get("/api/category-limits")
def budget_view(
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    return ok(BudgetService(db, owner_id).budget_view())


@app.post("/api/category-limits", status_code=201)
def upsert_category_limit(
    data: CategoryLimitIn,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    return ok(LimitService(db, owner_id).upsert_category_limit(data))


@app.delete("/api/category-limits/{category_name}")
def delete_category_limit(
    category_name: str,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    LimitService(db, owner_id).delete_category_limit(category_name)
    return ok(None)


# Reports


@app.get("/api/reports/financial")
def financial_report(
    request: Request,
    group_by: str = "category",
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    period = period_from_request(request, default="last_3_months")
    report = ReportService(db, owner_id).financial_report(
        period.start, period.end, group_by
    )
    return ok(report)


@app.get("/api/reports/categories")
def category_report(
    request: Request,
    type: Optional[TransactionType] = None,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    period = period_from_request(request, default="last_3_months")
    rows = ReportService(db, owner_id).category_report(period.start, period.end, type)
    return ok(
        {
            "start": period.start.isoformat(),
            "end": period.end.isoformat(),
            "total": round(sum(row["total"] for row in rows), 2),
            "categories": rows,
        }
    )


@app.get("/api/reports/cash-flow")
def cash_flow_report(
    year: Optional[int] = None,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    return ok(ReportService(db, owner_id).cash_flow(report_year(year)))


@app.get("/api/reports/breakdown")
def breakdown_report(
    request: Request,
    dimension: str = "category",
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    period = period_from_request(request, default="last_3_months")
    rows = ReportService(db, owner_id).breakdown(period.start, period.end, dimension)
    return ok(rows)


@app.get("/api/reports/top-categories")
def top_categories_report(
    request: Request,
    limit: int = 5,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    period = period_from_request(request, default="last_3_months")
    limit = min(max(limit, 1), 50)
    return ok(
        ReportService(db, owner_id).top_categories(period.start, period.end, limit)
    )


@app.get("/api/reports/monthly-evolution")
def monthly_evolution_report(
    request: Request,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    period = period_from_request(request, default="last_3_months")
    return ok(ReportService(db, owner_id).monthly_evolution(period.start, period.end))


@app.get("/api/reports/available")
def available_reports(owner_id: int = Depends(current_owner_id)):
    return ok(list(AVAILABLE_REPORTS))


@app.get("/api/reports/export")
def export_report(
    request: Request,
    type: str,
    format: str = "json",
    year: Optional[int] = None,
    group_by: str = "category",
    category_type: Optional[TransactionType] = None,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    if format not in EXPORT_FORMATS:
        raise InvalidInputError("Unsupported export format")
    period = period_from_request(request, default="last_3_months")
    report = ReportService(db, owner_id).export(
        type,
        period.start,
        period.end,
        year=report_year(year),
        group_by=group_by,
        category_type=category_type,
    )
    return ok(report)
