import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from auth import bearer_token, resolve_owner
from config import get_settings
from database import SessionFactory, SessionLocal
from errors import AuthenticationRequired, NotFoundError, RateLimitExceeded, SpendwiseError
from models import User
from periods import parse_day
from retention import cleanup_all
from scheduler import SchedulerManager
from schemas import ConfirmationIn, ExpenseIn, RetentionSettingsIn, WeekStartIn
from security import SECURITY_HEADERS, PermissionGate, audited
from services import ExpenseService, RetentionSettingsService, UserService, aggregator_for

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Spendwise")

gate = PermissionGate(settings)
scheduler_manager = SchedulerManager()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> SessionFactory:
    return SessionLocal


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> User:
    owner = resolve_owner(bearer_token(authorization))
    try:
        return UserService(db).get(owner)
    except NotFoundError as exc:
        raise AuthenticationRequired("Unknown account") from exc


def ok(data: Any, message: Optional[str] = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    return body


def _error_body(kind: str, message: str) -> dict[str, Any]:
    return {"success": False, "error": {"kind": kind, "message": message}}


@app.exception_handler(SpendwiseError)
async def handle_spendwise_error(request: Request, exc: SpendwiseError):
    headers = None
    if isinstance(exc, RateLimitExceeded):
        headers = {"Retry-After": str(exc.retry_after_secs)}
    if exc.status_code >= 500:
        logger.error(f"request_failed: path={request.url.path} kind={exc.kind} error={exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.kind, exc.message),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content=_error_body("validation_error", message))


@app.exception_handler(SQLAlchemyError)
async def handle_database_error(request: Request, exc: SQLAlchemyError):
    logger.exception(f"request_failed: path={request.url.path} error={exc}")
    return JSONResponse(
        status_code=500, content=_error_body("internal_error", "Internal server error")
    )


@app.middleware("http")
async def retention_security_headers(request: Request, call_next):
    response = await call_next(request)
    if request.url.path.startswith("/api/data-retention"):
        for name, value in SECURITY_HEADERS.items():
            response.headers[name] = value
    return response


@app.on_event("startup")
def startup_event():
    if settings.scheduler_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.get("/health")
def health(db: Session = Depends(get_db)):
    db.execute(select(1))
    return {"status": "ok", "timestamp": datetime.utcnow().isoformat()}


# Expenses


@app.post("/api/expenses", status_code=201)
def create_expense(
    payload: ExpenseIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    expense = ExpenseService(db, user.id).create(payload)
    return ok(expense.to_dict(), "Expense created")


@app.get("/api/expenses")
def list_expenses(
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    start = parse_day(start_date, field="startDate") if start_date else None
    end = parse_day(end_date, field="endDate") if end_date else None
    expenses = ExpenseService(db, user.id).list(start, end)
    return ok([expense.to_dict() for expense in expenses])


@app.delete("/api/expenses/{expense_id}")
def delete_expense(
    expense_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ExpenseService(db, user.id).delete(expense_id)
    return ok({"id": expense_id}, "Expense deleted")


# Weekly analysis


@app.get("/api/analysis/weekly")
def weekly_analysis(
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return ok(aggregator_for(db).get_or_generate(user.id, start_date))


@app.post("/api/analysis/weekly/generate", status_code=201)
def generate_weekly_analysis(
    payload: WeekStartIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    analysis = aggregator_for(db).generate(user.id, payload.start_date)
    return ok(analysis, "Weekly analysis generated")


@app.get("/api/analysis/recent")
def recent_analyses(
    limit: int = Query(default=10),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return ok(aggregator_for(db).recent(user.id, limit))


@app.post("/api/ai/suggestions")
def create_suggestions(
    payload: WeekStartIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return ok(aggregator_for(db).suggest(user.id, payload.start_date))


@app.get("/api/ai/suggestions/{week_start_date}")
def stored_suggestions(
    week_start_date: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return ok(aggregator_for(db).stored_suggestions(user.id, week_start_date))


# Data retention


@app.get("/api/data-retention/health")
def retention_health():
    status = scheduler_manager.status()
    return ok({"status": "healthy", "scheduler_initialized": status["initialized"]})


@app.get("/api/data-retention/settings")
def retention_settings(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with audited("get_settings", user.id):
        gate.authorize_settings(user)
        data = RetentionSettingsService(db, user.id, settings).get_settings()
    return ok(data)


@app.put("/api/data-retention/settings")
def update_retention_settings(
    payload: RetentionSettingsIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    request_data = payload.model_dump(by_alias=True)
    with audited("update_settings", user.id, request_data):
        gate.authorize_settings(user)
        data = RetentionSettingsService(db, user.id, settings).update_settings(
            payload.months, payload.auto_cleanup
        )
    return ok(data, "Retention settings updated")


@app.get("/api/data-retention/preview")
def retention_preview(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with audited("preview", user.id):
        gate.authorize_general(user)
        data = RetentionSettingsService(db, user.id, settings).preview()
    return ok(data)


@app.get("/api/data-retention/stats")
def retention_stats(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with audited("stats", user.id):
        gate.authorize_general(user)
        data = RetentionSettingsService(db, user.id, settings).stats()
    return ok(data)


@app.post("/api/data-retention/cleanup")
def retention_cleanup(
    payload: Optional[ConfirmationIn] = Body(default=None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    confirmation = payload.confirmation if payload else None
    with audited("cleanup", user.id, {"confirmation": confirmation}):
        gate.authorize_cleanup(user, confirmation)
        data = RetentionSettingsService(db, user.id, settings).cleanup()
    message = "Cleanup completed"
    if data["partial_failure"]:
        message = "Cleanup completed with failures"
    return ok(data, message)


@app.post("/api/data-retention/admin/cleanup")
def retention_admin_cleanup(
    payload: Optional[ConfirmationIn] = Body(default=None),
    user: User = Depends(get_current_user),
    session_factory: SessionFactory = Depends(get_session_factory),
):
    confirmation = payload.confirmation if payload else None
    with audited("global_cleanup", user.id, {"confirmation": confirmation}):
        gate.authorize_global_cleanup(user, confirmation)
        result = cleanup_all(session_factory, settings=settings)
    return ok(result.to_dict(), "Global cleanup completed")


@app.get("/api/data-retention/scheduler/status")
def scheduler_status(user: User = Depends(get_current_user)):
    return ok(scheduler_manager.status())
