import logging
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session, sessionmaker

from auth import verify_token
from config import get_settings
from database import SessionLocal
from errors import LedgerError
from models import (
    Account,
    Budget,
    BudgetPeriod,
    Debt,
    DebtDirection,
    EntryKind,
    Goal,
    LedgerEntry,
    User,
)
from notifications import (
    NotificationDispatcher,
    PostingHandler,
    build_push_client,
    detached,
)
from periods import resolve_period
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountUpdateIn,
    BudgetIn,
    BudgetUpdateIn,
    DebtIn,
    DebtPaymentIn,
    DebtUpdateIn,
    FcmTokenIn,
    GoalIn,
    GoalUpdateIn,
    IncomeIn,
    MonthStartDateIn,
    SpendingIn,
)
from services import (
    AccountService,
    AnalyticsService,
    BudgetService,
    DebtService,
    GoalService,
    LedgerService,
    NotificationService,
    PostingFollowUp,
    ReportService,
    UserService,
    month_start_date_for,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    try:
        import tomllib
    except ImportError:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except (OSError, tomllib.TOMLDecodeError):
        return "unknown"


APP_VERSION = _load_app_version()

app = FastAPI(title="Ledger API", version=APP_VERSION)

dispatcher = NotificationDispatcher(
    build_push_client(settings), settings.notify_batch_size
)
scheduler_manager = SchedulerManager(settings, SessionLocal, dispatcher)
bearer_scheme = HTTPBearer(auto_error=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> sessionmaker:
    return SessionLocal


def get_dispatcher() -> NotificationDispatcher:
    return dispatcher


def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> int:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    user_id = verify_token(credentials.credentials)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return user_id


def get_posting_follow_up(
    background_tasks: BackgroundTasks,
    session_factory: sessionmaker = Depends(get_session_factory),
    notification_dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> PostingHandler:
    return detached(
        background_tasks.add_task,
        PostingFollowUp(session_factory, notification_dispatcher),
    )


@app.on_event("startup")
def startup_event():
    if settings.scheduler_enabled:
        scheduler_manager.start()
    else:
        logger.info("Scheduler disabled by configuration")


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "error": "InvalidInput",
            "message": "Request validation failed",
            "details": jsonable_encoder(exc.errors()),
        },
    )


def _user_out(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "timezone": user.timezone,
        "month_start_date": user.month_start_date,
        "status": user.status.value,
    }


def _account_out(account: Account) -> dict:
    return {
        "id": account.id,
        "name": account.name,
        "amount_cents": account.amount_cents,
        "currency": account.currency,
        "credit_limit_cents": account.credit_limit_cents,
        "icon": account.icon,
        "account_type": account.account_type,
        "color": account.color,
        "notes": account.notes,
        "last_updated": account.last_updated.isoformat()
        if account.last_updated
        else None,
    }


def _entry_out(entry: LedgerEntry) -> dict:
    return {
        "id": entry.id,
        "account_id": entry.account_id,
        "kind": entry.kind.value,
        "name": entry.name,
        "category": entry.category,
        "amount_cents": entry.amount_cents,
        "currency": entry.currency,
        "date": entry.date.isoformat(),
        "occurred_at": entry.occurred_at.isoformat(),
        "repeat_for_all_year": entry.repeat_for_all_year,
    }


def _budget_out(budget: Budget) -> dict:
    return {
        "id": budget.id,
        "category": budget.category,
        "budget_value_cents": budget.budget_value_cents,
        "currency": budget.currency,
        "period": budget.period.value,
    }


def _goal_out(goal: Goal) -> dict:
    return {
        "id": goal.id,
        "name": goal.name,
        "category": goal.category,
        "target_cents": goal.target_cents,
        "accumulated_cents": goal.accumulated_cents,
        "currency": goal.currency,
        "status": goal.status.value,
        "icon": goal.icon,
        "color": goal.color,
        "target_date": goal.target_date.isoformat() if goal.target_date else None,
        "notes": goal.notes,
    }


def _debt_out(debt: Debt) -> dict:
    return {
        "id": debt.id,
        "direction": debt.direction.value,
        "name": debt.name,
        "counterparty": debt.counterparty,
        "amount_cents": debt.amount_cents,
        "accumulated_cents": debt.accumulated_cents,
        "amount_left_cents": max(0, debt.amount_cents - debt.accumulated_cents),
        "currency": debt.currency,
        "status": debt.status.value,
        "icon": debt.icon,
        "color": debt.color,
        "debt_date": debt.debt_date.isoformat() if debt.debt_date else None,
        "payoff_date": debt.payoff_date.isoformat() if debt.payoff_date else None,
        "notes": debt.notes,
    }


# Users


@app.get("/me")
def read_me(
    user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)
):
    return _user_out(UserService(db, user_id).get())


@app.get("/me/month-start-date")
def read_month_start_date(
    user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)
):
    return {"month_start_date": UserService(db, user_id).get_month_start_date()}


@app.put("/me/month-start-date")
def update_month_start_date(
    payload: MonthStartDateIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    user = UserService(db, user_id).set_month_start_date(payload.month_start_date)
    return {"month_start_date": user.month_start_date}


@app.put("/me/fcm-token")
def update_fcm_token(
    payload: FcmTokenIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    UserService(db, user_id).set_fcm_token(payload.fcm_token)
    return {"ok": True}


# Accounts


@app.post("/accounts", status_code=201)
def create_account(
    payload: AccountIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return _account_out(AccountService(db, user_id).create(payload))


@app.get("/accounts")
def list_accounts(
    user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)
):
    return AccountService(db, user_id).list_with_total()


@app.patch("/accounts/{account_id}")
def update_account(
    account_id: int,
    payload: AccountUpdateIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return _account_out(AccountService(db, user_id).update(account_id, payload))


@app.delete("/accounts/{account_id}", status_code=204)
def delete_account(
    account_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    AccountService(db, user_id).delete(account_id)
    return Response(status_code=204)


# Ledger entries


@app.post("/accounts/{account_id}/income", status_code=201)
def add_income(
    account_id: int,
    payload: IncomeIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    on_posted: PostingHandler = Depends(get_posting_follow_up),
):
    entry = LedgerService(db, user_id, on_posted).add_income(account_id, payload)
    return _entry_out(entry)


@app.post("/accounts/{account_id}/spending", status_code=201)
def add_spending(
    account_id: int,
    payload: SpendingIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    on_posted: PostingHandler = Depends(get_posting_follow_up),
):
    entry = LedgerService(db, user_id, on_posted).add_spending(account_id, payload)
    return _entry_out(entry)


@app.get("/entries")
def list_entries(
    period: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    kind: Optional[EntryKind] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    resolved = resolve_period(
        period, start, end, month_start_date=month_start_date_for(db, user_id)
    )
    items = LedgerService(db, user_id).list_entries(
        resolved, kind, limit=limit + 1, offset=(page - 1) * limit
    )
    has_more = len(items) > limit
    return {
        "items": [_entry_out(entry) for entry in items[:limit]],
        "period_start": resolved.start.isoformat(),
        "period_end": resolved.end.isoformat(),
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


@app.get("/entries/day-totals")
def day_totals(
    day: str = Query(..., alias="date"),
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return LedgerService(db, user_id).day_totals(day)


@app.get("/entries/cycle-totals")
def cycle_totals(
    month: Optional[str] = None,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return LedgerService(db, user_id).cycle_totals(month)


@app.put("/entries/{entry_id}")
def update_entry(
    entry_id: int,
    payload: IncomeIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return _entry_out(LedgerService(db, user_id).update_entry(entry_id, payload))


@app.delete("/entries/{entry_id}", status_code=204)
def delete_entry(
    entry_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    LedgerService(db, user_id).delete_entry(entry_id)
    return Response(status_code=204)


# Analytics


@app.get("/analytics/income-vs-expenses")
def income_vs_expenses(
    year: int = Query(..., ge=1970, le=9999),
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return AnalyticsService(db, user_id).income_vs_expenses(year)


@app.get("/analytics/balance-trend")
def balance_trend(
    year: int = Query(..., ge=1970, le=9999),
    month: int = Query(..., ge=1, le=12),
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return AnalyticsService(db, user_id).balance_trend(year, month)


@app.get("/analytics/spending-by-category")
def spending_by_category(
    year: int = Query(..., ge=1970, le=9999),
    month: int = Query(..., ge=1, le=12),
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return AnalyticsService(db, user_id).spending_by_category(year, month)


# Budgets


@app.post("/budgets", status_code=201)
def create_budget(
    payload: BudgetIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return _budget_out(BudgetService(db, user_id).create(payload))


@app.get("/budgets")
def evaluate_budgets(
    period: BudgetPeriod = BudgetPeriod.monthly,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return BudgetService(db, user_id).evaluate(period)


@app.get("/budgets/{budget_id}")
def read_budget(
    budget_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return _budget_out(BudgetService(db, user_id).get(budget_id))


@app.patch("/budgets/{budget_id}")
def update_budget(
    budget_id: int,
    payload: BudgetUpdateIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return _budget_out(BudgetService(db, user_id).update(budget_id, payload))


@app.delete("/budgets/{budget_id}", status_code=204)
def delete_budget(
    budget_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    BudgetService(db, user_id).delete(budget_id)
    return Response(status_code=204)


# Reports


@app.get("/reports/weekly")
def weekly_report(
    user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)
):
    return ReportService(db, user_id).weekly_report()


@app.get("/reports/monthly")
def monthly_report(
    month: Optional[str] = None,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return ReportService(db, user_id).monthly_report(month)


# Goals


@app.post("/goals", status_code=201)
def create_goal(
    payload: GoalIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return _goal_out(GoalService(db, user_id).create(payload))


@app.get("/goals")
def list_goals(
    user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)
):
    return GoalService(db, user_id).list_with_progress()


@app.get("/goals/{goal_id}")
def read_goal(
    goal_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return _goal_out(GoalService(db, user_id).get(goal_id))


@app.patch("/goals/{goal_id}")
def update_goal(
    goal_id: int,
    payload: GoalUpdateIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return _goal_out(GoalService(db, user_id).update(goal_id, payload))


@app.delete("/goals/{goal_id}", status_code=204)
def delete_goal(
    goal_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    GoalService(db, user_id).delete(goal_id)
    return Response(status_code=204)


# Debts (borrowed and lent)


@app.post("/debts/{direction}", status_code=201)
def create_debt(
    direction: DebtDirection,
    payload: DebtIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return _debt_out(DebtService(db, user_id, direction).create(payload))


@app.get("/debts/{direction}")
def list_debts(
    direction: DebtDirection,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return DebtService(db, user_id, direction).list_with_progress()


@app.get("/debts/{direction}/{debt_id}")
def read_debt(
    direction: DebtDirection,
    debt_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return _debt_out(DebtService(db, user_id, direction).get(debt_id))


@app.patch("/debts/{direction}/{debt_id}/payment")
def add_debt_payment(
    direction: DebtDirection,
    debt_id: int,
    payload: DebtPaymentIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    service = DebtService(db, user_id, direction)
    return _debt_out(service.add_payment(debt_id, payload.amount_cents))


@app.patch("/debts/{direction}/{debt_id}/paid")
def mark_debt_paid(
    direction: DebtDirection,
    debt_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return _debt_out(DebtService(db, user_id, direction).mark_as_paid(debt_id))


@app.patch("/debts/{direction}/{debt_id}")
def update_debt(
    direction: DebtDirection,
    debt_id: int,
    payload: DebtUpdateIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return _debt_out(DebtService(db, user_id, direction).update(debt_id, payload))


@app.delete("/debts/{direction}/{debt_id}", status_code=204)
def delete_debt(
    direction: DebtDirection,
    debt_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    DebtService(db, user_id, direction).delete(debt_id)
    return Response(status_code=204)


# Notifications


@app.get("/notifications")
def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return NotificationService(db, user_id).list(page, limit)


@app.get("/notifications/unread-count")
def unread_notifications(
    user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)
):
    return {"unread_count": NotificationService(db, user_id).unread_count()}


@app.post("/notifications/read-all")
def read_all_notifications(
    user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)
):
    return {"updated": NotificationService(db, user_id).mark_all_read()}


@app.get("/notifications/{notification_id}")
def read_notification(
    notification_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    service = NotificationService(db, user_id)
    return service.as_dict(service.get(notification_id))


@app.delete("/notifications/{notification_id}", status_code=204)
def delete_notification(
    notification_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    NotificationService(db, user_id).delete(notification_id)
    return Response(status_code=204)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
