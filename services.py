from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from aggregation import (
    LedgerAggregator,
    category_key,
    percentage,
    round2,
    round_cents,
)
from errors import (
    ConflictError,
    InsufficientFundsError,
    InvalidInputError,
    NotFoundError,
)
from models import (
    BUDGET_THRESHOLDS,
    Account,
    Budget,
    BudgetPeriod,
    Debt,
    DebtDirection,
    DebtStatus,
    EntryKind,
    Goal,
    GoalStatus,
    LedgerEntry,
    Notification,
    User,
    dump_thresholds,
)
from notifications import NotificationDispatcher, PostedEntry, PostingHandler
from periods import (
    Period,
    end_of_day,
    format_date_range,
    month_range,
    parse_year_month,
    range_for,
    start_of_day,
    utcnow,
    validate_month_start_date,
    week_range,
)
from schemas import (
    AccountIn,
    AccountUpdateIn,
    BudgetIn,
    BudgetUpdateIn,
    DebtIn,
    DebtUpdateIn,
    EntryIn,
    GoalIn,
    GoalUpdateIn,
    IncomeIn,
    SpendingIn,
    UserIn,
)

logger = logging.getLogger(__name__)


def format_cents(cents: int) -> str:
    return f"{cents / 100:,.2f}"


def month_start_date_for(session: Session, user_id: int) -> Optional[int]:
    row = session.execute(
        select(User.id, User.month_start_date).where(User.id == user_id)
    ).first()
    if row is None:
        raise NotFoundError("User not found")
    return row.month_start_date


def _matches(column, value):
    return column.is_(None) if value is None else column == value


def current_balance_for(session: Session, user_id: int) -> int:
    stmt = select(func.coalesce(func.sum(Account.amount_cents), 0)).where(
        Account.user_id == user_id
    )
    return int(session.execute(stmt).scalar_one() or 0)


class UserService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    @staticmethod
    def create(session: Session, data: UserIn) -> User:
        existing = session.scalar(
            select(User.id).where(func.lower(User.email) == data.email.lower())
        )
        if existing:
            raise ConflictError("A user with this email already exists")
        user = User(
            email=data.email.lower(),
            full_name=data.full_name,
            timezone=data.timezone,
            month_start_date=data.month_start_date,
            fcm_token=data.fcm_token,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    def get(self) -> User:
        user = self.session.get(User, self.user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def get_month_start_date(self) -> Optional[int]:
        return month_start_date_for(self.session, self.user_id)

    def set_month_start_date(self, value: int) -> User:
        validate_month_start_date(value)
        user = self.get()
        user.month_start_date = value
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"month_start_date_set: user_id={self.user_id} value={value}")
        return user

    def set_fcm_token(self, token: Optional[str]) -> User:
        user = self.get()
        user.fcm_token = token or None
        self.session.commit()
        self.session.refresh(user)
        return user


class AccountService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def create(self, data: AccountIn) -> Account:
        account = Account(
            user_id=self.user_id,
            name=data.name,
            amount_cents=data.amount_cents,
            currency=data.currency,
            credit_limit_cents=data.credit_limit_cents,
            icon=data.icon,
            account_type=data.account_type,
            color=data.color,
            notes=data.notes,
            last_updated=utcnow(),
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def get(self, account_id: int) -> Account:
        account = self.session.scalar(
            select(Account).where(
                Account.id == account_id, Account.user_id == self.user_id
            )
        )
        if not account:
            raise NotFoundError("Account not found")
        return account

    def list_with_total(self) -> dict[str, object]:
        accounts = self.session.scalars(
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.created_at.desc(), Account.id.desc())
        ).all()
        return {
            "accounts": [
                {
                    "id": account.id,
                    "name": account.name,
                    "amount_cents": account.amount_cents,
                    "currency": account.currency,
                }
                for account in accounts
            ],
            "total_balance_cents": sum(a.amount_cents for a in accounts),
            "total_accounts": len(accounts),
        }

    def update(self, account_id: int, data: AccountUpdateIn) -> Account:
        account = self.get(account_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(account, field, value)
        account.last_updated = utcnow()
        self.session.commit()
        self.session.refresh(account)
        return account

    def delete(self, account_id: int) -> None:
        account = self.get(account_id)
        try:
            self.session.execute(
                delete(LedgerEntry).where(
                    LedgerEntry.account_id == account.id,
                    LedgerEntry.user_id == self.user_id,
                )
            )
            self.session.delete(account)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def current_balance(self) -> int:
        return current_balance_for(self.session, self.user_id)


class LedgerService:
    """Postings: a ledger entry and its account adjustment, committed together.

    `on_posted` receives a `PostedEntry` after the commit for every new entry.
    It is an error boundary: anything it raises is logged and dropped so a
    committed posting is never reported as failed.
    """

    def __init__(
        self,
        session: Session,
        user_id: int,
        on_posted: Optional[PostingHandler] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.on_posted = on_posted

    def _locked_account(self, account_id: int) -> Account:
        account = self.session.scalar(
            select(Account)
            .where(Account.id == account_id, Account.user_id == self.user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if not account:
            raise NotFoundError("Account not found")
        return account

    @staticmethod
    def _signed(kind: EntryKind, amount_cents: int) -> int:
        return amount_cents if kind == EntryKind.income else -amount_cents

    def _adjust(self, account: Account, delta: int) -> None:
        if delta < 0 and account.amount_cents + delta < 0:
            raise InsufficientFundsError("Insufficient balance in account")
        self.session.execute(
            update(Account)
            .where(Account.id == account.id)
            .values(
                amount_cents=Account.amount_cents + delta, last_updated=utcnow()
            )
        )

    def _post(
        self,
        account_id: int,
        kind: EntryKind,
        data: EntryIn,
        *,
        repeat_for_all_year: bool = False,
    ) -> LedgerEntry:
        try:
            account = self._locked_account(account_id)
            self._adjust(account, self._signed(kind, data.amount_cents))
            entry = LedgerEntry(
                user_id=self.user_id,
                account_id=account.id,
                kind=kind,
                name=data.name,
                category=data.category,
                amount_cents=data.amount_cents,
                currency=data.currency,
                date=data.date,
                occurred_at=data.occurred_at,
                repeat_for_all_year=repeat_for_all_year,
            )
            self.session.add(entry)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        self.session.refresh(entry)
        self.session.refresh(account)
        logger.info(
            f"posting_committed: user_id={self.user_id} kind={kind.value} "
            f"entry_id={entry.id} account_id={account.id}"
        )
        self._emit(entry)
        return entry

    def _emit(self, entry: LedgerEntry) -> None:
        if self.on_posted is None:
            return
        event = PostedEntry(
            user_id=self.user_id,
            entry_id=entry.id,
            kind=entry.kind,
            category=entry.category,
            amount_cents=entry.amount_cents,
            currency=entry.currency,
            occurred_at=entry.occurred_at,
        )
        try:
            self.on_posted(event)
        except Exception:
            logger.exception(
                f"posting_follow_up_failed: user_id={self.user_id} entry_id={entry.id}"
            )

    def add_income(self, account_id: int, data: IncomeIn) -> LedgerEntry:
        return self._post(
            account_id,
            EntryKind.income,
            data,
            repeat_for_all_year=data.repeat_for_all_year,
        )

    def add_spending(self, account_id: int, data: SpendingIn) -> LedgerEntry:
        return self._post(account_id, EntryKind.spending, data)

    def get_entry(self, entry_id: int) -> LedgerEntry:
        entry = self.session.scalar(
            select(LedgerEntry).where(
                LedgerEntry.id == entry_id, LedgerEntry.user_id == self.user_id
            )
        )
        if not entry:
            raise NotFoundError("Entry not found")
        return entry

    def update_entry(self, entry_id: int, data: EntryIn) -> LedgerEntry:
        try:
            entry = self.get_entry(entry_id)
            account = self._locked_account(entry.account_id)
            delta = self._signed(entry.kind, data.amount_cents) - self._signed(
                entry.kind, entry.amount_cents
            )
            if delta:
                self._adjust(account, delta)
            entry.name = data.name
            entry.category = data.category
            entry.amount_cents = data.amount_cents
            entry.currency = data.currency
            entry.date = data.date
            entry.occurred_at = data.occurred_at
            if (
                entry.kind == EntryKind.income
                and "repeat_for_all_year" in data.model_fields_set
            ):
                entry.repeat_for_all_year = data.repeat_for_all_year
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(entry)
        return entry

    def delete_entry(self, entry_id: int) -> None:
        try:
            entry = self.get_entry(entry_id)
            account = self._locked_account(entry.account_id)
            self._adjust(account, -self._signed(entry.kind, entry.amount_cents))
            self.session.delete(entry)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(f"posting_reversed: user_id={self.user_id} entry_id={entry_id}")

    def list_entries(
        self,
        period: Period,
        kind: Optional[EntryKind] = None,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> list[LedgerEntry]:
        stmt = (
            select(LedgerEntry)
            .where(
                LedgerEntry.user_id == self.user_id,
                LedgerEntry.occurred_at.between(period.start, period.end),
            )
            .order_by(LedgerEntry.occurred_at.desc(), LedgerEntry.id.desc())
            .limit(limit)
            .offset(offset)
        )
        if kind is not None:
            stmt = stmt.where(LedgerEntry.kind == kind)
        return self.session.scalars(stmt).all()

    def day_totals(self, day: str) -> dict[str, object]:
        try:
            target = date.fromisoformat(day[:10])
        except (TypeError, ValueError) as exc:
            raise InvalidInputError("Invalid date format") from exc
        period = Period("day", start_of_day(target), end_of_day(target))
        aggregator = LedgerAggregator(self.session, self.user_id)
        return {
            "date": target.isoformat(),
            "total_income_cents": aggregator.sum_total(EntryKind.income, period),
            "total_spending_cents": aggregator.sum_total(EntryKind.spending, period),
        }

    def cycle_totals(
        self, month: Optional[str] = None, now: Optional[datetime] = None
    ) -> dict[str, object]:
        now = now or utcnow()
        year_month = parse_year_month(month) if month else None
        msd = month_start_date_for(self.session, self.user_id)
        period = month_range(now, msd, year_month)
        aggregator = LedgerAggregator(self.session, self.user_id)
        return {
            "period_start": period.first_day.isoformat(),
            "period_end": period.last_day.isoformat(),
            "total_income_cents": aggregator.sum_total(EntryKind.income, period),
            "total_spending_cents": aggregator.sum_total(EntryKind.spending, period),
        }


class AnalyticsService:
    NO_TRANSACTIONS = "No transactions found for this month"

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.aggregator = LedgerAggregator(session, user_id)

    def income_vs_expenses(self, year: int) -> dict[str, object]:
        income = self.aggregator.sum_by_month(EntryKind.income, year)
        spending = self.aggregator.sum_by_month(EntryKind.spending, year)
        months = [
            {
                "month": inc.month,
                "income_cents": inc.total_cents,
                "expenses_cents": exp.total_cents,
            }
            for inc, exp in zip(income, spending)
        ]
        total_income = sum(m.total_cents for m in income)
        total_expenses = sum(m.total_cents for m in spending)
        return {
            "year": year,
            "months": months,
            "total_income_cents": total_income,
            "total_expenses_cents": total_expenses,
            "avg_monthly_income_cents": round_cents(Decimal(total_income) / 12),
            "avg_monthly_expenses_cents": round_cents(Decimal(total_expenses) / 12),
        }

    def balance_trend(
        self, year: int, month: int, now: Optional[datetime] = None
    ) -> dict[str, object]:
        """Daily closing balances for one cycle, derived from today's balance.

        Only the current balance is stored, so every posting after the cycle
        (up to `now`) is undone first, then each day's net is peeled off while
        walking back from the last day. `now` is read once so the balance and
        the ledger sums describe the same moment.
        """
        if month < 1 or month > 12:
            raise InvalidInputError("Month must be between 1 and 12")
        now = now or utcnow()
        msd = month_start_date_for(self.session, self.user_id)
        period = month_range(now, msd, (year, month))
        current_balance = current_balance_for(self.session, self.user_id)

        result: dict[str, object] = {
            "year": year,
            "month": month,
            "period_start": period.first_day.isoformat(),
            "period_end": period.last_day.isoformat(),
            "current_balance_cents": current_balance,
        }
        if not self.aggregator.has_entries(period):
            result.update(
                days=period.days,
                trend=None,
                growth_percentage=0.0,
                message=self.NO_TRANSACTIONS,
            )
            return result

        income = self.aggregator.sum_by_day(EntryKind.income, period)
        spending = self.aggregator.sum_by_day(EntryKind.spending, period)
        daily_net = [inc.total_cents - exp.total_cents for inc, exp in zip(income, spending)]

        if period.contains(now):
            last_day = (now.date() - period.first_day).days + 1
        else:
            last_day = period.days

        future_net = 0
        if now > period.end:
            future_net = self.aggregator.sum_between(
                EntryKind.income, period.end, now
            ) - self.aggregator.sum_between(EntryKind.spending, period.end, now)

        running = current_balance - future_net
        end_balance = running
        trend: list[dict[str, object]] = []
        for day in range(last_day, 0, -1):
            trend.append(
                {
                    "day": day,
                    "date": (period.first_day + timedelta(days=day - 1)).isoformat(),
                    "balance_cents": running,
                }
            )
            running -= daily_net[day - 1]
        trend.reverse()
        start_balance = running

        if start_balance != 0:
            growth = round2(
                Decimal(end_balance - start_balance) / abs(start_balance) * 100
            )
        else:
            growth = 100.0 if end_balance > 0 else 0.0

        result.update(
            days=last_day,
            trend=trend,
            start_balance_cents=start_balance,
            end_balance_cents=end_balance,
            growth_percentage=growth,
        )
        return result

    def spending_by_category(
        self, year: int, month: int, now: Optional[datetime] = None
    ) -> dict[str, object]:
        if month < 1 or month > 12:
            raise InvalidInputError("Month must be between 1 and 12")
        now = now or utcnow()
        msd = month_start_date_for(self.session, self.user_id)
        period = month_range(now, msd, (year, month))
        totals = self.aggregator.sum_by_category(EntryKind.spending, period)
        total_spending = sum(t.total_cents for t in totals)
        return {
            "year": year,
            "month": month,
            "period_start": period.first_day.isoformat(),
            "period_end": period.last_day.isoformat(),
            "total_spending_cents": total_spending,
            "categories": [
                {
                    "category": t.category,
                    "amount_cents": t.total_cents,
                    "count": t.count,
                    "percentage": percentage(t.total_cents, total_spending),
                }
                for t in totals
            ],
        }


class BudgetService:
    ALERT_KIND = "BUDGET_ALERT"

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _ensure_unique(
        self, key: str, period: BudgetPeriod, exclude_id: Optional[int] = None
    ) -> None:
        stmt = select(Budget.id).where(
            Budget.user_id == self.user_id,
            Budget.category_key == key,
            Budget.period == period,
        )
        if exclude_id is not None:
            stmt = stmt.where(Budget.id != exclude_id)
        if self.session.scalar(stmt):
            raise ConflictError(f"Budget for {key} ({period.value}) already exists")

    def create(self, data: BudgetIn) -> Budget:
        key = category_key(data.category)
        self._ensure_unique(key, data.period)
        budget = Budget(
            user_id=self.user_id,
            category=data.category,
            category_key=key,
            budget_value_cents=data.budget_value_cents,
            currency=data.currency,
            period=data.period,
        )
        self.session.add(budget)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError(
                f"Budget for {data.category} ({data.period.value}) already exists"
            ) from exc
        self.session.refresh(budget)
        return budget

    def get(self, budget_id: int) -> Budget:
        budget = self.session.scalar(
            select(Budget).where(Budget.id == budget_id, Budget.user_id == self.user_id)
        )
        if not budget:
            raise NotFoundError("Budget not found")
        return budget

    def list(self, period: Optional[BudgetPeriod] = None) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.id.asc())
        )
        if period is not None:
            stmt = stmt.where(Budget.period == period)
        return self.session.scalars(stmt).all()

    def update(self, budget_id: int, data: BudgetUpdateIn) -> Budget:
        budget = self.get(budget_id)
        changes = data.model_dump(exclude_unset=True)
        category = changes.get("category", budget.category)
        period = changes.get("period", budget.period)
        key = category_key(category)
        if key != budget.category_key or period != budget.period:
            self._ensure_unique(key, period, exclude_id=budget.id)
            # Alerts recorded for another scope do not carry over.
            budget.notified_thresholds = []
            budget.threshold_period_start = None
        for field, value in changes.items():
            setattr(budget, field, value)
        budget.category_key = key
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()

    def evaluate(
        self, period_kind: BudgetPeriod, now: Optional[datetime] = None
    ) -> dict[str, object]:
        now = now or utcnow()
        msd = month_start_date_for(self.session, self.user_id)
        period = range_for(period_kind, now, msd)
        budgets = self.list(period_kind)

        aggregator = LedgerAggregator(self.session, self.user_id)
        spent_by_key = {
            category_key(t.category): t.total_cents
            for t in aggregator.sum_by_category(
                EntryKind.spending, period, [b.category for b in budgets]
            )
        }

        rows = []
        total_budget = 0
        total_spent = 0
        for budget in budgets:
            spent = spent_by_key.get(budget.category_key, 0)
            total_budget += budget.budget_value_cents
            total_spent += spent
            rows.append(
                {
                    "id": budget.id,
                    "category": budget.category,
                    "budget_value_cents": budget.budget_value_cents,
                    "amount_spent_cents": spent,
                    "spending_percentage": percentage(spent, budget.budget_value_cents),
                    "currency": budget.currency,
                }
            )

        return {
            "status": period_kind.value,
            "date_range": format_date_range(period),
            "period_start": period.start.isoformat(),
            "period_end": period.end.isoformat(),
            "total_budget_cents": total_budget,
            "total_spent_cents": total_spent,
            "total_percentage": percentage(total_spent, total_budget),
            "total_categories": len(budgets),
            "budgets": rows,
        }

    def check_thresholds(
        self,
        category: str,
        dispatcher: NotificationDispatcher,
        now: Optional[datetime] = None,
    ) -> list[tuple[int, int]]:
        """Fire each 50/80/100% alert at most once per budget period."""
        now = now or utcnow()
        key = category_key(category)
        budgets = self.session.scalars(
            select(Budget)
            .where(Budget.user_id == self.user_id, Budget.category_key == key)
            .order_by(Budget.id.asc())
            .execution_options(populate_existing=True)
        ).all()
        if not budgets:
            return []

        msd = month_start_date_for(self.session, self.user_id)
        aggregator = LedgerAggregator(self.session, self.user_id)
        fired: list[tuple[int, int]] = []
        for budget in budgets:
            period = range_for(budget.period, now, msd)
            spent = aggregator.sum_for_category(
                EntryKind.spending, period, budget.category
            )
            due = [
                threshold
                for threshold in BUDGET_THRESHOLDS
                if budget.budget_value_cents > 0
                and spent * 100 >= threshold * budget.budget_value_cents
            ]
            spent_pct = percentage(spent, budget.budget_value_cents)
            for threshold in self._claim(budget, period, due):
                self._send_alert(dispatcher, budget, period, threshold, spent_pct)
                fired.append((budget.id, threshold))

        self.session.commit()
        if fired:
            logger.info(
                f"budget_alerts_fired: user_id={self.user_id} category={key!r} "
                f"alerts={fired}"
            )
        return fired

    def _claim(self, budget: Budget, period: Period, due: list[int]) -> list[int]:
        """Record `due` thresholds for `period`, returning the ones not yet sent.

        The write is a compare-and-set on the stored record, committed before
        any alert goes out, so overlapping checks never claim a threshold twice.
        """
        while True:
            same_period = budget.threshold_period_start == period.start
            notified = set(budget.notified_thresholds) if same_period else set()
            claimed = [threshold for threshold in due if threshold not in notified]
            if same_period and not claimed:
                return []
            result = self.session.execute(
                update(Budget)
                .where(
                    Budget.id == budget.id,
                    _matches(
                        Budget.notified_thresholds_json,
                        budget.notified_thresholds_json,
                    ),
                    _matches(
                        Budget.threshold_period_start, budget.threshold_period_start
                    ),
                )
                .values(
                    notified_thresholds_json=dump_thresholds(notified | set(claimed)),
                    threshold_period_start=period.start,
                )
                .execution_options(synchronize_session=False)
            )
            self.session.commit()
            self.session.refresh(budget)
            if result.rowcount == 1:
                return claimed

    def _send_alert(
        self,
        dispatcher: NotificationDispatcher,
        budget: Budget,
        period: Period,
        threshold: int,
        spent_pct: float,
    ) -> None:
        cadence = budget.period.value.lower()
        if threshold >= 100:
            title = "Budget Exceeded"
            body = (
                f"You have exceeded your {cadence} {budget.category} budget "
                f"({spent_pct}% used)."
            )
        else:
            title = "Budget Alert"
            body = (
                f"You have used {threshold}% of your {cadence} "
                f"{budget.category} budget."
            )
        dispatcher.notify(
            self.session,
            self.user_id,
            title,
            body,
            {
                "notifType": self.ALERT_KIND,
                "budgetId": budget.id,
                "threshold": threshold,
                "periodStart": period.first_day.isoformat(),
            },
            kind=self.ALERT_KIND,
            period_key=period.first_day.isoformat(),
        )


class GoalService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    @staticmethod
    def _sync_status(goal: Goal) -> None:
        goal.status = (
            GoalStatus.completed
            if goal.accumulated_cents >= goal.target_cents
            else GoalStatus.in_progress
        )

    def create(self, data: GoalIn) -> Goal:
        goal = Goal(user_id=self.user_id, **data.model_dump())
        self._sync_status(goal)
        self.session.add(goal)
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def get(self, goal_id: int) -> Goal:
        goal = self.session.scalar(
            select(Goal).where(Goal.id == goal_id, Goal.user_id == self.user_id)
        )
        if not goal:
            raise NotFoundError("Goal not found")
        return goal

    def update(self, goal_id: int, data: GoalUpdateIn) -> Goal:
        goal = self.get(goal_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(goal, field, value)
        self._sync_status(goal)
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def delete(self, goal_id: int) -> None:
        goal = self.get(goal_id)
        self.session.delete(goal)
        self.session.commit()

    def list_with_progress(self) -> dict[str, object]:
        goals = self.session.scalars(
            select(Goal)
            .where(Goal.user_id == self.user_id)
            .order_by(Goal.created_at.desc(), Goal.id.desc())
        ).all()
        rows = []
        for goal in goals:
            left = max(0, goal.target_cents - goal.accumulated_cents)
            rows.append(
                {
                    "id": goal.id,
                    "name": goal.name,
                    "notes": goal.notes,
                    "target_cents": goal.target_cents,
                    "accumulated_cents": goal.accumulated_cents,
                    "amount_left_cents": left,
                    "progress_percentage": min(
                        100.0, percentage(goal.accumulated_cents, goal.target_cents)
                    ),
                }
            )
        completed = sum(1 for goal in goals if goal.status == GoalStatus.completed)
        return {
            "total_left_cents": sum(row["amount_left_cents"] for row in rows),
            "fulfilled_goals": f"{completed}/{len(goals)}",
            "goals": rows,
        }

    def progress_summary(self) -> dict[str, object]:
        row = self.session.execute(
            select(
                func.coalesce(func.sum(Goal.target_cents), 0).label("target"),
                func.coalesce(func.sum(Goal.accumulated_cents), 0).label("accumulated"),
                func.count(Goal.id).label("goals"),
            ).where(Goal.user_id == self.user_id)
        ).one()
        target = int(row.target)
        accumulated = int(row.accumulated)
        return {
            "completed_cents": accumulated,
            "total_cents": target,
            "total_goals": int(row.goals),
            "percentage": percentage(accumulated, target),
            "summary": f"{format_cents(accumulated)} of {format_cents(target)}",
        }


class DebtService:
    """Borrowed and lent money, one service per direction."""

    # (record label, what is owed, verb for a payment, settled state)
    LABELS = {
        DebtDirection.borrowed: ("Borrowed record", "debt", "pay", "paid"),
        DebtDirection.lent: (
            "Lent record",
            "lent amount",
            "collect",
            "collected",
        ),
    }

    def __init__(
        self, session: Session, user_id: int, direction: DebtDirection
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.direction = direction
        self.label, self.owed, self.verb, self.settled = self.LABELS[direction]

    def _check(self, debt: Debt) -> None:
        if debt.accumulated_cents > debt.amount_cents:
            raise InvalidInputError(
                f"Accumulated amount cannot exceed the {self.owed} amount"
            )
        if debt.debt_date and debt.payoff_date and debt.debt_date > debt.payoff_date:
            raise InvalidInputError("Debt date cannot be after payoff date")
        debt.status = (
            DebtStatus.paid
            if debt.accumulated_cents >= debt.amount_cents
            else DebtStatus.unpaid
        )

    def create(self, data: DebtIn) -> Debt:
        debt = Debt(
            user_id=self.user_id, direction=self.direction, **data.model_dump()
        )
        self._check(debt)
        self.session.add(debt)
        self.session.commit()
        self.session.refresh(debt)
        return debt

    def get(self, debt_id: int, lock: bool = False) -> Debt:
        stmt = select(Debt).where(
            Debt.id == debt_id,
            Debt.user_id == self.user_id,
            Debt.direction == self.direction,
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        debt = self.session.scalar(stmt)
        if not debt:
            raise NotFoundError(f"{self.label} not found")
        return debt

    def update(self, debt_id: int, data: DebtUpdateIn) -> Debt:
        debt = self.get(debt_id, lock=True)
        try:
            for field, value in data.model_dump(exclude_unset=True).items():
                setattr(debt, field, value)
            self._check(debt)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(debt)
        return debt

    def delete(self, debt_id: int) -> None:
        debt = self.get(debt_id)
        self.session.delete(debt)
        self.session.commit()

    def add_payment(self, debt_id: int, amount_cents: int) -> Debt:
        if amount_cents <= 0:
            raise InvalidInputError("Amount must be greater than 0")
        debt = self.get(debt_id, lock=True)
        try:
            if debt.status == DebtStatus.paid:
                raise InvalidInputError(
                    f"This {self.owed} is already fully {self.settled}"
                )
            remaining = debt.amount_cents - debt.accumulated_cents
            if amount_cents > remaining:
                raise InvalidInputError(
                    f"Adding {format_cents(amount_cents)} would exceed the "
                    f"{self.owed} amount. Maximum you can {self.verb}: "
                    f"{format_cents(remaining)}"
                )
            debt.accumulated_cents += amount_cents
            self._check(debt)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(debt)
        logger.info(
            f"debt_payment: user_id={self.user_id} debt_id={debt.id} "
            f"amount_cents={amount_cents} status={debt.status.value}"
        )
        return debt

    def mark_as_paid(self, debt_id: int) -> Debt:
        debt = self.get(debt_id, lock=True)
        try:
            if debt.status == DebtStatus.paid:
                raise InvalidInputError(
                    f"This {self.owed} is already fully {self.settled}"
                )
            debt.accumulated_cents = debt.amount_cents
            debt.status = DebtStatus.paid
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(debt)
        return debt

    def list_with_progress(self) -> dict[str, object]:
        debts = self.session.scalars(
            select(Debt)
            .where(Debt.user_id == self.user_id, Debt.direction == self.direction)
            .order_by(Debt.created_at.desc(), Debt.id.desc())
        ).all()
        rows = []
        for debt in debts:
            rows.append(
                {
                    "id": debt.id,
                    "name": debt.name,
                    "counterparty": debt.counterparty,
                    "notes": debt.notes,
                    "amount_cents": debt.amount_cents,
                    "accumulated_cents": debt.accumulated_cents,
                    "amount_left_cents": max(
                        0, debt.amount_cents - debt.accumulated_cents
                    ),
                    "payment_percentage": min(
                        100.0, percentage(debt.accumulated_cents, debt.amount_cents)
                    ),
                }
            )
        paid = sum(1 for debt in debts if debt.status == DebtStatus.paid)
        return {
            "direction": self.direction.value,
            "total_left_cents": sum(row["amount_left_cents"] for row in rows),
            "paid_off": f"{paid}/{len(debts)}",
            "debts": rows,
        }


class ReportService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def weekly_report(self, now: Optional[datetime] = None) -> dict[str, object]:
        now = now or utcnow()
        msd = month_start_date_for(self.session, self.user_id)
        return self._build(week_range(now, msd))

    def monthly_report(
        self, month: Optional[str] = None, now: Optional[datetime] = None
    ) -> dict[str, object]:
        now = now or utcnow()
        year_month = parse_year_month(month) if month else None
        msd = month_start_date_for(self.session, self.user_id)
        return self._build(month_range(now, msd, year_month))

    def _entries(self, kind: EntryKind, period: Period) -> list[LedgerEntry]:
        return self.session.scalars(
            select(LedgerEntry)
            .where(
                LedgerEntry.user_id == self.user_id,
                LedgerEntry.kind == kind,
                LedgerEntry.occurred_at.between(period.start, period.end),
            )
            .order_by(LedgerEntry.occurred_at.desc(), LedgerEntry.id.desc())
        ).all()

    def _build(self, period: Period) -> dict[str, object]:
        aggregator = LedgerAggregator(self.session, self.user_id)
        categories = aggregator.sum_by_category(EntryKind.spending, period)
        highest = None
        if categories and categories[0].total_cents > 0:
            highest = {
                "category": categories[0].category,
                "amount_cents": categories[0].total_cents,
            }

        def feed_item(entry: LedgerEntry) -> dict[str, object]:
            return {
                "date": entry.occurred_at.isoformat(),
                "category": entry.category,
                "name": entry.name,
                "amount_cents": entry.amount_cents,
            }

        earning = self._entries(EntryKind.income, period)
        spending = self._entries(EntryKind.spending, period)
        merged = [(e, "earning") for e in earning] + [(e, "spending") for e in spending]
        merged.sort(key=lambda pair: pair[0].occurred_at, reverse=True)

        return {
            "period_start": period.start.isoformat(),
            "period_end": period.end.isoformat(),
            "total_earning_cents": aggregator.sum_total(EntryKind.income, period),
            "total_spending_cents": aggregator.sum_total(EntryKind.spending, period),
            "current_balance_cents": current_balance_for(self.session, self.user_id),
            "highest_spending_category": highest,
            "goal_progress": GoalService(self.session, self.user_id).progress_summary(),
            "entries": {
                "all": [{**feed_item(e), "type": kind} for e, kind in merged],
                "earning": [feed_item(e) for e in earning],
                "spending": [feed_item(e) for e in spending],
            },
        }


class NotificationService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    @staticmethod
    def as_dict(notification: Notification) -> dict[str, object]:
        return {
            "id": notification.id,
            "title": notification.title,
            "body": notification.body,
            "type": notification.type.value,
            "is_read": notification.is_read,
            "data": notification.data,
            "created_at": notification.created_at.isoformat(),
        }

    def unread_count(self) -> int:
        stmt = select(func.count(Notification.id)).where(
            Notification.user_id == self.user_id, Notification.is_read.is_(False)
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def list(self, page: int = 1, limit: int = 20) -> dict[str, object]:
        page = max(page, 1)
        limit = min(max(limit, 1), 100)
        total = int(
            self.session.execute(
                select(func.count(Notification.id)).where(
                    Notification.user_id == self.user_id
                )
            ).scalar_one()
            or 0
        )
        items = self.session.scalars(
            select(Notification)
            .where(Notification.user_id == self.user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        ).all()
        return {
            "data": [self.as_dict(n) for n in items],
            "meta": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": -(-total // limit),
                "unread_count": self.unread_count(),
            },
        }

    def get(self, notification_id: int) -> Notification:
        notification = self.session.scalar(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == self.user_id,
            )
        )
        if not notification:
            raise NotFoundError("Notification not found")
        notification.is_read = True
        self.session.commit()
        self.session.refresh(notification)
        return notification

    def mark_all_read(self) -> int:
        result = self.session.execute(
            update(Notification)
            .where(
                Notification.user_id == self.user_id, Notification.is_read.is_(False)
            )
            .values(is_read=True)
        )
        self.session.commit()
        return result.rowcount or 0

    def delete(self, notification_id: int) -> None:
        notification = self.session.scalar(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == self.user_id,
            )
        )
        if not notification:
            raise NotFoundError("Notification not found")
        self.session.delete(notification)
        self.session.commit()


class PostingFollowUp:
    """Work that runs after a posting commits, outside its transaction."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        dispatcher: NotificationDispatcher,
    ) -> None:
        self.session_factory = session_factory
        self.dispatcher = dispatcher

    def __call__(self, event: PostedEntry) -> None:
        session = self.session_factory()
        try:
            self._notify_posting(session, event)
            session.commit()
            if event.kind == EntryKind.spending:
                BudgetService(session, event.user_id).check_thresholds(
                    event.category, self.dispatcher
                )
        except Exception:
            session.rollback()
            logger.exception(
                f"posting_follow_up_failed: user_id={event.user_id} "
                f"entry_id={event.entry_id}"
            )
        finally:
            session.close()

    def _notify_posting(self, session: Session, event: PostedEntry) -> None:
        if event.kind == EntryKind.income:
            title = "Income Added"
        else:
            title = "Spending Added"
        body = (
            f"{event.category}: {format_cents(event.amount_cents)} {event.currency}"
        )
        self.dispatcher.notify(
            session,
            event.user_id,
            title,
            body,
            {
                "notifType": "TRANSACTION",
                "entryKind": event.kind.value,
                "entryId": event.entry_id,
            },
            kind="TRANSACTION",
        )
