from datetime import date, datetime

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from database import Base
from errors import ConflictError, NotFoundError
from models import Budget, BudgetPeriod, Notification
from notifications import NotificationDispatcher
from periods import utcnow
from schemas import BudgetIn, BudgetUpdateIn
from services import BudgetService, LedgerService, PostingFollowUp

from helpers import RecordingPushClient, make_account, make_user, spending


def _budget(session, user, category="Food", value=20_000, period=BudgetPeriod.monthly):
    return BudgetService(session, user.id).create(
        BudgetIn(category=category, budget_value_cents=value, period=period)
    )


def _titles(session, user) -> list[str]:
    return list(
        session.scalars(
            select(Notification.title)
            .where(Notification.user_id == user.id)
            .order_by(Notification.id)
        ).all()
    )


def test_duplicate_budget_conflicts_case_insensitively(session) -> None:
    user = make_user(session)
    _budget(session, user, "Food")

    with pytest.raises(ConflictError):
        _budget(session, user, "  FOOD")

    weekly = _budget(session, user, "food", period=BudgetPeriod.weekly)
    assert weekly.category_key == "food"


def test_budget_lookups_are_owner_scoped(session) -> None:
    owner = make_user(session)
    other = make_user(session, email="other@example.com")
    budget = _budget(session, owner)

    with pytest.raises(NotFoundError):
        BudgetService(session, other.id).get(budget.id)
    with pytest.raises(NotFoundError):
        BudgetService(session, other.id).delete(budget.id)


def test_update_to_existing_scope_conflicts(session) -> None:
    user = make_user(session)
    _budget(session, user, "Food")
    rent = _budget(session, user, "Rent")
    service = BudgetService(session, user.id)

    with pytest.raises(ConflictError):
        service.update(rent.id, BudgetUpdateIn(category="food"))

    updated = service.update(rent.id, BudgetUpdateIn(budget_value_cents=55_000))
    assert updated.budget_value_cents == 55_000
    assert updated.category == "Rent"


def test_evaluate_reports_spend_per_budget(session) -> None:
    user = make_user(session, month_start_date=18)
    account = make_account(session, user, 100_000)
    _budget(session, user, "Food", 20_000)
    _budget(session, user, "Travel", 10_000)
    ledger = LedgerService(session, user.id)
    ledger.add_spending(account.id, spending(5_000, date(2026, 1, 17), "Food"))
    ledger.add_spending(account.id, spending(4_000, date(2026, 1, 20), "food"))
    ledger.add_spending(account.id, spending(6_000, date(2026, 2, 2), "FOOD"))

    result = BudgetService(session, user.id).evaluate(
        BudgetPeriod.monthly, now=datetime(2026, 2, 10)
    )

    assert result["status"] == "MONTHLY"
    assert result["date_range"] == "18 January 2026 - 17 February 2026"
    assert result["total_budget_cents"] == 30_000
    assert result["total_spent_cents"] == 10_000
    assert result["total_percentage"] == 33.33
    assert result["total_categories"] == 2
    food, travel = result["budgets"]
    assert food["amount_spent_cents"] == 10_000
    assert food["spending_percentage"] == 50.0
    assert travel["amount_spent_cents"] == 0
    assert travel["spending_percentage"] == 0.0


def test_evaluate_does_not_fire_alerts(session) -> None:
    user = make_user(session)
    account = make_account(session, user, 100_000)
    budget = _budget(session, user, "Food", 1_000)
    LedgerService(session, user.id).add_spending(
        account.id, spending(1_000, date(2026, 1, 5))
    )

    BudgetService(session, user.id).evaluate(
        BudgetPeriod.monthly, now=datetime(2026, 1, 10)
    )

    session.refresh(budget)
    assert budget.notified_thresholds == []
    assert _titles(session, user) == []


def test_threshold_alerts_fire_once_each(session) -> None:
    user = make_user(session, fcm_token="device-token")
    account = make_account(session, user, 100_000)
    budget = _budget(session, user, "Food", 20_000)
    push = RecordingPushClient()
    dispatcher = NotificationDispatcher(push)
    service = BudgetService(session, user.id)
    ledger = LedgerService(session, user.id)
    now = datetime(2026, 1, 20)

    ledger.add_spending(account.id, spending(10_000, date(2026, 1, 5)))
    assert service.check_thresholds("Food", dispatcher, now) == [(budget.id, 50)]
    assert service.evaluate(BudgetPeriod.monthly, now)["budgets"][0][
        "spending_percentage"
    ] == 50.0

    ledger.add_spending(account.id, spending(16_000, date(2026, 1, 6), "food"))
    assert service.check_thresholds("FOOD", dispatcher, now) == [
        (budget.id, 80),
        (budget.id, 100),
    ]
    assert service.check_thresholds("Food", dispatcher, now) == []

    session.refresh(budget)
    assert budget.notified_thresholds == [50, 80, 100]
    assert _titles(session, user) == ["Budget Alert", "Budget Alert", "Budget Exceeded"]
    assert [sent[1] for sent in push.sent] == [
        "Budget Alert",
        "Budget Alert",
        "Budget Exceeded",
    ]


def test_thresholds_rearm_in_next_period(session) -> None:
    user = make_user(session)
    account = make_account(session, user, 100_000)
    budget = _budget(session, user, "Food", 20_000)
    dispatcher = NotificationDispatcher(RecordingPushClient())
    service = BudgetService(session, user.id)
    ledger = LedgerService(session, user.id)

    ledger.add_spending(account.id, spending(12_000, date(2026, 1, 5)))
    assert service.check_thresholds("Food", dispatcher, datetime(2026, 1, 20)) == [
        (budget.id, 50)
    ]

    # Nothing spent yet in February, so the record is cleared but nothing fires.
    assert service.check_thresholds("Food", dispatcher, datetime(2026, 2, 2)) == []
    session.refresh(budget)
    assert budget.notified_thresholds == []
    assert budget.threshold_period_start == datetime(2026, 2, 1)

    ledger.add_spending(account.id, spending(10_000, date(2026, 2, 3)))
    assert service.check_thresholds("Food", dispatcher, datetime(2026, 2, 4)) == [
        (budget.id, 50)
    ]


def test_weekly_and_monthly_budgets_track_separately(session) -> None:
    user = make_user(session)
    account = make_account(session, user, 100_000)
    monthly = _budget(session, user, "Food", 40_000)
    weekly = _budget(session, user, "Food", 10_000, BudgetPeriod.weekly)
    dispatcher = NotificationDispatcher(RecordingPushClient())

    # Wednesday 2026-01-14 is in the Sunday 11th..Saturday 17th week.
    LedgerService(session, user.id).add_spending(
        account.id, spending(8_000, date(2026, 1, 12))
    )
    fired = BudgetService(session, user.id).check_thresholds(
        "Food", dispatcher, datetime(2026, 1, 14)
    )

    assert fired == [(weekly.id, 50), (weekly.id, 80)]
    assert monthly.notified_thresholds == []


def test_push_failure_keeps_notification_and_thresholds(session) -> None:
    user = make_user(session, fcm_token="device-token")
    account = make_account(session, user, 100_000)
    budget = _budget(session, user, "Food", 1_000)
    dispatcher = NotificationDispatcher(RecordingPushClient(fail=True))

    LedgerService(session, user.id).add_spending(
        account.id, spending(600, date(2026, 1, 5))
    )
    fired = BudgetService(session, user.id).check_thresholds(
        "Food", dispatcher, datetime(2026, 1, 6)
    )

    assert fired == [(budget.id, 50)]
    assert _titles(session, user) == ["Budget Alert"]


def test_posting_follow_up_notifies_and_checks_budgets(session_factory) -> None:
    with session_factory() as session:
        user = make_user(session)
        account = make_account(session, user, 100_000)
        budget = _budget(session, user, "Food", 1_000)
        user_id, account_id, budget_id = user.id, account.id, budget.id

    follow_up = PostingFollowUp(
        session_factory, NotificationDispatcher(RecordingPushClient())
    )
    today = utcnow().date()
    with session_factory() as session:
        LedgerService(session, user_id, follow_up).add_spending(
            account_id, spending(900, today)
        )

    with session_factory() as session:
        titles = list(
            session.scalars(
                select(Notification.title)
                .where(Notification.user_id == user_id)
                .order_by(Notification.id)
            ).all()
        )
        stored = session.get(Budget, budget_id)
        assert titles == ["Spending Added", "Budget Alert", "Budget Alert"]
        assert stored.notified_thresholds == [50, 80]


def test_threshold_compares_exact_spend_not_rounded_percentage(session) -> None:
    user = make_user(session)
    account = make_account(session, user, 100_000)
    budget = _budget(session, user, "Food", 20_000)
    dispatcher = NotificationDispatcher(RecordingPushClient())

    # 19,999 of 20,000 is 99.995%, which displays as 100.0 but is under budget.
    LedgerService(session, user.id).add_spending(
        account.id, spending(19_999, date(2026, 1, 5))
    )
    fired = BudgetService(session, user.id).check_thresholds(
        "Food", dispatcher, datetime(2026, 1, 6)
    )

    assert fired == [(budget.id, 50), (budget.id, 80)]
    assert _titles(session, user) == ["Budget Alert", "Budget Alert"]


class _OverlappingDispatcher(NotificationDispatcher):
    """Runs a second threshold check from another session mid-delivery."""

    def __init__(self, session_factory, now) -> None:
        super().__init__(RecordingPushClient())
        self.session_factory = session_factory
        self.now = now
        self.overlapped_fired = None

    def notify(self, session, user_id, *args, **kwargs):
        if self.overlapped_fired is None:
            self.overlapped_fired = []
            with self.session_factory() as other:
                self.overlapped_fired = BudgetService(other, user_id).check_thresholds(
                    "Food", self, self.now
                )
        return super().notify(session, user_id, *args, **kwargs)


def test_overlapping_threshold_checks_alert_once(tmp_path) -> None:
    engine = create_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    now = datetime(2026, 1, 6)
    try:
        with factory() as session:
            user = make_user(session)
            account = make_account(session, user, 100_000)
            budget = _budget(session, user, "Food", 20_000)
            LedgerService(session, user.id).add_spending(
                account.id, spending(12_000, date(2026, 1, 5))
            )
            user_id, budget_id = user.id, budget.id

        dispatcher = _OverlappingDispatcher(factory, now)
        with factory() as session:
            fired = BudgetService(session, user_id).check_thresholds(
                "Food", dispatcher, now
            )

        assert fired + dispatcher.overlapped_fired == [(budget_id, 50)]
        with factory() as session:
            alerts = session.scalars(
                select(Notification.title).where(Notification.user_id == user_id)
            ).all()
            assert alerts == ["Budget Alert"]
            assert session.get(Budget, budget_id).notified_thresholds == [50]
    finally:
        engine.dispose()
