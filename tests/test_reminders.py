from datetime import date, datetime

from sqlalchemy import select

from models import Notification, UserStatus
from notifications import NotificationDispatcher, chunked
from reminders import ReminderService, split_batch, timezones_at_local_hour
from services import LedgerService

from helpers import RecordingPushClient, income, make_account, make_user, spending


def _notifications(session, kind: str) -> list[tuple[int, str, str]]:
    rows = session.execute(
        select(Notification.user_id, Notification.title, Notification.period_key)
        .where(Notification.kind == kind)
        .order_by(Notification.user_id, Notification.id)
    ).all()
    return [tuple(row) for row in rows]


def _service(session, batch_size: int = 500) -> ReminderService:
    return ReminderService(
        session, NotificationDispatcher(RecordingPushClient()), batch_size=batch_size
    )


def test_timezones_at_local_hour() -> None:
    now = datetime(2026, 1, 15, 20, 0)
    zones = ["UTC", "Europe/Berlin", "Asia/Dhaka", "Not/AZone"]
    assert timezones_at_local_hour(zones, now, 21) == ["Europe/Berlin"]
    assert timezones_at_local_hour(zones, now, 20) == ["UTC"]


def test_split_batch_drops_already_sent_and_partitions() -> None:
    batch = split_batch([1, 2, 3, 4, 5], already_sent={2}, active={1, 4, 9})
    assert batch.active == [1, 4]
    assert batch.inactive == [3, 5]


def test_chunked() -> None:
    assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
    assert list(chunked([], 3)) == []


def test_daily_reminder_targets_idle_users_at_local_hour(session) -> None:
    idle = make_user(session, "idle@example.com", timezone="Europe/Berlin", fcm_token="a")
    busy = make_user(session, "busy@example.com", timezone="Europe/Berlin", fcm_token="b")
    make_user(session, "utc@example.com", timezone="UTC", fcm_token="c")
    make_user(session, "silent@example.com", timezone="Europe/Berlin")
    make_user(
        session,
        "blocked@example.com",
        timezone="Europe/Berlin",
        fcm_token="d",
        status=UserStatus.blocked,
    )
    account = make_account(session, busy, 1_000)
    LedgerService(session, busy.id).add_spending(
        account.id, spending(100, date(2026, 1, 15))
    )

    now = datetime(2026, 1, 15, 20, 0)
    result = _service(session).run_daily(now)

    assert result == {"timezones": 1, "sent": 1}
    assert _notifications(session, "DAILY_REMINDER") == [
        (idle.id, "Daily Reminder", "2026-01-15")
    ]

    # Same hour again: the marker for the local date suppresses a second send.
    assert _service(session).run_daily(now) == {"timezones": 1, "sent": 0}


def test_weekly_report_splits_active_and_inactive(session) -> None:
    active = make_user(session, "active@example.com", fcm_token="a")
    inactive = make_user(session, "inactive@example.com", fcm_token="b")
    account = make_account(session, active)
    LedgerService(session, active.id).add_income(
        account.id, income(500, date(2026, 1, 12))
    )

    # Sunday 2026-01-18 covers 2026-01-11..2026-01-17.
    now = datetime(2026, 1, 18, 9, 0)
    assert _service(session, batch_size=1).run_weekly(now) == {
        "active": 1,
        "inactive": 1,
    }
    assert _notifications(session, "WEEKLY_REPORT") == [
        (active.id, "Your Weekly Report Is Ready", "2026-01-11"),
        (inactive.id, "Weekly Reminder", "2026-01-11"),
    ]
    assert _service(session).run_weekly(now) == {"active": 0, "inactive": 0}


def test_monthly_report_targets_users_whose_cycle_starts_today(session) -> None:
    starts_today = make_user(session, "a@example.com", month_start_date=18, fcm_token="a")
    make_user(session, "b@example.com", month_start_date=1, fcm_token="b")
    make_user(session, "c@example.com", fcm_token="c")
    account = make_account(session, starts_today)
    LedgerService(session, starts_today.id).add_income(
        account.id, income(500, date(2026, 2, 17))
    )

    now = datetime(2026, 2, 18, 9, 0)
    assert _service(session).run_monthly(now) == {"active": 1, "inactive": 0}
    assert _notifications(session, "MONTHLY_REPORT") == [
        (starts_today.id, "Your Monthly Report Is Ready", "2026-01-18")
    ]
    assert _service(session).run_monthly(now) == {"active": 0, "inactive": 0}


def test_monthly_report_on_first_includes_unset_start_day(session) -> None:
    explicit = make_user(session, "a@example.com", month_start_date=1, fcm_token="a")
    unset = make_user(session, "b@example.com", fcm_token="b")

    result = _service(session).run_monthly(datetime(2026, 3, 1, 9, 0))

    assert result == {"active": 0, "inactive": 2}
    assert _notifications(session, "MONTHLY_REPORT") == [
        (explicit.id, "Monthly Reminder", "2026-02-01"),
        (unset.id, "Monthly Reminder", "2026-02-01"),
    ]


def test_monthly_report_past_day_twenty_eight_is_a_no_op(session) -> None:
    make_user(session, "a@example.com", month_start_date=28, fcm_token="a")
    assert _service(session).run_monthly(datetime(2026, 1, 30, 9, 0)) == {
        "active": 0,
        "inactive": 0,
    }
