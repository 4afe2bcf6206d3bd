import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import LedgerEntry, Notification, User, UserStatus
from notifications import NotificationDispatcher, chunked
from periods import DEFAULT_MONTH_START_DATE, previous_month_range, utcnow

logger = logging.getLogger(__name__)

DAILY_REMINDER = "DAILY_REMINDER"
WEEKLY_REPORT = "WEEKLY_REPORT"
MONTHLY_REPORT = "MONTHLY_REPORT"

DAILY_TITLE = "Daily Reminder"
DAILY_BODY = (
    "You have not added any activity today. Add today's income and spending "
    "to keep your saving goals on track."
)
WEEKLY_READY_TITLE = "Your Weekly Report Is Ready"
WEEKLY_READY_BODY = "Tap to see your weekly report."
WEEKLY_IDLE_TITLE = "Weekly Reminder"
WEEKLY_IDLE_BODY = (
    "You have not added any activity this week. Track your income and "
    "spending to save more."
)
MONTHLY_READY_TITLE = "Your Monthly Report Is Ready"
MONTHLY_READY_BODY = "Tap to see your monthly report."
MONTHLY_IDLE_TITLE = "Monthly Reminder"
MONTHLY_IDLE_BODY = (
    "You have not added any activity for a whole month. Track your income "
    "and spending to save more."
)


@dataclass(frozen=True)
class ReminderBatch:
    active: list[int]
    inactive: list[int]


def timezones_at_local_hour(
    timezones: Iterable[str], now: datetime, hour: int
) -> list[str]:
    """Return the timezones whose wall clock reads `hour` at UTC `now`."""
    aware = now.replace(tzinfo=timezone.utc)
    matches = []
    for name in timezones:
        try:
            local = aware.astimezone(ZoneInfo(name))
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"reminder_timezone_skipped: timezone={name!r}")
            continue
        if local.hour == hour:
            matches.append(name)
    return matches


def local_date(now: datetime, tz_name: str) -> date:
    return now.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(tz_name)).date()


def split_batch(
    user_ids: Sequence[int], already_sent: Iterable[int], active: Iterable[int]
) -> ReminderBatch:
    sent = set(already_sent)
    active_ids = set(active)
    eligible = [user_id for user_id in user_ids if user_id not in sent]
    return ReminderBatch(
        active=[user_id for user_id in eligible if user_id in active_ids],
        inactive=[user_id for user_id in eligible if user_id not in active_ids],
    )


class ReminderService:
    def __init__(
        self,
        session: Session,
        dispatcher: NotificationDispatcher,
        batch_size: int = 500,
        reminder_hour: int = 21,
    ) -> None:
        self.session = session
        self.dispatcher = dispatcher
        self.batch_size = batch_size
        self.reminder_hour = reminder_hour

    def _candidates(self, *criteria) -> list[int]:
        stmt = (
            select(User.id)
            .where(
                User.status == UserStatus.active,
                User.fcm_token.is_not(None),
                *criteria,
            )
            .order_by(User.id)
        )
        return list(self.session.scalars(stmt).all())

    def _already_sent(
        self, user_ids: Sequence[int], kind: str, period_key: str
    ) -> set[int]:
        sent: set[int] = set()
        for batch in chunked(user_ids, self.batch_size):
            sent.update(
                self.session.scalars(
                    select(Notification.user_id)
                    .where(
                        Notification.user_id.in_(batch),
                        Notification.kind == kind,
                        Notification.period_key == period_key,
                    )
                    .distinct()
                ).all()
            )
        return sent

    def _active_between(
        self, user_ids: Sequence[int], first: date, last: date
    ) -> set[int]:
        active: set[int] = set()
        for batch in chunked(user_ids, self.batch_size):
            active.update(
                self.session.scalars(
                    select(LedgerEntry.user_id)
                    .where(
                        LedgerEntry.user_id.in_(batch),
                        LedgerEntry.date.between(first, last),
                    )
                    .distinct()
                ).all()
            )
        return active

    def _batch(
        self, user_ids: list[int], kind: str, period_key: str, first: date, last: date
    ) -> ReminderBatch:
        sent = self._already_sent(user_ids, kind, period_key)
        remaining = [user_id for user_id in user_ids if user_id not in sent]
        return split_batch(
            user_ids, sent, self._active_between(remaining, first, last)
        )

    def _send(
        self,
        user_ids: list[int],
        title: str,
        body: str,
        data: dict[str, object],
        kind: str,
        period_key: str,
    ) -> int:
        if not user_ids:
            return 0
        result = self.dispatcher.notify_bulk(
            self.session,
            user_ids,
            title,
            body,
            data,
            kind=kind,
            period_key=period_key,
        )
        return result["saved"]

    def run_daily(self, now: Optional[datetime] = None) -> dict[str, int]:
        now = now or utcnow()
        timezones = self.session.scalars(
            select(User.timezone)
            .where(User.status == UserStatus.active, User.fcm_token.is_not(None))
            .distinct()
        ).all()
        targets = timezones_at_local_hour(timezones, now, self.reminder_hour)

        sent = 0
        for tz_name in targets:
            today = local_date(now, tz_name)
            period_key = today.isoformat()
            user_ids = self._candidates(User.timezone == tz_name)
            batch = self._batch(user_ids, DAILY_REMINDER, period_key, today, today)
            sent += self._send(
                batch.inactive,
                DAILY_TITLE,
                DAILY_BODY,
                {"notifType": DAILY_REMINDER, "date": period_key},
                DAILY_REMINDER,
                period_key,
            )
        self.session.commit()
        logger.info(
            f"reminder_run: job=daily timezones={len(targets)} sent={sent}"
        )
        return {"timezones": len(targets), "sent": sent}

    def run_weekly(self, now: Optional[datetime] = None) -> dict[str, int]:
        now = now or utcnow()
        week_start = now.date() - timedelta(days=7)
        week_end = now.date() - timedelta(days=1)
        period_key = week_start.isoformat()

        user_ids = self._candidates()
        batch = self._batch(user_ids, WEEKLY_REPORT, period_key, week_start, week_end)
        active = self._send(
            batch.active,
            WEEKLY_READY_TITLE,
            WEEKLY_READY_BODY,
            {
                "notifType": WEEKLY_REPORT,
                "weekStart": period_key,
                "route": "/reports/weekly",
            },
            WEEKLY_REPORT,
            period_key,
        )
        inactive = self._send(
            batch.inactive,
            WEEKLY_IDLE_TITLE,
            WEEKLY_IDLE_BODY,
            {"notifType": WEEKLY_REPORT, "weekStart": period_key},
            WEEKLY_REPORT,
            period_key,
        )
        self.session.commit()
        logger.info(
            f"reminder_run: job=weekly active={active} inactive={inactive}"
        )
        return {"active": active, "inactive": inactive}

    def run_monthly(self, now: Optional[datetime] = None) -> dict[str, int]:
        now = now or utcnow()
        today = now.date()
        criteria = [User.month_start_date == today.day]
        if today.day == DEFAULT_MONTH_START_DATE:
            criteria = [
                (User.month_start_date == today.day)
                | User.month_start_date.is_(None)
            ]
        user_ids = self._candidates(*criteria)
        if not user_ids:
            logger.info("reminder_run: job=monthly active=0 inactive=0")
            return {"active": 0, "inactive": 0}

        # Everyone selected starts a cycle today, so they share the previous one.
        previous = previous_month_range(today, today.day)
        period_key = previous.first_day.isoformat()
        batch = self._batch(
            user_ids,
            MONTHLY_REPORT,
            period_key,
            previous.first_day,
            previous.last_day,
        )
        active = self._send(
            batch.active,
            MONTHLY_READY_TITLE,
            MONTHLY_READY_BODY,
            {
                "notifType": MONTHLY_REPORT,
                "monthStart": period_key,
                "route": "/reports/monthly",
            },
            MONTHLY_REPORT,
            period_key,
        )
        inactive = self._send(
            batch.inactive,
            MONTHLY_IDLE_TITLE,
            MONTHLY_IDLE_BODY,
            {"notifType": MONTHLY_REPORT, "monthStart": period_key},
            MONTHLY_REPORT,
            period_key,
        )
        self.session.commit()
        logger.info(
            f"reminder_run: job=monthly active={active} inactive={inactive}"
        )
        return {"active": active, "inactive": inactive}
