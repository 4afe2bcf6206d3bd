import logging
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import sessionmaker

from config import Settings, get_settings
from database import SessionLocal, session_scope
from notifications import NotificationDispatcher, build_push_client
from reminders import ReminderService

logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        session_factory: sessionmaker = SessionLocal,
        dispatcher: Optional[NotificationDispatcher] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.dispatcher = dispatcher or NotificationDispatcher(
            build_push_client(self.settings), self.settings.notify_batch_size
        )
        self.scheduler = BackgroundScheduler(timezone="UTC")

    def _run_job(self, job: str, run: Callable[[ReminderService], dict]) -> None:
        logger.info(f"scheduler_run: job={job}")
        try:
            with session_scope(self.session_factory) as session:
                service = ReminderService(
                    session,
                    self.dispatcher,
                    batch_size=self.settings.notify_batch_size,
                    reminder_hour=self.settings.reminder_hour,
                )
                result = run(service)
        except Exception:
            logger.exception(f"scheduler_run_failed: job={job}")
            return
        logger.info(f"scheduler_run: job={job} result={result}")

    def run_daily(self) -> None:
        self._run_job("daily_reminder", lambda service: service.run_daily())

    def run_weekly(self) -> None:
        self._run_job("weekly_report", lambda service: service.run_weekly())

    def run_monthly(self) -> None:
        self._run_job("monthly_report", lambda service: service.run_monthly())

    def start(self) -> None:
        self.scheduler.add_job(
            self.run_daily,
            CronTrigger(minute=0, timezone="UTC"),
            id="daily_reminder",
            replace_existing=True,
            misfire_grace_time=300,
        )
        self.scheduler.add_job(
            self.run_weekly,
            CronTrigger(day_of_week="sun", hour=9, minute=0, timezone="UTC"),
            id="weekly_report",
            replace_existing=True,
            misfire_grace_time=3600,
        )
        self.scheduler.add_job(
            self.run_monthly,
            CronTrigger(hour=9, minute=0, timezone="UTC"),
            id="monthly_report",
            replace_existing=True,
            misfire_grace_time=3600,
        )
        self.scheduler.start()
        logger.info(
            "Scheduler started with hourly daily reminder, Sunday 09:00 weekly "
            "and daily 09:00 monthly reports (UTC)"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
