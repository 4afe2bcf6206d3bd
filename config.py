import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        data_dir: Path,
        session_secret: str,
        session_max_age_hours: int,
        db_timeout_secs: float,
        scheduler_enabled: bool,
        reminder_hour: int,
        notify_batch_size: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.data_dir = data_dir
        self.session_secret = session_secret
        self.session_max_age_hours = session_max_age_hours
        self.db_timeout_secs = db_timeout_secs
        self.scheduler_enabled = scheduler_enabled
        self.reminder_hour = reminder_hour
        self.notify_batch_size = notify_batch_size
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    session_secret = os.getenv(
        "LEDGER_SESSION_SECRET",
        "5c0f3f6e8a9b2d41c7e6a1f0b3d8c2e94a7f6b1c0d9e8f7a6b5c4d3e2f1a0b9c",
    )
    session_max_age_hours = int(os.getenv("LEDGER_SESSION_MAX_AGE_HOURS", "720"))
    db_timeout_secs = float(os.getenv("LEDGER_DB_TIMEOUT_SECS", "10"))
    scheduler_enabled = _env_flag("LEDGER_SCHEDULER_ENABLED", "true")
    reminder_hour = int(os.getenv("LEDGER_REMINDER_HOUR", "21"))
    notify_batch_size = int(os.getenv("LEDGER_NOTIFY_BATCH_SIZE", "500"))
    log_level = os.getenv("LEDGER_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        data_dir=data_dir,
        session_secret=session_secret,
        session_max_age_hours=session_max_age_hours,
        db_timeout_secs=db_timeout_secs,
        scheduler_enabled=scheduler_enabled,
        reminder_hour=reminder_hour,
        notify_batch_size=notify_batch_size,
        log_level=log_level,
    )
