import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        log_level: str,
        scheduler_enabled: bool,
        warning_threshold: float,
        danger_threshold: float,
        auto_match_window_days: int,
        default_reminder_days: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.log_level = log_level
        self.scheduler_enabled = scheduler_enabled
        self.warning_threshold = warning_threshold
        self.danger_threshold = danger_threshold
        self.auto_match_window_days = auto_match_window_days
        self.default_reminder_days = default_reminder_days


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "UTC")
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    scheduler_enabled = _env_flag("FINANCE_SCHEDULER_ENABLED", "1")
    warning_threshold = float(os.getenv("FINANCE_WARNING_THRESHOLD", "80"))
    danger_threshold = float(os.getenv("FINANCE_DANGER_THRESHOLD", "90"))
    auto_match_window_days = int(os.getenv("FINANCE_AUTO_MATCH_WINDOW_DAYS", "7"))
    default_reminder_days = int(os.getenv("FINANCE_DEFAULT_REMINDER_DAYS", "3"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        log_level=log_level,
        scheduler_enabled=scheduler_enabled,
        warning_threshold=warning_threshold,
        danger_threshold=danger_threshold,
        auto_match_window_days=auto_match_window_days,
        default_reminder_days=default_reminder_days,
    )
