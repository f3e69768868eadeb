import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


@dataclass(frozen=True)
class Settings:
    database_url: str
    timezone: str
    secret_key: str
    token_max_age_hours: int = 24
    log_level: str = "INFO"

    scheduler_enabled: bool = True
    daily_summary_hour: int = 18
    weekly_report_day: str = "sun"
    weekly_report_hour: int = 9
    cleanup_day: int = 1
    cleanup_hour: int = 2

    default_retention_months: int = 3
    min_retention_months: int = 1
    max_retention_months: int = 12
    min_account_age_days: int = 7

    cleanup_batch_size: int = 50
    cleanup_batch_pause_secs: float = 0.1
    owner_batch_size: int = 10
    owner_batch_concurrency: int = 4
    owner_batch_delay_secs: float = 1.0

    general_rate_limit: int = 5
    general_rate_window_secs: int = 15 * 60
    cleanup_rate_limit: int = 2
    cleanup_rate_window_secs: int = 60 * 60
    admin_rate_limit: int = 1
    admin_rate_window_secs: int = 24 * 60 * 60


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("SPENDWISE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("SPENDWISE_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "spendwise.db"
        database_url = f"sqlite:///{default_db}"
    return Settings(
        database_url=database_url,
        timezone=os.getenv("SPENDWISE_TIMEZONE", "America/New_York"),
        secret_key=os.getenv(
            "SPENDWISE_SECRET_KEY",
            "3f9c1be0a4d27e58c6b1f0d94a7e2c815d3b6a90e7f41c28b5d06e9a3c7f1b24",
        ),
        token_max_age_hours=int(os.getenv("SPENDWISE_TOKEN_MAX_AGE_HOURS", "24")),
        log_level=os.getenv("SPENDWISE_LOG_LEVEL", "INFO").upper(),
        scheduler_enabled=_env_bool("SPENDWISE_SCHEDULER_ENABLED", True),
        daily_summary_hour=int(os.getenv("SPENDWISE_DAILY_SUMMARY_HOUR", "18")),
        weekly_report_day=os.getenv("SPENDWISE_WEEKLY_REPORT_DAY", "sun"),
        weekly_report_hour=int(os.getenv("SPENDWISE_WEEKLY_REPORT_HOUR", "9")),
        cleanup_day=int(os.getenv("SPENDWISE_CLEANUP_DAY", "1")),
        cleanup_hour=int(os.getenv("SPENDWISE_CLEANUP_HOUR", "2")),
        default_retention_months=int(
            os.getenv("SPENDWISE_DEFAULT_RETENTION_MONTHS", "3")
        ),
        min_account_age_days=int(os.getenv("SPENDWISE_MIN_ACCOUNT_AGE_DAYS", "7")),
        cleanup_batch_size=int(os.getenv("SPENDWISE_CLEANUP_BATCH_SIZE", "50")),
        cleanup_batch_pause_secs=float(
            os.getenv("SPENDWISE_CLEANUP_BATCH_PAUSE_SECS", "0.1")
        ),
        owner_batch_size=int(os.getenv("SPENDWISE_OWNER_BATCH_SIZE", "10")),
        owner_batch_concurrency=int(
            os.getenv("SPENDWISE_OWNER_BATCH_CONCURRENCY", "4")
        ),
        owner_batch_delay_secs=float(
            os.getenv("SPENDWISE_OWNER_BATCH_DELAY_SECS", "1")
        ),
        general_rate_limit=int(os.getenv("SPENDWISE_GENERAL_RATE_LIMIT", "5")),
        general_rate_window_secs=int(
            os.getenv("SPENDWISE_GENERAL_RATE_WINDOW_SECS", str(15 * 60))
        ),
        cleanup_rate_limit=int(os.getenv("SPENDWISE_CLEANUP_RATE_LIMIT", "2")),
        cleanup_rate_window_secs=int(
            os.getenv("SPENDWISE_CLEANUP_RATE_WINDOW_SECS", str(60 * 60))
        ),
        admin_rate_limit=int(os.getenv("SPENDWISE_ADMIN_RATE_LIMIT", "1")),
        admin_rate_window_secs=int(
            os.getenv("SPENDWISE_ADMIN_RATE_WINDOW_SECS", str(24 * 60 * 60))
        ),
    )
