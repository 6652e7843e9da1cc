import os
from functools import lru_cache
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() == "true"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str = "UTC",
        environment: str = "development",
        enable_scheduled_tasks: bool = False,
        data_retention_years: int = 10,
        archive_batch_size: int = 1000,
        max_archive_years: int = 20,
        cleanup_old_archives: bool = False,
        db_connection_limit: int = 10,
        db_pool_timeout: int = 10,
        log_level: str = "INFO",
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.environment = environment
        self.enable_scheduled_tasks = enable_scheduled_tasks
        self.data_retention_years = data_retention_years
        self.archive_batch_size = archive_batch_size
        self.max_archive_years = max_archive_years
        self.cleanup_old_archives = cleanup_old_archives
        self.db_connection_limit = db_connection_limit
        self.db_pool_timeout = db_pool_timeout
        self.log_level = log_level

    @property
    def scheduled_tasks_enabled(self) -> bool:
        # Off outside production unless explicitly switched on.
        return self.environment == "production" or self.enable_scheduled_tasks


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("EXPENSES_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "expenses.db"
        database_url = f"sqlite:///{default_db}"
    return Settings(
        database_url=database_url,
        timezone=os.getenv("EXPENSES_TIMEZONE", "UTC"),
        environment=os.getenv("EXPENSES_ENV", "development"),
        enable_scheduled_tasks=_env_bool("ENABLE_SCHEDULED_TASKS"),
        data_retention_years=_env_int("DATA_RETENTION_YEARS", 10),
        archive_batch_size=_env_int("ARCHIVE_BATCH_SIZE", 1000),
        max_archive_years=_env_int("MAX_ARCHIVE_YEARS", 20),
        cleanup_old_archives=_env_bool("CLEANUP_OLD_ARCHIVES"),
        db_connection_limit=_env_int("DB_CONNECTION_LIMIT", 10),
        db_pool_timeout=_env_int("DB_POOL_TIMEOUT", 10),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
