import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        token_secret: str,
        token_max_age_hours: int,
        scheduler_enabled: bool,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.token_secret = token_secret
        self.token_max_age_hours = token_max_age_hours
        self.scheduler_enabled = scheduler_enabled
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LIMITS_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "limits.db"
    database_url = os.getenv("LIMITS_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LIMITS_TIMEZONE", "Europe/Berlin")
    token_secret = os.getenv(
        "LIMITS_TOKEN_SECRET",
        "5d1c0f3e9a7b4c2d8e6f1a3b5c7d9e0f2a4b6c8d0e1f3a5b7c9d2e4f6a8b0c1d",
    )
    token_max_age_hours = int(os.getenv("LIMITS_TOKEN_MAX_AGE_HOURS", "2"))
    scheduler_enabled = _env_flag("LIMITS_SCHEDULER_ENABLED", "1")
    log_level = os.getenv("LIMITS_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        token_secret=token_secret,
        token_max_age_hours=token_max_age_hours,
        scheduler_enabled=scheduler_enabled,
        log_level=log_level,
    )
