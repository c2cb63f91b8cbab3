import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        default_user_id: int,
        currency_prefix: str,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.default_user_id = default_user_id
        self.currency_prefix = currency_prefix
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("TRACKER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("TRACKER_DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{_ensure_data_dir() / 'tracker.db'}"
    timezone = os.getenv("TRACKER_TIMEZONE", "Europe/Berlin")
    csrf_secret = os.getenv(
        "TRACKER_CSRF_SECRET",
        "4c1f0e6a9b7d52e38a0f6c2d91b4e7a35d8c0b16f2e9a47c3b5d1e80f6a2c9d4",
    )
    default_user_id = int(os.getenv("TRACKER_DEFAULT_USER_ID", "1"))
    currency_prefix = os.getenv("TRACKER_CURRENCY_PREFIX", "Rs")
    log_level = os.getenv("TRACKER_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        default_user_id=default_user_id,
        currency_prefix=currency_prefix,
        log_level=log_level,
    )
