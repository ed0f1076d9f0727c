import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class ConfigurationError(RuntimeError):
    pass


NOT_CONFIGURED_MESSAGE = (
    "Application is not properly configured. Please contact support."
)


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        session_secret: Optional[str],
        session_max_age_hours: int,
        currency_symbol: str,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.session_secret = session_secret
        self.session_max_age_hours = session_max_age_hours
        self.currency_symbol = currency_symbol
        self.log_level = log_level

    @property
    def is_configured(self) -> bool:
        return bool(self.session_secret)

    def require_session_secret(self) -> str:
        if not self.session_secret:
            raise ConfigurationError("EXPENSES_SESSION_SECRET is not set")
        return self.session_secret


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "expenses.db"
    database_url = os.getenv("EXPENSES_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("EXPENSES_TIMEZONE", "Europe/Berlin")
    session_secret = os.getenv("EXPENSES_SESSION_SECRET") or None
    session_max_age_hours = int(os.getenv("EXPENSES_SESSION_MAX_AGE_HOURS", "336"))
    currency_symbol = os.getenv("EXPENSES_CURRENCY_SYMBOL", "$")
    log_level = os.getenv("EXPENSES_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        session_secret=session_secret,
        session_max_age_hours=session_max_age_hours,
        currency_symbol=currency_symbol,
        log_level=log_level,
    )
