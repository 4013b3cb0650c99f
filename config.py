import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        currency: str,
        auth_secret: str,
        auth_max_age_hours: int,
        identity_secret: str,
        ai_api_key: str,
        ai_model: str,
        ai_timeout_secs: float,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.currency = currency
        self.auth_secret = auth_secret
        self.auth_max_age_hours = auth_max_age_hours
        self.identity_secret = identity_secret
        self.ai_api_key = ai_api_key
        self.ai_model = ai_model
        self.ai_timeout_secs = ai_timeout_secs

    @property
    def assistant_enabled(self) -> bool:
        return bool(self.ai_api_key)


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "America/Sao_Paulo")
    currency = os.getenv("FINANCE_CURRENCY", "BRL")
    auth_secret = os.getenv(
        "FINANCE_AUTH_SECRET",
        "5f1c0d4be9a7e2316c8f0a94d7b3e65a21c9f8d0e4b7a6c3d2e1f0a9b8c7d6e5",
    )
    auth_max_age_hours = int(os.getenv("FINANCE_AUTH_MAX_AGE_HOURS", "24"))
    identity_secret = os.getenv("FINANCE_IDENTITY_SECRET", "")
    ai_api_key = os.getenv("FINANCE_AI_API_KEY", "")
    ai_model = os.getenv("FINANCE_AI_MODEL", "gemini-2.0-flash")
    ai_timeout_secs = float(os.getenv("FINANCE_AI_TIMEOUT_SECS", "20"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        currency=currency,
        auth_secret=auth_secret,
        auth_max_age_hours=auth_max_age_hours,
        identity_secret=identity_secret,
        ai_api_key=ai_api_key,
        ai_model=ai_model,
        ai_timeout_secs=ai_timeout_secs,
    )
