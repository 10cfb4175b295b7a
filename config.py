import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        secret_key: str,
        token_max_age_hours: int,
        log_level: str,
        cors_origins: list[str],
    ) -> None:
        self.database_url = database_url
        self.secret_key = secret_key
        self.token_max_age_hours = token_max_age_hours
        self.log_level = log_level
        self.cors_origins = cors_origins


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGETS_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _split_origins(raw: str) -> list[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budgets.db"
    database_url = os.getenv("BUDGETS_DATABASE_URL", f"sqlite:///{default_db}")
    secret_key = os.getenv(
        "BUDGETS_SECRET_KEY",
        "3f0c8d1e6b2a4f7e9c5d0a1b8e7f6c3d2a9b4e5f1c0d7a8b6e3f2c1d0a9b8e7f",
    )
    token_max_age_hours = int(os.getenv("BUDGETS_TOKEN_MAX_AGE_HOURS", "168"))
    log_level = os.getenv("BUDGETS_LOG_LEVEL", "INFO").upper()
    cors_origins = _split_origins(os.getenv("BUDGETS_CORS_ORIGINS", "*"))
    return Settings(
        database_url=database_url,
        secret_key=secret_key,
        token_max_age_hours=token_max_age_hours,
        log_level=log_level,
        cors_origins=cors_origins,
    )
