from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from portfolio_ledger.config.paths import ROOT_DIR, default_db_path


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _env_currency(name: str, default: str) -> str:
    raw = str(os.getenv(name, "") or "").strip().upper()
    if len(raw) == 3 and raw.isalpha():
        return raw
    return default


@dataclass(frozen=True)
class Settings:
    app_env: str
    database_url: str
    log_level: str
    default_currency: str
    sql_echo: bool


def get_settings(load_env_file: bool = True) -> Settings:
    if load_env_file:
        # Existing environment variables win over the .env file.
        load_dotenv(ROOT_DIR / ".env", override=False)

    db_default = f"sqlite:///{default_db_path().as_posix()}"
    return Settings(
        app_env=os.getenv("APP_ENV", "development"),
        database_url=os.getenv("DATABASE_URL", db_default),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        default_currency=_env_currency("DEFAULT_CURRENCY", "USD"),
        sql_echo=_env_bool("SQL_ECHO", False),
    )
