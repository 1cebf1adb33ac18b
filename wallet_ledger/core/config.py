from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Wallet Ledger API"
    database_url: str = "sqlite:///wallet_ledger.db"
    database_echo: bool = False
    pool_size: int = 10
    pool_timeout: int = 30
    log_level: str = "INFO"

    max_transfer_amount: Decimal = Decimal("10000.00")
    transfer_rate_limit: int = 10
    transfer_rate_window_seconds: int = 3600

    statement_default_limit: int = 10
    statement_max_limit: int = 100
    # e.g. "REPEATABLE READ" on PostgreSQL; SQLite only knows "SERIALIZABLE"
    statement_isolation_level: Optional[str] = None

    notifications_enabled: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="WALLET_",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
