"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup — if a required setting is missing, the app fails fast with a
clear error message.

Usage:
    from property_settlement.config import get_settings
    settings = get_settings()
    print(settings.ledger_service_url)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the property settlement service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    cors_allow_origins: list[str] = ["*"]

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://settlement:settlement_dev"
        "@localhost:5432/property_settlement"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"
    redis_idempotency_ttl_seconds: int = 86400  # 24 hours

    # --- Ledger bridge ---
    # Blockchain confirmation is slow; every ledger call shares this bound.
    ledger_service_url: str = "http://localhost:3000"
    ledger_timeout_seconds: float = 180.0
    ledger_simulate: bool = True
    # Alias -> canonical address, given as JSON in the environment,
    # e.g. LEDGER_ACCOUNTS='{"alice": "0xa1...", "bob": "0xb0..."}'
    ledger_accounts: dict[str, str] = {}

    # --- Note consumption ---
    consume_max_retries: int = 3
    consume_retry_delay_seconds: float = 60.0
    consume_placeholder_wait_seconds: float = 120.0

    # --- Offers & proofs ---
    offer_lifetime_days: int = 7
    proof_lifetime_days: int = 90
    buyer_prefund_on_offer: bool = True

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
