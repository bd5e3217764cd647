"""Application configuration settings."""
from __future__ import annotations

import os
from decimal import Decimal
from functools import lru_cache

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Execution environment: "dev" | "staging" | "prod"
ENV = os.getenv("MINERPAY_ENV", "dev").lower()

DEFAULT_SHIPPING_COUNTRIES = ["US", "CA", "GB", "AU", "DE", "FR", "JP"]


class Settings(BaseSettings):
    """Environment configuration for the minerpay backend."""

    app_env: str = Field(default=ENV, validation_alias=AliasChoices("MINERPAY_ENV", "APP_ENV"))
    database_url: str = "sqlite:///minerpay.db"
    LOG_LEVEL: str = "INFO"
    CORS_ALLOW_ORIGINS: list[str] = [
        "https://minerpay.io",
        "https://app.minerpay.io",
        "http://localhost:5173",
    ]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = False
    ALLOW_DB_CREATE_ALL: bool = False

    # --- Stripe ------------------------------------------------------------
    STRIPE_ENABLED: bool = True
    STRIPE_SECRET_KEY: str | None = None
    STRIPE_WEBHOOK_SECRET: str | None = None
    STRIPE_WEBHOOK_SECRET_NEXT: str | None = None
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300
    STRIPE_API_VERSION: str = "2023-10-16"
    STRIPE_MAX_NETWORK_RETRIES: int = 2
    STRIPE_CONNECT_ENABLED: bool = True
    STRIPE_AUTOMATIC_TAX: bool = False
    CHECKOUT_SHIPPING_COUNTRIES: list[str] = DEFAULT_SHIPPING_COUNTRIES
    CONNECT_DEFAULT_COUNTRY: str = "US"
    CONNECT_REFRESH_URL: str = "https://app.minerpay.io/owners/onboarding/refresh"
    CONNECT_RETURN_URL: str = "https://app.minerpay.io/owners/onboarding/return"

    # --- Fees --------------------------------------------------------------
    PLATFORM_FEE_RATE: Decimal = Decimal("0.035")
    RENTAL_FLAT_FEE_PER_DAY: Decimal | None = None

    # --- Reconciliation scheduler -----------------------------------------
    SCHEDULER_ENABLED: bool = False
    RECONCILIATION_INTERVAL_MINUTES: int = 60
    STALE_CHECKOUT_AFTER_MINUTES: int | None = None

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET", "STRIPE_WEBHOOK_SECRET_NEXT")
    @classmethod
    def _strip_empty_secret(cls, value: str | None) -> str | None:
        """Normalise empty secrets to ``None`` for easier validation."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @field_validator("PLATFORM_FEE_RATE")
    @classmethod
    def _fee_rate_in_range(cls, value: Decimal) -> Decimal:
        if not (Decimal("0") < value < Decimal("1")):
            raise ValueError("PLATFORM_FEE_RATE must be strictly between 0 and 1")
        return value

    @property
    def webhook_secrets(self) -> list[str]:
        return [s for s in (self.STRIPE_WEBHOOK_SECRET, self.STRIPE_WEBHOOK_SECRET_NEXT) if s]


class AppInfo(BaseModel):
    name: str = "minerpay-backend"
    version: str = "0.1.0"


settings = Settings()


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return settings


__all__ = [
    "ENV",
    "DEFAULT_SHIPPING_COUNTRIES",
    "Settings",
    "AppInfo",
    "settings",
    "get_settings",
]
