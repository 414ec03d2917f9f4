"""Application configuration utilities."""

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings derived from environment variables."""

    database_url: str = Field(
        default="sqlite:///./tutoring_billing.db", alias="DATABASE_URL"
    )
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    invoice_number_prefix: str = Field(default="INV", alias="INVOICE_NUMBER_PREFIX")
    default_due_days: int = Field(default=30, alias="DEFAULT_DUE_DAYS")
    due_soon_days: int = Field(default=7, alias="DUE_SOON_DAYS")
    minimum_payment: Decimal = Field(default=Decimal("10.00"), alias="MINIMUM_PAYMENT")
    credit_card_fee_rate: Decimal = Field(
        default=Decimal("0.029"), alias="CREDIT_CARD_FEE_RATE"
    )
    gateway_success_rate: float = Field(default=1.0, alias="GATEWAY_SUCCESS_RATE")
    gateway_latency_seconds: float = Field(
        default=0.0, alias="GATEWAY_LATENCY_SECONDS"
    )
    auth0_domain: str | None = Field(default=None, alias="AUTH0_DOMAIN")
    auth0_audience: str | None = Field(default=None, alias="AUTH0_AUDIENCE")

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


__all__ = ["Settings", "get_settings"]
