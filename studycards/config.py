"""
Application Configuration - Pydantic Settings for type-safe config.

FAIL FAST - Critical config is validated at startup.
"""

import sys
from decimal import Decimal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_LLM_MODELS = [
    "llama-3.3-70b-versatile",
    "openai/gpt-oss-120b",
    "llama-3.1-8b-instant",
    "openai/gpt-oss-20b",
]


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 10
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "StudyCards API"
    api_version: str = "0.1.0"
    api_description: str = "Flashcard generation with metered free/premium tiers"

    # Public site URL used for payment return/callback links
    site_url: str = "http://localhost:3000"

    # Authentication - JWTs issued by the identity provider
    auth_jwt_secret: str = ""
    auth_jwt_audience: str = "authenticated"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "studycards-api"
    trace_sample_rate: float = 1.0

    # Payment Gateway - Cryptomus
    cryptomus_api_url: str = "https://api.cryptomus.com/v1"
    cryptomus_merchant_id: str = ""
    cryptomus_api_key: str = ""
    cryptomus_timeout_seconds: float = 15.0
    payment_lifetime_seconds: int = 7200

    # Tiers and pricing
    free_tier_monthly_limit: int = 10
    premium_tier_monthly_limit: int = 1000
    premium_period_days: int = 30
    pending_payment_window_minutes: int = 30
    max_payment_amount: Decimal = Decimal("1000")
    supported_currencies: list[str] = ["USD", "EUR", "USDT"]

    # LLM provider (OpenAI-compatible endpoint, Groq by default)
    llm_api_key: str = ""
    llm_base_url: str = "https://api.groq.com/openai/v1"
    llm_models: list[str] = DEFAULT_LLM_MODELS
    llm_temperature: float = 0.7
    llm_max_tokens: int = 2000
    llm_timeout_seconds: float = 60.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @field_validator("supported_currencies")
    @classmethod
    def normalize_currencies(cls, v: list[str]) -> list[str]:
        """Store currency codes upper-cased."""
        return [code.strip().upper() for code in v if code.strip()]

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if not self.llm_models:
            errors.append("LLM_MODELS must list at least one model")

        if self.free_tier_monthly_limit <= 0 or self.premium_tier_monthly_limit <= 0:
            errors.append("Tier monthly limits must be positive")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def gateway_configured(self) -> bool:
        """True when the payment gateway credentials are present."""
        return bool(self.cryptomus_merchant_id and self.cryptomus_api_key)

    @property
    def webhook_callback_url(self) -> str:
        """Gateway callback URL for payment notifications."""
        return f"{self.site_url.rstrip('/')}/api/payments/webhook"

    def payment_return_url(self, transaction_id: str) -> str:
        """Page the gateway redirects the payer to after checkout."""
        return f"{self.site_url.rstrip('/')}/payment/success?transaction_id={transaction_id}"


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
