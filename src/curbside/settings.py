"""Centralized configuration using pydantic-settings.

All configuration is loaded from environment variables and .env files.
This is the single source of truth for billing service configuration.
"""

from enum import Enum

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class BillingCycleAnchor(str, Enum):
    """How a property's first billing date is chosen."""

    FIRST_OF_MONTH = "first_of_month"
    ANNIVERSARY = "anniversary"


class Settings(BaseSettings):
    """Main application settings.

    All settings can be overridden via environment variables.
    For nested settings, use double underscore: BILLING__INVOICE_DUE_DAYS=14
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    # ============================================================
    # Core Application Settings
    # ============================================================

    app_name: str = Field("curbside-billing", description="Application name")
    app_version: str = Field("1.0.0", description="Application version")
    environment: Environment = Field(Environment.DEVELOPMENT, description="Deployment environment")
    debug: bool = Field(False, description="Debug mode")
    testing: bool = Field(False, description="Testing mode")

    # ============================================================
    # Observability Configuration
    # ============================================================

    class ObservabilitySettings(BaseModel):
        """Observability configuration."""

        log_level: LogLevel = Field(LogLevel.INFO, description="Log level")
        log_format: str = Field("json", description="Log format (json or text)")
        enable_structured_logging: bool = Field(True, description="Enable structured logging")
        enable_correlation_ids: bool = Field(True, description="Add thread name to log records")

    observability: ObservabilitySettings = ObservabilitySettings()  # type: ignore[call-arg]

    # ============================================================
    # Billing Configuration
    # ============================================================

    class BillingSettings(BaseModel):
        """Billing system configuration."""

        # Currency
        default_currency: str = Field("USD", description="Currency for all catalog prices")
        default_locale: str = Field("en_US", description="Locale for formatted amounts")

        # Subscription settings
        proration_enabled: bool = Field(True, description="Enable mid-cycle proration")
        billing_cycle_anchor: BillingCycleAnchor = Field(
            BillingCycleAnchor.FIRST_OF_MONTH,
            description="First billing date for a property with no active subscriptions",
        )

        # Invoice settings
        invoice_due_days: int = Field(30, description="Days after issue before an invoice is overdue")

        # Storage retry settings
        storage_retry_attempts: int = Field(3, description="Attempts for a transient store failure")
        storage_retry_min_wait_seconds: float = Field(0.05, description="Minimum retry backoff")
        storage_retry_max_wait_seconds: float = Field(2.0, description="Maximum retry backoff")

        @field_validator("default_currency")
        @classmethod
        def validate_currency(cls, v: str) -> str:
            return v.upper()

        @field_validator("invoice_due_days", "storage_retry_attempts")
        @classmethod
        def validate_positive(cls, v: int) -> int:
            if v < 1:
                raise ValueError("Value must be at least 1")
            return v

    billing: BillingSettings = BillingSettings()  # type: ignore[call-arg]

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.testing or self.environment == Environment.TEST


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get global settings instance (singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings()  # type: ignore
    return _settings


def reset_settings() -> None:
    """Reset settings (mainly for testing)."""
    global _settings
    _settings = None


# Convenience export
settings = get_settings()
