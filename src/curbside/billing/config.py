"""
Billing module configuration
"""

from pydantic import BaseModel, ConfigDict, Field

from curbside.settings import BillingCycleAnchor, Settings, get_settings


class CurrencyConfig(BaseModel):
    """Currency configuration - Single currency support"""

    model_config = ConfigDict(frozen=True)

    default_currency: str = Field("USD", description="Default currency code")
    default_locale: str = Field("en_US", description="Locale for formatted amounts")


class InvoiceConfig(BaseModel):
    """Invoice configuration"""

    model_config = ConfigDict(frozen=True)

    id_prefix: str = Field("inv", description="Prefix for generated invoice ids")
    due_days_default: int = Field(30, ge=1, description="Default payment terms in days")


class SubscriptionConfig(BaseModel):
    """Subscription lifecycle configuration"""

    model_config = ConfigDict(frozen=True)

    proration_enabled: bool = Field(True, description="Bill mid-cycle quantity increases")
    billing_cycle_anchor: BillingCycleAnchor = Field(
        BillingCycleAnchor.FIRST_OF_MONTH,
        description="First billing date for a property with no active subscriptions",
    )


class RetryConfig(BaseModel):
    """Retry policy for transient store failures"""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(3, ge=1, description="Total attempts per transactional unit")
    min_wait_seconds: float = Field(0.05, ge=0, description="Minimum backoff")
    max_wait_seconds: float = Field(2.0, ge=0, description="Maximum backoff")


class BillingConfig(BaseModel):
    """Main billing configuration"""

    model_config = ConfigDict(frozen=True)

    currency: CurrencyConfig = Field(default_factory=CurrencyConfig)
    invoice: InvoiceConfig = Field(default_factory=InvoiceConfig)
    subscription: SubscriptionConfig = Field(default_factory=SubscriptionConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "BillingConfig":
        """Create configuration from application settings."""
        billing = (settings or get_settings()).billing

        return cls(
            currency=CurrencyConfig(
                default_currency=billing.default_currency,
                default_locale=billing.default_locale,
            ),
            invoice=InvoiceConfig(due_days_default=billing.invoice_due_days),
            subscription=SubscriptionConfig(
                proration_enabled=billing.proration_enabled,
                billing_cycle_anchor=billing.billing_cycle_anchor,
            ),
            retry=RetryConfig(
                max_attempts=billing.storage_retry_attempts,
                min_wait_seconds=billing.storage_retry_min_wait_seconds,
                max_wait_seconds=billing.storage_retry_max_wait_seconds,
            ),
        )


# Global configuration instance
_billing_config: BillingConfig | None = None


def get_billing_config() -> BillingConfig:
    """Get billing configuration instance"""
    global _billing_config
    if _billing_config is None:
        _billing_config = BillingConfig.from_settings()
    return _billing_config


def set_billing_config(config: BillingConfig | None) -> None:
    """Set billing configuration (useful for testing)"""
    global _billing_config
    _billing_config = config
