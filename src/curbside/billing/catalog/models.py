"""
Product catalog models.

Prices are integer minor units (cents). Catalog entries are immutable.
"""

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field

from curbside.billing.money_utils import money_handler


class ServiceCategory(str, Enum):
    """Catalog category."""

    BASE_FEE = "base_fee"
    BASE_SERVICE = "base_service"
    UPGRADE = "upgrade"
    STANDALONE = "standalone"
    SPECIAL_PICKUP = "special_pickup"


class BillingInterval(str, Enum):
    """Recurring billing interval."""

    MONTH = "month"


class Service(BaseModel):
    """Purchasable service in the catalog."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="forbid")

    id: str = Field(description="Service identifier")
    name: str = Field(description="Display name", min_length=1)
    description: str = Field("", description="Customer-facing description")
    category: ServiceCategory = Field(description="Catalog category")
    unit_price: int = Field(ge=0, description="Price per unit per interval, minor units")
    setup_fee: int | None = Field(None, ge=0, description="One-time rental equipment fee, minor units")
    sticker_fee: int | None = Field(
        None, ge=0, description="One-time fee when the customer supplies their own can, minor units"
    )
    interval: BillingInterval | None = Field(
        BillingInterval.MONTH, description="Billing interval; None for one-time services"
    )

    @property
    def is_recurring(self) -> bool:
        return self.interval is not None

    @property
    def has_equipment(self) -> bool:
        return self.category == ServiceCategory.BASE_SERVICE

    def equipment_fee(self, use_sticker: bool) -> int:
        """One-time equipment fee per unit in minor units."""
        fee = self.sticker_fee if use_sticker else self.setup_fee
        return fee or 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def price(self) -> Decimal:
        """Unit price in major units."""
        return money_handler.minor_to_major(self.unit_price)
