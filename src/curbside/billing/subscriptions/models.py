"""
Subscription models.

Unit and total prices are stored in minor units; ``price`` and ``total``
expose the major-unit values for collaborators.
"""

from datetime import date
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from curbside.billing.catalog.models import ServiceCategory
from curbside.billing.money_utils import money_handler


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle state."""

    ACTIVE = "active"
    PAUSED = "paused"
    CANCELED = "canceled"


class EquipmentType(str, Enum):
    """Who supplies the can."""

    OWN_CAN = "own_can"
    RENTAL = "rental"


class EquipmentStatus(str, Enum):
    """Where the physical equipment is."""

    AT_PROPERTY = "at_property"
    RETRIEVED = "retrieved"


class Subscription(BaseModel):
    """Recurring service subscription on a property."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(description="Subscription identifier")
    customer_id: str = Field(description="Customer who owns the property")
    property_id: str = Field(description="Serviced property")
    service_id: str = Field(description="Catalog service identifier")
    service_name: str = Field(description="Catalog service name at creation")
    category: ServiceCategory = Field(description="Catalog category of the service")
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    quantity: int = Field(ge=0)
    unit_price: int = Field(ge=0, description="Price per unit, minor units")
    total_price: int = Field(ge=0, description="unit_price x quantity, minor units")
    payment_method_id: str
    start_date: date
    next_billing_date: date
    paused_until: date | None = None
    equipment_type: EquipmentType | None = None
    equipment_status: EquipmentStatus | None = None

    @model_validator(mode="after")
    def check_equipment_fields(self) -> "Subscription":
        has_fields = self.equipment_type is not None and self.equipment_status is not None
        if self.category == ServiceCategory.BASE_SERVICE:
            if not has_fields:
                raise ValueError("base_service subscriptions require equipment type and status")
        elif self.equipment_type is not None or self.equipment_status is not None:
            raise ValueError("Equipment fields apply only to base_service subscriptions")
        return self

    @model_validator(mode="after")
    def check_pricing(self) -> "Subscription":
        canceled = self.status == SubscriptionStatus.CANCELED
        if canceled != (self.quantity == 0):
            raise ValueError("A subscription has quantity 0 exactly when it is canceled")
        if self.total_price != self.unit_price * self.quantity:
            raise ValueError("total_price must equal unit_price x quantity")
        return self

    def evolve(self, **changes: object) -> "Subscription":
        """Validated copy with ``changes`` applied in one step."""
        data = self.model_dump(exclude={"price", "total"})
        data.update(changes)
        return Subscription.model_validate(data)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def price(self) -> Decimal:
        return money_handler.minor_to_major(self.unit_price)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> Decimal:
        return money_handler.minor_to_major(self.total_price)

    @property
    def has_equipment(self) -> bool:
        return self.category == ServiceCategory.BASE_SERVICE

    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE

    def is_live(self) -> bool:
        """Active or paused, i.e. not canceled."""
        return self.status != SubscriptionStatus.CANCELED


class ProrationResult(BaseModel):
    """Outcome of a mid-cycle quantity increase."""

    model_config = ConfigDict(frozen=True)

    days_in_cycle: int
    days_remaining: int
    amount_minor: Decimal = Field(description="Unrounded charge in minor units")

    @property
    def is_billable(self) -> bool:
        return 0 < self.days_remaining < self.days_in_cycle and self.amount_minor > 0
