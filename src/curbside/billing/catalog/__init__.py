"""Service catalog."""

from curbside.billing.catalog.models import BillingInterval, Service, ServiceCategory
from curbside.billing.catalog.service import (
    DEFAULT_SERVICES,
    DEFAULT_SPECIAL_PICKUPS,
    CatalogService,
)

__all__ = [
    "BillingInterval",
    "CatalogService",
    "DEFAULT_SERVICES",
    "DEFAULT_SPECIAL_PICKUPS",
    "Service",
    "ServiceCategory",
]
