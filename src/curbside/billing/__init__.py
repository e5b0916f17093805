"""
Billing system module.

Provides waste-collection billing capabilities including:
- Service catalog
- Customer payment methods
- Subscription lifecycle with proration and cascading cancellation
- Invoice ledger and payments
- Special pickup requests
"""

from curbside.billing.exceptions import (
    AlreadyPaidError,
    BillingError,
    CatalogMismatchError,
    InUseError,
    InvalidArgumentError,
    InvoiceNotFoundError,
    NotFoundError,
    PaymentMethodNotFoundError,
    PropertyNotFoundError,
    SubscriptionNotFoundError,
    SubscriptionStateError,
    TransientStorageError,
)
from curbside.billing.integration import BillingIntegrationService, create_billing_service

__all__ = [
    # Exceptions
    "BillingError",
    "NotFoundError",
    "SubscriptionNotFoundError",
    "PaymentMethodNotFoundError",
    "InvoiceNotFoundError",
    "PropertyNotFoundError",
    "InvalidArgumentError",
    "InUseError",
    "AlreadyPaidError",
    "CatalogMismatchError",
    "SubscriptionStateError",
    "TransientStorageError",
    # Services
    "BillingIntegrationService",
    "create_billing_service",
]
