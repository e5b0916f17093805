"""Customer payment methods."""

from curbside.billing.payment_methods.models import (
    CardBrand,
    PaymentMethod,
    PaymentMethodCreateRequest,
    PaymentMethodType,
)

__all__ = [
    "CardBrand",
    "PaymentMethod",
    "PaymentMethodCreateRequest",
    "PaymentMethodType",
]
