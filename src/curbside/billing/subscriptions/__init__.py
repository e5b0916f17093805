"""Subscription lifecycle."""

from curbside.billing.subscriptions.models import (
    EquipmentStatus,
    EquipmentType,
    ProrationResult,
    Subscription,
    SubscriptionStatus,
)

__all__ = [
    "EquipmentStatus",
    "EquipmentType",
    "ProrationResult",
    "Subscription",
    "SubscriptionStatus",
]
