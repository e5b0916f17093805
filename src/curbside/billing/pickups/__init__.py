"""Special pickup requests."""

from curbside.billing.pickups.models import PickupRequestStatus, SpecialPickupRequest

__all__ = [
    "PickupRequestStatus",
    "SpecialPickupRequest",
]
