"""
Special pickup request models.

A request is billed once, when it is scheduled.
"""

import datetime as dt
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class PickupRequestStatus(str, Enum):
    """Special pickup request status."""

    SCHEDULED = "Scheduled"


class SpecialPickupRequest(BaseModel):
    """Scheduled one-off collection of bulk items at a property."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(description="Request identifier")
    customer_id: str = Field(description="Owner of the property")
    property_id: str = Field(description="Property the pickup happens at")
    service_id: str = Field(description="Special pickup catalog entry")
    service_name: str = Field(description="Catalog name at request time")
    price: int = Field(ge=0, description="Price charged, minor units")
    pickup_date: dt.date = Field(description="Requested pickup date")
    status: PickupRequestStatus = PickupRequestStatus.SCHEDULED
    invoice_id: str | None = Field(None, description="Invoice billing the pickup")
