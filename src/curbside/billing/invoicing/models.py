"""
Invoice models.

Invoice amounts are major-unit Decimals rounded to two places.
"""

import datetime as dt
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class InvoiceStatus(str, Enum):
    """Invoice payment status."""

    DUE = "Due"
    PAID = "Paid"
    OVERDUE = "Overdue"

    @property
    def is_outstanding(self) -> bool:
        return self in (InvoiceStatus.DUE, InvoiceStatus.OVERDUE)


class Invoice(BaseModel):
    """Ledger entry. Only status, payment_date and payment_method_id change after creation."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(description="Invoice identifier")
    property_id: str = Field(description="Billed property")
    amount: Decimal = Field(ge=0, decimal_places=2, description="Amount in major units")
    date: dt.date = Field(description="Issue date")
    due_date: dt.date = Field(description="Date after which the invoice is overdue")
    status: InvoiceStatus = InvoiceStatus.DUE
    description: str = Field(description="Line description shown to the customer")
    payment_date: dt.date | None = None
    payment_method_id: str | None = None
    subscription_id: str | None = Field(None, description="Subscription that triggered the charge")
