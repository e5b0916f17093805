"""Invoice ledger."""

from curbside.billing.invoicing.models import Invoice, InvoiceStatus

__all__ = ["Invoice", "InvoiceStatus"]
