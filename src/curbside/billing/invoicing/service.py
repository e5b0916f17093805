"""
Invoice ledger service.

Invoices are append-only: after creation only the payment status, payment
date and paying method ever change, and ``Paid`` is final.
"""

from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from uuid import uuid4

import structlog

from curbside.billing.clock import Clock, SystemClock
from curbside.billing.config import BillingConfig, get_billing_config
from curbside.billing.exceptions import (
    AlreadyPaidError,
    InvalidArgumentError,
    InvoiceNotFoundError,
    PaymentMethodNotFoundError,
)
from curbside.billing.invoicing.models import Invoice, InvoiceStatus
from curbside.billing.money_utils import MoneyHandler
from curbside.billing.storage import BillingStore, run_transactional
from curbside.logging import log_audit_event

logger = structlog.get_logger(__name__)


class InvoiceService:
    """Creates, pays and lists invoices."""

    def __init__(
        self,
        store: BillingStore,
        clock: Clock | None = None,
        config: BillingConfig | None = None,
    ) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.config = config or get_billing_config()
        self.money = MoneyHandler(
            default_currency=self.config.currency.default_currency,
            default_locale=self.config.currency.default_locale,
        )

    def _generate_invoice_id(self) -> str:
        return f"{self.config.invoice.id_prefix}_{uuid4().hex[:24]}"

    async def issue_invoice(
        self,
        property_id: str,
        amount_minor: int | Decimal,
        description: str,
        subscription_id: str | None = None,
    ) -> Invoice:
        """
        Append an invoice inside the caller's transaction.

        The caller must already hold the property lock and an open
        transaction. The amount is converted from minor units and rounded
        here, at the boundary.
        """
        amount = self.money.minor_to_major(amount_minor)
        return await self._append(property_id, amount, description, subscription_id)

    async def _append(
        self,
        property_id: str,
        amount: Decimal,
        description: str,
        subscription_id: str | None = None,
    ) -> Invoice:
        today = self.clock.today()
        invoice = Invoice(
            id=self._generate_invoice_id(),
            property_id=property_id,
            amount=amount,
            date=today,
            due_date=today + timedelta(days=self.config.invoice.due_days_default),
            status=InvoiceStatus.DUE,
            description=description,
            subscription_id=subscription_id,
        )
        await self.store.add_invoice(invoice)

        logger.info(
            "invoice_created",
            invoice_id=invoice.id,
            property_id=property_id,
            amount=str(invoice.amount),
            description=description,
        )
        log_audit_event(
            "invoice.created",
            "billing",
            property_id=property_id,
            resource_type="invoice",
            resource_id=invoice.id,
            amount=str(invoice.amount),
        )
        return invoice

    async def create_invoice(
        self,
        property_id: str,
        amount: Decimal | int | str,
        description: str,
        *,
        idempotency_key: str | None = None,
    ) -> Invoice:
        """Create a manual invoice. ``amount`` is in major units."""
        try:
            rounded = self.money.round_major(amount)
        except (TypeError, InvalidOperation) as e:
            raise InvalidArgumentError(
                f"Invoice amount must be a Decimal, int or numeric string: {amount!r}",
                argument="amount",
                value=str(amount),
            ) from e
        if rounded < 0:
            raise InvalidArgumentError(
                "Invoice amount cannot be negative", argument="amount", value=str(amount)
            )
        if not description.strip():
            raise InvalidArgumentError("Invoice description is required", argument="description")

        async def work() -> Invoice:
            return await self._append(property_id, rounded, description.strip())

        return await run_transactional(
            self.store,
            self.store.property_locks,
            property_id,
            "create_invoice",
            work,
            retry=self.config.retry,
            idempotency_key=idempotency_key,
            arguments={"amount": str(rounded), "description": description.strip()},
        )

    async def get_invoice(self, invoice_id: str) -> Invoice:
        invoice = await self.store.get_invoice(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(f"Invoice {invoice_id} not found", invoice_id=invoice_id)
        return invoice

    async def pay_invoice(
        self,
        invoice_id: str,
        payment_method_id: str,
        *,
        idempotency_key: str | None = None,
    ) -> Invoice:
        """Mark an invoice paid. Raises ``AlreadyPaidError`` on a second attempt."""
        existing = await self.get_invoice(invoice_id)

        async def work() -> Invoice:
            invoice = await self.get_invoice(invoice_id)
            if invoice.status == InvoiceStatus.PAID:
                raise AlreadyPaidError(
                    f"Invoice {invoice_id} is already paid", invoice_id=invoice_id
                )
            if await self.store.get_payment_method(payment_method_id) is None:
                raise PaymentMethodNotFoundError(
                    f"Payment method {payment_method_id} not found",
                    payment_method_id=payment_method_id,
                )

            paid = invoice.model_copy(
                update={
                    "status": InvoiceStatus.PAID,
                    "payment_date": self.clock.today(),
                    "payment_method_id": payment_method_id,
                }
            )
            await self.store.save_invoice(paid)

            logger.info(
                "invoice_paid",
                invoice_id=invoice_id,
                property_id=paid.property_id,
                amount=str(paid.amount),
            )
            log_audit_event(
                "invoice.paid",
                "billing",
                property_id=paid.property_id,
                resource_type="invoice",
                resource_id=invoice_id,
                payment_method_id=payment_method_id,
                amount=str(paid.amount),
            )
            return paid

        return await run_transactional(
            self.store,
            self.store.property_locks,
            existing.property_id,
            "pay_invoice",
            work,
            retry=self.config.retry,
            idempotency_key=idempotency_key,
            arguments={"invoice_id": invoice_id, "payment_method_id": payment_method_id},
        )

    async def list_invoices(self, customer_id: str) -> list[Invoice]:
        """Invoices for every property the customer owns, most recent first."""
        property_ids = await self.store.list_properties(customer_id)
        return await self.store.list_invoices(property_ids)

    async def list_invoices_for_property(self, property_id: str) -> list[Invoice]:
        return await self.store.list_invoices([property_id])

    async def pay_outstanding_balance(
        self,
        customer_id: str,
        payment_method_id: str,
        property_id: str | None = None,
    ) -> list[Invoice]:
        """Pay every Due or Overdue invoice of a customer, optionally for one property."""
        invoices = await self.list_invoices(customer_id)
        outstanding = [
            inv
            for inv in invoices
            if inv.status.is_outstanding and (property_id is None or inv.property_id == property_id)
        ]

        paid: list[Invoice] = []
        for invoice in reversed(outstanding):
            paid.append(await self.pay_invoice(invoice.id, payment_method_id))

        logger.info(
            "outstanding_balance_paid",
            customer_id=customer_id,
            property_id=property_id,
            invoice_count=len(paid),
        )
        return paid

    async def mark_overdue_invoices(self, as_of: date | None = None) -> list[Invoice]:
        """Move Due invoices past their due date to Overdue."""
        as_of = as_of or self.clock.today()
        candidates = [
            inv
            for inv in await self.store.list_invoices()
            if inv.status == InvoiceStatus.DUE and inv.due_date < as_of
        ]

        updated: list[Invoice] = []
        for candidate in candidates:

            async def work(invoice_id: str = candidate.id) -> Invoice | None:
                invoice = await self.get_invoice(invoice_id)
                if invoice.status != InvoiceStatus.DUE:
                    return None
                overdue = invoice.model_copy(update={"status": InvoiceStatus.OVERDUE})
                await self.store.save_invoice(overdue)
                return overdue

            result = await run_transactional(
                self.store,
                self.store.property_locks,
                candidate.property_id,
                "mark_overdue",
                work,
                retry=self.config.retry,
            )
            if result is not None:
                updated.append(result)

        if updated:
            logger.info("invoices_marked_overdue", count=len(updated), as_of=as_of.isoformat())
        return updated
