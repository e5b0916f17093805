"""
Billing integration service.

Single entry point for the UI and payment-provider layers. Composes the
catalog, payment method, invoice, subscription and special pickup services
over one store, clock and configuration. Every amount crossing this
boundary is a major-unit ``Decimal``.
"""

from datetime import date
from decimal import Decimal

import structlog

from curbside.billing.catalog.models import Service
from curbside.billing.catalog.service import CatalogService
from curbside.billing.clock import Clock, SystemClock
from curbside.billing.config import BillingConfig, get_billing_config
from curbside.billing.invoicing.models import Invoice
from curbside.billing.invoicing.service import InvoiceService
from curbside.billing.payment_methods.models import PaymentMethod, PaymentMethodCreateRequest
from curbside.billing.payment_methods.service import PaymentMethodService
from curbside.billing.pickups.models import SpecialPickupRequest
from curbside.billing.pickups.service import PickupRequestService
from curbside.billing.storage import BillingStore, InMemoryBillingStore
from curbside.billing.subscriptions.models import Subscription
from curbside.billing.subscriptions.service import SubscriptionService

logger = structlog.get_logger(__name__)


class BillingIntegrationService:
    """Operation set consumed by the outer layers."""

    def __init__(
        self,
        store: BillingStore,
        catalog: CatalogService | None = None,
        clock: Clock | None = None,
        config: BillingConfig | None = None,
    ) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.config = config or get_billing_config()
        self.catalog_service = catalog or CatalogService()
        self.payment_method_service = PaymentMethodService(store, config=self.config)
        self.invoice_service = InvoiceService(store, clock=self.clock, config=self.config)
        self.subscription_service = SubscriptionService(
            store,
            catalog=self.catalog_service,
            invoices=self.invoice_service,
            clock=self.clock,
            config=self.config,
        )
        self.pickup_service = PickupRequestService(
            store,
            catalog=self.catalog_service,
            invoices=self.invoice_service,
            clock=self.clock,
            config=self.config,
        )

    # Catalog

    def list_products(self) -> list[Service]:
        return self.catalog_service.list_products()

    def get_service(self, service_id: str) -> Service:
        return self.catalog_service.get_service(service_id)

    # Payment methods

    async def list_payment_methods(self, customer_id: str) -> list[PaymentMethod]:
        return await self.payment_method_service.list_payment_methods(customer_id)

    async def get_payment_method(self, payment_method_id: str) -> PaymentMethod:
        return await self.payment_method_service.get_payment_method(payment_method_id)

    async def attach_payment_method(
        self,
        customer_id: str,
        method: PaymentMethodCreateRequest,
        *,
        idempotency_key: str | None = None,
    ) -> PaymentMethod:
        return await self.payment_method_service.attach_payment_method(
            customer_id, method, idempotency_key=idempotency_key
        )

    async def detach_payment_method(self, payment_method_id: str) -> PaymentMethod:
        return await self.payment_method_service.detach_payment_method(payment_method_id)

    async def set_primary_payment_method(self, payment_method_id: str) -> PaymentMethod:
        return await self.payment_method_service.set_primary_payment_method(payment_method_id)

    # Properties

    async def register_property(self, property_id: str, customer_id: str) -> str:
        return await self.subscription_service.register_property(property_id, customer_id)

    # Subscriptions

    async def create_subscription(
        self,
        service: Service | str,
        property_id: str,
        payment_method_id: str,
        quantity: int = 1,
        use_sticker: bool = False,
        *,
        idempotency_key: str | None = None,
    ) -> Subscription:
        return await self.subscription_service.create_subscription(
            service,
            property_id,
            payment_method_id,
            quantity,
            use_sticker,
            idempotency_key=idempotency_key,
        )

    async def get_subscription(self, subscription_id: str) -> Subscription:
        return await self.subscription_service.get_subscription(subscription_id)

    async def change_subscription_quantity(
        self,
        subscription_id: str,
        quantity: int,
        *,
        idempotency_key: str | None = None,
    ) -> Subscription:
        return await self.subscription_service.change_quantity(
            subscription_id, quantity, idempotency_key=idempotency_key
        )

    async def cancel_subscription(
        self, subscription_id: str, *, idempotency_key: str | None = None
    ) -> Subscription:
        return await self.subscription_service.cancel(
            subscription_id, idempotency_key=idempotency_key
        )

    async def cancel_all_subscriptions_for_property(
        self, property_id: str, *, idempotency_key: str | None = None
    ) -> list[Subscription]:
        return await self.subscription_service.cancel_all_for_property(
            property_id, idempotency_key=idempotency_key
        )

    async def restart_all_subscriptions_for_property(
        self, property_id: str, *, idempotency_key: str | None = None
    ) -> list[Subscription]:
        return await self.subscription_service.restart_all_for_property(
            property_id, idempotency_key=idempotency_key
        )

    async def pause_subscriptions_for_property(
        self, property_id: str, until: date, *, idempotency_key: str | None = None
    ) -> list[Subscription]:
        return await self.subscription_service.pause_for_property(
            property_id, until, idempotency_key=idempotency_key
        )

    async def resume_subscriptions_for_property(
        self, property_id: str, *, idempotency_key: str | None = None
    ) -> list[Subscription]:
        return await self.subscription_service.resume_for_property(
            property_id, idempotency_key=idempotency_key
        )

    async def update_subscription_payment_method(
        self,
        subscription_id: str,
        payment_method_id: str,
        *,
        idempotency_key: str | None = None,
    ) -> Subscription:
        return await self.subscription_service.update_payment_method(
            subscription_id, payment_method_id, idempotency_key=idempotency_key
        )

    async def update_subscriptions_for_property(
        self, property_id: str, payment_method_id: str
    ) -> list[Subscription]:
        """Move every active subscription on a property to an existing payment method."""
        await self.payment_method_service.get_payment_method(payment_method_id)
        return await self.subscription_service.update_payment_method_for_property(
            property_id, payment_method_id
        )

    async def update_all_subscriptions(
        self, customer_id: str, payment_method_id: str
    ) -> list[Subscription]:
        """Move every active subscription of a customer to an existing payment method."""
        await self.payment_method_service.get_payment_method(payment_method_id)
        updated = await self.subscription_service.update_payment_method_for_customer(
            customer_id, payment_method_id
        )
        logger.info(
            "customer_subscriptions_payment_method_updated",
            customer_id=customer_id,
            payment_method_id=payment_method_id,
            count=len(updated),
        )
        return updated

    async def list_subscriptions(self, customer_id: str) -> list[Subscription]:
        return await self.subscription_service.list_subscriptions(customer_id)

    async def purchase_one_time_service(
        self,
        service: Service | str,
        property_id: str,
        quantity: int = 1,
        *,
        idempotency_key: str | None = None,
    ) -> Invoice:
        return await self.subscription_service.purchase_one_time_service(
            service, property_id, quantity, idempotency_key=idempotency_key
        )

    # Special pickups

    def list_special_pickup_services(self) -> list[Service]:
        return self.pickup_service.list_services()

    async def request_special_pickup(
        self,
        service_id: str,
        property_id: str,
        pickup_date: date,
        *,
        idempotency_key: str | None = None,
    ) -> SpecialPickupRequest:
        return await self.pickup_service.request_special_pickup(
            service_id, property_id, pickup_date, idempotency_key=idempotency_key
        )

    async def list_special_pickup_requests(self, customer_id: str) -> list[SpecialPickupRequest]:
        return await self.pickup_service.list_requests(customer_id)

    # Invoices

    async def list_invoices(self, customer_id: str) -> list[Invoice]:
        return await self.invoice_service.list_invoices(customer_id)

    async def get_invoice(self, invoice_id: str) -> Invoice:
        return await self.invoice_service.get_invoice(invoice_id)

    async def create_invoice(
        self,
        property_id: str,
        amount: Decimal | int | str,
        description: str,
        *,
        idempotency_key: str | None = None,
    ) -> Invoice:
        return await self.invoice_service.create_invoice(
            property_id, amount, description, idempotency_key=idempotency_key
        )

    async def pay_invoice(
        self,
        invoice_id: str,
        payment_method_id: str,
        *,
        idempotency_key: str | None = None,
    ) -> Invoice:
        return await self.invoice_service.pay_invoice(
            invoice_id, payment_method_id, idempotency_key=idempotency_key
        )

    async def pay_outstanding_balance(
        self,
        customer_id: str,
        payment_method_id: str,
        property_id: str | None = None,
    ) -> list[Invoice]:
        return await self.invoice_service.pay_outstanding_balance(
            customer_id, payment_method_id, property_id
        )

    async def mark_overdue_invoices(self, as_of: date | None = None) -> list[Invoice]:
        return await self.invoice_service.mark_overdue_invoices(as_of)


def create_billing_service(
    store: BillingStore | None = None,
    clock: Clock | None = None,
    config: BillingConfig | None = None,
    catalog: CatalogService | None = None,
) -> BillingIntegrationService:
    """Build the billing service, defaulting to an in-memory store."""
    return BillingIntegrationService(
        store or InMemoryBillingStore(),
        catalog=catalog,
        clock=clock,
        config=config,
    )
