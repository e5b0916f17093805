"""
Special pickup scheduling.

Bulk items, appliances and electronics are collected on request. Scheduling
records the request and bills it in the same transaction.
"""

import datetime as dt
from uuid import uuid4

import structlog

from curbside.billing.catalog.models import Service
from curbside.billing.catalog.service import CatalogService
from curbside.billing.clock import Clock, SystemClock
from curbside.billing.config import BillingConfig, get_billing_config
from curbside.billing.exceptions import InvalidArgumentError, PropertyNotFoundError
from curbside.billing.invoicing.service import InvoiceService
from curbside.billing.pickups.models import SpecialPickupRequest
from curbside.billing.storage import BillingStore, run_transactional
from curbside.logging import log_audit_event

logger = structlog.get_logger(__name__)


def generate_pickup_request_id() -> str:
    return f"spr_{uuid4().hex[:24]}"


class PickupRequestService:
    """Schedules and lists special pickups."""

    def __init__(
        self,
        store: BillingStore,
        catalog: CatalogService | None = None,
        invoices: InvoiceService | None = None,
        clock: Clock | None = None,
        config: BillingConfig | None = None,
    ) -> None:
        self.store = store
        self.catalog = catalog or CatalogService()
        self.clock = clock or SystemClock()
        self.config = config or get_billing_config()
        self.invoices = invoices or InvoiceService(store, clock=self.clock, config=self.config)

    def list_services(self) -> list[Service]:
        return self.catalog.list_special_pickups()

    async def request_special_pickup(
        self,
        service_id: str,
        property_id: str,
        pickup_date: dt.date,
        *,
        idempotency_key: str | None = None,
    ) -> SpecialPickupRequest:
        """
        Schedule a special pickup and bill it.

        The invoice reads ``Special Pickup: <name>`` and carries the catalog
        price.

        Raises:
            CatalogMismatchError: Unknown special pickup
            InvalidArgumentError: Pickup date in the past
            PropertyNotFoundError: Property has no registered owner
        """
        pickup = self.catalog.get_special_pickup(service_id)
        if pickup_date < self.clock.today():
            raise InvalidArgumentError(
                "Pickup date cannot be in the past",
                argument="pickup_date",
                value=pickup_date.isoformat(),
            )

        async def work() -> SpecialPickupRequest:
            customer_id = await self.store.get_property_owner(property_id)
            if customer_id is None:
                raise PropertyNotFoundError(
                    f"Property {property_id} is not registered", property_id=property_id
                )

            request = SpecialPickupRequest(
                id=generate_pickup_request_id(),
                customer_id=customer_id,
                property_id=property_id,
                service_id=pickup.id,
                service_name=pickup.name,
                price=pickup.unit_price,
                pickup_date=pickup_date,
            )
            invoice = await self.invoices.issue_invoice(
                property_id, pickup.unit_price, f"Special Pickup: {pickup.name}"
            )
            request.invoice_id = invoice.id
            await self.store.add_pickup_request(request)

            logger.info(
                "special_pickup_scheduled",
                request_id=request.id,
                property_id=property_id,
                service_id=pickup.id,
                pickup_date=pickup_date.isoformat(),
            )
            log_audit_event(
                "special_pickup.requested",
                "billing",
                customer_id=customer_id,
                property_id=property_id,
                resource_type="special_pickup",
                resource_id=request.id,
                amount=str(invoice.amount),
            )
            return request

        return await run_transactional(
            self.store,
            self.store.property_locks,
            property_id,
            "request_special_pickup",
            work,
            retry=self.config.retry,
            idempotency_key=idempotency_key,
            arguments={"service_id": pickup.id, "pickup_date": pickup_date},
        )

    async def list_requests(self, customer_id: str) -> list[SpecialPickupRequest]:
        """Pickup requests for every property the customer owns."""
        property_ids = await self.store.list_properties(customer_id)
        return await self.store.list_pickup_requests(property_ids)
