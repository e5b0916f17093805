"""
Subscription lifecycle service.

State machine per subscription::

    active <-> paused
    active | paused -> canceled      (terminal, except restart)
    canceled -> active               (restart, quantity 1)

Every command runs under the property lock inside one store transaction, so
subscription changes and the invoices they trigger are saved together. The
base-fee cascade (a property's base fee is canceled with its last active
equipment subscription) happens inside the same transaction as the cancel
that triggers it.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import structlog

from curbside.billing.catalog.models import Service, ServiceCategory
from curbside.billing.catalog.service import CatalogService
from curbside.billing.clock import Clock, SystemClock
from curbside.billing.config import BillingConfig, get_billing_config
from curbside.billing.exceptions import (
    InvalidArgumentError,
    PaymentMethodNotFoundError,
    PropertyNotFoundError,
    SubscriptionNotFoundError,
    SubscriptionStateError,
)
from curbside.billing.invoicing.models import Invoice
from curbside.billing.invoicing.service import InvoiceService
from curbside.billing.payment_methods.models import PaymentMethod
from curbside.billing.storage import BillingStore, run_transactional
from curbside.billing.subscriptions.models import (
    EquipmentStatus,
    EquipmentType,
    Subscription,
    SubscriptionStatus,
)
from curbside.billing.subscriptions.proration import add_months, first_of_next_month, prorate
from curbside.logging import log_audit_event
from curbside.settings import BillingCycleAnchor

logger = structlog.get_logger(__name__)


def generate_subscription_id() -> str:
    return f"sub_{uuid4().hex[:24]}"


class SubscriptionService:
    """Creates and mutates subscriptions and emits the invoices they trigger."""

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

    async def _run(
        self,
        property_id: str,
        operation: str,
        work,
        idempotency_key: str | None = None,
        arguments: dict | None = None,
        customer_id: str | None = None,
    ):
        """
        Run a unit under the property lock.

        Units that point subscriptions at a payment method also hold the
        method owner's customer lock, taken before the property lock.
        """

        async def unit():
            return await run_transactional(
                self.store,
                self.store.property_locks,
                property_id,
                operation,
                work,
                retry=self.config.retry,
                idempotency_key=idempotency_key,
                arguments=arguments,
            )

        if customer_id is None:
            return await unit()
        async with self.store.customer_locks.hold(customer_id):
            return await unit()

    async def _load_payment_method(self, payment_method_id: str) -> PaymentMethod:
        payment_method = await self.store.get_payment_method(payment_method_id)
        if payment_method is None:
            raise PaymentMethodNotFoundError(
                f"Payment method {payment_method_id} not found",
                payment_method_id=payment_method_id,
            )
        return payment_method

    async def _charge(
        self,
        subscription: Subscription,
        amount_minor: int | Decimal,
        description: str,
    ) -> Invoice | None:
        """Issue an invoice unless the rounded amount is zero."""
        if self.invoices.money.minor_to_major(amount_minor) <= 0:
            return None
        return await self.invoices.issue_invoice(
            subscription.property_id,
            amount_minor,
            description,
            subscription_id=subscription.id,
        )

    async def _charge_equipment_fee(self, subscription: Subscription, units: int) -> Invoice | None:
        service = self.catalog.get_service(subscription.service_id)
        use_sticker = subscription.equipment_type == EquipmentType.OWN_CAN
        label = "One-Time Sticker Fee" if use_sticker else "One-Time Setup Fee"
        return await self._charge(
            subscription,
            service.equipment_fee(use_sticker) * units,
            f"{label}: {subscription.service_name} (x{units})",
        )

    def _initial_billing_date(self, today: date) -> date:
        if self.config.subscription.billing_cycle_anchor == BillingCycleAnchor.ANNIVERSARY:
            return add_months(today, 1)
        return first_of_next_month(today)

    async def _load(self, subscription_id: str) -> Subscription:
        subscription = await self.store.get_subscription(subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(
                f"Subscription {subscription_id} not found", subscription_id=subscription_id
            )
        return subscription

    def _log_equipment_move(self, subscription: Subscription, units: int, delivery: bool) -> None:
        if subscription.equipment_type != EquipmentType.RENTAL or units <= 0:
            return
        logger.info(
            "equipment_delivery_required" if delivery else "equipment_pickup_required",
            property_id=subscription.property_id,
            subscription_id=subscription.id,
            service_name=subscription.service_name,
            units=units,
        )

    async def get_subscription(self, subscription_id: str) -> Subscription:
        return await self._load(subscription_id)

    async def list_subscriptions(self, customer_id: str) -> list[Subscription]:
        return await self.store.list_subscriptions(customer_id=customer_id)

    async def list_subscriptions_for_property(self, property_id: str) -> list[Subscription]:
        return await self.store.list_subscriptions(property_id=property_id)

    async def register_property(self, property_id: str, customer_id: str) -> str:
        """Record the owner of a property. Re-registering to the same owner is a no-op."""

        async def work() -> str:
            owner = await self.store.get_property_owner(property_id)
            if owner is not None and owner != customer_id:
                raise InvalidArgumentError(
                    f"Property {property_id} is already registered to another customer",
                    argument="property_id",
                    value=property_id,
                )
            if owner is None:
                await self.store.set_property_owner(property_id, customer_id)
                logger.info("property_registered", property_id=property_id, customer_id=customer_id)
            return property_id

        return await self._run(property_id, "register_property", work)

    async def get_property_owner(self, property_id: str) -> str:
        owner = await self.store.get_property_owner(property_id)
        if owner is None:
            raise PropertyNotFoundError(
                f"Property {property_id} is not registered", property_id=property_id
            )
        return owner

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
        """
        Start a recurring service on a property.

        Bills the first period immediately and, for equipment services, the
        one-time setup or sticker fee. The property joins the billing date
        its other active subscriptions already share.

        Raises:
            CatalogMismatchError: Unknown service
            InvalidArgumentError: Quantity below 1 or a one-time service
            PaymentMethodNotFoundError: Unknown payment method
        """
        catalog_service = self.catalog.resolve(service)
        if not catalog_service.is_recurring:
            raise InvalidArgumentError(
                f"{catalog_service.name} is a one-time service and cannot be subscribed to",
                argument="service",
                value=catalog_service.id,
            )
        if quantity < 1:
            raise InvalidArgumentError(
                "Quantity must be at least 1", argument="quantity", value=quantity
            )

        owner = (await self._load_payment_method(payment_method_id)).customer_id

        async def work() -> Subscription:
            payment_method = await self._load_payment_method(payment_method_id)

            customer_id = await self.store.get_property_owner(property_id)
            if customer_id is None:
                customer_id = payment_method.customer_id
                await self.store.set_property_owner(property_id, customer_id)

            today = self.clock.today()
            active_dates = [
                s.next_billing_date
                for s in await self.store.list_subscriptions(property_id=property_id)
                if s.is_active()
            ]
            next_billing_date = min(active_dates) if active_dates else self._initial_billing_date(today)

            has_equipment = catalog_service.has_equipment
            subscription = Subscription(
                id=generate_subscription_id(),
                customer_id=customer_id,
                property_id=property_id,
                service_id=catalog_service.id,
                service_name=catalog_service.name,
                category=catalog_service.category,
                status=SubscriptionStatus.ACTIVE,
                quantity=quantity,
                unit_price=catalog_service.unit_price,
                total_price=catalog_service.unit_price * quantity,
                payment_method_id=payment_method_id,
                start_date=today,
                next_billing_date=next_billing_date,
                equipment_type=(
                    (EquipmentType.OWN_CAN if use_sticker else EquipmentType.RENTAL)
                    if has_equipment
                    else None
                ),
                equipment_status=EquipmentStatus.AT_PROPERTY if has_equipment else None,
            )

            await self._charge(
                subscription,
                subscription.total_price,
                f"First Month: {catalog_service.name} (x{quantity})",
            )
            if has_equipment:
                await self._charge_equipment_fee(subscription, quantity)

            await self.store.save_subscription(subscription)

            logger.info(
                "subscription_created",
                subscription_id=subscription.id,
                property_id=property_id,
                service_id=catalog_service.id,
                quantity=quantity,
                next_billing_date=next_billing_date.isoformat(),
            )
            log_audit_event(
                "subscription.created",
                "billing",
                customer_id=customer_id,
                property_id=property_id,
                resource_type="subscription",
                resource_id=subscription.id,
            )
            self._log_equipment_move(subscription, quantity, delivery=True)
            return subscription

        return await self._run(
            property_id,
            "create_subscription",
            work,
            idempotency_key,
            arguments={
                "service_id": catalog_service.id,
                "payment_method_id": payment_method_id,
                "quantity": quantity,
                "use_sticker": use_sticker,
            },
            customer_id=owner,
        )

    async def change_quantity(
        self,
        subscription_id: str,
        new_quantity: int,
        *,
        idempotency_key: str | None = None,
    ) -> Subscription:
        """
        Set a subscription's quantity.

        Zero cancels. An increase bills equipment fees for the added units and
        a prorated charge for the rest of the current cycle; a decrease bills
        nothing and refunds nothing.
        """
        if new_quantity < 0:
            raise InvalidArgumentError(
                "Quantity cannot be negative", argument="quantity", value=new_quantity
            )
        if new_quantity == 0:
            return await self.cancel(subscription_id, idempotency_key=idempotency_key)

        property_id = (await self._load(subscription_id)).property_id

        async def work() -> Subscription:
            subscription = await self._load(subscription_id)
            if subscription.status == SubscriptionStatus.CANCELED:
                raise SubscriptionStateError(
                    f"Subscription {subscription_id} is canceled; restart it before changing quantity",
                    current_state=subscription.status.value,
                    requested_state=SubscriptionStatus.ACTIVE.value,
                )

            delta = new_quantity - subscription.quantity
            if delta == 0:
                return subscription

            if delta > 0:
                if subscription.has_equipment:
                    await self._charge_equipment_fee(subscription, delta)
                if self.config.subscription.proration_enabled:
                    proration = prorate(
                        subscription.unit_price,
                        delta,
                        self.clock.today(),
                        subscription.next_billing_date,
                    )
                    if proration.is_billable:
                        await self._charge(
                            subscription,
                            proration.amount_minor,
                            f"Prorated charge for adding {delta}x {subscription.service_name}",
                        )
                    else:
                        logger.debug(
                            "proration_skipped",
                            subscription_id=subscription_id,
                            days_remaining=proration.days_remaining,
                            days_in_cycle=proration.days_in_cycle,
                        )

            updated = subscription.evolve(
                quantity=new_quantity,
                total_price=subscription.unit_price * new_quantity,
            )
            await self.store.save_subscription(updated)

            logger.info(
                "subscription_quantity_changed",
                subscription_id=subscription_id,
                old_quantity=subscription.quantity,
                new_quantity=new_quantity,
            )
            log_audit_event(
                "subscription.quantity_changed",
                "billing",
                customer_id=updated.customer_id,
                property_id=updated.property_id,
                resource_type="subscription",
                resource_id=subscription_id,
                delta=delta,
            )
            self._log_equipment_move(updated, abs(delta), delivery=delta > 0)
            return updated

        return await self._run(
            property_id,
            "change_quantity",
            work,
            idempotency_key,
            arguments={"subscription_id": subscription_id, "quantity": new_quantity},
        )

    async def _cancel_one(self, subscription: Subscription) -> Subscription:
        if subscription.status == SubscriptionStatus.CANCELED:
            return subscription

        canceled = subscription.evolve(
            status=SubscriptionStatus.CANCELED,
            quantity=0,
            total_price=0,
            equipment_status=(
                EquipmentStatus.RETRIEVED if subscription.has_equipment else None
            ),
        )
        await self.store.save_subscription(canceled)

        logger.info(
            "subscription_canceled",
            subscription_id=subscription.id,
            property_id=subscription.property_id,
            service_id=subscription.service_id,
        )
        log_audit_event(
            "subscription.canceled",
            "billing",
            customer_id=subscription.customer_id,
            property_id=subscription.property_id,
            resource_type="subscription",
            resource_id=subscription.id,
        )
        self._log_equipment_move(subscription, subscription.quantity, delivery=False)
        return canceled

    async def _cascade_base_fee(self, property_id: str) -> list[Subscription]:
        """Cancel the base fee once no equipment subscription on the property is active."""
        siblings = await self.store.list_subscriptions(property_id=property_id)
        if any(s.category == ServiceCategory.BASE_SERVICE and s.is_active() for s in siblings):
            return []

        canceled = []
        for sibling in siblings:
            if sibling.category == ServiceCategory.BASE_FEE and sibling.is_live():
                canceled.append(await self._cancel_one(sibling))
                logger.info(
                    "base_fee_cascade_canceled",
                    subscription_id=sibling.id,
                    property_id=property_id,
                )
        return canceled

    async def cancel(
        self,
        subscription_id: str,
        *,
        idempotency_key: str | None = None,
    ) -> Subscription:
        """Cancel one subscription, and the property's base fee if this was its last equipment."""
        property_id = (await self._load(subscription_id)).property_id

        async def work() -> Subscription:
            subscription = await self._load(subscription_id)
            was_live = subscription.is_live()
            canceled = await self._cancel_one(subscription)
            if was_live and canceled.category == ServiceCategory.BASE_SERVICE:
                await self._cascade_base_fee(property_id)
            return canceled

        return await self._run(
            property_id,
            "cancel_subscription",
            work,
            idempotency_key,
            arguments={"subscription_id": subscription_id},
        )

    async def cancel_all_for_property(
        self,
        property_id: str,
        *,
        idempotency_key: str | None = None,
    ) -> list[Subscription]:
        """Cancel every active or paused subscription on a property."""

        async def work() -> list[Subscription]:
            canceled = []
            for subscription in await self.store.list_subscriptions(property_id=property_id):
                if subscription.is_live():
                    canceled.append(await self._cancel_one(subscription))
            return canceled

        return await self._run(property_id, "cancel_all_for_property", work, idempotency_key)

    async def restart_all_for_property(
        self,
        property_id: str,
        *,
        idempotency_key: str | None = None,
    ) -> list[Subscription]:
        """
        Reactivate every canceled subscription on a property at quantity 1.

        Equipment that was retrieved has to be delivered again, so its setup
        or sticker fee is billed again. All restarted subscriptions share a
        billing date on the first of next month.
        """

        async def work() -> list[Subscription]:
            today = self.clock.today()
            next_billing_date = first_of_next_month(today)

            restarted = []
            for subscription in await self.store.list_subscriptions(property_id=property_id):
                if subscription.status != SubscriptionStatus.CANCELED:
                    continue

                if subscription.has_equipment and subscription.equipment_status == EquipmentStatus.RETRIEVED:
                    await self._charge_equipment_fee(subscription, 1)
                    self._log_equipment_move(subscription, 1, delivery=True)

                updated = subscription.evolve(
                    status=SubscriptionStatus.ACTIVE,
                    quantity=1,
                    total_price=subscription.unit_price,
                    start_date=today,
                    next_billing_date=next_billing_date,
                    paused_until=None,
                    equipment_status=(
                        EquipmentStatus.AT_PROPERTY if subscription.has_equipment else None
                    ),
                )
                await self.store.save_subscription(updated)
                restarted.append(updated)

                logger.info(
                    "subscription_restarted",
                    subscription_id=subscription.id,
                    property_id=property_id,
                    next_billing_date=next_billing_date.isoformat(),
                )
            return restarted

        return await self._run(property_id, "restart_all_for_property", work, idempotency_key)

    async def pause_for_property(
        self,
        property_id: str,
        until: date,
        *,
        idempotency_key: str | None = None,
    ) -> list[Subscription]:
        """Pause every active subscription on a property. Billing dates are not deferred."""
        if until < self.clock.today():
            raise InvalidArgumentError(
                "Pause end date cannot be in the past", argument="until", value=until.isoformat()
            )

        async def work() -> list[Subscription]:
            paused = []
            for subscription in await self.store.list_subscriptions(property_id=property_id):
                if not subscription.is_active():
                    continue
                updated = subscription.evolve(status=SubscriptionStatus.PAUSED, paused_until=until)
                await self.store.save_subscription(updated)
                paused.append(updated)

            logger.info(
                "subscriptions_paused",
                property_id=property_id,
                count=len(paused),
                paused_until=until.isoformat(),
            )
            return paused

        return await self._run(
            property_id, "pause_for_property", work, idempotency_key, arguments={"until": until}
        )

    async def resume_for_property(
        self,
        property_id: str,
        *,
        idempotency_key: str | None = None,
    ) -> list[Subscription]:
        """Resume every paused subscription on a property."""

        async def work() -> list[Subscription]:
            resumed = []
            for subscription in await self.store.list_subscriptions(property_id=property_id):
                if subscription.status != SubscriptionStatus.PAUSED:
                    continue
                updated = subscription.evolve(status=SubscriptionStatus.ACTIVE, paused_until=None)
                await self.store.save_subscription(updated)
                resumed.append(updated)

            logger.info("subscriptions_resumed", property_id=property_id, count=len(resumed))
            return resumed

        return await self._run(property_id, "resume_for_property", work, idempotency_key)

    async def update_payment_method(
        self,
        subscription_id: str,
        payment_method_id: str,
        *,
        idempotency_key: str | None = None,
    ) -> Subscription:
        """Point a subscription at another payment method."""
        property_id = (await self._load(subscription_id)).property_id
        owner = (await self._load_payment_method(payment_method_id)).customer_id

        async def work() -> Subscription:
            subscription = await self._load(subscription_id)
            updated = subscription.evolve(payment_method_id=payment_method_id)
            await self.store.save_subscription(updated)
            logger.info(
                "subscription_payment_method_updated",
                subscription_id=subscription_id,
                payment_method_id=payment_method_id,
            )
            return updated

        return await self._run(
            property_id,
            "update_payment_method",
            work,
            idempotency_key,
            arguments={"subscription_id": subscription_id, "payment_method_id": payment_method_id},
            customer_id=owner,
        )

    async def update_payment_method_for_property(
        self, property_id: str, payment_method_id: str
    ) -> list[Subscription]:
        """Move every active subscription on a property to one payment method."""
        owner = (await self._load_payment_method(payment_method_id)).customer_id

        async def work() -> list[Subscription]:
            updated = []
            for subscription in await self.store.list_subscriptions(property_id=property_id):
                if subscription.is_active():
                    moved = subscription.evolve(payment_method_id=payment_method_id)
                    await self.store.save_subscription(moved)
                    updated.append(moved)
            return updated

        return await self._run(
            property_id, "update_payment_method_for_property", work, customer_id=owner
        )

    async def update_payment_method_for_customer(
        self, customer_id: str, payment_method_id: str
    ) -> list[Subscription]:
        """Move every active subscription of a customer to one payment method."""
        updated: list[Subscription] = []
        for property_id in await self.store.list_properties(customer_id):
            updated.extend(await self.update_payment_method_for_property(property_id, payment_method_id))
        return updated

    async def purchase_one_time_service(
        self,
        service: Service | str,
        property_id: str,
        quantity: int = 1,
        *,
        idempotency_key: str | None = None,
    ) -> Invoice:
        """Bill a standalone service once. No subscription is created."""
        catalog_service = self.catalog.resolve(service)
        if catalog_service.is_recurring:
            raise InvalidArgumentError(
                f"{catalog_service.name} is billed monthly; subscribe to it instead",
                argument="service",
                value=catalog_service.id,
            )
        if quantity < 1:
            raise InvalidArgumentError(
                "Quantity must be at least 1", argument="quantity", value=quantity
            )

        async def work() -> Invoice:
            invoice = await self.invoices.issue_invoice(
                property_id,
                catalog_service.unit_price * quantity,
                f"One-Time Service: {catalog_service.name} (x{quantity})",
            )
            logger.info(
                "one_time_service_purchased",
                property_id=property_id,
                service_id=catalog_service.id,
                quantity=quantity,
                invoice_id=invoice.id,
            )
            return invoice

        return await self._run(
            property_id,
            "purchase_one_time_service",
            work,
            idempotency_key,
            arguments={"service_id": catalog_service.id, "quantity": quantity},
        )
