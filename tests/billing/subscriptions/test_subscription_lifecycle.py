"""
Subscription lifecycle tests: create, quantity changes, restart, pause,
payment method reassignment and one-time purchases.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest
from structlog.testing import capture_logs

from curbside.billing.catalog.models import Service, ServiceCategory
from curbside.billing.catalog.service import DEFAULT_SERVICES, CatalogService
from curbside.billing.config import BillingConfig, RetryConfig, SubscriptionConfig
from curbside.billing.exceptions import (
    CatalogMismatchError,
    InvalidArgumentError,
    PaymentMethodNotFoundError,
    SubscriptionNotFoundError,
    SubscriptionStateError,
)
from curbside.billing.integration import BillingIntegrationService
from curbside.billing.subscriptions.models import (
    EquipmentStatus,
    EquipmentType,
    Subscription,
    SubscriptionStatus,
)
from curbside.settings import BillingCycleAnchor

pytestmark = pytest.mark.asyncio


async def property_invoices(billing, property_id="prop_1"):
    return await billing.invoice_service.list_invoices_for_property(property_id)


@pytest.mark.integration
class TestCreateSubscription:
    """Test subscription creation and its upfront invoices."""

    async def test_base_fee_and_rental_can(self, billing, property_factory):
        _, base_fee, can = await property_factory()

        invoices = await property_invoices(billing)
        assert [(i.amount, i.description) for i in invoices] == [
            (Decimal("65.00"), "One-Time Setup Fee: Medium Trash Can (64G) (x1)"),
            (Decimal("25.00"), "First Month: Medium Trash Can (64G) (x1)"),
            (Decimal("29.00"), "First Month: Curbside Trash Service (x1)"),
        ]
        assert base_fee.next_billing_date == date(2024, 5, 1)
        assert can.next_billing_date == date(2024, 5, 1)
        assert can.equipment_type == EquipmentType.RENTAL
        assert can.equipment_status == EquipmentStatus.AT_PROPERTY
        assert base_fee.equipment_type is None
        assert can.total == Decimal("25.00")

    async def test_invoices_reference_subscription(self, billing, property_factory):
        _, base_fee, can = await property_factory()

        invoices = await property_invoices(billing)
        assert [i.subscription_id for i in invoices] == [can.id, can.id, base_fee.id]

    async def test_quantity_multiplies_first_month_and_fee(self, billing, payment_method_factory):
        method = await payment_method_factory()

        subscription = await billing.create_subscription(
            "svc_small_can", "prop_1", method.id, quantity=3
        )

        assert subscription.total_price == 6000
        invoices = await property_invoices(billing)
        assert [i.amount for i in invoices] == [Decimal("135.00"), Decimal("60.00")]
        assert invoices[0].description == "One-Time Setup Fee: Small Trash Can (32G) (x3)"

    async def test_own_can_with_zero_sticker_fee_skips_fee_invoice(
        self, billing, payment_method_factory
    ):
        method = await payment_method_factory()

        subscription = await billing.create_subscription(
            "svc_large_can", "prop_1", method.id, use_sticker=True
        )

        assert subscription.equipment_type == EquipmentType.OWN_CAN
        invoices = await property_invoices(billing)
        assert [i.description for i in invoices] == ["First Month: Large Trash Can (96G) (x1)"]

    async def test_upgrade_has_no_equipment(self, billing, payment_method_factory):
        method = await payment_method_factory()

        subscription = await billing.create_subscription("svc_liner", "prop_1", method.id)

        assert subscription.equipment_type is None
        assert subscription.equipment_status is None
        assert len(await property_invoices(billing)) == 1

    async def test_zero_price_service_emits_no_invoice(self, store, clock, billing_config, card_request):
        free = Service(id="svc_free", name="Free Pickup", category=ServiceCategory.UPGRADE, unit_price=0)
        billing = BillingIntegrationService(
            store, catalog=CatalogService([free]), clock=clock, config=billing_config
        )
        method = await billing.attach_payment_method("cust_1", card_request)

        await billing.create_subscription("svc_free", "prop_1", method.id)

        assert await property_invoices(billing) == []

    async def test_shares_billing_date_with_active_subscriptions(
        self, billing, clock, payment_method_factory
    ):
        method = await payment_method_factory()
        base_fee = await billing.create_subscription("svc_base_fee", "prop_1", method.id)
        clock.set(date(2024, 5, 10))

        can = await billing.create_subscription("svc_small_can", "prop_1", method.id)

        assert can.next_billing_date == base_fee.next_billing_date == date(2024, 5, 1)
        assert can.start_date == date(2024, 5, 10)

    async def test_anniversary_anchor(self, store, clock, payment_method_factory):
        config = BillingConfig(
            subscription=SubscriptionConfig(billing_cycle_anchor=BillingCycleAnchor.ANNIVERSARY),
            retry=RetryConfig(min_wait_seconds=0, max_wait_seconds=0),
        )
        billing = BillingIntegrationService(store, clock=clock, config=config)
        method = await payment_method_factory()

        subscription = await billing.create_subscription("svc_base_fee", "prop_1", method.id)

        assert subscription.next_billing_date == date(2024, 5, 16)

    async def test_registers_property_to_payment_method_owner(self, billing, payment_method_factory):
        method = await payment_method_factory("cust_9")

        subscription = await billing.create_subscription("svc_base_fee", "prop_9", method.id)

        assert subscription.customer_id == "cust_9"
        assert await billing.subscription_service.get_property_owner("prop_9") == "cust_9"
        assert [s.id for s in await billing.list_subscriptions("cust_9")] == [subscription.id]

    async def test_quantity_below_one_rejected(self, billing, payment_method_factory):
        method = await payment_method_factory()

        with pytest.raises(InvalidArgumentError):
            await billing.create_subscription("svc_small_can", "prop_1", method.id, quantity=0)

    async def test_unknown_service(self, billing, payment_method_factory):
        method = await payment_method_factory()

        with pytest.raises(CatalogMismatchError):
            await billing.create_subscription("svc_missing", "prop_1", method.id)

    async def test_one_time_service_cannot_be_subscribed(self, billing, payment_method_factory):
        method = await payment_method_factory()

        with pytest.raises(InvalidArgumentError):
            await billing.create_subscription("svc_handyman", "prop_1", method.id)

    async def test_unknown_payment_method_creates_nothing(self, billing):
        with pytest.raises(PaymentMethodNotFoundError):
            await billing.create_subscription("svc_base_fee", "prop_1", "pm_missing")

        assert await property_invoices(billing) == []
        assert await billing.subscription_service.list_subscriptions_for_property("prop_1") == []

    async def test_idempotent_create(self, billing, payment_method_factory):
        method = await payment_method_factory()

        first = await billing.create_subscription(
            "svc_medium_can", "prop_1", method.id, idempotency_key="create-1"
        )
        again = await billing.create_subscription(
            "svc_medium_can", "prop_1", method.id, idempotency_key="create-1"
        )

        assert again.id == first.id
        assert len(await billing.subscription_service.list_subscriptions_for_property("prop_1")) == 1
        assert len(await property_invoices(billing)) == 2

    async def test_same_idempotency_key_on_another_property_creates(
        self, billing, payment_method_factory
    ):
        method = await payment_method_factory()

        first = await billing.create_subscription(
            "svc_base_fee", "prop_1", method.id, idempotency_key="k1"
        )
        second = await billing.create_subscription(
            "svc_base_fee", "prop_2", method.id, idempotency_key="k1"
        )

        assert second.id != first.id
        assert second.property_id == "prop_2"
        on_prop_2 = await billing.subscription_service.list_subscriptions_for_property("prop_2")
        assert [s.id for s in on_prop_2] == [second.id]

    async def test_idempotency_key_reused_for_other_service_rejected(
        self, billing, payment_method_factory
    ):
        method = await payment_method_factory()
        await billing.create_subscription("svc_base_fee", "prop_1", method.id, idempotency_key="k1")

        with pytest.raises(InvalidArgumentError):
            await billing.create_subscription(
                "svc_small_can", "prop_1", method.id, idempotency_key="k1"
            )

        assert len(await billing.subscription_service.list_subscriptions_for_property("prop_1")) == 1

    async def test_waits_for_payment_method_owner_lock(self, billing, store, payment_method_factory):
        method = await payment_method_factory()

        async with store.customer_locks.hold("cust_1"):
            task = asyncio.create_task(
                billing.create_subscription("svc_base_fee", "prop_1", method.id)
            )
            for _ in range(5):
                await asyncio.sleep(0)
            assert not task.done()
            assert await billing.subscription_service.list_subscriptions_for_property("prop_1") == []

        subscription = await task
        assert subscription.payment_method_id == method.id

    async def test_rental_logs_delivery(self, billing, payment_method_factory):
        method = await payment_method_factory()

        with capture_logs() as logs:
            await billing.create_subscription("svc_small_can", "prop_1", method.id, quantity=2)

        deliveries = [e for e in logs if e["event"] == "equipment_delivery_required"]
        assert len(deliveries) == 1
        assert deliveries[0]["units"] == 2


@pytest.mark.integration
class TestChangeQuantity:
    """Test quantity changes and proration."""

    async def test_increase_mid_cycle(self, billing, property_factory):
        _, _, can = await property_factory()

        updated = await billing.change_subscription_quantity(can.id, 2)

        assert updated.quantity == 2
        assert updated.total_price == 5000
        invoices = await property_invoices(billing)
        assert [(i.amount, i.description) for i in invoices[:2]] == [
            (Decimal("12.50"), "Prorated charge for adding 1x Medium Trash Can (64G)"),
            (Decimal("65.00"), "One-Time Setup Fee: Medium Trash Can (64G) (x1)"),
        ]
        assert len(invoices) == 5

    async def test_half_cycle_proration_scales_with_delta(self, billing, property_factory):
        _, _, can = await property_factory()

        await billing.change_subscription_quantity(can.id, 3)

        invoices = await property_invoices(billing)
        assert invoices[0].amount == Decimal("25.00")
        assert invoices[0].description == "Prorated charge for adding 2x Medium Trash Can (64G)"
        assert invoices[1].description == "One-Time Setup Fee: Medium Trash Can (64G) (x2)"

    async def test_no_proration_when_no_days_remain(self, billing, clock, payment_method_factory):
        method = await payment_method_factory()
        can = await billing.create_subscription("svc_medium_can", "prop_1", method.id, use_sticker=True)
        before = len(await property_invoices(billing))
        clock.set(date(2024, 5, 1))

        await billing.change_subscription_quantity(can.id, 2)

        assert len(await property_invoices(billing)) == before

    async def test_no_proration_at_cycle_start(self, billing, clock, payment_method_factory):
        clock.set(date(2024, 4, 1))
        method = await payment_method_factory()
        can = await billing.create_subscription("svc_medium_can", "prop_1", method.id, use_sticker=True)
        before = len(await property_invoices(billing))

        updated = await billing.change_subscription_quantity(can.id, 2)

        assert updated.quantity == 2
        assert len(await property_invoices(billing)) == before

    async def test_fee_type_follows_existing_equipment_type(
        self, store, clock, billing_config, card_request
    ):
        bin_service = Service(
            id="svc_bin",
            name="Bin",
            category=ServiceCategory.BASE_SERVICE,
            unit_price=3000,
            setup_fee=900,
            sticker_fee=300,
        )
        billing = BillingIntegrationService(
            store, catalog=CatalogService([bin_service]), clock=clock, config=billing_config
        )
        method = await billing.attach_payment_method("cust_1", card_request)
        subscription = await billing.create_subscription("svc_bin", "prop_1", method.id, use_sticker=True)

        await billing.change_subscription_quantity(subscription.id, 2)

        invoices = await property_invoices(billing)
        assert invoices[1].description == "One-Time Sticker Fee: Bin (x1)"
        assert invoices[1].amount == Decimal("3.00")

    async def test_proration_disabled(self, store, clock, payment_method_factory):
        config = BillingConfig(
            subscription=SubscriptionConfig(proration_enabled=False),
            retry=RetryConfig(min_wait_seconds=0, max_wait_seconds=0),
        )
        billing = BillingIntegrationService(store, clock=clock, config=config)
        method = await payment_method_factory()
        can = await billing.create_subscription("svc_medium_can", "prop_1", method.id)

        await billing.change_subscription_quantity(can.id, 2)

        descriptions = [i.description for i in await property_invoices(billing)]
        assert not any(d.startswith("Prorated") for d in descriptions)

    async def test_decrease_emits_no_refund(self, billing, payment_method_factory):
        method = await payment_method_factory()
        can = await billing.create_subscription("svc_small_can", "prop_1", method.id, quantity=3)
        before = await property_invoices(billing)

        with capture_logs() as logs:
            updated = await billing.change_subscription_quantity(can.id, 1)

        assert updated.quantity == 1
        assert updated.total_price == 2000
        assert await property_invoices(billing) == before
        assert any(e["event"] == "equipment_pickup_required" and e["units"] == 2 for e in logs)

    async def test_same_quantity_is_noop(self, billing, property_factory):
        _, _, can = await property_factory()

        unchanged = await billing.change_subscription_quantity(can.id, 1)

        assert unchanged == can
        assert len(await property_invoices(billing)) == 3

    async def test_negative_quantity_rejected(self, billing, property_factory):
        _, _, can = await property_factory()

        with pytest.raises(InvalidArgumentError):
            await billing.change_subscription_quantity(can.id, -1)

        assert (await billing.get_subscription(can.id)).quantity == 1

    async def test_zero_quantity_cancels(self, billing, property_factory):
        _, base_fee, can = await property_factory()

        canceled = await billing.change_subscription_quantity(can.id, 0)

        assert canceled.status == SubscriptionStatus.CANCELED
        assert canceled.equipment_status == EquipmentStatus.RETRIEVED
        assert (await billing.get_subscription(base_fee.id)).status == SubscriptionStatus.CANCELED

    async def test_increase_on_canceled_subscription_rejected(self, billing, property_factory):
        _, _, can = await property_factory()
        await billing.cancel_subscription(can.id)

        with pytest.raises(SubscriptionStateError):
            await billing.change_subscription_quantity(can.id, 2)

    async def test_unknown_subscription(self, billing):
        with pytest.raises(SubscriptionNotFoundError):
            await billing.change_subscription_quantity("sub_missing", 2)


@pytest.mark.integration
class TestRestart:
    """Test restarting canceled subscriptions."""

    async def test_restart_refees_retrieved_equipment(self, billing, clock, property_factory):
        _, base_fee, can = await property_factory()
        await billing.cancel_all_subscriptions_for_property("prop_1")
        before = len(await property_invoices(billing))
        clock.set(date(2024, 5, 20))

        restarted = await billing.restart_all_subscriptions_for_property("prop_1")

        assert {s.id for s in restarted} == {base_fee.id, can.id}
        for subscription in restarted:
            assert subscription.status == SubscriptionStatus.ACTIVE
            assert subscription.quantity == 1
            assert subscription.total_price == subscription.unit_price
            assert subscription.start_date == date(2024, 5, 20)
            assert subscription.next_billing_date == date(2024, 6, 1)
            assert subscription.paused_until is None

        restarted_can = next(s for s in restarted if s.id == can.id)
        assert restarted_can.equipment_status == EquipmentStatus.AT_PROPERTY

        invoices = await property_invoices(billing)
        assert len(invoices) == before + 1
        assert invoices[0].description == "One-Time Setup Fee: Medium Trash Can (64G) (x1)"
        assert invoices[0].amount == Decimal("65.00")

    async def test_restart_without_retrieval_skips_fee(self, billing, store, clock):
        never_retrieved = Subscription(
            id="sub_legacy",
            customer_id="cust_1",
            property_id="prop_1",
            service_id="svc_small_can",
            service_name="Small Trash Can (32G)",
            category=ServiceCategory.BASE_SERVICE,
            status=SubscriptionStatus.CANCELED,
            quantity=0,
            unit_price=2000,
            total_price=0,
            payment_method_id="pm_1",
            start_date=date(2024, 1, 1),
            next_billing_date=date(2024, 2, 1),
            equipment_type=EquipmentType.RENTAL,
            equipment_status=EquipmentStatus.AT_PROPERTY,
        )
        await store.save_subscription(never_retrieved)

        restarted = await billing.restart_all_subscriptions_for_property("prop_1")

        assert [s.id for s in restarted] == ["sub_legacy"]
        assert restarted[0].status == SubscriptionStatus.ACTIVE
        assert await property_invoices(billing) == []

    async def test_restart_sticker_fee_for_own_can(self, store, clock, billing_config, card_request):
        catalog = CatalogService(
            [
                *DEFAULT_SERVICES[:1],
                Service(
                    id="svc_bin",
                    name="Bin",
                    category=ServiceCategory.BASE_SERVICE,
                    unit_price=3000,
                    setup_fee=900,
                    sticker_fee=300,
                ),
            ]
        )
        billing = BillingIntegrationService(store, catalog=catalog, clock=clock, config=billing_config)
        method = await billing.attach_payment_method("cust_1", card_request)
        subscription = await billing.create_subscription("svc_bin", "prop_1", method.id, use_sticker=True)
        await billing.cancel_subscription(subscription.id)

        await billing.restart_all_subscriptions_for_property("prop_1")

        latest = (await property_invoices(billing))[0]
        assert latest.description == "One-Time Sticker Fee: Bin (x1)"
        assert latest.amount == Decimal("3.00")

    async def test_restart_ignores_live_subscriptions(self, billing, property_factory):
        _, base_fee, can = await property_factory()

        assert await billing.restart_all_subscriptions_for_property("prop_1") == []
        assert await billing.get_subscription(can.id) == can


@pytest.mark.integration
class TestPauseResume:
    """Test pausing and resuming a property."""

    async def test_pause_and_resume(self, billing, property_factory):
        _, base_fee, can = await property_factory()

        paused = await billing.pause_subscriptions_for_property("prop_1", date(2024, 6, 1))

        assert {s.id for s in paused} == {base_fee.id, can.id}
        for subscription in paused:
            assert subscription.status == SubscriptionStatus.PAUSED
            assert subscription.paused_until == date(2024, 6, 1)
            assert subscription.next_billing_date == date(2024, 5, 1)
            assert subscription.quantity == 1

        resumed = await billing.resume_subscriptions_for_property("prop_1")

        assert {s.id for s in resumed} == {base_fee.id, can.id}
        assert all(s.status == SubscriptionStatus.ACTIVE and s.paused_until is None for s in resumed)
        assert (await billing.get_subscription(can.id)).total_price == can.total_price

    async def test_pause_skips_canceled(self, billing, property_factory):
        _, _, can = await property_factory()
        liner = await billing.create_subscription("svc_liner", "prop_1", can.payment_method_id)
        await billing.cancel_subscription(liner.id)

        paused = await billing.pause_subscriptions_for_property("prop_1", date(2024, 6, 1))

        assert liner.id not in {s.id for s in paused}
        assert (await billing.get_subscription(liner.id)).status == SubscriptionStatus.CANCELED

    async def test_pause_until_past_date_rejected(self, billing, property_factory):
        await property_factory()

        with pytest.raises(InvalidArgumentError):
            await billing.pause_subscriptions_for_property("prop_1", date(2024, 4, 1))

    async def test_paused_subscriptions_do_not_block_detach(self, billing, property_factory):
        method, _, _ = await property_factory()
        await billing.pause_subscriptions_for_property("prop_1", date(2024, 6, 1))

        await billing.detach_payment_method(method.id)

        assert await billing.list_payment_methods("cust_1") == []


@pytest.mark.integration
class TestPaymentMethodReassignment:
    """Test moving subscriptions to another payment method."""

    async def test_update_single_subscription(self, billing, bank_request, property_factory):
        _, _, can = await property_factory()
        other = await billing.attach_payment_method("cust_1", bank_request)

        updated = await billing.update_subscription_payment_method(can.id, other.id)

        assert updated.payment_method_id == other.id
        assert (await billing.get_subscription(can.id)).payment_method_id == other.id

    async def test_update_unknown_subscription(self, billing):
        with pytest.raises(SubscriptionNotFoundError):
            await billing.update_subscription_payment_method("sub_missing", "pm_1")

    async def test_update_all_for_customer_only_moves_active(self, billing, bank_request, property_factory):
        _, base_one, can_one = await property_factory("prop_1")
        _, base_two, can_two = await property_factory("prop_2")
        await billing.cancel_subscription(can_two.id)
        other = await billing.attach_payment_method("cust_1", bank_request)

        updated = await billing.update_all_subscriptions("cust_1", other.id)

        assert {s.id for s in updated} == {base_one.id, can_one.id}
        assert (await billing.get_subscription(can_two.id)).payment_method_id != other.id

    async def test_update_for_property(self, billing, bank_request, property_factory):
        await property_factory("prop_1")
        _, base_two, can_two = await property_factory("prop_2")
        other = await billing.attach_payment_method("cust_1", bank_request)

        updated = await billing.update_subscriptions_for_property("prop_2", other.id)

        assert {s.id for s in updated} == {base_two.id, can_two.id}

    async def test_update_for_property_unknown_method(self, billing, property_factory):
        await property_factory()

        with pytest.raises(PaymentMethodNotFoundError):
            await billing.update_subscriptions_for_property("prop_1", "pm_missing")


@pytest.mark.integration
class TestOneTimeService:
    """Test standalone purchases."""

    async def test_purchase_handyman(self, billing):
        invoice = await billing.purchase_one_time_service("svc_handyman", "prop_1", quantity=2)

        assert invoice.amount == Decimal("450.00")
        assert invoice.description == "One-Time Service: Handyman Services (x2)"
        assert await billing.subscription_service.list_subscriptions_for_property("prop_1") == []

    async def test_recurring_service_rejected(self, billing):
        with pytest.raises(InvalidArgumentError):
            await billing.purchase_one_time_service("svc_small_can", "prop_1")

    async def test_quantity_below_one_rejected(self, billing):
        with pytest.raises(InvalidArgumentError):
            await billing.purchase_one_time_service("svc_handyman", "prop_1", quantity=0)
