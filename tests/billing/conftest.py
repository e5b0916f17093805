"""
Billing test fixtures.

Every test gets a fresh in-memory store, a clock pinned to 2024-04-16 and a
configuration with instant retries.
"""

from datetime import date

import pytest

from curbside.billing.clock import FixedClock
from curbside.billing.config import BillingConfig, RetryConfig, set_billing_config
from curbside.billing.integration import BillingIntegrationService
from curbside.billing.payment_methods.models import (
    CardBrand,
    PaymentMethodCreateRequest,
    PaymentMethodType,
)
from curbside.billing.storage import InMemoryBillingStore
from curbside.settings import reset_settings

TODAY = date(2024, 4, 16)


@pytest.fixture(autouse=True)
def billing_test_environment(monkeypatch):
    monkeypatch.setenv("TESTING", "1")
    reset_settings()
    set_billing_config(None)
    yield
    reset_settings()
    set_billing_config(None)


@pytest.fixture
def clock():
    return FixedClock(TODAY)


@pytest.fixture
def billing_config():
    return BillingConfig(retry=RetryConfig(max_attempts=3, min_wait_seconds=0, max_wait_seconds=0))


@pytest.fixture
def store():
    return InMemoryBillingStore()


@pytest.fixture
def billing(store, clock, billing_config):
    return BillingIntegrationService(store, clock=clock, config=billing_config)


@pytest.fixture
def card_request():
    return PaymentMethodCreateRequest(
        type=PaymentMethodType.CARD,
        last4="4242",
        brand=CardBrand.VISA,
        expiry_month=12,
        expiry_year=2030,
    )


@pytest.fixture
def bank_request():
    return PaymentMethodCreateRequest(type=PaymentMethodType.BANK_ACCOUNT, last4="6789")


@pytest.fixture
def payment_method_factory(billing, card_request):
    """Attach a card for a customer and return it."""

    async def _create(customer_id: str = "cust_1", request=None):
        return await billing.attach_payment_method(customer_id, request or card_request)

    return _create


@pytest.fixture
def property_factory(billing, payment_method_factory):
    """
    Set up a property with a base fee and one medium rental can.

    Returns ``(payment_method, base_fee, can)``.
    """

    async def _create(property_id: str = "prop_1", customer_id: str = "cust_1"):
        payment_method = await payment_method_factory(customer_id)
        base_fee = await billing.create_subscription("svc_base_fee", property_id, payment_method.id)
        can = await billing.create_subscription("svc_medium_can", property_id, payment_method.id)
        return payment_method, base_fee, can

    return _create
