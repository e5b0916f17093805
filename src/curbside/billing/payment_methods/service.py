"""
Payment method service.

Keeps the per-customer payment method set with exactly one primary method
whenever the set is non-empty.
"""

from uuid import uuid4

import structlog

from curbside.billing.config import BillingConfig, get_billing_config
from curbside.billing.exceptions import InUseError, PaymentMethodNotFoundError
from curbside.billing.payment_methods.models import PaymentMethod, PaymentMethodCreateRequest
from curbside.billing.storage import BillingStore, run_transactional
from curbside.billing.subscriptions.models import SubscriptionStatus
from curbside.logging import log_audit_event

logger = structlog.get_logger(__name__)


def generate_payment_method_id() -> str:
    return f"pm_{uuid4().hex[:24]}"


class PaymentMethodService:
    """Attach, detach and choose the primary payment method."""

    def __init__(self, store: BillingStore, config: BillingConfig | None = None) -> None:
        self.store = store
        self.config = config or get_billing_config()

    async def list_payment_methods(self, customer_id: str) -> list[PaymentMethod]:
        return await self.store.list_payment_methods(customer_id)

    async def get_payment_method(self, payment_method_id: str) -> PaymentMethod:
        method = await self.store.get_payment_method(payment_method_id)
        if method is None:
            raise PaymentMethodNotFoundError(
                f"Payment method {payment_method_id} not found",
                payment_method_id=payment_method_id,
            )
        return method

    async def attach_payment_method(
        self,
        customer_id: str,
        request: PaymentMethodCreateRequest,
        *,
        idempotency_key: str | None = None,
    ) -> PaymentMethod:
        """
        Add a payment method for a customer.

        The new method becomes primary only when the customer has no primary
        method yet (in particular, when it is the first one).
        """

        async def work() -> PaymentMethod:
            methods = await self.store.list_payment_methods(customer_id)
            method = PaymentMethod(
                id=generate_payment_method_id(),
                customer_id=customer_id,
                type=request.type,
                last4=request.last4,
                brand=request.brand,
                expiry_month=request.expiry_month,
                expiry_year=request.expiry_year,
                is_primary=not any(m.is_primary for m in methods),
            )
            await self.store.replace_payment_methods(customer_id, [*methods, method])

            logger.info(
                "payment_method_attached",
                customer_id=customer_id,
                payment_method_id=method.id,
                method_type=method.type.value,
                is_primary=method.is_primary,
            )
            log_audit_event(
                "payment_method.attached",
                "billing",
                customer_id=customer_id,
                resource_type="payment_method",
                resource_id=method.id,
            )
            return method

        return await run_transactional(
            self.store,
            self.store.customer_locks,
            customer_id,
            "attach_payment_method",
            work,
            retry=self.config.retry,
            idempotency_key=idempotency_key,
            arguments=request.model_dump(mode="json"),
        )

    async def detach_payment_method(self, payment_method_id: str) -> PaymentMethod:
        """
        Remove a payment method.

        Raises:
            PaymentMethodNotFoundError: Unknown id
            InUseError: An active subscription still bills this method
        """
        owner = (await self.get_payment_method(payment_method_id)).customer_id

        async def work() -> PaymentMethod:
            removed = await self.get_payment_method(payment_method_id)

            in_use = [
                s.id
                for s in await self.store.list_subscriptions()
                if s.status == SubscriptionStatus.ACTIVE and s.payment_method_id == payment_method_id
            ]
            if in_use:
                raise InUseError(
                    f"Payment method {payment_method_id} is used by active subscriptions",
                    payment_method_id=payment_method_id,
                    subscription_ids=in_use,
                )

            remaining = [
                m for m in await self.store.list_payment_methods(owner) if m.id != payment_method_id
            ]
            if removed.is_primary and remaining:
                remaining[0].is_primary = True
            await self.store.replace_payment_methods(owner, remaining)

            logger.info(
                "payment_method_detached",
                customer_id=owner,
                payment_method_id=payment_method_id,
                promoted_primary=remaining[0].id if removed.is_primary and remaining else None,
            )
            log_audit_event(
                "payment_method.detached",
                "billing",
                customer_id=owner,
                resource_type="payment_method",
                resource_id=payment_method_id,
            )
            return removed

        return await run_transactional(
            self.store,
            self.store.customer_locks,
            owner,
            "detach_payment_method",
            work,
            retry=self.config.retry,
        )

    async def set_primary_payment_method(self, payment_method_id: str) -> PaymentMethod:
        """Make one method primary and clear the flag on every other method in one write."""
        owner = (await self.get_payment_method(payment_method_id)).customer_id

        async def work() -> PaymentMethod:
            methods = await self.store.list_payment_methods(owner)
            if not any(m.id == payment_method_id for m in methods):
                raise PaymentMethodNotFoundError(
                    f"Payment method {payment_method_id} not found",
                    payment_method_id=payment_method_id,
                )
            for method in methods:
                method.is_primary = method.id == payment_method_id
            await self.store.replace_payment_methods(owner, methods)

            logger.info("payment_method_set_primary", customer_id=owner, payment_method_id=payment_method_id)
            return next(m for m in methods if m.id == payment_method_id)

        return await run_transactional(
            self.store,
            self.store.customer_locks,
            owner,
            "set_primary_payment_method",
            work,
            retry=self.config.retry,
        )
