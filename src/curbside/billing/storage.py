"""
Billing storage port.

The services never keep state of their own; every read and write goes
through a ``BillingStore``. A store provides transactions: all writes made
inside ``async with store.transaction()`` are kept together or discarded
together. Mutations are serialized per property (subscriptions, invoices) or
per customer (payment methods) with the store's keyed locks.

A unit that checks a payment method and a unit that links a subscription to
it run under different keys (customer and property). Services take the
customer lock around such property units, and a persistent store must still
run transactions at serializable isolation so the two checks cannot both pass
against stale reads.
"""

import asyncio
import copy
import hashlib
import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from curbside.billing.config import RetryConfig
from curbside.billing.exceptions import InvalidArgumentError, TransientStorageError
from curbside.billing.invoicing.models import Invoice
from curbside.billing.payment_methods.models import PaymentMethod
from curbside.billing.pickups.models import SpecialPickupRequest
from curbside.billing.subscriptions.models import Subscription

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class KeyedLocks:
    """
    One ``asyncio.Lock`` per key, created on first use.

    A key's lock is dropped once nobody holds or waits on it, so the table
    only grows with concurrent keys, not with every property ever seen.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


@dataclass(frozen=True)
class IdempotencyRecord:
    """Result of a committed unit, with a fingerprint of the call that produced it."""

    fingerprint: str
    result: Any


class BillingStore(ABC):
    """Abstract persistence for subscriptions, invoices and payment methods."""

    def __init__(self) -> None:
        self.property_locks = KeyedLocks()
        self.customer_locks = KeyedLocks()

    @abstractmethod
    def transaction(self) -> Any:
        """Async context manager; rolls back every write if the block raises."""
        pass

    # Subscriptions

    @abstractmethod
    async def get_subscription(self, subscription_id: str) -> Subscription | None:
        pass

    @abstractmethod
    async def list_subscriptions(
        self, *, customer_id: str | None = None, property_id: str | None = None
    ) -> list[Subscription]:
        """Subscriptions in creation order, optionally filtered."""
        pass

    @abstractmethod
    async def save_subscription(self, subscription: Subscription) -> None:
        pass

    # Payment methods

    @abstractmethod
    async def get_payment_method(self, payment_method_id: str) -> PaymentMethod | None:
        pass

    @abstractmethod
    async def list_payment_methods(self, customer_id: str) -> list[PaymentMethod]:
        """A customer's payment methods in attach order."""
        pass

    @abstractmethod
    async def replace_payment_methods(self, customer_id: str, methods: list[PaymentMethod]) -> None:
        """Replace a customer's whole payment method set in one write."""
        pass

    # Invoices

    @abstractmethod
    async def get_invoice(self, invoice_id: str) -> Invoice | None:
        pass

    @abstractmethod
    async def list_invoices(self, property_ids: Iterable[str] | None = None) -> list[Invoice]:
        """Invoices most recent first, optionally limited to some properties."""
        pass

    @abstractmethod
    async def add_invoice(self, invoice: Invoice) -> None:
        pass

    @abstractmethod
    async def save_invoice(self, invoice: Invoice) -> None:
        pass

    # Property ownership

    @abstractmethod
    async def get_property_owner(self, property_id: str) -> str | None:
        pass

    @abstractmethod
    async def set_property_owner(self, property_id: str, customer_id: str) -> None:
        pass

    @abstractmethod
    async def list_properties(self, customer_id: str) -> list[str]:
        pass

    # Special pickups

    @abstractmethod
    async def add_pickup_request(self, request: SpecialPickupRequest) -> None:
        pass

    @abstractmethod
    async def list_pickup_requests(
        self, property_ids: Iterable[str] | None = None
    ) -> list[SpecialPickupRequest]:
        """Requests in the order they were made, optionally limited to some properties."""
        pass

    # Idempotency

    @abstractmethod
    async def get_idempotent_result(
        self, operation: str, scope: str, key: str
    ) -> IdempotencyRecord | None:
        """Record for a key, scoped to one operation and one lock key."""
        pass

    @abstractmethod
    async def save_idempotent_result(
        self, operation: str, scope: str, key: str, record: IdempotencyRecord
    ) -> None:
        pass


class InMemoryBillingStore(BillingStore):
    """Process-local store. Transactions snapshot state and restore it on error."""

    def __init__(self) -> None:
        super().__init__()
        self._subscriptions: dict[str, Subscription] = {}
        self._payment_methods: dict[str, list[PaymentMethod]] = {}
        self._invoices: list[Invoice] = []
        self._property_owners: dict[str, str] = {}
        self._pickup_requests: list[SpecialPickupRequest] = []
        self._idempotency: dict[tuple[str, str, str], IdempotencyRecord] = {}
        self._txn_lock = asyncio.Lock()

    def _snapshot(self) -> dict[str, Any]:
        return copy.deepcopy(
            {
                "_subscriptions": self._subscriptions,
                "_payment_methods": self._payment_methods,
                "_invoices": self._invoices,
                "_property_owners": self._property_owners,
                "_pickup_requests": self._pickup_requests,
                "_idempotency": self._idempotency,
            }
        )

    def _restore(self, snapshot: dict[str, Any]) -> None:
        for name, value in snapshot.items():
            setattr(self, name, value)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        async with self._txn_lock:
            snapshot = self._snapshot()
            try:
                yield
            except BaseException:
                self._restore(snapshot)
                logger.debug("transaction_rolled_back")
                raise

    async def get_subscription(self, subscription_id: str) -> Subscription | None:
        subscription = self._subscriptions.get(subscription_id)
        return subscription.model_copy(deep=True) if subscription else None

    async def list_subscriptions(
        self, *, customer_id: str | None = None, property_id: str | None = None
    ) -> list[Subscription]:
        return [
            s.model_copy(deep=True)
            for s in self._subscriptions.values()
            if (customer_id is None or s.customer_id == customer_id)
            and (property_id is None or s.property_id == property_id)
        ]

    async def save_subscription(self, subscription: Subscription) -> None:
        self._subscriptions[subscription.id] = subscription.model_copy(deep=True)

    async def get_payment_method(self, payment_method_id: str) -> PaymentMethod | None:
        for methods in self._payment_methods.values():
            for method in methods:
                if method.id == payment_method_id:
                    return method.model_copy(deep=True)
        return None

    async def list_payment_methods(self, customer_id: str) -> list[PaymentMethod]:
        return [m.model_copy(deep=True) for m in self._payment_methods.get(customer_id, [])]

    async def replace_payment_methods(self, customer_id: str, methods: list[PaymentMethod]) -> None:
        self._payment_methods[customer_id] = [m.model_copy(deep=True) for m in methods]

    async def get_invoice(self, invoice_id: str) -> Invoice | None:
        for invoice in self._invoices:
            if invoice.id == invoice_id:
                return invoice.model_copy(deep=True)
        return None

    async def list_invoices(self, property_ids: Iterable[str] | None = None) -> list[Invoice]:
        wanted = set(property_ids) if property_ids is not None else None
        return [
            i.model_copy(deep=True)
            for i in self._invoices
            if wanted is None or i.property_id in wanted
        ]

    async def add_invoice(self, invoice: Invoice) -> None:
        self._invoices.insert(0, invoice.model_copy(deep=True))

    async def save_invoice(self, invoice: Invoice) -> None:
        for index, existing in enumerate(self._invoices):
            if existing.id == invoice.id:
                self._invoices[index] = invoice.model_copy(deep=True)
                return
        raise KeyError(invoice.id)

    async def get_property_owner(self, property_id: str) -> str | None:
        return self._property_owners.get(property_id)

    async def set_property_owner(self, property_id: str, customer_id: str) -> None:
        self._property_owners[property_id] = customer_id

    async def list_properties(self, customer_id: str) -> list[str]:
        return [p for p, owner in self._property_owners.items() if owner == customer_id]

    async def add_pickup_request(self, request: SpecialPickupRequest) -> None:
        self._pickup_requests.append(request.model_copy(deep=True))

    async def list_pickup_requests(
        self, property_ids: Iterable[str] | None = None
    ) -> list[SpecialPickupRequest]:
        wanted = set(property_ids) if property_ids is not None else None
        return [
            r.model_copy(deep=True)
            for r in self._pickup_requests
            if wanted is None or r.property_id in wanted
        ]

    async def get_idempotent_result(
        self, operation: str, scope: str, key: str
    ) -> IdempotencyRecord | None:
        return copy.deepcopy(self._idempotency.get((operation, scope, key)))

    async def save_idempotent_result(
        self, operation: str, scope: str, key: str, record: IdempotencyRecord
    ) -> None:
        self._idempotency[(operation, scope, key)] = copy.deepcopy(record)


async def run_transactional(
    store: BillingStore,
    locks: KeyedLocks,
    lock_key: str,
    operation: str,
    work: Callable[[], Awaitable[T]],
    *,
    retry: RetryConfig,
    idempotency_key: str | None = None,
    arguments: Mapping[str, Any] | None = None,
) -> T:
    """
    Run ``work`` as one serialized, transactional, retryable unit.

    The keyed lock is held for every attempt. A transient store failure rolls
    the whole unit back and retries it. With an idempotency key, a unit that
    already committed for the same operation and lock key returns its
    recorded result instead of running again; reusing the key with different
    ``arguments`` raises ``InvalidArgumentError``.
    """
    fingerprint = _fingerprint(arguments)
    with structlog.contextvars.bound_contextvars(operation=operation, lock_key=lock_key):
        async with locks.hold(lock_key):
            async for attempt in _retrying(retry):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning("billing_unit_retry", attempt=attempt.retry_state.attempt_number)
                    async with store.transaction():
                        if idempotency_key is not None:
                            recorded = await store.get_idempotent_result(
                                operation, lock_key, idempotency_key
                            )
                            if recorded is not None:
                                if recorded.fingerprint != fingerprint:
                                    raise InvalidArgumentError(
                                        f"Idempotency key {idempotency_key} was already used "
                                        f"for a different {operation} request",
                                        argument="idempotency_key",
                                        value=idempotency_key,
                                    )
                                logger.info("idempotent_replay", idempotency_key=idempotency_key)
                                return recorded.result
                        result = await work()
                        if idempotency_key is not None:
                            await store.save_idempotent_result(
                                operation,
                                lock_key,
                                idempotency_key,
                                IdempotencyRecord(fingerprint=fingerprint, result=result),
                            )
                        return result
    raise AssertionError("unreachable")  # pragma: no cover


def _fingerprint(arguments: Mapping[str, Any] | None) -> str:
    payload = json.dumps(dict(arguments or {}), sort_keys=True, default=str)
    return hashlib.sha256(payload.encode()).hexdigest()


def _retrying(retry: RetryConfig) -> AsyncRetrying:
    return AsyncRetrying(
        stop=stop_after_attempt(retry.max_attempts),
        wait=wait_exponential(min=retry.min_wait_seconds, max=retry.max_wait_seconds),
        retry=retry_if_exception_type(TransientStorageError),
        reraise=True,
    )
