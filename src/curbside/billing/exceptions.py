"""
Billing system exceptions.

Custom exceptions for billing operations with clear error messages.
Every error is recoverable at the caller; each carries a status code,
context, and a recovery hint for the UI layer.
"""

from typing import Any


class BillingError(Exception):
    """
    Base billing system error with enhanced context.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for API responses
        status_code: HTTP status code for this error type
        context: Additional context data about the error
        recovery_hint: Suggested action to resolve the error
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int = 400,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        self.message = message
        self.error_code = error_code or "BILLING_ERROR"
        self.status_code = status_code
        self.context = context or {}
        self.recovery_hint = recovery_hint
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
            "recovery_hint": self.recovery_hint,
        }


class NotFoundError(BillingError):
    """An id did not resolve to a stored record."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message,
            "NOT_FOUND",
            status_code=404,
            context=context,
            recovery_hint=recovery_hint or "Verify the identifier and ensure the record exists",
        )


class SubscriptionNotFoundError(NotFoundError):
    """Subscription not found error."""

    def __init__(self, message: str, subscription_id: str | None = None) -> None:
        context = {}
        if subscription_id:
            context["subscription_id"] = subscription_id

        super().__init__(
            message,
            context=context,
            recovery_hint="Verify the subscription ID and ensure it exists and is accessible",
        )
        self.error_code = "SUBSCRIPTION_NOT_FOUND"


class PaymentMethodNotFoundError(NotFoundError):
    """Payment method not found error."""

    def __init__(self, message: str, payment_method_id: str | None = None) -> None:
        context = {}
        if payment_method_id:
            context["payment_method_id"] = payment_method_id

        super().__init__(
            message,
            context=context,
            recovery_hint="Verify the payment method ID or add a new payment method",
        )
        self.error_code = "PAYMENT_METHOD_NOT_FOUND"


class InvoiceNotFoundError(NotFoundError):
    """Invoice not found error."""

    def __init__(self, message: str, invoice_id: str | None = None) -> None:
        context = {}
        if invoice_id:
            context["invoice_id"] = invoice_id

        super().__init__(
            message, context=context, recovery_hint="Verify the invoice ID and ensure it exists"
        )
        self.error_code = "INVOICE_NOT_FOUND"


class PropertyNotFoundError(NotFoundError):
    """Property has no registered owner."""

    def __init__(self, message: str, property_id: str | None = None) -> None:
        context = {}
        if property_id:
            context["property_id"] = property_id

        super().__init__(
            message,
            context=context,
            recovery_hint="Register the property with its customer before billing it",
        )
        self.error_code = "PROPERTY_NOT_FOUND"


class InvalidArgumentError(BillingError):
    """Input rejected by validation (never clamped or coerced)."""

    def __init__(self, message: str, argument: str | None = None, value: Any = None) -> None:
        context: dict[str, Any] = {}
        if argument:
            context["argument"] = argument
            context["value"] = value

        super().__init__(
            message,
            "INVALID_ARGUMENT",
            status_code=400,
            context=context,
            recovery_hint="Correct the request value and retry",
        )


class InUseError(BillingError):
    """Payment method is still referenced by an active subscription."""

    def __init__(
        self,
        message: str,
        payment_method_id: str | None = None,
        subscription_ids: list[str] | None = None,
    ):
        context: dict[str, Any] = {}
        if payment_method_id:
            context["payment_method_id"] = payment_method_id
        if subscription_ids:
            context["subscription_ids"] = subscription_ids

        super().__init__(
            message,
            "PAYMENT_METHOD_IN_USE",
            status_code=409,
            context=context,
            recovery_hint="Move active subscriptions to another payment method first",
        )


class AlreadyPaidError(BillingError):
    """Invoice has already been paid."""

    def __init__(self, message: str, invoice_id: str | None = None) -> None:
        context = {}
        if invoice_id:
            context["invoice_id"] = invoice_id

        super().__init__(
            message,
            "INVOICE_ALREADY_PAID",
            status_code=409,
            context=context,
            recovery_hint="No action needed; the invoice is settled",
        )


class CatalogMismatchError(BillingError):
    """Service id not present in the catalog."""

    def __init__(self, message: str, service_id: str | None = None) -> None:
        context = {}
        if service_id:
            context["service_id"] = service_id

        super().__init__(
            message,
            "CATALOG_MISMATCH",
            status_code=404,
            context=context,
            recovery_hint="Refresh the product list and choose an available service",
        )


class SubscriptionStateError(BillingError):
    """Invalid subscription state transition error."""

    def __init__(self, message: str, current_state: str, requested_state: str) -> None:
        super().__init__(
            message,
            "INVALID_SUBSCRIPTION_STATE",
            status_code=409,
            context={"current_state": current_state, "requested_state": requested_state},
            recovery_hint=f"Cannot transition from {current_state} to {requested_state}. Check subscription status first.",
        )


class TransientStorageError(BillingError):
    """Retryable failure reported by a billing store."""

    def __init__(self, message: str, operation: str | None = None) -> None:
        context = {}
        if operation:
            context["operation"] = operation

        super().__init__(
            message,
            "STORAGE_UNAVAILABLE",
            status_code=503,
            context=context,
            recovery_hint="Retry the request; no partial changes were saved",
        )
