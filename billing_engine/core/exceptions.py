"""
Billing engine exceptions.

Every error carries a machine-readable code and optional context so callers
can map them onto their own transport (HTTP status, job result, ...).
"""

from typing import Any
from uuid import UUID


class BillingError(Exception):
    """
    Base billing engine error.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        context: Additional context data about the error
    """

    error_code = "BILLING_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a serializable dictionary."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
        }


class NotFoundError(BillingError):
    """A referenced plan, subscription or payment does not exist."""

    error_code = "NOT_FOUND"


class PlanNotFoundError(NotFoundError):
    error_code = "PLAN_NOT_FOUND"

    def __init__(self, plan_id: UUID | str) -> None:
        super().__init__(f"Plan {plan_id} not found", context={"plan_id": str(plan_id)})


class SubscriptionNotFoundError(NotFoundError):
    error_code = "SUBSCRIPTION_NOT_FOUND"

    def __init__(self, subscription_id: UUID | str) -> None:
        super().__init__(
            f"Subscription {subscription_id} not found",
            context={"subscription_id": str(subscription_id)},
        )


class PaymentNotFoundError(NotFoundError):
    error_code = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: UUID | str) -> None:
        super().__init__(
            f"Payment {payment_id} not found", context={"payment_id": str(payment_id)}
        )


class IncompatibleBillingPeriodError(BillingError):
    """Plan change across billing periods (monthly <-> yearly)."""

    error_code = "INCOMPATIBLE_BILLING_PERIOD"

    def __init__(self, current_period: str, new_period: str) -> None:
        super().__init__(
            "Cannot change between different billing periods. "
            "Cancel and create a new subscription instead.",
            context={"current_period": current_period, "new_period": new_period},
        )


class OptimisticLockError(BillingError):
    """The subscription was modified by another writer since it was read.

    The caller is expected to re-read the subscription and retry.
    """

    error_code = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, subscription_id: UUID | str, expected_version: int) -> None:
        super().__init__(
            "Subscription was modified by another transaction. Please retry.",
            context={
                "subscription_id": str(subscription_id),
                "expected_version": expected_version,
            },
        )
        self.subscription_id = subscription_id
        self.expected_version = expected_version


class InvalidStateError(BillingError):
    """Operation not allowed in the entity's current state."""

    error_code = "INVALID_STATE"


class GatewayFailure(BillingError):
    """A payment gateway declined or could not process a payment."""

    error_code = "GATEWAY_FAILURE"

    def __init__(self, failure_code: str, message: str) -> None:
        super().__init__(message, context={"failure_code": failure_code})
        self.failure_code = failure_code
