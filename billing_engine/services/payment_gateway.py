"""Payment gateway abstraction layer.

The processor only depends on ``PaymentGateway.submit``; real rails plug in
as subclasses. A simulated gateway is provided for development and tests.
"""

import random
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from billing_engine.core.config import settings
from billing_engine.models.payment import Payment


class FailureCode(str, Enum):
    INSUFFICIENT_FUNDS = "insufficient_funds"
    CARD_DECLINED = "card_declined"
    EXPIRED_CARD = "expired_card"
    PROCESSING_ERROR = "processing_error"


@dataclass
class GatewayResult:
    """Result of submitting a payment to a gateway."""

    success: bool
    transaction_id: str | None = None
    failure_code: str | None = None
    failure_message: str | None = None

    @classmethod
    def succeeded(cls, transaction_id: str) -> "GatewayResult":
        return cls(success=True, transaction_id=transaction_id)

    @classmethod
    def failed(cls, failure_code: FailureCode | str, failure_message: str) -> "GatewayResult":
        return cls(
            success=False,
            failure_code=FailureCode(failure_code).value,
            failure_message=failure_message,
        )


class PaymentGateway(ABC):
    """Abstract base class for payment gateways."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Identifier stored on the payment as ``payment_gateway``."""
        pass  # pragma: no cover

    @abstractmethod
    def submit(self, payment: Payment) -> GatewayResult:
        """Attempt to collect the payment amount."""
        pass  # pragma: no cover


_SIMULATED_FAILURES = (
    (FailureCode.INSUFFICIENT_FUNDS, "Insufficient funds"),
    (FailureCode.CARD_DECLINED, "Card declined"),
    (FailureCode.EXPIRED_CARD, "Card expired"),
)


class SimulatedGateway(PaymentGateway):
    """Gateway that succeeds with a fixed probability."""

    def __init__(self, success_rate: float = 0.9, rng: random.Random | None = None):
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError("success_rate must be between 0 and 1")
        self.success_rate = success_rate
        self.rng = rng or random.Random()

    @property
    def name(self) -> str:
        return "simulated"

    def submit(self, payment: Payment) -> GatewayResult:
        if self.rng.random() < self.success_rate:
            return GatewayResult.succeeded(f"txn_{uuid.uuid4().hex}")
        code, message = self.rng.choice(_SIMULATED_FAILURES)
        return GatewayResult.failed(code, message)


def get_payment_gateway(name: str | None = None) -> PaymentGateway:
    """Factory function to get the configured payment gateway."""
    name = name or settings.PAYMENT_GATEWAY
    if name == "simulated":
        return SimulatedGateway(success_rate=settings.SIMULATED_GATEWAY_SUCCESS_RATE)
    raise ValueError(f"Unsupported payment gateway: {name}")
