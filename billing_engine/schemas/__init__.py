from billing_engine.schemas.payment import (
    PaymentCreate,
    PaymentResponse,
    PaymentRetryLogResponse,
)
from billing_engine.schemas.plan import PlanCreate, PlanResponse, PlanUpdate
from billing_engine.schemas.proration import ProrationCalculation
from billing_engine.schemas.subscription import (
    ScheduledChangeResponse,
    SubscriptionHistoryResponse,
    SubscriptionResponse,
)

__all__ = [
    "PaymentCreate",
    "PaymentResponse",
    "PaymentRetryLogResponse",
    "PlanCreate",
    "PlanResponse",
    "PlanUpdate",
    "ProrationCalculation",
    "ScheduledChangeResponse",
    "SubscriptionHistoryResponse",
    "SubscriptionResponse",
]
