from billing_engine.repositories.invoice_repository import InvoiceRepository
from billing_engine.repositories.payment_repository import PaymentRepository
from billing_engine.repositories.payment_retry_log_repository import PaymentRetryLogRepository
from billing_engine.repositories.plan_repository import PlanRepository
from billing_engine.repositories.subscription_history_repository import (
    SubscriptionHistoryRepository,
)
from billing_engine.repositories.subscription_repository import SubscriptionRepository

__all__ = [
    "InvoiceRepository",
    "PaymentRepository",
    "PaymentRetryLogRepository",
    "PlanRepository",
    "SubscriptionHistoryRepository",
    "SubscriptionRepository",
]
