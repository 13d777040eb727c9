from billing_engine.models.invoice import Invoice, InvoiceStatus
from billing_engine.models.payment import Payment, PaymentStatus
from billing_engine.models.payment_retry_log import PaymentRetryLog
from billing_engine.models.plan import BillingPeriod, Plan
from billing_engine.models.subscription import (
    ScheduledChange,
    Subscription,
    SubscriptionStatus,
)
from billing_engine.models.subscription_history import HistoryAction, SubscriptionHistory

__all__ = [
    "BillingPeriod",
    "HistoryAction",
    "Invoice",
    "InvoiceStatus",
    "Payment",
    "PaymentRetryLog",
    "PaymentStatus",
    "Plan",
    "ScheduledChange",
    "Subscription",
    "SubscriptionHistory",
    "SubscriptionStatus",
]
