import logging
from typing import Any

from arq import cron

from billing_engine.core.config import settings
from billing_engine.core.database import SessionLocal
from billing_engine.services.payment_gateway import get_payment_gateway
from billing_engine.services.payment_processor import PaymentProcessor
from billing_engine.services.subscription_manager import SubscriptionManager
from billing_engine.tasks import redis_settings

logger = logging.getLogger(__name__)


async def retry_failed_payments_task(ctx: dict[str, Any]) -> int:
    """Background task: re-attempt failed payments whose retry time has passed.

    Runs every 6 hours. Retry times are stored on the payment rows, so a
    restarted worker picks up exactly where the previous one stopped.
    """
    db = SessionLocal()
    try:
        processor = PaymentProcessor(db, get_payment_gateway())
        count = processor.retry_failed_payments()
        if count > 0:
            logger.info("Retried %d failed payments", count)
        return count
    finally:
        db.close()


async def renew_due_subscriptions_task(ctx: dict[str, Any]) -> int:
    """Background task: renew subscriptions whose billing period has ended.

    Subscriptions flagged to cancel at period end are canceled instead.
    Runs hourly.
    """
    db = SessionLocal()
    try:
        manager = SubscriptionManager(db)
        count = manager.renew_due_subscriptions()
        if count > 0:
            logger.info("Renewed %d subscriptions", count)
        return count
    finally:
        db.close()


async def startup(ctx: dict[str, Any]) -> None:
    logging.basicConfig(level=settings.LOG_LEVEL)
    logger.info("%s worker starting", settings.APP_NAME)


class WorkerSettings:
    functions = [
        retry_failed_payments_task,
        renew_due_subscriptions_task,
    ]
    cron_jobs = [
        cron(retry_failed_payments_task, hour={0, 6, 12, 18}, minute=0),
        cron(renew_due_subscriptions_task, minute={0}),  # hourly
    ]
    on_startup = startup
    redis_settings = redis_settings
