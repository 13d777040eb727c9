"""Enqueue helpers for running the billing sweeps outside their cron slots."""

from typing import Any

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from arq.jobs import Job

from billing_engine.core.config import settings

redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)


async def get_redis_pool() -> ArqRedis:
    return await create_pool(redis_settings)


async def enqueue_task(task_name: str, *args: Any, **kwargs: Any) -> Job:
    """Push ``task_name`` onto the worker queue.

    A short-lived pool is opened per call and always closed, so callers
    outside the worker need no connection management.
    """
    pool = await get_redis_pool()
    try:
        return await pool.enqueue_job(task_name, *args, **kwargs)  # type: ignore[return-value]
    finally:
        await pool.close()


async def enqueue_retry_failed_payments() -> Job:
    return await enqueue_task("retry_failed_payments_task")


async def enqueue_renew_due_subscriptions() -> Job:
    return await enqueue_task("renew_due_subscriptions_task")
