"""ARQ worker configuration - setup logging before importing tasks"""

from urllib.parse import urlparse

from bizflow.constants import REDIS_URL

# Setup logging - idempotent and safe to call multiple times
from bizflow.logging_config import setup_logging
from bizflow.tasks.function_names import FunctionNames

setup_logging()

# Now import ARQ and task dependencies
from arq import create_pool, cron
from arq.connections import ArqRedis, RedisSettings

from bizflow.tasks.workflow_jobs import (
    cleanup_workflow_jobs,
    dispatch_workflow_jobs,
    requeue_stale_workflow_jobs,
)

parsed_url = urlparse(REDIS_URL)

# Check if we're using TLS (rediss://)
use_ssl = parsed_url.scheme == "rediss"

REDIS_SETTINGS = RedisSettings(
    host=parsed_url.hostname or "localhost",
    port=parsed_url.port or 6379,
    password=parsed_url.password,
    conn_timeout=10,
    ssl=use_ssl,
    ssl_certfile=None,
    ssl_keyfile=None,
    ssl_check_hostname=False if use_ssl else None,
)


class WorkerSettings:
    functions = [
        dispatch_workflow_jobs,
        requeue_stale_workflow_jobs,
        cleanup_workflow_jobs,
    ]
    cron_jobs = [
        # Every minute, at second 0
        cron(dispatch_workflow_jobs, run_at_startup=True),
        cron(requeue_stale_workflow_jobs, minute=set(range(0, 60, 5))),
        cron(cleanup_workflow_jobs, hour={3}, minute={30}),
    ]
    redis_settings = REDIS_SETTINGS
    max_jobs = 10


_redis_pool: ArqRedis | None = None


async def get_arq_redis() -> ArqRedis:
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = await create_pool(REDIS_SETTINGS)
    return _redis_pool


async def close_arq_redis() -> None:
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.aclose()
        _redis_pool = None


async def enqueue_job(function_name: FunctionNames, *args):
    redis = await get_arq_redis()
    await redis.enqueue_job(function_name.value, *args)
