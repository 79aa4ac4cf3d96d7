import asyncio

from core.logger import Logger
from cron.scheduler import start_scheduler

logger = Logger(__name__)

SCHEDULER_INTERVAL_SECONDS = 60


def init_cron_background() -> asyncio.Task:
    """Start the scheduler loop as a task on the running event loop."""
    logger.debug("Starting background cron scheduler...")
    return asyncio.create_task(start_scheduler(SCHEDULER_INTERVAL_SECONDS))
