from abc import ABC, abstractmethod
from typing import Optional

from core.base_database import BaseDatabase
from core.logger import Logger

logger = Logger(__name__)


class BaseCronJob(ABC, BaseDatabase):
    """
    Base class for scheduled jobs. Decorate subclasses with ``@cron_job``
    so the scheduler can find them in the ``cron_jobs`` collection.

    ``schedule`` is human readable: ``30m``, ``2h``, ``1d``, ``1w``.
    """

    name: Optional[str] = None
    schedule: str = "1d"
    active: bool = True
    max_runtime_sec: int = 600

    def __init__(self, params: Optional[dict] = None):
        self.params = params or {}

    @abstractmethod
    async def run(self):
        ...

    async def before_run(self):
        logger.debug(f"Preparing to run {self.__class__.__name__}")

    async def after_run(self):
        logger.debug(f"Completed execution of {self.__class__.__name__}")
