import inspect
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Union

from core.base_database import BaseDatabase
from core.config import PROGRESS_TTL_SECONDS
from core.logger import Logger
from schema.workflow import WorkflowStep

logger = Logger(__name__)

ProgressCallback = Callable[[WorkflowStep], Union[None, Awaitable[None]]]


class BaseWorkflowHandler(ABC):
    """
    Runs a fixed sequence of named steps and reports every status change
    of a step to an optional progress callback (sync or async).

    A failing step is marked ``error``, every step still pending is marked
    ``skipped`` and the exception propagates to the caller.
    """

    workflow_name: str = "default"

    def __init__(self, progress_callback: Optional[ProgressCallback] = None):
        self.progress_callback = progress_callback

    def set_progress_callback(self, callback: Optional[ProgressCallback]):
        self.progress_callback = callback

    @abstractmethod
    def get_steps(self) -> List[Tuple[str, str, str]]:
        """
        Must be implemented by subclasses to return the workflow steps.
        Each step is a tuple of (step_id, name, description).
        """

    def create_steps(self) -> List[WorkflowStep]:
        return [WorkflowStep(id=step_id, name=name, description=description) for step_id, name, description in self.get_steps()]

    async def run_step(
        self,
        step: WorkflowStep,
        step_fn: Callable[..., Awaitable[Any]],
        *args,
        summarize: Optional[Callable[[Any], Any]] = None,
        **kwargs,
    ):
        """Execute one step, keeping its status and timings current."""
        step.status = "running"
        step.started_at = datetime.utcnow()
        await self.notify(step)
        logger.debug(f"[{self.workflow_name}] Executing step {step.id}")

        try:
            result = await step_fn(*args, **kwargs)
        except Exception as e:
            step.status = "error"
            step.error = str(e)
            step.ended_at = datetime.utcnow()
            logger.error(f"[{self.workflow_name}] Step '{step.id}' failed: {e}")
            await self.notify(step)
            raise

        step.status = "completed"
        step.ended_at = datetime.utcnow()
        step.result = summarize(result) if summarize else None
        logger.debug(f"[{self.workflow_name}] Step {step.id} completed", duration_ms=step.duration_ms)
        await self.notify(step)
        return result

    async def skip_pending(self, steps: List[WorkflowStep]):
        for step in steps:
            if step.status == "pending":
                step.status = "skipped"
                await self.notify(step)

    async def notify(self, step: WorkflowStep):
        if not self.progress_callback:
            return
        try:
            outcome = self.progress_callback(step.model_copy())
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            # progress reporting is best-effort
            logger.warning(f"[{self.workflow_name}] Progress callback failed for step {step.id}: {e}")


class MongoProgressSink(BaseDatabase):
    """
    Progress callback persisting each step into ``<workflow>_progress``,
    one document per (tenant, step), expiring an hour after its last update.
    """

    def __init__(self, workflow: str, tenant_id: str, session_id: str):
        self.collection_name = f"{workflow}_progress"
        self.tenant_id = tenant_id
        self.session_id = session_id
        self._indexed = False

    async def __call__(self, step: WorkflowStep):
        collection = self.mongodb.get_collection(self.collection_name)
        if not self._indexed:
            await collection.create_index("last_updated", expireAfterSeconds=PROGRESS_TTL_SECONDS)
            self._indexed = True
        await collection.update_one(
            {"tenant_id": self.tenant_id, "step": step.id},
            {
                "$set": {
                    "tenant_id": self.tenant_id,
                    "session_id": self.session_id,
                    "step": step.id,
                    "name": step.name,
                    "status": step.status,
                    "message": step.error or step.description,
                    "result": step.result,
                    "last_updated": datetime.utcnow(),
                }
            },
            upsert=True,
        )
