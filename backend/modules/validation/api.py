import asyncio

from fastapi import HTTPException

from core.base_api import BaseAPI, get, post, to_http_error
from core.base_handler import MongoProgressSink
from core.errors import CrossValError
from core.logger import Logger
from core.registry import ServiceRegistry
from modules.tenants.models import TenantConfig
from modules.tenants.service import TenantConfigService
from schema.workflow import new_session_id

from .models import ValidationRunRequest
from .orchestrator import ValidationOrchestrator

logger = Logger(__name__)

PROGRESS_COLLECTION = "validation_progress"


class ValidationAPI(BaseAPI):
    service: TenantConfigService

    def __init__(self, prefix: str = ""):
        super().__init__(prefix)
        self._tasks = set()

    def _orchestrator(self, tenant_id: str, session_id: str) -> ValidationOrchestrator:
        sink = MongoProgressSink("validation", tenant_id, session_id) if self.has_database() else None
        return ValidationOrchestrator(tenant_configs=self.service, progress_callback=sink)

    async def _tenant_config(self, tenant_id: str) -> TenantConfig:
        try:
            return await self.service.get_tenant_config(tenant_id)
        except CrossValError as e:
            raise to_http_error(e)

    @post("/run")
    async def run_validation(self, payload: ValidationRunRequest):
        config = await self._tenant_config(payload.tenant_id)
        session_id = new_session_id("validation")
        orchestrator = self._orchestrator(config.tenant_id, session_id)

        task = asyncio.create_task(self._run_in_background(orchestrator, config, session_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return {"session_id": session_id, "status": "started"}

    async def _run_in_background(self, orchestrator: ValidationOrchestrator, config: TenantConfig, session_id: str):
        try:
            await orchestrator.execute_validation_workflow(config.tenant_id, config, session_id=session_id)
        except Exception as e:
            # the failed session is already persisted by the orchestrator
            logger.error(f"Background validation {session_id} failed: {e}", tenant_id=config.tenant_id)

    @post("/run-sync")
    async def run_validation_sync(self, payload: ValidationRunRequest):
        config = await self._tenant_config(payload.tenant_id)
        orchestrator = self._orchestrator(config.tenant_id, new_session_id("validation"))
        try:
            session = await orchestrator.execute_validation_workflow(config.tenant_id, config)
        except CrossValError as e:
            raise to_http_error(e)
        return session.model_dump(mode="json")

    @get("/progress/{tenant_id}")
    async def get_progress(self, tenant_id: str):
        if not self.has_database():
            return {"tenant_id": tenant_id, "steps": []}
        collection = self.mongodb.get_collection(PROGRESS_COLLECTION)
        docs = await collection.find({"tenant_id": tenant_id}, {"_id": 0}).to_list(length=None)
        order = {step_id: index for index, (step_id, _, _) in enumerate(ValidationOrchestrator().get_steps())}
        docs.sort(key=lambda doc: order.get(doc.get("step"), len(order)))
        return {"tenant_id": tenant_id, "steps": docs}

    @get("/sessions/{session_id}")
    async def get_session(self, session_id: str):
        session = await ValidationOrchestrator(tenant_configs=self.service).get_session(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Validation session {session_id} not found")
        return session.model_dump(mode="json")


ServiceRegistry.register_api("validation", ValidationAPI("/validation").router)
