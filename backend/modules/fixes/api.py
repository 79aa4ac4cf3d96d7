from fastapi import HTTPException

from core.base_api import BaseAPI, post, to_http_error
from core.base_handler import MongoProgressSink
from core.errors import CrossValError
from core.logger import Logger
from core.registry import ServiceRegistry
from modules.tenants.service import TenantConfigService
from services.pipedrive.service import PipedriveService
from services.xero.service import XeroService

from .models import FixApplyRequest, FixConfig, FixContext, FixSession
from .orchestrator import SESSIONS_COLLECTION, FixOrchestrator

logger = Logger(__name__)


class FixesAPI(BaseAPI):
    service: TenantConfigService

    async def _context(self, tenant_id: str, dry_run: bool = False) -> FixContext:
        config = await self.service.get_tenant_config(tenant_id)
        return FixContext(
            tenant_id=tenant_id,
            config=FixConfig(dry_run=dry_run),
            pipedrive=PipedriveService.for_tenant(config),
            xero=XeroService.for_tenant(tenant_id),
        )

    @post("/apply")
    async def apply_fixes(self, payload: FixApplyRequest):
        try:
            context = await self._context(payload.tenant_id, payload.dry_run)
            orchestrator = FixOrchestrator(context)
            session = orchestrator.initialize_session(payload.issues)
            if self.has_database():
                orchestrator.set_progress_callback(MongoProgressSink("fix", payload.tenant_id, session.id))
            session = await orchestrator.execute_fix_workflow(session)
        except CrossValError as e:
            raise to_http_error(e)
        return session.model_dump(mode="json")

    @post("/rollback/{session_id}")
    async def rollback_fixes(self, session_id: str):
        doc = await self.mongodb.find_one(SESSIONS_COLLECTION, {"id": session_id}) if self.has_database() else None
        if not doc:
            raise HTTPException(status_code=404, detail=f"Fix session {session_id} not found")
        doc.pop("_id", None)
        session = FixSession.model_validate(doc)

        try:
            context = await self._context(session.tenant_id)
            rolled_back = await FixOrchestrator(context).rollback_session(session)
        except CrossValError as e:
            raise to_http_error(e)
        logger.info(f"Rollback of fix session {session_id} finished", rolled_back=len(rolled_back))
        return {"session_id": session_id, "rolled_back": [result.model_dump(mode="json") for result in rolled_back]}


ServiceRegistry.register_api("fixes", FixesAPI("/fixes").router)
