from typing import Dict

from core.errors import CrossValError
from core.logger import Logger
from cron.base_cron import BaseCronJob
from cron.registry import cron_job
from modules.tenants.service import TenantConfigService

from .orchestrator import ValidationOrchestrator

logger = Logger(__name__)


@cron_job
class NightlyValidationJob(BaseCronJob):
    """Validates every enabled tenant; sessions are stored by the orchestrator."""

    name = "Nightly Pipedrive/Xero Validation"
    schedule = "1d"
    active = False
    max_runtime_sec = 3600

    async def run(self) -> Dict[str, str]:
        tenant_configs = TenantConfigService()
        tenant_ids = self.params.get("tenant_ids") or await tenant_configs.list_tenant_ids()
        outcomes = {}

        for tenant_id in tenant_ids:
            try:
                config = await tenant_configs.get_tenant_config(tenant_id)
                if not config.enabled:
                    logger.info(f"Skipping disabled tenant {tenant_id}")
                    outcomes[tenant_id] = "disabled"
                    continue
                session = await ValidationOrchestrator(tenant_configs=tenant_configs).execute_validation_workflow(
                    tenant_id, config
                )
            except CrossValError as e:
                logger.error(f"Nightly validation failed for tenant {tenant_id}: {e}")
                outcomes[tenant_id] = "failed"
                continue

            summary = session.result.summary
            logger.info(
                f"Nightly validation finished for tenant {tenant_id}",
                session_id=session.id,
                errors=summary.error_count,
                warnings=summary.warning_count,
            )
            outcomes[tenant_id] = session.id
        return outcomes
