from datetime import datetime

from core.errors import ConfigurationError
from cron.registry import CronRegistry, job_id_for
from cron.scheduler import convert_schedule_hrf_to_cron, next_run_after
from modules.tenants.models import TenantConfig
from modules.validation import cron as validation_cron
from modules.validation.cron import NightlyValidationJob
from modules.validation.models import ValidationResult, ValidationSession

REFERENCE = datetime(2024, 5, 1, 10, 30)


def test_schedule_conversion():
    assert convert_schedule_hrf_to_cron("15m", REFERENCE) == "*/15 * * * *"
    assert convert_schedule_hrf_to_cron("2h", REFERENCE) == "30 */2 * * *"
    assert convert_schedule_hrf_to_cron("1d", REFERENCE) == "30 10 */1 * *"
    assert convert_schedule_hrf_to_cron("1w", REFERENCE) == "30 10 */7 * *"


def test_next_run_is_a_day_later():
    assert next_run_after("1d", REFERENCE) == datetime(2024, 5, 2, 10, 30)


def test_nightly_job_is_registered():
    assert job_id_for(NightlyValidationJob) in CronRegistry.list_registered_jobs()
    assert NightlyValidationJob.active is False


class FakeTenantConfigs:
    def __init__(self):
        self.configs = {
            "on": TenantConfig(tenant_id="on"),
            "off": TenantConfig(tenant_id="off", enabled=False),
        }

    async def list_tenant_ids(self):
        return ["on", "off", "broken"]

    async def get_tenant_config(self, tenant_id):
        if tenant_id not in self.configs:
            raise ConfigurationError(f"No configuration found for tenant {tenant_id}")
        return self.configs[tenant_id]


class FakeOrchestrator:
    def __init__(self, tenant_configs=None):
        pass

    async def execute_validation_workflow(self, tenant_id, config):
        return ValidationSession(
            id=f"validation_{tenant_id}", tenant_id=tenant_id, status="completed", result=ValidationResult(tenant_id=tenant_id)
        )


async def test_nightly_job_validates_enabled_tenants(monkeypatch):
    monkeypatch.setattr(validation_cron, "TenantConfigService", FakeTenantConfigs)
    monkeypatch.setattr(validation_cron, "ValidationOrchestrator", FakeOrchestrator)

    outcomes = await NightlyValidationJob().run()

    assert outcomes == {"on": "validation_on", "off": "disabled", "broken": "failed"}


async def test_nightly_job_honours_tenant_params(monkeypatch):
    monkeypatch.setattr(validation_cron, "TenantConfigService", FakeTenantConfigs)
    monkeypatch.setattr(validation_cron, "ValidationOrchestrator", FakeOrchestrator)

    outcomes = await NightlyValidationJob({"tenant_ids": ["on"]}).run()

    assert outcomes == {"on": "validation_on"}
