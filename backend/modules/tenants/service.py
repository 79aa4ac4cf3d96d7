import copy
from typing import List, Optional

from pydantic import ValidationError

from core.base_database import BaseDatabase
from core.errors import ConfigurationError
from core.logger import Logger

from .models import TenantConfig
from .profiles import TENANT_PROFILES

logger = Logger(__name__)

COLLECTION = "tenant_config"


def flatten_tenant_document(doc: dict) -> dict:
    """
    Convert a ``tenant_config`` document (camelCase, nested by system)
    into TenantConfig keyword arguments. Only keys present are returned.
    """
    flat = {}
    if doc.get("tenantName"):
        flat["tenant_name"] = doc["tenantName"]
    if "enabled" in doc:
        flat["enabled"] = bool(doc["enabled"])

    pipedrive = doc.get("pipedrive") or {}
    simple_keys = {
        "companyDomain": "company_domain",
        "apiKeyRef": "api_key_ref",
        "pipelineIds": "pipeline_ids",
        "pipelineNames": "pipeline_names",
        "unqualifiedPipelineIds": "unqualified_pipeline_ids",
        "closedOnlyPipelineIds": "closed_only_pipeline_ids",
        "ignoredPipelineIds": "ignored_pipeline_ids",
        "workInProgressPipelineIds": "work_in_progress_pipeline_ids",
    }
    for source, target in simple_keys.items():
        if source in pipedrive:
            flat[target] = pipedrive[source]
    if pipedrive.get("customFieldMappings"):
        flat["custom_field_mapping"] = pipedrive["customFieldMappings"]

    stages = pipedrive.get("stageConfiguration") or {}
    if "invoiceStageId" in stages:
        flat["invoice_stage_id"] = stages["invoiceStageId"]

    validation = doc.get("validation") or {}
    rules = validation.get("rules") or {}
    if "validProjectPrefixes" in rules:
        flat["valid_project_prefixes"] = rules["validProjectPrefixes"]
    if "titleScope" in rules:
        flat["title_scope"] = rules["titleScope"]
    if "titleSeverity" in rules:
        flat["title_severity"] = rules["titleSeverity"]
    if "requiredFields" in rules:
        flat["required_fields"] = rules["requiredFields"]
    if "checkProducts" in rules:
        flat["check_products"] = rules["checkProducts"]
    return flat


class TenantConfigService(BaseDatabase):
    """Read-only tenant configuration lookup: Mongo document over built-in profile."""

    def __init__(self, profiles: Optional[dict] = None):
        self.profiles = TENANT_PROFILES if profiles is None else profiles

    async def get_tenant_config(self, tenant_id: str) -> TenantConfig:
        if not tenant_id:
            raise ConfigurationError("No tenant_id provided")

        settings = copy.deepcopy(self.profiles.get(tenant_id, {}))
        document = await self._load_document(tenant_id)
        if document:
            settings.update(flatten_tenant_document(document))

        if not settings:
            raise ConfigurationError(f"No configuration found for tenant {tenant_id}")

        try:
            config = TenantConfig(tenant_id=tenant_id, **settings)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration for tenant {tenant_id}: {e}") from e
        logger.debug(
            f"Resolved tenant config for {tenant_id}",
            source="mongo" if document else "profile",
            pipelines=config.pipeline_ids,
        )
        return config

    async def list_tenant_ids(self) -> List[str]:
        tenant_ids = list(self.profiles.keys())
        if self.has_database():
            collection = self.mongodb.get_collection(COLLECTION)
            async for doc in collection.find({}, {"tenantId": 1}):
                if doc.get("tenantId") and doc["tenantId"] not in tenant_ids:
                    tenant_ids.append(doc["tenantId"])
        return tenant_ids

    async def _load_document(self, tenant_id: str) -> Optional[dict]:
        if not self.has_database():
            return None
        return await self.mongodb.find_one(COLLECTION, {"tenantId": tenant_id})
