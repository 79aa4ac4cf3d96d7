import os
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from schema.records import Deal

Severity = Literal["error", "warning", "info"]


class CustomFieldMapping(BaseModel):
    """
    Logical deal field -> Pipedrive custom field key for one tenant.
    Resolved once when the tenant configuration is loaded; rules read
    values through ``value`` and never index ``custom_fields`` directly.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    xero_quote_id: Optional[str] = None
    quote_number: Optional[str] = None
    project_code: Optional[str] = None
    invoice_id: Optional[str] = None
    invoice_number: Optional[str] = None
    vessel_name: Optional[str] = None
    status: Optional[str] = None
    ipc: Optional[str] = None
    location: Optional[str] = None
    person_in_charge: Optional[str] = None
    wo_number: Optional[str] = None
    mo_number: Optional[str] = None
    department: Optional[str] = None
    vessel_type: Optional[str] = None
    sales_reference: Optional[str] = None
    wopq_number: Optional[str] = None
    ref_number: Optional[str] = None

    def key_for(self, field: str) -> Optional[str]:
        if field not in type(self).model_fields:
            raise KeyError(f"Unknown custom field '{field}'")
        return getattr(self, field)

    def value(self, deal: Deal, field: str) -> Optional[str]:
        key = self.key_for(field)
        if not key:
            return None
        raw = deal.custom_fields.get(key)
        if raw is None:
            return None
        text = str(raw).strip()
        return text or None

    def extract(self, deal: Deal) -> Dict[str, Optional[str]]:
        return {field: self.value(deal, field) for field in type(self).model_fields if getattr(self, field)}


class TenantConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    tenant_id: str
    tenant_name: str = ""
    enabled: bool = True
    company_domain: str = "api"
    api_key_ref: Optional[str] = None

    pipeline_ids: List[int] = Field(default_factory=list)
    pipeline_names: Dict[int, str] = Field(default_factory=dict)
    work_in_progress_pipeline_ids: List[int] = Field(default_factory=list)
    unqualified_pipeline_ids: List[int] = Field(default_factory=list)
    closed_only_pipeline_ids: List[int] = Field(default_factory=list)
    ignored_pipeline_ids: List[int] = Field(default_factory=list)
    invoice_stage_id: Optional[int] = None

    custom_field_mapping: CustomFieldMapping = Field(default_factory=CustomFieldMapping)

    valid_project_prefixes: List[str] = Field(default_factory=list)
    title_scope: Literal["won", "all"] = "won"
    title_severity: Literal["error", "warning"] = "error"
    required_fields: Dict[str, Severity] = Field(default_factory=dict)
    check_products: bool = True

    @field_validator("required_fields")
    @classmethod
    def validate_required_fields(cls, v: Dict[str, Severity]) -> Dict[str, Severity]:
        unknown = sorted(field for field in v if field not in CustomFieldMapping.model_fields)
        if unknown:
            raise ValueError(f"unknown required custom field(s): {', '.join(unknown)}")
        return v

    @property
    def wip_pipeline_ids(self) -> List[int]:
        return self.work_in_progress_pipeline_ids or self.pipeline_ids

    @property
    def fetch_pipeline_ids(self) -> List[int]:
        """Every pipeline whose deals the rules need to see."""
        ids: List[int] = []
        for pid in self.pipeline_ids + self.unqualified_pipeline_ids + self.closed_only_pipeline_ids:
            if pid not in ids and pid not in self.ignored_pipeline_ids:
                ids.append(pid)
        return ids

    def pipeline_name(self, pipeline_id: Optional[int]) -> str:
        if pipeline_id is None:
            return "unknown"
        return self.pipeline_names.get(pipeline_id, f"Pipeline {pipeline_id}")

    def api_key(self) -> Optional[str]:
        return os.getenv(self.api_key_ref) if self.api_key_ref else None

    def extract_custom_fields(self, deal: Deal) -> Dict[str, Any]:
        return self.custom_field_mapping.extract(deal)
