from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.config import (
    FIX_BATCH_SIZE,
    FIX_CIRCUIT_BREAKER_RESET_SECONDS,
    FIX_CIRCUIT_BREAKER_THRESHOLD,
    FIX_MAX_RETRIES,
    FIX_RETRY_DELAY_SECONDS,
)
from modules.validation.models import ValidationIssue
from schema.workflow import SessionBase, WorkflowStep

FixStatus = Literal["fixed", "skipped", "failed"]


class FixConfig(BaseModel):
    batch_size: int = FIX_BATCH_SIZE
    batch_delay: float = 1.0
    max_retries: int = FIX_MAX_RETRIES
    retry_delay: float = FIX_RETRY_DELAY_SECONDS
    dry_run: bool = False
    enable_rollback: bool = True
    circuit_breaker_threshold: int = FIX_CIRCUIT_BREAKER_THRESHOLD
    circuit_breaker_reset: float = FIX_CIRCUIT_BREAKER_RESET_SECONDS


class FixContext(BaseModel):
    """Everything a handler needs to touch the remote systems for one tenant."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    tenant_id: str
    config: FixConfig = Field(default_factory=FixConfig)
    pipedrive: Any = None
    xero: Any = None
    # quote id -> status before the fix in flight first wrote to it; kept across retries
    original_statuses: Dict[str, str] = Field(default_factory=dict)


class FixHandlerResult(BaseModel):
    success: bool
    original_value: Any = None
    new_value: Any = None
    error: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    rollback_data: Optional[Dict[str, Any]] = None


class FixResult(BaseModel):
    issue_code: str
    deal_id: Optional[int] = None
    quote_id: Optional[str] = None
    status: FixStatus
    original_value: Any = None
    new_value: Any = None
    error: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    attempts: int = 0
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    rollback_data: Optional[Dict[str, Any]] = None
    rolled_back: bool = False


class FixSummary(BaseModel):
    total_issues: int = 0
    fixable_issues: int = 0
    fixed_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    duration_ms: int = 0
    recommendations: List[str] = Field(default_factory=list)


class FixSession(SessionBase):
    status: Literal["pending", "running", "completed", "failed", "cancelled"] = "pending"
    dry_run: bool = False
    steps: List[WorkflowStep] = Field(default_factory=list)
    issues: List[ValidationIssue] = Field(default_factory=list)
    results: List[FixResult] = Field(default_factory=list)
    summary: Optional[FixSummary] = None


class FixApplyRequest(BaseModel):
    tenant_id: str
    issues: List[ValidationIssue]
    dry_run: bool = False
