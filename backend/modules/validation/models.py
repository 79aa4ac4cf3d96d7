from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from schema.records import Deal, Project, Quote
from schema.workflow import SessionBase, WorkflowStep

Severity = Literal["error", "warning", "info"]


class IssueCode:
    # deal titles and fields
    INVALID_TITLE_FORMAT = "INVALID_TITLE_FORMAT"
    MISSING_VESSEL = "MISSING_VESSEL"
    INVALID_VESSEL_NAME = "INVALID_VESSEL_NAME"
    INVALID_PROJECT_CODE = "INVALID_PROJECT_CODE"
    REQUIRED_FIELD_MISSING = "REQUIRED_FIELD_MISSING"
    # pipeline placement
    WON_DEAL_IN_UNQUALIFIED_PIPELINE = "WON_DEAL_IN_UNQUALIFIED_PIPELINE"
    OPEN_DEAL_IN_WRONG_PIPELINE = "OPEN_DEAL_IN_WRONG_PIPELINE"
    # deal -> quote cross reference
    NO_QUOTE_LINKED = "NO_QUOTE_LINKED"
    QUOTE_ID_MISMATCH = "QUOTE_ID_MISMATCH"
    QUOTE_NOT_FOUND = "QUOTE_NOT_FOUND"
    QUOTE_REFERENCE_MISSING = "QUOTE_REFERENCE_MISSING"
    QUOTE_REFERENCE_MISMATCH = "QUOTE_REFERENCE_MISMATCH"
    QUOTE_STATUS_MISMATCH = "QUOTE_STATUS_MISMATCH"
    QUOTE_VALUE_MISMATCH = "QUOTE_VALUE_MISMATCH"
    CURRENCY_MISMATCH = "CURRENCY_MISMATCH"
    CUSTOMER_NAME_MISMATCH = "CUSTOMER_NAME_MISMATCH"
    # products
    NO_PRODUCTS_IN_WON_DEAL = "NO_PRODUCTS_IN_WON_DEAL"
    PRODUCT_VALIDATION_FAILED = "PRODUCT_VALIDATION_FAILED"
    # accepted quotes
    ORPHANED_ACCEPTED_QUOTE = "ORPHANED_ACCEPTED_QUOTE"
    QUOTE_REFERENCES_MISSING_DEAL = "QUOTE_REFERENCES_MISSING_DEAL"
    ACCEPTED_QUOTE_WRONG_PIPELINE = "ACCEPTED_QUOTE_WRONG_PIPELINE"
    ACCEPTED_QUOTE_LOST_DEAL = "ACCEPTED_QUOTE_LOST_DEAL"
    VALUE_MISMATCH = "VALUE_MISMATCH"
    DUPLICATE_ACCEPTED_QUOTES = "DUPLICATE_ACCEPTED_QUOTES"
    ACCEPTED_QUOTE_NO_NUMBER = "ACCEPTED_QUOTE_NO_NUMBER"
    ACCEPTED_QUOTE_INVALID_FORMAT = "ACCEPTED_QUOTE_INVALID_FORMAT"
    MISSING_TRACKING_OPTIONS = "MISSING_TRACKING_OPTIONS"
    # invoice stage
    INVOICE_STAGE_NO_QUOTE = "INVOICE_STAGE_NO_QUOTE"
    INVOICE_STAGE_QUOTE_NOT_FOUND = "INVOICE_STAGE_QUOTE_NOT_FOUND"
    INVOICE_STAGE_QUOTE_NOT_INVOICED = "INVOICE_STAGE_QUOTE_NOT_INVOICED"
    # projects
    UNMATCHED_PROJECT = "UNMATCHED_PROJECT"
    # degraded sub-validations
    XERO_VALIDATION_FAILED = "XERO_VALIDATION_FAILED"


class ParsedTitle(BaseModel):
    model_config = ConfigDict(frozen=True)

    raw: str = ""
    project_code: Optional[str] = None
    vessel_name: Optional[str] = None
    separator: Optional[str] = None
    is_ed_format: bool = False
    is_invalid: bool = False
    invalid_reason: Optional[str] = None

    @property
    def canonical_title(self) -> Optional[str]:
        if not self.project_code or not self.vessel_name:
            return None
        return f"{self.project_code}-{self.vessel_name}"


class QuoteNumberCheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    number: Optional[str] = None
    is_valid: bool
    reasons: Tuple[str, ...] = ()
    suggested_number: Optional[str] = None
    suggested_fix: Optional[str] = None

    @property
    def reason(self) -> Optional[str]:
        return self.reasons[0] if self.reasons else None


class ValidationIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    severity: Severity
    code: str
    message: str
    deal_id: Optional[int] = None
    quote_id: Optional[str] = None
    project_id: Optional[str] = None
    field: Optional[str] = None
    suggested_fix: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ValidatedDeal(Deal):
    parsed_title: Optional[ParsedTitle] = None
    normalized_title: str = ""
    pipeline_name: str = ""
    xero_quote_id: Optional[str] = None
    quote_number: Optional[str] = None
    matched_quote_id: Optional[str] = None
    xero_project_id: Optional[str] = None
    issues: List[ValidationIssue] = Field(default_factory=list)


class ValidatedQuote(Quote):
    matched_deal_id: Optional[int] = None
    issues: List[ValidationIssue] = Field(default_factory=list)


class ValidatedProject(Project):
    project_key: str = ""
    matched_deal_id: Optional[int] = None
    issues: List[ValidationIssue] = Field(default_factory=list)


class ValidationSummary(BaseModel):
    total_deals: int = 0
    total_quotes: int = 0
    total_projects: int = 0
    deals_with_issues: int = 0
    quotes_with_issues: int = 0
    projects_with_issues: int = 0
    total_issues: int = 0
    error_count: int = 0
    warning_count: int = 0
    info_count: int = 0
    matched_deals_to_quotes: int = 0
    matched_deals_to_projects: int = 0
    unmatched_deals: int = 0
    unmatched_quotes: int = 0
    unmatched_projects: int = 0
    quotes_by_status: Dict[str, int] = Field(default_factory=dict)
    total_quote_in_progress_value: Optional[float] = None
    quote_currency: Optional[str] = None
    total_pipedrive_work_in_progress_value: Optional[float] = None
    pipedrive_currency: Optional[str] = None
    orphaned_accepted_quotes: int = 0
    orphaned_accepted_quotes_value: Optional[float] = None
    accepted_quotes_with_invalid_format: int = 0
    issue_breakdown: Dict[str, int] = Field(default_factory=dict)

    def apply_issue_counts(self, issues: List[ValidationIssue]):
        """Recount every issue-derived figure from scratch."""
        severities = Counter(issue.severity for issue in issues)
        self.total_issues = len(issues)
        self.error_count = severities.get("error", 0)
        self.warning_count = severities.get("warning", 0)
        self.info_count = severities.get("info", 0)
        self.issue_breakdown = dict(Counter(issue.code for issue in issues))


class ValidationResult(BaseModel):
    tenant_id: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    deals: List[ValidatedDeal] = Field(default_factory=list)
    quotes: List[ValidatedQuote] = Field(default_factory=list)
    projects: List[ValidatedProject] = Field(default_factory=list)
    issues: List[ValidationIssue] = Field(default_factory=list)
    summary: ValidationSummary = Field(default_factory=ValidationSummary)

    def issues_by_code(self, code: str) -> List[ValidationIssue]:
        return [issue for issue in self.issues if issue.code == code]


class ValidationSession(SessionBase):
    status: Literal["pending", "running", "completed", "failed"] = "pending"
    steps: List[WorkflowStep] = Field(default_factory=list)
    result: Optional[ValidationResult] = None

    def step(self, step_id: str) -> Optional[WorkflowStep]:
        return next((s for s in self.steps if s.id == step_id), None)


class ValidationRunRequest(BaseModel):
    tenant_id: str
