from collections import Counter, defaultdict
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from core.base_database import BaseDatabase
from core.base_handler import BaseWorkflowHandler, ProgressCallback
from core.errors import CrossValError
from core.logger import Logger
from modules.tenants.models import TenantConfig
from modules.tenants.service import TenantConfigService
from schema.records import Deal, Project, Quote
from schema.workflow import new_session_id, utcnow
from services.pipedrive.service import PipedriveService
from services.xero.service import XeroService

from .models import (
    IssueCode,
    ValidatedDeal,
    ValidatedProject,
    ValidatedQuote,
    ValidationIssue,
    ValidationResult,
    ValidationSession,
    ValidationSummary,
)
from .rules import (
    QuoteIndex,
    index_deals_by_quote,
    link_deals_to_quotes,
    link_projects_to_deals,
    quote_identifiers,
    run_cross_reference_rules,
    run_deal_rules,
    to_decimal,
)
from .titles import generate_project_key, normalize_title, parse_title

logger = Logger(__name__)

SESSIONS_COLLECTION = "validation_sessions"


def _money(values) -> Decimal:
    return sum((to_decimal(value) for value in values), Decimal("0"))


def _dominant(values) -> Optional[str]:
    counts = Counter(value for value in values if value)
    return counts.most_common(1)[0][0] if counts else None


def build_validation_result(
    tenant_id: str,
    deals: Sequence[Deal],
    quotes: Sequence[Quote],
    projects: Sequence[Project],
    issues: Sequence[ValidationIssue],
    config: TenantConfig,
) -> ValidationResult:
    """Attach issues and cross-system links to every record and compute the summary."""
    quote_links = link_deals_to_quotes(deals, QuoteIndex(quotes), config)
    project_links = link_projects_to_deals(deals, projects)
    project_by_deal = {}
    for project_id, deal in project_links.items():
        project_by_deal.setdefault(deal.id, project_id)
    deals_by_quote = index_deals_by_quote(deals, config)

    by_deal: Dict[int, List[ValidationIssue]] = defaultdict(list)
    by_quote: Dict[str, List[ValidationIssue]] = defaultdict(list)
    by_project: Dict[str, List[ValidationIssue]] = defaultdict(list)
    for issue in issues:
        if issue.deal_id is not None:
            by_deal[issue.deal_id].append(issue)
        if issue.quote_id:
            by_quote[issue.quote_id].append(issue)
        if issue.project_id:
            by_project[issue.project_id].append(issue)

    validated_deals = []
    unmatched_deals = 0
    for deal in deals:
        quote_id, quote_number = quote_identifiers(deal, config)
        if not quote_id and not quote_number:
            unmatched_deals += 1
        matched = quote_links.get(deal.id)
        validated_deals.append(
            ValidatedDeal(
                **deal.model_dump(),
                parsed_title=parse_title(deal.title),
                normalized_title=normalize_title(deal.title),
                pipeline_name=config.pipeline_name(deal.pipeline_id),
                xero_quote_id=quote_id,
                quote_number=quote_number,
                matched_quote_id=matched.quote_id if matched else None,
                xero_project_id=project_by_deal.get(deal.id),
                issues=by_deal.get(deal.id, []),
            )
        )

    validated_quotes = []
    for quote in quotes:
        deal = deals_by_quote.get(quote.quote_id.lower())
        if deal is None and quote.quote_number:
            deal = deals_by_quote.get(quote.quote_number.strip().upper())
        validated_quotes.append(
            ValidatedQuote(
                **quote.model_dump(),
                matched_deal_id=deal.id if deal else None,
                issues=by_quote.get(quote.quote_id, []),
            )
        )

    validated_projects = [
        ValidatedProject(
            **project.model_dump(),
            project_key=generate_project_key(project.name),
            matched_deal_id=project_links[project.project_id].id if project.project_id in project_links else None,
            issues=by_project.get(project.project_id, []),
        )
        for project in projects
    ]

    accepted = [quote for quote in quotes if quote.status == "ACCEPTED"]
    wip = set(config.wip_pipeline_ids)
    wip_deals = [deal for deal in deals if deal.status == "won" and deal.pipeline_id in wip]
    orphan_ids = {
        issue.quote_id
        for issue in issues
        if issue.code in (IssueCode.ORPHANED_ACCEPTED_QUOTE, IssueCode.QUOTE_REFERENCES_MISSING_DEAL)
    }
    orphans = [quote for quote in accepted if quote.quote_id in orphan_ids]

    summary = ValidationSummary(
        total_deals=len(deals),
        total_quotes=len(quotes),
        total_projects=len(projects),
        deals_with_issues=sum(1 for deal in validated_deals if deal.issues),
        quotes_with_issues=sum(1 for quote in validated_quotes if quote.issues),
        projects_with_issues=sum(1 for project in validated_projects if project.issues),
        matched_deals_to_quotes=len(quote_links),
        matched_deals_to_projects=len(project_by_deal),
        unmatched_deals=unmatched_deals,
        unmatched_quotes=sum(1 for quote in validated_quotes if quote.matched_deal_id is None),
        unmatched_projects=sum(1 for project in validated_projects if project.matched_deal_id is None),
        quotes_by_status=dict(Counter(quote.status for quote in quotes)),
        total_quote_in_progress_value=float(_money(quote.total for quote in accepted)),
        quote_currency=_dominant(quote.currency_code for quote in accepted),
        total_pipedrive_work_in_progress_value=float(_money(deal.value for deal in wip_deals)),
        pipedrive_currency=_dominant(deal.currency for deal in wip_deals),
        orphaned_accepted_quotes=len(orphans),
        orphaned_accepted_quotes_value=float(_money(quote.total for quote in orphans)),
        accepted_quotes_with_invalid_format=sum(
            1
            for issue in issues
            if issue.code in (IssueCode.ACCEPTED_QUOTE_INVALID_FORMAT, IssueCode.ACCEPTED_QUOTE_NO_NUMBER)
        ),
    )
    summary.apply_issue_counts(list(issues))

    return ValidationResult(
        tenant_id=tenant_id,
        deals=validated_deals,
        quotes=validated_quotes,
        projects=validated_projects,
        issues=list(issues),
        summary=summary,
    )


class ValidationOrchestrator(BaseWorkflowHandler, BaseDatabase):
    """
    One validation run for one tenant: fetch deals, quotes and projects,
    run the rules and assemble the report.

    Services are injected for tests; when omitted they are built per run
    from the tenant configuration.
    """

    workflow_name = "validation"

    def __init__(
        self,
        pipedrive=None,
        xero=None,
        tenant_configs: Optional[TenantConfigService] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        super().__init__(progress_callback)
        self.pipedrive = pipedrive
        self.xero = xero
        self.tenant_configs = tenant_configs or TenantConfigService()

    def get_steps(self):
        return [
            ("fetch_pipedrive_deals", "Fetch Pipedrive Deals", "Fetching deals from the configured pipelines"),
            ("fetch_xero_quotes", "Fetch Xero Quotes", "Fetching quotes from Xero"),
            ("fetch_xero_projects", "Fetch Xero Projects", "Fetching in-progress projects from Xero"),
            ("validate_titles", "Validate Deals", "Checking titles, required fields and products"),
            ("cross_reference", "Cross Reference", "Matching deals against quotes and projects"),
            ("generate_report", "Generate Report", "Building the validation report"),
        ]

    async def execute_validation_workflow(
        self, tenant_id: str, config: Optional[TenantConfig] = None, session_id: Optional[str] = None
    ) -> ValidationSession:
        config = config or await self.tenant_configs.get_tenant_config(tenant_id)
        session = ValidationSession(
            id=session_id or new_session_id("validation"),
            tenant_id=tenant_id,
            tenant_name=config.tenant_name,
            status="running",
            steps=self.create_steps(),
        )
        steps = {step.id: step for step in session.steps}
        logger.info(f"Validation {session.id} started", tenant_id=tenant_id)

        try:
            pipedrive = self.pipedrive or self._pipedrive_for(config)
            xero = self.xero or self._xero_for(tenant_id)

            deals = await self.run_step(
                steps["fetch_pipedrive_deals"],
                pipedrive.fetch_all_deals,
                config.fetch_pipeline_ids,
                summarize=lambda r: {"deals": len(r)},
            )
            quotes = await self.run_step(
                steps["fetch_xero_quotes"], xero.fetch_quotes, summarize=lambda r: {"quotes": len(r)}
            )
            projects = await self.run_step(
                steps["fetch_xero_projects"],
                xero.fetch_projects,
                "INPROGRESS",
                summarize=lambda r: {"projects": len(r)},
            )
            deal_issues = await self.run_step(
                steps["validate_titles"],
                self.validate_deals,
                pipedrive,
                deals,
                config,
                summarize=lambda r: {"issues": len(r)},
            )
            cross_issues = await self.run_step(
                steps["cross_reference"],
                self.cross_reference,
                deals,
                quotes,
                projects,
                config,
                summarize=lambda r: {"issues": len(r)},
            )
            session.result = await self.run_step(
                steps["generate_report"],
                self.generate_report,
                tenant_id,
                deals,
                quotes,
                projects,
                deal_issues + cross_issues,
                config,
                summarize=lambda r: {
                    "total_issues": r.summary.total_issues,
                    "errors": r.summary.error_count,
                    "warnings": r.summary.warning_count,
                },
            )
        except Exception as e:
            session.status = "failed"
            session.error = str(e)
            session.ended_at = utcnow()
            await self.skip_pending(session.steps)
            logger.error(f"Validation {session.id} failed: {e}", tenant_id=tenant_id)
            await self._persist(session)
            raise

        session.status = "completed"
        session.ended_at = utcnow()
        logger.info(
            f"Validation {session.id} completed",
            tenant_id=tenant_id,
            issues=session.result.summary.total_issues,
            errors=session.result.summary.error_count,
        )
        await self._persist(session)
        return session

    async def validate_deals(self, pipedrive, deals: List[Deal], config: TenantConfig) -> List[ValidationIssue]:
        products, product_error = None, None
        if config.check_products:
            won = [
                deal.id for deal in deals if deal.status == "won" and deal.pipeline_id not in config.ignored_pipeline_ids
            ]
            try:
                products = await pipedrive.fetch_deal_products(won)
            except CrossValError as e:
                logger.warning(f"Product fetch failed, product checks skipped: {e}", tenant_id=config.tenant_id)
                product_error = e
        return run_deal_rules(deals, config, products=products, product_error=product_error)

    async def cross_reference(
        self, deals: List[Deal], quotes: List[Quote], projects: List[Project], config: TenantConfig
    ) -> List[ValidationIssue]:
        return run_cross_reference_rules(deals, quotes, projects, config)

    async def generate_report(self, tenant_id, deals, quotes, projects, issues, config) -> ValidationResult:
        return build_validation_result(tenant_id, deals, quotes, projects, issues, config)

    async def get_session(self, session_id: str) -> Optional[ValidationSession]:
        if not self.has_database():
            return None
        doc = await self.mongodb.find_one(SESSIONS_COLLECTION, {"id": session_id})
        if not doc:
            return None
        doc.pop("_id", None)
        return ValidationSession.model_validate(doc)

    def _pipedrive_for(self, config: TenantConfig):
        return PipedriveService.for_tenant(config)

    def _xero_for(self, tenant_id: str):
        return XeroService.for_tenant(tenant_id)

    async def _persist(self, session: ValidationSession):
        if not self.has_database():
            return
        await self.mongodb.upsert_one(SESSIONS_COLLECTION, {"id": session.id}, session.model_dump(mode="json"))
