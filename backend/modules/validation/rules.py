"""
Validation rules over one tenant's fetched deals, quotes and projects.

Every rule is a plain function returning a list of ``ValidationIssue``; no
rule reads another rule's output, so the orchestrator only concatenates.
"""

import functools
from collections import defaultdict
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from core.logger import Logger
from modules.tenants.models import TenantConfig
from schema.records import Deal, Product, Project, Quote

from .models import IssueCode, ValidationIssue
from .titles import (
    check_quote_number,
    extract_deal_id_from_reference,
    generate_project_key,
    parse_title,
    suggest_title,
)

logger = Logger(__name__)

# deal value vs its own quote
EXACT_VALUE_TOLERANCE = Decimal("0.01")
# deal value vs an accepted quote linked only by heuristics
ORPHAN_VALUE_TOLERANCE = Decimal("0.10")
ORPHAN_VALUE_FLOOR = Decimal("1.00")

TRACKING_DETAIL_LIMIT = 5


def to_decimal(value) -> Decimal:
    try:
        return Decimal(str(value)) if value is not None else Decimal("0")
    except InvalidOperation:
        return Decimal("0")


def exceeds_exact_tolerance(left, right) -> bool:
    return abs(to_decimal(left) - to_decimal(right)) > EXACT_VALUE_TOLERANCE


def exceeds_orphan_tolerance(deal_value, quote_total) -> bool:
    difference = abs(to_decimal(deal_value) - to_decimal(quote_total))
    if difference < ORPHAN_VALUE_FLOOR:
        return False
    base = max(abs(to_decimal(deal_value)), abs(to_decimal(quote_total)))
    return difference > base * ORPHAN_VALUE_TOLERANCE


def _normalize_name(name: Optional[str]) -> str:
    return " ".join((name or "").lower().split())


class QuoteIndex:
    """Lookup of quotes by id (case-insensitive) and by quote number."""

    def __init__(self, quotes: Sequence[Quote]):
        self.quotes = list(quotes)
        self.by_id: Dict[str, Quote] = {}
        self.by_number: Dict[str, Quote] = {}
        for quote in self.quotes:
            self.by_id[quote.quote_id.lower()] = quote
            if quote.quote_number:
                self.by_number.setdefault(quote.quote_number.strip().upper(), quote)

    def get(self, quote_id: Optional[str] = None, quote_number: Optional[str] = None) -> Optional[Quote]:
        if quote_id and quote_id.lower() in self.by_id:
            return self.by_id[quote_id.lower()]
        if quote_number:
            return self.by_number.get(quote_number.strip().upper())
        return None


def quote_identifiers(deal: Deal, config: TenantConfig) -> Tuple[Optional[str], Optional[str]]:
    mapping = config.custom_field_mapping
    return mapping.value(deal, "xero_quote_id"), mapping.value(deal, "quote_number")


def link_deals_to_quotes(deals: Sequence[Deal], index: QuoteIndex, config: TenantConfig) -> Dict[int, Quote]:
    """Deal id -> quote resolved through the deal's own quote fields."""
    links = {}
    for deal in deals:
        quote = index.get(*quote_identifiers(deal, config))
        if quote:
            links[deal.id] = quote
    return links


def _is_ignored(deal: Deal, config: TenantConfig) -> bool:
    return deal.pipeline_id in config.ignored_pipeline_ids


def _project_code(deal: Deal, config: TenantConfig) -> Optional[str]:
    code = config.custom_field_mapping.value(deal, "project_code")
    if code:
        return code.upper()
    return parse_title(deal.title).project_code


def degrades_to_warning(code: str, label: str):
    """
    Turn an unexpected exception inside a rule into a single warning issue
    so the rest of the run still completes.
    """

    def decorator(rule: Callable[..., List[ValidationIssue]]):
        @functools.wraps(rule)
        def wrapper(*args, **kwargs) -> List[ValidationIssue]:
            try:
                return rule(*args, **kwargs)
            except Exception as e:
                logger.error(f"{label} failed in {rule.__name__}: {e}", exc_info=True)
                return [
                    ValidationIssue(
                        severity="warning",
                        code=code,
                        message=f"{label} could not be completed: {e}",
                        metadata={"rule": rule.__name__},
                    )
                ]

        return wrapper

    return decorator


xero_rule = degrades_to_warning(IssueCode.XERO_VALIDATION_FAILED, "Xero quote validation")


# -- deal rules ---------------------------------------------------------------


def validate_titles(deals: Sequence[Deal], config: TenantConfig) -> List[ValidationIssue]:
    issues = []
    prefixes = {prefix.upper() for prefix in config.valid_project_prefixes}

    for deal in deals:
        if _is_ignored(deal, config):
            continue
        if config.title_scope == "won" and deal.status != "won":
            continue

        parsed = parse_title(deal.title)
        if parsed.is_invalid:
            issues.append(_title_issue(deal, parsed, config))
            continue

        if prefixes:
            letters = parsed.project_code.rstrip("0123456789")
            if letters not in prefixes:
                issues.append(
                    ValidationIssue(
                        severity="warning",
                        code=IssueCode.INVALID_PROJECT_CODE,
                        message=f"Project code {parsed.project_code} does not use a known prefix",
                        deal_id=deal.id,
                        field="title",
                        suggested_fix=f"Use one of: {', '.join(sorted(prefixes))}",
                        metadata={"project_code": parsed.project_code, "prefix": letters},
                    )
                )
    return issues


def _title_issue(deal: Deal, parsed, config: TenantConfig) -> ValidationIssue:
    metadata = {"title": deal.title, "reason": parsed.invalid_reason}

    if parsed.invalid_reason == "missing_vessel":
        return ValidationIssue(
            severity=config.title_severity,
            code=IssueCode.MISSING_VESSEL,
            message=f"Deal title '{deal.title}' has no vessel name",
            deal_id=deal.id,
            field="title",
            suggested_fix=f"Rename to {parsed.project_code or 'CODE'}-<Vessel Name>",
            metadata=metadata,
        )
    if parsed.invalid_reason == "numeric_vessel":
        return ValidationIssue(
            severity=config.title_severity,
            code=IssueCode.INVALID_VESSEL_NAME,
            message=f"Vessel name '{parsed.vessel_name}' is purely numeric",
            deal_id=deal.id,
            field="title",
            suggested_fix="Use the vessel's name rather than a number",
            metadata={**metadata, "vessel_name": parsed.vessel_name},
        )

    expected = suggest_title(parsed)
    if expected:
        metadata["expected_title"] = expected
    return ValidationIssue(
        severity=config.title_severity,
        code=IssueCode.INVALID_TITLE_FORMAT,
        message=f"Deal title '{deal.title}' does not follow PROJECTCODE-Vessel ({parsed.invalid_reason})",
        deal_id=deal.id,
        field="title",
        suggested_fix=f"Rename to {expected}" if expected else "Rename to PROJECTCODE-Vessel Name",
        metadata=metadata,
    )


def validate_required_fields(deals: Sequence[Deal], config: TenantConfig) -> List[ValidationIssue]:
    if not config.required_fields:
        return []

    issues = []
    mapping = config.custom_field_mapping
    for deal in deals:
        if _is_ignored(deal, config) or deal.status != "won":
            continue
        for field, severity in config.required_fields.items():
            if field == "project_code":
                value = _project_code(deal, config)
            else:
                value = mapping.value(deal, field)
            if value:
                continue
            issues.append(
                ValidationIssue(
                    severity=severity,
                    code=IssueCode.REQUIRED_FIELD_MISSING,
                    message=f"Required field '{field}' is empty",
                    deal_id=deal.id,
                    field=field,
                    suggested_fix=f"Fill in '{field}' on the deal in Pipedrive",
                    metadata={"field_key": mapping.key_for(field)},
                )
            )
    return issues


def validate_pipeline_placement(deals: Sequence[Deal], config: TenantConfig) -> List[ValidationIssue]:
    issues = []
    for deal in deals:
        if _is_ignored(deal, config):
            continue
        pipeline = config.pipeline_name(deal.pipeline_id)

        if deal.status == "won" and deal.pipeline_id in config.unqualified_pipeline_ids:
            issues.append(
                ValidationIssue(
                    severity="error",
                    code=IssueCode.WON_DEAL_IN_UNQUALIFIED_PIPELINE,
                    message=f"Won deal is still in the unqualified pipeline '{pipeline}'",
                    deal_id=deal.id,
                    field="pipeline_id",
                    suggested_fix="Move the deal to a work-in-progress pipeline",
                    metadata={"pipeline_id": deal.pipeline_id, "pipeline_name": pipeline},
                )
            )
        if deal.status == "open" and deal.pipeline_id in config.closed_only_pipeline_ids:
            issues.append(
                ValidationIssue(
                    severity="error",
                    code=IssueCode.OPEN_DEAL_IN_WRONG_PIPELINE,
                    message=f"Open deal sits in closed-deals pipeline '{pipeline}'",
                    deal_id=deal.id,
                    field="pipeline_id",
                    suggested_fix="Close the deal or move it to an active pipeline",
                    metadata={"pipeline_id": deal.pipeline_id, "pipeline_name": pipeline},
                )
            )
    return issues


def validate_products(
    deals: Sequence[Deal],
    products: Dict[int, List[Product]],
    config: TenantConfig,
) -> List[ValidationIssue]:
    if not config.check_products:
        return []

    issues = []
    for deal in deals:
        if _is_ignored(deal, config) or deal.status != "won":
            continue
        if not products.get(deal.id):
            issues.append(
                ValidationIssue(
                    severity="error",
                    code=IssueCode.NO_PRODUCTS_IN_WON_DEAL,
                    message="Won deal has no products attached",
                    deal_id=deal.id,
                    field="products",
                    suggested_fix="Add the quoted line items as deal products",
                )
            )
    return issues


def product_failure_issue(error: Exception) -> ValidationIssue:
    return ValidationIssue(
        severity="warning",
        code=IssueCode.PRODUCT_VALIDATION_FAILED,
        message=f"Deal products could not be fetched, product checks skipped: {error}",
        metadata={"error": str(error)},
    )


# -- deal/quote cross reference ------------------------------------------------


@xero_rule
def validate_quote_links(deals: Sequence[Deal], quotes: Sequence[Quote], config: TenantConfig) -> List[ValidationIssue]:
    index = QuoteIndex(quotes)
    issues = []

    for deal in deals:
        if _is_ignored(deal, config):
            continue
        quote_id, quote_number = quote_identifiers(deal, config)

        if not quote_id and not quote_number:
            issues.append(
                ValidationIssue(
                    severity="info",
                    code=IssueCode.NO_QUOTE_LINKED,
                    message="Deal has no Xero quote linked",
                    deal_id=deal.id,
                    field="xero_quote_id",
                )
            )
            continue

        quote = index.get(quote_id, quote_number)
        if not quote:
            issues.append(
                ValidationIssue(
                    severity="error",
                    code=IssueCode.QUOTE_NOT_FOUND,
                    message=f"Xero quote {quote_id or quote_number} not found in Xero",
                    deal_id=deal.id,
                    field="xero_quote_id" if quote_id else "quote_number",
                    metadata={"xero_quote_id": quote_id, "quote_number": quote_number},
                )
            )
            continue

        issues.extend(_compare_deal_and_quote(deal, quote, quote_id, quote_number))
    return issues


def _compare_deal_and_quote(deal: Deal, quote: Quote, quote_id, quote_number) -> List[ValidationIssue]:
    issues = []
    base = {"deal_id": deal.id, "quote_id": quote.quote_id}

    id_disagrees = quote_id and quote.quote_id.lower() != quote_id.lower()
    number_disagrees = quote_number and (quote.quote_number or "").upper() != quote_number.strip().upper()
    if quote_id and quote_number and (id_disagrees or number_disagrees):
        issues.append(
            ValidationIssue(
                severity="warning",
                code=IssueCode.QUOTE_ID_MISMATCH,
                message=f"Deal quote id {quote_id} and quote number {quote_number} point at different quotes",
                field="xero_quote_id",
                suggested_fix=f"Set quote id {quote.quote_id} and number {quote.quote_number} on the deal",
                metadata={"deal_quote_id": quote_id, "deal_quote_number": quote_number, "quote_number": quote.quote_number},
                **base,
            )
        )

    referenced = extract_deal_id_from_reference(quote.reference)
    if referenced is None:
        issues.append(
            ValidationIssue(
                severity="info",
                code=IssueCode.QUOTE_REFERENCE_MISSING,
                message=f"Quote {quote.quote_number} reference does not name a Pipedrive deal",
                field="reference",
                suggested_fix=f"Set the quote reference to 'Pipedrive Deal ID: {deal.id}'",
                metadata={"reference": quote.reference},
                **base,
            )
        )
    elif referenced != deal.id:
        issues.append(
            ValidationIssue(
                severity="warning",
                code=IssueCode.QUOTE_REFERENCE_MISMATCH,
                message=f"Quote {quote.quote_number} references deal {referenced}, expected {deal.id}",
                field="reference",
                metadata={"reference": quote.reference, "referenced_deal_id": referenced},
                **base,
            )
        )

    expected_status = None
    if deal.status == "won" and quote.status not in ("ACCEPTED", "INVOICED"):
        expected_status = "ACCEPTED"
    elif deal.status == "lost" and quote.status != "DECLINED":
        expected_status = "DECLINED"
    if expected_status:
        issues.append(
            ValidationIssue(
                severity="error",
                code=IssueCode.QUOTE_STATUS_MISMATCH,
                message=f"{deal.status.capitalize()} deal has quote in status {quote.status} (expected {expected_status})",
                field="quote_status",
                suggested_fix=f"Change quote {quote.quote_number} to {expected_status}",
                metadata={"current_status": quote.status, "expected_status": expected_status},
                **base,
            )
        )

    if exceeds_exact_tolerance(deal.value, quote.total):
        issues.append(
            ValidationIssue(
                severity="error",
                code=IssueCode.QUOTE_VALUE_MISMATCH,
                message=f"Deal value ({deal.value}) doesn't match quote total ({quote.total})",
                field="value",
                suggested_fix="Sync the quote line items from the deal products",
                metadata={
                    "deal_value": deal.value,
                    "quote_total": quote.total,
                    "difference": float(abs(to_decimal(deal.value) - to_decimal(quote.total))),
                },
                **base,
            )
        )

    if deal.currency and quote.currency_code and deal.currency.upper() != quote.currency_code.upper():
        issues.append(
            ValidationIssue(
                severity="warning",
                code=IssueCode.CURRENCY_MISMATCH,
                message=f"Deal currency {deal.currency} differs from quote currency {quote.currency_code}",
                field="currency",
                metadata={"deal_currency": deal.currency, "quote_currency": quote.currency_code},
                **base,
            )
        )

    org, contact = _normalize_name(deal.org_name), _normalize_name(quote.contact_name)
    if org and contact and org not in contact and contact not in org:
        issues.append(
            ValidationIssue(
                severity="warning",
                code=IssueCode.CUSTOMER_NAME_MISMATCH,
                message=f"Organization '{deal.org_name}' might not match Xero contact '{quote.contact_name}'",
                field="org_name",
                suggested_fix="Verify organization names match between systems",
                metadata={"org_name": deal.org_name, "contact_name": quote.contact_name},
                **base,
            )
        )
    return issues


# -- accepted quotes -----------------------------------------------------------


def _accepted(quotes: Sequence[Quote]) -> List[Quote]:
    return [quote for quote in quotes if quote.status == "ACCEPTED"]


def resolve_quote_deal(
    quote: Quote,
    deals_by_quote: Dict[str, Deal],
    deals_by_id: Dict[int, Deal],
) -> Tuple[Optional[Deal], Optional[int]]:
    """
    Deal linked to a quote, via the deal's quote fields first and then via
    the deal id in the quote reference. Also returns the referenced id.
    """
    referenced = extract_deal_id_from_reference(quote.reference)
    deal = deals_by_quote.get(quote.quote_id.lower())
    if deal is None and quote.quote_number:
        deal = deals_by_quote.get(quote.quote_number.strip().upper())
    if deal is None and referenced is not None:
        deal = deals_by_id.get(referenced)
    return deal, referenced


def index_deals_by_quote(deals: Sequence[Deal], config: TenantConfig) -> Dict[str, Deal]:
    index = {}
    for deal in deals:
        quote_id, quote_number = quote_identifiers(deal, config)
        if quote_id:
            index.setdefault(quote_id.lower(), deal)
        if quote_number:
            index.setdefault(quote_number.strip().upper(), deal)
    return index


@xero_rule
def validate_orphaned_accepted_quotes(
    deals: Sequence[Deal], quotes: Sequence[Quote], config: TenantConfig
) -> List[ValidationIssue]:
    deals_by_quote = index_deals_by_quote(deals, config)
    deals_by_id = {deal.id: deal for deal in deals}
    wip = set(config.wip_pipeline_ids)
    issues = []

    for quote in _accepted(quotes):
        deal, referenced = resolve_quote_deal(quote, deals_by_quote, deals_by_id)
        base = {"quote_id": quote.quote_id}
        quote_meta = {"quote_number": quote.quote_number, "quote_total": quote.total, "contact_name": quote.contact_name}

        if deal is None:
            if referenced is not None:
                issues.append(
                    ValidationIssue(
                        severity="error",
                        code=IssueCode.QUOTE_REFERENCES_MISSING_DEAL,
                        message=f"Accepted quote {quote.quote_number} references deal {referenced}, which was not found",
                        field="reference",
                        suggested_fix=f"Check whether deal {referenced} was deleted or moved out of the tracked pipelines",
                        metadata={**quote_meta, "referenced_deal_id": referenced, "reference": quote.reference},
                        **base,
                    )
                )
            else:
                issues.append(
                    ValidationIssue(
                        severity="warning",
                        code=IssueCode.ORPHANED_ACCEPTED_QUOTE,
                        message=f"Accepted quote {quote.quote_number} is not linked to any Pipedrive deal",
                        field="reference",
                        suggested_fix="Link the quote to its deal or add 'Pipedrive Deal ID: <id>' to the reference",
                        metadata={**quote_meta, "reference": quote.reference},
                        **base,
                    )
                )
            continue

        if _is_ignored(deal, config):
            continue
        linked = {**base, "deal_id": deal.id}

        if deal.status == "lost":
            issues.append(
                ValidationIssue(
                    severity="warning",
                    code=IssueCode.ACCEPTED_QUOTE_LOST_DEAL,
                    message=f"Accepted quote {quote.quote_number} belongs to a lost deal",
                    field="status",
                    suggested_fix="Decline the quote or reopen the deal",
                    metadata=quote_meta,
                    **linked,
                )
            )
        elif wip and deal.pipeline_id not in wip:
            pipeline = config.pipeline_name(deal.pipeline_id)
            issues.append(
                ValidationIssue(
                    severity="warning",
                    code=IssueCode.ACCEPTED_QUOTE_WRONG_PIPELINE,
                    message=f"Accepted quote {quote.quote_number} belongs to a deal in '{pipeline}'",
                    field="pipeline_id",
                    suggested_fix="Move the deal to a work-in-progress pipeline",
                    metadata={**quote_meta, "pipeline_id": deal.pipeline_id, "pipeline_name": pipeline},
                    **linked,
                )
            )

        if exceeds_orphan_tolerance(deal.value, quote.total):
            issues.append(
                ValidationIssue(
                    severity="warning",
                    code=IssueCode.VALUE_MISMATCH,
                    message=f"Accepted quote total ({quote.total}) differs from deal value ({deal.value}) by more than 10%",
                    field="value",
                    metadata={**quote_meta, "deal_value": deal.value},
                    **linked,
                )
            )
    return issues


@xero_rule
def validate_duplicate_accepted_quotes(
    deals: Sequence[Deal], quotes: Sequence[Quote], config: TenantConfig
) -> List[ValidationIssue]:
    deals_by_quote = index_deals_by_quote(deals, config)
    deals_by_id = {deal.id: deal for deal in deals}
    grouped: Dict[int, List[Quote]] = defaultdict(list)

    for quote in _accepted(quotes):
        deal, _ = resolve_quote_deal(quote, deals_by_quote, deals_by_id)
        if deal is not None:
            grouped[deal.id].append(quote)

    issues = []
    for deal_id, group in grouped.items():
        if len(group) < 2:
            continue
        numbers = [quote.quote_number or quote.quote_id for quote in group]
        issues.append(
            ValidationIssue(
                severity="warning",
                code=IssueCode.DUPLICATE_ACCEPTED_QUOTES,
                message=f"Deal has {len(group)} accepted quotes: {', '.join(numbers)}",
                deal_id=deal_id,
                field="quote_status",
                suggested_fix="Decline or delete the superseded quotes",
                metadata={"quote_ids": [quote.quote_id for quote in group], "quote_numbers": numbers},
            )
        )
    return issues


@xero_rule
def validate_accepted_quote_numbers(
    deals: Sequence[Deal], quotes: Sequence[Quote], config: TenantConfig
) -> List[ValidationIssue]:
    deals_by_quote = index_deals_by_quote(deals, config)
    deals_by_id = {deal.id: deal for deal in deals}
    issues = []

    for quote in _accepted(quotes):
        deal, _ = resolve_quote_deal(quote, deals_by_quote, deals_by_id)
        project_code = _project_code(deal, config) if deal else None
        deal_id = deal.id if deal else None

        if not quote.quote_number or not quote.quote_number.strip():
            issues.append(
                ValidationIssue(
                    severity="error",
                    code=IssueCode.ACCEPTED_QUOTE_NO_NUMBER,
                    message=f"Accepted quote {quote.quote_id} has no quote number",
                    deal_id=deal_id,
                    quote_id=quote.quote_id,
                    field="quote_number",
                    suggested_fix=check_quote_number(None, project_code).suggested_fix,
                )
            )
            continue

        check = check_quote_number(quote.quote_number, project_code)
        if check.is_valid:
            continue
        metadata = {"quote_number": quote.quote_number, "reasons": list(check.reasons), "project_code": project_code}
        if check.suggested_number:
            metadata["suggested_number"] = check.suggested_number
        issues.append(
            ValidationIssue(
                severity="error",
                code=IssueCode.ACCEPTED_QUOTE_INVALID_FORMAT,
                message=f"Accepted quote number {quote.quote_number} is invalid ({', '.join(check.reasons)})",
                deal_id=deal_id,
                quote_id=quote.quote_id,
                field="quote_number",
                suggested_fix=check.suggested_fix,
                metadata=metadata,
            )
        )
    return issues


@xero_rule
def validate_invoice_stage(deals: Sequence[Deal], quotes: Sequence[Quote], config: TenantConfig) -> List[ValidationIssue]:
    if config.invoice_stage_id is None:
        return []

    index = QuoteIndex(quotes)
    issues = []
    for deal in deals:
        if _is_ignored(deal, config) or deal.stage_id != config.invoice_stage_id:
            continue
        quote_id, quote_number = quote_identifiers(deal, config)

        if not quote_id and not quote_number:
            issues.append(
                ValidationIssue(
                    severity="error",
                    code=IssueCode.INVOICE_STAGE_NO_QUOTE,
                    message="Deal is in the Invoice stage but has no quote linked",
                    deal_id=deal.id,
                    field="xero_quote_id",
                    suggested_fix="Link the accepted Xero quote to the deal",
                )
            )
            continue

        quote = index.get(quote_id, quote_number)
        if quote is None:
            issues.append(
                ValidationIssue(
                    severity="error",
                    code=IssueCode.INVOICE_STAGE_QUOTE_NOT_FOUND,
                    message=f"Deal is in the Invoice stage but quote {quote_id or quote_number} was not found",
                    deal_id=deal.id,
                    field="xero_quote_id",
                    metadata={"xero_quote_id": quote_id, "quote_number": quote_number},
                )
            )
        elif quote.status != "INVOICED":
            issues.append(
                ValidationIssue(
                    severity="error",
                    code=IssueCode.INVOICE_STAGE_QUOTE_NOT_INVOICED,
                    message=f"Deal is in the Invoice stage but quote {quote.quote_number} is {quote.status}",
                    deal_id=deal.id,
                    quote_id=quote.quote_id,
                    field="quote_status",
                    suggested_fix=f"Convert quote {quote.quote_number} to an invoice in Xero",
                    metadata={"quote_number": quote.quote_number, "current_status": quote.status},
                )
            )
    return issues


@xero_rule
def validate_tracking(quotes: Sequence[Quote]) -> List[ValidationIssue]:
    issues = []
    for quote in _accepted(quotes):
        offending = [
            item for item in quote.line_items if not item.tracking or not all(t.is_complete for t in item.tracking)
        ]
        if not offending:
            continue
        details = [
            {"description": (item.description or "No description")[:50], "line_amount": item.line_amount}
            for item in offending[:TRACKING_DETAIL_LIMIT]
        ]
        issues.append(
            ValidationIssue(
                severity="error",
                code=IssueCode.MISSING_TRACKING_OPTIONS,
                message=f"Quote has {len(offending)} line item(s) without proper tracking categories",
                quote_id=quote.quote_id,
                field="line_items",
                suggested_fix="Assign a tracking category to each line item of the quote in Xero",
                metadata={
                    "quote_number": quote.quote_number,
                    "line_items_without_tracking": len(offending),
                    "total_line_items": len(quote.line_items),
                    "details": details,
                },
            )
        )
    return issues


# -- projects ------------------------------------------------------------------


def link_projects_to_deals(deals: Sequence[Deal], projects: Sequence[Project]) -> Dict[str, Deal]:
    """Project id -> deal sharing its project key."""
    deals_by_key: Dict[str, Deal] = {}
    for deal in deals:
        key = generate_project_key(deal.title)
        if key:
            deals_by_key.setdefault(key, deal)
    links = {}
    for project in projects:
        deal = deals_by_key.get(generate_project_key(project.name))
        if deal:
            links[project.project_id] = deal
    return links


def validate_projects(deals: Sequence[Deal], projects: Sequence[Project]) -> List[ValidationIssue]:
    links = link_projects_to_deals(deals, projects)
    return [
        ValidationIssue(
            severity="info",
            code=IssueCode.UNMATCHED_PROJECT,
            message=f"Project '{project.name}' has no matching deal in Pipedrive",
            project_id=project.project_id,
            field="project",
            metadata={"project_key": generate_project_key(project.name)},
        )
        for project in projects
        if project.status == "INPROGRESS" and project.project_id not in links
    ]


def run_deal_rules(
    deals: Sequence[Deal],
    config: TenantConfig,
    products: Optional[Dict[int, List[Product]]] = None,
    product_error: Optional[Exception] = None,
) -> List[ValidationIssue]:
    issues = validate_titles(deals, config)
    issues += validate_required_fields(deals, config)
    if product_error is not None:
        issues.append(product_failure_issue(product_error))
    elif products is not None:
        issues += validate_products(deals, products, config)
    return issues


def run_cross_reference_rules(
    deals: Sequence[Deal],
    quotes: Sequence[Quote],
    projects: Sequence[Project],
    config: TenantConfig,
) -> List[ValidationIssue]:
    issues = validate_pipeline_placement(deals, config)
    issues += validate_quote_links(deals, quotes, config)
    issues += validate_orphaned_accepted_quotes(deals, quotes, config)
    issues += validate_duplicate_accepted_quotes(deals, quotes, config)
    issues += validate_accepted_quote_numbers(deals, quotes, config)
    issues += validate_invoice_stage(deals, quotes, config)
    issues += validate_tracking(quotes)
    issues += validate_projects(deals, projects)
    return issues
