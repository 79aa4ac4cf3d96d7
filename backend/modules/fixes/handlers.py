from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from core.errors import CrossValError, FixError
from core.logger import Logger
from modules.validation.models import IssueCode, ValidationIssue
from services.xero.quotes import (
    fix_quote_number,
    sync_products_to_quote,
    transition_quote_status,
    update_line_items,
)

from .models import FixContext, FixHandlerResult
from .transitions import get_status_transition_path

logger = Logger(__name__)

PLACEHOLDER_MARKERS = ("(missing", "(set ")


class FixHandler(ABC):
    """
    Corrective write for one family of issue codes.

    ``validate`` returns ``None`` when the fix may be applied, otherwise the
    reason it is skipped. ``apply_fix`` and ``rollback`` raise on failure.
    """

    handler_id: str = "base"
    issue_codes: Tuple[str, ...] = ()
    description: str = ""

    def can_handle(self, issue: ValidationIssue) -> bool:
        return issue.code in self.issue_codes

    @abstractmethod
    async def validate(self, issue: ValidationIssue, context: FixContext) -> Optional[str]:
        ...

    @abstractmethod
    async def apply_fix(self, issue: ValidationIssue, context: FixContext) -> FixHandlerResult:
        ...

    @abstractmethod
    async def rollback(self, issue: ValidationIssue, rollback_data: dict, context: FixContext):
        ...

    async def _load_quote(self, issue: ValidationIssue, context: FixContext):
        if not issue.quote_id:
            return None
        return await context.xero.fetch_quote_by_id(issue.quote_id)

    def _original_status(self, quote, context: FixContext) -> str:
        return context.original_statuses.setdefault(quote.quote_id, quote.status)


class TitleFormatFixHandler(FixHandler):
    handler_id = "title_format_fix"
    issue_codes = (IssueCode.INVALID_TITLE_FORMAT,)
    description = "Renames deals to the PROJECTCODE-Vessel format"

    async def validate(self, issue, context):
        expected = issue.metadata.get("expected_title")
        title = issue.metadata.get("title") or ""
        if not expected:
            return "No expected title provided"
        if any(marker in expected for marker in PLACEHOLDER_MARKERS):
            return "Expected title is a placeholder"
        if title.lower() == expected.lower():
            return "Title already matches expected format"
        if "(copy)" in title.lower():
            return "Duplicate deal marked (copy)"

        deal = await context.pipedrive.get_deal(issue.deal_id)
        if deal is None:
            return "Deal not found or not accessible"
        if deal.title != title:
            return "Deal title has changed since validation"
        return None

    async def apply_fix(self, issue, context):
        expected = issue.metadata["expected_title"]
        deal = await context.pipedrive.get_deal(issue.deal_id)
        if deal is None:
            raise FixError(f"Deal {issue.deal_id} not found")

        logger.info(f"Renaming deal {deal.id}", old_title=deal.title, new_title=expected)
        await context.pipedrive.update_deal_title(deal.id, expected)
        return FixHandlerResult(
            success=True,
            original_value=deal.title,
            new_value=expected,
            rollback_data={"deal_id": deal.id, "original_title": deal.title},
        )

    async def rollback(self, issue, rollback_data, context):
        if not rollback_data.get("deal_id") or not rollback_data.get("original_title"):
            raise FixError("Invalid rollback data for title fix")
        await context.pipedrive.update_deal_title(rollback_data["deal_id"], rollback_data["original_title"])


class QuoteStatusFixHandler(FixHandler):
    handler_id = "quote_status_fix"
    issue_codes = (IssueCode.QUOTE_STATUS_MISMATCH,)
    description = "Moves quotes to the status their deal requires"

    async def validate(self, issue, context):
        expected = issue.metadata.get("expected_status")
        if not expected:
            return "No expected status provided"
        quote = await self._load_quote(issue, context)
        if quote is None:
            return "Quote not found"
        if quote.status != issue.metadata.get("current_status"):
            return "Quote status has changed since validation"
        if quote.status == "INVOICED":
            return "Cannot modify a quote that has been invoiced"
        try:
            get_status_transition_path(quote.status, expected)
        except CrossValError as e:
            return str(e)
        return None

    async def apply_fix(self, issue, context):
        quote = await self._load_quote(issue, context)
        if quote is None:
            raise FixError(f"Quote {issue.quote_id} not found")
        original = self._original_status(quote, context)
        target = issue.metadata["expected_status"]
        updated = await transition_quote_status(context.xero, quote, target)
        return FixHandlerResult(
            success=True,
            original_value=original,
            new_value=updated.status,
            rollback_data={"quote_id": quote.quote_id, "original_status": original},
        )

    async def rollback(self, issue, rollback_data, context):
        quote = await context.xero.fetch_quote_by_id(rollback_data["quote_id"])
        if quote is None:
            raise FixError(f"Quote {rollback_data['quote_id']} not found")
        await transition_quote_status(context.xero, quote, rollback_data["original_status"])


class QuoteNumberFixHandler(FixHandler):
    handler_id = "quote_number_fix"
    issue_codes = (IssueCode.ACCEPTED_QUOTE_INVALID_FORMAT,)
    description = "Renumbers accepted quotes to PROJECTCODE-QU<number>-<version>"

    async def validate(self, issue, context):
        suggested = issue.metadata.get("suggested_number")
        if not suggested:
            return "No suggested quote number available"
        quote = await self._load_quote(issue, context)
        if quote is None:
            return "Quote not found"
        if quote.quote_number != issue.metadata.get("quote_number"):
            return "Quote number has changed since validation"
        if quote.status == "INVOICED":
            return "Cannot modify a quote that has been invoiced"
        return None

    async def apply_fix(self, issue, context):
        quote = await self._load_quote(issue, context)
        if quote is None:
            raise FixError(f"Quote {issue.quote_id} not found")
        suggested = issue.metadata["suggested_number"]
        written = await fix_quote_number(context.xero, quote, suggested, self._original_status(quote, context))
        return FixHandlerResult(
            success=True,
            original_value=quote.quote_number,
            new_value=written.quote.quote_number,
            warnings=written.warnings,
            rollback_data={"quote_id": quote.quote_id, "original_number": quote.quote_number},
        )

    async def rollback(self, issue, rollback_data, context):
        quote = await context.xero.fetch_quote_by_id(rollback_data["quote_id"])
        if quote is None:
            raise FixError(f"Quote {rollback_data['quote_id']} not found")
        await fix_quote_number(context.xero, quote, rollback_data["original_number"])


class LineItemSyncFixHandler(FixHandler):
    handler_id = "line_item_sync_fix"
    issue_codes = (IssueCode.QUOTE_VALUE_MISMATCH,)
    description = "Rewrites quote line items from the deal's products"

    async def _products(self, issue, context):
        products = await context.pipedrive.fetch_deal_products([issue.deal_id])
        return products.get(issue.deal_id) or []

    async def validate(self, issue, context):
        if issue.deal_id is None:
            return "Issue is not linked to a deal"
        quote = await self._load_quote(issue, context)
        if quote is None:
            return "Quote not found"
        if quote.status == "INVOICED":
            return "Cannot modify a quote that has been invoiced"
        if not await self._products(issue, context):
            return "Deal has no products to sync"
        return None

    async def apply_fix(self, issue, context):
        quote = await self._load_quote(issue, context)
        if quote is None:
            raise FixError(f"Quote {issue.quote_id} not found")
        products = await self._products(issue, context)
        written = await sync_products_to_quote(context.xero, quote, products, self._original_status(quote, context))
        return FixHandlerResult(
            success=True,
            original_value=quote.total,
            new_value=written.quote.total,
            warnings=written.warnings,
            rollback_data={"quote_id": quote.quote_id, "line_items": quote.raw.get("LineItems") or []},
        )

    async def rollback(self, issue, rollback_data, context):
        quote = await context.xero.fetch_quote_by_id(rollback_data["quote_id"])
        if quote is None:
            raise FixError(f"Quote {rollback_data['quote_id']} not found")
        await update_line_items(context.xero, quote, rollback_data["line_items"])


def default_handlers() -> List[FixHandler]:
    return [TitleFormatFixHandler(), QuoteStatusFixHandler(), QuoteNumberFixHandler(), LineItemSyncFixHandler()]
