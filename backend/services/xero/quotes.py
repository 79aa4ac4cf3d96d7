"""
Write operations on Xero quotes used by the fix handlers.

Xero only accepts edits on quotes that are not ACCEPTED, so an accepted
quote is moved back to SENT, edited, then accepted again. Invoiced quotes
are never touched.

An accepted quote is never left in SENT silently: a failed edit puts it
back to ACCEPTED before the error propagates, and when that also fails the
caller gets a ``QuoteStatusLeftError`` naming the status it is stuck in.
"""

from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from core.errors import CrossValError, QuoteLockedError, QuoteStatusLeftError
from core.logger import Logger
from modules.fixes.transitions import get_status_transition_path
from schema.records import Product, Quote

from .service import XeroService

logger = Logger(__name__)

DEFAULT_ACCOUNT_CODE = "200"
DEFAULT_TAX_TYPE = "NONE"
RESTORE_WARNING = "Quote updated but status could not be changed back to ACCEPTED"


class QuoteWriteResult(BaseModel):
    quote: Quote
    warnings: List[str] = Field(default_factory=list)


async def transition_quote_status(xero: XeroService, quote: Quote, target: str) -> Quote:
    """Walk ``quote`` to ``target`` one legal hop at a time."""
    current = quote
    for status in get_status_transition_path(quote.status, target):
        logger.debug(f"Moving quote {current.quote_number} {current.status} -> {status}")
        try:
            current = await xero.update_quote({**current.raw, "Status": status})
        except CrossValError:
            if current.status != quote.status:
                logger.warning(
                    f"Quote {quote.quote_number} stopped in {current.status} on its way to {target}",
                    original_status=quote.status,
                )
            raise
    return current


async def accept_quote(xero: XeroService, quote: Quote) -> Quote:
    return await transition_quote_status(xero, quote, "ACCEPTED")


async def _restore_accepted(xero: XeroService, quote: Quote, cause: Exception):
    try:
        await transition_quote_status(xero, quote, "ACCEPTED")
    except CrossValError as e:
        logger.error(f"Quote {quote.quote_number} could not be restored to ACCEPTED: {e}")
        raise QuoteStatusLeftError(quote.quote_number, quote.status, "ACCEPTED", cause) from e
    logger.warning(f"Edit of quote {quote.quote_number} failed, status restored to ACCEPTED: {cause}")


async def edit_quote(
    xero: XeroService, quote: Quote, changes: Dict, original_status: Optional[str] = None
) -> QuoteWriteResult:
    """
    Write ``changes`` to ``quote``. ``original_status`` is the status the
    quote had before this fix first touched it; a retry that finds the quote
    in SENT still re-accepts it when that status was ACCEPTED.
    """
    if quote.status == "INVOICED":
        raise QuoteLockedError(quote.quote_id)

    restore = (original_status or quote.status) == "ACCEPTED"
    current = quote
    if current.status == "ACCEPTED":
        current = await transition_quote_status(xero, current, "SENT")

    try:
        current = await xero.update_quote({**current.raw, **changes})
    except CrossValError as e:
        if restore and current.status != "ACCEPTED":
            await _restore_accepted(xero, current, e)
        raise

    warnings = []
    if restore and current.status != "ACCEPTED":
        try:
            current = await transition_quote_status(xero, current, "ACCEPTED")
        except CrossValError as e:
            logger.warning(f"Quote {quote.quote_number} edited but left in {current.status}: {e}")
            warnings.append(RESTORE_WARNING)
    return QuoteWriteResult(quote=current, warnings=warnings)


async def update_line_items(
    xero: XeroService, quote: Quote, line_items: List[Dict], original_status: Optional[str] = None
) -> QuoteWriteResult:
    return await edit_quote(xero, quote, {"LineItems": line_items}, original_status)


async def fix_quote_number(
    xero: XeroService, quote: Quote, quote_number: str, original_status: Optional[str] = None
) -> QuoteWriteResult:
    return await edit_quote(xero, quote, {"QuoteNumber": quote_number}, original_status)


def build_line_items(products: Sequence[Product], existing: Optional[Quote] = None) -> List[Dict]:
    """Xero line items for deal products, keeping tracking of same-named lines."""
    tracking_by_description = {}
    existing_items = (existing.raw.get("LineItems") or []) if existing else []
    for item in existing_items:
        if item.get("Description") and item.get("Tracking"):
            tracking_by_description.setdefault(item["Description"], item["Tracking"])

    return [
        {
            "Description": product.name,
            "Quantity": product.quantity,
            "UnitAmount": product.item_price,
            "LineAmount": product.line_total,
            "AccountCode": DEFAULT_ACCOUNT_CODE,
            "TaxType": DEFAULT_TAX_TYPE,
            "DiscountRate": product.discount,
            "Tracking": tracking_by_description.get(product.name, []),
        }
        for product in products
    ]


async def sync_products_to_quote(
    xero: XeroService, quote: Quote, products: Sequence[Product], original_status: Optional[str] = None
) -> QuoteWriteResult:
    return await update_line_items(xero, quote, build_line_items(products, quote), original_status)
