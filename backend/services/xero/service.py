from typing import List, Optional

import httpx

from core.base_service import BaseService
from core.config import (
    RATE_DAY_BUFFER,
    RATE_MIN_INTERVAL_SECONDS,
    RATE_MINUTE_BUFFER,
    XERO_API_URL,
    XERO_CALLS_PER_DAY,
    XERO_CALLS_PER_MINUTE,
    XERO_PAGE_SIZE,
    XERO_PROJECTS_URL,
)
from core.errors import FetchError
from core.logger import Logger
from core.rate_gate import RateGate, shared_gate
from schema.records import LineItem, Project, Quote, TrackingAssignment

from .token import XeroTokenProvider

logger = Logger(__name__)

READ_ONLY_QUOTE_FIELDS = ("QuoteID", "UpdatedDateUTC", "HasAttachments", "IsDeleted", "ValidationErrors")
PROJECTS_PAGE_SIZE = 50


def xero_gate() -> RateGate:
    return shared_gate(
        "xero",
        per_minute=XERO_CALLS_PER_MINUTE,
        per_day=XERO_CALLS_PER_DAY,
        minute_buffer=RATE_MINUTE_BUFFER,
        day_buffer=RATE_DAY_BUFFER,
        min_interval=RATE_MIN_INTERVAL_SECONDS,
        minute_header="X-MinLimit-Remaining",
        day_header="X-DayLimit-Remaining",
        limit_header=None,
        reset_header=None,
    )


def line_item_from_api(raw: dict) -> LineItem:
    return LineItem(
        line_item_id=raw.get("LineItemID"),
        description=raw.get("Description"),
        quantity=raw.get("Quantity") or 0,
        unit_amount=raw.get("UnitAmount") or 0,
        line_amount=raw.get("LineAmount") or 0,
        tracking=[
            TrackingAssignment(
                category_id=t.get("TrackingCategoryID"),
                option_id=t.get("TrackingOptionID"),
                name=t.get("Name"),
                option=t.get("Option"),
            )
            for t in raw.get("Tracking") or []
        ],
    )


def quote_from_api(raw: dict) -> Quote:
    return Quote(
        quote_id=raw["QuoteID"],
        quote_number=raw.get("QuoteNumber"),
        status=raw.get("Status") or "DRAFT",
        total=raw.get("Total") or 0,
        currency_code=raw.get("CurrencyCode"),
        reference=raw.get("Reference"),
        contact_name=(raw.get("Contact") or {}).get("Name"),
        line_items=[line_item_from_api(item) for item in raw.get("LineItems") or []],
        raw=raw,
    )


def project_from_api(raw: dict) -> Project:
    amount = raw.get("totalTaskAmount") or raw.get("estimate") or {}
    return Project(
        project_id=raw["projectId"],
        name=raw.get("name") or "",
        status=raw.get("status") or "INPROGRESS",
        total_amount=amount.get("value"),
        currency=amount.get("currency") or raw.get("currencyCode"),
    )


def strip_read_only(quote: dict) -> dict:
    return {key: value for key, value in quote.items() if key not in READ_ONLY_QUOTE_FIELDS}


class XeroService(BaseService):
    """Quotes and projects of one Xero organisation."""
    name = "xero"

    def __init__(
        self,
        token_provider: XeroTokenProvider,
        gate: Optional[RateGate] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(gate or xero_gate(), transport)
        self.token_provider = token_provider

    @classmethod
    def for_tenant(cls, tenant_id: str, **kwargs) -> "XeroService":
        return cls(XeroTokenProvider(tenant_id), **kwargs)

    async def _headers(self) -> dict:
        token = await self.token_provider.ensure_valid_token()
        return {
            "Authorization": f"Bearer {token.access_token}",
            "xero-tenant-id": token.effective_tenant_id,
            "Accept": "application/json",
        }

    async def _call(self, method: str, url: str, params: Optional[dict] = None, json: Optional[dict] = None) -> dict:
        return await self.request(method, url, params=params, json=json, headers=await self._headers())

    async def fetch_quotes(self, status: Optional[str] = None) -> List[Quote]:
        quotes: List[Quote] = []
        page = 1
        while True:
            params = {"page": page}
            if status:
                params["Status"] = status
            payload = await self._call("GET", f"{XERO_API_URL}/Quotes", params=params)
            items = payload.get("Quotes") or []
            quotes.extend(quote_from_api(raw) for raw in items)
            if len(items) < XERO_PAGE_SIZE:
                break
            page += 1

        logger.info(f"Fetched {len(quotes)} Xero quotes", status=status or "any", pages=page)
        return quotes

    async def fetch_quote_by_id(self, quote_id: str) -> Optional[Quote]:
        try:
            payload = await self._call("GET", f"{XERO_API_URL}/Quotes/{quote_id}")
        except FetchError as e:
            if e.status_code == 404:
                return None
            raise
        items = payload.get("Quotes") or []
        return quote_from_api(items[0]) if items else None

    async def fetch_quote_by_number(self, quote_number: str) -> Optional[Quote]:
        payload = await self._call("GET", f"{XERO_API_URL}/Quotes", params={"QuoteNumber": quote_number})
        for raw in payload.get("Quotes") or []:
            if (raw.get("QuoteNumber") or "").upper() == quote_number.upper():
                return quote_from_api(raw)
        return None

    async def fetch_projects(self, status_filter: str = "INPROGRESS") -> List[Project]:
        projects: List[Project] = []
        page = 1
        while True:
            payload = await self._call(
                "GET",
                f"{XERO_PROJECTS_URL}/projects",
                params={"states": status_filter, "page": page, "pageSize": PROJECTS_PAGE_SIZE},
            )
            projects.extend(project_from_api(raw) for raw in payload.get("items") or [])
            page_count = (payload.get("pagination") or {}).get("pageCount") or 1
            if page >= page_count:
                break
            page += 1

        filtered = [project for project in projects if not status_filter or project.status == status_filter]
        logger.info(f"Fetched {len(filtered)} Xero projects", status=status_filter)
        return filtered

    async def update_quote(self, quote: dict) -> Quote:
        """Write ``quote`` (Xero document shape) and return the server's version."""
        quote_id = quote["QuoteID"]
        payload = await self._call("POST", f"{XERO_API_URL}/Quotes/{quote_id}", json={"Quotes": [strip_read_only(quote)]})
        items = payload.get("Quotes") or []
        if not items:
            raise FetchError(self.name, f"Quote {quote_id} update returned no quote")
        updated = quote_from_api(items[0])
        logger.info(f"Updated quote {updated.quote_number}", status=updated.status)
        return updated
