from typing import Dict, List, Optional

from core.errors import FetchError
from schema.records import Deal, Product, Project, Quote
from services.xero.service import quote_from_api

QUOTE_ID_KEY = "0e9dc89b14fb67546540fd3e11a7fe06653d708f"
QUOTE_NUMBER_KEY = "a0b59ccf244af998aa57a01f22e2ffd41cf504f9"
VESSEL_KEY = "bef5a8a5866aec2d7f4db2a5d8964ab04a4dc93d"

WIP_PIPELINE = 1
UNQUALIFIED_PIPELINE = 2


class InstantGate:
    """RateGate stand-in that never waits and records what it is told."""

    def __init__(self):
        self.calls = 0
        self.headers: List[dict] = []

    async def wait_if_needed(self):
        self.calls += 1

    def update_from_headers(self, headers):
        self.headers.append({k.lower(): v for k, v in headers.items()})


class FakeMongo:
    """The slice of MongoDBClient used by token, tenant and session code."""

    def __init__(self, collections: Optional[Dict[str, List[dict]]] = None):
        self.collections = collections or {}

    def _matches(self, doc: dict, query: dict) -> bool:
        return all(doc.get(key) == value for key, value in query.items())

    async def find_one(self, collection_name: str, query: dict):
        for doc in self.collections.get(collection_name, []):
            if self._matches(doc, query):
                return dict(doc)
        return None

    async def upsert_one(self, collection_name: str, query: dict, values: dict):
        docs = self.collections.setdefault(collection_name, [])
        for doc in docs:
            if self._matches(doc, query):
                doc.update(values)
                return 1
        docs.append({**query, **values})
        return 1


class FakePipedrive:
    def __init__(self, deals: List[Deal], products: Optional[Dict[int, List[Product]]] = None, product_error=None):
        self.deals = {deal.id: deal for deal in deals}
        self.products = products or {}
        self.product_error = product_error
        self.renamed: List[tuple] = []

    async def fetch_all_deals(self, pipeline_ids, status="all_not_deleted"):
        pipeline_ids = list(pipeline_ids)
        return [deal for deal in self.deals.values() if deal.pipeline_id in pipeline_ids]

    async def fetch_deal_products(self, deal_ids):
        if self.product_error:
            raise self.product_error
        return {deal_id: self.products.get(deal_id, []) for deal_id in deal_ids}

    async def get_deal(self, deal_id):
        return self.deals.get(deal_id)

    async def update_deal_title(self, deal_id, title):
        self.renamed.append((deal_id, title))
        self.deals[deal_id] = self.deals[deal_id].model_copy(update={"title": title})
        return self.deals[deal_id]


class FakeXero:
    """
    In-memory Xero. ``fail_on_status`` makes writes moving a quote to that
    status fail; ``failures`` makes the next N writes fail regardless;
    ``fail_calls`` holds 1-based write call numbers that fail once.
    """

    def __init__(self, quotes: List[Quote] = (), projects: List[Project] = (), quotes_error=None):
        self.quotes = {quote.quote_id: quote for quote in quotes}
        self.projects = list(projects)
        self.quotes_error = quotes_error
        self.fail_on_status = set()
        self.failures = 0
        self.fail_calls = set()
        self.calls = 0
        self.writes: List[dict] = []

    async def fetch_quotes(self, status=None):
        if self.quotes_error:
            raise self.quotes_error
        return [quote for quote in self.quotes.values() if status is None or quote.status == status]

    async def fetch_projects(self, status_filter="INPROGRESS"):
        return [project for project in self.projects if project.status == status_filter]

    async def fetch_quote_by_id(self, quote_id):
        return self.quotes.get(quote_id)

    async def update_quote(self, quote: dict):
        self.calls += 1
        if self.calls in self.fail_calls:
            raise FetchError("xero", "service unavailable", 503)
        if self.failures:
            self.failures -= 1
            raise FetchError("xero", "write failed", 503)
        if quote.get("Status") in self.fail_on_status:
            raise FetchError("xero", f"cannot move to {quote['Status']}", 400)
        self.writes.append(dict(quote))
        updated = quote_from_api(quote)
        self.quotes[updated.quote_id] = updated
        return updated


def make_deal(
    deal_id: int,
    title: str,
    status: str = "won",
    value: float = 1000.0,
    pipeline_id: int = WIP_PIPELINE,
    quote_id: Optional[str] = None,
    quote_number: Optional[str] = None,
    **fields,
) -> Deal:
    custom_fields = {}
    if quote_id:
        custom_fields[QUOTE_ID_KEY] = quote_id
    if quote_number:
        custom_fields[QUOTE_NUMBER_KEY] = quote_number
    return Deal(
        id=deal_id,
        title=title,
        status=status,
        value=value,
        currency=fields.pop("currency", "SGD"),
        pipeline_id=pipeline_id,
        custom_fields={**custom_fields, **fields.pop("custom_fields", {})},
        **fields,
    )


def make_quote(
    quote_id: str,
    quote_number: Optional[str],
    status: str = "ACCEPTED",
    total: float = 1000.0,
    reference: Optional[str] = None,
    tracked: bool = True,
    contact: str = "Ocean Shipping",
) -> Quote:
    tracking = [{"TrackingCategoryID": "cat-1", "TrackingOptionID": "opt-1", "Name": "Dept", "Option": "Repairs"}]
    return quote_from_api(
        {
            "QuoteID": quote_id,
            "QuoteNumber": quote_number,
            "Status": status,
            "Total": total,
            "CurrencyCode": "SGD",
            "Reference": reference,
            "Contact": {"Name": contact},
            "UpdatedDateUTC": "/Date(1700000000000)/",
            "LineItems": [
                {
                    "LineItemID": f"{quote_id}-line",
                    "Description": "Overhaul",
                    "Quantity": 1,
                    "UnitAmount": total,
                    "LineAmount": total,
                    "Tracking": tracking if tracked else [],
                }
            ],
        }
    )
