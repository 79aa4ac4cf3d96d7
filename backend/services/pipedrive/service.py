import re
from typing import Dict, Iterable, List, Optional

import httpx

from core.base_service import BaseService
from core.config import (
    PIPEDRIVE_BASE_URL,
    PIPEDRIVE_CALLS_PER_DAY,
    PIPEDRIVE_CALLS_PER_MINUTE,
    PIPEDRIVE_PAGE_SIZE,
    RATE_DAY_BUFFER,
    RATE_MIN_INTERVAL_SECONDS,
    RATE_MINUTE_BUFFER,
)
from core.errors import ConfigurationError, FetchError
from core.logger import Logger
from core.rate_gate import RateGate, shared_gate
from modules.tenants.models import TenantConfig
from schema.records import Deal, Product

logger = Logger(__name__)

CUSTOM_FIELD_KEY = re.compile(r"^[0-9a-f]{40}$")


def pipedrive_gate() -> RateGate:
    return shared_gate(
        "pipedrive",
        per_minute=PIPEDRIVE_CALLS_PER_MINUTE,
        per_day=PIPEDRIVE_CALLS_PER_DAY,
        minute_buffer=RATE_MINUTE_BUFFER,
        day_buffer=RATE_DAY_BUFFER,
        min_interval=RATE_MIN_INTERVAL_SECONDS,
    )


def _unwrap(value):
    # option and monetary custom fields arrive as {"value": ..., ...}
    if isinstance(value, dict) and "value" in value:
        return value["value"]
    return value


def deal_from_api(raw: dict) -> Deal:
    custom_fields = {key: _unwrap(value) for key, value in (raw.get("custom_fields") or {}).items()}
    for key, value in raw.items():
        if CUSTOM_FIELD_KEY.match(key):
            custom_fields[key] = _unwrap(value)

    org_name = raw.get("org_name")
    if not org_name and isinstance(raw.get("org_id"), dict):
        org_name = raw["org_id"].get("name")

    return Deal(
        id=raw["id"],
        title=raw.get("title") or raw.get("name") or "",
        status=raw.get("status") or "open",
        value=raw.get("value") or 0,
        currency=raw.get("currency"),
        pipeline_id=raw.get("pipeline_id"),
        stage_id=raw.get("stage_id"),
        org_name=org_name,
        custom_fields=custom_fields,
    )


def product_from_api(raw: dict) -> Product:
    return Product(
        name=raw.get("name") or "",
        quantity=raw.get("quantity") or 0,
        item_price=raw.get("item_price") or 0,
        sum=raw.get("sum"),
        discount=raw.get("discount") or raw.get("discount_percentage") or 0,
    )


class PipedriveService(BaseService):
    """Deals and deal products of one Pipedrive company."""
    name = "pipedrive"

    def __init__(
        self,
        api_key: str,
        company_domain: str = "api",
        gate: Optional[RateGate] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(gate or pipedrive_gate(), transport)
        self.api_key = api_key
        self.base_url = PIPEDRIVE_BASE_URL.format(domain=company_domain)

    @classmethod
    def for_tenant(cls, config: TenantConfig, **kwargs) -> "PipedriveService":
        api_key = config.api_key()
        if not api_key:
            raise ConfigurationError(f"No Pipedrive API key configured for tenant {config.tenant_id}")
        return cls(api_key, config.company_domain, **kwargs)

    async def _get(self, path: str, params: Optional[dict] = None) -> dict:
        query = {"api_token": self.api_key, **(params or {})}
        return await self.request("GET", f"{self.base_url}{path}", params=query)

    async def fetch_deals(self, pipeline_id: int, status: str = "all_not_deleted") -> List[Deal]:
        """Every deal of ``pipeline_id`` with ``status``, across all pages."""
        deals: List[Deal] = []
        start = 0
        while True:
            payload = await self._get(
                "/deals",
                {"pipeline_id": pipeline_id, "status": status, "start": start, "limit": PIPEDRIVE_PAGE_SIZE},
            )
            for raw in payload.get("data") or []:
                if raw.get("pipeline_id") == pipeline_id:
                    deals.append(deal_from_api(raw))

            pagination = (payload.get("additional_data") or {}).get("pagination") or {}
            if not pagination.get("more_items_in_collection"):
                break
            start = pagination.get("next_start", start + PIPEDRIVE_PAGE_SIZE)

        logger.debug(f"Fetched {len(deals)} deals", pipeline_id=pipeline_id, status=status)
        return deals

    async def fetch_all_deals(self, pipeline_ids: Iterable[int], status: str = "all_not_deleted") -> List[Deal]:
        pipeline_ids = list(pipeline_ids)
        deals: List[Deal] = []
        seen = set()
        for pipeline_id in pipeline_ids:
            try:
                pipeline_deals = await self.fetch_deals(pipeline_id, status)
            except FetchError as e:
                logger.warning(f"Skipping pipeline {pipeline_id}: {e}")
                continue
            for deal in pipeline_deals:
                if deal.id not in seen:
                    seen.add(deal.id)
                    deals.append(deal)
        logger.info(f"Fetched {len(deals)} Pipedrive deals from {len(pipeline_ids)} pipeline(s)")
        return deals

    async def fetch_deal_products(self, deal_ids: Iterable[int]) -> Dict[int, List[Product]]:
        products: Dict[int, List[Product]] = {}
        for deal_id in deal_ids:
            items: List[Product] = []
            start = 0
            while True:
                payload = await self._get(f"/deals/{deal_id}/products", {"start": start, "limit": PIPEDRIVE_PAGE_SIZE})
                items.extend(product_from_api(raw) for raw in payload.get("data") or [])
                pagination = (payload.get("additional_data") or {}).get("pagination") or {}
                if not pagination.get("more_items_in_collection"):
                    break
                start = pagination.get("next_start", start + PIPEDRIVE_PAGE_SIZE)
            products[deal_id] = items
        return products

    async def get_deal(self, deal_id: int) -> Optional[Deal]:
        try:
            payload = await self._get(f"/deals/{deal_id}")
        except FetchError as e:
            if e.status_code == 404:
                return None
            raise
        data = payload.get("data")
        return deal_from_api(data) if data else None

    async def update_deal_title(self, deal_id: int, title: str) -> Deal:
        payload = await self.request(
            "PUT",
            f"{self.base_url}/deals/{deal_id}",
            params={"api_token": self.api_key},
            json={"title": title},
        )
        logger.info(f"Renamed deal {deal_id}", title=title)
        return deal_from_api(payload["data"])
