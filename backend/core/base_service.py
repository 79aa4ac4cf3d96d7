from typing import Optional

import httpx

from core.base_database import BaseDatabase
from core.config import HTTP_TIMEOUT_SECONDS
from core.errors import FetchError
from core.rate_gate import RateGate

from core.logger import Logger
logger = Logger(__name__)


class BaseService(BaseDatabase):
    """
    Base for services talking to a remote REST API.

    Every request goes through the service's RateGate first, and the
    response headers are fed back to it. Non-2xx responses raise
    ``FetchError`` carrying the service name and the status code.
    """
    name: str = "base"

    def __init__(self, gate: RateGate, transport: Optional[httpx.AsyncBaseTransport] = None):
        logger.debug(f"Initializing service: {self.name}")
        self.gate = gate
        self.transport = transport

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, timeout=HTTP_TIMEOUT_SECONDS)

    async def request(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
        headers: Optional[dict] = None,
        data: Optional[dict] = None,
    ) -> dict:
        await self.gate.wait_if_needed()
        try:
            async with self.http_client() as client:
                response = await client.request(method, url, params=params, json=json, headers=headers, data=data)
        except httpx.HTTPError as e:
            logger.error(f"[{self.name}] {method} {url} failed: {e}")
            raise FetchError(self.name, f"{method} {url} failed: {e}") from e

        self.gate.update_from_headers(response.headers)

        if response.status_code >= 400:
            detail = response.text[:300]
            logger.error(f"[{self.name}] {method} {url} returned {response.status_code}: {detail}")
            raise FetchError(self.name, f"{method} {url} returned {response.status_code}", response.status_code)

        if not response.content:
            return {}
        return response.json()
