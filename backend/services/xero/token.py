import asyncio
from datetime import datetime, timedelta
from typing import Optional

import httpx
from pydantic import BaseModel

from core.base_database import BaseDatabase
from core.base_utils import BaseUtils
from core.config import HTTP_TIMEOUT_SECONDS, XERO_CLIENT_ID, XERO_CLIENT_SECRET, XERO_IDENTITY_URL
from core.errors import TokenError
from core.logger import Logger

logger = Logger(__name__)

COLLECTION = "xero_tokens"
REFRESH_MARGIN = timedelta(minutes=5)


class XeroToken(BaseModel):
    access_token: str
    effective_tenant_id: str
    expires_at: Optional[datetime] = None

    def is_fresh(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at - REFRESH_MARGIN > now


class XeroTokenProvider(BaseDatabase):
    """
    Hands out a usable Xero bearer token for one tenant.

    The refresh token lives Fernet-encrypted in ``xero_tokens``; when the
    cached access token is about to expire it is exchanged at the identity
    endpoint and the rotated refresh token is stored back.
    """

    def __init__(
        self,
        tenant_id: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        utils: Optional[BaseUtils] = None,
        now=datetime.utcnow,
    ):
        self.tenant_id = tenant_id
        self.transport = transport
        self.utils = utils or BaseUtils()
        self._now = now
        self._token: Optional[XeroToken] = None
        self._lock = asyncio.Lock()

    async def ensure_valid_token(self) -> XeroToken:
        async with self._lock:
            if self._token and self._token.is_fresh(self._now()):
                return self._token

            if not self.has_database():
                raise TokenError("No token store available")
            doc = await self.mongodb.find_one(COLLECTION, {"tenant_id": self.tenant_id})
            if not doc:
                raise TokenError(f"No Xero connection stored for tenant {self.tenant_id}")

            effective_tenant_id = doc.get("xero_tenant_id") or self.tenant_id
            cached = XeroToken(
                access_token=doc.get("access_token") or "",
                effective_tenant_id=effective_tenant_id,
                expires_at=doc.get("expires_at"),
            )
            if cached.access_token and cached.is_fresh(self._now()):
                self._token = cached
                return cached

            self._token = await self._refresh(doc, effective_tenant_id)
            return self._token

    async def _refresh(self, doc: dict, effective_tenant_id: str) -> XeroToken:
        refresh_token = self.utils.decode_secret(doc.get("refresh_token") or "")
        if not refresh_token:
            raise TokenError(f"Stored refresh token for tenant {self.tenant_id} is unusable")

        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=HTTP_TIMEOUT_SECONDS) as client:
                response = await client.post(
                    XERO_IDENTITY_URL,
                    auth=(XERO_CLIENT_ID, XERO_CLIENT_SECRET),
                    data={"grant_type": "refresh_token", "refresh_token": refresh_token},
                )
        except httpx.HTTPError as e:
            raise TokenError(f"Token refresh failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"Xero token refresh rejected for {self.tenant_id}", status=response.status_code)
            raise TokenError(f"Token refresh rejected with status {response.status_code}")

        data = response.json()
        expires_at = self._now() + timedelta(seconds=int(data.get("expires_in", 1800)))
        await self.mongodb.upsert_one(
            COLLECTION,
            {"tenant_id": self.tenant_id},
            {
                "access_token": data["access_token"],
                "refresh_token": self.utils.encode_secret(data.get("refresh_token") or refresh_token),
                "expires_at": expires_at,
                "updated_at": self._now(),
            },
        )
        logger.info(f"Refreshed Xero access token for tenant {self.tenant_id}")
        return XeroToken(access_token=data["access_token"], effective_tenant_id=effective_tenant_id, expires_at=expires_at)


class StaticTokenProvider:
    """Token provider for a fixed, already valid access token."""

    def __init__(self, access_token: str, tenant_id: str):
        self.token = XeroToken(access_token=access_token, effective_tenant_id=tenant_id)

    async def ensure_valid_token(self) -> XeroToken:
        return self.token
