from datetime import datetime, timedelta

import httpx
import pytest
from cryptography.fernet import Fernet

from core.base_utils import BaseUtils
from core.errors import TokenError
from services.xero.token import COLLECTION, XeroTokenProvider

NOW = datetime(2024, 5, 1, 12, 0, 0)


@pytest.fixture
def utils():
    return BaseUtils(key=Fernet.generate_key().decode())


def identity_transport(calls, status=200):
    def handler(request):
        calls.append(request)
        if status != 200:
            return httpx.Response(status, json={"error": "invalid_grant"})
        return httpx.Response(200, json={"access_token": "fresh", "refresh_token": "rotated", "expires_in": 1800})

    return httpx.MockTransport(handler)


def store(fake_mongo, utils, **fields):
    doc = {
        "tenant_id": "tenant-a",
        "access_token": "cached",
        "expires_at": NOW + timedelta(minutes=30),
        "refresh_token": utils.encode_secret("refresh-1"),
        **fields,
    }
    fake_mongo.collections[COLLECTION] = [doc]
    return doc


async def test_cached_token_is_used_while_fresh(fake_mongo, utils):
    store(fake_mongo, utils)
    calls = []
    provider = XeroTokenProvider("tenant-a", transport=identity_transport(calls), utils=utils, now=lambda: NOW)

    token = await provider.ensure_valid_token()

    assert token.access_token == "cached"
    assert token.effective_tenant_id == "tenant-a"
    assert calls == []


async def test_stored_xero_tenant_id_wins(fake_mongo, utils):
    store(fake_mongo, utils, xero_tenant_id="org-9")
    provider = XeroTokenProvider("tenant-a", transport=identity_transport([]), utils=utils, now=lambda: NOW)

    assert (await provider.ensure_valid_token()).effective_tenant_id == "org-9"


async def test_expiring_token_is_refreshed_and_rotated(fake_mongo, utils):
    store(fake_mongo, utils, expires_at=NOW + timedelta(minutes=2))
    calls = []
    provider = XeroTokenProvider("tenant-a", transport=identity_transport(calls), utils=utils, now=lambda: NOW)

    token = await provider.ensure_valid_token()

    assert token.access_token == "fresh"
    assert len(calls) == 1
    assert b"grant_type=refresh_token" in calls[0].content
    assert b"refresh_token=refresh-1" in calls[0].content

    stored = fake_mongo.collections[COLLECTION][0]
    assert stored["access_token"] == "fresh"
    assert utils.decode_secret(stored["refresh_token"]) == "rotated"
    assert stored["expires_at"] == NOW + timedelta(seconds=1800)


async def test_refreshed_token_is_reused_in_memory(fake_mongo, utils):
    store(fake_mongo, utils, access_token=None)
    calls = []
    provider = XeroTokenProvider("tenant-a", transport=identity_transport(calls), utils=utils, now=lambda: NOW)

    await provider.ensure_valid_token()
    await provider.ensure_valid_token()

    assert len(calls) == 1


async def test_rejected_refresh_raises(fake_mongo, utils):
    store(fake_mongo, utils, expires_at=None)
    provider = XeroTokenProvider("tenant-a", transport=identity_transport([], status=400), utils=utils, now=lambda: NOW)

    with pytest.raises(TokenError):
        await provider.ensure_valid_token()


async def test_undecryptable_refresh_token_raises(fake_mongo, utils):
    store(fake_mongo, utils, expires_at=None, refresh_token="not-a-fernet-token")
    provider = XeroTokenProvider("tenant-a", transport=identity_transport([]), utils=utils, now=lambda: NOW)

    with pytest.raises(TokenError):
        await provider.ensure_valid_token()


async def test_missing_connection_raises(fake_mongo, utils):
    provider = XeroTokenProvider("tenant-a", utils=utils, now=lambda: NOW)

    with pytest.raises(TokenError):
        await provider.ensure_valid_token()


async def test_no_database_raises(utils):
    with pytest.raises(TokenError):
        await XeroTokenProvider("tenant-a", utils=utils).ensure_valid_token()
