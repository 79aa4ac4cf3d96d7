import pytest

from core.base_database import BaseDatabase
from fakes import (
    QUOTE_ID_KEY,
    QUOTE_NUMBER_KEY,
    UNQUALIFIED_PIPELINE,
    VESSEL_KEY,
    WIP_PIPELINE,
    FakeMongo,
    InstantGate,
)
from modules.tenants.models import TenantConfig


@pytest.fixture(autouse=True)
def no_database(monkeypatch):
    monkeypatch.setattr(BaseDatabase, "mongodb", None)


@pytest.fixture
def fake_mongo(monkeypatch):
    mongo = FakeMongo()
    monkeypatch.setattr(BaseDatabase, "mongodb", mongo)
    return mongo


@pytest.fixture
def gate():
    return InstantGate()


@pytest.fixture
def tenant_config():
    return TenantConfig(
        tenant_id="tenant-a",
        tenant_name="Tenant A",
        pipeline_ids=[WIP_PIPELINE],
        unqualified_pipeline_ids=[UNQUALIFIED_PIPELINE],
        pipeline_names={WIP_PIPELINE: "Work In Progress", UNQUALIFIED_PIPELINE: "Unqualified"},
        invoice_stage_id=6,
        custom_field_mapping={
            "xero_quote_id": QUOTE_ID_KEY,
            "quote_number": QUOTE_NUMBER_KEY,
            "vessel_name": VESSEL_KEY,
        },
    )
