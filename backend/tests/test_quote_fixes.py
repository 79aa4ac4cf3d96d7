import pytest

from core.errors import FetchError, QuoteLockedError, QuoteStatusLeftError
from fakes import FakeXero, make_quote
from schema.records import Product
from services.xero.quotes import (
    RESTORE_WARNING,
    build_line_items,
    edit_quote,
    fix_quote_number,
    sync_products_to_quote,
    transition_quote_status,
)


async def test_accepted_quote_is_reopened_edited_and_reaccepted():
    quote = make_quote("q1", "QU0349")
    xero = FakeXero([quote])

    written = await fix_quote_number(xero, quote, "NY2594-QU0349-1")

    assert [write["Status"] for write in xero.writes] == ["SENT", "SENT", "ACCEPTED"]
    assert xero.writes[1]["QuoteNumber"] == "NY2594-QU0349-1"
    assert written.quote.status == "ACCEPTED"
    assert written.quote.quote_number == "NY2594-QU0349-1"
    assert written.warnings == []


async def test_failed_reaccept_leaves_edit_with_warning():
    quote = make_quote("q1", "QU0349")
    xero = FakeXero([quote])
    xero.fail_on_status = {"ACCEPTED"}

    written = await fix_quote_number(xero, quote, "NY2594-QU0349-1")

    assert written.warnings == [RESTORE_WARNING]
    assert written.quote.status == "SENT"
    assert xero.quotes["q1"].quote_number == "NY2594-QU0349-1"


async def test_failed_edit_restores_accepted_status():
    quote = make_quote("q1", "QU0349")
    xero = FakeXero([quote])
    xero.fail_calls = {2}

    with pytest.raises(FetchError):
        await fix_quote_number(xero, quote, "NY2594-QU0349-1")

    assert [write["Status"] for write in xero.writes] == ["SENT", "ACCEPTED"]
    assert xero.quotes["q1"].status == "ACCEPTED"
    assert xero.quotes["q1"].quote_number == "QU0349"


async def test_failed_edit_and_restore_names_the_stuck_status():
    quote = make_quote("q1", "QU0349")
    xero = FakeXero([quote])
    xero.fail_calls = {2}
    xero.fail_on_status = {"ACCEPTED"}

    with pytest.raises(QuoteStatusLeftError, match="left in SENT instead of ACCEPTED") as excinfo:
        await fix_quote_number(xero, quote, "NY2594-QU0349-1")

    assert excinfo.value.status == "SENT"
    assert xero.quotes["q1"].status == "SENT"


async def test_quote_reopened_earlier_is_reaccepted_after_edit():
    quote = make_quote("q1", "QU0349", status="SENT")
    xero = FakeXero([quote])

    written = await fix_quote_number(xero, quote, "NY2594-QU0349-1", original_status="ACCEPTED")

    assert [write["Status"] for write in xero.writes] == ["SENT", "ACCEPTED"]
    assert written.quote.status == "ACCEPTED"
    assert written.warnings == []


async def test_sent_quote_is_edited_in_place():
    quote = make_quote("q1", "QU1", status="SENT")
    xero = FakeXero([quote])

    written = await edit_quote(xero, quote, {"Reference": "Pipedrive Deal ID: 4"})

    assert len(xero.writes) == 1
    assert written.quote.reference == "Pipedrive Deal ID: 4"


async def test_invoiced_quote_is_never_edited():
    quote = make_quote("q1", "NY1-QU1-1", status="INVOICED")
    xero = FakeXero([quote])

    with pytest.raises(QuoteLockedError):
        await edit_quote(xero, quote, {"QuoteNumber": "x"})
    assert xero.writes == []


async def test_transition_walks_each_hop():
    quote = make_quote("q1", "NY1-QU1-1", status="DECLINED")
    xero = FakeXero([quote])

    updated = await transition_quote_status(xero, quote, "ACCEPTED")

    assert [write["Status"] for write in xero.writes] == ["SENT", "ACCEPTED"]
    assert updated.status == "ACCEPTED"


async def test_transition_failing_midway_leaves_last_hop():
    quote = make_quote("q1", "NY1-QU1-1", status="DECLINED")
    xero = FakeXero([quote])
    xero.fail_calls = {2}

    with pytest.raises(FetchError):
        await transition_quote_status(xero, quote, "ACCEPTED")

    assert xero.quotes["q1"].status == "SENT"


def test_build_line_items_keeps_tracking_of_matching_lines():
    existing = make_quote("q1", "NY1-QU1-1")
    products = [
        Product(name="Overhaul", quantity=2, item_price=400, discount=5),
        Product(name="Freight", quantity=1, item_price=200),
    ]

    items = build_line_items(products, existing)

    assert items[0]["Tracking"] == existing.raw["LineItems"][0]["Tracking"]
    assert items[0]["LineAmount"] == 800
    assert items[0]["DiscountRate"] == 5
    assert items[1]["Tracking"] == []
    assert items[1]["AccountCode"] == "200"


async def test_sync_products_replaces_line_items():
    quote = make_quote("q1", "NY1-QU1-1", status="SENT")
    xero = FakeXero([quote])

    await sync_products_to_quote(xero, quote, [Product(name="Freight", quantity=1, item_price=50)])

    assert [item["Description"] for item in xero.writes[0]["LineItems"]] == ["Freight"]
