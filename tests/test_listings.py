import json
import os

import pytest

from listingsync.canonical.values import CanonicalValues
from listingsync.services.listings import (
    ListingConflict,
    ListingNotFound,
    build_listing_card,
    delete_listing,
    get_listing,
    list_listings,
    normalize_baths,
    open_listing_editor,
    save_listing_edit,
)
from listingsync.services.storage import LocalObjectStore


DETAILS = "listings/123/details.json"


async def _doc(store, key=DETAILS):
    return json.loads(await store.get(key))


@pytest.mark.asyncio
async def test_get_listing_defaults_timezone(seed):
    store = seed({DETAILS: json.dumps({"activeDate": "2024-03-01"})})
    view = await get_listing(store, "123")
    assert view.timezone == "America/Chicago"
    assert view.days_on_market >= 0
    assert view.revision


@pytest.mark.asyncio
async def test_get_missing_listing(store):
    with pytest.raises(ListingNotFound):
        await get_listing(store, "nope")


@pytest.mark.asyncio
async def test_editor_resolves_core_and_visible_extras(seed):
    store = seed({DETAILS: json.dumps({
        "ListPrice": "$500,000",
        "TotalBedrooms": "3",
        "City": "Austin",
        "Garage": "2 car",
        "listDate": "3/1/2024",
        "source": {"csvKey": "csv-incoming/a.csv", "ingestedAt": "2024-03-01T00:00:00Z"},
    })})

    view = await open_listing_editor(store, "123")

    assert view.core.price == 500000
    assert view.core.beds == 3
    assert view.core.city == "Austin"
    assert view.core.active_date == "2024-03-01"
    assert view.extras == {"ListPrice": "$500,000", "TotalBedrooms": "3", "Garage": "2 car"}


@pytest.mark.asyncio
async def test_editor_overrides_take_priority(seed):
    store = seed({DETAILS: json.dumps({"City": "Austin"})})
    view = await open_listing_editor(store, "123", overrides={"city": "Dallas"})
    assert view.core.city == "Dallas"


@pytest.mark.asyncio
async def test_save_retires_bedrooms_alias(seed):
    store = seed({DETAILS: json.dumps({"bedrooms": 4, "City": "Austin"})})

    view = await save_listing_edit(store, "123", CanonicalValues(), {"bedrooms": 4, "City": "Austin"})

    doc = await _doc(store)
    assert doc["TotalBedrooms"] == 4
    assert doc["beds"] == 4
    assert "bedrooms" not in doc
    assert doc["city"] == "Austin"
    assert doc["City"] == "Austin"
    assert doc["timezone"] == "America/Chicago"
    assert doc["_lastEditedBy"] == "admin-dashboard"
    assert "updatedAt" in doc
    assert view.details == doc


@pytest.mark.asyncio
async def test_core_values_win_and_are_mirrored(seed):
    store = seed({DETAILS: json.dumps({"ListPrice": 100, "CurrentPrice": 100})})

    await save_listing_edit(store, "123", CanonicalValues(price=250000), {"ListPrice": 100, "Garage": "1 car"})

    doc = await _doc(store)
    assert doc["ListPrice"] == 250000
    assert doc["CurrentPrice"] == 250000
    assert doc["listPrice"] == 250000
    assert doc["Garage"] == "1 car"


@pytest.mark.asyncio
async def test_patch_mode_removes_blank_keys_and_keeps_others(seed):
    store = seed({DETAILS: json.dumps({"Garage": "1 car", "Pool": "yes", "timezone": "America/Denver"})})

    await save_listing_edit(store, "123", CanonicalValues(), {"Garage": ""}, replace=False)

    doc = await _doc(store)
    assert "Garage" not in doc
    assert doc["Pool"] == "yes"
    assert doc["timezone"] == "America/Denver"


@pytest.mark.asyncio
async def test_patch_mode_leaves_unsent_canonical_fields_alone(seed):
    store = seed({DETAILS: json.dumps({
        "mls": "123",
        "listPrice": 350000,
        "TotalBedrooms": 3,
        "city": "Austin",
    })})

    await save_listing_edit(store, "123", CanonicalValues(city="Dallas"), {}, replace=False)

    doc = await _doc(store)
    assert doc["city"] == "Dallas"
    assert doc["mls"] == "123"
    assert doc["listPrice"] == 350000
    assert doc["TotalBedrooms"] == 3


@pytest.mark.asyncio
async def test_patch_mode_clears_a_field_sent_as_null(seed):
    store = seed({DETAILS: json.dumps({"listPrice": 350000, "price": 350000, "city": "Austin"})})

    await save_listing_edit(store, "123", CanonicalValues(price=None), {}, replace=False)

    doc = await _doc(store)
    assert "listPrice" not in doc
    assert "price" not in doc
    assert doc["city"] == "Austin"


@pytest.mark.asyncio
async def test_save_normalizes_dates_timezone_and_reserved_keys(seed):
    store = seed({DETAILS: json.dumps({"timezone": "America/Denver"})})
    core = CanonicalValues(activeDate="3/5/2024", timezone="Nowhere/Land")

    await save_listing_edit(store, "123", core, {"details.secret": "x", "Pool": "yes"})

    doc = await _doc(store)
    assert doc["activeDate"] == "2024-03-05"
    assert doc["timezone"] == "America/Denver"
    assert "details.secret" not in doc
    assert doc["Pool"] == "yes"


@pytest.mark.asyncio
async def test_save_derives_bath_totals(store):
    extras = {"FullBathsMain": "2", "FullBathsSecond": 1, "HalfBathsMain": "1"}
    view = await save_listing_edit(store, "123", CanonicalValues(), extras)
    assert view.details["TotalFullBaths"] == 3
    assert view.details["totalBaths"] == 4


def test_normalize_baths_without_counts_is_noop():
    assert normalize_baths({"baths": 2}) == {"baths": 2}


@pytest.mark.asyncio
async def test_stale_revision_is_a_conflict(seed):
    store = seed({DETAILS: json.dumps({"City": "Austin"})})
    with pytest.raises(ListingConflict):
        await save_listing_edit(store, "123", CanonicalValues(), {}, expected_revision="stale")


class RacingStore(LocalObjectStore):
    async def put(self, key, data, *, content_type=None, if_match=None):
        self.resolve_path(key).write_bytes(b'{"other": "writer"}')
        return await super().put(key, data, content_type=content_type, if_match=if_match)


@pytest.mark.asyncio
async def test_concurrent_save_is_a_conflict(tmp_path):
    store = RacingStore(tmp_path / "blobs")
    path = store.resolve_path(DETAILS)
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps({"City": "Austin"}))

    with pytest.raises(ListingConflict):
        await save_listing_edit(store, "123", CanonicalValues(city="Dallas"), {})
    assert await _doc(store) == {"other": "writer"}


class WriteAfterReadStore(LocalObjectStore):
    """Another writer lands right after our read of the details document."""

    async def read(self, key):
        result = await super().read(key)
        if key == DETAILS and result[0] is not None:
            doc = json.loads(result[0])
            doc["Garage"] = "concurrent write"
            self.resolve_path(key).write_text(json.dumps(doc))
        return result


@pytest.mark.asyncio
async def test_write_between_read_and_save_is_a_conflict(tmp_path):
    store = WriteAfterReadStore(tmp_path / "blobs")
    path = store.resolve_path(DETAILS)
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps({"City": "Austin"}))

    with pytest.raises(ListingConflict):
        await save_listing_edit(store, "123", CanonicalValues(city="Dallas"), {}, replace=False)
    assert json.loads(path.read_text())["Garage"] == "concurrent write"


@pytest.mark.asyncio
async def test_delete_listing_removes_document_and_photos(seed):
    store = seed({DETAILS: "{}", "photos/123/a.jpg": b"x", "photos/1234/b.jpg": b"y"})

    keys = await delete_listing(store, "123")

    assert sorted(keys) == [DETAILS, "photos/123/a.jpg"]
    assert not await store.exists(DETAILS)
    assert await store.exists("photos/1234/b.jpg")
    with pytest.raises(ListingNotFound):
        await delete_listing(store, "123")


@pytest.mark.asyncio
async def test_catalog_lists_cards_newest_first(seed):
    store = seed({
        "listings/a/details.json": json.dumps({
            "mlsNumber": "A1",
            "address": "1 Main St",
            "listPrice": "$300,000",
            "agentNotes": "call first",
            "listDate": "3/1/2024",
            "primaryPhoto": "https://cdn.example.com/photos/a/front.jpg",
        }),
        "photos/a/front.jpg": b"x",
        "listings/b/details.json": json.dumps({"ListPrice": "TBD", "timezone": "America/Denver"}),
        "listings/b/overrides.json": json.dumps({"activeDate": "2024-02-01"}),
        "photos/b/notes.txt": b"z",
        "photos/b/2.png": b"y",
    })
    os.utime(store.resolve_path("listings/a/details.json"), (1_700_000_000, 1_700_000_000))
    os.utime(store.resolve_path("listings/b/details.json"), (1_800_000_000, 1_800_000_000))

    cards = await list_listings(store)

    assert [c.listing_id for c in cards] == ["b", "a"]
    b, a = cards
    assert a.mls == "A1"
    assert a.price == 300000
    assert a.active_date == "2024-03-01"
    assert a.timezone == "America/Chicago"
    assert a.photo_key == "photos/a/front.jpg"
    assert a.has_note
    assert b.mls == "b"
    assert b.price == "TBD"
    assert b.active_date == "2024-02-01"
    assert b.timezone == "America/Denver"
    assert b.days_on_market >= 0
    assert b.photo_key == "photos/b/2.png"
    assert not b.has_note


@pytest.mark.asyncio
async def test_card_is_the_editors_last_source(seed):
    store = seed({DETAILS: json.dumps({"Garage": "1 car"}), "photos/123.webp": b"x"})
    assert await build_listing_card(store, "nope") is None

    card = await build_listing_card(store, "123")
    assert card.photo_key == "photos/123.webp"

    view = await open_listing_editor(store, "123", card=card.as_source())
    assert view.core.mls == "123"
    assert view.core.photo == "photos/123.webp"
    assert view.extras == {"Garage": "1 car"}
