import json
import os

import pytest

from listingsync.core.config import ConfigurationError
from listingsync.services.ingest import IngestError, locate_source_csv, run_csv_ingest, run_photos_finalize
from listingsync.services.storage import LocalObjectStore


CSV = (
    "MLS Number,Address,List Price,TotalBedrooms,SqFtTotal,Garage,Notes\n"
    '123,"12 Oak Ave, Springfield, IL 62701","$350,000",3,"1,800",2 car,n/a\n'
    ',"9 Elm St, Springfield, IL 62701",,,,,\n'
)


async def _doc(store, key):
    raw = await store.get(key)
    return json.loads(raw) if raw is not None else None


@pytest.mark.asyncio
async def test_csv_ingest_writes_details_and_moves_photos(seed):
    store = seed({
        "csv-incoming/listings.csv": CSV,
        "photos-incoming/123/main.jpg": b"a",
        "photos-incoming/123/2.png": b"b",
    })

    report = await run_csv_ingest(store)

    assert report.processed == 2
    assert report.written == 2
    assert report.failed == 0
    assert report.photos_moved == 2
    assert report.details_keys == [
        "listings/123/details.json",
        "listings/9-elm-st-springfield-il-62701/details.json",
    ]
    assert report.csv_deleted
    assert not await store.exists("csv-incoming/listings.csv")
    assert await store.exists("photos/123/main.jpg")
    assert not await store.exists("photos-incoming/123/main.jpg")

    doc = await _doc(store, "listings/123/details.json")
    assert doc["mlsNumber"] == "123"
    assert doc["primaryPhoto"] == "photos/123/main.jpg"
    assert doc["listPrice"] == 350000
    assert doc["TotalBedrooms"] == 3
    assert doc["beds"] == 3
    assert doc["SqFtTotal"] == 1800
    assert doc["address"] == "12 Oak Ave, Springfield, IL 62701"
    assert doc["Garage"] == "2 car"
    assert "Notes" not in doc
    assert doc["source"]["csvKey"] == "csv-incoming/listings.csv"
    assert doc["_lastEditedBy"] == "csv-ingest"
    assert "updatedAt" in doc

    second = await _doc(store, "listings/9-elm-st-springfield-il-62701/details.json")
    assert "mlsNumber" not in second
    assert "primaryPhoto" not in second


@pytest.mark.asyncio
async def test_dry_run_touches_nothing(seed):
    store = seed({"csv-incoming/listings.csv": CSV, "photos-incoming/123/main.jpg": b"a"})

    report = await run_csv_ingest(store, dry_run=True)

    assert report.dry_run
    assert report.written == 2
    assert report.photos_moved == 1
    assert report.as_dict()["photoMoves"] == [{"from": "photos-incoming/123/main.jpg", "to": "photos/123/main.jpg"}]
    assert not report.csv_deleted
    assert await store.exists("csv-incoming/listings.csv")
    assert await store.exists("photos-incoming/123/main.jpg")
    assert await store.list("listings/") == []


@pytest.mark.asyncio
async def test_ingest_merges_over_existing_document(seed):
    store = seed({
        "csv-incoming/listings.csv": CSV,
        "listings/123/details.json": json.dumps({"agentNotes": "keep me", "primaryPhoto": "photos/123/old.jpg"}),
    })

    await run_csv_ingest(store)

    doc = await _doc(store, "listings/123/details.json")
    assert doc["agentNotes"] == "keep me"
    assert doc["primaryPhoto"] == "photos/123/old.jpg"
    assert doc["listPrice"] == 350000


@pytest.mark.asyncio
async def test_source_selection(seed):
    store = seed({
        "csv-incoming/old.csv": "MLS\n1\n",
        "csv-incoming/new.csv": "MLS\n2\n",
        "csv-incoming/readme.txt": "x",
    })
    os.utime(store.resolve_path("csv-incoming/old.csv"), (1_000_000, 1_000_000))
    os.utime(store.resolve_path("csv-incoming/new.csv"), (2_000_000, 2_000_000))

    assert await locate_source_csv(store) == "csv-incoming/new.csv"
    assert await locate_source_csv(store, file_names=["a.jpg", "old.csv"]) == "csv-incoming/old.csv"
    assert await locate_source_csv(store, source_key="elsewhere/x.csv") == "elsewhere/x.csv"


@pytest.mark.asyncio
async def test_no_csv_is_a_400(store):
    with pytest.raises(IngestError) as exc:
        await run_csv_ingest(store)
    assert exc.value.status_code == 400
    assert exc.value.detail == {"error": "No CSV found to ingest."}


class FailingPutStore(LocalObjectStore):
    async def put(self, key, data, *, content_type=None, if_match=None):
        if key.startswith("listings/bad"):
            raise OSError("disk full")
        return await super().put(key, data, content_type=content_type, if_match=if_match)


@pytest.mark.asyncio
async def test_persist_failure_is_row_level(tmp_path):
    store = FailingPutStore(tmp_path / "blobs")
    await store.put("csv-incoming/a.csv", b"MLS,Price\nbad1,1\nok1,2\n")

    report = await run_csv_ingest(store)

    assert report.processed == 2
    assert report.written == 1
    assert report.failed == 1
    assert report.rows[0].errors[0]["type"] == "persist_failed"
    assert report.rows[1].ok
    assert not report.csv_deleted
    assert await store.exists("csv-incoming/a.csv")
    assert await store.exists("listings/ok1/details.json")


class RacingStore(LocalObjectStore):
    """Another writer lands between our read and our conditional write."""

    async def put(self, key, data, *, content_type=None, if_match=None):
        if key.startswith("listings/") and if_match is not None:
            path = self.resolve_path(key)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(b'{"other": "writer"}')
        return await super().put(key, data, content_type=content_type, if_match=if_match)


@pytest.mark.asyncio
async def test_concurrent_write_is_a_revision_conflict(tmp_path):
    store = RacingStore(tmp_path / "blobs")
    await store.put("csv-incoming/a.csv", b"MLS\n77\n")

    report = await run_csv_ingest(store)

    assert report.failed == 1
    assert report.rows[0].errors[0]["type"] == "revision_conflict"
    assert json.loads(await store.get("listings/77/details.json")) == {"other": "writer"}


class BrokenStore(LocalObjectStore):
    async def check(self):
        raise ConfigurationError("Missing bucket")


@pytest.mark.asyncio
async def test_configuration_error_aborts_before_any_row(tmp_path):
    store = BrokenStore(tmp_path / "blobs")
    await store.put("csv-incoming/a.csv", b"MLS\n1\n")

    with pytest.raises(ConfigurationError):
        await run_csv_ingest(store)
    assert await store.list("listings/") == []


class NoRenameStore:
    def __init__(self, inner):
        self.inner = inner

    def __getattr__(self, name):
        if name == "rename":
            raise AttributeError(name)
        return getattr(self.inner, name)

    async def copy(self, src, dest):
        raise OSError("copy refused")


@pytest.mark.asyncio
async def test_photo_move_failure_keeps_row(seed):
    inner = seed({"csv-incoming/a.csv": "MLS\n55\n", "photos-incoming/55.jpg": b"x"})
    store = NoRenameStore(inner)

    report = await run_csv_ingest(store)

    row = report.rows[0]
    assert row.ok
    assert row.primary_photo is None
    assert row.errors[0]["type"] == "photo_move_failed"
    assert report.written == 1
    assert await inner.exists("photos-incoming/55.jpg")


@pytest.mark.asyncio
async def test_photos_finalize_sets_primary_only_when_missing(seed):
    store = seed({
        "photos-incoming/555.jpg": b"a",
        "photos-incoming/777/front.jpg": b"b",
        "photos-incoming/777/2.png": b"c",
        "listings/777/details.json": json.dumps({"primaryPhoto": "photos/777/keep.jpg"}),
    })

    report = await run_photos_finalize(store)

    assert report.moved == 3
    assert await _doc(store, "listings/555/details.json") == {
        "mlsNumber": "555",
        "primaryPhoto": "photos/555/555.jpg",
    }
    assert (await _doc(store, "listings/777/details.json"))["primaryPhoto"] == "photos/777/keep.jpg"
    assert await store.exists("photos/777/front.jpg")
    assert not await store.exists("photos-incoming/777/2.png")


@pytest.mark.asyncio
async def test_windows_1252_csv_is_ingested(seed):
    store = seed({"csv-incoming/a.csv": "MLS,City\n1,Café\n".encode("cp1252")})

    report = await run_csv_ingest(store)

    assert report.written == 1
    assert (await _doc(store, "listings/1/details.json"))["City"] == "Café"


class FailingListingStore(LocalObjectStore):
    async def put(self, key, data, *, content_type=None, if_match=None):
        if key == "listings/200/details.json":
            raise OSError("disk full")
        return await super().put(key, data, content_type=content_type, if_match=if_match)


@pytest.mark.asyncio
async def test_photos_finalize_isolates_listing_failures(tmp_path):
    store = FailingListingStore(tmp_path / "blobs")
    await store.put("photos-incoming/100.jpg", b"a")
    await store.put("photos-incoming/200.jpg", b"b")
    await store.put("photos-incoming/300.jpg", b"c")
    await store.put("listings/100/details.json", b"{not json")

    report = await run_photos_finalize(store)

    assert report.moved == 3
    assert [r["listingId"] for r in report.results] == ["100", "200", "300"]
    assert report.errors == [
        {"type": "persist_failed", "message": "disk full", "listingId": "200"},
    ]
    assert await _doc(store, "listings/100/details.json") == {"primaryPhoto": "photos/100/100.jpg"}
    assert await _doc(store, "listings/300/details.json") == {
        "mlsNumber": "300",
        "primaryPhoto": "photos/300/300.jpg",
    }
