from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from listingsync.canonical.values import CanonicalValues
from listingsync.core.config import ConfigurationError, settings
from listingsync.core.ids import gen_id
from listingsync.services.cleaning import deep_clean
from listingsync.services.csv_matrix import parse_records
from listingsync.services.listing_ids import derive_listing_id, read_address, read_mls, read_price
from listingsync.services.listings import build_document_fields, details_key
from listingsync.services.photos import PhotoMatcher, PhotoMove, PhotoMoveFailure, choose_primary, is_image_key
from listingsync.services.resolver import AliasResolver
from listingsync.services.storage import BlobStore, RevisionConflict, get_json, parse_json_object, put_json

log = logging.getLogger(__name__)


class IngestError(Exception):
    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


@dataclass
class RowOutcome:
    row_index: int
    listing_id: str | None = None
    ok: bool = True
    details_key: str | None = None
    primary_photo: str | None = None
    photos: list[str] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    def fail(self, type_: str, message: str) -> None:
        self.ok = False
        self.errors.append({"type": type_, "message": message})

    def as_dict(self) -> dict[str, Any]:
        return {
            "rowIndex": self.row_index,
            "listingId": self.listing_id,
            "ok": self.ok,
            "detailsKey": self.details_key,
            "primaryPhoto": self.primary_photo,
            "photos": list(self.photos),
            "errors": list(self.errors),
        }


@dataclass
class IngestReport:
    run_id: str
    csv_key: str
    dry_run: bool
    processed: int = 0
    written: int = 0
    failed: int = 0
    details_keys: list[str] = field(default_factory=list)
    photo_moves: list[PhotoMove] = field(default_factory=list)
    csv_deleted: bool = False
    rows: list[RowOutcome] = field(default_factory=list)

    @property
    def photos_moved(self) -> int:
        return len(self.photo_moves)

    @property
    def orphaned_sources(self) -> list[str]:
        return [m.src for m in self.photo_moves if m.orphaned_source]

    def as_dict(self) -> dict[str, Any]:
        return {
            "runId": self.run_id,
            "csvKey": self.csv_key,
            "dryRun": self.dry_run,
            "processed": self.processed,
            "written": self.written,
            "failed": self.failed,
            "detailsKeys": list(self.details_keys),
            "photosMoved": self.photos_moved,
            "photoMoves": [m.as_dict() for m in self.photo_moves],
            "orphanedSources": self.orphaned_sources,
            "csvDeleted": self.csv_deleted,
            "rows": [r.as_dict() for r in self.rows],
        }


@dataclass
class PhotosFinalizeReport:
    dry_run: bool
    moved: int = 0
    results: list[dict[str, Any]] = field(default_factory=list)
    orphaned_sources: list[str] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "dryRun": self.dry_run,
            "moved": self.moved,
            "listings": len(self.results),
            "results": list(self.results),
            "orphanedSources": list(self.orphaned_sources),
            "errors": list(self.errors),
        }


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def locate_source_csv(
    store: BlobStore,
    *,
    source_key: str | None = None,
    file_names: list[str] | None = None,
) -> str:
    """
    sourceKey wins, then the first *.csv among fileNames (under the incoming
    prefix), then the most recently modified CSV in the incoming prefix.
    """
    if source_key:
        return source_key
    for name in file_names or []:
        if str(name).lower().endswith(".csv"):
            return f"{settings.csv_incoming_prefix}{name}"

    newest = None
    for info in await store.list(settings.csv_incoming_prefix):
        if not info.key.lower().endswith(".csv"):
            continue
        if newest is None or info.last_modified > newest.last_modified:
            newest = info
    if newest is None:
        raise IngestError(400, {"error": "No CSV found to ingest."})
    return newest.key


def decode_csv(csv_key: str, raw: bytes) -> str:
    """UTF-8 (BOM tolerated); exports that are not valid UTF-8 are read as Windows-1252."""
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        log.warning("ingest: %s is not valid UTF-8, decoding as cp1252", csv_key)
        return raw.decode("cp1252", errors="replace")


def build_details(
    row: dict[str, Any],
    *,
    csv_key: str,
    primary_photo: str | None,
    resolver: AliasResolver,
) -> dict[str, Any]:
    """Cleaned details document for one CSV row (not yet merged with what is stored)."""
    cleaned_raw = deep_clean(row) or {}

    # Rows are flat CSV records, so the positive-number scan would only pick a neighbouring column.
    core: CanonicalValues = resolver.resolve_all([cleaned_raw], allow_scan=False)

    details: dict[str, Any] = dict(cleaned_raw)
    details.update({k: v for k, v in build_document_fields(core).items() if v is not None})
    identity = {
        "mlsNumber": read_mls(row),
        "listPrice": read_price(row),
        "address": read_address(row),
        "primaryPhoto": primary_photo,
        "photo": primary_photo,
    }
    details.update({k: v for k, v in identity.items() if v is not None})
    details["source"] = {"csvKey": csv_key, "ingestedAt": _now_iso()}
    return deep_clean(details) or {}


async def _ingest_row(
    store: BlobStore,
    row: dict[str, Any],
    row_index: int,
    *,
    csv_key: str,
    dry_run: bool,
    matcher: PhotoMatcher,
    resolver: AliasResolver,
    report: IngestReport,
    editor: str,
) -> RowOutcome:
    listing_id = derive_listing_id(row, row_index)
    outcome = RowOutcome(row_index=row_index, listing_id=listing_id)

    moved: list[str] = []
    for src in await matcher.find_candidates(listing_id):
        try:
            move = await matcher.move(src, listing_id, dry_run=dry_run)
        except PhotoMoveFailure as e:
            log.warning("ingest: row %d (%s): %s", row_index, listing_id, e)
            outcome.errors.append({"type": "photo_move_failed", "message": str(e)})
            continue
        report.photo_moves.append(move)
        moved.append(move.dest)
    outcome.photos = moved
    outcome.primary_photo = choose_primary(moved, listing_id)

    details = build_details(
        row,
        csv_key=csv_key,
        primary_photo=outcome.primary_photo,
        resolver=resolver,
    )

    key = details_key(listing_id)
    outcome.details_key = key
    existing, rev = await get_json(store, key)
    doc = {**(existing or {}), **details}
    doc["updatedAt"] = _now_iso()
    doc["_lastEditedBy"] = editor

    if dry_run:
        return outcome

    try:
        await put_json(store, key, doc, if_match=rev or "")
    except RevisionConflict as e:
        outcome.fail("revision_conflict", str(e))
    except Exception as e:
        log.exception("ingest: persisting %s failed", key)
        outcome.fail("persist_failed", str(e))
    return outcome


async def run_csv_ingest(
    store: BlobStore,
    *,
    source_key: str | None = None,
    file_names: list[str] | None = None,
    dry_run: bool = False,
    resolver: AliasResolver | None = None,
    delete_source: bool | None = None,
    editor: str = "csv-ingest",
) -> IngestReport:
    """
    One ingestion run: locate the CSV, then per row derive the id, move its
    photos, clean the row and merge it into listings/{id}/details.json.

    Row failures are recorded in the report and the run moves on. A broken
    store configuration aborts before any row is touched.
    """
    try:
        await store.check()
    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(f"Blob store is not reachable: {e}") from e

    csv_key = await locate_source_csv(store, source_key=source_key, file_names=file_names)
    raw = await store.get(csv_key)
    if raw is None:
        raise IngestError(404, {"error": "CSV not found", "csvKey": csv_key})
    rows = parse_records(decode_csv(csv_key, raw))

    resolver = resolver or AliasResolver(numeric_scan_fallback=settings.numeric_scan_fallback)
    matcher = PhotoMatcher(store, settings.photos_incoming_prefix, settings.photos_prefix)
    report = IngestReport(run_id=gen_id("igr"), csv_key=csv_key, dry_run=dry_run)
    log.info("ingest: run %s csv=%s rows=%d dry_run=%s", report.run_id, csv_key, len(rows), dry_run)

    for i, row in enumerate(rows):
        try:
            outcome = await _ingest_row(
                store,
                row,
                i,
                csv_key=csv_key,
                dry_run=dry_run,
                matcher=matcher,
                resolver=resolver,
                report=report,
                editor=editor,
            )
        except Exception as e:
            log.exception("ingest: row %d failed", i)
            outcome = RowOutcome(row_index=i)
            outcome.fail("internal_error", str(e))

        report.rows.append(outcome)
        report.processed += 1
        if outcome.ok:
            report.written += 1
            if outcome.details_key:
                report.details_keys.append(outcome.details_key)
        else:
            report.failed += 1

    should_delete = settings.delete_csv_after_success if delete_source is None else delete_source
    if should_delete and not dry_run and report.failed == 0:
        try:
            await store.delete(csv_key)
            report.csv_deleted = True
        except Exception:
            log.warning("ingest: could not delete %s", csv_key, exc_info=True)

    log.info(
        "ingest: run %s done processed=%d written=%d failed=%d photos=%d",
        report.run_id, report.processed, report.written, report.failed, report.photos_moved,
    )
    return report


async def run_photos_finalize(
    store: BlobStore,
    *,
    file_names: list[str] | None = None,
    dry_run: bool = False,
) -> PhotosFinalizeReport:
    """
    Move incoming photos that arrived without a CSV. Each listing's details
    document gets a primaryPhoto only if it has none yet. A failure is
    recorded against its listing and the batch moves on.
    """
    await store.check()
    matcher = PhotoMatcher(store, settings.photos_incoming_prefix, settings.photos_prefix)

    if file_names:
        src_keys = [f"{settings.photos_incoming_prefix}{n}" for n in file_names if is_image_key(n)]
    else:
        src_keys = [i.key for i in await store.list(settings.photos_incoming_prefix) if is_image_key(i.key)]

    by_listing: dict[str, list[str]] = {}
    for k in dict.fromkeys(src_keys):
        lid = matcher.listing_id_from_key(k)
        if lid:
            by_listing.setdefault(lid, []).append(k)

    report = PhotosFinalizeReport(dry_run=dry_run)
    for listing_id, keys in by_listing.items():
        try:
            await _finalize_listing_photos(store, matcher, listing_id, keys, dry_run=dry_run, report=report)
        except Exception as e:
            log.exception("photos: listing %s failed", listing_id)
            report.errors.append({"type": "internal_error", "message": str(e), "listingId": listing_id})
    return report


async def _finalize_listing_photos(
    store: BlobStore,
    matcher: PhotoMatcher,
    listing_id: str,
    keys: list[str],
    *,
    dry_run: bool,
    report: PhotosFinalizeReport,
) -> None:
    dests: list[str] = []
    for src in keys:
        try:
            move = await matcher.move(src, listing_id, dry_run=dry_run)
        except PhotoMoveFailure as e:
            log.warning("photos: %s", e)
            report.errors.append({"type": "photo_move_failed", "message": str(e), "listingId": listing_id})
            continue
        if move.orphaned_source:
            report.orphaned_sources.append(move.src)
        dests.append(move.dest)
    report.moved += len(dests)

    key = details_key(listing_id)
    raw, rev = await store.read(key)
    if raw is None:
        details: dict[str, Any] = {"mlsNumber": listing_id}
    else:
        try:
            details = parse_json_object(key, raw)
        except ValueError:
            log.warning("photos: %s is not a readable JSON object, rewriting it", key)
            details = {}

    if not isinstance(details.get("primaryPhoto"), str) or not details["primaryPhoto"]:
        chosen = choose_primary(dests, listing_id)
        if chosen:
            details["primaryPhoto"] = chosen

    if not dry_run:
        try:
            await put_json(store, key, details, if_match=rev or "")
        except RevisionConflict as e:
            report.errors.append({"type": "revision_conflict", "message": str(e), "listingId": listing_id})
        except Exception as e:
            log.exception("photos: persisting %s failed", key)
            report.errors.append({"type": "persist_failed", "message": str(e), "listingId": listing_id})

    report.results.append({
        "listingId": listing_id,
        "moved": len(dests),
        "primaryPhoto": details.get("primaryPhoto"),
    })
