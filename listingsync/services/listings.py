from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from listingsync.canonical.fields import DEFAULT_FIELD_GROUPS, CanonicalField, FieldGroupModel
from listingsync.canonical.values import CanonicalValues, coerce_number, is_blank
from listingsync.core.config import settings
from listingsync.services.dates import days_on_market, normalize_active_date, normalize_timezone
from listingsync.services.extras_sync import ExtrasSynchronizer, drop_reserved_keys
from listingsync.services.flatten import flatten
from listingsync.services.photos import is_image_key
from listingsync.services.resolver import AliasResolver
from listingsync.services.storage import BlobStore, RevisionConflict, get_json, put_json
from listingsync.services.visibility import AdminKeyFilter

log = logging.getLogger(__name__)


class ListingError(Exception):
    status_code = 400

    def __init__(self, detail: Any):
        super().__init__(str(detail))
        self.detail = detail


class ListingNotFound(ListingError):
    status_code = 404


class ListingConflict(ListingError):
    status_code = 409


# canonical field -> document keys written for it
DOCUMENT_KEYS: dict[CanonicalField, tuple[str, ...]] = {
    CanonicalField.MLS: ("mls",),
    CanonicalField.ADDRESS: ("address",),
    CanonicalField.CITY: ("city",),
    CanonicalField.STATE: ("state",),
    CanonicalField.ZIP: ("zip",),
    CanonicalField.PRICE: ("listPrice", "price"),
    CanonicalField.BEDS: ("TotalBedrooms", "beds"),
    CanonicalField.BATHS: ("totalBaths", "baths"),
    CanonicalField.SQFT: ("SqFtTotal", "sqft"),
    CanonicalField.YEAR: ("yearBuilt",),
    CanonicalField.STATUS: ("status",),
    CanonicalField.ACTIVE_DATE: ("activeDate",),
    CanonicalField.TIMEZONE: ("timezone",),
    CanonicalField.DESCRIPTION: ("publicRemarks", "remarks"),
    CanonicalField.NOTES: ("agentNotes",),
    CanonicalField.PHOTO: ("primaryPhoto", "photo"),
}

_FULL_BATH_KEYS = ("FullBathsMain", "FullBathsSecond", "FullBathsThird")
_HALF_BATH_KEYS = ("HalfBathsMain", "HalfBathsSecond", "HalfBathsThird")


@dataclass(frozen=True)
class ListingView:
    listing_id: str
    details_key: str
    details: dict[str, Any]
    revision: str | None
    days_on_market: int | None
    timezone: str


@dataclass
class EditorView:
    listing_id: str
    core: CanonicalValues
    extras: dict[str, Any] = field(default_factory=dict)
    revision: str | None = None


def details_key(listing_id: str) -> str:
    return f"{settings.listings_prefix}{listing_id}/details.json"


def listing_sources(
    overrides: Mapping[str, Any] | None,
    details: Mapping[str, Any] | None,
    card: Mapping[str, Any] | None,
) -> list[Mapping[str, Any]]:
    """Resolution order for the editor: overrides, details, flattened details, card."""
    return [
        overrides or {},
        details or {},
        flatten(details or {}),
        card or {},
    ]


def build_document_fields(
    core: CanonicalValues,
    fields: Iterable[CanonicalField] | None = None,
) -> dict[str, Any]:
    """
    Canonical document keys for the core values (all fields, or only `fields`).
    Blank fields map to None so a patch can tell "cleared" from "not mentioned".
    """
    wanted = DOCUMENT_KEYS.keys() if fields is None else set(fields)
    out: dict[str, Any] = {}
    for f, keys in DOCUMENT_KEYS.items():
        if f not in wanted:
            continue
        value = core.get(f)
        if f is CanonicalField.ACTIVE_DATE and value is not None:
            value = normalize_active_date(value) or value
        for k in keys:
            out[k] = None if is_blank(value) else value
    return out


def sanitize_patch(patch: Mapping[str, Any]) -> dict[str, Any]:
    out = dict(patch)
    out.pop("daysOnMarket", None)

    if isinstance(out.get("activeDate"), str):
        iso = normalize_active_date(out["activeDate"])
        if iso:
            out["activeDate"] = iso
    if "timezone" in out:
        tz = normalize_timezone(out["timezone"])
        if tz:
            out["timezone"] = tz
        else:
            del out["timezone"]

    return drop_reserved_keys(out)


def apply_patch(target: dict[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    """None or a blank string removes the key; anything else overwrites it."""
    for k, v in patch.items():
        if is_blank(v):
            target.pop(k, None)
        else:
            target[k] = v
    return target


def normalize_baths(details: dict[str, Any]) -> dict[str, Any]:
    """Derive TotalFullBaths / totalBaths from per-level counts when any are present."""

    def _num(v: Any) -> int | float | None:
        return None if is_blank(v) else coerce_number(v)

    full = [n for n in (_num(details.get(k)) for k in _FULL_BATH_KEYS) if n is not None]
    half = [n for n in (_num(details.get(k)) for k in _HALF_BATH_KEYS) if n is not None]

    if full:
        details["TotalFullBaths"] = sum(full)
    if full or half:
        details["totalBaths"] = sum(full) + sum(half)
    return details


def _view(listing_id: str, details: dict[str, Any], revision: str | None) -> ListingView:
    tz = details.get("timezone") or settings.default_listing_tz
    return ListingView(
        listing_id=listing_id,
        details_key=details_key(listing_id),
        details=details,
        revision=revision,
        days_on_market=days_on_market(details.get("activeDate"), tz, default_tz=settings.default_listing_tz),
        timezone=tz,
    )


async def get_listing(store: BlobStore, listing_id: str) -> ListingView:
    doc, rev = await get_json(store, details_key(listing_id))
    if doc is None:
        raise ListingNotFound({"message": "Listing not found", "listing_id": listing_id})
    return _view(listing_id, doc, rev)


async def open_listing_editor(
    store: BlobStore,
    listing_id: str,
    *,
    card: Mapping[str, Any] | None = None,
    overrides: Mapping[str, Any] | None = None,
    model: FieldGroupModel = DEFAULT_FIELD_GROUPS,
    show_admin_keys: bool | None = None,
) -> EditorView:
    doc, rev = await get_json(store, details_key(listing_id))
    if doc is None and not card:
        raise ListingNotFound({"message": "Listing not found", "listing_id": listing_id})

    resolver = AliasResolver(model, numeric_scan_fallback=settings.numeric_scan_fallback)
    core = resolver.resolve_all(listing_sources(overrides, doc, card))
    if core.active_date:
        core.active_date = normalize_active_date(core.active_date) or core.active_date

    visibility = AdminKeyFilter(
        model,
        show_admin_keys=settings.show_admin_keys if show_admin_keys is None else show_admin_keys,
    )
    extras = ExtrasSynchronizer(model).render_extras([overrides, doc, card], visibility)
    return EditorView(listing_id=listing_id, core=core, extras=extras, revision=rev)


async def save_listing_edit(
    store: BlobStore,
    listing_id: str,
    core: CanonicalValues,
    extras: Mapping[str, Any],
    *,
    card: Mapping[str, Any] | None = None,
    replace: bool = True,
    expected_revision: str | None = None,
    editor: str = "admin-dashboard",
    model: FieldGroupModel = DEFAULT_FIELD_GROUPS,
) -> ListingView:
    """
    Persist an editor save.

    Extras fill blank core fields, the core values are then mirrored back onto
    every alias key already present, and the result is written conditionally
    on the revision read here (or the caller's expected_revision).
    """
    key = details_key(listing_id)
    current, rev = await get_json(store, key)
    current = current or {}
    if expected_revision is not None and expected_revision != (rev or ""):
        raise ListingConflict({"message": "Listing changed since it was opened", "listing_id": listing_id})

    sync = ExtrasSynchronizer(model)
    core = core.model_copy()
    extras = dict(extras)

    sync.adopt_core_from_extras(core, extras)
    # a patch only touches the canonical fields the caller set (or adoption filled)
    touched = None if replace else [f for f in DOCUMENT_KEYS if f.attr in core.model_fields_set]
    base = build_document_fields(core, touched)
    sync.mirror_aliases_into_extras(extras, core, [current, card])
    drop_reserved_keys(extras)

    patch = sanitize_patch({**extras, **base})
    if replace:
        nxt = {k: v for k, v in patch.items() if not is_blank(v)}
    else:
        nxt = apply_patch(dict(current), patch)

    for f, (_, retired_key) in model.retired_aliases.items():
        if core.get(f) is not None:
            nxt.pop(retired_key, None)

    if not nxt.get("timezone"):
        nxt["timezone"] = current.get("timezone") or settings.default_listing_tz
    normalize_baths(nxt)
    nxt["updatedAt"] = datetime.now(timezone.utc).isoformat()
    nxt["_lastEditedBy"] = editor

    try:
        new_rev = await put_json(store, key, nxt, if_match=rev or "")
    except RevisionConflict as e:
        raise ListingConflict({"message": "Listing was modified concurrently", "listing_id": listing_id}) from e

    log.info("listings: saved %s (replace=%s, keys=%d)", listing_id, replace, len(nxt))
    return _view(listing_id, nxt, new_rev)


async def delete_listing(store: BlobStore, listing_id: str) -> list[str]:
    """Remove the listing folder and its permanent photos. Returns the deleted keys."""
    keys: list[str] = []
    for prefix in (f"{settings.listings_prefix}{listing_id}/", f"{settings.photos_prefix}{listing_id}/"):
        keys.extend(info.key for info in await store.list(prefix))
    if not keys:
        raise ListingNotFound({"message": "Listing not found", "listing_id": listing_id})

    for k in keys:
        await store.delete(k)
    log.info("listings: deleted %s (%d objects)", listing_id, len(keys))
    return keys


# --- catalog ---

_URL_HOST = re.compile(r"^https?://[^/]+/")
_CARD_PHOTO_EXT = (".jpg", ".jpeg", ".png", ".webp")


@dataclass(frozen=True)
class ListingCard:
    """Catalog summary of one listing; also the lowest-trust source for the editor."""

    listing_id: str
    details_key: str
    mls: str
    address: str | None
    price: int | float | str | None
    active_date: str | None
    timezone: str
    days_on_market: int | None
    photo_key: str | None
    has_note: bool
    last_modified: datetime | None = None

    def as_source(self) -> dict[str, Any]:
        """Canonical keys only, so the card never adds rows to the extras editor."""
        record = {
            "mls": self.mls,
            "address": self.address,
            "price": self.price,
            "activeDate": self.active_date,
            "timezone": self.timezone,
            "photo": self.photo_key,
        }
        return {k: v for k, v in record.items() if v is not None}


def _first_non_empty(*values: Any) -> Any:
    for v in values:
        if v is None or (isinstance(v, str) and not v.strip()):
            continue
        return v
    return None


def _number_or_text(value: Any) -> int | float | str | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    n = coerce_number(text.replace("-", ""))
    return n if n is not None and n > 0 else text


async def read_overrides(store: BlobStore, listing_id: str) -> dict[str, Any]:
    key = f"{settings.listings_prefix}{listing_id}/overrides.json"
    try:
        doc, _ = await get_json(store, key)
    except ValueError:
        log.warning("listings: %s is not a readable JSON object, ignoring it", key)
        return {}
    return doc or {}


async def resolve_photo_key(store: BlobStore, listing_id: str, details: Mapping[str, Any]) -> str | None:
    """
    primaryPhoto if it exists, else photos/{id}/{id}.{jpg,jpeg,png,webp}, else
    the first image in photos/{id}/, else the flat photos/{id}.{ext}.
    """
    primary = details.get("primaryPhoto")
    if isinstance(primary, str) and primary:
        k = _URL_HOST.sub("", primary)
        if await store.exists(k):
            return k

    folder = f"{settings.photos_prefix}{listing_id}/"
    for ext in _CARD_PHOTO_EXT:
        if await store.exists(f"{folder}{listing_id}{ext}"):
            return f"{folder}{listing_id}{ext}"

    for info in await store.list(folder):
        if is_image_key(info.key.split("/")[-1]):
            return info.key

    for ext in _CARD_PHOTO_EXT:
        if await store.exists(f"{settings.photos_prefix}{listing_id}{ext}"):
            return f"{settings.photos_prefix}{listing_id}{ext}"
    return None


async def build_listing_card(
    store: BlobStore,
    listing_id: str,
    *,
    last_modified: datetime | None = None,
) -> ListingCard | None:
    """Card for one listing (details merged with overrides.json); None if it has neither."""
    key = details_key(listing_id)
    try:
        details, _ = await get_json(store, key)
    except ValueError:
        log.warning("listings: %s is not a readable JSON object", key)
        details = {}
    overrides = await read_overrides(store, listing_id)
    if details is None and not overrides:
        return None
    details = details or {}
    merged = {**details, **overrides}

    active = _first_non_empty(
        overrides.get("activeDate"),
        merged.get("activeDate"),
        merged.get("listDate"),
        merged.get("ListDate"),
    )
    active_date = normalize_active_date(active) if active is not None else None
    tz = _first_non_empty(overrides.get("timezone"), merged.get("timezone"), settings.default_listing_tz)
    notes = merged.get("agentNotes")

    return ListingCard(
        listing_id=listing_id,
        details_key=key,
        mls=str(_first_non_empty(merged.get("mlsNumber"), merged.get("mls"), listing_id)),
        address=_first_non_empty(merged.get("address"), merged.get("Address")),
        price=_number_or_text(_first_non_empty(merged.get("listPrice"), merged.get("ListPrice"), merged.get("price"))),
        active_date=active_date,
        timezone=tz,
        days_on_market=(
            days_on_market(active_date, tz, default_tz=settings.default_listing_tz) if active_date else None
        ),
        photo_key=await resolve_photo_key(store, listing_id, merged),
        has_note=isinstance(notes, str) and bool(notes.strip()),
        last_modified=last_modified,
    )


async def list_listings(store: BlobStore) -> list[ListingCard]:
    """Every listings/{id}/details.json as a card, most recently modified first."""
    await store.check()
    found = [
        info for info in await store.list(settings.listings_prefix)
        if info.key.endswith("/details.json")
    ]

    cards: list[ListingCard] = []
    for info in found:
        listing_id = info.key[len(settings.listings_prefix):].split("/")[0]
        card = await build_listing_card(store, listing_id, last_modified=info.last_modified)
        if card is not None:
            cards.append(card)
    cards.sort(
        key=lambda c: (c.last_modified or datetime.min.replace(tzinfo=timezone.utc), c.details_key),
        reverse=True,
    )
    return cards
