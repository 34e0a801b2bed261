from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from listingsync.core.config import ConfigurationError
from listingsync.schemas.listing import (
    ListingCardOut,
    ListingDeleteOut,
    ListingEditorOut,
    ListingOut,
    ListingSaveRequest,
)
from listingsync.services.extras_sync import collect_extras
from listingsync.services.internal_admin import require_internal_admin
from listingsync.services.listings import (
    ListingCard,
    ListingError,
    ListingView,
    build_listing_card,
    delete_listing,
    get_listing,
    list_listings,
    open_listing_editor,
    read_overrides,
    save_listing_edit,
)
from listingsync.services.storage import BlobStore, get_blob_store

router = APIRouter()


def _listing_out(view: ListingView) -> ListingOut:
    return ListingOut(
        listing_id=view.listing_id,
        details_key=view.details_key,
        details=view.details,
        revision=view.revision,
        days_on_market=view.days_on_market,
        timezone=view.timezone,
    )


def _card_out(card: ListingCard) -> ListingCardOut:
    return ListingCardOut(
        listing_id=card.listing_id,
        details_key=card.details_key,
        mls=card.mls,
        address=card.address,
        price=card.price,
        active_date=card.active_date,
        timezone=card.timezone,
        computed_days_on_market=card.days_on_market,
        photo_key=card.photo_key,
        has_note=card.has_note,
        last_modified=card.last_modified,
    )


@router.get("/listings", response_model=list[ListingCardOut])
async def list_listings_endpoint(store: BlobStore = Depends(get_blob_store)) -> list[ListingCardOut]:
    try:
        cards = await list_listings(store)
    except ConfigurationError as e:
        raise HTTPException(status_code=502, detail={"error": "listing catalog failed", "message": str(e)})
    return [_card_out(c) for c in cards]


@router.get("/listings/{listing_id}", response_model=ListingOut)
async def get_listing_endpoint(listing_id: str, store: BlobStore = Depends(get_blob_store)) -> ListingOut:
    try:
        view = await get_listing(store, listing_id)
    except ListingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return _listing_out(view)


@router.get("/listings/{listing_id}/editor", response_model=ListingEditorOut)
async def open_editor_endpoint(listing_id: str, store: BlobStore = Depends(get_blob_store)) -> ListingEditorOut:
    try:
        card = await build_listing_card(store, listing_id)
        editor = await open_listing_editor(
            store,
            listing_id,
            card=card.as_source() if card else None,
            overrides=await read_overrides(store, listing_id),
        )
    except ListingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return ListingEditorOut(
        listing_id=editor.listing_id,
        core=editor.core,
        extras=editor.extras,
        revision=editor.revision,
    )


@router.put(
    "/listings/{listing_id}",
    response_model=ListingOut,
    dependencies=[Depends(require_internal_admin)],
)
async def save_listing_endpoint(
    listing_id: str,
    body: ListingSaveRequest,
    store: BlobStore = Depends(get_blob_store),
) -> ListingOut:
    extras: dict[str, Any] = dict(body.extras)
    if body.extra_rows:
        extras.update(collect_extras((r.key, r.value) for r in body.extra_rows))

    try:
        view = await save_listing_edit(
            store,
            listing_id,
            body.core,
            extras,
            card=body.card,
            replace=body.replace,
            expected_revision=body.expected_revision,
        )
    except ListingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return _listing_out(view)


@router.delete(
    "/listings/{listing_id}",
    response_model=ListingDeleteOut,
    dependencies=[Depends(require_internal_admin)],
)
async def delete_listing_endpoint(listing_id: str, store: BlobStore = Depends(get_blob_store)) -> ListingDeleteOut:
    try:
        keys = await delete_listing(store, listing_id)
    except ListingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return ListingDeleteOut(listing_id=listing_id, deleted=len(keys), keys=keys)
