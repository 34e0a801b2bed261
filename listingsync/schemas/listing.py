from datetime import datetime
from typing import Any

from pydantic import Field

from listingsync.canonical.values import CanonicalValues
from listingsync.schemas.common import CamelModel


class ListingOut(CamelModel):
    listing_id: str
    details_key: str
    details: dict[str, Any]
    revision: str | None = None
    days_on_market: int | None = None
    timezone: str


class ListingCardOut(CamelModel):
    listing_id: str
    details_key: str
    mls: str
    address: str | None = None
    price: int | float | str | None = None
    active_date: str | None = None
    timezone: str
    computed_days_on_market: int | None = None
    photo_key: str | None = None
    has_note: bool = False
    last_modified: datetime | None = None


class ListingEditorOut(CamelModel):
    listing_id: str
    core: CanonicalValues
    extras: dict[str, Any] = Field(default_factory=dict)
    revision: str | None = None


class ExtraRow(CamelModel):
    key: str | None = None
    value: str | None = None


class ListingSaveRequest(CamelModel):
    core: CanonicalValues = Field(default_factory=CanonicalValues)
    # typed extras; merged with extraRows (raw editor text, parsed server side)
    extras: dict[str, Any] = Field(default_factory=dict)
    extra_rows: list[ExtraRow] | None = None
    card: dict[str, Any] | None = None
    replace: bool = True
    expected_revision: str | None = None


class ListingDeleteOut(CamelModel):
    listing_id: str
    deleted: int
    keys: list[str] = Field(default_factory=list)
