from typing import Any

from pydantic import AliasChoices, Field

from listingsync.schemas.common import CamelModel, ErrorItem


class IngestCsvRequest(CamelModel):
    # csvKey is the older spelling still sent by the upload page
    source_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("sourceKey", "csvKey", "source_key"),
    )
    file_names: list[str] | None = None
    dry_run: bool = False


class IngestPhotosRequest(CamelModel):
    file_names: list[str] | None = None
    dry_run: bool = False


class PhotoMoveOut(CamelModel):
    from_: str = Field(alias="from")
    to: str


class RowOutcomeOut(CamelModel):
    row_index: int
    listing_id: str | None = None
    ok: bool
    details_key: str | None = None
    primary_photo: str | None = None
    photos: list[str] = Field(default_factory=list)
    errors: list[ErrorItem] = Field(default_factory=list)


class IngestReportOut(CamelModel):
    run_id: str
    csv_key: str
    dry_run: bool
    processed: int
    written: int
    failed: int
    details_keys: list[str] = Field(default_factory=list)
    photos_moved: int
    photo_moves: list[PhotoMoveOut] = Field(default_factory=list)
    orphaned_sources: list[str] = Field(default_factory=list)
    csv_deleted: bool
    rows: list[RowOutcomeOut] = Field(default_factory=list)


class PhotosFinalizeOut(CamelModel):
    dry_run: bool
    moved: int
    listings: int
    results: list[dict[str, Any]] = Field(default_factory=list)
    orphaned_sources: list[str] = Field(default_factory=list)
    errors: list[dict[str, Any]] = Field(default_factory=list)
