from fastapi import APIRouter, Depends, HTTPException

from listingsync.core.config import ConfigurationError
from listingsync.schemas.ingest import IngestCsvRequest, IngestPhotosRequest, IngestReportOut, PhotosFinalizeOut
from listingsync.services.ingest import IngestError, run_csv_ingest, run_photos_finalize
from listingsync.services.internal_admin import require_internal_admin
from listingsync.services.storage import BlobStore, get_blob_store

router = APIRouter()


@router.post(
    "/ingest/csv",
    response_model=IngestReportOut,
    dependencies=[Depends(require_internal_admin)],
)
async def ingest_csv_endpoint(
    body: IngestCsvRequest,
    store: BlobStore = Depends(get_blob_store),
) -> IngestReportOut:
    try:
        report = await run_csv_ingest(
            store,
            source_key=body.source_key,
            file_names=body.file_names,
            dry_run=body.dry_run,
        )
    except IngestError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    except ConfigurationError as e:
        raise HTTPException(status_code=502, detail={"error": "CSV ingest failed", "message": str(e)})

    return IngestReportOut.model_validate(report.as_dict())


@router.post(
    "/ingest/photos",
    response_model=PhotosFinalizeOut,
    dependencies=[Depends(require_internal_admin)],
)
async def ingest_photos_endpoint(
    body: IngestPhotosRequest,
    store: BlobStore = Depends(get_blob_store),
) -> PhotosFinalizeOut:
    try:
        report = await run_photos_finalize(store, file_names=body.file_names, dry_run=body.dry_run)
    except ConfigurationError as e:
        raise HTTPException(status_code=502, detail={"error": "Photo finalize failed", "message": str(e)})
    return PhotosFinalizeOut.model_validate(report.as_dict())
