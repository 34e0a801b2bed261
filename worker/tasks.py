import asyncio
import logging

from worker.celery_app import celery
from listingsync.core.config import settings
from listingsync.services.ingest import run_csv_ingest, run_photos_finalize
from listingsync.services.storage import build_blob_store

logging.basicConfig(level=logging.INFO)
log = logging.getLogger(__name__)


async def _ingest_csv(source_key: str | None, file_names: list[str] | None, dry_run: bool) -> dict:
    store = build_blob_store(settings)
    report = await run_csv_ingest(store, source_key=source_key, file_names=file_names, dry_run=dry_run)
    return report.as_dict()


async def _finalize_photos(file_names: list[str] | None, dry_run: bool) -> dict:
    store = build_blob_store(settings)
    report = await run_photos_finalize(store, file_names=file_names, dry_run=dry_run)
    return report.as_dict()


@celery.task(name="worker.tasks.ingest_csv")
def ingest_csv(source_key: str | None = None, file_names: list[str] | None = None, dry_run: bool = False) -> dict:
    # ConfigurationError / IngestError fail the task; row errors are inside the report
    result = asyncio.run(_ingest_csv(source_key, file_names, dry_run))
    log.info("worker: ingest %s processed=%s failed=%s", result["runId"], result["processed"], result["failed"])
    return result


@celery.task(name="worker.tasks.finalize_photos")
def finalize_photos(file_names: list[str] | None = None, dry_run: bool = False) -> dict:
    return asyncio.run(_finalize_photos(file_names, dry_run))
