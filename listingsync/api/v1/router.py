from fastapi import APIRouter

from listingsync.api.v1.endpoints.health import router as health_router
from listingsync.api.v1.endpoints.ingest import router as ingest_router
from listingsync.api.v1.endpoints.listings import router as listings_router


router = APIRouter(prefix="/v1")
router.include_router(health_router, tags=["health"])
router.include_router(ingest_router, tags=["ingest"])
router.include_router(listings_router, tags=["listings"])
