from fastapi import FastAPI

from listingsync.api.v1.router import router as v1_router
from listingsync.core.telemetry import setup_telemetry

app = FastAPI(title="Listing Sync API", version="0.1.0")

setup_telemetry(app)
app.include_router(v1_router)
