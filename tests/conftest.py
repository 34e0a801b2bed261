import os

os.environ["TELEMETRY_ENABLED"] = "false"
os.environ["INTERNAL_ADMIN_KEY"] = "test-admin-key"
os.environ["BLOB_BACKEND"] = "local"

import pytest

from listingsync.main import app
from listingsync.services.storage import LocalObjectStore, get_blob_store


@pytest.fixture
def store(tmp_path) -> LocalObjectStore:
    return LocalObjectStore(tmp_path / "blobs")


@pytest.fixture
def seed(store):
    """Write raw blobs straight to disk: seed({"key": b"..." | str}) -> store."""

    def _seed(objects: dict) -> LocalObjectStore:
        for key, data in objects.items():
            if isinstance(data, str):
                data = data.encode("utf-8")
            path = store.resolve_path(key)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        return store

    return _seed


@pytest.fixture
def admin_headers() -> dict:
    return {"X-Internal-Admin-Key": "test-admin-key"}


@pytest.fixture
def api_app(store):
    """The FastAPI app wired to the tmp_path store."""
    app.dependency_overrides[get_blob_store] = lambda: store
    yield app
    app.dependency_overrides.clear()
