from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from functools import lru_cache
from typing import Any, Protocol, runtime_checkable

from fastapi import HTTPException

from listingsync.core.config import ConfigurationError, Settings, settings

log = logging.getLogger(__name__)


class RevisionConflict(Exception):
    """A conditional write found a different revision than the caller read."""

    def __init__(self, key: str, expected: str | None):
        super().__init__(f"revision conflict on {key} (expected {expected})")
        self.key = key
        self.expected = expected


@dataclass(frozen=True)
class BlobInfo:
    key: str
    last_modified: datetime
    size: int
    etag: str | None = None


class BlobStore(Protocol):
    """
    Key-value blob store. Keys are "/"-separated paths.

    read() returns the body together with the revision of that same body.
    put(..., if_match=rev) writes only if the current revision equals rev;
    if_match="" means "only if absent".
    """

    async def check(self) -> None: ...

    async def read(self, key: str) -> tuple[bytes | None, str | None]: ...

    async def get(self, key: str) -> bytes | None: ...

    async def revision(self, key: str) -> str | None: ...

    async def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
        if_match: str | None = None,
    ) -> str: ...

    async def delete(self, key: str) -> None: ...

    async def list(self, prefix: str) -> list[BlobInfo]: ...

    async def exists(self, key: str) -> bool: ...

    async def copy(self, src: str, dest: str) -> None: ...


@runtime_checkable
class AtomicRename(Protocol):
    async def rename(self, src: str, dest: str) -> None: ...


def _sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


# --- JSON helpers shared by services ---

async def get_json(store: BlobStore, key: str) -> tuple[dict[str, Any] | None, str | None]:
    """Returns (document, revision); (None, None) if absent."""
    raw, rev = await store.read(key)
    if raw is None:
        return None, None
    return parse_json_object(key, raw), rev


def parse_json_object(key: str, raw: bytes) -> dict[str, Any]:
    doc = json.loads(raw.decode("utf-8"))
    if not isinstance(doc, dict):
        raise ValueError(f"{key} does not hold a JSON object")
    return doc


async def put_json(
    store: BlobStore,
    key: str,
    doc: dict[str, Any],
    *,
    if_match: str | None = None,
) -> str:
    body = json.dumps(doc, ensure_ascii=False, indent=2).encode("utf-8")
    return await store.put(key, body, content_type="application/json", if_match=if_match)


class LocalObjectStore:
    """Filesystem-backed store. rename() is atomic (os.replace)."""

    def __init__(self, base_dir: str | Path):
        self.base = Path(base_dir)
        self.base.mkdir(parents=True, exist_ok=True)

    def resolve_path(self, key: str) -> Path:
        path = (self.base / key).resolve()
        if self.base.resolve() not in path.parents and path != self.base.resolve():
            raise ValueError(f"Key escapes store root: {key}")
        return path

    async def check(self) -> None:
        if not self.base.is_dir():
            raise ConfigurationError(f"Blob directory missing: {self.base}")

    def _read(self, key: str) -> tuple[bytes | None, str | None]:
        path = self.resolve_path(key)
        if not path.is_file():
            return None, None
        data = path.read_bytes()
        return data, _sha256_hex(data)

    async def read(self, key: str) -> tuple[bytes | None, str | None]:
        return await asyncio.to_thread(self._read, key)

    async def get(self, key: str) -> bytes | None:
        data, _ = await self.read(key)
        return data

    async def revision(self, key: str) -> str | None:
        _, rev = await self.read(key)
        return rev

    def _write(self, key: str, data: bytes) -> str:
        path = self.resolve_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_bytes(data)
        os.replace(tmp, path)
        return _sha256_hex(data)

    async def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
        if_match: str | None = None,
    ) -> str:
        if if_match is not None:
            current = await self.revision(key)
            if (current or "") != if_match:
                raise RevisionConflict(key, if_match)
        return await asyncio.to_thread(self._write, key, data)

    async def delete(self, key: str) -> None:
        path = self.resolve_path(key)
        await asyncio.to_thread(path.unlink, missing_ok=True)

    def _list(self, prefix: str) -> list[BlobInfo]:
        # walk only the deepest directory the prefix names
        root = self.resolve_path(prefix.rsplit("/", 1)[0]) if "/" in prefix else self.base
        if not root.is_dir():
            return []
        out: list[BlobInfo] = []
        for path in sorted(p for p in root.rglob("*") if p.is_file()):
            key = path.relative_to(self.base).as_posix()
            if not key.startswith(prefix) or key.endswith(".tmp"):
                continue
            st = path.stat()
            out.append(BlobInfo(
                key=key,
                last_modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
                size=st.st_size,
            ))
        return out

    async def list(self, prefix: str) -> list[BlobInfo]:
        return await asyncio.to_thread(self._list, prefix)

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self.resolve_path(key).is_file)

    async def copy(self, src: str, dest: str) -> None:
        data = await self.get(src)
        if data is None:
            raise FileNotFoundError(src)
        await self.put(dest, data)

    def _rename(self, src: str, dest: str) -> None:
        s = self.resolve_path(src)
        if not s.is_file():
            raise FileNotFoundError(src)
        d = self.resolve_path(dest)
        d.parent.mkdir(parents=True, exist_ok=True)
        os.replace(s, d)

    async def rename(self, src: str, dest: str) -> None:
        await asyncio.to_thread(self._rename, src, dest)


class S3ObjectStore:
    """
    S3-backed store (boto3). No atomic rename: moves are copy + delete.
    Conditional writes use S3's If-Match / If-None-Match on PutObject.
    """

    def __init__(self, *, bucket: str, region: str, access_key_id: str, secret_access_key: str):
        import boto3

        self.bucket = bucket
        self._client = boto3.client(
            "s3",
            region_name=region,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )

    @staticmethod
    def _error_code(e: Exception) -> str:
        resp = getattr(e, "response", None) or {}
        return str(resp.get("Error", {}).get("Code", ""))

    async def check(self) -> None:
        await asyncio.to_thread(self._client.head_bucket, Bucket=self.bucket)

    async def read(self, key: str) -> tuple[bytes | None, str | None]:
        from botocore.exceptions import ClientError

        try:
            obj = await asyncio.to_thread(self._client.get_object, Bucket=self.bucket, Key=key)
        except ClientError as e:
            if self._error_code(e) in ("NoSuchKey", "404"):
                return None, None
            raise
        body = await asyncio.to_thread(obj["Body"].read)
        return body, obj.get("ETag")

    async def get(self, key: str) -> bytes | None:
        data, _ = await self.read(key)
        return data

    async def revision(self, key: str) -> str | None:
        from botocore.exceptions import ClientError

        try:
            head = await asyncio.to_thread(self._client.head_object, Bucket=self.bucket, Key=key)
        except ClientError as e:
            if self._error_code(e) in ("NoSuchKey", "404", "NotFound"):
                return None
            raise
        return head.get("ETag")

    async def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
        if_match: str | None = None,
    ) -> str:
        from botocore.exceptions import ClientError

        kwargs: dict[str, Any] = {"Bucket": self.bucket, "Key": key, "Body": data}
        if content_type:
            kwargs["ContentType"] = content_type
        if if_match == "":
            kwargs["IfNoneMatch"] = "*"
        elif if_match is not None:
            kwargs["IfMatch"] = if_match
        try:
            out = await asyncio.to_thread(self._client.put_object, **kwargs)
        except ClientError as e:
            if self._error_code(e) in ("PreconditionFailed", "412", "ConditionalRequestConflict"):
                raise RevisionConflict(key, if_match) from e
            raise
        return out.get("ETag", "")

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._client.delete_object, Bucket=self.bucket, Key=key)

    async def list(self, prefix: str) -> list[BlobInfo]:
        def _collect() -> list[BlobInfo]:
            out: list[BlobInfo] = []
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []) or []:
                    if not obj.get("Key"):
                        continue
                    out.append(BlobInfo(
                        key=obj["Key"],
                        last_modified=obj["LastModified"],
                        size=int(obj.get("Size", 0)),
                        etag=obj.get("ETag"),
                    ))
            return out

        return await asyncio.to_thread(_collect)

    async def exists(self, key: str) -> bool:
        return (await self.revision(key)) is not None

    async def copy(self, src: str, dest: str) -> None:
        await asyncio.to_thread(
            self._client.copy_object,
            Bucket=self.bucket,
            Key=dest,
            CopySource={"Bucket": self.bucket, "Key": src},
            MetadataDirective="COPY",
        )


def build_blob_store(cfg: Settings) -> BlobStore:
    """
    Construct the configured store. Raises ConfigurationError before any work
    is attempted when the target or credentials are missing.
    """
    if cfg.blob_backend == "local":
        if not cfg.local_blob_dir:
            raise ConfigurationError("LOCAL_BLOB_DIR is empty")
        return LocalObjectStore(cfg.local_blob_dir)

    if cfg.blob_backend == "s3":
        if not cfg.s3_bucket:
            raise ConfigurationError("Missing bucket. Set S3_BUCKET (or SMARTSIGNS_BUCKET).")
        secret = cfg.aws_secret_access_key.get_secret_value() if cfg.aws_secret_access_key else ""
        if not cfg.aws_access_key_id or not secret:
            raise ConfigurationError(
                "Missing AWS creds. Set MY_AWS_ACCESS_KEY_ID and MY_AWS_SECRET_ACCESS_KEY."
            )
        log.info("storage: using s3 bucket=%s region=%s", cfg.s3_bucket, cfg.aws_region)
        return S3ObjectStore(
            bucket=cfg.s3_bucket,
            region=cfg.aws_region,
            access_key_id=cfg.aws_access_key_id,
            secret_access_key=secret,
        )

    raise ConfigurationError(f"Unknown blob backend: {cfg.blob_backend}")


@lru_cache(maxsize=1)
def _configured_store() -> BlobStore:
    return build_blob_store(settings)


def get_blob_store() -> BlobStore:
    """FastAPI dependency: the store from settings, or 503 when it is misconfigured."""
    try:
        return _configured_store()
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail={"error": "Blob store not configured", "message": str(e)})
