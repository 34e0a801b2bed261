from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any
import urllib.request
import urllib.error


DEFAULT_BASE_URL = os.getenv("LISTINGSYNC_BASE_URL", "http://localhost:8000")
DEFAULT_ADMIN_KEY = os.getenv("INTERNAL_ADMIN_KEY", "")

DEFAULT_TIMEOUT_SECONDS = 120


def http_post(url: str, payload: dict[str, Any], admin_key: str) -> dict[str, Any]:
    data = json.dumps(payload).encode("utf-8")
    req = urllib.request.Request(
        url=url,
        data=data,
        method="POST",
        headers={
            "Content-Type": "application/json",
            "X-Internal-Admin-Key": admin_key,
        },
    )
    try:
        with urllib.request.urlopen(req, timeout=DEFAULT_TIMEOUT_SECONDS) as resp:
            raw = resp.read().decode("utf-8")
            return json.loads(raw) if raw else {}
    except urllib.error.HTTPError as e:
        body = ""
        try:
            body = e.read().decode("utf-8")
        except Exception:
            body = ""
        print(f"HTTP {e.code} {e.reason} for {url}", file=sys.stderr)
        if body:
            print(body, file=sys.stderr)
        return {"error": {"status": e.code, "reason": e.reason, "body": body}}
    except urllib.error.URLError as e:
        print(f"Network error for {url}: {e}", file=sys.stderr)
        return {"error": {"reason": str(e)}}


async def run_local(payload: dict[str, Any]) -> dict[str, Any]:
    from listingsync.core.config import ConfigurationError, settings
    from listingsync.services.ingest import IngestError, run_csv_ingest
    from listingsync.services.storage import build_blob_store

    try:
        store = build_blob_store(settings)
        report = await run_csv_ingest(
            store,
            source_key=payload.get("sourceKey"),
            file_names=payload.get("fileNames"),
            dry_run=bool(payload.get("dryRun")),
        )
    except IngestError as e:
        return {"error": {"status": e.status_code, "detail": e.detail}}
    except ConfigurationError as e:
        return {"error": {"reason": str(e)}}
    return report.as_dict()


def build_payload(args: argparse.Namespace) -> dict[str, Any]:
    payload: dict[str, Any] = {"dryRun": bool(args.dry_run)}
    if args.source_key:
        payload["sourceKey"] = args.source_key
    if args.file_name:
        payload["fileNames"] = list(args.file_name)
    return payload


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Ingest a listings CSV (plus incoming photos) into the blob store.")
    p.add_argument("--source-key", help="blob key of the CSV; default: newest CSV under csv-incoming/")
    p.add_argument("--file-name", action="append", help="uploaded file name (repeatable)")
    p.add_argument("--dry-run", action="store_true", help="report what would happen without writing")
    p.add_argument("--local", action="store_true", help="run in-process against the configured store")
    p.add_argument("--base-url", default=DEFAULT_BASE_URL)
    p.add_argument("--admin-key", default=DEFAULT_ADMIN_KEY)
    args = p.parse_args(argv)

    payload = build_payload(args)

    if args.local:
        logging.basicConfig(level=logging.INFO)
        resp = asyncio.run(run_local(payload))
    else:
        if not args.admin_key:
            print("Missing INTERNAL_ADMIN_KEY (env) or --admin-key", file=sys.stderr)
            return 2
        endpoint = f"{args.base_url.rstrip('/')}/v1/ingest/csv"
        resp = http_post(endpoint, payload, args.admin_key)

    print(json.dumps(resp, indent=2, ensure_ascii=False))
    if "error" in resp:
        return 1
    return 0 if not resp.get("failed") else 1


if __name__ == "__main__":
    raise SystemExit(main())
