from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable

from listingsync.services.storage import AtomicRename, BlobStore

log = logging.getLogger(__name__)

IMG_EXT = (".jpg", ".jpeg", ".png", ".webp", ".gif")
_IMG_EXT_RX = re.compile(r"\.(jpe?g|png|webp|gif)$", re.IGNORECASE)
_FLAT_ID_RX = re.compile(r"^([A-Za-z0-9_-]+)\.")
_MAIN_HINT = re.compile(r"/(main|cover)\.", re.IGNORECASE)
_FRONT_HINT = re.compile(r"/(1|front)\.", re.IGNORECASE)
_JPEG_EXT = re.compile(r"\.(jpg|jpeg)$")


class PhotoMoveFailure(Exception):
    def __init__(self, src: str, dest: str, cause: Exception):
        super().__init__(f"photo move {src} -> {dest} failed: {cause}")
        self.src = src
        self.dest = dest
        self.cause = cause


@dataclass(frozen=True)
class PhotoMove:
    src: str
    dest: str
    orphaned_source: bool = False

    def as_dict(self) -> dict[str, str]:
        return {"from": self.src, "to": self.dest}


def base_name(key: str) -> str:
    return (key or "").split("/")[-1]


def is_image_key(key: str) -> bool:
    return bool(_IMG_EXT_RX.search(key or ""))


def choose_primary(keys: Iterable[str], listing_id: str) -> str | None:
    """
    Pick the photo that best represents the listing.

    {id}.jpg > {id}.jpeg > name containing the id, plus hints for main/cover
    and 1/front and a small bonus for jpeg. Ties keep the first key.
    """
    keys = list(keys)
    if not keys:
        return None
    lid = str(listing_id).lower()

    def score(k: str) -> int:
        bn = base_name(k).lower()
        s = 0
        if bn == f"{lid}.jpg":
            s += 100
        if bn == f"{lid}.jpeg":
            s += 99
        if lid in bn:
            s += 50
        if _MAIN_HINT.search(k):
            s += 40
        if _FRONT_HINT.search(k):
            s += 30
        if _JPEG_EXT.search(bn):
            s += 10
        return s

    return sorted(keys, key=score, reverse=True)[0]


class PhotoMatcher:
    """Finds incoming photos for a listing and moves them to the permanent folder."""

    def __init__(self, store: BlobStore, incoming_prefix: str = "photos-incoming/", permanent_prefix: str = "photos/"):
        self.store = store
        self.incoming_prefix = incoming_prefix
        self.permanent_prefix = permanent_prefix

    async def find_candidates(self, listing_id: str) -> list[str]:
        keys: list[str] = []

        folder = f"{self.incoming_prefix}{listing_id}/"
        for info in await self.store.list(folder):
            if is_image_key(base_name(info.key)):
                keys.append(info.key)

        for ext in IMG_EXT + tuple(e.upper() for e in IMG_EXT):
            flat = f"{self.incoming_prefix}{listing_id}{ext}"
            if await self.store.exists(flat):
                keys.append(flat)

        return list(dict.fromkeys(keys))

    def destination_for(self, src: str, listing_id: str) -> str:
        return f"{self.permanent_prefix}{listing_id}/{base_name(src)}"

    def listing_id_from_key(self, key: str) -> str | None:
        """photos-incoming/{id}/x.jpg or photos-incoming/{id}.jpg -> id."""
        if not key.startswith(self.incoming_prefix):
            return None
        rest = key[len(self.incoming_prefix):]
        parts = rest.split("/")
        if len(parts) >= 2 and parts[0]:
            return parts[0]
        m = _FLAT_ID_RX.match(base_name(key))
        return m.group(1) if m else None

    async def move(self, src: str, listing_id: str, *, dry_run: bool = False) -> PhotoMove:
        dest = self.destination_for(src, listing_id)
        if dry_run:
            return PhotoMove(src, dest)

        if isinstance(self.store, AtomicRename):
            try:
                await self.store.rename(src, dest)
            except Exception as e:
                raise PhotoMoveFailure(src, dest, e) from e
            return PhotoMove(src, dest)

        try:
            await self.store.copy(src, dest)
        except Exception as e:
            raise PhotoMoveFailure(src, dest, e) from e

        try:
            await self.store.delete(src)
        except Exception:
            log.warning("photos: copied %s -> %s but could not delete the source", src, dest, exc_info=True)
            return PhotoMove(src, dest, orphaned_source=True)
        return PhotoMove(src, dest)
