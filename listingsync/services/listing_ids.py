from __future__ import annotations

import re
import unicodedata
from typing import Any, Iterable, Mapping


MLS_KEYS = ("MLS Number", "MLS#", "mls", "MLS", "Listing ID", "ListingId")
PRICE_KEYS = ("List Price", "Price", "ListPrice", "Asking Price")
DIRECT_ADDRESS_KEYS = (
    "Address",
    "Street Address",
    "Full Address",
    "Property Address",
    "Site Address",
    "StreetAddress",
    "Unparsed Address",
)
STREET_KEYS = ("Street", "Street Name", "StreetName")
STREET_NUMBER_KEYS = ("Street Number", "StreetNumber", "Address Number")
UNIT_KEYS = ("Unit", "Unit Number", "UnitNumber", "Apt")
CITY_KEYS = ("City", "Municipality")
STATE_KEYS = ("State", "State Or Province", "StateOrProvince")
ZIP_KEYS = ("Zip", "Zip Code", "Postal Code", "PostalCode")

_KEY_NOISE = re.compile(r"[^a-z0-9]")


def _norm_key(k: Any) -> str:
    return _KEY_NOISE.sub("", str(k).lower())


def pick_first(row: Mapping[str, Any], candidates: Iterable[str]) -> Any | None:
    """First non-blank value whose header matches a candidate, ignoring case/punctuation."""
    normalized = [(_norm_key(k), v) for k, v in row.items()]
    for cand in candidates:
        target = _norm_key(cand)
        for nk, v in normalized:
            if nk == target and v is not None and str(v).strip() != "":
                return v
    return None


def slugify(value: Any) -> str:
    s = unicodedata.normalize("NFKD", str(value or "").lower())
    s = re.sub(r"[^\w\s-]", "", s, flags=re.ASCII)
    s = re.sub(r"\s+", "-", s)
    s = re.sub(r"-+", "-", s)
    return s.strip("-")


def read_mls(row: Mapping[str, Any]) -> str | None:
    v = pick_first(row, MLS_KEYS)
    return str(v).strip() if v is not None else None


def read_price(row: Mapping[str, Any]) -> int | float | str | None:
    raw = pick_first(row, PRICE_KEYS)
    if raw is None:
        return None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return raw
    digits = re.sub(r"[^\d.]", "", str(raw))
    try:
        n = float(digits)
    except ValueError:
        return str(raw).strip()
    if n > 0:
        return int(n) if n.is_integer() else n
    return str(raw).strip()


def _join(parts: Iterable[Any], sep: str) -> str:
    return sep.join(str(p).strip() for p in parts if p is not None and str(p).strip())


def read_address(row: Mapping[str, Any]) -> str | None:
    direct = pick_first(row, DIRECT_ADDRESS_KEYS)
    if direct is not None:
        return str(direct).strip()

    street = pick_first(row, STREET_KEYS)
    number = pick_first(row, STREET_NUMBER_KEYS)
    unit = pick_first(row, UNIT_KEYS)
    city = pick_first(row, CITY_KEYS)
    state = pick_first(row, STATE_KEYS)
    zip_code = pick_first(row, ZIP_KEYS)

    street_line = re.sub(r"\s+", " ", _join([number, street], " "))
    line1 = re.sub(r"\s+", " ", _join([street_line, unit], " "))
    line2 = _join([city, state, zip_code], ", ")
    address = _join([line1, line2], ", ")
    return address or None


def derive_listing_id(row: Mapping[str, Any], row_index: int) -> str:
    """
    Stable id for an ingested row: MLS number, else slug of the address,
    else row-<n> (1-based).
    """
    mls = read_mls(row)
    if mls:
        return mls
    address = read_address(row)
    if address:
        slug = slugify(address)
        if slug:
            return slug
    return f"row-{row_index + 1}"
