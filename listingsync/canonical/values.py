from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from listingsync.canonical.fields import CanonicalField


_NON_NUMERIC = re.compile(r"[^\d.\-]")


def is_blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


def coerce_number(value: Any) -> int | float | None:
    """
    Best-effort numeric coercion: "1,234" -> 1234, "$350,000" -> 350000.
    Anything that does not end up finite is None.
    """
    if value is None or isinstance(value, (bool, dict, list, tuple, set)):
        return None
    if isinstance(value, (int, float)):
        n = float(value)
    else:
        stripped = _NON_NUMERIC.sub("", str(value))
        try:
            n = float(stripped)
        except ValueError:
            return None
    if not math.isfinite(n):
        return None
    return int(n) if n.is_integer() else n


# --- Resolution results ---

Via = Literal["alias", "fuzzy", "scan"]


@dataclass(frozen=True)
class Numeric:
    value: int | float
    via: Via = "alias"


@dataclass(frozen=True)
class Text:
    value: Any
    via: Via = "alias"


class Absent:
    _instance: "Absent | None" = None

    def __new__(cls) -> "Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = Absent()

ResolvedValue = Union[Numeric, Text, Absent]


def unwrap(resolved: ResolvedValue) -> Any | None:
    if isinstance(resolved, (Numeric, Text)):
        return resolved.value
    return None


# --- Core form state ---

_TEXT_FIELDS = (
    "mls", "address", "city", "state", "zip", "status",
    "active_date", "timezone", "description", "notes", "photo",
)
_NUMBER_FIELDS = ("price", "beds", "baths", "sqft", "year")


class CanonicalValues(BaseModel):
    """
    Resolved canonical values for one listing (the editor's core form).
    Serialized with camelCase keys (activeDate).
    """
    model_config = ConfigDict(populate_by_name=True)

    mls: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    price: int | float | None = None
    beds: int | float | None = None
    baths: int | float | None = None
    sqft: int | float | None = None
    year: int | float | None = None
    status: str | None = None
    active_date: str | None = Field(default=None, alias="activeDate")
    timezone: str | None = None
    description: str | None = None
    notes: str | None = None
    photo: str | None = None

    @field_validator(*_TEXT_FIELDS, mode="before")
    @classmethod
    def _text(cls, v: Any) -> Any:
        return _as_text(v)

    @field_validator(*_NUMBER_FIELDS, mode="before")
    @classmethod
    def _number(cls, v: Any) -> Any:
        if is_blank(v):
            return None
        return coerce_number(v)

    def get(self, field: CanonicalField) -> Any:
        return getattr(self, field.attr)

    def set(self, field: CanonicalField, value: Any) -> None:
        if field.attr in _NUMBER_FIELDS:
            value = None if is_blank(value) else coerce_number(value)
        else:
            value = _as_text(value)
        setattr(self, field.attr, value)

    def is_blank(self, field: CanonicalField) -> bool:
        return is_blank(self.get(field))

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def _as_text(v: Any) -> str | None:
    if v is None:
        return None
    if isinstance(v, str):
        return v
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v)
