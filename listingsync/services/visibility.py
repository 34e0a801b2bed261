from __future__ import annotations

import re

from listingsync.canonical.fields import DEFAULT_FIELD_GROUPS, FieldGroupModel


# Structural / provenance keys written by ingestion or by the blob layout.
STRUCTURAL_KEYS = frozenset({
    "0.path",
    "0.value",
    "path",
    "value",
    "key",
    "csvkey",
    "ingestedat",
    "listingtype",
    "longitude",
    "parceliddisplay",
    "slug",
})

STRUCTURAL_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\.path$",
        r"\.value$",
        r"path$",
        r"value$",
        r"key$",
        r"slug$",
        r"csvkey",
        r"ingestedat",
        r"listingtype",
        r"longitude",
        r"parceliddisplay",
    )
)

# Hidden from the extras editor even when admin keys are shown.
ALWAYS_HIDDEN_PATTERNS = (
    re.compile(r"source\.i", re.IGNORECASE),
    re.compile(r"^detailsUrl$"),
)

_NON_WORD = re.compile(r"[^\w]+")


def normalize_key(key: str) -> str:
    return _NON_WORD.sub("", str(key)).lower()


class AdminKeyFilter:
    """
    Decides which raw keys show up in the free-form extras editor.

    Canonical keys are always hidden (they are edited through the core form),
    and so are source.i* and detailsUrl.
    Structural/provenance keys are hidden unless show_admin_keys is set.
    Never affects what gets persisted.
    """

    def __init__(self, model: FieldGroupModel = DEFAULT_FIELD_GROUPS, *, show_admin_keys: bool = False):
        self.model = model
        self.show_admin_keys = show_admin_keys

    def is_canonical(self, key: str) -> bool:
        return normalize_key(key) in self.model.editor_hidden_keys

    def is_structural(self, key: str) -> bool:
        if str(key).lower() in STRUCTURAL_KEYS:
            return True
        return any(rx.search(str(key)) for rx in STRUCTURAL_PATTERNS)

    def should_hide(self, key: str) -> bool:
        if self.is_canonical(key) or any(rx.search(str(key)) for rx in ALWAYS_HIDDEN_PATTERNS):
            return True
        if self.show_admin_keys:
            return False
        return self.is_structural(key)
