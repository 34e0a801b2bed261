from __future__ import annotations
from typing import Any

TOMBSTONES = frozenset({"n/a", "na", "none", "-", "—", "null", "undefined"})


def is_empty_value(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        s = value.strip()
        return not s or s.lower() in TOMBSTONES
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def deep_clean(value: Any) -> Any:
    """
    Recursively drop None, blank strings and tombstones ("n/a", "none", "-"...).
    Containers that end up empty collapse to None and are omitted from their
    parent. Numbers and booleans (including 0 and False) are kept.
    """
    if isinstance(value, (list, tuple)):
        items = [c for c in (deep_clean(v) for v in value) if not is_empty_value(c)]
        return items or None
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            cleaned = deep_clean(v)
            if not is_empty_value(cleaned):
                out[k] = cleaned
        return out or None
    if is_empty_value(value):
        return None
    return value
