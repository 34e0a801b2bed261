from __future__ import annotations

from typing import Any, Mapping


def flatten(
    record: Mapping[str, Any] | None,
    max_depth: int = 6,
    prefix: str = "",
    out: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Flatten nested mappings into dotted keys ("location.city").

    Lists are leaves. Once max_depth is used up the remaining mapping is kept
    as a leaf value. The first non-null value written for a key wins; later
    duplicates (e.g. "a.b" vs {"a": {"b": ...}}) are dropped.
    """
    if out is None:
        out = {}
    if not isinstance(record, Mapping):
        return out

    for k, v in record.items():
        key = f"{prefix}.{k}" if prefix else str(k)
        if isinstance(v, Mapping) and max_depth > 0:
            flatten(v, max_depth - 1, key, out)
        elif out.get(key) is None:
            out[key] = v
    return out
