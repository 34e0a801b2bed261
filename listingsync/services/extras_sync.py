from __future__ import annotations

import json
import re
from typing import Any, Iterable, Mapping, Sequence

from listingsync.canonical.fields import DEFAULT_FIELD_GROUPS, CanonicalField, FieldGroupModel
from listingsync.canonical.values import CanonicalValues, coerce_number, is_blank
from listingsync.services.flatten import flatten
from listingsync.services.visibility import AdminKeyFilter


RESERVED_PREFIX = "details."


def strip_reserved_prefix(key: str) -> str:
    return key[len(RESERVED_PREFIX):] if key.startswith(RESERVED_PREFIX) else key


def drop_reserved_keys(extras: dict[str, Any]) -> dict[str, Any]:
    """Keys under details.* are read-only provenance and never written back."""
    for k in [k for k in extras if str(k).startswith(RESERVED_PREFIX)]:
        del extras[k]
    return extras


class ExtrasSynchronizer:
    """
    Keeps the core form (CanonicalValues) and the free-form extras in step.

    adopt_core_from_extras: extras -> core, blank core fields only
    mirror_aliases_into_extras: core -> every extras key in a recognized group
    """

    def __init__(self, model: FieldGroupModel = DEFAULT_FIELD_GROUPS):
        self.model = model

    def pick_best_alias_value(self, obj: Mapping[str, Any], field: CanonicalField) -> Any | None:
        spec = self.model.spec(field)
        for k in spec.priority:
            v = obj.get(k)
            if not is_blank(v):
                return v
        for k, v in obj.items():
            if self.model.key_belongs_to_group(k, field) and not is_blank(v):
                return v
        return None

    def adopt_core_from_extras(self, core: CanonicalValues, extras: Mapping[str, Any]) -> CanonicalValues:
        for field in self.model.group_order:
            if not core.is_blank(field):
                continue
            cand = self.pick_best_alias_value(extras, field)
            if cand is None:
                continue
            if self.model.is_numeric(field):
                n = coerce_number(cand)
                if n is not None:
                    core.set(field, n)
            else:
                core.set(field, cand)
        return core

    def mirror_aliases_into_extras(
        self,
        extras: dict[str, Any],
        core: CanonicalValues,
        present_sources: Sequence[Mapping[str, Any] | None],
    ) -> dict[str, Any]:
        present_keys: dict[str, None] = {}
        for src in present_sources:
            for k in flatten(src or {}):
                present_keys.setdefault(k, None)
        for k in extras:
            present_keys.setdefault(k, None)

        for key in present_keys:
            for field in self.model.group_order:
                if not self.model.key_belongs_to_group(key, field):
                    continue
                value = core.get(field)
                if value is not None:
                    extras[key] = value
                    break

        self.retire_legacy_aliases(extras, core)
        return extras

    def retire_legacy_aliases(self, extras: dict[str, Any], core: CanonicalValues) -> dict[str, Any]:
        for field, (canonical_key, retired_key) in self.model.retired_aliases.items():
            value = core.get(field)
            if value is None:
                continue
            extras[canonical_key] = value
            extras.pop(retired_key, None)
        return extras

    # --- editor view ---

    def choose_group_key(self, keys: Sequence[str], field: CanonicalField) -> str:
        for preferred in self.model.spec(field).priority:
            for k in keys:
                if k.split(".")[-1] == preferred:
                    return k
        non_reserved = [k for k in keys if not k.startswith(RESERVED_PREFIX)]
        return non_reserved[0] if non_reserved else keys[0]

    def render_extras(
        self,
        sources: Sequence[Mapping[str, Any] | None],
        visibility: AdminKeyFilter,
    ) -> dict[str, Any]:
        """
        Merged, de-duplicated view of the non-canonical keys for the editor.
        Earlier sources win. One representative key per group is kept.
        """
        merged: dict[str, Any] = {}
        for src in sources:
            for k, v in flatten(src or {}).items():
                if k in merged or visibility.should_hide(k):
                    continue
                merged[k] = v

        buckets: dict[CanonicalField, list[str]] = {}
        ungrouped: list[str] = []
        for k in merged:
            field = self.model.group_for_key(k)
            if field is None:
                ungrouped.append(k)
            else:
                buckets.setdefault(field, []).append(k)

        out: dict[str, Any] = {}
        for field, keys in buckets.items():
            chosen = self.choose_group_key(keys, field)
            out[chosen] = merged[chosen]
        for k in ungrouped:
            out[k] = merged[k]
        return out


_NUMBER_TEXT = re.compile(r"^-?\d+(\.\d+)?$")
_BOOL_TEXT = re.compile(r"^(true|false)$", re.IGNORECASE)


def parse_extra_value(text: str | None) -> Any:
    """Editor cell text -> typed value (JSON object/array, number, bool, else the text)."""
    v = (text or "").strip()
    if not v:
        return ""
    if v[0] in "[{":
        try:
            return json.loads(v)
        except json.JSONDecodeError:
            return v
    if _NUMBER_TEXT.match(v):
        n = float(v)
        return int(n) if "." not in v else n
    if _BOOL_TEXT.match(v):
        return v.lower() == "true"
    return v


def collect_extras(rows: Iterable[tuple[str | None, str | None]]) -> dict[str, Any]:
    """(key, text) editor rows -> extras mapping; operator-typed details.* prefixes are stripped."""
    out: dict[str, Any] = {}
    for key, text in rows:
        k = (key or "").strip()
        if not k:
            continue
        out[strip_reserved_prefix(k)] = parse_extra_value(text)
    return out
