from __future__ import annotations

import re
from typing import Any, Iterable, Mapping, Sequence

from listingsync.canonical.fields import DEFAULT_FIELD_GROUPS, CanonicalField, FieldGroupModel
from listingsync.canonical.values import (
    ABSENT,
    CanonicalValues,
    Numeric,
    ResolvedValue,
    Text,
    Via,
    coerce_number,
    is_blank,
    unwrap,
)
from listingsync.services.flatten import flatten


class AliasResolver:
    """
    Picks a canonical field's value out of a priority-ordered list of raw
    records (overrides, details, card summary...).

    Per source, in priority order:
      1. exact alias spellings, in alias priority order
      2. fuzzy patterns against the source's flattened keys
    Then, for numeric fields only and only if enabled:
      3. the first strictly-positive number found anywhere (lowest confidence,
         tagged via="scan")
    """

    def __init__(
        self,
        model: FieldGroupModel = DEFAULT_FIELD_GROUPS,
        *,
        numeric_scan_fallback: bool = True,
    ):
        self.model = model
        self.numeric_scan_fallback = numeric_scan_fallback

    def resolve(
        self,
        sources: Sequence[Mapping[str, Any] | None],
        field: CanonicalField,
        *,
        numeric: bool | None = None,
        allow_scan: bool | None = None,
    ) -> ResolvedValue:
        spec = self.model.spec(field)
        numeric = spec.numeric if numeric is None else numeric
        scan = self.numeric_scan_fallback if allow_scan is None else allow_scan

        records = [s for s in sources if isinstance(s, Mapping)]
        flats = [flatten(s) for s in records]

        for record, flat in zip(records, flats):
            hit = self._from_aliases(record, spec.aliases, numeric)
            if hit is not ABSENT:
                return hit
            hit = self._from_fuzzy(flat, spec.fuzzy, numeric)
            if hit is not ABSENT:
                return hit

        if numeric and scan:
            return self._numeric_scan(flats)
        return ABSENT

    def resolve_all(
        self,
        sources: Sequence[Mapping[str, Any] | None],
        *,
        allow_scan: bool | None = None,
    ) -> CanonicalValues:
        values = CanonicalValues()
        for field in CanonicalField:
            resolved = self.resolve(sources, field, allow_scan=allow_scan)
            if resolved is not ABSENT:
                values.set(field, unwrap(resolved))
        return values

    # --- steps ---

    def _from_aliases(self, record: Mapping[str, Any], aliases: Iterable[str], numeric: bool) -> ResolvedValue:
        for alias in aliases:
            hit = _accept(record.get(alias), numeric, "alias")
            if hit is not ABSENT:
                return hit
        return ABSENT

    def _from_fuzzy(self, flat: Mapping[str, Any], patterns: Iterable[re.Pattern[str]], numeric: bool) -> ResolvedValue:
        patterns = tuple(patterns)
        if not patterns:
            return ABSENT
        for key, value in flat.items():
            if any(rx.search(key) for rx in patterns):
                hit = _accept(value, numeric, "fuzzy")
                if hit is not ABSENT:
                    return hit
        return ABSENT

    def _numeric_scan(self, flats: Iterable[Mapping[str, Any]]) -> ResolvedValue:
        for flat in flats:
            for value in flat.values():
                n = coerce_number(value)
                if n is not None and n > 0:
                    return Numeric(n, via="scan")
        return ABSENT


def _accept(value: Any, numeric: bool, via: Via) -> ResolvedValue:
    if is_blank(value):
        return ABSENT
    if not numeric:
        return Text(value, via=via)
    n = coerce_number(value)
    if n is None:
        return ABSENT
    return Numeric(n, via=via)
