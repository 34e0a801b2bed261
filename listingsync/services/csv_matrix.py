from __future__ import annotations

import logging

log = logging.getLogger(__name__)


class CsvParseError(ValueError):
    """Raised only in strict mode (unterminated quoted field)."""


def parse_matrix(text: str, *, strict: bool = False) -> list[list[str]]:
    """
    Split delimited text into rows of fields.

    - comma separated, double-quote escaped, "" is a literal quote
    - newlines inside quotes are kept, \\r outside quotes is dropped
    - rows consisting of a single blank field are skipped

    An unterminated quote swallows the rest of the input as one field. That is
    not how standard CSV readers fail, but exports in the wild rely on it;
    pass strict=True to get a CsvParseError instead.
    """
    rows: list[list[str]] = []
    row: list[str] = []
    field: list[str] = []
    in_quotes = False
    quote_opened_at = -1

    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if in_quotes:
            if ch == '"':
                if i + 1 < n and text[i + 1] == '"':
                    field.append('"')
                    i += 2
                    continue
                in_quotes = False
                i += 1
                continue
            field.append(ch)
            i += 1
            continue

        if ch == '"':
            in_quotes = True
            quote_opened_at = i
        elif ch == ",":
            row.append("".join(field))
            field = []
        elif ch == "\n":
            row.append("".join(field))
            rows.append(row)
            row = []
            field = []
        elif ch != "\r":
            field.append(ch)
        i += 1

    if in_quotes:
        if strict:
            raise CsvParseError(f"Unterminated quoted field starting at offset {quote_opened_at}")
        log.warning("csv: unterminated quote at offset %d consumed the rest of the input", quote_opened_at)

    row.append("".join(field))
    rows.append(row)

    return [r for r in rows if not (len(r) == 1 and r[0].strip() == "")]


def parse_records(text: str, *, strict: bool = False) -> list[dict[str, str]]:
    """
    Parse text into header-keyed records. Header cells are trimmed; a blank
    header cell becomes col_<index>. Short rows are padded with "", surplus
    cells are dropped.
    """
    rows = parse_matrix(text, strict=strict)
    if not rows:
        return []

    header = [h.strip() or f"col_{c}" for c, h in enumerate(rows[0])]
    out: list[dict[str, str]] = []
    for r, values in enumerate(rows[1:], start=1):
        if len(values) != len(header):
            log.debug("csv: row %d has %d fields, header has %d", r, len(values), len(header))
        out.append({key: (values[c] if c < len(values) else "") for c, key in enumerate(header)})
    return out
