from __future__ import annotations

import logging
import re
from datetime import date, datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

log = logging.getLogger(__name__)

_ISO_DAY = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_US_DAY = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{2}|\d{4})$")


def parse_active_date(value: Any) -> date | None:
    """
    Accepts YYYY-MM-DD, M/D/YYYY, M-D-YY (two-digit years pivot at 70) and
    ISO datetimes. Returns None for anything else.
    """
    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None

    try:
        m = _ISO_DAY.match(s)
        if m:
            return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))

        m = _US_DAY.match(s)
        if m:
            mm, dd, yy = m.group(1), m.group(2), m.group(3)
            y = int(yy)
            if len(yy) == 2:
                y = 1900 + y if y >= 70 else 2000 + y
            return date(y, int(mm), int(dd))

        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def normalize_active_date(value: Any) -> str | None:
    d = parse_active_date(value)
    return d.isoformat() if d else None


def resolve_zone(tz: str | None, default: str) -> ZoneInfo:
    for name in (tz, default):
        if not name:
            continue
        try:
            return ZoneInfo(str(name).strip())
        except (ZoneInfoNotFoundError, ValueError):
            log.warning("dates: unknown timezone %r", name)
    return ZoneInfo("UTC")


def days_on_market(
    active_date: Any,
    tz: str | None,
    *,
    default_tz: str = "America/Chicago",
    now: datetime | None = None,
) -> int | None:
    """Whole days since active_date in the listing's timezone (day 0 inclusive, never negative)."""
    start = parse_active_date(active_date)
    if start is None:
        return None
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    today = now.astimezone(resolve_zone(tz, default_tz)).date()
    return max(0, (today - start).days)


def normalize_timezone(tz: Any) -> str | None:
    """IANA name if it is one we can load, else None."""
    if tz is None:
        return None
    name = str(tz).strip()
    if not name:
        return None
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None
    return name
