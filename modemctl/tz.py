"""Timestamp helpers for IP change history.

Displayed timestamps use the caller's local clock in the form
"DD-MM-YYYY, HH:MM:SS". Older history entries were written by clients with
different locales, so ``normalize_timestamp`` folds those variants into the
canonical form.
"""

import re
from datetime import datetime

_DISPLAY_FMT = "%d-%m-%Y, %H:%M:%S"

_CANONICAL_RE = re.compile(r"^\d{2}-\d{2}-\d{4}, \d{2}:\d{2}:\d{2}$")
# Indonesian locale: "14/12/2025, 09.08.40" (day first, dotted time)
_DOTTED_RE = re.compile(
    r"^(\d{1,2})/(\d{1,2})/(\d{4}),?\s*(\d{1,2})\.(\d{1,2})\.(\d{1,2})$"
)
# US locale: "12/14/2025, 09:08:40" (month first)
_US_RE = re.compile(
    r"^(\d{1,2})/(\d{1,2})/(\d{4}),?\s*(\d{1,2}):(\d{1,2}):(\d{1,2})$"
)


def format_timestamp(dt=None):
    """Return ``dt`` (default: now, local clock) as 'DD-MM-YYYY, HH:MM:SS'."""
    if dt is None:
        dt = datetime.now()
    return dt.strftime(_DISPLAY_FMT)


def normalize_timestamp(ts):
    """Convert a stored timestamp to 'DD-MM-YYYY, HH:MM:SS'.

    Accepts the canonical form (returned unchanged), the dotted
    day-first locale form, the US month-first form and ISO-8601.
    Anything else is returned as-is, which keeps the function idempotent.
    """
    if not ts:
        return ts
    if _CANONICAL_RE.match(ts):
        return ts

    m = _DOTTED_RE.match(ts)
    if m:
        day, month, year, hh, mm, ss = m.groups()
        return _join(day, month, year, hh, mm, ss)

    m = _US_RE.match(ts)
    if m:
        month, day, year, hh, mm, ss = m.groups()
        if int(month) > 12:
            month, day = day, month
        return _join(day, month, year, hh, mm, ss)

    try:
        dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    except ValueError:
        return ts
    if dt.tzinfo is not None:
        dt = dt.astimezone()
    return format_timestamp(dt)


def _join(day, month, year, hh, mm, ss):
    return f"{int(day):02d}-{int(month):02d}-{year}, {int(hh):02d}:{int(mm):02d}:{int(ss):02d}"
