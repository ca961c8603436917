"""Normalization functions for issue cache records.

All parsing functions accept raw JSON values (str | int | bool | None) and
return the appropriate type or None.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

_TRUE_TOKENS = {"1", "true", "yes", "y", "t"}
_FALSE_TOKENS = {"0", "false", "no", "n", "f"}
_TAG_SEPARATOR = ","
_SI_UNITS = "kMGTPE"


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: parse_bool
# ---------------------------------------------------------------------------

def parse_bool(value: Any, default: bool = False) -> bool:
    """Parse a JSON boolean, 0/1, or a yes/no style token.

    Absent values fall back to *default*; unknown tokens raise ValueError so
    that a corrupt cache record is not silently reclassified.
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    v = trim(str(value))
    if v is None:
        return default
    v = v.lower()
    if v in _TRUE_TOKENS:
        return True
    if v in _FALSE_TOKENS:
        return False
    raise ValueError(f"not a boolean: {value!r}")


# ---------------------------------------------------------------------------
# Rule 3: parse_epoch_ms
# ---------------------------------------------------------------------------

def parse_epoch_ms(value: Any) -> int | None:
    """Return epoch milliseconds for an int or an ISO-8601 string.

    Naive ISO timestamps are read as UTC.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    v = trim(str(value))
    if v is None:
        return None
    if v.lstrip("-").isdigit():
        return int(v)
    try:
        ts = datetime.fromisoformat(v.replace("Z", "+00:00"))
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return int(ts.timestamp() * 1000)


# ---------------------------------------------------------------------------
# Rule 4: tags
# ---------------------------------------------------------------------------

def normalize_tags(tags: Any) -> list[str]:
    """Lowercase, trim and dedupe tags, keeping first-seen order.

    Accepts a list or a comma-separated string.
    """
    if tags is None:
        return []
    raw = tags.split(_TAG_SEPARATOR) if isinstance(tags, str) else list(tags)
    seen: set[str] = set()
    result: list[str] = []
    for tag in raw:
        t = trim(str(tag))
        if t is None:
            continue
        t = re.sub(r"\s+", "-", t.lower())
        if t in seen:
            continue
        seen.add(t)
        result.append(t)
    return result


def format_tags(tags: list[str]) -> str | None:
    """Join tags into the comma-separated column value; empty → None."""
    return _TAG_SEPARATOR.join(tags) if tags else None


# ---------------------------------------------------------------------------
# Rule 5: human_readable_byte_count_si
# ---------------------------------------------------------------------------

def human_readable_byte_count_si(num_bytes: int) -> str:
    """Format a byte count with SI (1000-based) units, e.g. 1.5 MB.

    Values are divided down while they would round to 1000.0 of the current
    unit, so 999_950 bytes prints as "1.0 MB" and not "1000.0 kB".
    """
    if -1000 < num_bytes < 1000:
        return f"{num_bytes} B"
    unit = 0
    while num_bytes <= -999_950 or num_bytes >= 999_950:
        num_bytes = int(num_bytes / 1000)
        unit += 1
    return f"{num_bytes / 1000.0:.1f} {_SI_UNITS[unit]}B"
