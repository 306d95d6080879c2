"""
Cursor decoding and recent-ID bookkeeping.

Cursors arrive as plain JSON maps persisted by the scheduler. Decoding is
tolerant: a malformed or unknown field is treated as absent, never raised.
Each connector owns a small dataclass built on these helpers.
"""

import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from dateutil import parser as date_parser

# ============================================================================
# Value coercion
# ============================================================================


def as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def as_str(value: Any) -> Optional[str]:
    """Trimmed non-empty string, else None."""
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None


def as_str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    out = []
    for item in value:
        s = as_str(item)
        if s is not None:
            out.append(s)
    return out


def as_number(value: Any) -> Optional[float]:
    """Finite int/float (bool excluded), else None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def as_bool(value: Any, default: bool) -> bool:
    return value if isinstance(value, bool) else default


def clamp_int(value: Any, low: int, high: int, default: int) -> int:
    number = as_number(value)
    if number is None:
        number = default
    return max(low, min(high, int(math.floor(number))))


def pick(config: Dict[str, Any], *keys: str) -> Any:
    """First present key; lets configs use snake_case or camelCase."""
    for key in keys:
        if key in config and config[key] is not None:
            return config[key]
    return None


# ============================================================================
# Timestamps
# ============================================================================


def parse_iso_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware UTC datetime; None when unusable."""
    s = as_str(value)
    if s is None:
        return None
    try:
        parsed = date_parser.isoparse(s)
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    """Serialise an aware datetime as ``YYYY-MM-DDTHH:MM:SSZ``-style UTC text."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def later_iso(current: Optional[str], candidate: Optional[datetime]) -> Optional[str]:
    """Advance an ISO watermark monotonically; it never moves backwards."""
    if candidate is None:
        return current
    current_dt = parse_iso_datetime(current)
    if current_dt is not None and current_dt >= candidate:
        return current
    return to_iso(candidate)


def day_bucket(value: Optional[str]) -> Optional[str]:
    """``YYYY-MM-DD`` prefix of an ISO timestamp."""
    if value and len(value) >= 10:
        return value[:10]
    return None


# ============================================================================
# Recent-ID window
# ============================================================================


def merge_recent_ids(fresh: Iterable[str], previous: Iterable[str], cap: int) -> List[str]:
    """
    Merge newly seen IDs ahead of previously seen ones, newest first.

    Duplicates keep their most recent position and the list is truncated to
    ``cap`` entries, so the oldest IDs are evicted first.
    """
    out: List[str] = []
    seen = set()
    for item in list(fresh) + list(previous):
        if item in seen:
            continue
        seen.add(item)
        out.append(item)
        if len(out) >= cap:
            break
    return out
