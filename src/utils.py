"""
PoliMusic API - Shared Utilities

Common helpers used across multiple modules to avoid duplication.
"""

import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")
_URI_CREDENTIALS_RE = re.compile(r"//([^:/@]+):([^@]+)@")

# Largest integer BSON can store
MAX_INT64 = 2**63 - 1


def utcnow() -> datetime:
    """Current UTC time at the millisecond precision MongoDB stores."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def parse_int(value: Any) -> Optional[int]:
    """
    Parse an integer the lenient way web clients expect.

    Strings contribute their leading decimal digits only (``"12abc"`` -> 12,
    ``" 3.9"`` -> 3).  Floats are truncated toward zero.  Booleans, ``None``,
    non-finite floats and anything without leading digits give ``None``.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return int(value)
    if isinstance(value, str):
        match = _LEADING_INT_RE.match(value)
        return int(match.group(1)) if match else None
    return None


def coerce_play_count(value: Any) -> int:
    """
    Turn any client-supplied ``plays`` value into a valid counter.

    Never raises: unparsable input becomes 0, negatives are floored at 0 and
    anything past the 64-bit range is clamped to ``MAX_INT64``.
    """
    return min(max(0, parse_int(value) or 0), MAX_INT64)


def parse_limit(value: Any, default: int) -> int:
    """Result-size limit for list queries; missing, unparsable or zero means *default*."""
    parsed = parse_int(value)
    if not parsed:
        return default
    # MongoDB treats a negative limit as its absolute value
    return min(abs(parsed), MAX_INT64)


def mask_mongo_uri(uri: str) -> str:
    """Hide the user and password of a connection string for logging."""
    return _URI_CREDENTIALS_RE.sub("//***:***@", uri)


def to_iso(value: Any) -> Any:
    """ISO-8601 string with a trailing Z for datetimes; other values pass through."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return value


def serialize_song(doc: Mapping[str, Any]) -> Dict[str, Any]:
    """Convert a raw ``songs`` document into its JSON-ready form."""
    song_id = str(doc["_id"])
    return {
        "_id": song_id,
        "id": song_id,
        "name": doc.get("name"),
        "path": doc.get("path"),
        "plays": doc.get("plays", 0),
        "createdAt": to_iso(doc.get("createdAt")),
        "updatedAt": to_iso(doc.get("updatedAt")),
    }


# ---------------------------------------------------------------------------
# Response envelopes
# ---------------------------------------------------------------------------
def success_envelope(
    data: Any,
    message: Optional[str] = None,
    count: Optional[int] = None,
) -> Dict[str, Any]:
    """``{"success": true, "data": ...}`` plus optional message / count."""
    body: Dict[str, Any] = {"success": True}
    if message is not None:
        body["message"] = message
    if count is not None:
        body["count"] = count
    body["data"] = data
    return body


def error_envelope(message: str, detail: Optional[str] = None) -> Dict[str, Any]:
    """``{"success": false, "message": ...}``; *detail* only when it may be shown."""
    body: Dict[str, Any] = {"success": False, "message": message}
    if detail is not None:
        body["error"] = detail
    return body
