from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as a naive UTC datetime, the form every column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Read an ISO-8601 timestamp from a request.

    Blank input gives None. A bare date means midnight UTC. Offsets,
    including a trailing "Z", are folded into UTC and dropped so the result
    compares cleanly with stored values. Raises ValueError on garbage.
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Render for JSON as 2026-10-19T08:30:00Z, whole seconds only."""
    if dt is None:
        return None
    aware = dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)
    stamp = aware.astimezone(timezone.utc).replace(microsecond=0, tzinfo=None)
    return f"{stamp.isoformat()}Z"


def period_key(dt: datetime, group_by: str) -> str:
    """Bucket label for reports: 2026-10-19, 2026-W42 or 2026-10."""
    if group_by == "day":
        return dt.strftime("%Y-%m-%d")
    if group_by == "week":
        year, week, _ = dt.isocalendar()
        return f"{year}-W{week:02d}"
    if group_by == "month":
        return dt.strftime("%Y-%m")
    raise ValueError("group_by must be day, week, or month")
