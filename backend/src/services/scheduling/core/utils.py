# Utility functions for the Scheduling Engine
# ID generation, datetime parsing, interval overlap, calendar bucketing

import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional
from dateutil import parser as date_parser

from .errors import ValidationError


# ============================================================================
# ID GENERATION
# ============================================================================


def generate_event_id() -> str:
    """Opaque event id: 32 lowercase hex characters."""
    return uuid.uuid4().hex


# ============================================================================
# DATETIME HANDLING
# ============================================================================


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (storage format)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive input is taken as UTC."""
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_datetime(value: Any, field: Optional[str] = None) -> datetime:
    """
    Parse an ISO-8601 / RFC3339 string (or date/datetime) to naive UTC.

    Raises:
        ValidationError: if the value cannot be parsed
    """
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Invalid datetime: {value!r}", field=field)
    try:
        return to_naive_utc(date_parser.isoparse(value.strip()))
    except (ValueError, OverflowError):
        raise ValidationError(f"Invalid datetime: {value}", field=field)


def is_date_only(value: Any) -> bool:
    """True for 'YYYY-MM-DD' strings and plain date objects."""
    if isinstance(value, datetime):
        return False
    if isinstance(value, date):
        return True
    return isinstance(value, str) and len(value.strip()) == 10


def format_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Format a stored (naive UTC) datetime as RFC3339 with a Z suffix."""
    if dt is None:
        return None
    return dt.replace(microsecond=0).isoformat() + "Z"


# ============================================================================
# INTERVALS
# ============================================================================


def intervals_overlap(
    start1: datetime,
    end1: Optional[datetime],
    start2: datetime,
    end2: Optional[datetime],
) -> bool:
    """
    Half-open interval overlap: [s1, e1) and [s2, e2) overlap iff s1 < e2 and s2 < e1.

    Touching intervals (e1 == s2) do not overlap. A missing end makes the
    event an instant p, which overlaps [s, e) iff s <= p < e.
    """
    if end1 is None and end2 is None:
        return start1 == start2
    if end1 is None:
        return start2 <= start1 < end2
    if end2 is None:
        return start1 <= start2 < end1
    return start1 < end2 and start2 < end1


def week_start(day: date) -> date:
    """The Sunday on or before the given day."""
    if isinstance(day, datetime):
        day = day.date()
    # Monday=0 ... Sunday=6
    return day - timedelta(days=(day.weekday() + 1) % 7)


def duration_minutes(start: datetime, end: Optional[datetime]) -> Optional[float]:
    if end is None:
        return None
    return (end - start).total_seconds() / 60.0


# ============================================================================
# PAGINATION
# ============================================================================


def build_pagination(page: int, limit: int, total: int) -> dict[str, Any]:
    """Pagination block returned next to list results."""
    pages = (total + limit - 1) // limit if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": pages,
        "has_next": page < pages,
        "has_prev": page > 1,
    }


def normalize_tags(tags: Optional[list[Any]]) -> list[str]:
    """De-duplicate, strip and sort tag names; blank names are dropped."""
    if not tags:
        return []
    cleaned = {str(t).strip() for t in tags if t is not None and str(t).strip()}
    return sorted(cleaned)
