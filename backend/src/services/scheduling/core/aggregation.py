"""
Calendar aggregation.

Grouping and statistics are pure functions of an already-fetched event list;
only ``calendar_view`` touches the store, once.
"""

from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from ..database.pydantic_schemas import CalendarEventSchema
from ..database.schema import ScheduleEvent
from ..database.store import EventStore
from .errors import ValidationError
from .utils import is_date_only, parse_datetime, week_start


def annotate(event: ScheduleEvent, viewer_id: str) -> CalendarEventSchema:
    view = CalendarEventSchema.model_validate(event)
    view.is_participant = viewer_id in event.participant_ids()
    return view


def group_by_date(events: Iterable[CalendarEventSchema]) -> dict[str, list]:
    """Bucket events by the ISO date of their start."""
    groups: dict[str, list] = {}
    for event in events:
        groups.setdefault(event.start_at.date().isoformat(), []).append(event)
    return groups


def group_by_week(events: Iterable[CalendarEventSchema]) -> dict[str, list]:
    """Bucket events by the Sunday on or before their start date."""
    groups: dict[str, list] = {}
    for event in events:
        key = week_start(event.start_at.date()).isoformat()
        groups.setdefault(key, []).append(event)
    return groups


def summarize(events: Iterable[Any]) -> dict[str, Any]:
    events = list(events)
    return {
        "total_events": len(events),
        "by_status": dict(Counter(e.status.value for e in events)),
        "by_type": dict(Counter(e.event_type.value for e in events)),
        "by_priority": dict(Counter(e.priority.value for e in events)),
    }


def resolve_range(
    start: Any, end: Any
) -> tuple[datetime, datetime]:
    """
    Parse calendar range bounds. A date-only end covers that whole day.

    Raises:
        ValidationError: missing or unparseable bounds, or end before start
    """
    if not start or not end:
        raise ValidationError("start_date and end_date are required", field="start_date")
    range_start = parse_datetime(start, field="start_date")
    range_end = parse_datetime(end, field="end_date")
    if is_date_only(end):
        range_end = range_end + timedelta(days=1) - timedelta(microseconds=1)
    if range_end < range_start:
        raise ValidationError("end_date must not be before start_date", field="end_date")
    return range_start, range_end


def calendar_view(
    store: EventStore,
    start: Any,
    end: Any,
    viewer_id: str,
) -> dict[str, Any]:
    """
    Visible events intersecting [start, end], grouped by day and by week.

    Returns:
        {"events", "by_date", "by_week", "stats", "range"}
    """
    range_start, range_end = resolve_range(start, end)
    events = [
        annotate(event, viewer_id)
        for event in store.events_in_range(range_start, range_end, viewer_id)
    ]
    return {
        "events": events,
        "by_date": group_by_date(events),
        "by_week": group_by_week(events),
        "stats": summarize(events),
        "range": {"start": range_start, "end": range_end},
    }


def event_statistics(
    store: EventStore,
    viewer_id: str,
    date_from: Optional[Any] = None,
    date_to: Optional[Any] = None,
) -> dict[str, Any]:
    return store.statistics(
        viewer_id,
        date_from=parse_datetime(date_from, field="date_from") if date_from else None,
        date_to=parse_datetime(date_to, field="date_to") if date_to else None,
    )
