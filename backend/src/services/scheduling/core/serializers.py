# Scheduling API Serializers
# Convert ORM rows and aggregation results to JSON-ready dicts

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel

from ..database.pydantic_schemas import AttendeeSchema, EventSchema
from ..database.schema import EventAttendee, ScheduleEvent
from .utils import format_datetime


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json")


def serialize_event(event: ScheduleEvent | EventSchema) -> dict[str, Any]:
    if isinstance(event, BaseModel):
        return _dump(event)
    return _dump(EventSchema.model_validate(event))


def serialize_events(events: list[Any]) -> list[dict[str, Any]]:
    return [serialize_event(e) for e in events]


def serialize_attendee(attendee: EventAttendee | AttendeeSchema) -> dict[str, Any]:
    if isinstance(attendee, BaseModel):
        return _dump(attendee)
    return _dump(AttendeeSchema.model_validate(attendee))


def serialize_events_list(
    events: list[Any],
    pagination: dict[str, Any],
    stats: dict[str, Any],
) -> dict[str, Any]:
    return {
        "events": serialize_events(events),
        "pagination": pagination,
        "stats": stats,
    }


def serialize_calendar_view(view: dict[str, Any]) -> dict[str, Any]:
    """Calendar view with grouped buckets rendered as lists of event dicts."""
    range_info: Optional[dict[str, datetime]] = view.get("range")
    return {
        "events": serialize_events(view["events"]),
        "by_date": {
            day: serialize_events(items) for day, items in view["by_date"].items()
        },
        "by_week": {
            week: serialize_events(items) for week, items in view["by_week"].items()
        },
        "stats": view["stats"],
        "range": {
            "start": format_datetime(range_info["start"]),
            "end": format_datetime(range_info["end"]),
        }
        if range_info
        else None,
    }
