"""
Recurrence expansion.

A recurring base event is materialized once, at creation time, into plain
child events. Occurrences are produced by stepping the previous occurrence
forward by one frequency unit; month and year steps use
``dateutil.relativedelta``, which clamps to the last valid day
(Jan 31 -> Feb 28/29 -> Mar 28 ...).
"""

import logging
from datetime import datetime, timedelta
from typing import Iterator, Optional, Union

from dateutil.relativedelta import relativedelta

from ..database.schema import RecurringFrequency, ScheduleEvent
from ..database.store import EventStore

logger = logging.getLogger(__name__)

# Hard upper bound on generated children, applied even when count is larger
MAX_OCCURRENCES = 50
DEFAULT_HORIZON = timedelta(days=365)

FREQUENCY_STEPS = {
    RecurringFrequency.daily: relativedelta(days=1),
    RecurringFrequency.weekly: relativedelta(days=7),
    RecurringFrequency.monthly: relativedelta(months=1),
    RecurringFrequency.yearly: relativedelta(years=1),
}

# Descriptive fields copied verbatim from the base event onto every child
INHERITED_FIELDS = (
    "title",
    "description",
    "all_day",
    "event_type",
    "priority",
    "status",
    "location",
    "virtual_meeting_url",
    "client_id",
    "lead_id",
    "sale_id",
    "is_private",
    "created_by",
    "organizer_name",
)


def resolve_frequency(
    frequency: Union[RecurringFrequency, str, None],
) -> Optional[RecurringFrequency]:
    """Map a frequency value to the enum, or None when unrecognized."""
    if isinstance(frequency, RecurringFrequency):
        return frequency
    if isinstance(frequency, str):
        try:
            return RecurringFrequency(frequency.lower())
        except ValueError:
            return None
    return None


def occurrence_limit(count: Optional[int]) -> int:
    if count is None:
        return MAX_OCCURRENCES
    return max(0, min(count, MAX_OCCURRENCES))


def iter_occurrences(
    start: datetime,
    frequency: Union[RecurringFrequency, str, None],
    until: Optional[datetime] = None,
    count: Optional[int] = None,
) -> Iterator[datetime]:
    """
    Yield the start instants of the children that follow ``start``.

    Stops when the next date reaches or passes ``until`` (default one year
    after ``start``) or after ``min(count, 50)`` occurrences. An unknown
    frequency yields nothing.
    """
    freq = resolve_frequency(frequency)
    if freq is None:
        logger.warning("Unknown recurrence frequency %r; nothing generated", frequency)
        return

    step = FREQUENCY_STEPS[freq]
    bound = until if until is not None else start + DEFAULT_HORIZON
    limit = occurrence_limit(count)

    current = start
    produced = 0
    while produced < limit:
        current = current + step
        if current >= bound:
            break
        yield current
        produced += 1


def expand_recurrence(store: EventStore, base: ScheduleEvent) -> list[ScheduleEvent]:
    """
    Persist one child per occurrence of a recurring base event.

    Children copy the base's descriptive fields, keep its duration, are
    never recurring themselves and point back through parent_event_id.
    """
    if base.parent_event_id is not None:
        logger.warning("Refusing to expand child event %s", base.id)
        return []

    duration = base.end_at - base.start_at if base.end_at is not None else None
    children = []
    for occurrence in iter_occurrences(
        base.start_at,
        base.recurring_frequency,
        until=base.recurring_until,
        count=base.recurring_count,
    ):
        fields = {name: getattr(base, name) for name in INHERITED_FIELDS}
        child = store.create(
            **fields,
            start_at=occurrence,
            end_at=occurrence + duration if duration is not None else None,
            tags=list(base.tags or []),
            custom_fields=dict(base.custom_fields or {}),
            reminder_minutes=list(base.reminder_minutes or []),
            recurring=False,
            parent_event_id=base.id,
        )
        children.append(child)

    logger.info(
        "Expanded recurring event %s into %d children (%s)",
        base.id,
        len(children),
        base.recurring_frequency.value if base.recurring_frequency else None,
    )
    return children
