"""
Time-conflict detection among event participants.

A conflict is an existing active event (not cancelled, not completed) whose
window overlaps the candidate window and that involves at least one of the
candidate's participants as creator or attendee. The check is advisory:
callers decide whether to proceed.
"""

import logging
from datetime import datetime
from typing import Iterable, Optional

from ..database.pydantic_schemas import ConflictSchema
from ..database.schema import INACTIVE_STATUSES, ScheduleEvent
from ..database.store import EventStore
from .utils import intervals_overlap

logger = logging.getLogger(__name__)


def find_conflicts(
    store: EventStore,
    start: datetime,
    end: Optional[datetime],
    participant_ids: Iterable[str],
    exclude_event_id: Optional[str] = None,
) -> list[ConflictSchema]:
    """
    Find events overlapping [start, end) that share a participant.

    Args:
        store: Tenant-bound event store
        start: Candidate window start
        end: Candidate window end (None for an instant)
        participant_ids: Organizer plus attendee user ids of the candidate
        exclude_event_id: Event being updated, never reported against itself

    Returns:
        Conflict records ordered by start ascending
    """
    participants = {p for p in participant_ids if p}
    if not participants:
        return []

    conflicts = []
    for event in store.conflict_candidates(
        start, end, participants, exclude_event_id=exclude_event_id
    ):
        if not is_conflicting(event, start, end, participants, exclude_event_id):
            continue
        conflicts.append(
            ConflictSchema(
                id=event.id,
                title=event.title,
                start_at=event.start_at,
                end_at=event.end_at,
                event_type=event.event_type,
                priority=event.priority,
                organizer_name=event.organizer_name or event.created_by,
                conflicted_users=sorted(participants & event.participant_ids()),
            )
        )

    if conflicts:
        logger.info(
            "Found %d conflicting events for %d participants in tenant %s",
            len(conflicts),
            len(participants),
            store.tenant_id,
        )
    return conflicts


def is_conflicting(
    event: ScheduleEvent,
    start: datetime,
    end: Optional[datetime],
    participants: set[str],
    exclude_event_id: Optional[str] = None,
) -> bool:
    """In-memory form of the conflict rule for an already-loaded event."""
    if exclude_event_id is not None and event.id == exclude_event_id:
        return False
    if event.is_deleted or event.status in INACTIVE_STATUSES:
        return False
    if not participants & event.participant_ids():
        return False
    return intervals_overlap(start, end, event.start_at, event.end_at)
