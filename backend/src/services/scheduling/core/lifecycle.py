"""
Event lifecycle: create, update, delete and status transitions.

Owns the ownership checks, the (permissive) status state machine and the
side effects queued on the outbox. Runs inside a caller-provided unit of
work; nothing here commits.
"""

import logging
from typing import Callable, Iterable, Optional, Union

from ..database.pydantic_schemas import (
    AttendeeInput,
    ConflictSchema,
    EventCreate,
    EventPatch,
)
from ..database.schema import (
    AttendeeResponseStatus,
    EventAttendee,
    EventStatus,
    ScheduleEvent,
    TERMINAL_STATUSES,
)
from ..database.store import EventStore
from .attendees import AttendeeManager
from .conflicts import find_conflicts
from .errors import (
    ForbiddenError,
    InvalidFieldError,
    InvalidTimeRangeError,
    InvalidTransitionError,
    SchedulingConflictError,
    ValidationError,
)
from .outbox import Outbox
from .recurrence import expand_recurrence
from .utils import normalize_tags, utcnow

logger = logging.getLogger(__name__)


# ============================================================================
# STATUS STATE MACHINE
# ============================================================================

TransitionPolicy = Callable[[EventStatus, EventStatus], bool]


def allow_all_transitions(current: EventStatus, requested: EventStatus) -> bool:
    """Default policy: every transition is accepted."""
    return True


_ABORT_STATUSES = frozenset({EventStatus.cancelled, EventStatus.no_show})

# Opt-in stricter table: scheduled -> confirmed -> in_progress -> completed,
# cancelled/no_show from any non-terminal state, terminal states are final.
STRICT_TRANSITIONS: dict[EventStatus, frozenset[EventStatus]] = {
    EventStatus.scheduled: frozenset(
        {EventStatus.confirmed, EventStatus.in_progress}
    ) | _ABORT_STATUSES,
    EventStatus.confirmed: frozenset({EventStatus.in_progress}) | _ABORT_STATUSES,
    EventStatus.in_progress: frozenset({EventStatus.completed}) | _ABORT_STATUSES,
    **{status: frozenset() for status in TERMINAL_STATUSES},
}


def table_policy(
    table: dict[EventStatus, frozenset[EventStatus]],
) -> TransitionPolicy:
    def _policy(current: EventStatus, requested: EventStatus) -> bool:
        return requested in table.get(current, frozenset())

    return _policy


def parse_status(value: Union[EventStatus, str, None]) -> EventStatus:
    if isinstance(value, EventStatus):
        return value
    try:
        return EventStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in EventStatus)
        raise InvalidFieldError("status", f"status must be one of: {allowed}")


# ============================================================================
# LIFECYCLE MANAGER
# ============================================================================


class EventLifecycleManager:
    """
    Lifecycle operations performed by one acting user within one tenant.

    Args:
        store: Tenant-bound event store (its session is the unit of work)
        actor_id: Authenticated user performing the operations
        outbox: Receives reward/audit side effects for post-commit delivery
        actor_name: Display name recorded as organizer_name on new events
        transition_policy: Optional guard for status changes
    """

    def __init__(
        self,
        store: EventStore,
        actor_id: str,
        outbox: Outbox,
        *,
        actor_name: Optional[str] = None,
        transition_policy: Optional[TransitionPolicy] = None,
    ):
        self.store = store
        self.actor_id = actor_id
        self.actor_name = actor_name
        self.outbox = outbox
        self.transition_policy = transition_policy or allow_all_transitions
        self.attendees = AttendeeManager(store)

    @property
    def tenant_id(self) -> str:
        return self.store.tenant_id

    def _require_owner(self, event: ScheduleEvent, action: str) -> None:
        if event.created_by != self.actor_id:
            raise ForbiddenError(f"Only the event creator can {action} this event")

    def _audit(self, action: str, event: ScheduleEvent, description: str) -> None:
        self.outbox.audit(self.actor_id, self.tenant_id, action, event.id, description)

    # ========================================================================
    # CONFLICTS
    # ========================================================================

    def detect_conflicts(
        self,
        start,
        end,
        participant_ids: Iterable[str],
        exclude_event_id: Optional[str] = None,
    ) -> list[ConflictSchema]:
        return find_conflicts(
            self.store, start, end, participant_ids, exclude_event_id=exclude_event_id
        )

    def _raise_on_conflicts(self, conflicts: list[ConflictSchema]) -> None:
        if conflicts:
            raise SchedulingConflictError(
                [c.model_dump(mode="json") for c in conflicts]
            )

    # ========================================================================
    # EVENTS
    # ========================================================================

    def create_event(
        self,
        data: EventCreate,
        *,
        check_conflicts: bool = False,
        ignore_conflicts: bool = False,
    ) -> ScheduleEvent:
        """
        Create an event, its attendees and, when recurring, its children.

        Raises:
            SchedulingConflictError: overlapping events and no override
        """
        if check_conflicts and not ignore_conflicts:
            participants = [self.actor_id]
            participants.extend(a.user_id for a in data.attendees if a.user_id)
            self._raise_on_conflicts(
                self.detect_conflicts(data.start_at, data.end_at, participants)
            )

        fields = data.event_fields()
        now = utcnow()
        if data.status == EventStatus.completed:
            fields["completed_at"] = now
        elif data.status == EventStatus.cancelled:
            fields["cancelled_at"] = now

        event = self.store.create(
            **fields,
            created_by=self.actor_id,
            organizer_name=self.actor_name,
        )
        self.attendees.add_many(event, data.attendees)

        children = []
        if event.recurring:
            children = expand_recurrence(self.store, event)

        self.outbox.reward(
            self.actor_id, self.tenant_id, "event_created", event.event_type, event.id
        )
        self._audit("create", event, f"Event created: {event.title}")
        logger.info(
            "Created event %s for user %s in tenant %s (%d recurring children)",
            event.id,
            self.actor_id,
            self.tenant_id,
            len(children),
        )
        return event

    def get_event(self, event_id: str) -> ScheduleEvent:
        """
        Raises:
            EventNotFoundError: unknown id or outside the tenant
            ForbiddenError: private event the actor neither created nor attends
        """
        event = self.store.get(event_id)
        if event.is_private and self.actor_id not in event.participant_ids():
            raise ForbiddenError("You do not have permission to view this event")
        return event

    def update_event(
        self,
        event_id: str,
        patch: EventPatch,
        *,
        check_conflicts: bool = False,
        ignore_conflicts: bool = False,
    ) -> ScheduleEvent:
        """
        Apply a partial update; an attendee list in the patch replaces the
        current attendee set.

        Raises:
            ForbiddenError: actor is not the creator
            ValidationError: empty patch or invalid window
            SchedulingConflictError: new window overlaps and no override
        """
        event = self.store.get(event_id)
        self._require_owner(event, "edit")
        if patch.is_empty():
            raise ValidationError("No fields to update")

        changes = patch.changes()
        new_status = changes.pop("status", None)

        if "start_at" in changes or "end_at" in changes:
            start = changes.get("start_at", event.start_at)
            end = changes["end_at"] if "end_at" in changes else event.end_at
            if end is not None and end <= start:
                raise InvalidTimeRangeError(
                    "end_at" if "end_at" in changes else "start_at"
                )
            if check_conflicts and not ignore_conflicts:
                if patch.has_attendees:
                    participants = {event.created_by}
                    participants.update(a.user_id for a in patch.attendees if a.user_id)
                else:
                    participants = event.participant_ids()
                self._raise_on_conflicts(
                    self.detect_conflicts(
                        start, end, participants, exclude_event_id=event.id
                    )
                )

        if changes:
            self.store.update(event, changes)
        if new_status is not None:
            self._transition(event, new_status)
        if patch.has_attendees:
            self.attendees.replace_all(event, patch.attendees)

        changed = sorted(patch.model_fields_set)
        self._audit("update", event, f"Event updated: {', '.join(changed)}")
        logger.info("Updated event %s (%s)", event.id, ", ".join(changed))
        return event

    def delete_event(self, event_id: str) -> ScheduleEvent:
        event = self.store.get(event_id)
        self._require_owner(event, "delete")
        self.store.soft_delete(event)
        self._audit("delete", event, f"Event deleted: {event.title}")
        logger.info("Deleted event %s in tenant %s", event.id, self.tenant_id)
        return event

    # ========================================================================
    # STATUS
    # ========================================================================

    def _transition(self, event: ScheduleEvent, requested: EventStatus) -> bool:
        """
        Move an event to a new status, stamping terminal timestamps and
        queuing the completion reward. Returns False when nothing changed.
        """
        current = event.status
        if requested == current:
            return False
        if not self.transition_policy(current, requested):
            raise InvalidTransitionError(current.value, requested.value)

        now = utcnow()
        event.status = requested
        event.updated_at = now
        if requested == EventStatus.completed:
            event.completed_at = now
            self.outbox.reward(
                event.created_by,
                self.tenant_id,
                "event_completed",
                event.event_type,
                event.id,
            )
        elif requested == EventStatus.cancelled:
            event.cancelled_at = now
        self.store.session.flush()
        return True

    def update_status(
        self,
        event_id: str,
        status: Union[EventStatus, str],
        notes: Optional[str] = None,
    ) -> ScheduleEvent:
        """
        Change an event's status (owner only).

        Raises:
            InvalidFieldError: unknown status value
            InvalidTransitionError: rejected by the configured policy
        """
        requested = parse_status(status)
        event = self.store.get(event_id)
        self._require_owner(event, "change the status of")

        previous = event.status
        self._transition(event, requested)

        description = f"Status changed from {previous.value} to {requested.value}"
        if notes:
            description = f"{description}: {notes}"
        self._audit("status_change", event, description)
        logger.info("Event %s status %s -> %s", event.id, previous.value, requested.value)
        return event

    # ========================================================================
    # TAGS
    # ========================================================================

    def add_tags(self, event_id: str, tags: Iterable[str]) -> ScheduleEvent:
        event = self.store.get(event_id)
        self._require_owner(event, "tag")
        merged = normalize_tags(list(event.tags or []) + list(tags))
        self.store.update(event, {"tags": merged})
        self._audit("update", event, f"Tags added: {', '.join(normalize_tags(list(tags)))}")
        return event

    def remove_tags(self, event_id: str, tags: Iterable[str]) -> ScheduleEvent:
        event = self.store.get(event_id)
        self._require_owner(event, "tag")
        removed = set(normalize_tags(list(tags)))
        remaining = [t for t in event.tags or [] if t not in removed]
        self.store.update(event, {"tags": remaining})
        self._audit("update", event, f"Tags removed: {', '.join(sorted(removed))}")
        return event

    # ========================================================================
    # ATTENDEES
    # ========================================================================

    def list_attendees(self, event_id: str) -> list[EventAttendee]:
        event = self.get_event(event_id)
        return self.attendees.list(event)

    def add_attendee(self, event_id: str, participant: AttendeeInput) -> EventAttendee:
        event = self.store.get(event_id)
        self._require_owner(event, "manage attendees of")
        attendee = self.attendees.add(event, participant)
        self._audit(
            "update",
            event,
            f"Attendee added: {attendee.user_id or attendee.email}",
        )
        return attendee

    def update_attendee_response(
        self,
        event_id: str,
        attendee_id: int,
        status: Union[AttendeeResponseStatus, str],
    ) -> EventAttendee:
        """Owner may set any attendee's response; an attendee may set their own."""
        event = self.store.get(event_id)
        attendee = self.store.get_attendee(event.id, attendee_id)
        if event.created_by != self.actor_id and attendee.user_id != self.actor_id:
            raise ForbiddenError("Only the event creator or the attendee can respond")
        return self.attendees.update_response(event, attendee_id, status)

    def remove_attendee(self, event_id: str, attendee_id: int) -> EventAttendee:
        event = self.store.get(event_id)
        self._require_owner(event, "manage attendees of")
        attendee = self.attendees.remove(event, attendee_id)
        self._audit(
            "update",
            event,
            f"Attendee removed: {attendee.user_id or attendee.email}",
        )
        return attendee
