"""
Typed operations wrapper for the Scheduling Engine.

This module provides a class-based API over the scheduling core. Each call
runs as one unit of work: a single transaction that commits or rolls back
as a whole, after which queued side effects (reward credits, audit records)
are published.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Optional, Union

from crm_platform.db.session import SessionManager

from ..core.aggregation import calendar_view as build_calendar_view
from ..core.aggregation import event_statistics as build_event_statistics
from ..core.lifecycle import EventLifecycleManager, TransitionPolicy
from ..core.outbox import Outbox, OutboxDispatcher, OutboxMessage
from ..core.errors import InvalidFieldError
from ..core.utils import build_pagination, parse_datetime
from .pydantic_schemas import (
    AttendeeInput,
    AttendeeSchema,
    ConflictSchema,
    EventCreate,
    EventPatch,
    EventSchema,
    validate_payload,
)
from .schema import (
    AttendeeResponseStatus,
    EventPriority,
    EventStatus,
    EventType,
)
from .store import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, EventStore


def _as_datetime(value: Any, field: str) -> Optional[datetime]:
    if value is None or value == "":
        return None
    return parse_datetime(value, field=field)


def _parse_enum(enum_cls, value, field):
    if value is None or value == "":
        return None
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise InvalidFieldError(field, f"Invalid {field}: {value}")


class SchedulingOperations:
    """
    Typed operations for the Scheduling Engine, bound to one tenant and user.

    Example usage:
        ops = SchedulingOperations(sessions, tenant_id="t1", user_id="u1")

        event = ops.create_event({
            "title": "Kickoff",
            "start_at": "2025-01-15T10:00:00Z",
            "end_at": "2025-01-15T11:00:00Z",
            "attendees": [{"user_id": "u2"}],
        })
        ops.update_status(event.id, "completed")
    """

    def __init__(
        self,
        sessions: SessionManager,
        *,
        tenant_id: str,
        user_id: str,
        user_name: Optional[str] = None,
        dispatcher: Optional[OutboxDispatcher] = None,
        transition_policy: Optional[TransitionPolicy] = None,
        defer_side_effects: bool = False,
    ):
        """
        Args:
            sessions: Session manager providing transactional sessions
            tenant_id: Tenant every operation is scoped to
            user_id: Authenticated acting user
            user_name: Display name stored as organizer_name on new events
            dispatcher: Receives side effects after commit (None drops them)
            transition_policy: Optional status transition guard
            defer_side_effects: Keep side effects in ``pending`` instead of publishing
        """
        self.sessions = sessions
        self.tenant_id = tenant_id
        self.user_id = user_id
        self.user_name = user_name
        self.dispatcher = dispatcher
        self.transition_policy = transition_policy
        self.defer_side_effects = defer_side_effects
        self.pending: list[OutboxMessage] = []

    @contextmanager
    def _unit_of_work(self) -> Iterator[EventLifecycleManager]:
        outbox = Outbox()
        try:
            with self.sessions.with_session() as session:
                yield EventLifecycleManager(
                    EventStore(session, self.tenant_id),
                    self.user_id,
                    outbox,
                    actor_name=self.user_name,
                    transition_policy=self.transition_policy,
                )
        except Exception:
            outbox.discard()
            raise
        self._after_commit(outbox.drain())

    def _after_commit(self, messages: list[OutboxMessage]) -> None:
        if not messages:
            return
        if self.defer_side_effects:
            self.pending.extend(messages)
        elif self.dispatcher is not None:
            self.dispatcher.publish(messages)

    def take_pending_side_effects(self) -> list[OutboxMessage]:
        """Return and clear side effects held back by defer_side_effects."""
        pending, self.pending = self.pending, []
        return pending

    # ========================================================================
    # EVENT OPERATIONS
    # ========================================================================

    def create_event(
        self,
        data: Union[EventCreate, dict[str, Any]],
        *,
        check_conflicts: bool = False,
        ignore_conflicts: bool = False,
    ) -> EventSchema:
        """
        Create an event (and its recurring children).

        Raises:
            ValidationError: invalid payload, e.g. end_at <= start_at
            SchedulingConflictError: overlapping events and no override
        """
        payload = (
            data if isinstance(data, EventCreate) else validate_payload(EventCreate, data)
        )
        with self._unit_of_work() as lifecycle:
            event = lifecycle.create_event(
                payload,
                check_conflicts=check_conflicts,
                ignore_conflicts=ignore_conflicts,
            )
            result = EventSchema.model_validate(event)
        return result

    def get_event(self, event_id: str) -> EventSchema:
        with self._unit_of_work() as lifecycle:
            result = EventSchema.model_validate(lifecycle.get_event(event_id))
        return result

    def update_event(
        self,
        event_id: str,
        patch: Union[EventPatch, dict[str, Any]],
        *,
        check_conflicts: bool = False,
        ignore_conflicts: bool = False,
    ) -> EventSchema:
        payload = (
            patch if isinstance(patch, EventPatch) else validate_payload(EventPatch, patch)
        )
        with self._unit_of_work() as lifecycle:
            event = lifecycle.update_event(
                event_id,
                payload,
                check_conflicts=check_conflicts,
                ignore_conflicts=ignore_conflicts,
            )
            result = EventSchema.model_validate(event)
        return result

    def delete_event(self, event_id: str) -> None:
        with self._unit_of_work() as lifecycle:
            lifecycle.delete_event(event_id)

    def update_status(
        self,
        event_id: str,
        status: Union[EventStatus, str],
        notes: Optional[str] = None,
    ) -> EventSchema:
        with self._unit_of_work() as lifecycle:
            event = lifecycle.update_status(event_id, status, notes=notes)
            result = EventSchema.model_validate(event)
        return result

    def list_children(self, event_id: str) -> list[EventSchema]:
        """Generated occurrences of a recurring event, by start."""
        with self._unit_of_work() as lifecycle:
            parent = lifecycle.get_event(event_id)
            result = [
                EventSchema.model_validate(child)
                for child in lifecycle.store.children_of(parent.id)
            ]
        return result

    def find_conflicts(
        self,
        start: Any,
        end: Any,
        participant_ids: list[str],
        exclude_event_id: Optional[str] = None,
    ) -> list[ConflictSchema]:
        """Advisory availability check without writing anything."""
        start_at = parse_datetime(start, field="start_at")
        end_at = _as_datetime(end, "end_at")
        with self._unit_of_work() as lifecycle:
            result = lifecycle.detect_conflicts(
                start_at, end_at, participant_ids, exclude_event_id=exclude_event_id
            )
        return result

    # ========================================================================
    # TAGS
    # ========================================================================

    def add_tags(self, event_id: str, tags: list[str]) -> EventSchema:
        with self._unit_of_work() as lifecycle:
            result = EventSchema.model_validate(lifecycle.add_tags(event_id, tags))
        return result

    def remove_tags(self, event_id: str, tags: list[str]) -> EventSchema:
        with self._unit_of_work() as lifecycle:
            result = EventSchema.model_validate(lifecycle.remove_tags(event_id, tags))
        return result

    # ========================================================================
    # ATTENDEE OPERATIONS
    # ========================================================================

    def list_attendees(self, event_id: str) -> list[AttendeeSchema]:
        with self._unit_of_work() as lifecycle:
            result = [
                AttendeeSchema.model_validate(a)
                for a in lifecycle.list_attendees(event_id)
            ]
        return result

    def add_attendee(
        self,
        event_id: str,
        participant: Union[AttendeeInput, dict[str, Any]],
    ) -> AttendeeSchema:
        payload = (
            participant
            if isinstance(participant, AttendeeInput)
            else validate_payload(AttendeeInput, participant)
        )
        with self._unit_of_work() as lifecycle:
            result = AttendeeSchema.model_validate(
                lifecycle.add_attendee(event_id, payload)
            )
        return result

    def update_attendee_response(
        self,
        event_id: str,
        attendee_id: int,
        status: Union[AttendeeResponseStatus, str],
    ) -> AttendeeSchema:
        with self._unit_of_work() as lifecycle:
            result = AttendeeSchema.model_validate(
                lifecycle.update_attendee_response(event_id, attendee_id, status)
            )
        return result

    def remove_attendee(self, event_id: str, attendee_id: int) -> None:
        with self._unit_of_work() as lifecycle:
            lifecycle.remove_attendee(event_id, attendee_id)

    # ========================================================================
    # READ VIEWS
    # ========================================================================

    def list_events(
        self,
        *,
        participant: Optional[str] = None,
        event_type: Optional[Union[EventType, str]] = None,
        status: Optional[Union[EventStatus, str]] = None,
        priority: Optional[Union[EventPriority, str]] = None,
        date_from: Any = None,
        date_to: Any = None,
        client_id: Optional[str] = None,
        lead_id: Optional[str] = None,
        search: Optional[str] = None,
        include_private: bool = False,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        sort: str = "start_at",
        order: str = "asc",
    ) -> dict[str, Any]:
        """
        Filtered page of events with pagination info and badge counts.

        Returns:
            {"events": [EventSchema], "pagination": {...}, "stats": {...}}
        """
        filters = {
            "participant": participant,
            "event_type": _parse_enum(EventType, event_type, "event_type"),
            "status": _parse_enum(EventStatus, status, "status"),
            "priority": _parse_enum(EventPriority, priority, "priority"),
            "date_from": _as_datetime(date_from, "date_from"),
            "date_to": _as_datetime(date_to, "date_to"),
            "client_id": client_id,
            "lead_id": lead_id,
            "search": search,
        }
        with self._unit_of_work() as lifecycle:
            store = lifecycle.store
            events, total = store.list_events(
                self.user_id,
                include_private=include_private,
                page=page,
                limit=limit,
                sort=sort,
                order=order,
                **filters,
            )
            stats = store.status_summary(self.user_id, include_private=include_private)
            result = {
                "events": [EventSchema.model_validate(e) for e in events],
                "pagination": build_pagination(
                    max(page, 1), min(max(limit, 1), MAX_PAGE_SIZE), total
                ),
                "stats": stats,
            }
        return result

    def calendar_view(self, start: Any, end: Any) -> dict[str, Any]:
        with self._unit_of_work() as lifecycle:
            result = build_calendar_view(lifecycle.store, start, end, self.user_id)
        return result

    def upcoming_events(
        self, limit: int = 10, user_id: Optional[str] = None
    ) -> list[EventSchema]:
        with self._unit_of_work() as lifecycle:
            result = [
                EventSchema.model_validate(e)
                for e in lifecycle.store.upcoming(
                    self.user_id, limit=limit, user_id=user_id
                )
            ]
        return result

    def events_for_user(
        self,
        user_id: str,
        *,
        role: str = "all",
        date_from: Any = None,
        date_to: Any = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> list[EventSchema]:
        with self._unit_of_work() as lifecycle:
            result = [
                EventSchema.model_validate(e)
                for e in lifecycle.store.events_for_user(
                    user_id,
                    self.user_id,
                    role=role,
                    date_from=_as_datetime(date_from, "date_from"),
                    date_to=_as_datetime(date_to, "date_to"),
                    limit=limit,
                )
            ]
        return result

    def event_statistics(
        self, date_from: Any = None, date_to: Any = None
    ) -> dict[str, Any]:
        with self._unit_of_work() as lifecycle:
            result = build_event_statistics(
                lifecycle.store, self.user_id, date_from, date_to
            )
        return result
