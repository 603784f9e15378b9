"""
Attendee lifecycle: adding, responding, replacing and removing participants.

Attendee response status is tracked independently of the event status and
may move freely between any of its states.
"""

import logging
from typing import Any, Iterable, Optional, Union

from ..database.schema import AttendeeResponseStatus, EventAttendee, ScheduleEvent
from ..database.store import EventStore
from .errors import DuplicateError, InvalidFieldError, ValidationError
from .utils import utcnow

logger = logging.getLogger(__name__)


def parse_response_status(
    value: Union[AttendeeResponseStatus, str, None],
) -> AttendeeResponseStatus:
    if isinstance(value, AttendeeResponseStatus):
        return value
    try:
        return AttendeeResponseStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in AttendeeResponseStatus)
        raise InvalidFieldError(
            "response_status", f"response_status must be one of: {allowed}"
        )


def _participant_value(participant: Any, name: str) -> Any:
    if isinstance(participant, dict):
        return participant.get(name)
    return getattr(participant, name, None)


class AttendeeManager:
    """Participant set management for events of one tenant."""

    def __init__(self, store: EventStore):
        self.store = store

    def add(
        self,
        event: ScheduleEvent,
        participant: Any,
    ) -> EventAttendee:
        """
        Add one participant (dict or AttendeeInput) to an event.

        Raises:
            ValidationError: no user_id and no email, or the participant is the creator
            DuplicateError: the participant is already an active attendee
        """
        user_id = _participant_value(participant, "user_id")
        email = _participant_value(participant, "email")
        if user_id is not None:
            user_id = str(user_id)
        if not user_id and not email:
            raise ValidationError("Attendee requires user_id or email", field="user_id")
        if user_id and user_id == event.created_by:
            raise ValidationError(
                "The event creator cannot be added as an attendee", field="user_id"
            )

        if self.store.find_active_attendee(event.id, user_id=user_id, email=email):
            raise DuplicateError(
                f"Participant {user_id or email} is already an attendee of event {event.id}"
            )

        status = _participant_value(participant, "response_status")
        attendee = self.store.insert_attendee(
            event,
            user_id=user_id or None,
            email=email or None,
            name=_participant_value(participant, "name"),
            is_organizer=bool(_participant_value(participant, "is_organizer")),
            response_status=parse_response_status(
                status or AttendeeResponseStatus.invited
            ),
        )
        logger.info(
            "Added attendee %s to event %s", user_id or email, event.id
        )
        return attendee

    def add_many(
        self, event: ScheduleEvent, participants: Optional[Iterable[Any]]
    ) -> list[EventAttendee]:
        """
        Add a participant list, skipping the creator and repeated entries.
        Used when an event is created or its attendee list is replaced.
        """
        added = []
        seen: set[str] = set()
        for participant in participants or []:
            user_id = _participant_value(participant, "user_id")
            email = _participant_value(participant, "email")
            key = f"user:{user_id}" if user_id else f"email:{(email or '').lower()}"
            if user_id is not None and str(user_id) == event.created_by:
                continue
            if key in seen:
                continue
            seen.add(key)
            added.append(self.add(event, participant))
        return added

    def update_response(
        self,
        event: ScheduleEvent,
        attendee_id: int,
        status: Union[AttendeeResponseStatus, str],
    ) -> EventAttendee:
        """Set a participant's response; every state is reachable from every other."""
        new_status = parse_response_status(status)
        attendee = self.store.get_attendee(event.id, attendee_id)
        attendee.response_status = new_status
        attendee.responded_at = utcnow()
        self.store.session.flush()
        return attendee

    def replace_all(
        self, event: ScheduleEvent, participants: Optional[Iterable[Any]]
    ) -> list[EventAttendee]:
        """
        Soft-delete the whole active attendee set, then add the given list.
        Prior response history is not carried over.
        """
        removed = self.store.soft_delete_attendees(
            event, self.store.active_attendees(event.id)
        )
        added = self.add_many(event, participants)
        logger.info(
            "Replaced attendees of event %s: %d removed, %d added",
            event.id,
            removed,
            len(added),
        )
        return added

    def remove(self, event: ScheduleEvent, attendee_id: int) -> EventAttendee:
        attendee = self.store.get_attendee(event.id, attendee_id)
        self.store.soft_delete_attendees(event, [attendee])
        return attendee

    def list(self, event: ScheduleEvent) -> list[EventAttendee]:
        return self.store.active_attendees(event.id)
