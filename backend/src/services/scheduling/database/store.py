"""
Tenant-bound persistence for scheduling events and attendees.

Every query built here starts from ``_events()`` / ``_attendees()``, which
carry the tenant predicate, so a store can only ever see its own tenant.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from sqlalchemy import Select, and_, case, exists, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from ..core.errors import (
    AttendeeNotFoundError,
    DuplicateError,
    EventNotFoundError,
    InvalidTimeRangeError,
    RequiredFieldError,
    ValidationError,
)
from ..core.utils import generate_event_id, utcnow
from .schema import (
    AttendeeResponseStatus,
    EventAttendee,
    EventPriority,
    EventStatus,
    EventType,
    INACTIVE_STATUSES,
    ScheduleEvent,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200
DEFAULT_PAGE_SIZE = 50

PRIORITY_RANK = case(
    (ScheduleEvent.priority == EventPriority.low, 1),
    (ScheduleEvent.priority == EventPriority.medium, 2),
    (ScheduleEvent.priority == EventPriority.high, 3),
    (ScheduleEvent.priority == EventPriority.urgent, 4),
    else_=0,
)

SORTABLE_FIELDS = {
    "start_at": ScheduleEvent.start_at,
    "created_at": ScheduleEvent.created_at,
    "title": ScheduleEvent.title,
    "priority": PRIORITY_RANK,
    "status": ScheduleEvent.status,
}

REQUIRED_EVENT_FIELDS = ("title", "start_at", "created_by")


def overlaps_window(start: datetime, end: Optional[datetime]):
    """
    SQL form of the half-open overlap predicate against [start, end).

    Stored events without an end are instants; a candidate without an end
    is an instant too.
    """
    if end is None:
        return or_(
            and_(
                ScheduleEvent.end_at.is_not(None),
                ScheduleEvent.start_at <= start,
                ScheduleEvent.end_at > start,
            ),
            and_(ScheduleEvent.end_at.is_(None), ScheduleEvent.start_at == start),
        )
    return or_(
        and_(
            ScheduleEvent.end_at.is_not(None),
            ScheduleEvent.start_at < end,
            ScheduleEvent.end_at > start,
        ),
        and_(
            ScheduleEvent.end_at.is_(None),
            ScheduleEvent.start_at >= start,
            ScheduleEvent.start_at < end,
        ),
    )


class EventStore:
    """Durable CRUD for events and attendees, scoped to one tenant."""

    def __init__(self, session: Session, tenant_id: str):
        if not tenant_id:
            raise ValueError("EventStore requires a tenant_id")
        self.session = session
        self.tenant_id = tenant_id

    # ========================================================================
    # BASE QUERIES
    # ========================================================================

    def _events(self, include_deleted: bool = False) -> Select:
        query = select(ScheduleEvent).where(ScheduleEvent.tenant_id == self.tenant_id)
        if not include_deleted:
            query = query.where(ScheduleEvent.deleted_at.is_(None))
        return query

    def _attendees(self, event_id: str) -> Select:
        return select(EventAttendee).where(
            EventAttendee.tenant_id == self.tenant_id,
            EventAttendee.event_id == event_id,
            EventAttendee.deleted_at.is_(None),
        )

    def _attended_by(self, user_id: str):
        """EXISTS clause: user is an active attendee of the outer event."""
        return exists().where(
            EventAttendee.event_id == ScheduleEvent.id,
            EventAttendee.tenant_id == self.tenant_id,
            EventAttendee.deleted_at.is_(None),
            EventAttendee.user_id == user_id,
        )

    def _involves_user(self, user_id: str):
        return or_(ScheduleEvent.created_by == user_id, self._attended_by(user_id))

    def _visible_to(self, viewer_id: str):
        """Public events, or private events the viewer created or attends."""
        return or_(ScheduleEvent.is_private.is_(False), self._involves_user(viewer_id))

    def _flush(self, duplicate_message: str) -> None:
        try:
            self.session.flush()
        except IntegrityError:
            self.session.rollback()
            raise DuplicateError(duplicate_message)

    # ========================================================================
    # EVENT OPERATIONS
    # ========================================================================

    def create(self, **fields: Any) -> ScheduleEvent:
        """
        Persist a new event with a freshly minted id.

        Raises:
            RequiredFieldError: if title, start_at or created_by is missing
            InvalidTimeRangeError: if end_at <= start_at
        """
        for name in REQUIRED_EVENT_FIELDS:
            if fields.get(name) in (None, ""):
                raise RequiredFieldError(name)
        end_at = fields.get("end_at")
        if end_at is not None and end_at <= fields["start_at"]:
            raise InvalidTimeRangeError()

        fields.pop("id", None)
        fields.pop("tenant_id", None)
        event = ScheduleEvent(
            id=generate_event_id(),
            tenant_id=self.tenant_id,
            **{k: v for k, v in fields.items() if hasattr(ScheduleEvent, k)},
        )
        self.session.add(event)
        self._flush(f"Event already exists: {event.id}")
        return event

    def get(self, event_id: str, include_deleted: bool = False) -> ScheduleEvent:
        """
        Fetch one event with its active attendees.

        Raises:
            EventNotFoundError: unknown id, soft-deleted, or another tenant's event
        """
        event = (
            self.session.execute(
                self._events(include_deleted)
                .where(ScheduleEvent.id == event_id)
                .options(selectinload(ScheduleEvent.attendees))
            )
            .scalars()
            .first()
        )
        if event is None:
            raise EventNotFoundError(event_id)
        return event

    def update(self, event: ScheduleEvent, changes: dict[str, Any]) -> ScheduleEvent:
        """
        Apply the present fields of a patch to an event.

        Raises:
            ValidationError: empty patch, or the merged window has end <= start
        """
        if not changes:
            raise ValidationError("No fields to update")
        self._check_owned(event)

        start_at = changes.get("start_at", event.start_at)
        end_at = changes["end_at"] if "end_at" in changes else event.end_at
        if start_at is None:
            raise RequiredFieldError("start_at")
        if end_at is not None and end_at <= start_at:
            raise InvalidTimeRangeError(
                "end_at" if "end_at" in changes else "start_at"
            )

        for name, value in changes.items():
            if name in ("id", "tenant_id", "created_by", "parent_event_id"):
                continue
            if hasattr(ScheduleEvent, name):
                setattr(event, name, value)
        event.updated_at = utcnow()
        self.session.flush()
        return event

    def soft_delete(self, event: ScheduleEvent) -> bool:
        """
        Mark an event and its active attendees deleted.

        Returns False when the event was already deleted.
        """
        self._check_owned(event)
        if event.is_deleted:
            return False
        now = utcnow()
        event.deleted_at = now
        for attendee in self.session.execute(self._attendees(event.id)).scalars():
            attendee.deleted_at = now
        self.session.flush()
        self.session.expire(event, ["attendees"])
        return True

    def children_of(self, event_id: str) -> list[ScheduleEvent]:
        return list(
            self.session.execute(
                self._events()
                .where(ScheduleEvent.parent_event_id == event_id)
                .order_by(ScheduleEvent.start_at)
            ).scalars()
        )

    def _check_owned(self, event: ScheduleEvent) -> None:
        if event.tenant_id != self.tenant_id:
            raise EventNotFoundError(event.id)

    # ========================================================================
    # ATTENDEE OPERATIONS
    # ========================================================================

    def active_attendees(self, event_id: str) -> list[EventAttendee]:
        """Organizers first, then insertion order."""
        return list(
            self.session.execute(
                self._attendees(event_id).order_by(
                    EventAttendee.is_organizer.desc(), EventAttendee.id
                )
            ).scalars()
        )

    def find_active_attendee(
        self,
        event_id: str,
        user_id: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Optional[EventAttendee]:
        """Match by user id when given, otherwise by email among id-less rows."""
        query = self._attendees(event_id)
        if user_id:
            query = query.where(EventAttendee.user_id == user_id)
        elif email:
            query = query.where(
                EventAttendee.user_id.is_(None),
                func.lower(EventAttendee.email) == email.lower(),
            )
        else:
            return None
        return self.session.execute(query).scalars().first()

    def get_attendee(self, event_id: str, attendee_id: int) -> EventAttendee:
        attendee = (
            self.session.execute(
                self._attendees(event_id).where(EventAttendee.id == attendee_id)
            )
            .scalars()
            .first()
        )
        if attendee is None:
            raise AttendeeNotFoundError(event_id, attendee_id)
        return attendee

    def insert_attendee(
        self,
        event: ScheduleEvent,
        *,
        user_id: Optional[str] = None,
        email: Optional[str] = None,
        name: Optional[str] = None,
        is_organizer: bool = False,
        response_status: AttendeeResponseStatus = AttendeeResponseStatus.invited,
    ) -> EventAttendee:
        self._check_owned(event)
        attendee = EventAttendee(
            tenant_id=self.tenant_id,
            event_id=event.id,
            user_id=user_id,
            email=email,
            name=name,
            is_organizer=is_organizer,
            response_status=response_status,
        )
        self.session.add(attendee)
        self._flush(f"Attendee already added to event {event.id}")
        self.session.expire(event, ["attendees"])
        return attendee

    def soft_delete_attendees(
        self, event: ScheduleEvent, attendees: Iterable[EventAttendee]
    ) -> int:
        now = utcnow()
        count = 0
        for attendee in attendees:
            attendee.deleted_at = now
            count += 1
        self.session.flush()
        self.session.expire(event, ["attendees"])
        return count

    # ========================================================================
    # QUERY HELPERS
    # ========================================================================

    def conflict_candidates(
        self,
        start: datetime,
        end: Optional[datetime],
        participant_ids: Iterable[str],
        exclude_event_id: Optional[str] = None,
    ) -> list[ScheduleEvent]:
        """Active events overlapping the window that involve any participant."""
        participants = [p for p in participant_ids if p]
        if not participants:
            return []
        attended = exists().where(
            EventAttendee.event_id == ScheduleEvent.id,
            EventAttendee.tenant_id == self.tenant_id,
            EventAttendee.deleted_at.is_(None),
            EventAttendee.user_id.in_(participants),
        )
        query = (
            self._events()
            .where(ScheduleEvent.status.not_in(list(INACTIVE_STATUSES)))
            .where(overlaps_window(start, end))
            .where(or_(ScheduleEvent.created_by.in_(participants), attended))
            .options(selectinload(ScheduleEvent.attendees))
            .order_by(ScheduleEvent.start_at, ScheduleEvent.id)
        )
        if exclude_event_id:
            query = query.where(ScheduleEvent.id != exclude_event_id)
        return list(self.session.execute(query).scalars())

    def list_events(
        self,
        viewer_id: str,
        *,
        participant: Optional[str] = None,
        event_type: Optional[EventType] = None,
        status: Optional[EventStatus] = None,
        priority: Optional[EventPriority] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        client_id: Optional[str] = None,
        lead_id: Optional[str] = None,
        search: Optional[str] = None,
        include_private: bool = False,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        sort: str = "start_at",
        order: str = "asc",
    ) -> tuple[list[ScheduleEvent], int]:
        """Filtered, sorted page of events plus the total matching count."""
        conditions = []
        if participant:
            conditions.append(self._involves_user(participant))
        if event_type is not None:
            conditions.append(ScheduleEvent.event_type == event_type)
        if status is not None:
            conditions.append(ScheduleEvent.status == status)
        if priority is not None:
            conditions.append(ScheduleEvent.priority == priority)
        if date_from is not None:
            conditions.append(ScheduleEvent.start_at >= date_from)
        if date_to is not None:
            conditions.append(
                func.coalesce(ScheduleEvent.end_at, ScheduleEvent.start_at) <= date_to
            )
        if client_id:
            conditions.append(ScheduleEvent.client_id == client_id)
        if lead_id:
            conditions.append(ScheduleEvent.lead_id == lead_id)
        if search:
            pattern = f"%{search.lower()}%"
            conditions.append(
                or_(
                    func.lower(ScheduleEvent.title).like(pattern),
                    func.lower(func.coalesce(ScheduleEvent.description, "")).like(
                        pattern
                    ),
                )
            )
        if not include_private:
            conditions.append(self._visible_to(viewer_id))

        base = self._events().where(*conditions)
        total = self.session.execute(
            select(func.count()).select_from(base.subquery())
        ).scalar_one()

        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        sort_column = SORTABLE_FIELDS.get(sort, ScheduleEvent.start_at)
        ordering = sort_column.desc() if order.lower() == "desc" else sort_column.asc()

        rows = self.session.execute(
            base.options(selectinload(ScheduleEvent.attendees))
            .order_by(ordering, ScheduleEvent.id)
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars()
        return list(rows), total

    def status_summary(
        self, viewer_id: str, include_private: bool = False
    ) -> dict[str, Any]:
        """Badge counts over the tenant's visible events, ignoring list filters."""
        conditions = [ScheduleEvent.tenant_id == self.tenant_id]
        conditions.append(ScheduleEvent.deleted_at.is_(None))
        if not include_private:
            conditions.append(self._visible_to(viewer_id))

        def _bucket(column) -> dict[str, int]:
            rows = self.session.execute(
                select(column, func.count()).where(*conditions).group_by(column)
            ).all()
            return {value.value: count for value, count in rows}

        now = utcnow()
        next_7_days, high_priority, total = self.session.execute(
            select(
                func.sum(
                    case(
                        (
                            and_(
                                ScheduleEvent.start_at >= now,
                                ScheduleEvent.start_at <= now + timedelta(days=7),
                                ScheduleEvent.status != EventStatus.cancelled,
                            ),
                            1,
                        ),
                        else_=0,
                    )
                ),
                func.sum(
                    case(
                        (
                            ScheduleEvent.priority.in_(
                                [EventPriority.high, EventPriority.urgent]
                            ),
                            1,
                        ),
                        else_=0,
                    )
                ),
                func.count(),
            ).where(*conditions)
        ).one()

        return {
            "total": total or 0,
            "by_status": _bucket(ScheduleEvent.status),
            "by_type": _bucket(ScheduleEvent.event_type),
            "by_priority": _bucket(ScheduleEvent.priority),
            "next_7_days": next_7_days or 0,
            "high_priority": high_priority or 0,
        }

    def events_in_range(
        self, start: datetime, end: datetime, viewer_id: str
    ) -> list[ScheduleEvent]:
        """Events intersecting [start, end] that the viewer may see, by start."""
        query = (
            self._events()
            .where(ScheduleEvent.start_at <= end)
            .where(func.coalesce(ScheduleEvent.end_at, ScheduleEvent.start_at) >= start)
            .where(self._visible_to(viewer_id))
            .options(selectinload(ScheduleEvent.attendees))
            .order_by(ScheduleEvent.start_at, ScheduleEvent.id)
        )
        return list(self.session.execute(query).scalars())

    def upcoming(
        self,
        viewer_id: str,
        *,
        limit: int = 10,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[ScheduleEvent]:
        now = now or utcnow()
        query = (
            self._events()
            .where(ScheduleEvent.start_at >= now)
            .where(
                ScheduleEvent.status.in_([EventStatus.scheduled, EventStatus.confirmed])
            )
            .where(self._visible_to(viewer_id))
        )
        if user_id:
            query = query.where(self._involves_user(user_id))
        query = (
            query.options(selectinload(ScheduleEvent.attendees))
            .order_by(ScheduleEvent.start_at, ScheduleEvent.id)
            .limit(min(max(limit, 1), MAX_PAGE_SIZE))
        )
        return list(self.session.execute(query).scalars())

    def events_for_user(
        self,
        user_id: str,
        viewer_id: str,
        *,
        role: str = "all",
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> list[ScheduleEvent]:
        """
        Events of one user by role: 'organizer' (created_by), 'attendee', or 'all'.

        Raises:
            ValidationError: for an unknown role
        """
        if role == "organizer":
            role_clause = ScheduleEvent.created_by == user_id
        elif role == "attendee":
            role_clause = self._attended_by(user_id)
        elif role == "all":
            role_clause = self._involves_user(user_id)
        else:
            raise ValidationError(
                "role must be one of: organizer, attendee, all", field="role"
            )

        query = (
            self._events()
            .where(role_clause)
            .where(self._visible_to(viewer_id))
        )
        if date_from is not None:
            query = query.where(ScheduleEvent.start_at >= date_from)
        if date_to is not None:
            query = query.where(ScheduleEvent.start_at <= date_to)
        query = (
            query.options(selectinload(ScheduleEvent.attendees))
            .order_by(ScheduleEvent.start_at, ScheduleEvent.id)
            .limit(min(max(limit, 1), MAX_PAGE_SIZE))
        )
        return list(self.session.execute(query).scalars())

    def statistics(
        self,
        viewer_id: str,
        *,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> dict[str, Any]:
        """Tenant-wide counters for dashboards over an optional start range."""
        now = now or utcnow()
        conditions = [
            ScheduleEvent.tenant_id == self.tenant_id,
            ScheduleEvent.deleted_at.is_(None),
            self._visible_to(viewer_id),
        ]
        if date_from is not None:
            conditions.append(ScheduleEvent.start_at >= date_from)
        if date_to is not None:
            conditions.append(ScheduleEvent.start_at <= date_to)

        def _count_when(clause):
            return func.sum(case((clause, 1), else_=0))

        status_columns = [
            _count_when(ScheduleEvent.status == status).label(status.value)
            for status in EventStatus
        ]
        type_columns = [
            _count_when(ScheduleEvent.event_type == event_type).label(
                f"{event_type.value}s"
            )
            for event_type in (EventType.meeting, EventType.call, EventType.appointment)
        ]
        row = self.session.execute(
            select(
                func.count().label("total"),
                *status_columns,
                *type_columns,
                _count_when(
                    and_(
                        ScheduleEvent.start_at < now,
                        ScheduleEvent.status == EventStatus.scheduled,
                    )
                ).label("overdue"),
                func.count(func.distinct(ScheduleEvent.created_by)).label(
                    "unique_organizers"
                ),
                func.count(func.distinct(ScheduleEvent.client_id)).label(
                    "unique_clients"
                ),
            ).where(*conditions)
        ).one()
        stats = {key: int(value or 0) for key, value in row._mapping.items()}

        durations = self.session.execute(
            select(ScheduleEvent.start_at, ScheduleEvent.end_at).where(
                *conditions, ScheduleEvent.end_at.is_not(None)
            )
        ).all()
        if durations:
            total_minutes = sum(
                (end - start).total_seconds() / 60.0 for start, end in durations
            )
            stats["avg_duration_minutes"] = round(total_minutes / len(durations), 2)
        else:
            stats["avg_duration_minutes"] = None
        return stats
