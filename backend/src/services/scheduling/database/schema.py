# Schema for the Scheduling Engine
# Events, their attendees and recurrence bookkeeping. Every row carries tenant_id.

from datetime import datetime
from enum import Enum as PyEnum
from typing import Any, Optional
from sqlalchemy import (
    String,
    Text,
    Integer,
    Boolean,
    DateTime,
    ForeignKey,
    Enum,
    Index,
    text,
)
from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ..core.utils import utcnow
from .base import Base


# ============================================================================
# ENUMS
# ============================================================================


class EventType(PyEnum):
    """Event type classification."""

    meeting = "meeting"
    call = "call"
    task = "task"
    reminder = "reminder"
    event = "event"
    appointment = "appointment"


class EventPriority(PyEnum):
    """Event priority levels."""

    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class EventStatus(PyEnum):
    """Event status values."""

    scheduled = "scheduled"
    confirmed = "confirmed"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"
    no_show = "no_show"


class AttendeeResponseStatus(PyEnum):
    """Attendee RSVP status, independent of the event status."""

    invited = "invited"
    accepted = "accepted"
    declined = "declined"
    maybe = "maybe"
    attended = "attended"
    no_show = "no_show"


class RecurringFrequency(PyEnum):
    """Supported recurrence steps."""

    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


TERMINAL_STATUSES = frozenset(
    {EventStatus.completed, EventStatus.cancelled, EventStatus.no_show}
)

# Events in these states never block a time slot
INACTIVE_STATUSES = frozenset({EventStatus.cancelled, EventStatus.completed})


# ============================================================================
# MODELS
# ============================================================================


class ScheduleEvent(Base):
    """
    A schedulable unit with a time window, an owner and optional attendees.

    Recurring parents keep recurring=True and parent_event_id=None; their
    generated children are plain events pointing back through parent_event_id.
    """

    __tablename__ = "schedule_events"
    __table_args__ = (
        Index("ix_schedule_event_tenant", "tenant_id"),
        Index("ix_schedule_event_tenant_start", "tenant_id", "start_at"),
        Index("ix_schedule_event_created_by", "tenant_id", "created_by"),
        Index("ix_schedule_event_parent", "parent_event_id"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Basic info
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    virtual_meeting_url: Mapped[Optional[str]] = mapped_column(
        String(500), nullable=True
    )

    # Time window (naive UTC)
    start_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    all_day: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )

    # Classification
    event_type: Mapped[EventType] = mapped_column(
        Enum(EventType, name="schedule_event_type_enum"),
        default=EventType.meeting,
        nullable=False,
    )
    priority: Mapped[EventPriority] = mapped_column(
        Enum(EventPriority, name="schedule_event_priority_enum"),
        default=EventPriority.medium,
        nullable=False,
    )
    status: Mapped[EventStatus] = mapped_column(
        Enum(EventStatus, name="schedule_event_status_enum"),
        default=EventStatus.scheduled,
        nullable=False,
    )

    # Informational references owned by other modules
    client_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    lead_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    sale_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    is_private: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )

    # Recurrence
    recurring: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )
    recurring_frequency: Mapped[Optional[RecurringFrequency]] = mapped_column(
        Enum(RecurringFrequency, name="schedule_recurring_frequency_enum"),
        nullable=True,
    )
    recurring_until: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    recurring_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    parent_event_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("schedule_events.id"), nullable=True
    )

    # Ownership
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    organizer_name: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )

    # Free-form
    tags: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    custom_fields: Mapped[dict[str, Any]] = mapped_column(
        JSON, default=dict, nullable=False
    )
    reminder_minutes: Mapped[list[int]] = mapped_column(
        JSON, default=lambda: [15], nullable=False
    )

    # Lifecycle
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Active attendees only; writes go through EventStore
    attendees: Mapped[list["EventAttendee"]] = relationship(
        primaryjoin="and_(ScheduleEvent.id == EventAttendee.event_id, "
        "EventAttendee.deleted_at.is_(None))",
        order_by=lambda: [EventAttendee.is_organizer.desc(), EventAttendee.id],
        viewonly=True,
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def participant_ids(self) -> set[str]:
        """Creator plus every active attendee that has a system identity."""
        ids = {self.created_by}
        ids.update(a.user_id for a in self.attendees if a.user_id)
        return ids


class EventAttendee(Base):
    """
    A participant's relationship to one event.
    Either user_id (system identity) or email identifies the participant.
    """

    __tablename__ = "schedule_event_attendees"
    __table_args__ = (
        Index("ix_schedule_attendee_event", "event_id"),
        Index("ix_schedule_attendee_user", "tenant_id", "user_id"),
        Index(
            "uq_schedule_attendee_active_user",
            "event_id",
            "user_id",
            unique=True,
            postgresql_where=text("deleted_at IS NULL AND user_id IS NOT NULL"),
            sqlite_where=text("deleted_at IS NULL AND user_id IS NOT NULL"),
        ),
        Index(
            "uq_schedule_attendee_active_email",
            "event_id",
            "email",
            unique=True,
            postgresql_where=text("deleted_at IS NULL AND user_id IS NULL"),
            sqlite_where=text("deleted_at IS NULL AND user_id IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_id: Mapped[str] = mapped_column(
        ForeignKey("schedule_events.id"), nullable=False
    )
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    response_status: Mapped[AttendeeResponseStatus] = mapped_column(
        Enum(AttendeeResponseStatus, name="schedule_attendee_response_enum"),
        default=AttendeeResponseStatus.invited,
        nullable=False,
    )
    is_organizer: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )
    responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    event: Mapped["ScheduleEvent"] = relationship(viewonly=True)
