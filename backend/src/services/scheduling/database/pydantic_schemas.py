from datetime import datetime
from typing import Annotated, Any, Optional, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)

from ..core.errors import InvalidTimeRangeError, ValidationError
from ..core.utils import format_datetime, normalize_tags, to_naive_utc
from .schema import (
    AttendeeResponseStatus,
    EventPriority,
    EventStatus,
    EventType,
    RecurringFrequency,
)

M = TypeVar("M", bound=BaseModel)

# Stored values are naive UTC; JSON output always carries the Z suffix
UTCDateTime = Annotated[
    datetime, PlainSerializer(format_datetime, return_type=str, when_used="json")
]


# ============================================================================
# OUTPUT SCHEMAS
# ============================================================================


class AttendeeSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_id: str
    user_id: str | None = None
    email: str | None = None
    name: str | None = None
    response_status: AttendeeResponseStatus = AttendeeResponseStatus.invited
    is_organizer: bool = False
    responded_at: UTCDateTime | None = None
    created_at: UTCDateTime | None = None
    updated_at: UTCDateTime | None = None


class EventSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    title: str
    description: str | None = None
    location: str | None = None
    virtual_meeting_url: str | None = None
    start_at: UTCDateTime
    end_at: UTCDateTime | None = None
    all_day: bool = False
    event_type: EventType
    priority: EventPriority
    status: EventStatus
    client_id: str | None = None
    lead_id: str | None = None
    sale_id: str | None = None
    is_private: bool = False
    recurring: bool = False
    recurring_frequency: RecurringFrequency | None = None
    recurring_until: UTCDateTime | None = None
    recurring_count: int | None = None
    parent_event_id: str | None = None
    created_by: str
    organizer_name: str | None = None
    tags: list[str] = []
    custom_fields: dict[str, Any] = {}
    reminder_minutes: list[int] = []
    completed_at: UTCDateTime | None = None
    cancelled_at: UTCDateTime | None = None
    created_at: UTCDateTime | None = None
    updated_at: UTCDateTime | None = None
    deleted_at: UTCDateTime | None = None
    attendees: list[AttendeeSchema] = []


class CalendarEventSchema(EventSchema):
    is_participant: bool = False


class ConflictSchema(BaseModel):
    id: str
    title: str
    start_at: UTCDateTime
    end_at: UTCDateTime | None = None
    event_type: EventType
    priority: EventPriority
    organizer_name: str | None = None
    conflicted_users: list[str] = []


# ============================================================================
# INPUT SCHEMAS
# ============================================================================


def _coerce_identifier(value: Any) -> Any:
    # Client/lead/user ids arrive as ints from some callers
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    return value


class AttendeeInput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: Optional[str] = None
    email: Optional[str] = Field(default=None, max_length=255)
    name: Optional[str] = Field(default=None, max_length=255)
    is_organizer: bool = False
    response_status: AttendeeResponseStatus = AttendeeResponseStatus.invited

    @field_validator("user_id", mode="before")
    @classmethod
    def _coerce_user(cls, value: Any) -> Any:
        return _coerce_identifier(value)

    @model_validator(mode="after")
    def _require_identity(self):
        if not self.user_id and not self.email:
            raise ValueError("attendee requires user_id or email")
        return self


class _EventFields(BaseModel):
    """Field constraints shared by create and patch payloads."""

    model_config = ConfigDict(extra="ignore")

    @field_validator("client_id", "lead_id", "sale_id", mode="before", check_fields=False)
    @classmethod
    def _coerce_refs(cls, value: Any) -> Any:
        return _coerce_identifier(value)

    @field_validator("start_at", "end_at", "recurring_until", check_fields=False)
    @classmethod
    def _normalize_datetime(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value) if value is not None else None

    @field_validator("tags", check_fields=False)
    @classmethod
    def _normalize_tags(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        return normalize_tags(value) if value is not None else None

    @field_validator("reminder_minutes", check_fields=False)
    @classmethod
    def _normalize_reminders(cls, value: Optional[list[int]]) -> Optional[list[int]]:
        if value is None:
            return None
        if any(minutes < 0 for minutes in value):
            raise ValueError("reminder offsets must be non-negative")
        return sorted(set(value))


class EventCreate(_EventFields):
    title: str = Field(min_length=2, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    start_at: datetime
    end_at: Optional[datetime] = None
    all_day: bool = False
    event_type: EventType = EventType.meeting
    priority: EventPriority = EventPriority.medium
    status: EventStatus = EventStatus.scheduled
    location: Optional[str] = Field(default=None, max_length=255)
    virtual_meeting_url: Optional[str] = Field(default=None, max_length=500)
    client_id: Optional[str] = None
    lead_id: Optional[str] = None
    sale_id: Optional[str] = None
    is_private: bool = False
    recurring: bool = False
    recurring_frequency: Optional[RecurringFrequency] = None
    recurring_until: Optional[datetime] = None
    recurring_count: Optional[int] = Field(default=None, ge=1)
    tags: list[str] = []
    custom_fields: dict[str, Any] = {}
    reminder_minutes: list[int] = [15]
    attendees: list[AttendeeInput] = []

    @model_validator(mode="after")
    def _check_consistency(self):
        if self.end_at is not None and self.end_at <= self.start_at:
            raise InvalidTimeRangeError()
        if self.recurring and self.recurring_frequency is None:
            raise ValidationError(
                "recurring_frequency is required for recurring events",
                field="recurring_frequency",
            )
        if self.recurring_until is not None and self.recurring_until <= self.start_at:
            raise ValidationError(
                "recurring_until must be after start_at", field="recurring_until"
            )
        return self

    def event_fields(self) -> dict[str, Any]:
        """Column values for the event row (attendees excluded)."""
        return self.model_dump(exclude={"attendees"})


# Columns a patch may not clear
NON_NULLABLE_PATCH_FIELDS = frozenset(
    {
        "title",
        "start_at",
        "all_day",
        "event_type",
        "priority",
        "status",
        "is_private",
        "tags",
        "custom_fields",
        "reminder_minutes",
    }
)


class EventPatch(_EventFields):
    """
    Partial update. A field is applied when it is present in the payload
    (model_fields_set), regardless of its value; absent fields are untouched.
    """

    title: Optional[str] = Field(default=None, min_length=2, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    all_day: Optional[bool] = None
    event_type: Optional[EventType] = None
    priority: Optional[EventPriority] = None
    status: Optional[EventStatus] = None
    location: Optional[str] = Field(default=None, max_length=255)
    virtual_meeting_url: Optional[str] = Field(default=None, max_length=500)
    client_id: Optional[str] = None
    lead_id: Optional[str] = None
    sale_id: Optional[str] = None
    is_private: Optional[bool] = None
    tags: Optional[list[str]] = None
    custom_fields: Optional[dict[str, Any]] = None
    reminder_minutes: Optional[list[int]] = None
    attendees: Optional[list[AttendeeInput]] = None

    @model_validator(mode="after")
    def _check_presence(self):
        for name in self.model_fields_set & NON_NULLABLE_PATCH_FIELDS:
            if getattr(self, name) is None:
                raise ValidationError(f"{name} cannot be null", field=name)
        if (
            self.start_at is not None
            and self.end_at is not None
            and self.end_at <= self.start_at
        ):
            raise InvalidTimeRangeError()
        return self

    @property
    def has_attendees(self) -> bool:
        return "attendees" in self.model_fields_set and self.attendees is not None

    def changes(self) -> dict[str, Any]:
        """Present event fields only (attendees excluded)."""
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if name != "attendees"
        }

    def is_empty(self) -> bool:
        return not self.changes() and not self.has_attendees


def validate_payload(model_cls: type[M], data: Any) -> M:
    """
    Validate a raw payload against an input model.

    Raises:
        ValidationError: with the first offending field as location
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        message = first.get("msg", "Invalid value")
        if field:
            message = f"{field}: {message}"
        raise ValidationError(message, field=field)
