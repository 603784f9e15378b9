# Scheduling API Error Handling
# Every error renders as {"error": {"code", "message", "errors": [...]}}

import logging
from typing import Any, Optional
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)


# ============================================================================
# ERROR REASONS
# ============================================================================

# Standard error reasons
ERROR_NOT_FOUND = "notFound"
ERROR_INVALID = "invalid"
ERROR_REQUIRED = "required"
ERROR_DUPLICATE = "duplicate"
ERROR_FORBIDDEN = "forbidden"
ERROR_UNAUTHORIZED = "authError"
ERROR_INTERNAL = "internalError"
ERROR_CONFLICT = "conflict"

# Scheduling-specific error reasons
ERROR_EVENT_NOT_FOUND = "eventNotFound"
ERROR_ATTENDEE_NOT_FOUND = "attendeeNotFound"
ERROR_INVALID_TIME_RANGE = "invalidTimeRange"
ERROR_INVALID_TRANSITION = "invalidStatusTransition"

# Domain
ERROR_DOMAIN_GLOBAL = "global"
ERROR_DOMAIN_SCHEDULING = "scheduling"


# ============================================================================
# EXCEPTION CLASSES
# ============================================================================


class SchedulingAPIError(Exception):
    """Base exception for Scheduling API errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        reason: str = ERROR_INVALID,
        domain: str = ERROR_DOMAIN_SCHEDULING,
        location: Optional[str] = None,
        location_type: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.reason = reason
        self.domain = domain
        self.location = location
        self.location_type = location_type

    def to_dict(self) -> dict[str, Any]:
        """Convert to an error response dict."""
        error_detail: dict[str, Any] = {
            "domain": self.domain,
            "reason": self.reason,
            "message": self.message,
        }
        if self.location:
            error_detail["location"] = self.location
        if self.location_type:
            error_detail["locationType"] = self.location_type

        return {
            "error": {
                "code": self.status_code,
                "message": self.message,
                "errors": [error_detail],
            }
        }

    def to_response(self) -> JSONResponse:
        """Convert to Starlette JSONResponse."""
        return JSONResponse(
            content=self.to_dict(),
            status_code=self.status_code,
        )


class NotFoundError(SchedulingAPIError):
    """Resource not found (404)."""

    def __init__(
        self,
        message: str = "Not Found",
        reason: str = ERROR_NOT_FOUND,
    ):
        super().__init__(
            message=message,
            status_code=404,
            reason=reason,
        )


class EventNotFoundError(NotFoundError):
    """Event not found, or not visible in the caller's tenant."""

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(
            message=f"Event not found: {event_id}",
            reason=ERROR_EVENT_NOT_FOUND,
        )


class AttendeeNotFoundError(NotFoundError):
    """Attendee not found on the given event."""

    def __init__(self, event_id: str, attendee_id: Any):
        super().__init__(
            message=f"Attendee {attendee_id} not found on event {event_id}",
            reason=ERROR_ATTENDEE_NOT_FOUND,
        )


class ValidationError(SchedulingAPIError):
    """Invalid request data (400)."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        reason: str = ERROR_INVALID,
    ):
        location = field
        location_type = "parameter" if field else None
        self.field = field
        super().__init__(
            message=message,
            status_code=400,
            reason=reason,
            location=location,
            location_type=location_type,
        )


class RequiredFieldError(ValidationError):
    """Required field missing (400)."""

    def __init__(self, field: str):
        super().__init__(
            message=f"Required field missing: {field}",
            field=field,
            reason=ERROR_REQUIRED,
        )


class InvalidFieldError(ValidationError):
    """Invalid field value (400)."""

    def __init__(self, field: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid value for field: {field}",
            field=field,
            reason=ERROR_INVALID,
        )


class InvalidTimeRangeError(ValidationError):
    """End is not strictly after start (400)."""

    def __init__(self, field: str = "end_at"):
        super().__init__(
            message="end_at must be after start_at",
            field=field,
            reason=ERROR_INVALID_TIME_RANGE,
        )


class InvalidTransitionError(ValidationError):
    """Status transition rejected by the configured transition policy (400)."""

    def __init__(self, current: str, requested: str):
        super().__init__(
            message=f"Cannot change status from {current} to {requested}",
            field="status",
            reason=ERROR_INVALID_TRANSITION,
        )


class DuplicateError(SchedulingAPIError):
    """Resource already exists (409)."""

    def __init__(self, message: str = "Resource already exists"):
        super().__init__(
            message=message,
            status_code=409,
            reason=ERROR_DUPLICATE,
        )


class SchedulingConflictError(SchedulingAPIError):
    """
    The requested window overlaps existing events of the same participants (409).

    Advisory: callers may retry with ignore_conflicts to proceed anyway.
    The response body carries the conflicting events next to the error.
    """

    def __init__(
        self,
        conflicts: list[dict[str, Any]],
        message: str = "Time conflicts detected for one or more participants",
    ):
        self.conflicts = conflicts
        super().__init__(
            message=message,
            status_code=409,
            reason=ERROR_CONFLICT,
        )

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["conflicts"] = self.conflicts
        return payload


class ForbiddenError(SchedulingAPIError):
    """Permission denied (403)."""

    def __init__(self, message: str = "Forbidden"):
        super().__init__(
            message=message,
            status_code=403,
            reason=ERROR_FORBIDDEN,
        )


class UnauthorizedError(SchedulingAPIError):
    """Missing identity context (401)."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(
            message=message,
            status_code=401,
            reason=ERROR_UNAUTHORIZED,
            domain=ERROR_DOMAIN_GLOBAL,
        )


class InternalError(SchedulingAPIError):
    """Internal server error (500)."""

    def __init__(self, message: str = "Internal Server Error"):
        super().__init__(
            message=message,
            status_code=500,
            reason=ERROR_INTERNAL,
            domain=ERROR_DOMAIN_GLOBAL,
        )


# ============================================================================
# ERROR HANDLING UTILITIES
# ============================================================================


def handle_exception(exc: Exception) -> JSONResponse:
    """Convert an exception to a JSONResponse."""
    if isinstance(exc, SchedulingAPIError):
        return exc.to_response()

    logger.error("Unexpected exception: %s", exc, exc_info=True)

    return InternalError().to_response()
