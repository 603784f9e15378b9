"""
Scheduling API - Endpoint Handlers

REST endpoints for the Scheduling Engine, served by Starlette. Handlers
delegate to SchedulingOperations; each request is one unit of work and
its side effects are published in a background task after the response.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Awaitable, Optional
from functools import wraps

logger = logging.getLogger(__name__)

from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette import status

from ..core.errors import (
    SchedulingAPIError,
    UnauthorizedError,
    ValidationError,
    handle_exception,
)
from ..core.serializers import (
    serialize_attendee,
    serialize_calendar_view,
    serialize_event,
    serialize_events,
    serialize_events_list,
)
from ..database.pydantic_schemas import AttendeeInput, EventCreate, EventPatch, validate_payload
from ..database.store import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from ..database.typed_operations import SchedulingOperations


# ============================================================================
# REQUEST UTILITIES
# ============================================================================


def get_operations(request: Request) -> SchedulingOperations:
    """SchedulingOperations bound to the request's tenant and user (set by api_handler)."""
    ops = getattr(request.state, "scheduling", None)
    if ops is None:
        raise UnauthorizedError("Missing scheduling context")
    return ops


async def get_request_body(request: Request) -> dict[str, Any]:
    """Parse JSON body from request, return empty dict if no body."""
    body = await request.body()
    if not body:
        return {}
    data = json.loads(body)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def get_query_params(request: Request) -> dict[str, str]:
    """Get all query parameters as a dictionary."""
    return dict(request.query_params)


class InvalidParameterError(Exception):
    """Raised when a query parameter has an invalid value."""
    def __init__(self, param_name: str, message: str):
        self.param_name = param_name
        self.message = message
        super().__init__(message)


def parse_int_param(params: dict[str, str], name: str, default: int, max_value: Optional[int] = None) -> int:
    """
    Parse an integer query parameter with validation.

    Args:
        params: Query parameters dict
        name: Parameter name (e.g., "limit")
        default: Default value if parameter not provided
        max_value: Maximum allowed value (clamps result)

    Returns:
        Parsed integer value

    Raises:
        InvalidParameterError: If value is not a valid integer
    """
    raw_value = params.get(name)
    if raw_value is None or raw_value == "":
        value = default
    else:
        try:
            value = int(raw_value)
        except (ValueError, TypeError):
            raise InvalidParameterError(name, f"{name} must be a valid integer")

    if max_value is not None:
        value = min(value, max_value)
    return value


def parse_bool_param(value: Any, default: bool = False) -> bool:
    """Accept JSON booleans and the usual query-string spellings."""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def conflict_flags(request: Request, body: dict[str, Any]) -> dict[str, bool]:
    """check_conflicts / ignore_conflicts from the body, falling back to the query string."""
    params = request.query_params
    return {
        "check_conflicts": parse_bool_param(
            body.pop("check_conflicts", params.get("check_conflicts")), default=False
        ),
        "ignore_conflicts": parse_bool_param(
            body.pop("ignore_conflicts", params.get("ignore_conflicts")), default=False
        ),
    }


# ============================================================================
# ERROR HANDLING WRAPPER
# ============================================================================


def _error_body(code: int, message: str, reason: str, detail: str) -> dict[str, Any]:
    return {
        "error": {
            "code": code,
            "message": message,
            "errors": [
                {
                    "domain": "global",
                    "reason": reason,
                    "message": detail,
                }
            ],
        }
    }


def api_handler(
    handler: Callable[[Request], Awaitable[JSONResponse]]
) -> Callable[[Request], Awaitable[JSONResponse]]:
    """
    Decorator that wraps API handlers with:
    - SchedulingOperations bound to the caller's tenant and user
    - Error handling and conversion to JSON responses
    - Post-commit publication of side effects as a background task

    The IdentityMiddleware provides request.state.tenant_id, user_id and user_name.
    """
    @wraps(handler)
    async def wrapper(request: Request) -> JSONResponse:
        tenant_id = getattr(request.state, "tenant_id", None)
        user_id = getattr(request.state, "user_id", None)
        if not tenant_id or not user_id:
            return UnauthorizedError("Missing tenant or user identity").to_response()

        app_state = request.app.state
        ops = SchedulingOperations(
            app_state.sessions,
            tenant_id=tenant_id,
            user_id=user_id,
            user_name=getattr(request.state, "user_name", None),
            transition_policy=getattr(app_state, "transition_policy", None),
            defer_side_effects=True,
        )
        request.state.scheduling = ops

        try:
            response = await handler(request)
        except SchedulingAPIError as e:
            return handle_exception(e)
        except json.JSONDecodeError:
            return JSONResponse(
                _error_body(400, "Invalid JSON in request body", "parseError", "Invalid JSON"),
                status_code=status.HTTP_400_BAD_REQUEST,
            )
        except InvalidParameterError as e:
            return JSONResponse(
                _error_body(
                    400,
                    f"Invalid value for {e.param_name} parameter",
                    "invalidParameter",
                    e.message,
                ),
                status_code=status.HTTP_400_BAD_REQUEST,
            )
        except Exception as e:
            # Log full exception server-side, return sanitized error to client
            logger.exception("Unhandled exception in scheduling API: %s", e)
            return JSONResponse(
                _error_body(500, "Internal server error", "internalError", "Internal server error"),
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        pending = ops.take_pending_side_effects()
        dispatcher = getattr(app_state, "dispatcher", None)
        if pending and dispatcher is not None:
            response.background = BackgroundTask(dispatcher.publish, pending)
        return response

    return wrapper


# ============================================================================
# EVENTS
# ============================================================================


@api_handler
async def events_list(request: Request) -> JSONResponse:
    """GET /events"""
    params = get_query_params(request)
    ops = get_operations(request)
    result = ops.list_events(
        participant=params.get("user_id"),
        event_type=params.get("event_type") or params.get("type"),
        status=params.get("status"),
        priority=params.get("priority"),
        date_from=params.get("date_from"),
        date_to=params.get("date_to"),
        client_id=params.get("client_id"),
        lead_id=params.get("lead_id"),
        search=params.get("search"),
        include_private=parse_bool_param(params.get("include_private")),
        page=parse_int_param(params, "page", 1),
        limit=parse_int_param(params, "limit", DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE),
        sort=params.get("sort", "start_at"),
        order=params.get("order", "asc"),
    )
    return JSONResponse(
        serialize_events_list(result["events"], result["pagination"], result["stats"])
    )


@api_handler
async def events_create(request: Request) -> JSONResponse:
    """POST /events"""
    body = await get_request_body(request)
    flags = conflict_flags(request, body)
    payload = validate_payload(EventCreate, body)
    event = get_operations(request).create_event(payload, **flags)
    return JSONResponse(serialize_event(event), status_code=status.HTTP_201_CREATED)


@api_handler
async def events_upcoming(request: Request) -> JSONResponse:
    """GET /events/upcoming"""
    params = get_query_params(request)
    events = get_operations(request).upcoming_events(
        limit=parse_int_param(params, "limit", 10, MAX_PAGE_SIZE),
        user_id=params.get("user_id"),
    )
    return JSONResponse({"events": serialize_events(events)})


@api_handler
async def events_stats(request: Request) -> JSONResponse:
    """GET /events/stats"""
    params = get_query_params(request)
    stats = get_operations(request).event_statistics(
        date_from=params.get("date_from"), date_to=params.get("date_to")
    )
    return JSONResponse({"stats": stats})


@api_handler
async def event_by_id_handler(request: Request) -> JSONResponse:
    """GET / PUT / PATCH / DELETE /events/{event_id}"""
    event_id = request.path_params["event_id"]
    ops = get_operations(request)

    if request.method == "GET":
        return JSONResponse(serialize_event(ops.get_event(event_id)))

    if request.method in ("PUT", "PATCH"):
        body = await get_request_body(request)
        flags = conflict_flags(request, body)
        patch = validate_payload(EventPatch, body)
        event = ops.update_event(event_id, patch, **flags)
        return JSONResponse(serialize_event(event))

    ops.delete_event(event_id)
    return JSONResponse({"ok": True, "id": event_id})


@api_handler
async def event_status_update(request: Request) -> JSONResponse:
    """PATCH /events/{event_id}/status"""
    event_id = request.path_params["event_id"]
    body = await get_request_body(request)
    new_status = body.get("status")
    if not new_status:
        raise ValidationError("status is required", field="status")
    event = get_operations(request).update_status(
        event_id, new_status, notes=body.get("notes")
    )
    return JSONResponse(serialize_event(event))


@api_handler
async def event_tags_handler(request: Request) -> JSONResponse:
    """POST / DELETE /events/{event_id}/tags"""
    event_id = request.path_params["event_id"]
    body = await get_request_body(request)
    tags = body.get("tags")
    if not isinstance(tags, list) or not tags:
        raise ValidationError("tags must be a non-empty list", field="tags")

    ops = get_operations(request)
    if request.method == "POST":
        event = ops.add_tags(event_id, tags)
    else:
        event = ops.remove_tags(event_id, tags)
    return JSONResponse(serialize_event(event))


# ============================================================================
# ATTENDEES
# ============================================================================


@api_handler
async def attendees_handler(request: Request) -> JSONResponse:
    """GET / POST /events/{event_id}/attendees"""
    event_id = request.path_params["event_id"]
    ops = get_operations(request)

    if request.method == "GET":
        attendees = ops.list_attendees(event_id)
        return JSONResponse({"attendees": [serialize_attendee(a) for a in attendees]})

    body = await get_request_body(request)
    participant = validate_payload(AttendeeInput, body)
    attendee = ops.add_attendee(event_id, participant)
    return JSONResponse(serialize_attendee(attendee), status_code=status.HTTP_201_CREATED)


@api_handler
async def attendee_by_id_handler(request: Request) -> JSONResponse:
    """PATCH / DELETE /events/{event_id}/attendees/{attendee_id}"""
    event_id = request.path_params["event_id"]
    attendee_id = request.path_params["attendee_id"]
    ops = get_operations(request)

    if request.method == "PATCH":
        body = await get_request_body(request)
        response_status = body.get("response_status") or body.get("status")
        if not response_status:
            raise ValidationError("response_status is required", field="response_status")
        attendee = ops.update_attendee_response(event_id, attendee_id, response_status)
        return JSONResponse(serialize_attendee(attendee))

    ops.remove_attendee(event_id, attendee_id)
    return JSONResponse({"ok": True, "id": attendee_id})


# ============================================================================
# CALENDAR VIEWS
# ============================================================================


@api_handler
async def calendar_view(request: Request) -> JSONResponse:
    """GET /calendar?start_date=&end_date="""
    params = get_query_params(request)
    view = get_operations(request).calendar_view(
        params.get("start_date"), params.get("end_date")
    )
    return JSONResponse(serialize_calendar_view(view))


@api_handler
async def user_events(request: Request) -> JSONResponse:
    """GET /users/{user_id}/events"""
    params = get_query_params(request)
    events = get_operations(request).events_for_user(
        request.path_params["user_id"],
        role=params.get("role", "all"),
        date_from=params.get("date_from"),
        date_to=params.get("date_to"),
        limit=parse_int_param(params, "limit", DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE),
    )
    return JSONResponse({"events": serialize_events(events)})


# ============================================================================
# ROUTES
# ============================================================================


routes = [
    Route("/events", events_list, methods=["GET"]),
    Route("/events", events_create, methods=["POST"]),
    Route("/events/upcoming", events_upcoming, methods=["GET"]),
    Route("/events/stats", events_stats, methods=["GET"]),
    Route(
        "/events/{event_id}",
        event_by_id_handler,
        methods=["GET", "PUT", "PATCH", "DELETE"],
    ),
    Route("/events/{event_id}/status", event_status_update, methods=["PATCH", "PUT"]),
    Route("/events/{event_id}/tags", event_tags_handler, methods=["POST", "DELETE"]),
    Route("/events/{event_id}/attendees", attendees_handler, methods=["GET", "POST"]),
    Route(
        "/events/{event_id}/attendees/{attendee_id:int}",
        attendee_by_id_handler,
        methods=["PATCH", "DELETE"],
    ),
    Route("/calendar", calendar_view, methods=["GET"]),
    Route("/users/{user_id}/events", user_events, methods=["GET"]),
]
