from __future__ import annotations

import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response, JSONResponse
from starlette import status

logger = logging.getLogger(__name__)

TENANT_HEADER = "X-Tenant-Id"
USER_HEADER = "X-User-Id"
USER_NAME_HEADER = "X-User-Name"

PUBLIC_PATHS = frozenset({"/api/platform/health"})


class IdentityMiddleware(BaseHTTPMiddleware):
    """Resolves the calling tenant and user from request headers."""

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.scope.get("path", "")
        if path in PUBLIC_PATHS:
            return await call_next(request)

        tenant_id = (request.headers.get(TENANT_HEADER) or "").strip()
        user_id = (request.headers.get(USER_HEADER) or "").strip()

        if not tenant_id or not user_id:
            logger.debug("Rejecting %s %s: missing identity headers", request.method, path)
            return JSONResponse(
                {"detail": "missing tenant or user identity"},
                status_code=status.HTTP_401_UNAUTHORIZED,
            )

        request.state.tenant_id = tenant_id
        request.state.user_id = user_id
        request.state.user_name = (request.headers.get(USER_NAME_HEADER) or "").strip() or None
        return await call_next(request)
