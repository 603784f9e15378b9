from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette import status
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

logger = logging.getLogger(__name__)


async def health_check(request: Request) -> JSONResponse:
    """Liveness plus a round trip to the database."""
    sessions = request.app.state.sessions
    try:
        with sessions.with_session() as session:
            session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error(f"Health check failed: {exc}")
        return JSONResponse(
            {"status": "unhealthy", "database": "unreachable"},
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return JSONResponse({"status": "healthy", "database": "ok"})


routes = [
    Route("/health", health_check, methods=["GET"]),
]
