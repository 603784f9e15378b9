from contextlib import asynccontextmanager
from typing import Optional

from starlette.applications import Starlette
from starlette.routing import Router

from crm_platform.api.middleware import IdentityMiddleware
from crm_platform.api.routes import routes as platform_routes
from crm_platform.config import STRICT_STATUS_TRANSITIONS, get_database_url
from crm_platform.db.session import SessionManager, build_engine
from crm_platform.logging_config import setup_logging
from services.scheduling.api import routes as scheduling_routes
from services.scheduling.core.lifecycle import STRICT_TRANSITIONS, table_policy
from services.scheduling.core.outbox import (
    AuditLog,
    OutboxDispatcher,
    RewardLedger,
    SqlAuditLog,
    SqlRewardLedger,
)

setup_logging()


def create_app(
    db_url: Optional[str] = None,
    *,
    reward_ledger: Optional[RewardLedger] = None,
    audit_log: Optional[AuditLog] = None,
    strict_transitions: Optional[bool] = None,
):
    engine = build_engine(db_url or get_database_url())

    @asynccontextmanager
    async def lifespan(app):
        yield
        engine.dispose()

    app = Starlette(lifespan=lifespan)
    sessions = SessionManager(engine)

    dispatcher = OutboxDispatcher(
        reward_ledger=reward_ledger or SqlRewardLedger(sessions),
        audit_log=audit_log or SqlAuditLog(sessions),
    )

    if strict_transitions is None:
        strict_transitions = STRICT_STATUS_TRANSITIONS

    app.state.engine = engine
    app.state.sessions = sessions
    app.state.dispatcher = dispatcher
    app.state.transition_policy = (
        table_policy(STRICT_TRANSITIONS) if strict_transitions else None
    )

    app.add_middleware(IdentityMiddleware)

    app.mount("/api/platform", Router(platform_routes))
    app.mount("/api/schedule", Router(scheduling_routes))

    return app
