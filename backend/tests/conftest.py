"""
Shared pytest fixtures for all tests.

Provides a throwaway SQLite database, session managers, recording
collaborators and operation factories that can be used across all
test files.
"""

import os
import sys
import tempfile
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from sqlalchemy import create_engine

from crm_platform.db.schema import PlatformBase
from crm_platform.db.session import SessionManager
from services.scheduling.core.outbox import OutboxDispatcher
from services.scheduling.database.base import Base
from services.scheduling.database.typed_operations import SchedulingOperations

# Importing the models registers their tables on Base.metadata
import services.scheduling.database.schema  # noqa: F401


class RecordingRewardLedger:
    """Reward ledger that remembers every credit."""

    def __init__(self):
        self.credits = []

    def credit(self, user_id, tenant_id, amount, reason, *, coins=0, entity_id=None):
        self.credits.append(
            {
                "user_id": user_id,
                "tenant_id": tenant_id,
                "amount": amount,
                "coins": coins,
                "reason": reason,
                "entity_id": entity_id,
            }
        )

    def reasons(self):
        return [c["reason"] for c in self.credits]


class FailingRewardLedger(RecordingRewardLedger):
    """Reward ledger whose every call fails after being recorded."""

    def credit(self, *args, **kwargs):
        super().credit(*args, **kwargs)
        raise ConnectionError("reward ledger unavailable")


class RecordingAuditLog:
    """Audit log that remembers every record."""

    def __init__(self):
        self.records = []

    def record(self, actor, tenant, action, entity_type, entity_id, description=None):
        self.records.append(
            {
                "actor": actor,
                "tenant": tenant,
                "action": action,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "description": description,
            }
        )

    def actions(self):
        return [r["action"] for r in self.records]


@pytest.fixture
def sqlite_url():
    """File-backed SQLite database with every table created."""
    db_fd, db_path = tempfile.mkstemp(suffix=".db")
    database_url = f"sqlite:///{db_path}"

    engine = create_engine(database_url, echo=False)
    Base.metadata.create_all(engine)
    PlatformBase.metadata.create_all(engine)
    engine.dispose()

    yield database_url

    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def session_manager(sqlite_url):
    """SessionManager bound to the temporary database."""
    engine = create_engine(sqlite_url, echo=False)
    yield SessionManager(engine)
    engine.dispose()


@pytest.fixture
def reward_ledger():
    return RecordingRewardLedger()


@pytest.fixture
def audit_log():
    return RecordingAuditLog()


@pytest.fixture
def dispatcher(reward_ledger, audit_log):
    return OutboxDispatcher(reward_ledger=reward_ledger, audit_log=audit_log)


@pytest.fixture
def make_ops(session_manager, dispatcher):
    """Factory for SchedulingOperations bound to a tenant and user."""

    def _make(tenant_id="tenant-1", user_id="alice", **kwargs):
        kwargs.setdefault("dispatcher", dispatcher)
        kwargs.setdefault("user_name", user_id.title())
        return SchedulingOperations(
            session_manager, tenant_id=tenant_id, user_id=user_id, **kwargs
        )

    return _make


@pytest.fixture
def ops(make_ops):
    """Operations for user 'alice' in 'tenant-1'."""
    return make_ops()
