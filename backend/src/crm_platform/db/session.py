from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool

from crm_platform.config import (
    DB_MAX_OVERFLOW,
    DB_POOL_SIZE,
    uses_external_pooler,
)


def build_engine(db_url: str) -> Engine:
    # Poolers such as Neon's PgBouncer already pool connections
    if uses_external_pooler(db_url):
        return create_engine(db_url, poolclass=NullPool)
    if db_url.startswith("sqlite"):
        return create_engine(db_url)
    return create_engine(
        db_url,
        pool_size=DB_POOL_SIZE,
        max_overflow=DB_MAX_OVERFLOW,
        pool_pre_ping=True,
    )


class SessionManager:
    def __init__(
        self,
        base_engine: Engine,
    ):
        self.base_engine = base_engine
        self._factory = sessionmaker(bind=base_engine, expire_on_commit=False)

    def get_session(self) -> Session:
        """
        Returns a raw session.
        Caller MUST manually commit/rollback and close the session.
        Use with_session() instead for automatic cleanup.
        """
        return self._factory()

    @contextmanager
    def with_session(self):
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
