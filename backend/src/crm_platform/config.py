"""
Environment-driven settings for the scheduling backend.

Values come from the process environment; a local ``.env`` file is loaded
when present (docker deployments pass variables directly).
"""

import os
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).resolve().parents[2] / ".env"
if env_path.exists():
    try:
        load_dotenv(env_path)
    except (OSError, IOError):
        pass


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "20"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "40"))

STRICT_STATUS_TRANSITIONS = (
    os.getenv("SCHEDULING_STRICT_TRANSITIONS", "false").lower() == "true"
)


def get_database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not configured")
    return url


def uses_external_pooler(db_url: str) -> bool:
    """PgBouncer-style poolers manage connections themselves."""
    return "-pooler" in db_url or "pgbouncer=true" in db_url
