"""Configuration for affiliation-core."""
from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Database
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{Path(__file__).parent / 'affiliation.db'}",
)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def _parse_int(value: str | None, default: int) -> int:
    if not value:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _parse_float(value: str | None, default: float) -> float:
    if not value:
        return default
    try:
        return float(value.strip())
    except ValueError:
        return default


# Registration sync (push of registration state to the external consumer).
# Dispatcher only runs when SYNC_TARGET_URL is set.
SYNC_TARGET_URL = os.getenv("SYNC_TARGET_URL", "")
SYNC_TARGET_SECRET = os.getenv("SYNC_TARGET_SECRET", "")  # Sent as Bearer token when set
SYNC_POLL_INTERVAL_SECONDS = _parse_float(os.getenv("SYNC_POLL_INTERVAL_SECONDS"), 30.0)
SYNC_TIMEOUT_SECONDS = _parse_float(os.getenv("SYNC_TIMEOUT_SECONDS"), 10.0)
SYNC_BATCH_SIZE = _parse_int(os.getenv("SYNC_BATCH_SIZE"), 50)

# Web auth (JWT secret, initial admin bootstrap)
JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-production-use-long-random-string")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_DAYS = _parse_int(os.getenv("JWT_EXPIRE_DAYS"), 7)
INITIAL_ADMIN_USERNAME = os.getenv("INITIAL_ADMIN_USERNAME", "admin")
INITIAL_ADMIN_PASSWORD = os.getenv("INITIAL_ADMIN_PASSWORD", "")  # Set to bootstrap first admin

# API server (web/run_api.py)
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = _parse_int(os.getenv("API_PORT"), 8000)
API_RELOAD = os.getenv("API_RELOAD", "").lower() in ("1", "true", "yes")
