"""Utility / helper functions used across the application."""

from __future__ import annotations

import datetime
import logging
import uuid
from datetime import timezone
from typing import Optional

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Datetime helpers
# ---------------------------------------------------------------------------

def utc_now() -> datetime.datetime:
    """Return current UTC datetime.  Used as SQLAlchemy column default."""
    return datetime.datetime.now(timezone.utc)


def from_unix(raw) -> Optional[datetime.datetime]:
    """Convert a provider unix timestamp to an aware UTC datetime."""
    if raw is None or raw == "":
        return None
    try:
        return datetime.datetime.fromtimestamp(int(raw), tz=timezone.utc)
    except (ValueError, TypeError, OverflowError):
        logger.warning("Could not parse unix timestamp: %r", raw)
        return None


def new_id() -> str:
    """Return a fresh opaque document id."""
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Safe type conversions
# ---------------------------------------------------------------------------

def safe_int(value, default: int = 0) -> int:
    """Safely convert *value* to ``int``, returning *default* on failure."""
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        logger.warning("Could not convert %r to int, using default %s", value, default)
        return default
