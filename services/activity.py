"""Activity feed service."""

from __future__ import annotations

import logging
from typing import Optional

from extensions import db
from models import ACTIVITY_TYPES, ActivityFeedEntry

logger = logging.getLogger(__name__)


def record_activity(
    activity_type: str,
    user_id: str,
    clinic_id: str,
    message: str,
    details: Optional[dict] = None,
    session=None,
) -> ActivityFeedEntry:
    """Append an activity feed entry.

    NOTE: This does NOT commit; the caller commits it together with the
    state change it describes.
    """
    if activity_type not in ACTIVITY_TYPES:
        raise ValueError(f"Unknown activity type: {activity_type}")
    entry = ActivityFeedEntry(
        type=activity_type,
        user_id=user_id,
        clinic_id=clinic_id,
        message=message,
        details=dict(details or {}),
    )
    (session if session is not None else db.session).add(entry)
    logger.debug("Activity %s for user %s (clinic %s)", activity_type, user_id, clinic_id)
    return entry


def recent_activity(clinic_id: Optional[str] = None, limit: int = 10) -> list[ActivityFeedEntry]:
    """Newest entries first, optionally restricted to one clinic."""
    query = ActivityFeedEntry.query
    if clinic_id:
        query = query.filter_by(clinic_id=clinic_id)
    return (
        query.order_by(ActivityFeedEntry.timestamp.desc())
        .limit(limit)
        .all()
    )
