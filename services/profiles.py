"""Profile store access and the read-after-write poller.

Account creation and profile materialization are separate steps, so a caller
that has just created (or signed in) an account may observe the account
before its profile exists. ``await_profile`` polls until it does.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import UserProfile

logger = logging.getLogger(__name__)

PROFILE_NOT_READY_MESSAGE = "ユーザープロファイルが見つかりません。しばらくしてから再度お試しください。"


class ProfileNotFoundAfterRetries(Exception):
    """The profile did not appear within the polling budget."""

    def __init__(self, account_id: str, attempts: int):
        super().__init__(f"Profile {account_id} not found after {attempts} attempts")
        self.account_id = account_id
        self.attempts = attempts


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    delay_ms: int = 100

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay_ms < 0:
            raise ValueError("delay_ms must not be negative")

    @classmethod
    def from_config(cls, cfg) -> "RetryPolicy":
        if cfg is None:
            return cls()
        return cls(max_attempts=cfg.max_attempts, delay_ms=cfg.delay_ms)


def get_profile(account_id: str) -> Optional[UserProfile]:
    return db.session.get(UserProfile, account_id)


def poll_for(
    fetch: Callable[[str], Optional[object]],
    account_id: str,
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
):
    """Call *fetch* until it returns something, at most ``policy.max_attempts`` times.

    Read errors count as an attempt and are retried. Raises
    ProfileNotFoundAfterRetries once the attempts are exhausted.
    """
    for attempt in range(1, policy.max_attempts + 1):
        logger.debug("Profile lookup %s attempt %s/%s", account_id, attempt, policy.max_attempts)
        try:
            found = fetch(account_id)
        except SQLAlchemyError as e:
            logger.warning("Profile read failed for %s (attempt %s), will retry: %s",
                           account_id, attempt, e)
            db.session.rollback()
            found = None
        if found is not None:
            return found
        if attempt < policy.max_attempts:
            sleep(policy.delay_ms / 1000.0)
    logger.error("Profile %s still missing after %s attempts", account_id, policy.max_attempts)
    raise ProfileNotFoundAfterRetries(account_id, policy.max_attempts)


def await_profile(
    account_id: str,
    max_attempts: Optional[int] = None,
    delay_ms: Optional[int] = None,
    *,
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> UserProfile:
    """Wait for the profile document of *account_id* to exist."""
    policy = policy or RetryPolicy()
    if max_attempts is not None or delay_ms is not None:
        policy = RetryPolicy(
            max_attempts=policy.max_attempts if max_attempts is None else max_attempts,
            delay_ms=policy.delay_ms if delay_ms is None else delay_ms,
        )

    def _fetch(uid):
        # Expire cached state so each attempt really re-reads the row
        db.session.expire_all()
        return get_profile(uid)

    return poll_for(_fetch, account_id, policy, sleep=sleep)
