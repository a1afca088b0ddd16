"""Profile read-after-write polling tests."""

import pytest
from sqlalchemy.exc import OperationalError

from conftest import make_account
from extensions import db
from models import Account
from services.accounts import materialize_profile
from services.profiles import (
    ProfileNotFoundAfterRetries,
    RetryPolicy,
    await_profile,
    poll_for,
)


class FakeProfileStore:
    """Returns nothing until the *appears_on*-th read."""

    def __init__(self, appears_on=None, profile="profile"):
        self.appears_on = appears_on
        self.profile = profile
        self.reads = 0

    def fetch(self, account_id):
        self.reads += 1
        if self.appears_on is not None and self.reads >= self.appears_on:
            return self.profile
        return None


class SleepRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 5
        assert policy.delay_ms == 100

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    def test_rejects_negative_delay(self):
        with pytest.raises(ValueError):
            RetryPolicy(delay_ms=-1)

    def test_from_config(self, app):
        policy = RetryPolicy.from_config(app.config["PROFILE_POLLING"])
        assert policy == RetryPolicy(max_attempts=2, delay_ms=0)

    def test_from_missing_config(self):
        assert RetryPolicy.from_config(None) == RetryPolicy()


class TestPollFor:
    def test_profile_appearing_on_last_attempt(self, ctx):
        store = FakeProfileStore(appears_on=3)
        sleep = SleepRecorder()
        found = poll_for(store.fetch, "u1", RetryPolicy(max_attempts=3, delay_ms=10), sleep=sleep)
        assert found == "profile"
        assert store.reads == 3
        assert sleep.calls == [0.01, 0.01]

    def test_profile_never_appearing(self, ctx):
        store = FakeProfileStore()
        sleep = SleepRecorder()
        with pytest.raises(ProfileNotFoundAfterRetries) as exc_info:
            poll_for(store.fetch, "u2", RetryPolicy(max_attempts=2, delay_ms=10), sleep=sleep)
        assert exc_info.value.attempts == 2
        assert exc_info.value.account_id == "u2"
        assert store.reads == 2
        # no wait after the final attempt
        assert sleep.calls == [0.01]

    def test_immediate_hit_does_not_sleep(self, ctx):
        store = FakeProfileStore(appears_on=1)
        sleep = SleepRecorder()
        poll_for(store.fetch, "u1", RetryPolicy(max_attempts=5, delay_ms=100), sleep=sleep)
        assert sleep.calls == []

    def test_read_error_counts_as_attempt(self, ctx):
        reads = []

        def flaky(account_id):
            reads.append(account_id)
            if len(reads) == 1:
                raise OperationalError("SELECT", {}, Exception("database is locked"))
            return "profile"

        found = poll_for(flaky, "u1", RetryPolicy(max_attempts=3, delay_ms=0), sleep=SleepRecorder())
        assert found == "profile"
        assert len(reads) == 2

    def test_read_errors_exhaust_attempts(self, ctx):
        def broken(account_id):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        with pytest.raises(ProfileNotFoundAfterRetries):
            poll_for(broken, "u1", RetryPolicy(max_attempts=2, delay_ms=0), sleep=SleepRecorder())


class TestAwaitProfile:
    def test_existing_profile(self, ctx):
        make_account("u1", "u1@example.com", "patient", display_name="田中太郎")
        profile = await_profile("u1", max_attempts=1, delay_ms=0)
        assert profile.role == "patient"

    def test_profile_written_between_attempts(self, ctx):
        account = Account(uid="u3", email="u3@example.com", password_hash="x")
        db.session.add(account)
        db.session.commit()

        def sleep(seconds):
            # the profile writer finishes while the caller waits
            materialize_profile(account, "clinic", clinic_name="佐藤クリニック")
            db.session.commit()

        profile = await_profile("u3", max_attempts=3, delay_ms=10, sleep=sleep)
        assert profile.role == "clinic"

    def test_missing_profile(self, ctx):
        sleep = SleepRecorder()
        with pytest.raises(ProfileNotFoundAfterRetries):
            await_profile("ghost", max_attempts=2, delay_ms=10, sleep=sleep)
        assert len(sleep.calls) == 1

    def test_policy_overrides(self, ctx):
        sleep = SleepRecorder()
        with pytest.raises(ProfileNotFoundAfterRetries) as exc_info:
            await_profile("ghost", policy=RetryPolicy(max_attempts=4, delay_ms=0),
                          max_attempts=3, sleep=sleep)
        assert exc_info.value.attempts == 3
