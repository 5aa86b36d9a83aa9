"""Unit tests for auth/lockout.py -- LockoutPolicy state machine.

Covers:
- check_access() order: deactivated, then locked, then counter at threshold
- record_failure() locks on the max_attempts-th failure
- record_success() resets the counter but never clears a lock
- record_login() writes nothing once the stored row is locked
- admin_unlock() is the only way back to Active
"""

from datetime import datetime, timezone

import pytest

from auth.lockout import MAX_ATTEMPTS, LockoutPolicy
from auth.results import AccessDecision
from auth.roles import ROLE_CATALOG
from tests.factories import make_identity

NOW = datetime(2026, 5, 4, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def policy(store) -> LockoutPolicy:
    store.seed_roles(ROLE_CATALOG.values())
    return LockoutPolicy(store, clock=lambda: NOW)


def test_default_threshold_is_five() -> None:
    assert MAX_ATTEMPTS == 5


def test_max_attempts_must_be_positive(store) -> None:
    with pytest.raises(ValueError):
        LockoutPolicy(store, max_attempts=0)


class TestCheckAccess:
    def test_allowed(self, store, policy: LockoutPolicy) -> None:
        assert policy.check_access(make_identity(store, "sam")) is AccessDecision.ALLOWED

    def test_deactivated_wins_over_locked(self, store, policy: LockoutPolicy) -> None:
        identity = make_identity(store, "tina", is_active=False, is_locked=True)
        assert policy.check_access(identity) is AccessDecision.DEACTIVATED

    def test_locked(self, store, policy: LockoutPolicy) -> None:
        identity = make_identity(store, "uma", is_locked=True)
        assert policy.check_access(identity) is AccessDecision.LOCKED

    def test_counter_at_threshold_locks_now(self, store, policy: LockoutPolicy) -> None:
        identity = make_identity(store, "vic", failed_login_attempts=5)
        assert policy.check_access(identity) is AccessDecision.ATTEMPTS_EXCEEDED
        assert identity.is_locked is True
        stored = store.find_by_id(identity.id)
        assert stored.is_locked is True
        assert stored.locked_at == NOW.isoformat()
        assert policy.check_access(stored) is AccessDecision.LOCKED


class TestTransitions:
    def test_fifth_failure_locks(self, store, policy: LockoutPolicy) -> None:
        identity = make_identity(store, "alice")
        for expected in range(1, 5):
            identity = policy.record_failure(identity)
            assert identity.failed_login_attempts == expected
            assert identity.is_locked is False
        identity = policy.record_failure(identity)
        assert identity.failed_login_attempts == 5
        assert identity.is_locked is True
        assert identity.locked_at == NOW.isoformat()

    def test_lock_logged_at_warning(self, store, policy: LockoutPolicy, caplog) -> None:
        identity = make_identity(store, "walt", failed_login_attempts=4)
        with caplog.at_level("WARNING", logger="kmportal.auth.lockout"):
            policy.record_failure(identity)
        assert any("locked" in r.getMessage() for r in caplog.records)

    def test_success_resets_counter_only(self, store, policy: LockoutPolicy) -> None:
        identity = make_identity(store, "xena", failed_login_attempts=3, is_locked=True)
        policy.record_success(identity)
        stored = store.find_by_id(identity.id)
        assert stored.failed_login_attempts == 0
        assert stored.is_locked is True

    def test_record_login_on_admitted_row(self, store, policy: LockoutPolicy) -> None:
        identity = make_identity(store, "vera", failed_login_attempts=2)
        assert policy.record_login(identity) is True
        assert identity.last_login_at == NOW.isoformat()
        assert store.find_by_id(identity.id).failed_login_attempts == 0

    def test_record_login_refused_once_locked(self, store, policy: LockoutPolicy) -> None:
        identity = make_identity(store, "wade", failed_login_attempts=4)
        stale = store.find_by_id(identity.id)
        policy.record_failure(identity)
        assert policy.record_login(stale) is False
        stored = store.find_by_id(identity.id)
        assert (stored.is_locked, stored.failed_login_attempts, stored.last_login_at) == (True, 5, None)

    def test_admin_unlock(self, store, policy: LockoutPolicy) -> None:
        identity = make_identity(store, "yuri", failed_login_attempts=4)
        identity = policy.record_failure(identity)
        policy.admin_unlock(identity)
        stored = store.find_by_id(identity.id)
        assert (stored.is_locked, stored.locked_at, stored.failed_login_attempts) == (False, None, 0)
        assert policy.check_access(stored) is AccessDecision.ALLOWED

    def test_admin_lock(self, store, policy: LockoutPolicy) -> None:
        identity = make_identity(store, "zoe")
        policy.admin_lock(identity)
        assert policy.check_access(store.find_by_id(identity.id)) is AccessDecision.LOCKED

    def test_custom_threshold(self, store) -> None:
        store.seed_roles(ROLE_CATALOG.values())
        strict = LockoutPolicy(store, max_attempts=2, clock=lambda: NOW)
        identity = make_identity(store, "abe")
        identity = strict.record_failure(identity)
        assert not identity.is_locked
        assert strict.record_failure(identity).is_locked
