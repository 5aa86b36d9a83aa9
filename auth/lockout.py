"""
auth/lockout.py -- Brute-force lockout state machine for one identity.

States: Active and Locked, plus the orthogonal Deactivated overlay
(is_active = False) which is always checked first.

  Active --(failure that reaches max_attempts)--> Locked
  Locked --(admin_unlock)--> Active

There is no time-based way out of Locked. A correct password supplied to a
locked account is still refused, and record_success() resets the counter
without touching the lock flag.

Every transition is a single store write, so concurrent requests for the same
user cannot interleave a read and a write. See CredentialStore.increment_failed_attempts.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from auth.models import Identity
from auth.results import AccessDecision
from core.clock import Clock, to_iso, utc_now

logger = logging.getLogger("kmportal.auth.lockout")

MAX_ATTEMPTS = 5


class LockoutPolicy:
    def __init__(self, store, max_attempts: int = MAX_ATTEMPTS, clock: Clock = utc_now) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._store = store
        self.max_attempts = max_attempts
        self._clock = clock

    def check_access(self, identity: Identity) -> AccessDecision:
        """Gate an authentication attempt before any password work is done.

        Order: deactivated, then locked, then a counter already at the
        threshold (a row written before the lock flag existed, or by an older
        deployment). The last case locks the account on the spot and reports
        ATTEMPTS_EXCEEDED.
        """
        if not identity.is_active:
            return AccessDecision.DEACTIVATED
        if identity.is_locked:
            return AccessDecision.LOCKED
        if identity.failed_login_attempts >= self.max_attempts:
            now = self._clock()
            self._store.lock(identity.id, now)
            identity.is_locked = True
            identity.locked_at = to_iso(now)
            logger.warning(
                "Account %s locked on access check (%d failed attempts)",
                identity.username,
                identity.failed_login_attempts,
            )
            return AccessDecision.ATTEMPTS_EXCEEDED
        return AccessDecision.ALLOWED

    def record_failure(self, identity: Identity) -> Identity:
        """Count one failed password attempt; lock when the count reaches max_attempts.

        Returns the identity as stored after the increment. If the row has
        vanished in the meantime the passed-in identity is returned unchanged.
        """
        updated = self._store.increment_failed_attempts(identity.id, self.max_attempts, self._clock())
        if updated is None:
            return identity
        if updated.is_locked and not identity.is_locked:
            logger.warning(
                "Account %s locked after %d failed login attempts",
                updated.username,
                updated.failed_login_attempts,
            )
        else:
            logger.info(
                "Failed login for %s (%d/%d)",
                updated.username,
                updated.failed_login_attempts,
                self.max_attempts,
            )
        return updated

    def record_success(self, identity: Identity) -> None:
        """Reset the failed-attempt counter. An existing lock stays in place."""
        self._store.reset_failed_attempts(identity.id)
        identity.failed_login_attempts = 0

    def record_login(self, identity: Identity) -> bool:
        """Commit a verified login: reset the counter and stamp last_login_at.

        Returns False, writing nothing, when the stored row no longer passes
        check_access(). A lock written by a concurrent failure while the
        password was being verified therefore refuses this login.
        """
        now = self._clock()
        if not self._store.record_login_success(identity.id, self.max_attempts, now):
            logger.warning("Login for %s refused: account state changed during verification", identity.username)
            return False
        identity.failed_login_attempts = 0
        identity.last_login_at = to_iso(now)
        return True

    def admin_unlock(self, identity: Identity) -> None:
        """Clear the lock, its timestamp and the counter. Administrative path only."""
        self._store.unlock(identity.id)
        identity.is_locked = False
        identity.locked_at = None
        identity.failed_login_attempts = 0
        logger.info("Account %s unlocked by administrator", identity.username)

    def admin_lock(self, identity: Identity) -> None:
        now = self._clock()
        self._store.lock(identity.id, now)
        identity.is_locked = True
        identity.locked_at = to_iso(now)
        logger.info("Account %s locked by administrator", identity.username)
