"""
auth/results.py -- Tagged result types returned by the session service.

Expected outcomes (unknown user, wrong password, locked account, bad token)
are values, not exceptions. Every service operation returns either its
success dataclass or a Failure carrying a FailureReason; route handlers map
the reason to an HTTP status in one place (api/routes/v1/auth.py).

Exceptions are reserved for genuinely unexpected faults: database errors
propagate, and the two invariant violations below are raised when the data
is corrupt rather than when a user makes a mistake.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from auth.models import Identity, Role


class FailureReason(str, Enum):
    VALIDATION_ERROR = "validation_error"
    CONFLICT = "conflict"
    USER_NOT_FOUND = "user_not_found"
    BAD_CREDENTIAL = "bad_credential"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_DEACTIVATED = "account_deactivated"
    INVALID_ROLE = "invalid_role"
    ROLE_NOT_SELF_ASSIGNABLE = "role_not_self_assignable"
    REGISTRATION_DISABLED = "registration_disabled"
    INVALID_TOKEN = "invalid_token"


class AccessDecision(str, Enum):
    """Outcome of LockoutPolicy.check_access().

    ATTEMPTS_EXCEEDED is a LOCKED variant: the counter was already at the
    threshold and the lock was applied during this very check. It exists only
    so the caller can word the message differently.
    """

    ALLOWED = "allowed"
    DEACTIVATED = "deactivated"
    LOCKED = "locked"
    ATTEMPTS_EXCEEDED = "attempts_exceeded"


class TokenError(str, Enum):
    MALFORMED = "malformed"
    EXPIRED = "expired"
    SIGNATURE_INVALID = "signature_invalid"


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


@dataclass(frozen=True)
class Failure:
    reason: FailureReason
    message: str
    field_errors: list[FieldError] = field(default_factory=list)


@dataclass(frozen=True)
class Token:
    """An encoded bearer token plus its lifetime metadata."""

    value: str
    token_type: str  # "access" | "refresh"
    expires_in: int  # seconds
    expires_at: str  # ISO 8601


@dataclass(frozen=True)
class Profile:
    """Read model returned to the caller after login and from /auth/me."""

    identity: Identity
    roles: list[Role]

    @property
    def primary_role(self) -> Role | None:
        return self.roles[0] if self.roles else None


@dataclass(frozen=True)
class LoginSuccess:
    access_token: Token
    refresh_token: Token
    profile: Profile


@dataclass(frozen=True)
class RefreshSuccess:
    access_token: Token


@dataclass(frozen=True)
class RegisterSuccess:
    identity: Identity
    role: Role

    @property
    def identity_id(self) -> int | None:
        return self.identity.id


@dataclass(frozen=True)
class LogoutAck:
    message: str = "Logged out. Discard your tokens; they remain valid until they expire."


LoginResult = Union[LoginSuccess, Failure]
RefreshResult = Union[RefreshSuccess, Failure]
RegisterResult = Union[RegisterSuccess, Failure]


# ---------------------------------------------------------------------------
# Invariant violations
# ---------------------------------------------------------------------------


class NoRoleError(RuntimeError):
    """An identity has no roles. Registration guarantees at least one."""

    def __init__(self, username: str) -> None:
        self.username = username
        super().__init__(f"Identity {username!r} holds no roles")


class StaleIdentityError(RuntimeError):
    """CredentialStore.save() lost an optimistic-concurrency race."""

    def __init__(self, identity_id: int | None, expected_version: int) -> None:
        self.identity_id = identity_id
        self.expected_version = expected_version
        super().__init__(f"Identity {identity_id} changed since version {expected_version} was read")
