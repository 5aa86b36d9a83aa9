"""
auth/models.py -- Domain dataclasses for identity entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; the store, lockout policy, and session service do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Identity:
    """A portal account: credentials, profile, and lockout state.

    password_hash is the bcrypt digest; the clear password never reaches this
    object. failed_login_attempts, is_locked and locked_at are owned by
    LockoutPolicy -- other code must not write them directly.

    version is the optimistic-concurrency counter. CredentialStore.save()
    refuses to overwrite a row whose version moved since this copy was read.

    Timestamps are ISO 8601 strings, set by the store.
    """

    username: str
    email: str
    password_hash: str
    full_name: str
    id: int | None = None
    department: str | None = None
    position: str | None = None
    phone_number: str | None = None
    is_active: bool = True
    is_locked: bool = False
    locked_at: str | None = None
    failed_login_attempts: int = 0
    last_login_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    version: int = 0


@dataclass(frozen=True)
class Role:
    """One entry of the role catalog.

    priority: 1..999, lower wins. The primary role of an identity is the one
    with the smallest priority among its assigned roles.
    is_system_role is fixed at creation; catalog roles are all system roles.
    """

    name: str  # "ROLE_ADMIN", "ROLE_EMPLOYEE", ...
    display_name: str
    priority: int
    description: str = ""
    is_system_role: bool = True
    is_active: bool = True
    id: int | None = None


@dataclass(frozen=True)
class AuthenticatedIdentity:
    """The caller behind a verified access token.

    Passed explicitly through route dependencies and service calls in place of
    an ambient "current user" context.
    """

    identity: Identity
    roles: list[Role] = field(default_factory=list)

    @property
    def username(self) -> str:
        return self.identity.username

    @property
    def role_names(self) -> list[str]:
        return [r.name for r in self.roles]
