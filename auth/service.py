"""
auth/service.py -- AuthSessionService: login, registration, refresh, logout.

The service is stateless across calls. Everything durable lives in the
identity row; everything else is composed from the pieces below:

  CredentialStore   lookups and writes          (auth/store.py)
  LockoutPolicy     access gate + counters      (auth/lockout.py)
  RoleResolver      role ordering + catalog     (auth/roles.py)
  TokenIssuer       access/refresh tokens       (auth/tokens.py)
  TokenValidator    signature/expiry/subject    (auth/tokens.py)

Every public method returns a tagged result (auth/results.py). A Failure is an
expected outcome; only I/O faults and invariant violations raise.

Login attempt:  lookup -> access check -> password verify -> {failure | success} -> tokens
  - An unknown username still pays for one bcrypt comparison against
    DUMMY_HASH so response time does not reveal which usernames exist [C1].
  - A locked or deactivated account is refused before the password is
    checked, even when the password is correct.
  - The success write only matches a row that still passes the gate, so a
    lock that lands during password verification refuses the login too.

Refresh: the refresh token is revalidated against the current identity
(which may have been locked since issue) and a new access token is issued.
The refresh token is not rotated; it stays usable until its own expiry.

Logout: bearer tokens cannot be revoked server-side in this design. Logout
is an acknowledgment; clients discard their tokens.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from sqlalchemy.exc import IntegrityError

from auth.lockout import LockoutPolicy
from auth.models import AuthenticatedIdentity, Identity, Role
from auth.passwords import DUMMY_HASH, hash_password, verify_password
from auth.results import (
    AccessDecision,
    Failure,
    FailureReason,
    LoginResult,
    LoginSuccess,
    LogoutAck,
    NoRoleError,
    Profile,
    RefreshResult,
    RefreshSuccess,
    RegisterResult,
    RegisterSuccess,
    TokenError,
)
from auth.roles import ROLE_CATALOG, RoleResolver
from auth.store import CredentialStore
from auth.tokens import ACCESS_TOKEN, REFRESH_TOKEN, SecretKeyProvider, TokenIssuer, TokenValidator
from auth.validation import RegistrationInput, validate_registration
from core.clock import Clock, utc_now
from core.config import Settings

logger = logging.getLogger("kmportal.auth")

_BAD_LOGIN_MESSAGE = "Invalid username or password."

_ACCESS_FAILURES: dict[AccessDecision, tuple[FailureReason, str]] = {
    AccessDecision.DEACTIVATED: (
        FailureReason.ACCOUNT_DEACTIVATED,
        "This account is deactivated. Contact an administrator.",
    ),
    AccessDecision.LOCKED: (
        FailureReason.ACCOUNT_LOCKED,
        "This account is locked. Contact an administrator.",
    ),
    AccessDecision.ATTEMPTS_EXCEEDED: (
        FailureReason.ACCOUNT_LOCKED,
        "Too many failed login attempts. This account is now locked; contact an administrator.",
    ),
}


class AuthSessionService:
    def __init__(
        self,
        store: CredentialStore,
        roles: RoleResolver,
        lockout: LockoutPolicy,
        issuer: TokenIssuer,
        validator: TokenValidator,
        *,
        self_registration_enabled: bool = True,
        restrict_self_assigned_roles: bool = True,
        activate_on_registration: bool = True,
        password_hasher: Callable[[str], str] = hash_password,
        password_verifier: Callable[[str, str], bool] = verify_password,
    ) -> None:
        self.store = store
        self.roles = roles
        self.lockout = lockout
        self.issuer = issuer
        self.validator = validator
        self._self_registration_enabled = self_registration_enabled
        self._restrict_self_assigned_roles = restrict_self_assigned_roles
        self._activate_on_registration = activate_on_registration
        self._hash = password_hasher
        self._verify = password_verifier

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, username: str, password: str) -> LoginResult:
        identity = self.store.find_by_username(username)
        if identity is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            self._verify(password, DUMMY_HASH)
            logger.info("Login failed: unknown user %r", username)
            return Failure(FailureReason.USER_NOT_FOUND, _BAD_LOGIN_MESSAGE)

        decision = self.lockout.check_access(identity)
        if decision is not AccessDecision.ALLOWED:
            logger.info("Login refused for %s: %s", identity.username, decision.value)
            return _access_failure(decision)

        if not self._verify(password, identity.password_hash):
            self.lockout.record_failure(identity)
            return Failure(FailureReason.BAD_CREDENTIAL, _BAD_LOGIN_MESSAGE)

        if not self.lockout.record_login(identity):
            return self._refused_after_verify(identity)
        identity = self.store.find_by_id(identity.id) or identity

        roles = self.roles.resolve(identity)
        if not roles:
            raise NoRoleError(identity.username)
        access = self.issuer.issue_access(identity, roles)
        refresh = self.issuer.issue_refresh(identity.username)
        logger.info("Login succeeded for %s", identity.username)
        return LoginSuccess(access_token=access, refresh_token=refresh, profile=Profile(identity, roles))

    def _refused_after_verify(self, identity: Identity) -> Failure:
        """Re-run the access gate on the stored row after a conditional success write missed."""
        current = self.store.find_by_id(identity.id)
        if current is None:
            return Failure(FailureReason.USER_NOT_FOUND, _BAD_LOGIN_MESSAGE)
        decision = self.lockout.check_access(current)
        if decision is AccessDecision.ALLOWED:
            # The row changed and changed back; refuse this attempt rather than retry.
            decision = AccessDecision.LOCKED
        logger.info("Login refused for %s after verification: %s", identity.username, decision.value)
        return _access_failure(decision)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> RefreshResult:
        subject = self.validator.extract_subject(refresh_token)
        if isinstance(subject, TokenError):
            logger.info("Refresh rejected: %s token", subject.value)
            return Failure(FailureReason.INVALID_TOKEN, "Invalid or expired refresh token.")

        identity = self.store.find_by_username(subject)
        if identity is None:
            return Failure(FailureReason.USER_NOT_FOUND, "Invalid or expired refresh token.")

        # The account may have been locked or deactivated since the token was issued.
        decision = self.lockout.check_access(identity)
        if decision is not AccessDecision.ALLOWED:
            return _access_failure(decision)

        if not self.validator.validate(refresh_token, identity.username, token_type=REFRESH_TOKEN):
            return Failure(FailureReason.INVALID_TOKEN, "Invalid or expired refresh token.")

        roles = self.roles.resolve(identity)
        if not roles:
            raise NoRoleError(identity.username)
        return RefreshSuccess(access_token=self.issuer.issue_access(identity, roles))

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, data: RegistrationInput, *, self_service: bool = True) -> RegisterResult:
        """Create an identity holding exactly one role.

        self_service=True is the public sign-up path: it honours the
        registration switch and the self-assignable role restriction.
        Administrators creating accounts pass self_service=False.
        """
        if self_service and not self._self_registration_enabled:
            return Failure(FailureReason.REGISTRATION_DISABLED, "Self-registration is disabled.")

        data = data.normalized()
        errors = validate_registration(data)
        if errors:
            return Failure(FailureReason.VALIDATION_ERROR, "Registration input is invalid.", errors)

        if self.store.exists_by_username(data.username):
            logger.info("Registration rejected: username %r taken", data.username)
            return Failure(FailureReason.CONFLICT, "Username is already in use.")
        if self.store.exists_by_email(data.email):
            logger.info("Registration rejected: email already registered")
            return Failure(FailureReason.CONFLICT, "Email is already in use.")

        role = self.roles.validate_requested_role(data.role_name)
        if role is None:
            return Failure(FailureReason.INVALID_ROLE, f"Unknown or inactive role: {data.role_name}")
        if self_service and self._restrict_self_assigned_roles and not self.roles.is_self_assignable(role.name):
            return Failure(
                FailureReason.ROLE_NOT_SELF_ASSIGNABLE,
                f"{role.name} can only be granted by an administrator.",
            )

        identity = Identity(
            username=data.username,
            email=data.email,
            password_hash=self._hash(data.password),
            full_name=data.full_name,
            department=data.department,
            position=data.position,
            phone_number=data.phone_number,
            is_active=self._activate_on_registration if self_service else True,
            is_locked=False,
            failed_login_attempts=0,
        )
        try:
            saved = self.store.create_with_role(identity, role.name)
        except IntegrityError:
            # A concurrent registration claimed the username or email first.
            return Failure(FailureReason.CONFLICT, "Username or email is already in use.")
        if saved is None:
            return Failure(FailureReason.INVALID_ROLE, f"Unknown or inactive role: {role.name}")
        logger.info("Registered %s (id=%s, role=%s, active=%s)", saved.username, saved.id, role.name, saved.is_active)
        return RegisterSuccess(identity=saved, role=role)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def logout(self) -> LogoutAck:
        return LogoutAck()

    def current_identity(self, access_token: str) -> AuthenticatedIdentity | Failure:
        """Resolve a bearer access token to the identity behind it.

        Refresh tokens are refused here, as are tokens of accounts that have
        since been locked or deactivated.
        """
        subject = self.validator.extract_subject(access_token)
        if isinstance(subject, TokenError):
            return Failure(FailureReason.INVALID_TOKEN, "Invalid or expired access token.")
        identity = self.store.find_by_username(subject)
        if identity is None:
            return Failure(FailureReason.INVALID_TOKEN, "Invalid or expired access token.")
        if not self.validator.validate(access_token, identity.username, token_type=ACCESS_TOKEN):
            return Failure(FailureReason.INVALID_TOKEN, "Invalid or expired access token.")
        decision = self.lockout.check_access(identity)
        if decision is not AccessDecision.ALLOWED:
            return _access_failure(decision)
        return AuthenticatedIdentity(identity=identity, roles=self.roles.resolve(identity))

    def profile(self, caller: AuthenticatedIdentity) -> Profile:
        if not caller.roles:
            raise NoRoleError(caller.username)
        return Profile(identity=caller.identity, roles=caller.roles)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def unlock(self, identity_id: int) -> Identity | Failure:
        identity = self.store.find_by_id(identity_id)
        if identity is None:
            return Failure(FailureReason.USER_NOT_FOUND, "User not found.")
        self.lockout.admin_unlock(identity)
        return self.store.find_by_id(identity_id) or identity

    def lock(self, identity_id: int) -> Identity | Failure:
        identity = self.store.find_by_id(identity_id)
        if identity is None:
            return Failure(FailureReason.USER_NOT_FOUND, "User not found.")
        self.lockout.admin_lock(identity)
        return self.store.find_by_id(identity_id) or identity

    def set_active(self, identity_id: int, is_active: bool) -> Identity | Failure:
        if not self.store.set_active(identity_id, is_active):
            return Failure(FailureReason.USER_NOT_FOUND, "User not found.")
        logger.info("Identity %s %s", identity_id, "activated" if is_active else "deactivated")
        return self.store.find_by_id(identity_id)

    def grant_role(self, identity_id: int, role_name: str) -> Role | Failure:
        """Administrative role grant. Any active catalog role is allowed."""
        if not role_name or not role_name.strip():
            return Failure(FailureReason.INVALID_ROLE, "A role name is required.")
        identity = self.store.find_by_id(identity_id)
        if identity is None:
            return Failure(FailureReason.USER_NOT_FOUND, "User not found.")
        role = self.roles.validate_requested_role(role_name)
        if role is None:
            return Failure(FailureReason.INVALID_ROLE, f"Unknown or inactive role: {role_name}")
        self.store.assign_role(identity_id, role.name)
        logger.info("Granted %s to %s", role.name, identity.username)
        return role


def _access_failure(decision: AccessDecision) -> Failure:
    reason, message = _ACCESS_FAILURES[decision]
    return Failure(reason, message)


def build_auth_service(
    store: CredentialStore,
    settings: Settings,
    clock: Clock = utc_now,
    password_hasher: Callable[[str], str] = hash_password,
) -> AuthSessionService:
    """Wire the identity components for one store from application settings.

    Seeds the role catalog so registration can always resolve its default role.
    password_hasher lets tests swap in a low-cost bcrypt work factor.
    """
    store.seed_roles(ROLE_CATALOG.values())
    keys = SecretKeyProvider(settings.secret_key)
    return AuthSessionService(
        store=store,
        roles=RoleResolver(store),
        lockout=LockoutPolicy(store, max_attempts=settings.max_login_attempts, clock=clock),
        issuer=TokenIssuer(
            keys,
            access_ttl_seconds=settings.access_token_expire_seconds,
            refresh_ttl_seconds=settings.refresh_token_expire_seconds,
            clock=clock,
        ),
        validator=TokenValidator(keys),
        self_registration_enabled=settings.self_registration_enabled,
        restrict_self_assigned_roles=settings.restrict_self_assigned_roles,
        activate_on_registration=settings.activate_on_registration,
        password_hasher=password_hasher,
    )
