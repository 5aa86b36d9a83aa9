"""
api/routes/v1/auth.py -- Authentication and account administration REST endpoints.

Routes:
  POST  /api/v1/auth/login                 -- password login; access + refresh tokens
  POST  /api/v1/auth/register              -- public sign-up
  POST  /api/v1/auth/refresh               -- new access token from a refresh token
  GET   /api/v1/auth/me                    -- profile, roles, primary role (requires auth)
  POST  /api/v1/auth/logout                -- stateless acknowledgment
  GET   /api/v1/auth/roles                 -- role catalog (admin only)
  GET   /api/v1/auth/users/{id}            -- one account (admin only)
  PATCH /api/v1/auth/users/{id}            -- activate / deactivate (admin only)
  POST  /api/v1/auth/users/{id}/lock       -- administrative lock (admin only)
  POST  /api/v1/auth/users/{id}/unlock     -- administrative unlock (admin only)
  POST  /api/v1/auth/users/{id}/roles      -- grant a catalog role (admin only)

Security:
  [H2] POST /login and POST /register are rate-limited per IP.
  [C1] Unknown username and wrong password return the same 401 body; the
       service equalizes bcrypt timing between the two.
  [M4] Administrators cannot lock or deactivate their own account.
  [M5] Cache-Control: no-store on every response that carries a token.

Status mapping lives in _STATUS_BY_REASON; handlers never pick codes ad hoc.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    RegisterResponse,
    RoleDetailResponse,
    RoleGrant,
    UserPatch,
    UserResponse,
)
from auth.dependencies import get_current_identity, require_admin, try_get_current_identity
from auth.models import AuthenticatedIdentity, Identity
from auth.results import Failure, FailureReason
from auth.roles import RoleResolver
from auth.service import AuthSessionService
from auth.tokens import BEARER
from auth.validation import RegistrationInput
from core.config import get_settings

logger = logging.getLogger("kmportal.api.auth")

_settings = get_settings()

# Auth policy:
# - POST /auth/login, /auth/register, /auth/refresh, /auth/logout: public
# - GET  /auth/me:                                                  requires auth (get_current_identity)
# - everything under /auth/roles and /auth/users:                   requires admin (require_admin)
router = APIRouter()

_STATUS_BY_REASON: dict[FailureReason, int] = {
    FailureReason.VALIDATION_ERROR: 400,
    FailureReason.INVALID_ROLE: 400,
    FailureReason.USER_NOT_FOUND: 401,
    FailureReason.BAD_CREDENTIAL: 401,
    FailureReason.INVALID_TOKEN: 401,
    FailureReason.ACCOUNT_LOCKED: 403,
    FailureReason.ACCOUNT_DEACTIVATED: 403,
    FailureReason.ROLE_NOT_SELF_ASSIGNABLE: 403,
    FailureReason.REGISTRATION_DISABLED: 403,
    FailureReason.CONFLICT: 409,
}


def _service(request: Request) -> AuthSessionService:
    return request.app.state.auth_service


def _failure_response(failure: Failure, status_code: int | None = None, code: str | None = None) -> JSONResponse:
    error: dict = {"code": code or failure.reason.value, "message": failure.message}
    if failure.field_errors:
        error["fields"] = [{"field": e.field, "message": e.message} for e in failure.field_errors]
    resp = JSONResponse(status_code=status_code or _STATUS_BY_REASON[failure.reason], content={"error": error})
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _no_store(content: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=content)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; return access and refresh tokens.

    401 covers both unknown username and wrong password with one message
    and one code ("bad_credentials") [C1]. 403 means the account is locked or
    deactivated -- no password check was performed.
    """
    result = _service(request).login(body.username, body.password)
    if isinstance(result, Failure):
        if result.reason in (FailureReason.USER_NOT_FOUND, FailureReason.BAD_CREDENTIAL):
            return _failure_response(result, code="bad_credentials")
        return _failure_response(result)

    return _no_store(
        LoginResponse(
            access_token=result.access_token.value,
            refresh_token=result.refresh_token.value,
            token_type=BEARER,
            expires_in=result.access_token.expires_in,
            user=UserResponse.from_profile(result.profile),
        ).model_dump(by_alias=True)
    )


@limiter.limit(_settings.register_rate_limit)  # [H2]
@router.post("/auth/register", response_model=RegisterResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account with one self-assignable role (ROLE_EMPLOYEE when roleName is omitted)."""
    result = _service(request).register(
        RegistrationInput(
            username=body.username,
            email=body.email,
            password=body.password,
            full_name=body.full_name,
            department=body.department,
            position=body.position,
            phone_number=body.phone_number,
            role_name=body.role_name,
        )
    )
    if isinstance(result, Failure):
        return _failure_response(result)

    identity = result.identity
    message = (
        "Registration complete. You can log in now."
        if identity.is_active
        else "Registration complete. An administrator must approve the account before you can log in."
    )
    return JSONResponse(
        status_code=201,
        content=RegisterResponse(
            user_id=identity.id,
            username=identity.username,
            email=identity.email,
            full_name=identity.full_name,
            department=identity.department,
            position=identity.position,
            role_name=result.role.name,
            role_display_name=result.role.display_name,
            is_active=identity.is_active,
            created_at=identity.created_at,
            message=message,
        ).model_dump(by_alias=True),
    )


@router.post("/auth/refresh", response_model=RefreshResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new access token.

    Every failure is a 401, including a refresh token whose account has been
    locked or deactivated since it was issued. The refresh token itself is
    not rotated and stays usable until it expires.
    """
    result = _service(request).refresh(body.refresh_token)
    if isinstance(result, Failure):
        code = "invalid_token" if result.reason is FailureReason.USER_NOT_FOUND else None
        return _failure_response(result, status_code=401, code=code)
    return _no_store(
        RefreshResponse(
            access_token=result.access_token.value,
            token_type=BEARER,
            expires_in=result.access_token.expires_in,
        ).model_dump(by_alias=True)
    )


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(request: Request) -> MessageResponse:
    """Acknowledge logout. Tokens cannot be revoked server-side; the client discards them."""
    caller = try_get_current_identity(request)
    if caller is not None:
        logger.info("Logout acknowledged for %s", caller.username)
    return MessageResponse(message=_service(request).logout().message)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserResponse)
def me(request: Request, caller: AuthenticatedIdentity = Depends(get_current_identity)) -> UserResponse:
    """Return the caller's profile, roles in priority order, and primary role."""
    return UserResponse.from_profile(_service(request).profile(caller))


# ---------------------------------------------------------------------------
# Administration (admin only)
# ---------------------------------------------------------------------------


@router.get("/auth/roles", response_model=list[RoleDetailResponse])
def list_roles(request: Request, caller: AuthenticatedIdentity = Depends(require_admin)) -> list[RoleDetailResponse]:
    """List the role catalog in priority order, including deactivated roles."""
    service = _service(request)
    return [
        RoleDetailResponse(
            role_id=r.id,
            role_name=r.name,
            display_name=r.display_name,
            priority=r.priority,
            description=r.description,
            is_system_role=r.is_system_role,
            is_active=r.is_active,
            self_assignable=RoleResolver.is_self_assignable(r.name),
        )
        for r in service.store.list_roles()
    ]


@router.get("/auth/users/{user_id}", response_model=UserResponse)
def get_user(request: Request, user_id: int, caller: AuthenticatedIdentity = Depends(require_admin)) -> UserResponse:
    service = _service(request)
    identity = service.store.find_by_id(user_id)
    if identity is None:
        raise _not_found()
    return UserResponse.from_identity(identity, service.roles.resolve(identity))


@router.patch("/auth/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    caller: AuthenticatedIdentity = Depends(require_admin),
) -> UserResponse:
    """Activate (approve) or deactivate an account. Admin only.

    [M4] Blocks self-deactivation.
    """
    if body.is_active is None:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )
    if not body.is_active and user_id == caller.identity.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_deactivation", "message": "You cannot deactivate your own account."},
        )
    return _user_result(request, _service(request).set_active(user_id, body.is_active))


@router.post("/auth/users/{user_id}/lock", response_model=UserResponse)
def lock_user(request: Request, user_id: int, caller: AuthenticatedIdentity = Depends(require_admin)) -> UserResponse:
    """Lock an account immediately. Admin only. [M4] Blocks self-lock."""
    if user_id == caller.identity.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_lock", "message": "You cannot lock your own account."},
        )
    return _user_result(request, _service(request).lock(user_id))


@router.post("/auth/users/{user_id}/unlock", response_model=UserResponse)
def unlock_user(
    request: Request, user_id: int, caller: AuthenticatedIdentity = Depends(require_admin)
) -> UserResponse:
    """Clear a lock and reset the failed-attempt counter. The only way out of a lockout."""
    result = _service(request).unlock(user_id)
    if isinstance(result, Identity):
        logger.info("Account %s unlocked by %s", result.username, caller.username)
    return _user_result(request, result)


@router.post("/auth/users/{user_id}/roles", response_model=UserResponse)
def grant_role(
    request: Request,
    user_id: int,
    body: RoleGrant,
    caller: AuthenticatedIdentity = Depends(require_admin),
) -> UserResponse | JSONResponse:
    """Grant any active catalog role. The self-assignable restriction does not apply here."""
    service = _service(request)
    result = service.grant_role(user_id, body.role_name)
    if isinstance(result, Failure):
        if result.reason is FailureReason.USER_NOT_FOUND:
            raise _not_found()
        return _failure_response(result)
    identity = service.store.find_by_id(user_id)
    return UserResponse.from_identity(identity, service.roles.resolve(identity))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})


def _user_result(request: Request, result: Identity | Failure | None) -> UserResponse:
    if result is None or isinstance(result, Failure):
        raise _not_found()
    return UserResponse.from_identity(result, _service(request).roles.resolve(result))
