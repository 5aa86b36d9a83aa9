"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Only one auth method is accepted: an access token in the
"Authorization: Bearer <token>" header. The result is an explicit
AuthenticatedIdentity value handed to the route -- there is no ambient
"current user" context.

try_get_current_identity() is the soft variant (returns None on failure).
get_current_identity() wraps it and raises HTTP 401 if unauthenticated.
require_admin() wraps get_current_identity() and raises HTTP 403 unless the
caller holds an administrative role.

Layer rule: auth/dependencies.py may import from fastapi because this module
is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import AuthenticatedIdentity
from auth.results import Failure, FailureReason
from auth.roles import RoleResolver
from auth.service import AuthSessionService


def bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _resolve(request: Request) -> AuthenticatedIdentity | Failure | None:
    token = bearer_token(request)
    if token is None:
        return None
    service: AuthSessionService = request.app.state.auth_service
    return service.current_identity(token)


def try_get_current_identity(request: Request) -> AuthenticatedIdentity | None:
    """Authenticate the request via its Bearer header.

    Returns the AuthenticatedIdentity on success, None on any failure.
    Never raises -- callers that need a hard 401 should use get_current_identity().
    """
    result = _resolve(request)
    return result if isinstance(result, AuthenticatedIdentity) else None


def get_current_identity(request: Request) -> AuthenticatedIdentity:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    A token belonging to a locked or deactivated account is also a 401: the
    token no longer authenticates anyone.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(caller: AuthenticatedIdentity = Depends(get_current_identity)): ...
    """
    result = _resolve(request)
    if isinstance(result, AuthenticatedIdentity):
        return result
    message = "Authentication required."
    if isinstance(result, Failure) and result.reason in (
        FailureReason.ACCOUNT_LOCKED,
        FailureReason.ACCOUNT_DEACTIVATED,
    ):
        message = result.message
    raise HTTPException(
        status_code=401,
        detail={"code": "unauthorized", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def require_admin(request: Request) -> AuthenticatedIdentity:
    """Require an administrative role. Raises HTTP 401 if unauthenticated, HTTP 403 otherwise.

    Use as a FastAPI dependency:
        @router.post("/admin-only")
        async def route(caller: AuthenticatedIdentity = Depends(require_admin)): ...
    """
    caller = get_current_identity(request)
    if not RoleResolver.is_administrative(caller.roles):
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Administrator access required."},
        )
    return caller
