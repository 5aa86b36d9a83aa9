"""
API request and response models for the identity REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
auth/results.py, which own the internal domain representation. Route
handlers map between the two.

Wire format is camelCase (accessToken, fullName, roleName, ...). The
alias_generator produces the camelCase names; populate_by_name lets Python
code construct models with snake_case keywords.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import Identity, Role
from auth.results import Profile


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _CamelResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Shared error envelope
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None
    fields: Optional[list[dict[str, str]]] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(_CamelModel):
    """Request body for POST /api/v1/auth/login."""

    username: str = Field(min_length=1, max_length=50)
    password: str = Field(min_length=1, max_length=255)


class RegisterRequest(_CamelModel):
    """Request body for POST /api/v1/auth/register.

    Only shape and size are checked here. Semantic rules (username charset,
    email format, password length) are enforced by auth.validation so the
    service reports them as a 400 with per-field errors.
    """

    username: str = Field(max_length=255)
    email: str = Field(max_length=255)
    password: str = Field(max_length=255)
    full_name: str = Field(max_length=255)
    department: Optional[str] = Field(default=None, max_length=100)
    position: Optional[str] = Field(default=None, max_length=50)
    phone_number: Optional[str] = Field(default=None, max_length=20)
    role_name: Optional[str] = Field(default=None, max_length=50)


class RefreshRequest(_CamelModel):
    """Request body for POST /api/v1/auth/refresh."""

    refresh_token: str = Field(min_length=1, max_length=4096)


class UserPatch(_CamelModel):
    """Request body for PATCH /api/v1/auth/users/{user_id}."""

    is_active: Optional[bool] = None


class RoleGrant(_CamelModel):
    """Request body for POST /api/v1/auth/users/{user_id}/roles."""

    role_name: str = Field(min_length=1, max_length=50)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class RoleResponse(_CamelResponse):
    role_id: Optional[int]
    role_name: str
    display_name: str
    priority: int

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        return cls(role_id=role.id, role_name=role.name, display_name=role.display_name, priority=role.priority)


class RoleDetailResponse(RoleResponse):
    description: str
    is_system_role: bool
    is_active: bool
    self_assignable: bool


class UserResponse(_CamelResponse):
    """Profile of one identity plus its roles, highest precedence first."""

    user_id: int
    username: str
    email: str
    full_name: str
    department: Optional[str]
    position: Optional[str]
    phone_number: Optional[str]
    is_active: bool
    is_locked: bool
    last_login_at: Optional[str]
    created_at: Optional[str]
    roles: list[RoleResponse]
    primary_role: Optional[str]
    primary_role_display_name: Optional[str]

    @classmethod
    def from_profile(cls, profile: Profile) -> "UserResponse":
        return cls.from_identity(profile.identity, profile.roles)

    @classmethod
    def from_identity(cls, identity: Identity, roles: list[Role]) -> "UserResponse":
        primary = roles[0] if roles else None
        return cls(
            user_id=identity.id,
            username=identity.username,
            email=identity.email,
            full_name=identity.full_name,
            department=identity.department,
            position=identity.position,
            phone_number=identity.phone_number,
            is_active=identity.is_active,
            is_locked=identity.is_locked,
            last_login_at=identity.last_login_at,
            created_at=identity.created_at,
            roles=[RoleResponse.from_role(r) for r in roles],
            primary_role=primary.name if primary else None,
            primary_role_display_name=primary.display_name if primary else None,
        )


class LoginResponse(_CamelResponse):
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int
    user: UserResponse


class RefreshResponse(_CamelResponse):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int


class RegisterResponse(_CamelResponse):
    user_id: int
    username: str
    email: str
    full_name: str
    department: Optional[str]
    position: Optional[str]
    role_name: str
    role_display_name: str
    is_active: bool
    created_at: Optional[str]
    message: str


class MessageResponse(BaseModel):
    message: str
