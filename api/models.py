"""
API request and response models for Passport REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from auth.authorities import effective_authorities
from auth.models import Profile, Role, User
from auth.service import UserInfo

# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    password: str = Field(min_length=1, max_length=255)


class ChangePasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/change-password.

    The new password is compared with the current one as plaintext here,
    before anything is hashed.
    """

    current_password: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=8, max_length=20)

    @model_validator(mode="after")
    def passwords_differ(self) -> "ChangePasswordRequest":
        if self.current_password == self.new_password:
            raise ValueError("new_password must be different from current_password")
        return self


class RequestResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/request-reset-password."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr


class ConfirmResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/reset."""

    token: str = Field(min_length=1, max_length=64)
    recovery_password: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class UserInfoResponse(BaseModel):
    """Public projection of the authenticated user."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    name: str
    email: str
    profiles: list[str]
    roles: list[str]

    @classmethod
    def from_info(cls, info: UserInfo) -> "UserInfoResponse":
        return cls(
            id=info.id,
            username=info.username,
            name=info.name,
            email=info.email,
            profiles=list(info.profiles),
            roles=list(info.roles),
        )


class LoginResponse(BaseModel):
    """Response body for a successful POST /api/v1/auth/login."""

    model_config = ConfigDict(frozen=True)

    token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserInfoResponse


# ---------------------------------------------------------------------------
# Administration -- request models
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users. The password is generated server-side."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=4, max_length=15)
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    profile_ids: set[int] = Field(min_length=1)


class UserUpdate(BaseModel):
    """Request body for PUT /api/v1/users/{id}. Omit profile_ids to keep the current ones."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    profile_ids: Optional[set[int]] = None


class AssignProfilesRequest(BaseModel):
    profile_ids: set[int] = Field(min_length=1)


class ProfileCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    role_ids: set[int] = Field(min_length=1)


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    role_ids: set[int] = Field(default_factory=set)


class AssignRolesRequest(BaseModel):
    role_ids: set[int] = Field(min_length=1)


class RoleCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=3, max_length=50)


# ---------------------------------------------------------------------------
# Administration -- response models
# ---------------------------------------------------------------------------


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        return cls(id=role.id, name=role.name)


class ProfileResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    disabled: bool
    roles: list[RoleResponse]

    @classmethod
    def from_profile(cls, profile: Profile) -> "ProfileResponse":
        return cls(
            id=profile.id,
            name=profile.name,
            disabled=profile.disabled,
            roles=[RoleResponse.from_role(r) for r in profile.roles],
        )


class ProfileInfo(BaseModel):
    """Profile summary embedded in a UserResponse."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    disabled: bool


class UserResponse(BaseModel):
    """Administrative view of a user. The password digest is never exposed."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    name: str
    email: str
    disabled: bool
    profiles: list[ProfileInfo]
    roles: list[str]
    created_at: str
    updated_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        """Factory Method: the mapping lives next to the output model."""
        return cls(
            id=user.id,
            username=user.username,
            name=user.name,
            email=user.email,
            disabled=user.disabled,
            profiles=[ProfileInfo(id=p.id, name=p.name, disabled=p.disabled) for p in user.profiles],
            roles=sorted(effective_authorities(user)),
            created_at=user.created_at or "",
            updated_at=user.updated_at or "",
        )


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
