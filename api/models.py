"""
API request and response models for TripDesk REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are kept
separate from the dataclasses in auth/models.py, which own the internal domain
representation. Route handlers map between the two.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from auth.models import SessionIdentity, User

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class AccountTypeEnum(str, Enum):
    AGENCY = "AGENCY"
    DMC = "DMC"


class AccountStatusEnum(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    Fields are plain strings on purpose: shape checks happen inside
    authenticate() so a malformed email gets the same generic 401 as a wrong
    password.
    """

    email: str = Field(max_length=320)
    password: str = Field(max_length=128)


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=2, max_length=255)
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    company_name: str = Field(min_length=2, max_length=255)
    account_type: AccountTypeEnum


class ForgotPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/forgot-password.

    Plain unbounded string: a malformed or oversized address gets the same
    acknowledgement as an unknown one, never a 422.
    """

    email: str


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/reset-password.

    token is unbounded: an empty or oversized value is just another unknown
    token and answers 400 "Invalid or expired reset token.".
    """

    token: str
    password: str = Field(max_length=128)


class StaffCreate(BaseModel):
    """Request body for POST /api/v1/agencies/{agency_id}/users."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=2, max_length=255)
    email: EmailStr
    password: str = Field(max_length=128)


class AdminCreate(StaffCreate):
    """Request body for POST /api/v1/admin/admins."""


class UserStatusUpdate(BaseModel):
    """Request body for PATCH /api/v1/admin/users/{user_id}/status."""

    status: AccountStatusEnum


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorResponse(BaseModel):
    """Error body returned on every 4xx/5xx.

    Flat so that clients of the password endpoints can read `message`
    directly, and uniform across all routes.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class IdentityResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    email: str
    role: str
    tenant_id: Optional[int] = None

    @classmethod
    def from_identity(cls, identity: SessionIdentity) -> "IdentityResponse":
        return cls(
            user_id=identity.user_id,
            email=identity.email,
            role=identity.role,
            tenant_id=identity.tenant_id,
        )


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str
    expires_in: int
    user: IdentityResponse


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    role: str
    tenant_id: Optional[int]
    display_name: Optional[str]
    is_active: bool
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            role=user.role,
            tenant_id=user.tenant_id,
            display_name=user.display_name,
            is_active=user.is_active,
            created_at=user.created_at or "",
        )


class SignupResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    user: UserResponse


class AgencyResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    created_at: str
    member_count: int


class ResetTokenStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid: bool


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
