"""
API request and response models for the authcore REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.

Passwords are plain str here. Length rules (1..72 bytes) are enforced by the
service layer so every caller gets the same PasswordNotAllowed error.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from auth.models import User

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: str


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    email: EmailStr
    password: str


class TokenRequest(BaseModel):
    """Body carrying a single-purpose token (verification or reset)."""

    token: str = Field(min_length=1)


class VerifyEmailRequest(BaseModel):
    """Request body for POST /api/v1/auth/verification/confirm."""

    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = Field(min_length=1)
    otp: str = Field(min_length=1, max_length=16)


class ResetTokenRequest(BaseModel):
    """Request body for POST /api/v1/auth/reset-password/token."""

    email: EmailStr


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/reset-password/confirm."""

    token: str = Field(min_length=1)
    otp: str = Field(min_length=1, max_length=16)
    new_password: str
    confirm_password: str


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    """Response for a successful login. The token is also set as the jwt cookie."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int


class TokenResponse(BaseModel):
    """A single-purpose token handed back to the client for the next step."""

    token: str
    expires_in: int


class MeResponse(BaseModel):
    """Claims of the current session, as seen by the authorization gate."""

    user_id: int
    user_name: str
    role_name: str
    role_rank: int
    is_verified: bool


class UserResponse(BaseModel):
    """Public view of a user account. The password hash is never exposed."""

    id: int
    name: str
    email: str
    role: str
    role_rank: int
    platform: str
    is_verified: bool
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role.name,
            role_rank=user.role.rank,
            platform=user.platform.name,
            is_verified=user.is_verified,
            created_at=user.created_at or "",
        )


class VerificationPushResponse(BaseModel):
    user_id: int
    admin_pushed: bool


class OAuthProviderInfo(BaseModel):
    name: str
    label: str


class MessageResponse(BaseModel):
    message: str


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
    components: dict[str, str]
