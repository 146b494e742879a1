"""
api/routes/v1/auth.py -- Authentication, email verification and password reset endpoints.

Routes:
  POST /api/v1/auth/register                   -- create a local Guest account
  POST /api/v1/auth/login                      -- password login; sets jwt cookie
  POST /api/v1/auth/logout                     -- clears cookie; 200
  GET  /api/v1/auth/me                         -- current session claims (requires auth)
  GET  /api/v1/auth/providers                  -- list enabled OAuth providers (public)
  POST /api/v1/auth/verification/token         -- verification token for the caller (requires auth)
  POST /api/v1/auth/verification/email         -- mail a verification code for a token
  POST /api/v1/auth/verification/confirm       -- token + code -> verified
  POST /api/v1/auth/reset-password/token       -- reset token for an email
  POST /api/v1/auth/reset-password/email       -- mail a reset code for a token
  POST /api/v1/auth/reset-password/confirm     -- token + code + new password

Every failure raised by the service layer is an AuthError and is rendered by
the handler in api/main.py; routes never build error responses themselves.

Security:
  [H2] POST /login is rate-limited per IP (Settings.login_rate_limit). Every
       endpoint that sends mail shares Settings.email_rate_limit.
  [C1] AuthService.login() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on responses that carry tokens.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import email_limit, limiter, login_limit
from api.models import (
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    OAuthProviderInfo,
    RegisterRequest,
    ResetPasswordRequest,
    ResetTokenRequest,
    TokenRequest,
    TokenResponse,
    UserResponse,
    VerifyEmailRequest,
)
from auth.claims import LoginClaims
from auth.dependencies import authenticate, clear_auth_cookie, set_auth_cookie
from auth.oauth import get_enabled_providers

# Auth policy:
# - POST /auth/register, /auth/login, /auth/logout, GET /auth/providers: public
# - GET  /auth/me, POST /auth/verification/token:   requires auth (authenticate)
# - verification email/confirm and every reset-password step: public, the
#   single-purpose token in the body is the credential
router = APIRouter()


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Registration and session
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> UserResponse:
    """Create a Guest account on the Self platform.

    Disabled with 403 when SELF_REGISTRATION_ENABLED=false; accounts are then
    created by operators through the CLI.
    """
    if not request.app.state.settings.self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self-registration is disabled."},
        )
    user = request.app.state.auth_service.register_local_user(body.name, body.email, body.password)
    return UserResponse.from_user(user)


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(login_limit)  # [H2] brute-force mitigation
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the jwt cookie.

    Unknown email -> 404 user_not_found, wrong password -> 401
    password_not_matched. Both paths cost one bcrypt verification [C1].
    """
    settings = request.app.state.settings
    token = request.app.state.auth_service.login(body.email, body.password)
    expires_in = settings.login_token_expire_seconds
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(access_token=token, expires_in=expires_in).model_dump(),
    )
    set_auth_cookie(resp, token, settings.cookie_name, expires_in, secure=settings.secure_cookies)
    return _no_store(resp)


@router.post("/auth/logout")
async def logout(request: Request) -> JSONResponse:
    """Clear the jwt cookie. Tokens are stateless; an already-copied token stays valid until exp."""
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    clear_auth_cookie(resp, request.app.state.settings.cookie_name)
    return resp


@router.get("/auth/me", response_model=MeResponse)
async def me(claims: LoginClaims = Depends(authenticate)) -> MeResponse:
    """Return the claims the authorization gate sees for this session."""
    return MeResponse(
        user_id=claims.id,
        user_name=claims.user_name,
        role_name=claims.role_name,
        role_rank=claims.role_rank,
        is_verified=claims.is_verified,
    )


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers(request: Request) -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers. Empty list when none are set up."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers(request.app.state.settings)]


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


@router.post("/auth/verification/token", response_model=TokenResponse)
def verification_token(request: Request, claims: LoginClaims = Depends(authenticate)) -> JSONResponse:
    """Issue a verification token for the signed-in user. 409 if already verified."""
    flow = request.app.state.verification
    token = flow.issue_verification_token(claims.id)
    expires_in = int(flow.token_ttl.total_seconds())
    return _no_store(JSONResponse(content=TokenResponse(token=token, expires_in=expires_in).model_dump()))


@router.post("/auth/verification/email", response_model=MessageResponse, status_code=202)
@limiter.limit(email_limit)
def verification_email(request: Request, body: TokenRequest) -> MessageResponse:
    """Mail a fresh verification code to the token's user. Earlier codes stop working."""
    request.app.state.verification.send_verification_email_by_token(body.token)
    return MessageResponse(message="Verification code sent.")


@router.post("/auth/verification/confirm", response_model=UserResponse)
def verification_confirm(request: Request, body: VerifyEmailRequest) -> UserResponse:
    """Check token and code, then mark the account verified.

    Claims in an existing session token keep is_verified=false until the next login.
    """
    user = request.app.state.verification.verify_email(body.token, body.otp)
    return UserResponse.from_user(user)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/reset-password/token", response_model=TokenResponse)
def reset_token(request: Request, body: ResetTokenRequest) -> JSONResponse:
    flow = request.app.state.reset
    token = flow.issue_reset_token(body.email)
    expires_in = int(flow.token_ttl.total_seconds())
    return _no_store(JSONResponse(content=TokenResponse(token=token, expires_in=expires_in).model_dump()))


@router.post("/auth/reset-password/email", response_model=TokenResponse, status_code=202)
@limiter.limit(email_limit)
def reset_email(request: Request, body: TokenRequest) -> JSONResponse:
    """Mail a fresh reset code. Returns the same token so the client can resend."""
    flow = request.app.state.reset
    token = flow.send_reset_email(body.token)
    expires_in = int(flow.token_ttl.total_seconds())
    return _no_store(
        JSONResponse(status_code=202, content=TokenResponse(token=token, expires_in=expires_in).model_dump())
    )


@router.post("/auth/reset-password/confirm", response_model=MessageResponse)
def reset_confirm(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    request.app.state.reset.reset_password(body.token, body.otp, body.new_password, body.confirm_password)
    return MessageResponse(message="Password has been reset.")
