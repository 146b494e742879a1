"""
auth/dependencies.py -- Authorization gate and its FastAPI Depends() adapters.

authorize() is the pure rank check: it looks only at claims that an earlier
step already attached, never at the token and never at the database.

FastAPI adapters, in pipeline order:
  authenticate         -- reads the session token from the "jwt" cookie, or
                          from an Authorization: Bearer header, parses it into
                          LoginClaims and attaches them to request.state.claims.
                          Raises LoginRequired when no token is present.
  require_rank(rank)   -- gate over request.state.claims only.

Usage:
    @router.get("/users", dependencies=[Depends(authenticate), Depends(require_rank(ADMIN_RANK))])

Layer rule: no imports from cache/ or mail/. auth/dependencies.py may import
from fastapi because this module is part of the FastAPI dependency injection
system.
"""

from __future__ import annotations

from fastapi import Request

from auth.claims import LoginClaims
from auth.errors import LoginRequired, PermissionDenied, RoleKeyMissing
from auth.registry import RoleRegistry


def authorize(claims: LoginClaims | None, required_rank: int) -> LoginClaims:
    """Return claims unchanged if their role rank reaches required_rank.

    Raises RoleKeyMissing when no claims are attached and PermissionDenied
    when the rank is too low. Never compares role names.
    """
    if claims is None:
        raise RoleKeyMissing()
    if not RoleRegistry.satisfies(claims.role_rank, required_rank):
        raise PermissionDenied()
    return claims


def _token_from_request(request: Request) -> str | None:
    cookie_name = request.app.state.settings.cookie_name
    token = request.cookies.get(cookie_name)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
    return token or None


def authenticate(request: Request) -> LoginClaims:
    """Parse the session token and attach its claims to request.state.claims."""
    token = _token_from_request(request)
    if token is None:
        raise LoginRequired()
    claims = request.app.state.auth_service.parse_login_claims(token)
    request.state.claims = claims
    return claims


def require_rank(required_rank: int):
    """Build a dependency that admits requests whose attached rank >= required_rank."""

    def gate(request: Request) -> LoginClaims:
        return authorize(getattr(request.state, "claims", None), required_rank)

    gate.__name__ = f"require_rank_{required_rank}"
    return gate


# ---------------------------------------------------------------------------
# Session cookie
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, cookie_name: str, max_age: int, secure: bool = False) -> None:
    """Write the login token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST (CSRF mitigation for most cases).
    max_age matches the token's own lifetime so both expire together.
    """
    response.set_cookie(
        cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=max(0, max_age),
    )


def clear_auth_cookie(response, cookie_name: str) -> None:
    response.delete_cookie(cookie_name)
