"""
api/routes/v1/oauth.py -- OAuth login redirects and callbacks.

Routes:
  GET /api/v1/auth/oauth/google/login      -- redirect to Google (authlib)
  GET /api/v1/auth/oauth/google/callback   -- code exchange, link, set cookie
  GET /api/v1/auth/oauth/line/login        -- redirect to LINE
  GET /api/v1/auth/oauth/line/callback     -- code exchange, link, set cookie

A successful callback redirects to Settings.admin_redirect_url for admin rank
and above, Settings.client_redirect_url otherwise. The session cookie lives
exactly as long as the provider's id token.

Security:
  Google state (CSRF) is stored and checked by authlib through the Starlette
  session. LINE state is generated here, stored in the same session and
  compared in constant time on the callback.
"""

from __future__ import annotations

import hmac
import logging
import secrets

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import RedirectResponse
from starlette.concurrency import run_in_threadpool

from auth.dependencies import set_auth_cookie
from auth.models import OAuthIdentity
from auth.oauth import google_identity
from auth.registry import ADMIN_RANK

logger = logging.getLogger("authcore.api.oauth")

router = APIRouter()

_LINE_STATE_KEY = "line_oauth_state"


def _oauth_failed(provider: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": "oauth_failed", "message": f"{provider} sign-in failed. Please try again."},
    )


def _complete_login(request: Request, identity: OAuthIdentity) -> RedirectResponse:
    """Link the identity, issue the session and redirect by role rank.

    Blocking: it reaches the user directory. Callbacks run it in the threadpool.
    """
    state = request.app.state
    service = state.auth_service
    token = service.login_oauth(identity)
    claims = service.parse_login_claims(token)

    target = state.settings.admin_redirect_url if claims.role_rank >= ADMIN_RANK else state.settings.client_redirect_url
    max_age = int((identity.expires_at - service.clock.now()).total_seconds())
    resp = RedirectResponse(target, status_code=302)
    set_auth_cookie(resp, token, state.settings.cookie_name, max_age, secure=state.settings.secure_cookies)
    return resp


# ---------------------------------------------------------------------------
# Google
# ---------------------------------------------------------------------------


@router.get("/auth/oauth/google/login")
async def google_login(request: Request):
    client = request.app.state.oauth.create_client("google")
    if client is None:
        raise HTTPException(status_code=404, detail={"code": "provider_disabled", "message": "Google sign-in is not configured."})
    redirect_uri = str(request.url_for("google_callback"))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/oauth/google/callback", name="google_callback")
async def google_callback(request: Request) -> RedirectResponse:
    client = request.app.state.oauth.create_client("google")
    if client is None:
        raise HTTPException(status_code=404, detail={"code": "provider_disabled", "message": "Google sign-in is not configured."})
    try:
        token = await client.authorize_access_token(request)
        identity = google_identity(token, now=request.app.state.auth_service.clock.now())
    except (OAuthError, ValueError) as exc:
        logger.warning("Google OAuth callback failed: %s", exc)
        raise _oauth_failed("Google") from exc
    return await run_in_threadpool(_complete_login, request, identity)


# ---------------------------------------------------------------------------
# LINE
# ---------------------------------------------------------------------------


@router.get("/auth/oauth/line/login")
async def line_login(request: Request) -> RedirectResponse:
    line = request.app.state.line
    if not line.configured:
        raise HTTPException(status_code=404, detail={"code": "provider_disabled", "message": "LINE sign-in is not configured."})
    state = secrets.token_urlsafe(24)
    request.session[_LINE_STATE_KEY] = state
    return RedirectResponse(line.authorization_url(state), status_code=302)


@router.get("/auth/oauth/line/callback")
async def line_callback(request: Request, code: str = "", state: str = "") -> RedirectResponse:
    line = request.app.state.line
    if not line.configured:
        raise HTTPException(status_code=404, detail={"code": "provider_disabled", "message": "LINE sign-in is not configured."})

    expected = request.session.pop(_LINE_STATE_KEY, None)
    if not expected or not state or not hmac.compare_digest(expected, state):
        logger.warning("LINE OAuth callback rejected: state mismatch")
        raise _oauth_failed("LINE")
    if not code:
        raise _oauth_failed("LINE")

    try:
        identity = await line.fetch_identity(code)
    except ValueError as exc:
        logger.warning("LINE OAuth callback failed: %s", exc)
        raise _oauth_failed("LINE") from exc
    return await run_in_threadpool(_complete_login, request, identity)
