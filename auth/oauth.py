"""
auth/oauth.py -- Authlib OAuth/OIDC provider configuration (Google) and the
provider list shown to clients.

build_oauth() registers only providers whose client id and secret are both
configured. LINE login does not go through authlib; see auth/line.py.

Security notes:
  OAuth state parameter (CSRF protection) is handled by authlib automatically
  via Starlette SessionMiddleware. The session stores the state between the
  authorization redirect and the callback -- never trust state from query params
  alone.

  google_identity() keeps email_verified exactly as Google asserts it.
  AuthService only activates the account when it is True.

Layer rule: no imports from api/, cache/, or mail/. Import from core/
is allowed -- core/ is the kernel layer.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from authlib.integrations.starlette_client import OAuth

from auth.models import OAuthIdentity
from auth.registry import PlatformName
from core.config import Settings

logger = logging.getLogger("authcore.auth.oauth")

GOOGLE_DISCOVERY_URL = "https://accounts.google.com/.well-known/openid-configuration"

# Used when neither the id token nor the token response carries an expiry.
_FALLBACK_LIFETIME = timedelta(hours=1)


def build_oauth(settings: Settings) -> OAuth:
    """Return an authlib registry with every configured provider registered."""
    oauth = OAuth()
    if settings.google_client_id and settings.google_client_secret:
        oauth.register(
            name="google",
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            server_metadata_url=GOOGLE_DISCOVERY_URL,
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Google OAuth provider registered")
    return oauth


def get_enabled_providers(settings: Settings) -> list[dict]:
    """Return {"name", "label"} for each provider that has credentials configured.

    Used by GET /api/v1/auth/providers so clients know which buttons to render.
    """
    providers: list[dict] = []
    if settings.google_client_id and settings.google_client_secret:
        providers.append({"name": "google", "label": PlatformName.GOOGLE.value})
    if settings.line_client_id and settings.line_client_secret and settings.line_redirect_uri:
        providers.append({"name": "line", "label": PlatformName.LINE.value})
    return providers


def google_identity(token: dict, now: datetime | None = None) -> OAuthIdentity:
    """Normalize the authlib token response from Google into an OAuthIdentity.

    The id token claims arrive under token["userinfo"] (authlib parses and
    validates the id token during authorize_access_token()).

    Raises:
        ValueError: no userinfo, or the email / sub claim is missing.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError("Google OAuth: no userinfo in token response")

    email = userinfo.get("email")
    subject = userinfo.get("sub")
    if not email or not subject:
        raise ValueError("Google OAuth: missing email or sub claim in userinfo")

    return OAuthIdentity(
        name=userinfo.get("name") or email.split("@", 1)[0],
        email=email,
        subject=str(subject),
        platform=PlatformName.GOOGLE.value,
        email_verified=bool(userinfo.get("email_verified", False)),
        expires_at=_assertion_expiry(userinfo.get("exp") or token.get("expires_at"), now),
    )


def _assertion_expiry(exp, now: datetime | None) -> datetime:
    if isinstance(exp, (int, float)) and not isinstance(exp, bool):
        return datetime.fromtimestamp(exp, tz=timezone.utc)
    return (now or datetime.now(timezone.utc)) + _FALLBACK_LIFETIME
