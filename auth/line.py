"""
auth/line.py -- LINE Login (OAuth 2.1 / OpenID Connect) over httpx.

Flow:
  1. authorization_url(state) -- browser is redirected to LINE.
  2. LINE redirects back with ?code=...&state=...; the route compares state
     with the value it stored in the session.
  3. fetch_identity(code) -- exchanges the code for tokens, then asks LINE's
     verify endpoint to validate the id token and return its claims.

The id token is checked by LINE itself (/oauth2/v2.1/verify) rather than
locally, so no JWKS handling is needed here.

LINE only returns an email when the channel has the email permission and the
user consented. The email is the account key, so a login without one is
refused. LINE does not send an email_verified claim; an email it does return
has been confirmed by LINE, so the identity is treated as verified.

Layer rule: no imports from api/, cache/, or mail/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from urllib.parse import urlencode

import httpx

from auth.models import OAuthIdentity
from auth.registry import PlatformName

logger = logging.getLogger("authcore.auth.line")

AUTHORIZE_URL = "https://access.line.me/oauth2/v2.1/authorize"
TOKEN_URL = "https://api.line.me/oauth2/v2.1/token"  # noqa: S105 -- URL, not a password
VERIFY_URL = "https://api.line.me/oauth2/v2.1/verify"
SCOPE = "profile openid email"


class LineLoginClient:
    """Minimal LINE Login client.

    Usage:
        line = LineLoginClient(client_id, client_secret, redirect_uri)
        url = line.authorization_url(state)
        identity = await line.fetch_identity(code)

    transport is for tests (httpx.MockTransport); production uses the default.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self._transport = transport
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    def authorization_url(self, state: str) -> str:
        query = urlencode(
            {
                "response_type": "code",
                "client_id": self.client_id,
                "redirect_uri": self.redirect_uri,
                "state": state,
                "scope": SCOPE,
            }
        )
        return f"{AUTHORIZE_URL}?{query}"

    async def exchange_code(self, code: str) -> dict:
        return await self._post(
            TOKEN_URL,
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
        )

    async def verify_id_token(self, id_token: str) -> dict:
        return await self._post(VERIFY_URL, {"id_token": id_token, "client_id": self.client_id})

    async def fetch_identity(self, code: str) -> OAuthIdentity:
        """Run the code exchange and id token verification.

        Raises:
            ValueError: LINE rejected a request, or the id token has no email or sub.
        """
        tokens = await self.exchange_code(code)
        id_token = tokens.get("id_token")
        if not id_token:
            raise ValueError("LINE login: token response has no id_token (is the openid scope enabled?)")

        claims = await self.verify_id_token(id_token)
        email = claims.get("email")
        subject = claims.get("sub")
        if not email or not subject:
            raise ValueError("LINE login: id token has no email or sub claim")
        exp = claims.get("exp")
        if not isinstance(exp, int):
            raise ValueError("LINE login: id token has no exp claim")

        return OAuthIdentity(
            name=claims.get("name") or email.split("@", 1)[0],
            email=email,
            subject=str(subject),
            platform=PlatformName.LINE.value,
            email_verified=True,
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        )

    async def _post(self, url: str, data: dict) -> dict:
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
                resp = await client.post(url, data=data)
                resp.raise_for_status()
                payload = resp.json()
        except httpx.HTTPStatusError as exc:
            logger.warning("LINE login: %s returned HTTP %d", url, exc.response.status_code)
            raise ValueError(f"LINE login: {url} returned HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            logger.warning("LINE login: request to %s failed: %s", url, exc)
            raise ValueError(f"LINE login: request to {url} failed") from exc
        if not isinstance(payload, dict):
            raise ValueError(f"LINE login: unexpected response from {url}")
        return payload
