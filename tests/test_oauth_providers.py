"""
tests/test_oauth_providers.py -- LINE login client (httpx MockTransport) and
Google userinfo normalization.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from auth.line import TOKEN_URL, VERIFY_URL, LineLoginClient
from auth.oauth import get_enabled_providers, google_identity
from core.config import Settings

SECRET = "test-secret-key-that-is-at-least-32-characters"
EXP = 1_767_261_600  # 2026-01-01 10:00 UTC


def _line_transport(verify_payload: dict, token_status: int = 200) -> tuple[httpx.MockTransport, list]:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if str(request.url) == TOKEN_URL:
            if token_status != 200:
                return httpx.Response(token_status, json={"error": "invalid_grant"})
            return httpx.Response(200, json={"access_token": "at", "id_token": "idt", "expires_in": 2592000})
        if str(request.url) == VERIFY_URL:
            return httpx.Response(200, json=verify_payload)
        return httpx.Response(404)

    return httpx.MockTransport(handler), seen


def _client(transport) -> LineLoginClient:
    return LineLoginClient("chan-id", "chan-secret", "https://app.example.com/cb", transport=transport)


class TestLineLogin:
    def test_authorization_url(self) -> None:
        url = _client(None).authorization_url("state-123")
        query = parse_qs(urlparse(url).query)
        assert url.startswith("https://access.line.me/oauth2/v2.1/authorize?")
        assert query["state"] == ["state-123"]
        assert query["client_id"] == ["chan-id"]
        assert query["scope"] == ["profile openid email"]

    def test_fetch_identity(self) -> None:
        transport, seen = _line_transport({"sub": "U42", "name": "Carol", "email": "carol@example.com", "exp": EXP})
        identity = asyncio.run(_client(transport).fetch_identity("code-1"))

        assert identity.subject == "U42"
        assert identity.email == "carol@example.com"
        assert identity.platform == "LINE"
        assert identity.email_verified is True
        assert identity.expires_at == datetime.fromtimestamp(EXP, tz=timezone.utc)

        token_form = parse_qs(seen[0].content.decode())
        assert token_form["code"] == ["code-1"]
        assert token_form["grant_type"] == ["authorization_code"]
        verify_form = parse_qs(seen[1].content.decode())
        assert verify_form["id_token"] == ["idt"]

    def test_missing_email_refused(self) -> None:
        transport, _ = _line_transport({"sub": "U42", "name": "Carol", "exp": EXP})
        with pytest.raises(ValueError):
            asyncio.run(_client(transport).fetch_identity("code-1"))

    def test_rejected_code(self) -> None:
        transport, _ = _line_transport({}, token_status=400)
        with pytest.raises(ValueError):
            asyncio.run(_client(transport).fetch_identity("bad"))

    def test_configured(self) -> None:
        assert _client(None).configured is True
        assert LineLoginClient("", "", "").configured is False


class TestGoogle:
    def test_identity_from_userinfo(self) -> None:
        token = {"userinfo": {"sub": "g-1", "email": "alice@x.com", "email_verified": True, "name": "Alice", "exp": EXP}}
        identity = google_identity(token)
        assert identity.platform == "Google"
        assert identity.subject == "g-1"
        assert identity.email_verified is True
        assert identity.expires_at == datetime.fromtimestamp(EXP, tz=timezone.utc)

    def test_unverified_email_kept_as_unverified(self) -> None:
        token = {"userinfo": {"sub": "g-1", "email": "alice@x.com", "exp": EXP}}
        assert google_identity(token).email_verified is False

    @pytest.mark.parametrize("token", [{}, {"userinfo": {"sub": "g-1"}}, {"userinfo": {"email": "a@x.com"}}])
    def test_incomplete_userinfo(self, token: dict) -> None:
        with pytest.raises(ValueError):
            google_identity(token)


def test_enabled_providers() -> None:
    assert get_enabled_providers(Settings(secret_key=SECRET)) == []
    settings = Settings(
        secret_key=SECRET,
        google_client_id="g",
        google_client_secret="s",
        line_client_id="l",
        line_client_secret="s",
        line_redirect_uri="https://app.example.com/cb",
    )
    assert [p["name"] for p in get_enabled_providers(settings)] == ["google", "line"]
