"""
tests/test_auth_service.py -- AuthService: login, local registration, OAuth linking.

Coverage:
  - login token claims mirror the stored role
  - unknown email vs wrong password vs OAuth-only account
  - [C1] timing equalization: unknown email still runs bcrypt
  - registration validation order and uniqueness
  - OAuth scenario: Alice via Google, then LINE with another subject -> same account
  - the oauth_link_by_email policy switch
  - login_oauth ties the session lifetime to the upstream assertion
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import patch

import pytest

from auth.claims import LoginClaims
from auth.errors import (
    AccountLinkRefused,
    EmailNotAllowed,
    NameNotAllowed,
    PasswordNotAllowed,
    PasswordNotMatched,
    RoleNotFound,
    TokenExpired,
    UserAlreadyExists,
    UserNotFound,
)
from auth.models import OAuthIdentity
from auth.registry import PlatformName, RoleName
from auth.service import AuthService

PASSWORD = "correct horse battery"


class TestLogin:
    def test_token_carries_stored_role(self, auth_service, alice) -> None:
        token = auth_service.login("alice@example.com", PASSWORD)
        claims = auth_service.parse_login_claims(token)
        assert isinstance(claims, LoginClaims)
        assert claims.id == alice.id
        assert claims.role_name == alice.role.name
        assert claims.role_rank == alice.role.rank
        assert claims.is_verified is False

    def test_token_lifetime_is_one_hour(self, auth_service, alice, clock, codec) -> None:
        claims = auth_service.parse_login_claims(auth_service.login("alice@example.com", PASSWORD))
        assert claims.exp == codec.expiry(timedelta(hours=1))

    def test_wrong_password(self, auth_service, alice) -> None:
        with pytest.raises(PasswordNotMatched):
            auth_service.login("alice@example.com", "wrong")

    def test_unknown_email_burns_bcrypt(self, auth_service) -> None:
        with patch.object(auth_service.hasher, "burn", wraps=auth_service.hasher.burn) as burn:
            with pytest.raises(UserNotFound):
                auth_service.login("nobody@example.com", PASSWORD)
        burn.assert_called_once_with(PASSWORD)

    def test_email_whitespace_ignored(self, auth_service, alice) -> None:
        token = auth_service.login("  alice@example.com ", PASSWORD)
        assert auth_service.parse_login_claims(token).id == alice.id

    def test_oauth_only_account_cannot_password_login(self, auth_service) -> None:
        auth_service.register_or_link_oauth_guest("Bob", "bob@example.com", "sub-9", PlatformName.GOOGLE)
        with pytest.raises(PasswordNotMatched):
            auth_service.login("bob@example.com", "")


class TestRegisterLocalUser:
    def test_creates_guest_on_self(self, alice) -> None:
        assert alice.role.name == RoleName.GUEST.value
        assert alice.platform.name == PlatformName.SELF.value
        assert alice.hashed_password and alice.hashed_password != PASSWORD
        assert alice.external_id is None

    def test_duplicate_email(self, auth_service, alice) -> None:
        with pytest.raises(UserAlreadyExists):
            auth_service.register_local_user("Alice Again", "alice@example.com", "another")

    def test_existence_checked_before_validation(self, auth_service, alice) -> None:
        with pytest.raises(UserAlreadyExists):
            auth_service.register_local_user("", "alice@example.com", "")

    @pytest.mark.parametrize(
        ("name", "email", "password", "error"),
        [
            ("  ", "x@example.com", "pw", NameNotAllowed),
            ("X", "not-an-email", "pw", EmailNotAllowed),
            ("X", "x@example.com", "", PasswordNotAllowed),
            ("X", "x@example.com", "a" * 73, PasswordNotAllowed),
            ("X", "x@example.com", "é" * 37, PasswordNotAllowed),
        ],
    )
    def test_validation(self, auth_service, name, email, password, error) -> None:
        with pytest.raises(error):
            auth_service.register_local_user(name, email, password)

    def test_72_byte_password_accepted(self, auth_service) -> None:
        user = auth_service.register_local_user("X", "x@example.com", "a" * 72)
        assert auth_service.login("x@example.com", "a" * 72)
        assert user.id is not None

    def test_explicit_role(self, auth_service) -> None:
        user = auth_service.register_local_user("Ops", "ops@example.com", "pw", role=RoleName.ADMIN)
        assert user.role.rank == 500
        with pytest.raises(RoleNotFound):
            auth_service.register_local_user("Ops", "ops2@example.com", "pw", role="owner")


class TestOAuthLinking:
    def test_alice_google_then_line_returns_same_account(self, auth_service) -> None:
        first = auth_service.register_or_link_oauth_guest("Alice", "alice@x.com", "sub-1", PlatformName.GOOGLE)
        second = auth_service.register_or_link_oauth_guest("Alice", "alice@x.com", "sub-2", PlatformName.LINE)
        assert second.id == first.id
        assert second.platform.name == "Google"
        assert second.external_id == "sub-1"
        assert second.role.name == "guest"

    def test_existing_local_account_returned(self, auth_service, alice) -> None:
        linked = auth_service.register_or_link_oauth_guest("A", "alice@example.com", "sub-1", PlatformName.GOOGLE)
        assert linked.id == alice.id
        assert linked.platform.name == "Self"

    def test_verified_assertion_activates(self, auth_service, alice) -> None:
        linked = auth_service.register_or_link_oauth_guest(
            "A", "alice@example.com", "sub-1", PlatformName.GOOGLE, email_verified=True
        )
        assert linked.is_verified is True

    def test_unverified_assertion_leaves_flag(self, auth_service) -> None:
        user = auth_service.register_or_link_oauth_guest("Bob", "bob@example.com", "sub-1", "Google")
        assert user.is_verified is False
        assert user.hashed_password is None

    def test_link_policy_off_refuses_cross_platform(self, user_store, codec, hasher, clock) -> None:
        strict = AuthService(user_store, codec, hasher, clock=clock, link_by_email=False)
        strict.register_or_link_oauth_guest("Alice", "alice@x.com", "sub-1", PlatformName.GOOGLE)
        assert strict.register_or_link_oauth_guest("Alice", "alice@x.com", "sub-1", PlatformName.GOOGLE).id
        with pytest.raises(AccountLinkRefused):
            strict.register_or_link_oauth_guest("Alice", "alice@x.com", "sub-2", PlatformName.LINE)

    def test_known_subject_with_new_email_returns_linked_account(self, auth_service, user_store) -> None:
        first = auth_service.register_or_link_oauth_guest("Carol", "carol@x.com", "U-1", PlatformName.LINE)
        again = auth_service.register_or_link_oauth_guest("Carol", "carol@new.example.com", "U-1", PlatformName.LINE)
        assert again.id == first.id
        assert again.email == "carol@x.com"
        assert len(user_store.list_users()) == 1


class TestLoginOAuth:
    def _identity(self, clock, **overrides) -> OAuthIdentity:
        values = dict(
            name="Carol",
            email="carol@example.com",
            subject="U42",
            platform="LINE",
            email_verified=True,
            expires_at=clock.now() + timedelta(minutes=30),
        )
        values.update(overrides)
        return OAuthIdentity(**values)

    def test_session_ends_with_upstream_assertion(self, auth_service, clock, codec) -> None:
        token = auth_service.login_oauth(self._identity(clock))
        claims = auth_service.parse_login_claims(token)
        assert claims.exp == codec.expiry(timedelta(minutes=30))
        assert claims.is_verified is True
        clock.advance(minutes=31)
        with pytest.raises(TokenExpired):
            auth_service.parse_login_claims(token)

    def test_lapsed_assertion_rejected(self, auth_service, clock, user_store) -> None:
        with pytest.raises(TokenExpired):
            auth_service.login_oauth(self._identity(clock, expires_at=clock.now()))
        with pytest.raises(UserNotFound):
            user_store.find_by_email("carol@example.com")
