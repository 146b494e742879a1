"""
auth/service.py -- Credential login, registration and login-token issuance.

AuthService holds only injected collaborators (directory, codec, hasher,
clock) and no mutable state, so one instance serves every request.

Security notes:
  [C1] login() runs bcrypt on every path. An unknown email burns one round
       against the dummy hash before UserNotFound is raised, so the response
       time does not reveal whether the email is registered.

  [H1] OAuth accounts are keyed on email: a provider login whose email is
       already registered returns that account, whatever platform created it.
       Settings.oauth_link_by_email = False turns this off and a cross-platform
       match raises AccountLinkRefused instead.

  issue_login_token() is the only producer of LoginClaims. The authorization
  gate in auth/dependencies.py consumes exactly this shape.

Layer rule: no imports from api/, cache/, or mail/. core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from email_validator import EmailNotValidError, validate_email

from auth.claims import CLAIMS_VERSION, LoginClaims
from auth.errors import (
    AccountLinkRefused,
    EmailNotAllowed,
    NameNotAllowed,
    PasswordNotAllowed,
    PasswordNotMatched,
    TokenExpired,
    UserAlreadyExists,
    UserNotFound,
)
from auth.models import OAuthIdentity, User
from auth.passwords import PasswordHasher
from auth.registry import DEFAULT_ROLE, PlatformName, RoleName, platform_name
from auth.store import UserDirectory
from auth.tokens import TokenCodec
from core.clock import Clock

logger = logging.getLogger("authcore.auth")

LOGIN_TOKEN_TTL = timedelta(hours=1)


class AuthService:
    """Login, local and OAuth registration, session tokens.

    Usage:
        service = AuthService(store, TokenCodec(secret), PasswordHasher())
        user = service.register_local_user("Alice", "alice@example.com", "pw")
        token = service.login("alice@example.com", "pw")
        claims = service.parse_login_claims(token)
    """

    def __init__(
        self,
        directory: UserDirectory,
        codec: TokenCodec,
        hasher: PasswordHasher,
        clock: Clock | None = None,
        login_ttl: timedelta = LOGIN_TOKEN_TTL,
        link_by_email: bool = True,
    ) -> None:
        self.directory = directory
        self.codec = codec
        self.hasher = hasher
        self.clock: Clock = clock or codec.clock
        self.login_ttl = login_ttl
        self.link_by_email = link_by_email

    # ------------------------------------------------------------------
    # Local credentials
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> str:
        """Check email + password and return a login token.

        Raises UserNotFound or PasswordNotMatched. OAuth-only accounts have no
        hash and always fail with PasswordNotMatched.
        """
        try:
            user = self.directory.find_by_email(normalize_email(email))
        except UserNotFound:
            self.hasher.burn(password)  # [C1]
            raise
        if not self.hasher.verify(password, user.hashed_password):
            logger.info("Failed login for user id=%s", user.id)
            raise PasswordNotMatched()
        logger.info("User id=%s logged in", user.id)
        return self.issue_login_token(user, self.login_ttl)

    def register_local_user(
        self, name: str, email: str, password: str, role: str | RoleName = DEFAULT_ROLE
    ) -> User:
        """Create an account on the Self platform with a bcrypt hash.

        role is Guest for self-registration; the admin CLI passes others.
        """
        email = normalize_email(email)
        try:
            self.directory.find_by_email(email)
        except UserNotFound:
            pass
        else:
            raise UserAlreadyExists()

        name = (name or "").strip()
        if not name:
            raise NameNotAllowed()
        _check_email(email)
        if not password or not PasswordHasher.is_acceptable(password):
            raise PasswordNotAllowed()

        user = User(
            name=name,
            email=email,
            hashed_password=self.hasher.hash(password),
            role=self.directory.find_role_by_name(role.value if isinstance(role, RoleName) else role),
            platform=self.directory.find_platform_by_name(PlatformName.SELF.value),
        )
        saved = self.directory.save(user)
        logger.info("Registered local user id=%s", saved.id)
        return saved

    # ------------------------------------------------------------------
    # OAuth accounts
    # ------------------------------------------------------------------

    def register_or_link_oauth_guest(
        self,
        name: str,
        email: str,
        external_id: str,
        platform: str | PlatformName,
        email_verified: bool = False,
    ) -> User:
        """Return the account for email, creating a Guest on platform if none exists.

        An existing account is returned unchanged (its platform and external id
        are kept). When the provider asserts the email is verified the account
        is activated as a side effect.

        When the email is unknown but (platform, external_id) is already linked,
        the provider has changed the user's email: that account is returned
        rather than inserting a second row for the same provider subject.
        """
        platform = platform_name(platform)
        email = normalize_email(email)
        try:
            user = self.directory.find_by_email(email)
        except UserNotFound:
            user = self._find_linked(platform, external_id)
            if user is None:
                user = self._create_oauth_guest(name, email, external_id, platform, email_verified)
        else:
            if not self.link_by_email and user.platform.name != platform:
                logger.warning(
                    "Refused to link %s login to user id=%s registered via %s",
                    platform,
                    user.id,
                    user.platform.name,
                )
                raise AccountLinkRefused()
            logger.info("%s login linked to existing user id=%s", platform, user.id)

        if email_verified and not user.is_verified:
            self.directory.activate(user.id)
            user = self.directory.find_by_id(user.id)
        return user

    def _find_linked(self, platform: str, external_id: str) -> User | None:
        if not external_id:
            return None
        try:
            user = self.directory.find_by_external(platform, external_id)
        except UserNotFound:
            return None
        logger.info("%s subject already linked to user id=%s under another email", platform, user.id)
        return user

    def _create_oauth_guest(
        self, name: str, email: str, external_id: str, platform: str, email_verified: bool
    ) -> User:
        user = User(
            name=(name or "").strip() or email.split("@", 1)[0],
            email=email,
            role=self.directory.find_role_by_name(DEFAULT_ROLE.value),
            platform=self.directory.find_platform_by_name(platform),
            external_id=external_id,
            is_verified=email_verified,
        )
        try:
            saved = self.directory.save(user)
        except UserAlreadyExists:
            # A concurrent callback for the same email won the insert.
            return self.directory.find_by_email(email)
        logger.info("Registered %s guest user id=%s", platform, saved.id)
        return saved

    def login_oauth(self, identity: OAuthIdentity) -> str:
        """Register or link the identity, then issue a login token.

        The token expires together with the upstream assertion. An assertion
        that has already lapsed raises TokenExpired.
        """
        ttl = identity.expires_at - self.clock.now()
        if ttl <= timedelta(0):
            raise TokenExpired()
        user = self.register_or_link_oauth_guest(
            identity.name,
            identity.email,
            identity.subject,
            identity.platform,
            email_verified=identity.email_verified,
        )
        return self.issue_login_token(user, ttl)

    # ------------------------------------------------------------------
    # Session tokens
    # ------------------------------------------------------------------

    def issue_login_token(self, user: User, ttl: timedelta) -> str:
        claims = LoginClaims(
            ver=CLAIMS_VERSION,
            id=user.id,
            exp=self.codec.expiry(ttl),
            user_name=user.name,
            role_name=user.role.name,
            role_rank=user.role.rank,
            is_verified=user.is_verified,
        )
        return self.codec.issue(claims)

    def parse_login_claims(self, token: str) -> LoginClaims:
        return self.codec.parse(token, LoginClaims)


def normalize_email(email: str) -> str:
    """Trim surrounding whitespace. Every email lookup and insert goes through this."""
    return (email or "").strip()


def _check_email(email: str) -> None:
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError as exc:
        raise EmailNotAllowed() from exc
