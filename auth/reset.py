"""
auth/reset.py -- Password reset: token -> OTP by mail -> new password.

The reset token identifies the account and carries purpose=password_reset;
the OTP proves control of the mailbox. Both are checked on every call to
reset_password(). Tokens are not revoked after use; the 10-minute exp and the
5-minute code window bound replay.

Layer rule: no imports from api/. cache/ and mail/ are consumed through their
Protocols only.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from auth.claims import CLAIMS_VERSION, ResetClaims
from auth.errors import PasswordMismatch, PasswordNotAllowed, SelfPlatformRequired
from auth.models import Purpose
from auth.passwords import PasswordHasher
from auth.registry import PlatformName
from auth.service import normalize_email
from auth.store import UserDirectory
from auth.tokens import TokenCodec
from cache.store import OtpStore
from mail.sender import ContentType, MailSender
from mail.templates import PASSWORD_RESET_SUBJECT, EmailTemplates

logger = logging.getLogger("authcore.auth.reset")

RESET_TOKEN_TTL = timedelta(minutes=10)


class PasswordResetFlow:
    """Three-step password reset.

    Usage:
        token = flow.issue_reset_token("alice@example.com")
        flow.send_reset_email(token)
        flow.reset_password(token, "482913", "new-pw", "new-pw")
    """

    def __init__(
        self,
        directory: UserDirectory,
        codec: TokenCodec,
        otp_store: OtpStore,
        mailer: MailSender,
        templates: EmailTemplates,
        hasher: PasswordHasher,
        token_ttl: timedelta = RESET_TOKEN_TTL,
        requires_self_platform: bool = True,
    ) -> None:
        self.directory = directory
        self.codec = codec
        self.otp_store = otp_store
        self.mailer = mailer
        self.templates = templates
        self.hasher = hasher
        self.token_ttl = token_ttl
        self.requires_self_platform = requires_self_platform

    def issue_reset_token(self, email: str) -> str:
        user = self.directory.find_by_email(normalize_email(email))
        if self.requires_self_platform and user.platform.name != PlatformName.SELF.value:
            raise SelfPlatformRequired()
        claims = ResetClaims(
            ver=CLAIMS_VERSION,
            id=user.id,
            exp=self.codec.expiry(self.token_ttl),
            purpose=Purpose.PASSWORD_RESET.value,
        )
        return self.codec.issue(claims)

    def send_reset_email(self, token: str) -> str:
        """Mail a fresh code to the token's user and hand the token back for resends."""
        claims = self.codec.parse(token, ResetClaims)
        user = self.directory.find_by_id(claims.id)
        otp = self.otp_store.generate(user.id, Purpose.PASSWORD_RESET)
        ttl_minutes = max(1, int(self.otp_store.ttl.total_seconds() // 60))
        body = self.templates.password_reset(user.name, otp.code, ttl_minutes=ttl_minutes)
        message = self.mailer.create_message(user.email, PASSWORD_RESET_SUBJECT, body, ContentType.HTML)
        self.mailer.send(message)
        logger.info("Password reset code sent to user id=%s", user.id)
        return token

    def reset_password(self, token: str, otp: str, new_password: str, confirm_password: str) -> None:
        if new_password != confirm_password:
            raise PasswordMismatch()
        claims = self.codec.parse(token, ResetClaims)
        self.otp_store.verify(claims.id, Purpose.PASSWORD_RESET, otp)
        if not new_password or not PasswordHasher.is_acceptable(new_password):
            raise PasswordNotAllowed()
        self.directory.update_password(claims.id, self.hasher.hash(new_password))
        logger.info("Password reset for user id=%s", claims.id)
