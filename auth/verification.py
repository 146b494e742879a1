"""
auth/verification.py -- Email verification: token -> OTP by mail -> activate.

State per user:
    Unverified --issue token--> Pending --verify_email(token, otp)--> Verified

Verified is terminal. Every entry point re-reads the user and fails with
UserAlreadyVerified once activation has happened, so a replayed token and
code pair cannot be used twice.

The admin push set records users an administrator asked to verify. The ERP
reads it through is_admin_asking_for_verification(); a successful verification
clears it.

Layer rule: no imports from api/. cache/ and mail/ are consumed through their
Protocols only.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from auth.claims import CLAIMS_VERSION, VerificationClaims
from auth.errors import EmailNotVerified, UserAlreadyVerified
from auth.models import Purpose, User
from auth.store import UserDirectory
from auth.tokens import TokenCodec
from cache.store import OtpStore
from mail.sender import ContentType, MailSender
from mail.templates import EMAIL_VERIFICATION_SUBJECT, EmailTemplates

logger = logging.getLogger("authcore.auth.verification")

VERIFICATION_TOKEN_TTL = timedelta(minutes=5)


class EmailVerificationFlow:
    def __init__(
        self,
        directory: UserDirectory,
        codec: TokenCodec,
        otp_store: OtpStore,
        mailer: MailSender,
        templates: EmailTemplates,
        token_ttl: timedelta = VERIFICATION_TOKEN_TTL,
    ) -> None:
        self.directory = directory
        self.codec = codec
        self.otp_store = otp_store
        self.mailer = mailer
        self.templates = templates
        self.token_ttl = token_ttl

    def _unverified_user(self, user_id: int) -> User:
        user = self.directory.find_by_id(user_id)
        if user.is_verified:
            raise UserAlreadyVerified()
        return user

    def issue_verification_token(self, user_id: int) -> str:
        self._unverified_user(user_id)
        claims = VerificationClaims(
            ver=CLAIMS_VERSION,
            id=user_id,
            exp=self.codec.expiry(self.token_ttl),
            purpose=Purpose.EMAIL_VERIFICATION.value,
        )
        return self.codec.issue(claims)

    def send_verification_email(self, user_id: int, is_admin_pushed: bool = False) -> None:
        """Generate a fresh code and mail it to the user.

        A previous unconsumed code stops working. Raises MailDeliveryError when
        the sender cannot hand the message off.
        """
        user = self._unverified_user(user_id)
        otp = self.otp_store.generate(user.id, Purpose.EMAIL_VERIFICATION)

        body = self.templates.verification(
            user.name, otp.code, ttl_minutes=_minutes(self.otp_store.ttl)
        )
        message = self.mailer.create_message(user.email, EMAIL_VERIFICATION_SUBJECT, body, ContentType.HTML)
        self.mailer.send(message)
        # Only a delivered code counts as an admin push.
        if is_admin_pushed:
            self.otp_store.mark_admin_push(user.id)
        logger.info("Verification code sent to user id=%s (admin push: %s)", user.id, is_admin_pushed)

    def send_verification_email_by_token(self, token: str) -> None:
        claims = self.codec.parse(token, VerificationClaims)
        self.send_verification_email(claims.id)

    def verify_email(self, token: str, otp: str) -> User:
        """Check token and code, then mark the user verified.

        Raises the TokenInvalid family or TokenExpired for a bad token,
        UserAlreadyVerified on a repeat call, and OtpNotFound / OtpExpired /
        OtpMismatch for a bad code.
        """
        claims = self.codec.parse(token, VerificationClaims)
        self._unverified_user(claims.id)
        self.otp_store.verify(claims.id, Purpose.EMAIL_VERIFICATION, otp)
        self.directory.activate(claims.id)
        self.otp_store.clear_admin_push(claims.id)
        logger.info("User id=%s verified their email", claims.id)
        return self.directory.find_by_id(claims.id)

    # ------------------------------------------------------------------
    # ERP call-ins
    # ------------------------------------------------------------------

    def is_admin_asking_for_verification(self, user_id: int) -> bool:
        return self.otp_store.is_admin_pushed(user_id)

    def require_verified_email(self, user_id: int) -> User:
        """Raise EmailNotVerified unless the user has verified their email."""
        user = self.directory.find_by_id(user_id)
        if not user.is_verified:
            raise EmailNotVerified()
        return user


def _minutes(ttl: timedelta) -> int:
    return max(1, int(ttl.total_seconds() // 60))
