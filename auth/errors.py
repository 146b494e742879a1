"""
auth/errors.py -- Typed failure taxonomy for the identity core.

Every failure the core can report is an AuthError subclass carrying a stable
error_code, an HTTP status_code, and a client-safe message. Service and flow
code raise these; api/main.py turns them into the shared error envelope:

    {"error": {"code": "<error_code>", "message": "<message>"}}

Families:
  NotFoundError      -- user / OTP / role / platform lookups (404)
  ConflictError      -- idempotency guards: already exists, already verified (409)
  ValidationError    -- rejected input (400)
  TokenInvalid       -- malformed token, bad signature, missing claim, purpose mismatch (401)
  ExpiredError       -- token or OTP window elapsed (401)
  MismatchError      -- password confirmation, stored password, OTP code (400/401)
  ForbiddenError     -- rank gate failures (403)
  MailDeliveryError  -- outbound mail could not be handed off (502)

TokenInvalid subclasses all share one code and message. The specific cause
(signature vs. structure vs. missing field) is logged by auth/tokens.py and
never surfaced to the caller.

Layer rule: no imports from api/, cache/, mail/, or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for identity-core failures."""

    status_code: int = 400
    error_code: str = "auth_error"
    message: str = "Request could not be processed."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.error_code, "message": self.message}


# ---------------------------------------------------------------------------
# NotFound
# ---------------------------------------------------------------------------


class NotFoundError(AuthError):
    status_code = 404
    error_code = "not_found"
    message = "Resource not found."


class UserNotFound(NotFoundError):
    error_code = "user_not_found"
    message = "User not found."


class RoleNotFound(NotFoundError):
    error_code = "role_not_found"
    message = "Role not found."


class PlatformNotFound(NotFoundError):
    error_code = "platform_not_found"
    message = "Platform not found."


class OtpNotFound(NotFoundError):
    error_code = "otp_not_found"
    message = "No verification code has been issued."


# ---------------------------------------------------------------------------
# Conflict / idempotency guards
# ---------------------------------------------------------------------------


class ConflictError(AuthError):
    status_code = 409
    error_code = "conflict"
    message = "Request conflicts with the current state."


class UserAlreadyExists(ConflictError):
    error_code = "user_already_exists"
    message = "A user with that email already exists."


class UserAlreadyVerified(ConflictError):
    error_code = "user_already_verified"
    message = "User email is already verified."


class AccountLinkRefused(ConflictError):
    error_code = "account_link_refused"
    message = "This email is registered through a different sign-in method."


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(AuthError):
    status_code = 400
    error_code = "validation_error"
    message = "Request validation failed."


class NameNotAllowed(ValidationError):
    error_code = "name_not_allowed"
    message = "Name must not be empty."


class EmailNotAllowed(ValidationError):
    error_code = "email_not_allowed"
    message = "Email address is not valid."


class PasswordNotAllowed(ValidationError):
    error_code = "password_not_allowed"
    message = "Password must be between 1 and 72 bytes."


class PlatformEmpty(ValidationError):
    error_code = "platform_empty"
    message = "Platform name must not be empty."


class SelfPlatformRequired(ValidationError):
    error_code = "self_platform_required"
    message = "Password reset is only available for accounts with a local password."


# ---------------------------------------------------------------------------
# Token validity
# ---------------------------------------------------------------------------


class TokenInvalid(AuthError):
    status_code = 401
    error_code = "token_invalid"
    message = "Token is invalid."

    def __init__(self, message: str | None = None) -> None:
        # Subclasses never override the public message; the detail is log-only.
        super().__init__(None)
        self.detail = message or ""


class MalformedToken(TokenInvalid):
    pass


class InvalidSignature(TokenInvalid):
    pass


class MissingClaim(TokenInvalid):
    pass


class PurposeMismatch(TokenInvalid):
    pass


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------


class ExpiredError(AuthError):
    status_code = 401
    error_code = "expired"
    message = "Expired."


class TokenExpired(ExpiredError):
    error_code = "token_expired"
    message = "Token has expired."


class OtpExpired(ExpiredError):
    error_code = "otp_expired"
    message = "Verification code has expired."


# ---------------------------------------------------------------------------
# Mismatch
# ---------------------------------------------------------------------------


class MismatchError(AuthError):
    status_code = 400
    error_code = "mismatch"
    message = "Values do not match."


class PasswordNotMatched(MismatchError):
    status_code = 401
    error_code = "password_not_matched"
    message = "Invalid email or password."


class PasswordMismatch(MismatchError):
    error_code = "password_mismatch"
    message = "New password and confirmation do not match."


class OtpMismatch(MismatchError):
    error_code = "otp_mismatch"
    message = "Verification code is incorrect."


# ---------------------------------------------------------------------------
# Authentication / authorization
# ---------------------------------------------------------------------------


class LoginRequired(AuthError):
    status_code = 401
    error_code = "login_required"
    message = "Authentication required."


class ForbiddenError(AuthError):
    status_code = 403
    error_code = "forbidden"
    message = "Access denied."


class PermissionDenied(ForbiddenError):
    error_code = "permission_denied"
    message = "Your role does not permit this action."


class RoleKeyMissing(ForbiddenError):
    error_code = "role_key_missing"
    message = "No authenticated role is attached to this request."


class EmailNotVerified(ForbiddenError):
    error_code = "email_not_verified"
    message = "Email address must be verified first."


# ---------------------------------------------------------------------------
# Collaborator failures
# ---------------------------------------------------------------------------


class MailDeliveryError(AuthError):
    status_code = 502
    error_code = "mail_delivery_failed"
    message = "Email could not be sent. Please try again later."
