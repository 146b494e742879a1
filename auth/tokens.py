"""
auth/tokens.py -- Signed claim bundles (JWT) for sessions and single-purpose flows.

Security design decisions:
  JWT: python-jose with HS256. One service secret signs every token: login
       sessions, email verification and password reset. Single-purpose tokens
       carry a purpose claim so one flow cannot consume another flow's token.

  Algorithm pinning: decode() only accepts the configured HMAC algorithm.
       The header is inspected before verification and anything else
       (RS256 with a public key as secret, alg=none, ...) is rejected as an
       invalid signature.

  Expiry: exp is written by issue() and checked by parse() against the
       injected Clock rather than jose's wall clock, so tests can move time.

  Error reporting: the caller sees TokenInvalid regardless of whether the
       signature, the structure or a claim was wrong. The specific cause is
       logged at WARNING for operators only.

Layer rule: no imports from api/, cache/, or mail/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TypeVar

from jose import JWTError, jwt
from pydantic import ValidationError

from auth.claims import BaseClaims
from auth.errors import InvalidSignature, MalformedToken, MissingClaim, PurposeMismatch, TokenExpired
from core.clock import Clock, SystemClock, epoch_seconds

logger = logging.getLogger("authcore.auth.tokens")

ALGORITHM = "HS256"

C = TypeVar("C", bound=BaseClaims)


class TokenCodec:
    """Issue and verify HS256 tokens with a single service secret.

    Usage:
        codec = TokenCodec(settings.secret_key)
        token = codec.issue(LoginClaims(...))
        claims = codec.parse(token, LoginClaims)
    """

    def __init__(self, secret_key: str, clock: Clock | None = None, algorithm: str = ALGORITHM) -> None:
        self._secret_key = secret_key
        self._algorithm = algorithm
        self.clock: Clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Encode
    # ------------------------------------------------------------------

    def expiry(self, ttl: timedelta) -> int:
        """Epoch seconds ttl from now, for the exp claim."""
        return epoch_seconds(self.clock.now() + ttl)

    def issue(self, claims: BaseClaims) -> str:
        payload = claims.model_dump(mode="json")
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    # ------------------------------------------------------------------
    # Decode
    # ------------------------------------------------------------------

    def decode(self, token: str) -> dict:
        """Verify structure, algorithm and signature; return the raw payload.

        Does not look at exp -- parse() does that against the injected clock.
        """
        if not token or not isinstance(token, str):
            raise MalformedToken("empty token")
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            logger.warning("Rejected malformed token: %s", exc)
            raise MalformedToken(str(exc)) from exc

        alg = header.get("alg")
        if alg != self._algorithm:
            logger.warning("Rejected token signed with unexpected algorithm %r", alg)
            raise InvalidSignature(f"unexpected signing method {alg!r}")

        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                options={"verify_exp": False, "verify_aud": False},
            )
        except JWTError as exc:
            logger.warning("Rejected token with invalid signature: %s", exc)
            raise InvalidSignature(str(exc)) from exc

        if not isinstance(payload, dict):
            logger.warning("Rejected token whose payload is not an object")
            raise MalformedToken("payload is not an object")
        return payload

    def parse(self, token: str, claims_type: type[C]) -> C:
        """Decode a token and extract a typed claim model.

        Order of checks: signature/structure, purpose, required fields and
        types, expiry. Each failure raises its own TokenInvalid subclass (or
        TokenExpired).
        """
        payload = self.decode(token)

        expected = claims_type.required_purpose
        actual = payload.get("purpose")
        if expected is not None and actual != expected.value:
            logger.warning("Rejected token: purpose %r where %r was expected", actual, expected.value)
            raise PurposeMismatch(f"purpose {actual!r}, expected {expected.value!r}")
        if expected is None and actual is not None:
            logger.warning("Rejected single-purpose token (%r) presented as a session token", actual)
            raise PurposeMismatch(f"unexpected purpose {actual!r}")

        try:
            claims = claims_type.model_validate(payload)
        except ValidationError as exc:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
            logger.warning("Rejected token with missing or mistyped claims: %s", ", ".join(fields))
            raise MissingClaim(", ".join(fields)) from exc

        if claims.exp < epoch_seconds(self.clock.now()):
            raise TokenExpired()
        return claims
