"""
auth/passwords.py -- One-way adaptive password hashing.

bcrypt directly (no passlib wrapper). bcrypt's cost factor makes brute-force
of low-entropy secrets expensive, and checkpw compares in constant time.

The dummy hash enables timing equalization in AuthService.login() so response
time does not reveal whether an email is registered [C1].

Layer rule: no imports from api/, cache/, mail/, or core/.
"""

from __future__ import annotations

import logging

import bcrypt

logger = logging.getLogger("authcore.auth.passwords")

# bcrypt only looks at the first 72 bytes of its input. Longer passwords are
# rejected up front instead of being silently truncated.
MAX_PASSWORD_BYTES = 72


class PasswordHasher:
    """bcrypt hash + verify with a configurable work factor.

    Usage:
        hasher = PasswordHasher(rounds=12)
        stored = hasher.hash("secret")
        hasher.verify("secret", stored)  # True
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Computed once so the first login against an unknown email is not
        # measurably slower than later ones.
        self._dummy_hash = self.hash("authcore_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the given plaintext password."""
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str | None) -> bool:
        """Return True if the plaintext password matches the bcrypt hash.

        A missing hash (OAuth-only account) still burns one bcrypt round
        against the dummy hash and then reports a mismatch.
        """
        if not hashed:
            self.burn(plain)
            return False
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            logger.warning("Stored password hash is not a valid bcrypt hash")
            return False

    def burn(self, plain: str) -> None:
        """Run one verify against the dummy hash and discard the result [C1]."""
        try:
            bcrypt.checkpw(plain.encode("utf-8"), self._dummy_hash.encode("utf-8"))
        except ValueError:
            pass

    @staticmethod
    def is_acceptable(plain: str) -> bool:
        return 0 < len(plain.encode("utf-8")) <= MAX_PASSWORD_BYTES
