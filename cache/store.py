"""
cache/store.py -- Short-lived one-time codes and the admin verification push set.

OtpStore is the interface the verification and reset flows depend on.
InMemoryOtpStore is the process-local implementation; a TTL-capable key-value
store (Redis SETEX, for example) can replace it without touching flow code.

Semantics:
  - One live code per (user_id, purpose). generate() overwrites, so issuing
    a new code invalidates the previous, unconsumed one.
  - verify() checks presence, then expiry, then the code itself. It does not
    delete the code on success; the state change that follows (activation,
    password reset) is what makes reuse harmless.
  - Codes are compared with hmac.compare_digest.

Concurrency: one threading.Lock guards the code map and the push set. No I/O
happens while it is held and every operation is O(1) except purge_expired().

Usage:
    store = InMemoryOtpStore(ttl=timedelta(minutes=5))
    otp = store.generate(7, Purpose.EMAIL_VERIFICATION)
    store.verify(7, Purpose.EMAIL_VERIFICATION, otp.code)
    store.purge_expired()   # call periodically to trim old entries
"""

from __future__ import annotations

import hmac
import secrets
import threading
from collections.abc import Callable
from datetime import timedelta
from typing import Protocol

from auth.errors import OtpExpired, OtpMismatch, OtpNotFound
from auth.models import Otp, Purpose
from core.clock import Clock, SystemClock

_DEFAULT_TTL = timedelta(minutes=5)
OTP_LENGTH = 6


def generate_otp_code() -> str:
    """Six decimal digits from the OS CSPRNG, leading zeros kept."""
    return f"{secrets.randbelow(10**OTP_LENGTH):0{OTP_LENGTH}d}"


class OtpStore(Protocol):
    ttl: timedelta

    def generate(self, user_id: int, purpose: Purpose) -> Otp: ...

    def get(self, user_id: int, purpose: Purpose) -> Otp: ...

    def verify(self, user_id: int, purpose: Purpose, candidate: str) -> None: ...

    def purge_expired(self) -> int: ...

    def mark_admin_push(self, user_id: int) -> None: ...

    def is_admin_pushed(self, user_id: int) -> bool: ...

    def clear_admin_push(self, user_id: int) -> bool: ...


class InMemoryOtpStore:
    def __init__(
        self,
        ttl: timedelta = _DEFAULT_TTL,
        clock: Clock | None = None,
        code_generator: Callable[[], str] = generate_otp_code,
    ) -> None:
        self.ttl = ttl
        self.clock: Clock = clock or SystemClock()
        self._code_generator = code_generator
        self._lock = threading.Lock()
        self._codes: dict[tuple[int, Purpose], Otp] = {}
        self._admin_pushed: set[int] = set()

    # ------------------------------------------------------------------
    # One-time codes
    # ------------------------------------------------------------------

    def generate(self, user_id: int, purpose: Purpose) -> Otp:
        """Store a fresh code for (user_id, purpose), replacing any previous one."""
        otp = Otp(
            user_id=user_id,
            purpose=purpose,
            code=self._code_generator(),
            expires_at=self.clock.now() + self.ttl,
        )
        with self._lock:
            self._codes[(user_id, purpose)] = otp
        return otp

    def get(self, user_id: int, purpose: Purpose) -> Otp:
        with self._lock:
            otp = self._codes.get((user_id, purpose))
        if otp is None:
            raise OtpNotFound()
        return otp

    def verify(self, user_id: int, purpose: Purpose, candidate: str) -> None:
        """Raise unless candidate is the live, unexpired code for the key."""
        otp = self.get(user_id, purpose)
        if otp.is_expired(self.clock.now()):
            raise OtpExpired()
        if not hmac.compare_digest(otp.code.encode("utf-8"), (candidate or "").encode("utf-8")):
            raise OtpMismatch()

    def purge_expired(self) -> int:
        """Delete every expired code. Returns the number removed."""
        now = self.clock.now()
        with self._lock:
            stale = [key for key, otp in self._codes.items() if otp.is_expired(now)]
            for key in stale:
                del self._codes[key]
        return len(stale)

    # ------------------------------------------------------------------
    # Admin verification push set
    # ------------------------------------------------------------------

    def mark_admin_push(self, user_id: int) -> None:
        with self._lock:
            self._admin_pushed.add(user_id)

    def is_admin_pushed(self, user_id: int) -> bool:
        with self._lock:
            return user_id in self._admin_pushed

    def clear_admin_push(self, user_id: int) -> bool:
        """Remove the marker. Returns True if it was set."""
        with self._lock:
            if user_id in self._admin_pushed:
                self._admin_pushed.remove(user_id)
                return True
            return False
