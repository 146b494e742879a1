"""
auth/models.py -- Domain dataclasses for identity entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these only own the shape.

Layer rule: no imports from api/, cache/, mail/, or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Purpose(str, Enum):
    """Discriminator for single-purpose tokens and OTP keys.

    A token minted for one flow carries its purpose, and the other flow
    refuses it, so a reset token cannot be replayed as a verification token.
    """

    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


@dataclass(frozen=True)
class Role:
    """A named privilege level. Higher rank = more privilege."""

    name: str
    rank: int
    id: int | None = None


@dataclass(frozen=True)
class Platform:
    """Where an account's credentials come from ("Self", "Google", "LINE")."""

    name: str
    id: int | None = None


@dataclass
class User:
    """An account in the user directory.

    email is the global identity key: one account per email, whatever
    platform created it. hashed_password is None for accounts created through
    an OAuth provider (they have no local password). external_id is the
    provider's stable subject identifier; (platform, external_id) is unique
    when set.
    """

    name: str
    email: str
    role: Role
    platform: Platform
    id: int | None = None
    hashed_password: str | None = None  # None = OAuth-only account
    external_id: str | None = None
    is_verified: bool = False
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class Otp:
    """A one-time code bound to (user_id, purpose)."""

    user_id: int
    purpose: Purpose
    code: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class OAuthIdentity:
    """A provider-asserted identity, normalized across Google and LINE.

    subject is the provider's stable user id and becomes User.external_id.
    expires_at is when the upstream assertion (id token) stops being valid;
    the session issued from it never outlives it.
    """

    name: str
    email: str
    subject: str
    platform: str
    email_verified: bool
    expires_at: datetime
