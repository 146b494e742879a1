"""
auth/claims.py -- Typed, versioned token payloads.

Each token the service signs carries exactly one of these shapes. They are
strict pydantic models: a claim that is absent or arrives with the wrong JSON
type fails validation instead of being coerced, so an id sent as "7" or 7.0
is rejected rather than quietly turned into 7.

ver is bumped whenever a shape changes incompatibly; tokens minted under a
different version stop parsing.

required_purpose ties a claim class to a token purpose. TokenCodec.parse()
checks it before field validation so a purpose mismatch is reported as such.

Layer rule: no imports from api/, cache/, mail/, or core/.
"""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel, ConfigDict, field_validator

from auth.models import Purpose

CLAIMS_VERSION = 1


class BaseClaims(BaseModel):
    model_config = ConfigDict(strict=True, frozen=True, extra="ignore")

    required_purpose: ClassVar[Purpose | None] = None

    ver: int
    id: int
    exp: int

    @field_validator("ver")
    @classmethod
    def check_version(cls, value: int) -> int:
        if value != CLAIMS_VERSION:
            raise ValueError(f"unsupported claims version {value}")
        return value


class LoginClaims(BaseClaims):
    """Session claims consumed by the authorization gate."""

    user_name: str
    role_name: str
    role_rank: int
    is_verified: bool


class VerificationClaims(BaseClaims):
    required_purpose: ClassVar[Purpose | None] = Purpose.EMAIL_VERIFICATION

    purpose: str


class ResetClaims(BaseClaims):
    required_purpose: ClassVar[Purpose | None] = Purpose.PASSWORD_RESET

    purpose: str
