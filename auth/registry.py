"""
auth/registry.py -- Built-in roles and identity platforms.

Roles are totally ordered by rank. Every authorization decision in the
service is "requester rank >= required rank", so a super_admin passes any
gate an admin passes, and so on down. Role names are for display and lookup
only; never compare them to decide access.

bootstrap() writes the built-in rows into the user directory. It is an
idempotent upsert-by-name, run once at process start (API lifespan and the
CLI), never from service constructors.

Layer rule: no imports from api/, cache/, mail/, or core/.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

from auth.errors import PlatformEmpty, RoleNotFound
from auth.models import Platform, Role

if TYPE_CHECKING:
    from auth.store import UserDirectory

logger = logging.getLogger("authcore.auth.registry")


class RoleName(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    GUEST = "guest"
    BLOCKED_USER = "blocked_user"


class PlatformName(str, Enum):
    SELF = "Self"
    GOOGLE = "Google"
    LINE = "LINE"


BUILTIN_ROLES: tuple[Role, ...] = (
    Role(name=RoleName.SUPER_ADMIN.value, rank=1000),
    Role(name=RoleName.ADMIN.value, rank=500),
    Role(name=RoleName.GUEST.value, rank=1),
    Role(name=RoleName.BLOCKED_USER.value, rank=0),
)

BUILTIN_PLATFORMS: tuple[Platform, ...] = tuple(Platform(name=p.value) for p in PlatformName)

DEFAULT_ROLE = RoleName.GUEST


class RoleRegistry:
    """Read-only view over the fixed role set."""

    def __init__(self, roles: tuple[Role, ...] = BUILTIN_ROLES) -> None:
        self._by_name = {r.name: r for r in roles}

    def get(self, name: str | RoleName) -> Role:
        key = name.value if isinstance(name, RoleName) else name
        role = self._by_name.get(key)
        if role is None:
            raise RoleNotFound()
        return role

    def rank_of(self, name: str | RoleName) -> int:
        return self.get(name).rank

    def ordered(self) -> list[Role]:
        """Roles from most to least privileged."""
        return sorted(self._by_name.values(), key=lambda r: r.rank, reverse=True)

    @staticmethod
    def satisfies(requester_rank: int, required_rank: int) -> bool:
        return requester_rank >= required_rank


roles = RoleRegistry()

SUPER_ADMIN_RANK = roles.rank_of(RoleName.SUPER_ADMIN)
ADMIN_RANK = roles.rank_of(RoleName.ADMIN)


def platform_name(value: str | PlatformName) -> str:
    """Normalize a platform argument to its stored name."""
    name = value.value if isinstance(value, PlatformName) else value
    if not name:
        raise PlatformEmpty()
    return name


def bootstrap(directory: UserDirectory) -> None:
    """Upsert the built-in roles and platforms. Safe to call on every startup."""
    for role in BUILTIN_ROLES:
        directory.upsert_role(role)
    for platform in BUILTIN_PLATFORMS:
        directory.upsert_platform(platform)
    logger.info(
        "Built-in roles and platforms ensured (%d roles, %d platforms)",
        len(BUILTIN_ROLES),
        len(BUILTIN_PLATFORMS),
    )
