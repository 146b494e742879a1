"""
tests/test_authorization_gate.py -- authorize(): rank comparison over attached claims.
"""

from __future__ import annotations

import pytest

from auth.claims import CLAIMS_VERSION, LoginClaims
from auth.dependencies import authorize
from auth.errors import PermissionDenied, RoleKeyMissing
from auth.registry import ADMIN_RANK, roles


def _claims(rank: int, role_name: str = "custom") -> LoginClaims:
    return LoginClaims(
        ver=CLAIMS_VERSION,
        id=1,
        exp=2_000_000_000,
        user_name="u",
        role_name=role_name,
        role_rank=rank,
        is_verified=True,
    )


def test_super_admin_passes_admin_gate() -> None:
    claims = _claims(1000)
    assert authorize(claims, 500) is claims


def test_guest_denied_admin_gate() -> None:
    with pytest.raises(PermissionDenied):
        authorize(_claims(1), 500)


def test_missing_claims() -> None:
    with pytest.raises(RoleKeyMissing):
        authorize(None, 1)


def test_role_name_is_not_consulted() -> None:
    with pytest.raises(PermissionDenied):
        authorize(_claims(1, role_name="super_admin"), ADMIN_RANK)
    assert authorize(_claims(500, role_name="guest"), ADMIN_RANK)


@pytest.mark.parametrize("required", [r.rank for r in roles.ordered()] + [250, 999])
def test_monotonic_in_rank(required: int) -> None:
    ranks = sorted({r.rank for r in roles.ordered()} | {2, 250, 501})
    passed = []
    for rank in ranks:
        try:
            authorize(_claims(rank), required)
            passed.append(rank)
        except PermissionDenied:
            pass
    # Every rank above the lowest passing rank also passes.
    assert passed == [r for r in ranks if r >= required]
