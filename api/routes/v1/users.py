"""
api/routes/v1/users.py -- Administrator endpoints over the user directory.

Routes:
  GET  /api/v1/users                                 -- list accounts (admin rank)
  POST /api/v1/users/{user_id}/verification-email    -- push a verification code (super_admin rank)
  GET  /api/v1/users/{user_id}/verification-push     -- has an admin pushed this user? (admin rank)

Every route runs authenticate first, then the rank gate over the claims it
attached. Rank is compared numerically; role names are never checked.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.limiter import email_limit, limiter
from api.models import MessageResponse, UserResponse, VerificationPushResponse
from auth.dependencies import authenticate, require_rank
from auth.registry import ADMIN_RANK, SUPER_ADMIN_RANK

router = APIRouter()

_admin = [Depends(authenticate), Depends(require_rank(ADMIN_RANK))]
_super_admin = [Depends(authenticate), Depends(require_rank(SUPER_ADMIN_RANK))]


@router.get("/users", response_model=list[UserResponse], dependencies=_admin)
def list_users(request: Request) -> list[UserResponse]:
    return [UserResponse.from_user(u) for u in request.app.state.user_store.list_users()]


@router.post(
    "/users/{user_id}/verification-email",
    response_model=MessageResponse,
    status_code=202,
    dependencies=_super_admin,
)
@limiter.limit(email_limit)
def push_verification_email(request: Request, user_id: int) -> MessageResponse:
    """Send a verification code on the user's behalf and record the admin push.

    The ERP reads the push marker to nag the user until they verify.
    """
    request.app.state.verification.send_verification_email(user_id, is_admin_pushed=True)
    return MessageResponse(message="Verification code sent.")


@router.get("/users/{user_id}/verification-push", response_model=VerificationPushResponse, dependencies=_admin)
def verification_push_status(request: Request, user_id: int) -> VerificationPushResponse:
    pushed = request.app.state.verification.is_admin_asking_for_verification(user_id)
    return VerificationPushResponse(user_id=user_id, admin_pushed=pushed)
