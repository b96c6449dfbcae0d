"""
api/routes/v1/admin.py -- Platform administration endpoints.

Routes:
  GET   /api/v1/admin/users                   -- every account on the platform (ADMIN, SUPER_ADMIN)
  POST  /api/v1/admin/admins                  -- create an ADMIN account (SUPER_ADMIN only)
  PATCH /api/v1/admin/users/{user_id}/status  -- enable or disable an account (ADMIN, SUPER_ADMIN)

Platform endpoints are deliberately not tenant-scoped; the role set is the
whole check.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError

from api.models import AccountStatusEnum, AdminCreate, UserResponse, UserStatusUpdate
from auth.authorization import PLATFORM_ADMINS
from auth.dependencies import require_roles
from auth.errors import Forbidden, ValidationError
from auth.models import Role, SessionIdentity, User
from auth.policy import validate_password
from auth.store import UserStore
from auth.tokens import hash_password

logger = logging.getLogger("tripdesk.api.admin")

router = APIRouter()


@router.get("/admin/users", response_model=list[UserResponse])
def list_users(
    request: Request,
    identity: SessionIdentity = Depends(require_roles(*PLATFORM_ADMINS)),
) -> list[UserResponse]:
    user_store: UserStore = request.app.state.user_store
    return [UserResponse.from_user(u) for u in user_store.list_users()]


@router.post("/admin/admins", response_model=UserResponse, status_code=201)
def create_admin(
    request: Request,
    body: AdminCreate,
    identity: SessionIdentity = Depends(require_roles(Role.SUPER_ADMIN)),
) -> UserResponse:
    validate_password(body.password)
    user_store: UserStore = request.app.state.user_store

    admin = User(
        email=str(body.email),
        role=Role.ADMIN.value,
        hashed_password=hash_password(body.password),
        display_name=body.name,
    )
    try:
        user_id = user_store.create_user(admin)
    except IntegrityError:
        raise ValidationError("User with this email already exists") from None

    logger.info("Admin user_id=%s created by user_id=%s", user_id, identity.user_id)
    return UserResponse.from_user(user_store.get_by_id(user_id))


@router.patch("/admin/users/{user_id}/status", response_model=UserResponse)
def update_user_status(
    request: Request,
    user_id: int,
    body: UserStatusUpdate,
    identity: SessionIdentity = Depends(require_roles(*PLATFORM_ADMINS)),
) -> UserResponse:
    """Enable or disable an account.

    Disabling takes effect on the next request: try_get_identity() drops
    sessions whose user is inactive, so no token revocation is needed.
    """
    user_store: UserStore = request.app.state.user_store
    target = user_store.get_by_id(user_id)
    if target is None:
        raise HTTPException(status_code=404, detail="User not found")
    if target.role == Role.SUPER_ADMIN.value and identity.role != Role.SUPER_ADMIN.value:
        raise Forbidden(caller_role=identity.role)

    active = body.status is AccountStatusEnum.ACTIVE
    if not active and target.id == identity.user_id:
        raise ValidationError("You cannot deactivate your own account")

    user_store.set_active(user_id, active)
    logger.info("user_id=%s set %s by user_id=%s", user_id, body.status.value, identity.user_id)
    return UserResponse.from_user(user_store.get_by_id(user_id))
