"""
api/routes/v1/agencies.py -- Tenant-scoped agency endpoints.

Routes:
  GET  /api/v1/agencies/{agency_id}         -- agency profile
  GET  /api/v1/agencies/{agency_id}/users   -- team members
  POST /api/v1/agencies/{agency_id}/users   -- add a STAFF member (agency owner only)

Every handler calls require_role(..., tenant_id=agency_id) before touching
the store. A caller from another tenant gets 403 whatever their role; the
response says nothing about the requested agency, not even whether it exists.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import IntegrityError

from api.models import AgencyResponse, StaffCreate, UserResponse
from auth.authorization import AGENCY_MANAGERS, require_role
from auth.dependencies import get_current_identity
from auth.errors import Forbidden, ValidationError
from auth.models import Role, SessionIdentity, User
from auth.policy import validate_password
from auth.store import UserStore
from auth.tokens import hash_password

logger = logging.getLogger("tripdesk.api.agencies")

# Auth policy:
# - GET  /agencies/{id}:        AGENCY, ADMIN, SUPER_ADMIN + tenant match
# - GET  /agencies/{id}/users:  AGENCY, ADMIN, SUPER_ADMIN + tenant match
# - POST /agencies/{id}/users:  AGENCY + tenant match
router = APIRouter()


@router.get("/agencies/{agency_id}", response_model=AgencyResponse)
def get_agency(
    request: Request,
    agency_id: int,
    identity: SessionIdentity = Depends(get_current_identity),
) -> AgencyResponse:
    require_role(identity, AGENCY_MANAGERS, tenant_id=agency_id)
    user_store: UserStore = request.app.state.user_store

    agency = user_store.get_agency(agency_id)
    if agency is None:
        # Tenant matched but the row is gone: same answer as any other denial.
        raise Forbidden(caller_role=identity.role)
    members = user_store.list_users_by_tenant(agency_id)
    return AgencyResponse(
        id=agency.id,
        name=agency.name,
        created_at=agency.created_at or "",
        member_count=len(members),
    )


@router.get("/agencies/{agency_id}/users", response_model=list[UserResponse])
def list_agency_users(
    request: Request,
    agency_id: int,
    identity: SessionIdentity = Depends(get_current_identity),
) -> list[UserResponse]:
    require_role(identity, AGENCY_MANAGERS, tenant_id=agency_id)
    user_store: UserStore = request.app.state.user_store
    return [UserResponse.from_user(u) for u in user_store.list_users_by_tenant(agency_id)]


@router.post("/agencies/{agency_id}/users", response_model=UserResponse, status_code=201)
def add_agency_staff(
    request: Request,
    agency_id: int,
    body: StaffCreate,
    identity: SessionIdentity = Depends(get_current_identity),
) -> UserResponse:
    """Create a STAFF account inside the caller's own agency."""
    require_role(identity, {Role.AGENCY}, tenant_id=agency_id)
    validate_password(body.password)
    user_store: UserStore = request.app.state.user_store

    staff = User(
        email=str(body.email),
        role=Role.STAFF.value,
        hashed_password=hash_password(body.password),
        tenant_id=agency_id,
        display_name=body.name,
    )
    try:
        user_id = user_store.create_user(staff)
    except IntegrityError:
        raise ValidationError("User with this email already exists") from None

    logger.info("Staff user_id=%s added to tenant %s by user_id=%s", user_id, agency_id, identity.user_id)
    return UserResponse.from_user(user_store.get_by_id(user_id))
