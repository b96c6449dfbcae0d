"""
api/routes/v1/auth.py -- Authentication, signup, and password-reset REST endpoints.

Routes:
  POST /api/v1/auth/login                        -- email/password login; sets session cookie
  POST /api/v1/auth/logout                       -- clears cookie; 200
  GET  /api/v1/auth/me                           -- current session identity (requires auth)
  POST /api/v1/auth/signup                       -- create an AGENCY (with tenant) or DMC account
  POST /api/v1/auth/forgot-password              -- always 200 with the same acknowledgement
  POST /api/v1/auth/reset-password               -- consume a reset token, set new password
  GET  /api/v1/auth/reset-password/verify        -- pre-check a token for the reset page

Security:
  authenticate() equalizes timing and collapses every failure into
  InvalidCredentials. Do NOT inline get_by_email() + verify_password().
  forgot-password answers identically for known and unknown emails and is
  rate-limited per IP (mail-flood protection). Login is not throttled.
  Cache-Control: no-store on login and reset responses.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from core.limiter import FORGOT_PASSWORD_SCOPE, forgot_password_limit, limiter
from api.models import (
    AccountTypeEnum,
    ForgotPasswordRequest,
    IdentityResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    ResetPasswordRequest,
    ResetTokenStatus,
    SignupRequest,
    SignupResponse,
    UserResponse,
)
from auth.dependencies import get_current_identity
from auth.errors import ValidationError
from auth.models import Agency, Role, SessionIdentity, User
from auth.reset import RESET_SUCCESS, PasswordResetManager
from auth.store import UserStore
from auth.tokens import (
    authenticate,
    clear_session_cookie,
    create_session_token,
    hash_password,
    set_session_cookie,
)
from core.config import get_settings

logger = logging.getLogger("tripdesk.api.auth")

_settings = get_settings()

# Auth policy:
# - POST /auth/login, /auth/logout, /auth/signup:          public
# - POST /auth/forgot-password, /auth/reset-password:      public (token is the credential)
# - GET  /auth/reset-password/verify:                      public
# - GET  /auth/me:                                         requires auth (get_current_identity)
router = APIRouter()


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the session cookie.

    Every failure (unknown email, wrong password, malformed input, disabled
    account) raises the same InvalidCredentials, rendered as a 401 by the
    app-level handler.
    """
    user_store: UserStore = request.app.state.user_store
    identity = authenticate(user_store, body.email, body.password)

    token = create_session_token(identity)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=_settings.session_expire_seconds,
            user=IdentityResponse.from_identity(identity),
        ).model_dump(),
    )
    set_session_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
async def logout() -> JSONResponse:
    """Clear the session cookie.

    The JWT itself stays valid until it expires; sessions are not revocable.
    """
    resp = JSONResponse(content={"message": "Logged out."})
    clear_session_cookie(resp)
    return resp


@router.get("/auth/me", response_model=IdentityResponse)
async def me(identity: SessionIdentity = Depends(get_current_identity)) -> IdentityResponse:
    return IdentityResponse.from_identity(identity)


# ---------------------------------------------------------------------------
# Signup
# ---------------------------------------------------------------------------


@router.post("/auth/signup", response_model=SignupResponse, status_code=201)
def signup(request: Request, body: SignupRequest) -> SignupResponse:
    """Create a self-service account.

    AGENCY signups create the agency tenant and its owner in one transaction.
    DMC accounts have no tenant.
    """
    user_store: UserStore = request.app.state.user_store

    new_user = User(
        email=str(body.email),
        role=Role(body.account_type.value).value,
        hashed_password=hash_password(body.password),
        display_name=body.name,
    )
    try:
        if body.account_type is AccountTypeEnum.AGENCY:
            _agency_id, user_id = user_store.create_agency_with_owner(Agency(name=body.company_name), new_user)
        else:
            user_id = user_store.create_user(new_user)
    except IntegrityError:
        raise ValidationError("User with this email already exists") from None

    created = user_store.get_by_id(user_id)
    logger.info("Account created: user_id=%s role=%s", user_id, new_user.role)
    return SignupResponse(message="User created successfully", user=UserResponse.from_user(created))


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/forgot-password", response_model=MessageResponse)
@limiter.shared_limit(forgot_password_limit, scope=FORGOT_PASSWORD_SCOPE)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Start a password reset. The answer never reveals whether the email is registered."""
    manager: PasswordResetManager = request.app.state.reset_manager
    return MessageResponse(message=manager.request(body.email))


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> JSONResponse:
    """Consume a reset token and set the new password.

    400 {"message": "Invalid or expired reset token."} for unknown, expired,
    or already-used tokens; 400 with the policy rule for a weak password.
    """
    manager: PasswordResetManager = request.app.state.reset_manager
    manager.consume(body.token, body.password)
    resp = JSONResponse(status_code=200, content={"message": RESET_SUCCESS})
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/auth/reset-password/verify", response_model=ResetTokenStatus)
def verify_reset_token(request: Request, token: str = "") -> ResetTokenStatus:
    """Let the reset page tell the user up front that a link is dead."""
    manager: PasswordResetManager = request.app.state.reset_manager
    return ResetTokenStatus(valid=bool(token) and manager.verify(token))
