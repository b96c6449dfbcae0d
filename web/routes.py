"""
web/routes.py -- Jinja2 template routes for the TripDesk web UI.

These routes serve server-rendered HTML. They share app.state with the API
routes (same UserStore, PasswordResetManager) but return HTML instead of JSON.

The route guard middleware (auth/guard.py) has already redirected
unauthenticated requests for non-public paths before any handler here runs.
Dashboard handlers still resolve the identity themselves: the guard only
checks the token signature, while try_get_identity() also rejects accounts
that have since been disabled or deleted.

Route registration order matters: GET /admin/dashboard/profile is registered
before GET /admin/dashboard so the two never shadow each other in docs.

Routes:
  GET  /                          -- home page (public)
  GET  /feedback                  -- feedback page (public)
  GET  /login                     -- login form
  POST /login                     -- handle password login, redirect to callbackUrl
  POST /logout                    -- clear cookie, redirect /login
  GET  /signup                    -- signup form (submits to POST /api/v1/auth/signup)
  GET  /forgot-password           -- reset request form
  POST /forgot-password           -- always shows the same acknowledgement
  GET  /reset-password?token=     -- new-password form, or a dead-link notice
  POST /reset-password            -- consume token, redirect to /login
  GET  /admin/dashboard/profile   -- own profile (any signed-in role)
  GET  /admin/dashboard           -- platform overview (ADMIN, SUPER_ADMIN)
  GET  /super-admin/dashboard     -- SUPER_ADMIN only
  GET  /agency/dashboard          -- AGENCY owner, own tenant
  GET  /staff/dashboard           -- STAFF, own tenant
"""

import logging
from collections.abc import Collection
from pathlib import Path
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from auth.authorization import PLATFORM_ADMINS, require_role
from auth.dependencies import try_get_identity
from auth.errors import AuthError, Forbidden, InvalidCredentials
from auth.guard import LOGIN_PATH, safe_callback
from auth.models import Role
from auth.reset import RESET_ACKNOWLEDGEMENT, PasswordResetManager
from auth.store import UserStore
from auth.tokens import authenticate, clear_session_cookie, create_session_token, set_session_cookie
from core.config import get_settings
from core.limiter import FORGOT_PASSWORD_SCOPE, forgot_password_limit, limiter

logger = logging.getLogger("tripdesk.web")

_settings = get_settings()

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
# layout.html calls try_get_identity(request) to decide between the
# "Sign in" link and the signed-in navigation.
templates.env.globals["try_get_identity"] = try_get_identity
templates.env.globals["identity_label"] = lambda identity: f"{identity.email} ({identity.role})"
router = APIRouter()

# ---------------------------------------------------------------------------
# Query-string message whitelists
# ---------------------------------------------------------------------------

# The raw ?error= / ?notice= value is NEVER passed to templates -- only the
# message from these dicts is. Prevents reflected XSS via crafted links.
_ERROR_MESSAGES: dict[str, str] = {
    "bad_credentials": InvalidCredentials.default_message,
}

_NOTICE_MESSAGES: dict[str, str] = {
    "password_reset": "Password has been reset successfully. Please sign in.",
    "signed_up": "Account created. Please sign in.",
    "logged_out": "You have been signed out.",
}


def _callback_from(request: Request, submitted: Optional[str] = None) -> str:
    raw = submitted if submitted is not None else request.query_params.get("callbackUrl")
    return safe_callback(raw, _settings.post_login_path)


def _login_url(callback: str, **extra: str) -> str:
    return f"{LOGIN_PATH}?{urlencode({'callbackUrl': callback, **extra})}"


def _render_dashboard(
    request: Request,
    allowed_roles: Collection[Role],
    title: str,
    tenant_scoped: bool = False,
) -> HTMLResponse | RedirectResponse:
    """Resolve the caller, apply the role (and tenant) check, render a shell.

    Forbidden renders forbidden.html with a 403. The page says nothing about
    what was requested.
    """
    identity = try_get_identity(request)
    if identity is None:
        return RedirectResponse(_login_url(request.url.path), status_code=302)

    tenant_id = identity.tenant_id if tenant_scoped else None
    try:
        require_role(identity, allowed_roles, tenant_id=tenant_id)
        if tenant_scoped and tenant_id is None:
            raise Forbidden(caller_role=identity.role)
    except Forbidden as exc:
        logger.info("403 on %s (caller role=%s)", request.url.path, exc.caller_role)
        return templates.TemplateResponse(
            request,
            "forbidden.html",
            {"message": exc.message},
            status_code=403,
        )

    context = {"title": title, "identity": identity, "members": []}
    if tenant_scoped:
        user_store: UserStore = request.app.state.user_store
        context["agency"] = user_store.get_agency(tenant_id)
        context["members"] = user_store.list_users_by_tenant(tenant_id)
    return templates.TemplateResponse(request, "dashboard.html", context)


# ---------------------------------------------------------------------------
# Public pages
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def home(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "home.html")


@router.get("/feedback", response_class=HTMLResponse)
def feedback(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "feedback.html")


# ---------------------------------------------------------------------------
# Login / logout / signup
# ---------------------------------------------------------------------------


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request) -> HTMLResponse:
    """Render the login page. Signed-in users go straight to their callback."""
    callback = _callback_from(request)
    if try_get_identity(request) is not None:
        return RedirectResponse(callback, status_code=302)

    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""))
    notice_msg = _NOTICE_MESSAGES.get(request.query_params.get("notice", ""))
    return templates.TemplateResponse(
        request,
        "login.html",
        {
            "error_msg": error_msg,
            "notice_msg": notice_msg,
            "callback_url": callback,
        },
    )


@router.post("/login", response_class=HTMLResponse)
def login_post(
    request: Request,
    email: str = Form(default=""),
    password: str = Form(default=""),
    callbackUrl: Optional[str] = Form(default=None),  # noqa: N803 -- form field name
) -> RedirectResponse:
    """Handle the login form. Success redirects to the validated callbackUrl."""
    callback = _callback_from(request, callbackUrl)
    user_store: UserStore = request.app.state.user_store
    try:
        identity = authenticate(user_store, email, password)
    except InvalidCredentials:
        return RedirectResponse(_login_url(callback, error="bad_credentials"), status_code=302)

    resp = RedirectResponse(callback, status_code=302)
    set_session_cookie(resp, create_session_token(identity))
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/logout")
def logout(request: Request) -> RedirectResponse:
    """Clear the session cookie and redirect to the login page."""
    resp = RedirectResponse(f"{LOGIN_PATH}?notice=logged_out", status_code=302)
    clear_session_cookie(resp)
    return resp


@router.get("/signup", response_class=HTMLResponse)
def signup_form(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "feedback.html")


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.get("/forgot-password", response_class=HTMLResponse)
def forgot_password_form(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "forgot_password.html", {"message": None})


@router.post("/forgot-password", response_class=HTMLResponse)
@limiter.shared_limit(forgot_password_limit, scope=FORGOT_PASSWORD_SCOPE)
def forgot_password_post(request: Request, email: str = Form(default="")) -> HTMLResponse:
    """Same page, same message, whether or not the address is registered."""
    manager: PasswordResetManager = request.app.state.reset_manager
    message = manager.request(email) if email.strip() else RESET_ACKNOWLEDGEMENT
    return templates.TemplateResponse(request, "forgot_password.html", {"message": message})


@router.get("/reset-password", response_class=HTMLResponse)
def reset_password_form(request: Request, token: str = "") -> HTMLResponse:
    manager: PasswordResetManager = request.app.state.reset_manager
    valid = bool(token) and manager.verify(token)
    resp = templates.TemplateResponse(
        request,
        "reset_password.html",
        {"token": token if valid else "", "valid": valid, "error_msg": None},
    )
    resp.headers["Cache-Control"] = "no-store"
    resp.headers["Referrer-Policy"] = "no-referrer"
    return resp


@router.post("/reset-password", response_class=HTMLResponse)
def reset_password_post(
    request: Request,
    token: str = Form(default=""),
    password: str = Form(default=""),
    confirm_password: str = Form(default=""),
) -> HTMLResponse:
    """Consume the token. On failure re-render with the public error message."""
    manager: PasswordResetManager = request.app.state.reset_manager

    def _again(message: str, valid: bool = True) -> HTMLResponse:
        return templates.TemplateResponse(
            request,
            "reset_password.html",
            {"token": token if valid else "", "valid": valid, "error_msg": message},
            status_code=400,
        )

    if password != confirm_password:
        return _again("Passwords do not match.")
    try:
        manager.consume(token, password)
    except AuthError as exc:
        # Token errors end the flow; policy errors let the user try again.
        return _again(exc.message, valid=exc.code != "invalid_token")

    return RedirectResponse(f"{LOGIN_PATH}?notice=password_reset", status_code=303)


# ---------------------------------------------------------------------------
# Dashboards
# ---------------------------------------------------------------------------


@router.get("/admin/dashboard/profile", response_class=HTMLResponse)
def profile(request: Request) -> HTMLResponse:
    return _render_dashboard(request, set(Role), "Profile")


@router.get("/admin/dashboard", response_class=HTMLResponse)
def admin_dashboard(request: Request) -> HTMLResponse:
    return _render_dashboard(request, PLATFORM_ADMINS, "Admin dashboard")


@router.get("/super-admin/dashboard", response_class=HTMLResponse)
def super_admin_dashboard(request: Request) -> HTMLResponse:
    return _render_dashboard(request, {Role.SUPER_ADMIN}, "Super admin dashboard")


@router.get("/agency/dashboard", response_class=HTMLResponse)
def agency_dashboard(request: Request) -> HTMLResponse:
    return _render_dashboard(request, {Role.AGENCY}, "Agency dashboard", tenant_scoped=True)


@router.get("/staff/dashboard", response_class=HTMLResponse)
def staff_dashboard(request: Request) -> HTMLResponse:
    return _render_dashboard(request, {Role.STAFF}, "Staff dashboard", tenant_scoped=True)
