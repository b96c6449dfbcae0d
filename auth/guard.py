"""
auth/guard.py -- Authentication gate for page requests.

Runs as HTTP middleware in front of every route (see api/main.py). Decides
allow vs redirect-to-login from two facts only: is the path public, and does
the request carry a valid session token. It never looks at roles; handlers do
that through auth.authorization.

Public paths:
  - "/" (home) matches exactly. A "/" prefix would make every path public.
  - the others match on a path-segment boundary: "/login" covers "/login"
    and "/login/anything" but not "/loginx".

/api and /static are outside the guard. API routes answer 401 themselves
through auth.dependencies; a redirect is useless to a JSON client.

Redirect target:
  /login?callbackUrl=<caller's own callbackUrl if it is a safe relative path,
  otherwise Settings.post_login_path>

Layer rule: may import fastapi/starlette types; no imports from api/ or web/.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlencode

from fastapi import Request
from fastapi.responses import RedirectResponse

from auth.tokens import decode_session_token, read_session_token
from core.config import get_settings

LOGIN_PATH = "/login"

PUBLIC_PATHS: tuple[str, ...] = (
    "/login",
    "/signup",
    "/forgot-password",
    "/reset-password",
    "/feedback",
)
_EXACT_PUBLIC_PATHS = frozenset({"/"})
_UNGUARDED_PREFIXES: tuple[str, ...] = ("/api", "/static")


def _matches_prefix(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + "/")


def is_public_path(path: str) -> bool:
    if path in _EXACT_PUBLIC_PATHS:
        return True
    return any(_matches_prefix(path, p) for p in PUBLIC_PATHS + _UNGUARDED_PREFIXES)


def safe_callback(url: Optional[str], default: str) -> str:
    """Accept only server-local relative paths as a post-login target.

    Rejects absolute URLs ("https://evil") and protocol-relative ones
    ("//evil"), which would turn the login page into an open redirect.
    Backslashes are rejected because some browsers treat "/\\evil" as "//evil".
    """
    if url and url.startswith("/") and not url.startswith("//") and "\\" not in url:
        return url
    return default


def login_redirect(request: Request) -> RedirectResponse:
    default = get_settings().post_login_path
    callback = safe_callback(request.query_params.get("callbackUrl"), default)
    return RedirectResponse(f"{LOGIN_PATH}?{urlencode({'callbackUrl': callback})}", status_code=302)


def authorize(request: Request) -> Optional[RedirectResponse]:
    """Return None to let the request through, or a redirect to the login page."""
    if is_public_path(request.url.path):
        return None
    token = read_session_token(request)
    if token and decode_session_token(token) is not None:
        return None
    return login_redirect(request)


async def route_guard(request: Request, call_next):
    """HTTP middleware wrapper around authorize()."""
    if redirect := authorize(request):
        return redirect
    return await call_next(request)
