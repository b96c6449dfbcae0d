"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Session tokens are read from the "access_token" cookie (web UI) or an
"Authorization: Bearer <token>" header (API clients). Both converge on a
SessionIdentity.

try_get_identity() is the soft variant (returns None on failure).
get_current_identity() raises Unauthenticated (401) if there is no session.
require_roles(*roles) builds a dependency that also applies the role check
from auth.authorization and raises Forbidden (403).

Tenant checks need the path parameter, so handlers call require_role()
themselves with tenant_id=...

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.authorization import require_role
from auth.errors import Unauthenticated
from auth.models import Role, SessionIdentity
from auth.tokens import decode_session_token, read_session_token


def try_get_identity(request: Request) -> SessionIdentity | None:
    """Return the session identity, or None if the request has no valid session.

    A token whose user has since been disabled is treated as no session.
    """
    token = read_session_token(request)
    if not token:
        return None
    identity = decode_session_token(token)
    if identity is None:
        return None
    user = request.app.state.user_store.get_by_id(identity.user_id)
    if user is None or not user.is_active:
        return None
    return identity


def get_current_identity(request: Request) -> SessionIdentity:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: SessionIdentity = Depends(get_current_identity)): ...
    """
    identity = try_get_identity(request)
    if identity is None:
        raise Unauthenticated()
    return identity


def require_roles(*roles: Role) -> Callable[[Request], SessionIdentity]:
    """Dependency factory: authenticated and role in `roles`.

        @router.get("/admin/users")
        def route(identity: SessionIdentity = Depends(require_roles(Role.ADMIN, Role.SUPER_ADMIN))): ...
    """

    def dependency(request: Request) -> SessionIdentity:
        return require_role(get_current_identity(request), roles)

    return dependency
