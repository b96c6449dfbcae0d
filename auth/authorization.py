"""
auth/authorization.py -- One role/tenant predicate for every protected handler.

The route guard only proves a caller is authenticated. Handlers call
require_role() before reading or writing shared state:

    identity = require_role(identity, AGENCY_MANAGERS, tenant_id=agency_id)

Rules:
  - identity.role must be in allowed_roles.
  - when tenant_id is given, identity.tenant_id must equal it. No role is
    exempt, including SUPER_ADMIN; cross-tenant reads need a dedicated
    platform endpoint that omits tenant_id.

Failures raise Forbidden with a fixed public message. The caller's own role
is attached for server-side logs only.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from auth.errors import Forbidden
from auth.models import Role, SessionIdentity

logger = logging.getLogger("tripdesk.auth.authz")

PLATFORM_ADMINS = frozenset({Role.ADMIN, Role.SUPER_ADMIN})
AGENCY_MANAGERS = frozenset({Role.AGENCY, Role.ADMIN, Role.SUPER_ADMIN})


def _role_values(roles: Iterable[Role | str]) -> frozenset[str]:
    return frozenset(r.value if isinstance(r, Role) else str(r) for r in roles)


def require_role(
    identity: SessionIdentity,
    allowed_roles: Iterable[Role | str],
    tenant_id: int | None = None,
) -> SessionIdentity:
    """Return identity unchanged if it may act; raise Forbidden otherwise."""
    if identity.role not in _role_values(allowed_roles):
        logger.info("Forbidden: user_id=%s role=%s not in allowed set", identity.user_id, identity.role)
        raise Forbidden(caller_role=identity.role)
    if tenant_id is not None and identity.tenant_id != tenant_id:
        logger.info("Forbidden: user_id=%s outside requested tenant", identity.user_id)
        raise Forbidden(caller_role=identity.role)
    return identity
