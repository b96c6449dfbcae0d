"""
tests/test_authorization.py -- Unit tests for auth.authorization.require_role.

The tenant rule has no exemptions: a caller whose tenant differs from the
requested one is refused whatever their role.
"""

from __future__ import annotations

import pytest

from auth.authorization import AGENCY_MANAGERS, PLATFORM_ADMINS, require_role
from auth.errors import Forbidden
from auth.models import Role, SessionIdentity


def _who(role: Role, tenant_id: int | None = None) -> SessionIdentity:
    return SessionIdentity(user_id=1, email="someone@tripdesk.com", role=role.value, tenant_id=tenant_id)


def test_allowed_role_same_tenant_passes() -> None:
    identity = _who(Role.AGENCY, tenant_id=4)
    assert require_role(identity, AGENCY_MANAGERS, tenant_id=4) is identity


def test_role_outside_set_is_forbidden() -> None:
    with pytest.raises(Forbidden) as exc_info:
        require_role(_who(Role.STAFF, tenant_id=4), PLATFORM_ADMINS)
    assert exc_info.value.message == "Access denied."
    assert exc_info.value.caller_role == "STAFF"


@pytest.mark.parametrize("role", list(Role))
def test_cross_tenant_is_forbidden_for_every_role(role: Role) -> None:
    with pytest.raises(Forbidden):
        require_role(_who(role, tenant_id=4), set(Role), tenant_id=9)


@pytest.mark.parametrize("role", [Role.ADMIN, Role.SUPER_ADMIN])
def test_platform_admin_without_tenant_cannot_enter_a_tenant(role: Role) -> None:
    with pytest.raises(Forbidden):
        require_role(_who(role), AGENCY_MANAGERS, tenant_id=4)


def test_no_tenant_argument_means_role_check_only() -> None:
    identity = _who(Role.ADMIN)
    assert require_role(identity, PLATFORM_ADMINS) is identity


def test_forbidden_never_names_the_resource_tenant() -> None:
    with pytest.raises(Forbidden) as exc_info:
        require_role(_who(Role.AGENCY, tenant_id=4), AGENCY_MANAGERS, tenant_id=9)
    assert "9" not in exc_info.value.message
    assert exc_info.value.status_code == 403


def test_plain_string_roles_are_accepted() -> None:
    identity = _who(Role.DMC)
    assert require_role(identity, ["DMC"]) is identity
