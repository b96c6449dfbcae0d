"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and routes do
the work; these types own the domain shape.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    AGENCY = "AGENCY"
    STAFF = "STAFF"
    DMC = "DMC"
    USER = "USER"


@dataclass
class User:
    """A TripDesk account.

    tenant_id links the account to its agency. Agency owners and their staff
    share one tenant_id; platform admins and DMC accounts usually have none.

    hashed_password is mutated only by a password reset. Users are never
    hard-deleted; is_active=False disables login.
    """

    email: str
    role: str  # one of Role
    id: int | None = None
    hashed_password: str | None = None
    tenant_id: int | None = None
    display_name: str | None = None
    created_at: str | None = None
    is_active: bool = True


@dataclass
class Agency:
    """Tenant record. Scopes the visibility of agency data."""

    name: str
    id: int | None = None
    created_at: str | None = None


@dataclass
class PasswordResetToken:
    """A pending one-time reset credential.

    token_hash is HMAC-SHA256(SECRET_KEY, raw_token). The raw token exists only
    in the emailed link. UNIQUE(user_id) in the table keeps at most one live
    token per user.
    """

    user_id: int
    token_hash: str
    expires_at: str  # ISO 8601 UTC, fixed-width microseconds
    id: int | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class SessionIdentity:
    """Claims carried by a decoded session token."""

    user_id: int
    email: str
    role: str
    tenant_id: int | None = None
