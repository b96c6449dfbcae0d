"""
auth/tokens.py -- Password hashing, session JWTs, credential checks, reset-token hashing.

Security design decisions:
  JWT: python-jose with HS256. Session tokens are signed with SECRET_KEY and
       carry user_id, email (sub), role, tenant_id and a fixed absolute expiry
       (30 days by default). Nothing is stored server-side, so a token cannot
       be revoked before it expires. Verification returns None on any failure;
       the guard and dependencies turn that into a redirect or a 401.

  Passwords: bcrypt directly, cost factor from Settings.bcrypt_rounds (>=10
       outside DEBUG). The _DUMMY_HASH constant equalizes timing in
       authenticate() so response time does not reveal whether an email is
       registered.

  Reset tokens: secrets.token_hex(32) gives 256 bits of entropy. We store
       HMAC-SHA256(SECRET_KEY, raw_token) so a leaked table is useless without
       SECRET_KEY and lookup stays O(1). bcrypt's slowness is unnecessary for
       high-entropy secrets.

  There is deliberately no failed-login counter or lockout here.

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt
from pydantic import BaseModel, EmailStr, Field
from pydantic import ValidationError as PydanticValidationError

from auth.errors import InvalidCredentials
from auth.models import SessionIdentity
from core.config import get_settings

if TYPE_CHECKING:
    from auth.store import UserStore

logger = logging.getLogger("tripdesk.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

SESSION_COOKIE = "access_token"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt truncates input at 72 bytes. Request models cap passwords at 128
    characters, and the policy's character classes make the truncated prefix
    still meaningful.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8")[:72], salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:72], hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


# Computed once at module load so the first login is not measurably slower.
_DUMMY_HASH: str = hash_password("tripdesk_timing_dummy")


# ---------------------------------------------------------------------------
# Session JWT
# ---------------------------------------------------------------------------


def create_session_token(identity: SessionIdentity, expire_seconds: int = 0) -> str:
    """Encode a signed session JWT.

    Args:
        identity:       Claims to embed.
        expire_seconds: Lifetime override, mainly for tests. 0 means
                        Settings.session_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.session_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "sub": identity.email,
        "user_id": identity.user_id,
        "role": identity.role,
        "tenant_id": identity.tenant_id,
        "exp": expire,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_session_token(token: str) -> SessionIdentity | None:
    """Verify signature and expiry. Returns None on any failure."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if "user_id" not in payload or "role" not in payload:
        return None
    return SessionIdentity(
        user_id=payload["user_id"],
        email=payload.get("sub", ""),
        role=payload["role"],
        tenant_id=payload.get("tenant_id"),
    )


# ---------------------------------------------------------------------------
# Credential check (constant-time)
# ---------------------------------------------------------------------------


class _Credentials(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)


def authenticate(store: UserStore, email: str, password: str) -> SessionIdentity:
    """Check an email/password pair and return the identity to put in a session.

    Raises InvalidCredentials for every failure: malformed input, unknown
    email, wrong password, disabled account. The specific reason is logged
    at INFO for operators; the caller only ever sees the generic error.

    Always runs bcrypt whether or not the user exists, so an unknown email
    costs the same as a wrong password.
    """
    try:
        creds = _Credentials(email=email, password=password)
    except PydanticValidationError:
        logger.info("Login rejected: malformed credentials")
        raise InvalidCredentials() from None

    user = store.get_by_email(str(creds.email))
    if user is None or user.hashed_password is None:
        verify_password(creds.password, _DUMMY_HASH)
        logger.info("Login rejected: unknown account")
        raise InvalidCredentials()
    if not verify_password(creds.password, user.hashed_password):
        logger.info("Login rejected: bad password for user_id=%s", user.id)
        raise InvalidCredentials()
    if not user.is_active:
        logger.info("Login rejected: inactive user_id=%s", user.id)
        raise InvalidCredentials()

    return SessionIdentity(user_id=user.id, email=user.email, role=user.role, tenant_id=user.tenant_id)


# ---------------------------------------------------------------------------
# Reset-token hashing
# ---------------------------------------------------------------------------


def hash_reset_token(raw_token: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_token) as a hex string."""
    return hmac.new(
        _settings.secret_key.encode(),
        raw_token.encode(),
        hashlib.sha256,
    ).hexdigest()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str) -> None:
    """Write the session JWT as an httpOnly cookie.

    httponly=True: JS cannot read the cookie.
    samesite="lax": not sent on cross-site POST.
    secure: HTTPS-only when SECURE_COOKIES=true.
    max_age: matches the JWT expiry so both lapse together.
    """
    response.set_cookie(
        SESSION_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=_settings.session_expire_seconds,
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(SESSION_COOKIE)


def read_session_token(request) -> str | None:
    """Return the raw session token from the cookie or a Bearer header."""
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        return token
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:] or None
    return None
