"""
auth/reset.py -- Password-reset token lifecycle.

Per-user state machine:

    NO_TOKEN --request()--> PENDING --consume()--> CONSUMED (row deleted)
                               |
                               +--expiry--> EXPIRED (row deleted by consume()
                                            or by the periodic sweep)

Guarantees:
  - request() answers identically whether or not the email is registered.
  - At most one PENDING token per user (UNIQUE(user_id) + replace in one txn).
  - consume() is single-use: the conditional delete in the store picks one
    winner when two requests race on the same token.
  - Expired tokens never authorize a reset; consume() deletes them on sight
    and purge_expired() sweeps the rest on a timer.
  - Raw tokens and reset links are never logged.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Protocol

from auth.errors import InvalidOrExpiredToken
from auth.policy import validate_password
from auth.tokens import hash_password, hash_reset_token
from core.config import Settings
from core.mailer import MailDeliveryError

if TYPE_CHECKING:
    from auth.store import UserStore

logger = logging.getLogger("tripdesk.auth.reset")

RESET_ACKNOWLEDGEMENT = "If an account exists, you will receive a password reset email."
RESET_SUCCESS = "Password has been reset successfully."


class ResetMailer(Protocol):
    def send_password_reset(self, to: str, reset_url: str, ttl_seconds: int) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_iso(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def build_reset_url(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/reset-password?token={token}"


class PasswordResetManager:
    """Create, deliver, verify, consume, and sweep password-reset tokens.

    clock is injectable so tests can move time without sleeping.
    """

    def __init__(
        self,
        store: UserStore,
        mailer: ResetMailer,
        settings: Settings,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._mailer = mailer
        self._settings = settings
        self._clock = clock

    def request(self, email: str) -> str:
        """Issue and email a reset token if the account exists.

        Always returns RESET_ACKNOWLEDGEMENT. A delivery failure is logged and
        otherwise invisible to the caller; answering differently would reveal
        that the account exists. The user can simply ask again.
        """
        user = self._store.get_by_email(email)
        if user is None or not user.is_active:
            logger.info("Password reset requested for unknown or inactive account")
            return RESET_ACKNOWLEDGEMENT

        token = secrets.token_hex(32)
        ttl = self._settings.reset_token_ttl_seconds
        expires_at = self._clock() + timedelta(seconds=ttl)
        self._store.replace_reset_token(user.id, hash_reset_token(token), expires_at)

        reset_url = build_reset_url(self._settings.app_base_url, token)
        try:
            self._mailer.send_password_reset(user.email, reset_url, ttl)
        except MailDeliveryError:
            logger.exception("Password reset email delivery failed for user_id=%s", user.id)
        else:
            logger.info("Password reset token issued for user_id=%s", user.id)
        return RESET_ACKNOWLEDGEMENT

    def verify(self, token: str) -> bool:
        """Return True if the token is pending and unexpired. Read-only."""
        row = self._store.get_reset_token_by_hash(hash_reset_token(token))
        return row is not None and _parse_iso(row.expires_at) >= self._clock()

    def consume(self, token: str, new_password: str) -> None:
        """Set a new password using a reset token, then burn the token.

        Raises:
            InvalidOrExpiredToken: unknown, expired, or already-consumed token.
            ValidationError: new_password fails the policy. The token survives
                so the user can retry with a stronger password.
        """
        row = self._store.get_reset_token_by_hash(hash_reset_token(token))
        if row is None:
            raise InvalidOrExpiredToken()

        now = self._clock()
        if now > _parse_iso(row.expires_at):
            self._store.delete_reset_token(row.id)
            logger.info("Expired password reset token discarded for user_id=%s", row.user_id)
            raise InvalidOrExpiredToken()

        validate_password(new_password)

        new_hash = hash_password(new_password)
        if not self._store.consume_reset_token(row.id, row.user_id, new_hash, now):
            raise InvalidOrExpiredToken()
        logger.info("Password reset completed for user_id=%s", row.user_id)

    def purge_expired(self) -> int:
        removed = self._store.purge_expired_reset_tokens(self._clock())
        if removed:
            logger.info("Purged %d expired password reset token(s)", removed)
        return removed
