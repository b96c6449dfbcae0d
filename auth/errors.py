"""
auth/errors.py -- Domain error taxonomy for the auth core.

Every error carries a public message that is safe to show a client. Internal
detail (which lookup failed, store error codes) goes to the server log only.
The app-level exception handlers in api/main.py turn these into JSON; web
routes catch them and render the public message.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class. Subclasses set status_code, code, and the default message."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AuthError):
    """Malformed input or a password policy violation. Message names the rule."""

    status_code = 400
    code = "validation_error"
    default_message = "Invalid input."


class InvalidCredentials(AuthError):
    """Login failed. Never says whether the email or the password was wrong."""

    status_code = 401
    code = "invalid_credentials"
    default_message = "Invalid email or password."


class InvalidOrExpiredToken(AuthError):
    """Reset token unknown, expired, or already used. The three are indistinguishable."""

    status_code = 400
    code = "invalid_token"
    default_message = "Invalid or expired reset token."


class Unauthenticated(AuthError):
    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required."


class Forbidden(AuthError):
    """Authenticated but not permitted.

    caller_role is the caller's own role, kept for server-side debugging. It is
    never another party's role or tenant.
    """

    status_code = 403
    code = "forbidden"
    default_message = "Access denied."

    def __init__(self, message: str | None = None, caller_role: str | None = None) -> None:
        super().__init__(message)
        self.caller_role = caller_role


class InternalError(AuthError):
    """Store or transport failure. Details are logged, never returned."""
