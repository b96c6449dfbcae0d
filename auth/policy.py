"""
auth/policy.py -- Password strength policy for newly chosen passwords.

Rules are checked in a fixed order and the first failure wins, so the user
always sees one actionable message: length, uppercase, lowercase, digit,
special character.

Login only enforces the legacy 6-character minimum (see auth/tokens.py);
existing accounts predate this policy.
"""

from __future__ import annotations

import re

from auth.errors import ValidationError

MIN_PASSWORD_LENGTH = 8

_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"[A-Z]"), "Password must contain at least one uppercase letter"),
    (re.compile(r"[a-z]"), "Password must contain at least one lowercase letter"),
    (re.compile(r"[0-9]"), "Password must contain at least one number"),
    (re.compile(r"[^A-Za-z0-9]"), "Password must contain at least one special character"),
)


def validate_password(password: str) -> None:
    """Raise ValidationError with the first rule the password violates."""
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    for pattern, message in _RULES:
        if not pattern.search(password):
            raise ValidationError(message)
