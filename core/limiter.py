"""
core/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (middleware + 429 handler), by api/routes/v1/auth.py
and by web/routes.py. Both forgot-password endpoints are limited per client
IP so they cannot be used to flood a mailbox. Login and token consumption
are not rate-limited.

A single shared instance keeps one in-memory counter store for all routes.

Usage (decorator order matters: the router must register the wrapped
function, otherwise SlowAPIMiddleware exempts the route and nothing counts):

    @router.post("/forgot-password")
    @limiter.shared_limit(forgot_password_limit, scope=FORGOT_PASSWORD_SCOPE)
    def handler(request: Request, ...): ...
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

# The API endpoint and the web form draw from one counter per IP.
FORGOT_PASSWORD_SCOPE = "forgot-password"

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def forgot_password_limit() -> str:
    """Read FORGOT_PASSWORD_RATE_LIMIT on every request rather than at import."""
    return get_settings().forgot_password_rate_limit
