"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and the v1 routers
(to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

RATE_LIMIT_ENABLED=false turns every limit into a no-op (the test suite sets
it before importing the app). The limit strings themselves are read from
settings per request, so LOGIN_RATE_LIMIT and OTP_RATE_LIMIT take effect
without code changes.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    enabled=get_settings().rate_limit_enabled,
)


def login_limit() -> str:
    return get_settings().login_rate_limit


def otp_limit() -> str:
    return get_settings().otp_rate_limit
