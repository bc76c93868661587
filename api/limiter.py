"""
api/limiter.py -- Shared slowapi rate limiter for the credential endpoints.

One module-level Limiter so /signin and /signup count against the same
in-memory store that SlowAPIMiddleware consults. Keys are the client IP.

login_rate_limit() is passed to @limiter.limit() as a callable so the limit
string (LOGIN_RATE_LIMIT, e.g. "10/minute") is read from settings when a
request arrives rather than frozen at import time.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_rate_limit() -> str:
    return get_settings().login_rate_limit
