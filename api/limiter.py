"""
api/limiter.py -- Shared slowapi rate limiter for general traffic.

Every route gets GENERAL_RATE_LIMIT per client address through
SlowAPIMiddleware's default_limits. Authentication endpoints are additionally
guarded by the much stricter fixed-window budget in auth/ratelimit.py.

Using a single shared instance ensures all routes share the same counter
store. RATE_LIMIT_STORAGE_URI selects it: "memory://" (per process) or any
backend the `limits` package supports, e.g. "redis://host:6379".
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

_settings = get_settings()

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[_settings.general_rate_limit],
    storage_uri=_settings.rate_limit_storage_uri,
    strategy="fixed-window",
)
