"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and the route
modules (to apply per-route limits with @limiter.limit()).

This is the coarse per-IP layer in front of the public auth routes. The
precise, identity-aware limits (per email+IP on login, per subject on the
API) live in auth/ratelimit.py and are shared across workers through the
database.

Using a single shared instance ensures all routes share the same counter
store. If this were instantiated in each module separately, each module
would get its own isolated counter and rate limits would never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

IP_LIMIT = get_settings().ip_rate_limit

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
