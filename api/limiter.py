"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (to mount as middleware) and api/routes/v1/auth.py
(to apply @limiter.limit() on the login route).

A single shared instance means all routes share one in-memory counter store.
Instantiating it per module would give each module its own counters and the
limits would never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

LOGIN_RATE_LIMIT = "10/minute"

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
