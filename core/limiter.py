"""
core/limiter.py -- Shared slowapi rate limiter instance.

api/main.py attaches it to app.state and mounts SlowAPIMiddleware;
web/routes.py applies per-route limits with @limiter.limit(). It lives in
core/ because both layers need the same instance and neither may import the
other.

One instance means one in-memory counter store. A limiter created per module
would count each module's hits separately and the limits would never trip.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
