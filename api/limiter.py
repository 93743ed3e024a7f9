"""
api/limiter.py -- The process-wide slowapi Limiter.

api/main.py attaches it to app.state and mounts SlowAPIMiddleware;
api/routes/v1/auth.py decorates the login route with it. Counters live in
process memory, so one instance must be shared by both.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
