"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in route modules
(to apply per-route limits with @limiter.limit()).

A single shared instance means every route shares the same counter store.
The in-memory store is per-process; with several workers each one counts
separately, which is acceptable for brute-force damping on /auth/login.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
