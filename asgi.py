"""
asgi.py -- ASGI entry point for EventDesk.

Run with:  uvicorn asgi:app --reload
           uvicorn asgi:app --host 0.0.0.0 --port 8000 --workers 4   (requires REDIS_URL)

With more than one worker REDIS_URL must be set: the in-process token cache
is not shared between processes, so a refresh token minted by one worker
would be unknown to the others.
"""

from api.main import app

__all__ = ["app"]
