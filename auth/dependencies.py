"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Callers authenticate with an access token in the Authorization header:
  Authorization: Bearer <access_token>

The token is verified by the engine's TokenCodec (signature, class, expiry)
and turned into a Principal. There is no store or cache lookup on this path:
access tokens are stateless and stay valid until they expire, even after
logout.

try_get_principal() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_roles() wraps get_current_user() and raises HTTP 403 on a role mismatch.

Layer rule: no imports from events/ or cache/.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.engine import AuthEngine
from auth.models import Principal, Role


def bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def try_get_principal(request: Request) -> Principal | None:
    """Return the Principal for a valid Bearer access token, else None. Never raises."""
    token = bearer_token(request)
    if not token:
        return None
    engine: AuthEngine = request.app.state.auth_engine
    claims = engine.codec.verify_access_token(token)
    if claims is None:
        return None
    try:
        role = Role(claims["role"])
    except ValueError:
        return None
    return Principal(user_id=claims["sub"], email=claims["email"], role=role)


def get_current_user(request: Request) -> Principal:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: Principal = Depends(get_current_user)): ...
    """
    principal = try_get_principal(request)
    if principal is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Invalid or expired access token."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


def require_roles(*roles: Role) -> Callable[[Request], Principal]:
    """Build a dependency that admits only the given roles.

    Use as a FastAPI dependency:
        @router.post("/admin-only")
        async def route(user: Principal = Depends(require_roles(Role.SUPER_ADMIN))): ...
    """
    allowed = frozenset(Role(r) for r in roles)

    def _dependency(request: Request) -> Principal:
        principal = get_current_user(request)
        if principal.role not in allowed:
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Insufficient permissions."},
            )
        return principal

    return _dependency
