"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login                -- password login; returns access + refresh tokens
  POST /api/v1/auth/refresh-token        -- exchange refresh token for a new access token
  POST /api/v1/auth/logout               -- drop the caller's refresh session (requires auth)
  GET  /api/v1/auth/verify-email?token=  -- email link target; returns an HTML page
  POST /api/v1/auth/verify-email         -- same, JSON in / JSON out
  POST /api/v1/auth/resend-verification  -- issue a new verification link by email
  GET  /api/v1/auth/me                   -- current user profile (requires auth)
  GET  /api/v1/auth/users?role=          -- list accounts (SUPER_ADMIN only)

There is no signup route. Accounts are provisioned by administrators
(see auth/provisioning.py and `python main.py seed`).

Status mapping for engine outcomes:
  invalid_credentials         -> 401
  invalid_refresh_token       -> 401
  invalid_verification_token  -> 400
  user_not_found              -> 404
  InfrastructureError         -> 503 (exception handler in api/main.py)

Security:
  POST /login is rate-limited per IP (LOGIN_RATE_LIMIT, default 10/minute).
  Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse

from api.limiter import limiter
from api.models import (
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    RefreshTokenRequest,
    RefreshTokenResponse,
    ResendVerificationRequest,
    UserPublic,
    VerifyEmailRequest,
    VerifyEmailResponse,
)
from auth.dependencies import get_current_user, require_roles
from auth.engine import AuthEngine
from auth.mailer import (
    EmailSender,
    verification_expired_html,
    verification_link,
    verification_success_html,
)
from auth.models import Principal, Rejected, Role
from auth.store import UserStore
from core.config import get_settings

# Auth policy:
# - POST /auth/login:               public
# - POST /auth/refresh-token:       public -- the refresh token is the credential
# - POST /auth/logout:              requires auth (get_current_user)
# - GET  /auth/verify-email:        public -- target of the emailed link
# - POST /auth/verify-email:        public
# - POST /auth/resend-verification: public -- may reveal whether an email exists
# - GET  /auth/me:                  requires auth (get_current_user)
# - GET  /auth/users:               requires SUPER_ADMIN (require_roles)
router = APIRouter()

_NO_STORE = {"Cache-Control": "no-store"}


def _engine(request: Request) -> AuthEngine:
    return request.app.state.auth_engine


def _reject(status_code: int, rejected: Rejected) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"code": rejected.code, "message": rejected.message},
        headers=_NO_STORE,
    )


# ---------------------------------------------------------------------------
# Session endpoints
# ---------------------------------------------------------------------------


@limiter.limit(lambda: get_settings().login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    The same generic 401 is returned for an unknown email, an unverified
    account and a wrong password.
    """
    engine = _engine(request)
    result = engine.login(body.email, body.password)
    if isinstance(result, Rejected):
        return JSONResponse(
            status_code=401,
            content={"error": {"code": result.code, "message": result.message}},
            headers=_NO_STORE,
        )
    payload = LoginResponse(
        user=UserPublic.from_user(result.user),
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        expires_in=int(engine.access_ttl.total_seconds()),
    )
    return JSONResponse(status_code=200, content=payload.model_dump(), headers=_NO_STORE)


@router.post("/auth/refresh-token", response_model=RefreshTokenResponse)
def refresh_token(request: Request, body: RefreshTokenRequest) -> JSONResponse:
    """Issue a new access token. The refresh token itself is not rotated."""
    engine = _engine(request)
    result = engine.refresh_access_token(body.refresh_token)
    if isinstance(result, Rejected):
        raise _reject(401, result)
    payload = RefreshTokenResponse(access_token=result, expires_in=int(engine.access_ttl.total_seconds()))
    return JSONResponse(status_code=200, content=payload.model_dump(), headers=_NO_STORE)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, principal: Principal = Depends(get_current_user)) -> MessageResponse:
    """End the caller's session. Their refresh token stops working immediately.

    The access token remains valid until it expires -- access tokens are
    stateless and cannot be revoked.
    """
    _engine(request).logout(principal.user_id)
    return MessageResponse(message="Logged out successfully.")


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


@router.get("/auth/verify-email", response_class=HTMLResponse, include_in_schema=False)
def verify_email_page(request: Request, token: str = Query(default="")) -> HTMLResponse:
    """Landing page for the emailed verification link. Any bad token gets the expired page."""
    result = _engine(request).verify_email(token)
    if isinstance(result, Rejected):
        return HTMLResponse(verification_expired_html(), status_code=400)
    return HTMLResponse(verification_success_html(result.name), status_code=200)


@router.post("/auth/verify-email", response_model=VerifyEmailResponse)
def verify_email(request: Request, body: VerifyEmailRequest) -> VerifyEmailResponse:
    result = _engine(request).verify_email(body.token)
    if isinstance(result, Rejected):
        raise _reject(400, result)
    return VerifyEmailResponse(user=UserPublic.from_user(result))


@router.post("/auth/resend-verification", response_model=MessageResponse)
def resend_verification(request: Request, body: ResendVerificationRequest) -> MessageResponse:
    """Send a fresh verification link to an unverified account.

    Already-verified accounts get a 200 with no email sent. A mail transport
    failure is a 502: the token was issued but the user never received it.
    """
    result = _engine(request).resend_verification(body.email)
    if isinstance(result, Rejected):
        raise _reject(404, result)
    if result.already_verified:
        return MessageResponse(message="Email already verified.")

    mailer: EmailSender = request.app.state.mailer
    link = verification_link(get_settings().app_url, result.token)
    if not mailer.send_verification_email(result.user.email, result.user.name, link):
        raise HTTPException(
            status_code=502,
            detail={"code": "email_failed", "message": "Failed to send verification email."},
        )
    return MessageResponse(message="Verification email sent successfully.")


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, principal: Principal = Depends(get_current_user)) -> MeResponse:
    """Return the profile of the currently authenticated user."""
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(principal.user_id)
    if user is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )
    return MeResponse(user=UserPublic.from_user(user), campus=user.campus, phone=user.phone)


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


@router.get("/auth/users", response_model=list[UserPublic])
def list_users(
    request: Request,
    role: Optional[Role] = Query(default=None),
    _admin: Principal = Depends(require_roles(Role.SUPER_ADMIN)),
) -> list[UserPublic]:
    """List provisioned accounts, optionally filtered by role. Super admins only."""
    user_store: UserStore = request.app.state.user_store
    return [UserPublic.from_user(u) for u in user_store.list_users(role=role)]
