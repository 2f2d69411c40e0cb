"""
api/main.py -- FastAPI application entry point for EventDesk.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. request_context    -- assigns X-Request-ID and logs method/path/status/latency
  2. CORSMiddleware     -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware  -- enforces per-route rate limits from api.limiter

Lifespan builds every collaborator once and hangs it on app.state:
  user_store, event_store  -- SQLAlchemy stores on DATABASE_URL
  token_cache              -- Redis when REDIS_URL is set, else in-process;
                              also backs the event read-through cache
  auth_engine              -- AuthEngine wired to user_store and token_cache
  mailer                   -- EmailSender (logs instead of sending without SMTP_HOST)
Shutdown closes them in reverse order.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.events import router as events_router
from auth.engine import AuthEngine
from auth.errors import InfrastructureError
from auth.mailer import EmailSender
from auth.store import DEFAULT_DB_URL, UserStore
from cache.store import MemoryTokenCache, build_token_cache
from core.config import get_settings
from events.store import EventStore

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("eventdesk.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(cache: MemoryTokenCache) -> None:
    """Trim expired in-process cache entries every hour.

    Only started for MemoryTokenCache -- Redis expires keys on its own.
    Expired entries are already invisible to get(); this only bounds memory.
    """
    while True:
        await asyncio.sleep(60 * 60)
        removed = cache.purge_expired()
        if removed:
            logger.info("Purged %d expired token cache entries", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build collaborators on startup, release them on shutdown."""
    settings = get_settings()
    db_url = settings.database_url or DEFAULT_DB_URL

    logger.info("EventDesk API starting up")
    app.state.user_store = UserStore(db_url)
    app.state.token_cache = build_token_cache(settings.redis_url, socket_timeout=settings.redis_socket_timeout)
    app.state.event_store = EventStore(
        db_url,
        app.state.token_cache,
        list_ttl=settings.event_list_cache_ttl_seconds,
        item_ttl=settings.event_cache_ttl_seconds,
    )
    app.state.auth_engine = AuthEngine.from_settings(app.state.user_store, app.state.token_cache, settings)
    app.state.mailer = EmailSender.from_settings(settings)
    if not app.state.mailer.is_configured:
        logger.warning("SMTP_HOST not set -- verification emails will be logged, not sent")

    purge_task = None
    if isinstance(app.state.token_cache, MemoryTokenCache):
        purge_task = asyncio.create_task(_purge_loop(app.state.token_cache))
    logger.info("Auth initialized (cache=%s)", type(app.state.token_cache).__name__)

    yield

    if purge_task is not None:
        purge_task.cancel()
    app.state.token_cache.close()
    app.state.event_store.close()
    app.state.user_store.close()
    logger.info("EventDesk API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="EventDesk API",
    description="Staff authentication and event catalogue for EventDesk.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    expose_headers=["X-Request-ID"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request context middleware
#
# Every response carries X-Request-ID (echoed from the client when present)
# and every request is logged with its latency. Registered last so it is the
# outermost layer and also times the CORS and rate-limit middleware.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def request_context(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = request_id
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request_id
    logger.info(
        "%s %s %d %.1fms %s rid=%s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
        request_id,
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(events_router, prefix="/api/v1", tags=["Events"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(InfrastructureError)
async def infrastructure_error_handler(request: Request, exc: InfrastructureError) -> JSONResponse:
    """Return 503 when the store, cache or signer is unavailable.

    The engine has already logged which operation and collaborator failed.
    Clients may retry; nothing about the failure is exposed in the body.
    """
    return JSONResponse(
        status_code=503,
        content=ErrorResponse(
            error=ErrorDetail(
                code="service_unavailable",
                message="A backing service is unavailable. Try again shortly.",
            )
        ).model_dump(),
        headers={"Retry-After": "5"},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a {code, message} dict as detail.
    When detail is already structured, use it directly as the error field.
    """
    headers = getattr(exc, "headers", None)
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is reachable regardless of router state.
# No rate limit and no auth -- load balancers must not be throttled.
# ---------------------------------------------------------------------------


def _database_ok(app: FastAPI) -> bool:
    try:
        with app.state.user_store.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Health check: database unreachable", exc_info=True)
        return False
    return True


@app.get("/api/v1/health", tags=["Health"], response_model=HealthResponse)
def health(request: Request) -> HealthResponse:
    """Return liveness plus database and cache reachability."""
    components = {
        "app": "ok",
        "database": "ok" if _database_ok(request.app) else "error",
        "cache": "ok" if request.app.state.token_cache.ping() else "error",
    }
    status = "healthy" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)
