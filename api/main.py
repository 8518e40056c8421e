"""
api/main.py -- FastAPI application entry point for SecureWatch.

Run with:      uvicorn asgi:app --reload
Initialize DB: python main.py init-db

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds the shared engine and every store on app.state, starts the
expired-session purge task, and tears both down symmetrically on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.errors import ApiError
from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from api.routes.policies import router as policies_router
from api.routes.settings import router as settings_router
from api.routes.users import router as users_router
from appsettings.store import SettingsStore
from auth.dependencies import get_current_user
from auth.models import User
from auth.ratelimit import FixedWindowRateLimiter
from auth.sessions import SessionStore
from auth.store import UserStore
from core.config import get_settings
from core.database import make_engine
from policies.resolver import SqlFunctionResolver
from policies.store import PolicyStore

VERSION = "1.0.0"

# Seconds between sweeps of expired sessions and stale limiter windows.
PURGE_INTERVAL_SECONDS = 15 * 60

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.DEBUG if get_settings().debug else logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("securewatch.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired sessions and forget elapsed login windows periodically.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(PURGE_INTERVAL_SECONDS)
        try:
            await asyncio.to_thread(app.state.session_store.purge_expired)
        except SQLAlchemyError:
            logger.exception("Session purge failed")
        app.state.login_limiter.sweep(time.monotonic())


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the engine and stores on startup; stop the purge task and dispose on shutdown.

    All stores share one engine: the policy queries join users and employees,
    so everything must live in one database.
    """
    settings = get_settings()
    logger.info("SecureWatch API starting up")
    engine = make_engine(settings.database_url)
    app.state.engine = engine
    app.state.user_store = UserStore(engine)
    app.state.session_store = SessionStore(engine)
    app.state.policy_store = PolicyStore(engine)
    app.state.settings_store = SettingsStore(engine)
    app.state.policy_resolver = SqlFunctionResolver(engine)
    if not app.state.user_store.has_users():
        logger.warning("No user accounts exist. Create one with: python main.py create-admin")
    if settings.policy_trigger_test_mode:
        logger.warning("POLICY_TRIGGER_TEST_MODE is on: triggers without employeeId use an arbitrary employee")
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    engine.dispose()
    logger.info("SecureWatch API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="SecureWatch API",
    description="Authentication, security policy management and settings for the SecureWatch console.",
    version=VERSION,
    lifespan=lifespan,
    # Built-in docs are replaced by session-protected routes below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order the request should encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=get_settings().allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# Login attempts: fixed window per client address. Replaced per test.
app.state.login_limiter = FixedWindowRateLimiter(
    max_requests=get_settings().login_rate_limit_max,
    window_seconds=get_settings().login_rate_limit_window_seconds,
)

# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(users_router, prefix="/api", tags=["Users"])
app.include_router(policies_router, prefix="/api", tags=["Policies"])
app.include_router(settings_router, prefix="/api", tags=["Settings"])


# ---------------------------------------------------------------------------
# Session-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(user: User = Depends(get_current_user)):
    """Swagger UI -- requires a session."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="SecureWatch API")


@app.get("/redoc", include_in_schema=False)
async def redoc(user: User = Depends(get_current_user)):
    """ReDoc UI -- requires a session."""
    return get_redoc_html(openapi_url="/openapi.json", title="SecureWatch API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler returns the same {"error": {"code", "message"}} envelope so
# clients can parse errors without choosing a schema by status code.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message)).model_dump(),
        headers=headers,
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 from the general slowapi throttle."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(429, "RATE_LIMIT_EXCEEDED", "Too many requests. Try again later.")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed body or parameters: 400 VALIDATION_ERROR with the first problem."""
    errors = exc.errors()
    message = "Request validation failed."
    if errors:
        loc = ".".join(str(p) for p in errors[0].get("loc", ()) if p != "body")
        msg = errors[0].get("msg", message)
        message = f"{loc}: {msg}" if loc else msg
    return _error_response(400, "VALIDATION_ERROR", message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render ApiError (and plain HTTPException) in the error envelope.

    ApiError.extra (e.g. retryAfter) is merged at the top level next to
    "error".
    """
    if isinstance(exc, ApiError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail, **exc.extra},
            headers=exc.headers,
        )
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return _error_response(exc.status_code, f"HTTP_{exc.status_code}", str(exc.detail), headers=exc.headers)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The traceback goes to the log only; the client gets a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "INTERNAL_ERROR", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit: load balancer and monitoring probes must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)
