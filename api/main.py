"""
api/main.py -- FastAPI application entry point for Passport.

Exposes authentication, password recovery and user/profile/role
administration over HTTP.

Install deps:  pip install -e .
Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds the store and the services on startup and closes them on
shutdown symmetrically.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from admin.services import AdminService
from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.profiles import router as profiles_router
from api.routes.v1.roles import router as roles_router
from api.routes.v1.users import router as users_router
from auth.dependencies import require_admin
from auth.errors import InvalidCredentials, NotFound, PassportError, RecoveryNotFound
from auth.mailer import build_notifier
from auth.models import User
from auth.passwords import PasswordEncoder, PasswordGenerator
from auth.recovery import PasswordRecovery
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenIssuer
from core.config import get_settings

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("passport.api")


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def configure_services(app: FastAPI, store: UserStore, notifier) -> None:
    """Build every service on top of ``store`` and attach it to app.state.

    Shared by the real lifespan and the test lifespan so both wire the same
    object graph.
    """
    settings = get_settings()
    encoder = PasswordEncoder.from_settings(settings)
    generator = PasswordGenerator(settings.password_generator_length)
    issuer = TokenIssuer.from_settings(settings)

    app.state.user_store = store
    app.state.notifier = notifier
    app.state.token_issuer = issuer
    app.state.auth_service = AuthService(store, encoder, issuer)
    app.state.recovery = PasswordRecovery(store, encoder, generator, notifier)
    app.state.admin = AdminService(store, encoder, generator, notifier)


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. Settings are resolved first so a production deployment without
    a salt or key pair fails before it accepts a request.
    """
    logger.info("Passport API starting up")
    settings = get_settings()
    store = UserStore(settings.database_url)
    notifier = build_notifier(settings)
    configure_services(app, store, notifier)
    if not store.has_users():
        logger.warning("No users exist yet -- run 'python main.py create-user' to bootstrap an administrator")
    logger.info("Auth initialized (mail=%s)", "smtp" if settings.smtp_host else "log")

    yield

    close = getattr(app.state.notifier, "close", None)
    if close is not None:
        close()
    app.state.user_store.close()
    logger.info("Passport API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Passport API",
    description="Authentication, password recovery and role-based access administration.",
    version=API_VERSION,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced by admin-only equivalents below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=get_settings().allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


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

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(profiles_router, prefix="/api/v1", tags=["Profiles"])
app.include_router(roles_router, prefix="/api/v1", tags=["Roles"])


# ---------------------------------------------------------------------------
# Admin-only API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(user: User = Depends(require_admin)):
    """Swagger UI -- admin only."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Passport API")


@app.get("/redoc", include_in_schema=False)
async def redoc(user: User = Depends(require_admin)):
    """ReDoc UI -- admin only."""
    return get_redoc_html(openapi_url="/openapi.json", title="Passport API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(PassportError)
async def passport_error_handler(request: Request, exc: PassportError) -> JSONResponse:
    """Map the domain exception taxonomy onto HTTP.

    Authentication and recovery failures always carry their fixed public
    message, whatever was passed when raising. Server-side failures are
    logged with their traceback and answered generically.
    """
    if exc.status_code >= 500:
        logger.exception("%s on %s %s", type(exc).__name__, request.method, request.url.path)
        return _error(exc.status_code, exc.code, exc.public_message)
    if isinstance(exc, (InvalidCredentials, RecoveryNotFound)):
        return _error(exc.status_code, exc.code, exc.public_message)
    detail = None
    if isinstance(exc, NotFound) and exc.ids:
        detail = "ids=" + ",".join(str(i) for i in exc.ids)
    return _error(exc.status_code, exc.code, str(exc), detail)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable regardless of router
# registration state. Not rate limited.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    components = {"app": "ok"}
    try:
        request.app.state.user_store.has_users()
        components["database"] = "ok"
    except SQLAlchemyError:
        logger.exception("Health check could not reach the database")
        components["database"] = "error"
    return HealthResponse(version=API_VERSION, components=components)
