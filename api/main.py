"""
api/main.py -- FastAPI application entry point for the ITAM access service.

Run with:      uvicorn asgi:app --reload

Middleware, outermost first: TrustedHost (settings.allowed_hosts), CORS
(settings.cors_origins), then SlowAPI for the login rate limit.

Lifespan builds the stores and the authorization core, wires the user-store
write listeners (reconciler cache invalidation + role-membership events),
starts the membership consumer task, and tears everything down symmetrically.

Exception handlers render every failure -- rbac access errors, validation,
HTTPException, rate limits, and unexpected exceptions -- into the same
ErrorResponse envelope.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from activity.store import ActivityStore
from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.activities import router as activities_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.roles import router as roles_router
from api.routes.v1.users import router as users_router
from auth.store import UserStore
from core.config import Settings, get_settings
from rbac.catalog import RoleCatalog
from rbac.errors import AccessControlError
from rbac.membership import RoleMembershipAggregator, UserIdentityChanged
from rbac.reconciler import IdentityReconciler
from rbac.resolver import AuthorizationResolver

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("itam.api")


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def init_state(app: FastAPI, user_store: UserStore, activity_store: ActivityStore, settings: Settings) -> None:
    """Build the authorization core around the given stores and attach it to app.state.

    Shared by the real lifespan and the test fixtures so both wire the same
    listeners. Listener order matters: the reconciler cache is invalidated
    before the membership event is published.
    """
    catalog = RoleCatalog()
    reconciler = IdentityReconciler(user_store, ttl_seconds=settings.identity_cache_ttl_seconds)
    resolver = AuthorizationResolver(catalog, reconciler)
    membership = RoleMembershipAggregator(catalog, user_store)

    user_store.add_write_listener(reconciler.invalidate)
    user_store.add_write_listener(lambda user_id: membership.publish(UserIdentityChanged(user_id)))

    app.state.user_store = user_store
    app.state.activity_store = activity_store
    app.state.role_catalog = catalog
    app.state.reconciler = reconciler
    app.state.resolver = resolver
    app.state.membership = membership


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the stores, start the membership consumer, and undo both on shutdown."""
    settings = get_settings()
    logger.info("ITAM access service starting up")
    init_state(app, UserStore(settings.user_db_url), ActivityStore(settings.activity_db_url), settings)
    if not app.state.user_store.has_users():
        logger.warning("No users exist yet -- create an administrator with: python main.py create-user <name> --admin")
    app.state.membership.recompute_user_counts()
    app.state.membership_task = asyncio.create_task(app.state.membership.run())
    logger.info("Authorization core initialized (identity cache ttl=%ss)", settings.identity_cache_ttl_seconds)

    yield

    app.state.membership_task.cancel()
    app.state.activity_store.close()
    app.state.user_store.close()
    logger.info("ITAM access service shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="ITAM Access API",
    description="Role-based access control for the IT asset management backend.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

_settings = get_settings()

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


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
app.include_router(roles_router, prefix="/api/v1", tags=["Roles"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(activities_router, prefix="/api/v1", tags=["Activities"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AccessControlError)
async def access_control_handler(request: Request, exc: AccessControlError) -> JSONResponse:
    """Render rbac errors (401/403/404/422/503) with their own code and status."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
    )


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


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Body, path or query params that fail pydantic validation become a 422 envelope."""
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
    """Wrap HTTPException in the envelope. A dict detail is already code + message."""
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """500 for anything unhandled. The traceback is logged, never returned."""
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
# Unauthenticated and not rate limited.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return liveness, version and per-component status."""
    components = {"app": "ok"}
    try:
        request.app.state.user_store.ping()
        components["database"] = "ok"
    except SQLAlchemyError:
        logger.warning("Health check: user database unreachable", exc_info=True)
        components["database"] = "error"
    return HealthResponse(version=VERSION, components=components)
