"""
api/main.py -- FastAPI application entry point for teamauth.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for the configured frontend
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. SessionMiddleware     -- OAuth state storage for authlib

Lifespan wires the collaborators onto app.state in dependency order:
  user_store -> revocations -> authz -> token_service / directory / team_service
and tears them down symmetrically on shutdown.
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
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.teams import router as teams_router
from api.routes.v1.users import router as users_router
from auth.dependencies import get_current_user
from auth.directory import IdentityDirectory
from auth.models import User
from auth.oauth import oauth as oauth_client
from auth.permissions import AuthorizationModel
from auth.store import UserStore
from auth.tokens import TokenService
from cache.redis_store import RedisRevocationStore
from cache.store import RevocationCache
from core.config import Settings, get_settings
from core.errors import AppError, AuthenticationError, RevocationStoreError
from teams.service import TeamService

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("teamauth.api")

_settings = get_settings()


def make_revocation_store(cfg: Settings):
    """Redis when REDIS_URL is set, otherwise the SQLite expiring set."""
    if cfg.redis_url:
        logger.info("Revocation store: redis")
        return RedisRevocationStore.from_url(cfg.redis_url)
    logger.info("Revocation store: sqlite")
    if cfg.revocation_db_path:
        return RevocationCache(cfg.revocation_db_path)
    return RevocationCache()


def wire_services(app: FastAPI, user_store: UserStore, revocations) -> None:
    """Attach the store, revocation backend and the services built on them to app.state."""
    authz = AuthorizationModel()
    app.state.user_store = user_store
    app.state.revocations = revocations
    app.state.authz = authz
    app.state.token_service = TokenService(user_store, revocations)
    app.state.directory = IdentityDirectory(user_store, authz)
    app.state.team_service = TeamService(user_store, authz)


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Drop expired revocation entries every hour.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(60 * 60)
        try:
            app.state.revocations.purge_expired()
        except RevocationStoreError:
            logger.warning("Revocation purge failed; retrying next cycle", exc_info=True)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("teamauth API starting up")
    user_store = UserStore(_settings.database_url) if _settings.database_url else UserStore()
    wire_services(app, user_store, make_revocation_store(_settings))
    app.state.oauth = oauth_client
    app.state.purge_task = asyncio.create_task(_purge_loop(app))
    logger.info("Auth initialized (users present=%s)", user_store.has_users())

    yield

    app.state.purge_task.cancel()
    app.state.revocations.close()
    app.state.user_store.close()
    logger.info("teamauth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="teamauth API",
    description="Identity, session tokens and team membership.",
    version=__version__,
    lifespan=lifespan,
    # Auth-protected equivalents are registered below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[_settings.frontend_url],
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# authlib stores the OAuth state value in the session between the redirect
# to the provider and the callback.
app.add_middleware(SessionMiddleware, secret_key=_settings.session_secret)

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
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(teams_router, prefix="/api/v1", tags=["Teams"])


@app.get("/docs", include_in_schema=False)
async def docs(user: User = Depends(get_current_user)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="teamauth API")


@app.get("/redoc", include_in_schema=False)
async def redoc(user: User = Depends(get_current_user)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="teamauth API")


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


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render domain errors.

    Authentication failures collapse to one code and message per family so
    callers cannot tell an expired token from a forged or revoked one, or an
    unknown email from a wrong password. The real reason is logged.
    """
    if isinstance(exc, AuthenticationError):
        logger.info("Auth failure on %s %s: %s", request.method, request.url.path, type(exc).__name__)
        generic = AuthenticationError.default_message if exc.code == AuthenticationError.code else exc.default_message
        resp = _error(exc.status_code, exc.code, generic)
        resp.headers["WWW-Authenticate"] = "Bearer"
        return resp
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
        return _error(exc.status_code, "internal_error", "An unexpected error occurred.")
    return _error(exc.status_code, exc.code, exc.message)


@app.exception_handler(SQLAlchemyError)
async def persistence_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Persistence failures are fail-fast: log and return a generic 500."""
    logger.exception("Persistence error on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler. The traceback goes to the log, never to the client."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit and no auth -- load balancers must be able to poll it.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Liveness plus a probe of the database and the revocation store.

    A revocation store outage reports "degraded" rather than failing: the
    service keeps issuing and verifying tokens under the fail-open policy.
    """
    components = {"app": "ok"}
    try:
        components["database"] = "ok" if request.app.state.user_store.ping() else "error"
    except SQLAlchemyError:
        logger.warning("Health check: database unreachable", exc_info=True)
        components["database"] = "error"
    try:
        components["revocation_store"] = "ok" if request.app.state.revocations.ping() else "error"
    except RevocationStoreError:
        logger.warning("Health check: revocation store unreachable", exc_info=True)
        components["revocation_store"] = "error"
    status = "healthy" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=__version__, components=components)
