"""
api/main.py -- FastAPI application entry point for CarLot.

Builds the app object, wires the stores into app.state, and owns every
exception handler, so route handlers only ever raise core.errors types.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests          -- method, path, status, latency, client address
  2. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  3. SlowAPIMiddleware     -- lets slowapi see every request

Lifespan handles startup (stores, mailer, session purge task) and shutdown
(cancel purge task, dispose engines) symmetrically.

Error responses: requests under /api/ get the JSON ErrorResponse envelope.
Everything else gets an HTML error page, rendered by the callable asgi.py
stores at app.state.render_error. Until it is set (api/ used on its own), the
JSON envelope is used for every path.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, Response
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from auth.models import Role
from auth.sessions import SessionStore
from auth.store import DEFAULT_DB_URL as AUTH_DB_URL
from auth.store import UserStore
from core.config import get_settings
from core.errors import CarLotError, DependencyError, ValidationError
from core.limiter import limiter
from core.timeouts import call_with_timeout
from inventory.store import DEFAULT_DB_URL as INVENTORY_DB_URL
from inventory.store import VehicleStore
from notify.mailer import build_mailer

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("carlot.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Delete expired sessions every `interval` seconds.

    Lookups already drop expired rows lazily; this sweep removes the ones
    nobody presents again. A failed sweep is logged and retried next round.
    CancelledError from task.cancel() at shutdown unwinds out of asyncio.sleep.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await call_with_timeout(app.state.session_store.purge_expired)
        except DependencyError:
            logger.warning("Session purge failed, next attempt in %ds", interval)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the stores and mailer on startup, release them on shutdown.

    Users and sessions share the auth database; vehicles live in the
    inventory database. Either URL falls back to a SQLite file next to its
    store module when unset.
    """
    settings = get_settings()
    logger.info("CarLot starting up")

    auth_url = settings.auth_db_url or AUTH_DB_URL
    app.state.user_store = UserStore(auth_url)
    app.state.session_store = SessionStore(auth_url)
    app.state.vehicle_store = VehicleStore(settings.inventory_db_url or INVENTORY_DB_URL)
    app.state.mailer = build_mailer(settings)
    logger.info("Stores initialized (mailer=%s)", type(app.state.mailer).__name__)

    if app.state.user_store.count_by_role(Role.ADMIN) == 0:
        logger.warning("No admin account exists. Create one with: python main.py create-admin")

    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.session_purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    app.state.vehicle_store.close()
    app.state.session_store.close()
    app.state.user_store.close()
    logger.info("CarLot shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="CarLot",
    description="Dealership vehicle inventory with role-based staff access.",
    version=VERSION,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the current stack, so the middleware added last
# sees the request first.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=get_settings().allowed_hosts,
)

# SlowAPIMiddleware and @limiter.limit() both look for app.state.limiter.
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
# Exception handlers
# ---------------------------------------------------------------------------


def _error_response(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    detail: Optional[str] = None,
    fields: Optional[dict[str, str]] = None,
) -> Response:
    """Build a JSON envelope for /api/ paths, an HTML error page otherwise."""
    render_error = getattr(request.app.state, "render_error", None)
    if render_error is not None and not request.url.path.startswith("/api/"):
        return render_error(request, status_code, message)
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=code, message=message, detail=detail, fields=fields or {}),
        ).model_dump(),
    )


@app.exception_handler(CarLotError)
async def carlot_error_handler(request: Request, exc: CarLotError) -> Response:
    """Map the core.errors taxonomy onto its HTTP status.

    DependencyError has already been logged with its traceback where it was
    raised; this only records which request it failed.
    """
    if isinstance(exc, DependencyError):
        logger.error("Dependency failure on %s %s: %s", request.method, request.url.path, exc.message)
    fields = exc.field_errors if isinstance(exc, ValidationError) else None
    return _error_response(request, exc.status_code, exc.code, exc.message, fields=fields)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Return 429 with Retry-After when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    logger.warning("Rate limit exceeded on %s from %s", request.url.path, request.client.host if request.client else "unknown")
    response = _error_response(request, 429, "rate_limited", "Too many requests. Try again later.", detail=str(exc.detail))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
    return _error_response(request, 400, "validation_error", "Request validation failed.", detail=str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
    """Unknown routes (404) and wrong methods (405) from the router."""
    response = _error_response(request, exc.status_code, f"http_{exc.status_code}", str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> Response:
    """Catch-all for unexpected server errors.

    The traceback goes to the log only. The client gets a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(request, 500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is reachable regardless of router
# registration. No rate limit: load balancer probes must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return liveness, version, and whether both databases answer."""
    components = {"app": "ok"}
    try:
        await call_with_timeout(request.app.state.vehicle_store.ping)
        await call_with_timeout(request.app.state.user_store.has_users)
        components["database"] = "ok"
    except DependencyError:
        components["database"] = "error"
    status = "healthy" if components["database"] == "ok" else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)
