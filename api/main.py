"""
api/main.py -- FastAPI application entry point for ClubGate.

Run with:  uvicorn asgi:app --reload

Middleware, outermost first: TrustedHostMiddleware (Host header allow-list),
CORSMiddleware (browser origins from CORS_ORIGINS), SlowAPIMiddleware
(per-route limits declared in api/routes/v1/auth.py).

Lifespan builds one engine and the four stores on it at startup, starts the
expiry sweep, and tears both down at shutdown.

Every error leaves through _error_response(), so clients always receive
{"error": {"code", "message", "detail"}}. AuthError subclasses carry their own
status and code; anything unexpected is logged with a traceback and answered
with a generic 500 -- internals never reach the response body.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthError
from auth.invites import InviteStore
from auth.resets import PasswordResetStore
from auth.store import SessionStore, UserStore, create_auth_engine
from core.config import get_settings

VERSION = "0.1.0"

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("clubgate.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Startup / shutdown
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI) -> None:
    """Delete expired sessions and spent reset tokens every SESSION_SWEEP_INTERVAL_SECONDS.

    The DELETE runs in a worker thread so the event loop keeps serving. A
    failed sweep is logged and retried on the next tick; expired rows are
    already invisible to find_valid(), so a missed sweep only costs space.
    """
    while True:
        await asyncio.sleep(_settings.session_sweep_interval_seconds)
        try:
            removed = await asyncio.to_thread(app.state.session_store.delete_expired)
            resets = await asyncio.to_thread(app.state.reset_store.delete_expired)
        except SQLAlchemyError:
            logger.exception("Expiry sweep failed")
            continue
        if removed or resets:
            logger.info("Swept %d expired sessions and %d reset tokens", removed, resets)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the auth database and start the sweep; undo both on shutdown.

    The four stores share one engine, hence one connection pool.
    """
    logger.info("ClubGate API starting up")
    engine = create_auth_engine(_settings.database_url)
    app.state.user_store = UserStore(engine)
    app.state.session_store = SessionStore(engine)
    app.state.invite_store = InviteStore(engine)
    app.state.reset_store = PasswordResetStore(engine)
    if not app.state.user_store.has_users():
        logger.warning("No users exist yet -- create the first admin with: python main.py create-admin")
    app.state.sweep_task = asyncio.create_task(_sweep_loop(app))

    yield

    app.state.sweep_task.cancel()
    app.state.user_store.close()
    logger.info("ClubGate API shutdown complete")


app = FastAPI(
    title="ClubGate API",
    description="Token/session authentication, role-based access control and invite-code signup.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
    max_age=3600,
)
app.add_middleware(SlowAPIMiddleware)
app.state.limiter = limiter  # SlowAPIMiddleware reads it from here


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """One access-log line per request; the user id is included once authenticated."""
    started = time.perf_counter()
    response = await call_next(request)
    identity = getattr(request.state, "identity", None)
    logger.info(
        "%s %s -> %d in %.1fms (client=%s user=%s)",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - started) * 1000,
        request.client.host if request.client else "-",
        identity.id if identity is not None else "-",
    )
    return response


app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------


def _error_response(
    status_code: int,
    code: str,
    message: str,
    detail: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Typed auth rejection -> its own status and stable code."""
    logger.info("Auth rejected %s %s: %s", request.method, request.url.path, exc.code)
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return _error_response(exc.status_code, exc.code, exc.message, exc.detail, headers)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    retry_after = str(int(getattr(exc, "retry_after", 60)))
    return _error_response(
        429, "rate_limited", "Too many requests.", str(exc), headers={"Retry-After": retry_after}
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Route errors and Starlette's own 404/405.

    Routes raise HTTPException(detail={"code", "message"}); that dict is passed
    through as the error. Headers such as Allow on a 405 are kept.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail), headers=exc.headers)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Store unreachable, bugs. The exception is logged, never echoed."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# Health lives here rather than in a router so it stays reachable, with no
# auth and no rate limit, whatever happens to the auth routes.
@app.get("/api/v1/health", tags=["Health"])
async def health() -> HealthResponse:
    return HealthResponse(version=VERSION)
