"""
api/main.py -- FastAPI application entry point for the book catalog.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. log_requests          -- one log line per request, latency included
  5. attach_auth_context   -- classifies every request as authenticated or
                              anonymous; never rejects

Lifespan opens the user store on startup and disposes it on shutdown.
"""

from __future__ import annotations

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
from starlette.exceptions import HTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.me import router as me_router
from auth.dependencies import resolve_auth_context
from auth.store import UserStore
from core.config import get_settings
from core.errors import (
    AuthenticationError,
    BookCatalogError,
    ConflictError,
    NotFoundError,
    ValidationError,
)

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("bookcatalog.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the user store for the server lifetime and close it on shutdown."""
    logger.info("Book catalog API starting up")
    app.state.user_store = UserStore(_settings.database_url)
    logger.info("User store initialized (%d users)", app.state.user_store.count_users())

    yield

    app.state.user_store.close()
    logger.info("Book catalog API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Book Catalog API",
    description="Register, log in, and keep a personal list of saved books.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Request authentication gate
#
# Starlette inserts each new middleware at the outside of the stack, so the
# registration order in this module is innermost first: auth gate, request
# log, SlowAPI, CORS, TrustedHost.
#
# Runs for every request. The result lands on request.state.auth where
# auth.dependencies.get_auth_context() picks it up. Authentication failure
# is not a request error here: bad tokens degrade to anonymous, and only
# routes that depend on get_current_identity turn that into a 401.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def attach_auth_context(request: Request, call_next):
    request.state.auth = resolve_auth_context(request.headers.get("Authorization"))
    return await call_next(request)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Registered after the auth gate so it wraps it: latency includes token
# verification.
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


app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(me_router, prefix="/api/v1", tags=["Me"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

_ERROR_STATUS: dict[type[BookCatalogError], int] = {
    ValidationError: 422,
    AuthenticationError: 401,
    NotFoundError: 404,
    ConflictError: 409,
}


@app.exception_handler(BookCatalogError)
async def domain_error_handler(request: Request, exc: BookCatalogError) -> JSONResponse:
    """Map the domain error taxonomy onto HTTP statuses."""
    status_code = _ERROR_STATUS.get(type(exc), 400)
    response = JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=exc.code, message=exc.message, detail=exc.field),
        ).model_dump(),
    )
    if status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
        response.headers["Cache-Control"] = "no-store"
    return response


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
    """Return 422 with structured error when request body or path params fail validation."""
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
    """Return a structured error for HTTP exceptions.

    Registered on the Starlette base class so unknown routes (404) and wrong
    methods (405) are covered along with FastAPI's own HTTPException.
    """
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
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
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
# Public and unthrottled. Also the simplest read-only route that works for
# anonymous callers.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and a database probe."""
    database = "ok"
    try:
        request.app.state.user_store.count_users()
    except SQLAlchemyError:
        logger.warning("Health check database probe failed", exc_info=True)
        database = "error"
    return HealthResponse(version=__version__, components={"app": "ok", "database": database})
