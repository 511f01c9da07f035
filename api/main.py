"""
api/main.py -- FastAPI application entry point for BidBuy Auth.

Exposes the credential-lifecycle operations (AuthService) over JSON.

Run with:      python main.py serve
               uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds the AuthService (store, mailer, flows) on startup and
closes the store on shutdown.

Every response body, including framework errors, is the envelope
{"success": bool, "message": str, "data": {...}}.
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
from api.models import EnvelopeResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.service import AuthService
from core.config import get_settings

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("bidbuy.api")

# Middleware and docs_url are fixed when the app object is built.
_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the AuthService before the first request; close its store on shutdown.

    Tests replace app.router.lifespan_context with their own to inject an
    in-memory store and a recording email sender.
    """
    logger.info("BidBuy Auth API starting up")
    app.state.auth_service = AuthService.from_settings(_settings)
    logger.info("Auth service initialized (debug=%s)", _settings.debug)

    yield

    app.state.auth_service.close()
    logger.info("BidBuy Auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="BidBuy Auth API",
    description="Signup, email verification, login and password reset for BidBuy Buyers and Vendors.",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if _settings.debug else None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Each add_middleware() call wraps everything registered before it, so the
# last one added sees the request first. Registered innermost first:
# SlowAPI, then CORS, then TrustedHost.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

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


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same envelope as the auth operations so clients can
# parse every response with one schema.
# ---------------------------------------------------------------------------


def _envelope(status_code: int, message: str, code: str, **data) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=EnvelopeResponse(success=False, message=message, data={"code": code, **data}).model_dump(),
    )


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with the envelope when a rate limit is exceeded.

    Plain def: SlowAPIMiddleware calls this handler synchronously for sync
    routes. Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    logger.warning(
        "Rate limit exceeded on %s from %s",
        request.url.path,
        request.client.host if request.client else "unknown",
    )
    response = _envelope(429, "Too many requests. Please try again later.", "RATE_LIMITED", detail=str(exc.detail))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with the envelope when the body is not valid JSON or a field has the wrong type."""
    errors = [
        {"field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return _envelope(400, "Validation error", "INVALID_INPUT", errors=errors)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return the envelope for all FastAPI/Starlette HTTP exceptions (404 route, 405 method, ...)."""
    return _envelope(exc.status_code, str(exc.detail), f"HTTP_{exc.status_code}")


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception is written to the log only, never to the
    response body unless DEBUG is on.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    data = {"error": str(exc)} if _settings.debug else {}
    return _envelope(500, "Unknown server error occurred", "STORE_UNAVAILABLE", **data)


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied -- health
# checks from load balancers and monitoring systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> JSONResponse:
    """Return API liveness, version and whether the credential store answers."""
    service: AuthService = request.app.state.auth_service
    try:
        service.store.ping()
    except SQLAlchemyError:
        logger.exception("Health check: credential store unreachable")
        return JSONResponse(
            status_code=503,
            content=HealthResponse(status="degraded", version=VERSION, database="unavailable").model_dump(),
        )
    return JSONResponse(content=HealthResponse(version=VERSION).model_dump())
