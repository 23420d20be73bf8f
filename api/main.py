"""
api/main.py -- FastAPI application entry point for the login & consent provider.

The authorization server (Ory Hydra) is configured with
  urls.login   = https://<this service>/oauth2/login
  urls.consent = https://<this service>/oauth2/consent
and delegates every login and consent decision to us.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware     -- adds CORS headers for the configured browser origins
  2. SlowAPIMiddleware  -- enforces per-route rate limits from api.limiter

Lifespan builds the collaborators (database engine, stores, Hydra admin
client) and the ChallengeResolver on startup, and releases them on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.oauth import router as oauth_router
from auth.passwords import BcryptVerifier
from auth.store import BanStore, LoginLogStore, UserStore, open_engine
from core.bans import BanEvaluator
from core.config import Settings, get_settings
from core.errors import (
    ChallengeNotFound,
    CollaboratorUnavailable,
    ConsentGateError,
    ProviderProtocolError,
    SubjectNotFound,
)
from core.hydra import HydraAdminClient
from core.resolver import ChallengeResolver
from core.throttle import ThrottleGuard

VERSION = "1.0.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.DEBUG if _settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("consentgate.api")

# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_resolver(
    settings: Settings,
    provider,
    users: UserStore,
    bans: BanStore,
    login_log: LoginLogStore,
) -> ChallengeResolver:
    """Assemble a ChallengeResolver from settings and concrete collaborators."""
    throttle = ThrottleGuard(
        login_log,
        attempt_threshold=settings.failed_login_attempt_threshold,
        account_threshold=settings.failed_login_account_threshold,
        cooldown=timedelta(minutes=settings.failed_login_throttling_minutes),
    )
    return ChallengeResolver(
        provider=provider,
        identities=users,
        attempts=login_log,
        verifier=BcryptVerifier(),
        throttle=throttle,
        bans=BanEvaluator(bans),
        lookback=timedelta(days=settings.failed_login_days_to_check),
        account_link_url=settings.account_link_url,
        lobby_scope=settings.lobby_scope,
        password_reset_url=settings.password_reset_url,
        register_account_url=settings.register_account_url,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create collaborators on startup; dispose of them on shutdown.

    Everything before yield runs on startup; everything after yield runs on
    shutdown, so teardown mirrors setup.
    """
    settings = get_settings()
    logger.info("Login & consent provider starting up")
    engine = open_engine(settings.database_url)
    users = UserStore(engine)
    hydra = HydraAdminClient(settings.hydra_base_admin_url, timeout=settings.hydra_timeout_seconds)
    app.state.user_store = users
    app.state.resolver = build_resolver(settings, hydra, users, BanStore(engine), LoginLogStore(engine))
    logger.info("Resolver ready (admin API %s)", settings.hydra_base_admin_url)

    yield

    hydra.close()
    engine.dispose()
    logger.info("Login & consent provider shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Login & Consent Provider",
    description="Resolves delegated OAuth2/OpenID login and consent challenges for Ory Hydra.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
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
    # Only the path is logged: the query string carries the challenge id.
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

app.include_router(oauth_router, tags=["OAuth2 login & consent"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

_ERROR_STATUS: list[tuple[type[ConsentGateError], int, str]] = [
    # Most specific first: ChallengeNotFound is a ProviderProtocolError.
    (ChallengeNotFound, 404, "The login or consent challenge is unknown or has expired."),
    (SubjectNotFound, 404, "The consent challenge refers to an unknown account."),
    (ProviderProtocolError, 502, "The authorization server could not complete the request."),
    (CollaboratorUnavailable, 503, "A backing service is temporarily unavailable."),
]


@app.exception_handler(ConsentGateError)
async def consent_gate_error_handler(request: Request, exc: ConsentGateError) -> JSONResponse:
    """Map service faults to HTTP errors. The raw exception text stays in the log."""
    status_code, message = 500, "An unexpected error occurred."
    for exc_type, code, text in _ERROR_STATUS:
        if isinstance(exc, exc_type):
            status_code, message = code, text
            break
    logger.warning("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=message)).model_dump(),
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
    """Return a structured error for all FastAPI/Starlette HTTP exceptions."""
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
# Defined directly in main.py so it is always reachable. No rate limit --
# load balancer probes must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return liveness, version, and datastore reachability."""
    user_store = getattr(request.app.state, "user_store", None)
    db_ok = user_store is not None and user_store.ping()
    return HealthResponse(
        version=VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
