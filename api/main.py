"""
api/main.py -- FastAPI application entry point for authcore.

Exposes the identity core over HTTP: local and OAuth login, email
verification, password reset and the admin user endpoints.

Run with:      uvicorn asgi:app --reload
               python main.py serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. SessionMiddleware     -- OAuth state between redirect and callback

Lifespan handles startup (user store, role/platform bootstrap, service
wiring, OTP purge task) and shutdown (cancel purge task, close DB connection)
symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.oauth import router as oauth_router
from api.routes.v1.users import router as users_router
from auth.errors import AuthError
from auth.line import LineLoginClient
from auth.oauth import build_oauth
from auth.passwords import PasswordHasher
from auth.registry import bootstrap
from auth.reset import PasswordResetFlow
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenCodec
from auth.verification import EmailVerificationFlow
from cache.store import InMemoryOtpStore, OtpStore
from core.clock import Clock, SystemClock
from core.config import Settings, get_settings
from mail.sender import MailSender, build_mail_sender
from mail.templates import EmailTemplates

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authcore.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def configure_services(
    app: FastAPI,
    settings: Settings,
    user_store: UserStore,
    clock: Clock | None = None,
    mailer: MailSender | None = None,
    otp_store: OtpStore | None = None,
    hasher: PasswordHasher | None = None,
) -> None:
    """Build the identity core from settings and attach it to app.state.

    Tests call this from a patched lifespan with a frozen clock, a recording
    mailer and a deterministic OTP store; production passes only the store.
    """
    clock = clock or SystemClock()
    codec = TokenCodec(settings.secret_key, clock=clock)
    hasher = hasher or PasswordHasher(rounds=settings.bcrypt_rounds)
    otp_store = otp_store or InMemoryOtpStore(ttl=timedelta(seconds=settings.otp_expire_seconds), clock=clock)
    mailer = mailer or build_mail_sender(settings)
    templates = EmailTemplates(company_name=settings.company_name)

    app.state.settings = settings
    app.state.user_store = user_store
    app.state.otp_store = otp_store
    app.state.mailer = mailer
    app.state.auth_service = AuthService(
        user_store,
        codec,
        hasher,
        clock=clock,
        login_ttl=timedelta(seconds=settings.login_token_expire_seconds),
        link_by_email=settings.oauth_link_by_email,
    )
    app.state.verification = EmailVerificationFlow(
        user_store,
        codec,
        otp_store,
        mailer,
        templates,
        token_ttl=timedelta(seconds=settings.verification_token_expire_seconds),
    )
    app.state.reset = PasswordResetFlow(
        user_store,
        codec,
        otp_store,
        mailer,
        templates,
        hasher,
        token_ttl=timedelta(seconds=settings.reset_token_expire_seconds),
        requires_self_platform=settings.reset_requires_self_platform,
    )
    app.state.oauth = build_oauth(settings)
    app.state.line = LineLoginClient(settings.line_client_id, settings.line_client_secret, settings.line_redirect_uri)


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Drop expired one-time codes every minute.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(60)
        removed = app.state.otp_store.purge_expired()
        if removed:
            logger.debug("Purged %d expired one-time codes", removed)


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. User store, then bootstrap -- built-in roles and platforms must exist
         before any registration resolves the Guest role or a platform.
      2. Services -- hold the store and the OTP store.
      3. Purge task last -- references app.state.otp_store.
    """
    logger.info("authcore API starting up")
    user_store = UserStore(db_url=settings.database_url)
    bootstrap(user_store)
    configure_services(app, settings, user_store)
    logger.info("Identity core initialized (mail configured: %s)", settings.mail_configured)
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.user_store.close()
    logger.info("authcore API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="authcore API",
    description="Identity and access management: login, OAuth account linking, email verification, password reset.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the app, so the last one added is outermost. Register
# innermost first: Session -> SlowAPI -> CORS -> TrustedHost.
# ---------------------------------------------------------------------------

# SessionMiddleware is required by authlib to store the OAuth state value
# between the authorization redirect and the callback. The LINE callback keeps
# its own state value in the same session.
app.add_middleware(SessionMiddleware, secret_key=settings.secret_key, https_only=settings.secure_cookies)

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Captures wall-clock time around call_next so every response is logged with
# its latency. Query strings are not logged: they can carry OAuth codes.
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
app.include_router(oauth_router, prefix="/api/v1", tags=["OAuth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render any identity-core failure with its own status code and error code.

    TokenInvalid subclasses share one public message; the cause was already
    logged by auth/tokens.py.
    """
    if exc.status_code >= 500:
        logger.error("%s on %s %s", exc.error_code, request.method, request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(**exc.to_dict())).model_dump(),
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
                detail=str(exc.detail),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    # Field locations only: input values may contain passwords.
    fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=fields,
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
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
# Defined directly in main.py (not in a router) so it is always reachable.
# No rate limit applied -- health checks from load balancers must not be
# throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    db_ok = request.app.state.user_store.ping()
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
