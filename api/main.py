"""
api/main.py -- FastAPI application entry point for the ParkingPilot API.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests          -- one access-log line per request with latency
  2. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  3. CORSMiddleware        -- adds CORS headers for allowed browser origins
  4. SlowAPIMiddleware     -- general per-client limit from api.limiter
  5. security_headers      -- frame/sniff/referrer/CSP headers, no-store on /api/auth
  6. csrf_protect          -- X-CSRF-Token check on authenticated writes

Lifespan builds every service from Settings and hangs it on app.state, starts
the sweep task, and tears both down symmetrically on shutdown. Route handlers
and auth guards only ever reach services through request.app.state.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded as SlowAPIRateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from api.routes.csrf import router as csrf_router
from auth.csrf import CSRFService
from auth.dependencies import bearer_token
from auth.otp import OTPService
from auth.passwords import PasswordHasher
from auth.ratelimit import FixedWindowRateLimiter
from auth.reset import PasswordResetService
from auth.store import AccountStore
from auth.tokens import TokenService
from core.clock import Clock, system_clock
from core.config import Settings, get_settings
from core.errors import AuthError, CSRFMismatch, RateLimitExceeded
from kvstore import KeyValueStore, MemoryStore, SQLiteStore
from notify.base import ChannelNotifier, Notifier
from notify.mailer import SmtpEmailSender
from notify.sms import TwilioSmsSender

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("parkingpilot.api")

settings = get_settings()

StoreFactory = Callable[[str], KeyValueStore]

# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def store_factory_for(config: Settings) -> StoreFactory:
    """Return a callable that opens one namespaced KeyValueStore per service."""
    if config.store_backend == "sqlite":
        return lambda namespace: SQLiteStore(config.store_path, namespace=namespace)
    return lambda namespace: MemoryStore(namespace=namespace)


def build_notifier(config: Settings) -> Notifier:
    """Route email through SMTP and phone through Twilio when configured.

    A channel without credentials falls back to the console notifier, which
    only logs the message.
    """
    email_sender = None
    if config.smtp_configured:
        email_sender = SmtpEmailSender(
            host=config.smtp_host,
            port=config.smtp_port,
            sender=config.email_from,
            username=config.smtp_username,
            password=config.smtp_password,
        )
    sms_sender = None
    if config.sms_configured:
        sms_sender = TwilioSmsSender(
            account_sid=config.twilio_account_sid,
            auth_token=config.twilio_auth_token,
            from_number=config.twilio_phone_number,
            default_country_code=config.default_country_code,
        )
    for channel, sender in (("email", email_sender), ("phone", sms_sender)):
        if sender is None:
            logger.warning("No %s provider configured -- messages will be logged, not sent", channel)
    return ChannelNotifier(email=email_sender, phone=sms_sender)


def configure_services(
    app: FastAPI,
    config: Settings,
    accounts: AccountStore,
    notifier: Notifier,
    store_factory: StoreFactory,
    clock: Clock = system_clock,
) -> None:
    """Build the auth services and attach them to app.state.

    The caller owns `accounts`; the key-value stores opened here are recorded
    on app.state.kv_stores so shutdown can close them.
    """
    otp_store = store_factory("otp")
    csrf_store = store_factory("csrf")
    limit_store = store_factory("ratelimit")
    app.state.kv_stores = [otp_store, csrf_store, limit_store]

    app.state.accounts = accounts
    app.state.notifier = notifier
    app.state.hasher = PasswordHasher(rounds=config.bcrypt_rounds)
    app.state.tokens = TokenService(config.jwt_secret, config.jwt_algorithm, clock=clock)
    app.state.otp = OTPService(
        otp_store,
        notifier,
        ttl_seconds=config.otp_ttl_seconds,
        code_length=config.otp_length,
        clock=clock,
    )
    app.state.csrf = CSRFService(csrf_store, capacity=config.csrf_capacity)
    app.state.auth_limiter = FixedWindowRateLimiter(
        limit_store,
        max_requests=config.auth_rate_limit_max,
        window_seconds=config.auth_rate_limit_window_seconds,
        clock=clock,
    )
    app.state.reset = PasswordResetService(
        accounts,
        app.state.tokens,
        app.state.hasher,
        notifier,
        frontend_url=config.frontend_url,
        ttl_seconds=config.reset_token_ttl_seconds,
        clock=clock,
    )


# ---------------------------------------------------------------------------
# Background sweep task
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI, interval_seconds: float) -> None:
    """Drop expired verification codes and closed rate-limit windows.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and ends the loop.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            app.state.otp.sweep()
            app.state.auth_limiter.sweep()
        except Exception:
            logger.exception("Sweep of expired entries failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open stores, wire services and start the sweep task; undo all of it on shutdown."""
    logger.info("%s API starting up", settings.app_name)
    accounts = AccountStore(settings.database_url)
    configure_services(
        app,
        settings,
        accounts=accounts,
        notifier=build_notifier(settings),
        store_factory=store_factory_for(settings),
    )
    if not accounts.has_admin():
        logger.warning("No admin account exists -- create one with `python main.py create-admin`")
    logger.info("Auth initialized (store_backend=%s)", settings.store_backend)
    app.state.sweep_task = asyncio.create_task(_sweep_loop(app, settings.otp_sweep_interval_seconds))

    yield

    app.state.sweep_task.cancel()
    with suppress(asyncio.CancelledError):
        await app.state.sweep_task
    for store in app.state.kv_stores:
        store.close()
    accounts.close()
    logger.info("%s API shutdown complete", settings.app_name)


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title=f"{settings.app_name} API",
    description="Account, session and verification API for the campus parking pilot.",
    version=API_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


def _error_response(exc: AuthError) -> JSONResponse:
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
    )
    if isinstance(exc, RateLimitExceeded):
        response.headers["Retry-After"] = str(exc.retry_after)
    return response


# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette makes the most recently added middleware the outermost one, and
# @app.middleware("http") is add_middleware() underneath. Registration below
# therefore runs innermost first: csrf_protect ... log_requests.
# ---------------------------------------------------------------------------

_CSRF_SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
_CSRF_EXEMPT_PATHS = frozenset(
    {
        "/api/auth/login",
        "/api/auth/register",
        "/api/auth/forgot-password",
        "/api/auth/reset-password",
    }
)


@app.middleware("http")
async def csrf_protect(request: Request, call_next):
    """Require X-CSRF-Token on state-changing requests that carry a bearer token.

    Requests with no bearer token pass through untouched; the route's
    authenticate guard answers them with 401.
    """
    if request.method in _CSRF_SAFE_METHODS or request.url.path in _CSRF_EXEMPT_PATHS:
        return await call_next(request)
    session_id = bearer_token(request)
    if session_id is None:
        return await call_next(request)
    supplied = request.headers.get("X-CSRF-Token")
    if not supplied:
        return _error_response(CSRFMismatch("CSRF token required."))
    if not request.app.state.csrf.check(session_id, supplied):
        logger.warning("CSRF check failed on %s %s", request.method, request.url.path)
        return _error_response(CSRFMismatch())
    return await call_next(request)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Permissions-Policy"] = "camera=(), microphone=(), geolocation=()"
    response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
    if request.url.path.startswith("/api/auth/"):
        response.headers["Cache-Control"] = "no-store"
    if not settings.debug:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-CSRF-Token"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)


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
app.include_router(csrf_router, prefix="/api", tags=["CSRF"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map any service-level AuthError to its status, code and client-safe message.

    The chained cause, if any, stays in the server log.
    """
    logger.info(
        "%s %s -> %d %s",
        request.method,
        request.url.path,
        exc.status_code,
        exc.code,
    )
    return _error_response(exc)


@app.exception_handler(SlowAPIRateLimitExceeded)
async def rate_limit_handler(request: Request, exc: SlowAPIRateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when the general slowapi limit is exceeded."""
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
    """Return 422 with structured error when request body or query params fail validation.

    Only field locations and messages are echoed back, never the submitted
    values (which may include passwords).
    """
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', 'invalid')}" for err in exc.errors()
    )
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=problems,
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

    The raw exception is written to the server log only, never to the
    response body.
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
# Defined directly in main.py so it is always reachable regardless of router
# registration state. Exempt from the general limit so load balancer probes
# are never throttled.
# ---------------------------------------------------------------------------


@app.get("/api/health", include_in_schema=True, tags=["Health"])
@limiter.exempt
def health(request: Request) -> HealthResponse:
    """Return API liveness, current version and account database status."""
    database = "ok" if request.app.state.accounts.ping() else "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": database},
    )
