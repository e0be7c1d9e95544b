"""
api/main.py -- FastAPI application entry point for Gatehouse.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware    -- adds CORS headers for allowed browser origins
  2. SessionMiddleware -- authlib keeps the OAuth state between redirect and callback

Lifespan handles startup (store, token service, collaborators, superuser
bootstrap) and shutdown (dispose the engine) symmetrically.

Errors: route handlers raise auth.errors.AuthError. _STATUS_BY_KIND is the one
place an error kind becomes an HTTP status. Kinds in _GENERIC_MESSAGES are
security-sensitive and always render the same message with no detail, so a
client cannot tell "no such account" from "wrong password", or "wrong code"
from "expired code".
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.bootstrap import init_superuser
from auth.errors import AuthError, ErrorKind
from auth.mail import SMTPMailer
from auth.oauth import OAuthLoginService, build_identity_providers, build_oauth_registry
from auth.reset import PasswordResetService
from auth.store import UserStore
from auth.tokens import TokenService
from core.config import get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("gatehouse.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Error kind -> HTTP mapping
# ---------------------------------------------------------------------------

_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 401,
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.INVALID_OR_EXPIRED_OTP: 400,
    ErrorKind.INVALID_RESET_TOKEN: 400,
    ErrorKind.MALFORMED_TOKEN: 401,
    ErrorKind.BAD_SIGNATURE: 401,
    ErrorKind.EXPIRED: 401,
    ErrorKind.UNSUPPORTED_PROVIDER: 400,
    ErrorKind.TOKEN_GENERATION_FAILED: 500,
    ErrorKind.CONFIG_ERROR: 500,
    ErrorKind.STORAGE_ERROR: 500,
    ErrorKind.UPSTREAM_ERROR: 502,
}

# (code, message) sent to the client instead of the exception's own message.
_GENERIC_MESSAGES: dict[ErrorKind, tuple[str, str]] = {
    ErrorKind.NOT_FOUND: ("invalid_credentials", "Invalid email or password."),
    ErrorKind.INVALID_CREDENTIALS: ("invalid_credentials", "Invalid email or password."),
    ErrorKind.INVALID_OR_EXPIRED_OTP: ("invalid_or_expired_otp", "Invalid or expired OTP."),
    ErrorKind.INVALID_RESET_TOKEN: ("invalid_reset_token", "Invalid or expired reset token."),
    ErrorKind.MALFORMED_TOKEN: ("invalid_token", "Invalid or expired token."),
    ErrorKind.BAD_SIGNATURE: ("invalid_token", "Invalid or expired token."),
    ErrorKind.EXPIRED: ("invalid_token", "Invalid or expired token."),
}


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the auth core and its collaborators onto app.state.

    Startup order matters:
      1. Store first -- everything else reads or writes through it.
      2. Superuser bootstrap -- needs the store and nothing else.
      3. Token service, mailer, OAuth registry, then the services using them.
    """
    settings = get_settings()
    logger.info("Gatehouse API starting up")
    app.state.settings = settings
    app.state.user_store = UserStore(settings.database_url)
    init_superuser(app.state.user_store, settings.superuser_email, settings.superuser_password)

    app.state.tokens = TokenService(settings.secret_key)
    mailer = SMTPMailer(
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_user,
        password=settings.smtp_password,
        sender=settings.smtp_from,
    )
    app.state.reset_service = PasswordResetService(app.state.user_store, app.state.tokens, mailer)
    app.state.oauth = build_oauth_registry(settings)
    app.state.oauth_service = OAuthLoginService(
        app.state.user_store,
        app.state.tokens,
        build_identity_providers(app.state.oauth),
    )
    logger.info("Auth initialized (oauth providers: %s)", app.state.oauth_service.provider_names or "none")

    yield

    app.state.user_store.close()
    logger.info("Gatehouse API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Gatehouse API",
    description="Password login, OAuth login and OTP password reset issuing bearer tokens.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

# authlib's authorize_redirect() writes the OAuth state into request.session.
app.add_middleware(SessionMiddleware, secret_key=_settings.secret_key)


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


app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler answers with the ErrorResponse envelope.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    status_code = _STATUS_BY_KIND.get(exc.kind, 500)
    generic = _GENERIC_MESSAGES.get(exc.kind)
    if generic is not None:
        code, message = generic
        error = ErrorDetail(code=code, message=message)
        logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.kind.value, exc.message)
    else:
        error = ErrorDetail(code=exc.kind.value, message=exc.message)
        log = logger.error if status_code >= 500 else logger.warning
        log("%s %s failed: %s (%s)", request.method, request.url.path, exc.kind.value, exc.message)
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=error).model_dump())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Body or query validation failures become a 422 validation_error envelope."""
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
    """Return a structured error for FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict (see auth/dependencies.py), use it
    directly as the error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail)),
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors. The exception goes to the log only."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(code="internal_error", message="An unexpected error occurred."),
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health() -> HealthResponse:
    """Liveness probe. Does not touch the store."""
    return HealthResponse(version=VERSION)
