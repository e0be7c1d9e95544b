"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login                      -- email/password login; token pair
  POST /api/v1/auth/refresh                    -- refresh token -> new token pair
  GET  /api/v1/auth/me                         -- current user info (requires auth)
  POST /api/v1/auth/forgot-password            -- issue a reset OTP (generic response)
  POST /api/v1/auth/verify-otp                 -- OTP -> reset token
  POST /api/v1/auth/reset-password             -- reset token + new password
  GET  /api/v1/auth/providers                  -- list enabled OAuth providers (public)
  GET  /api/v1/auth/oauth/{provider}/login     -- redirect to the provider
  GET  /api/v1/auth/oauth/{provider}/callback  -- code -> local user + token pair

Handlers raise auth.errors.AuthError and let the exception handler in
api/main.py pick the status code and the (generic, where it matters) message.
Token-bearing responses carry Cache-Control: no-store.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import (
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    OAuthLoginResponse,
    OAuthProviderInfo,
    RefreshRequest,
    ResetPasswordRequest,
    TokenPairResponse,
    UserInfo,
    VerifyOTPRequest,
    VerifyOTPResponse,
)
from auth.dependencies import get_current_user
from auth.errors import UnsupportedProvider
from auth.login import login as login_user
from auth.login import refresh as refresh_tokens
from auth.models import LoginResult, User
from auth.oauth import get_enabled_providers
from auth.tokens import ACCESS_TOKEN_TTL

# Auth policy: every route is public except GET /auth/me (get_current_user).
router = APIRouter()

# Returned for every successful forgot-password call, whether or not the
# account exists.
FORGOT_PASSWORD_MESSAGE = "If an account exists, an OTP has been sent."


def _token_pair(result: LoginResult) -> TokenPairResponse:
    return TokenPairResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        expires_in=int(ACCESS_TOKEN_TTL.total_seconds()),
    )


def _redirect_uri(request: Request, provider: str) -> str:
    return f"{request.app.state.settings.oauth_redirect_base.rstrip('/')}/{provider}/callback"


# ---------------------------------------------------------------------------
# Local login
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=TokenPairResponse)
def login(request: Request, response: Response, body: LoginRequest) -> TokenPairResponse:
    """Authenticate with email and password.

    Unknown email and wrong password both produce 401 invalid_credentials.
    """
    result = login_user(request.app.state.user_store, request.app.state.tokens, body.email, body.password)
    response.headers["Cache-Control"] = "no-store"
    return _token_pair(result)


@router.post("/auth/refresh", response_model=TokenPairResponse)
def refresh(request: Request, response: Response, body: RefreshRequest) -> TokenPairResponse:
    """Exchange a refresh token for a new access/refresh pair."""
    result = refresh_tokens(request.app.state.user_store, request.app.state.tokens, body.refresh_token)
    response.headers["Cache-Control"] = "no-store"
    return _token_pair(result)


@router.get("/auth/me", response_model=UserInfo)
async def me(current_user: User = Depends(get_current_user)) -> UserInfo:
    return UserInfo.from_user(current_user)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Start a reset. The response is identical whether or not the account exists."""
    request.app.state.reset_service.request_reset(body.email)
    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


@router.post("/auth/verify-otp", response_model=VerifyOTPResponse)
def verify_otp(request: Request, response: Response, body: VerifyOTPRequest) -> VerifyOTPResponse:
    reset_token = request.app.state.reset_service.verify_otp(body.email, body.code)
    response.headers["Cache-Control"] = "no-store"
    return VerifyOTPResponse(message="OTP verified successfully", reset_token=reset_token)


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    request.app.state.reset_service.reset_password(body.reset_token, body.new_password)
    return MessageResponse(message="Password reset successfully")


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers(request: Request) -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers. Empty list if none are configured."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers(request.app.state.settings)]


@router.get("/auth/oauth/{provider}/login")
async def oauth_login(request: Request, provider: str):
    """Redirect the browser to the provider's consent screen."""
    client = request.app.state.oauth.create_client(provider)
    if client is None:
        raise UnsupportedProvider(f"OAuth provider {provider!r} is not configured")
    return await client.authorize_redirect(request, _redirect_uri(request, provider))


@router.get("/auth/oauth/{provider}/callback", response_model=OAuthLoginResponse)
async def oauth_callback(
    request: Request,
    response: Response,
    provider: str,
    code: str = Query(min_length=1, max_length=2048),
) -> OAuthLoginResponse:
    """Complete the authorization-code flow and return a local token pair."""
    result = await request.app.state.oauth_service.complete_login(provider, code, _redirect_uri(request, provider))
    response.headers["Cache-Control"] = "no-store"
    return OAuthLoginResponse(
        message="Login successful",
        user=UserInfo.from_user(result.user),
        access_token=result.access_token,
        refresh_token=result.refresh_token,
    )
