"""
auth/oauth.py -- OAuth-delegated login: provider adapters and identity upsert.

Flow for GET /auth/oauth/{provider}/callback?code=...:

    exchange_code(code) -> provider token
    fetch_profile(token) -> ExternalProfile(external_id, email, display_name)
    link_or_create(provider, external_id, email) -> User
    issue_token_pair(User) -> access + refresh

link_or_create() is one atomic upsert keyed by (provider, provider_id)
followed by a re-read. The re-read is what supplies id and role: if a
concurrent callback inserted the row first, its role and created_at win and
this call only refreshes email/updated_at.

Provider adapters wrap authlib's Starlette OAuth registry. Only providers with
both client ID and secret configured are registered.

Security notes:
  Email verification: a provider email that the provider itself reports as
  unverified is rejected with UpstreamError. An unverified address could belong
  to someone else.

  OAuth state (CSRF) is not verified on the callback. authorize_redirect()
  still stores it in the session, so adding the check later only touches the
  callback route.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Protocol

import httpx
from authlib.integrations.base_client import OAuthError
from authlib.integrations.starlette_client import OAuth

from auth.errors import NotFound, UnsupportedProvider, UpstreamError
from auth.login import issue_token_pair
from auth.models import ExternalProfile, OAuthResult, User
from auth.store import UserStore
from auth.tokens import TokenService, utcnow

logger = logging.getLogger("gatehouse.auth.oauth")

_GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

_UPSTREAM_FAILURES = (OAuthError, httpx.HTTPError, KeyError, TypeError, ValueError)


# ---------------------------------------------------------------------------
# Authlib registry
# ---------------------------------------------------------------------------


def build_oauth_registry(settings) -> OAuth:
    """Return an authlib OAuth registry with every configured provider registered."""
    registry = OAuth()

    if settings.google_client_id and settings.google_client_secret:
        registry.register(
            name="google",
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Google OAuth provider registered")

    # GitHub -- static endpoints (no OIDC discovery document)
    if settings.github_client_id and settings.github_client_secret:
        registry.register(
            name="github",
            client_id=settings.github_client_id,
            client_secret=settings.github_client_secret,
            access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
            authorize_url="https://github.com/login/oauth/authorize",
            api_base_url="https://api.github.com/",
            client_kwargs={"scope": "read:user user:email"},
        )
        logger.info("GitHub OAuth provider registered")

    return registry


def get_enabled_providers(settings) -> list[dict]:
    """Return {"name", "label"} for every configured provider."""
    providers: list[dict] = []
    if settings.google_client_id and settings.google_client_secret:
        providers.append({"name": "google", "label": "Google"})
    if settings.github_client_id and settings.github_client_secret:
        providers.append({"name": "github", "label": "GitHub"})
    return providers


# ---------------------------------------------------------------------------
# Identity provider adapters
# ---------------------------------------------------------------------------


class IdentityProvider(Protocol):
    async def exchange_code(self, code: str, redirect_uri: str) -> dict: ...

    async def fetch_profile(self, token: dict) -> ExternalProfile: ...


class _AuthlibProvider:
    name = ""

    def __init__(self, client) -> None:
        self.client = client

    async def exchange_code(self, code: str, redirect_uri: str) -> dict:
        try:
            return await self.client.fetch_access_token(code=code, redirect_uri=redirect_uri)
        except _UPSTREAM_FAILURES as exc:
            logger.error("%s token exchange failed: %s", self.name, exc)
            raise UpstreamError(f"{self.name} token exchange failed: {exc}") from exc

    async def fetch_profile(self, token: dict) -> ExternalProfile:
        try:
            return await self._fetch_profile(token)
        except _UPSTREAM_FAILURES as exc:
            logger.error("%s profile fetch failed: %s", self.name, exc)
            raise UpstreamError(f"{self.name} profile fetch failed: {exc}") from exc

    async def _fetch_profile(self, token: dict) -> ExternalProfile:
        raise NotImplementedError


class GoogleProvider(_AuthlibProvider):
    name = "google"

    async def _fetch_profile(self, token: dict) -> ExternalProfile:
        resp = await self.client.get(_GOOGLE_USERINFO_URL, token=token)
        resp.raise_for_status()
        data = resp.json()
        if data.get("verified_email") is False:
            raise ValueError("google account email is not verified")
        return ExternalProfile(external_id=str(data["id"]), email=data["email"], display_name=data.get("name") or "")


class GitHubProvider(_AuthlibProvider):
    """GitHub needs two calls: /user for the stable id, /user/emails for the
    primary verified address. GitHub does not put the email in the token."""

    name = "github"

    async def _fetch_profile(self, token: dict) -> ExternalProfile:
        resp = await self.client.get("user", token=token)
        resp.raise_for_status()
        profile = resp.json()

        emails_resp = await self.client.get("user/emails", token=token)
        emails_resp.raise_for_status()
        email = next(
            (entry["email"] for entry in emails_resp.json() if entry.get("primary") and entry.get("verified")),
            None,
        )
        if not email:
            raise ValueError("no primary verified email on the GitHub account")
        return ExternalProfile(
            external_id=str(profile["id"]),
            email=email,
            display_name=profile.get("name") or profile.get("login") or "",
        )


_ADAPTERS: dict[str, type[_AuthlibProvider]] = {
    "google": GoogleProvider,
    "github": GitHubProvider,
}


def build_identity_providers(registry: OAuth) -> dict[str, IdentityProvider]:
    providers: dict[str, IdentityProvider] = {}
    for name, adapter in _ADAPTERS.items():
        client = registry.create_client(name)
        if client is not None:
            providers[name] = adapter(client)
    return providers


# ---------------------------------------------------------------------------
# Identity upsert
# ---------------------------------------------------------------------------


def link_or_create(store: UserStore, provider: str, provider_id: str, email: str, now: datetime) -> User:
    """Map an external identity to its local user, creating it on first sight.

    Raises:
        StorageError: the upsert failed, including when email already belongs
                      to a different account.
        NotFound:     the row could not be read back after the upsert.
    """
    store.upsert_provider_identity(provider, provider_id, email, now)
    user = store.get_by_provider_identity(provider, provider_id)
    if user is None:
        raise NotFound(f"{provider} identity {provider_id} missing after upsert")
    return user


class OAuthLoginService:
    def __init__(
        self,
        store: UserStore,
        tokens: TokenService,
        providers: dict[str, IdentityProvider],
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._tokens = tokens
        self._providers = providers
        self._clock = clock

    @property
    def provider_names(self) -> list[str]:
        return sorted(self._providers)

    async def complete_login(self, provider_name: str, code: str, redirect_uri: str) -> OAuthResult:
        provider = self._providers.get(provider_name)
        if provider is None:
            raise UnsupportedProvider(f"OAuth provider {provider_name!r} is not configured")

        token = await provider.exchange_code(code, redirect_uri)
        profile = await provider.fetch_profile(token)
        logger.info("Fetched %s profile for email %s", provider_name, profile.email)

        # Store calls are blocking; keep them off the event loop.
        user = await asyncio.to_thread(
            link_or_create, self._store, provider_name, profile.external_id, profile.email, self._clock()
        )
        pair = issue_token_pair(self._tokens, user)
        logger.info("OAuth login successful for %s user %s", provider_name, user.id)
        return OAuthResult(user=user, access_token=pair.access_token, refresh_token=pair.refresh_token)
