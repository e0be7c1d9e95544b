"""
auth/login.py -- Local password login and refresh-token exchange.

login() raises the same InvalidCredentials for an unknown email, an
OAuth-only account and a wrong password, and runs bcrypt in every case
(see auth/passwords.authenticate). Local accounts are never created here.
"""

from __future__ import annotations

import logging
from datetime import datetime

from auth.errors import ConfigError, InvalidCredentials, MalformedToken, NotFound, TokenGenerationFailed
from auth.models import LoginResult, User
from auth.passwords import authenticate
from auth.store import UserStore
from auth.tokens import TokenService, utcnow

logger = logging.getLogger("gatehouse.auth")


def issue_token_pair(tokens: TokenService, user: User) -> LoginResult:
    """Mint an access + refresh token for user.

    A missing signing secret is reported as TokenGenerationFailed: from the
    caller's side both mean "could not mint", and the cause stays chained.
    """
    try:
        access_token = tokens.issue_access_token(user.id, user.email, user.role)
        refresh_token = tokens.issue_refresh_token(user.id)
    except ConfigError as exc:
        logger.error("Cannot mint tokens for user %s: %s", user.id, exc)
        raise TokenGenerationFailed("failed to generate tokens") from exc
    return LoginResult(access_token=access_token, refresh_token=refresh_token)


def login(
    store: UserStore,
    tokens: TokenService,
    email: str,
    password: str,
    now: datetime | None = None,
) -> LoginResult:
    user = authenticate(store, email, password)
    if user is None:
        logger.warning("Authentication failed for email %s", email)
        raise InvalidCredentials("invalid email or password")

    result = issue_token_pair(tokens, user)
    store.update_last_login(user.id, now or utcnow())
    logger.info("Login successful for email %s", email)
    return result


def refresh(store: UserStore, tokens: TokenService, refresh_token: str) -> LoginResult:
    """Exchange a valid refresh token for a new token pair.

    Access and reset tokens are rejected: a refresh token carries neither an
    email nor a role claim. The user is re-read so a role change since the
    last login is reflected in the new access token.
    """
    claims = tokens.validate(refresh_token)
    if not claims.is_refresh_token:
        raise MalformedToken("not a refresh token")
    try:
        user_id = int(claims.subject)
    except ValueError as exc:
        raise MalformedToken("refresh token subject is not a user id") from exc

    user = store.get_by_id(user_id)
    if user is None:
        raise NotFound(f"user {user_id} no longer exists")
    return issue_token_pair(tokens, user)
