"""
auth/tokens.py -- Signed, expiring bearer tokens.

Security design decisions:
  JWT: python-jose with HS256. TokenService is constructed with the signing
       secret and a clock callable. Nothing here reads ambient process state,
       so tests can run with a distinct secret and a frozen clock each.

  Three token shapes share one secret:
    access  -- sub=user id, email, role, 15 minutes
    refresh -- sub=user id only, 7 days
    reset   -- sub="RESET:"+email, email, role="reset_only", 15 minutes

  validate() only answers "is this a well-formed, correctly signed, unexpired
  token". Which shape a call site accepts is the caller's decision: the reset
  flow requires role == reset_only, request authentication rejects it.

  Expiry is checked here rather than by jose so the injected clock is honoured.
  A token is expired from the instant now >= exp. iat and exp are float
  NumericDates (RFC 7519 allows fractions) so a token issued mid-second
  still lives its full lifetime.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import jwt
from jose.exceptions import JOSEError, JWTClaimsError, JWTError

from auth.errors import BadSignature, ConfigError, Expired, MalformedToken, TokenGenerationFailed
from auth.models import RESET_ONLY_ROLE, RESET_SUBJECT_PREFIX, TokenClaims

logger = logging.getLogger("gatehouse.auth.tokens")

ACCESS_TOKEN_TTL = timedelta(minutes=15)
REFRESH_TOKEN_TTL = timedelta(days=7)
RESET_TOKEN_TTL = timedelta(minutes=15)

_ALGORITHM = "HS256"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_numeric_date(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class TokenService:
    """Mints and validates HS256 JWTs against one immutable secret.

    Usage:
        tokens = TokenService(settings.secret_key)
        access = tokens.issue_access_token(user.id, user.email, user.role)
        claims = tokens.validate(access)
    """

    def __init__(self, secret_key: str, clock: Callable[[], datetime] = utcnow) -> None:
        self._secret_key = secret_key
        self._clock = clock

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue_access_token(self, user_id: int | str, email: str, role: str) -> str:
        return self._issue(str(user_id), ACCESS_TOKEN_TTL, email=email, role=role)

    def issue_refresh_token(self, user_id: int | str) -> str:
        """Refresh tokens carry only sub/iat/exp. No email, no role."""
        return self._issue(str(user_id), REFRESH_TOKEN_TTL)

    def issue_reset_token(self, email: str) -> str:
        """Scoped capability token: authorizes one password change for email."""
        return self._issue(RESET_SUBJECT_PREFIX + email, RESET_TOKEN_TTL, email=email, role=RESET_ONLY_ROLE)

    def _issue(self, subject: str, ttl: timedelta, email: str | None = None, role: str | None = None) -> str:
        self._require_secret()
        now = self._clock()
        payload: dict = {
            "sub": subject,
            "iat": now.timestamp(),
            # From the datetime sum, not iat + seconds, so exp compares equal to
            # clock().timestamp() at exactly now + ttl.
            "exp": (now + ttl).timestamp(),
        }
        if email is not None:
            payload["email"] = email
        if role is not None:
            payload["role"] = getattr(role, "value", role)
        try:
            return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)
        except JOSEError as exc:
            logger.error("Token signing failed for subject %s: %s", subject, exc)
            raise TokenGenerationFailed("failed to sign token") from exc

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, token: str) -> TokenClaims:
        """Parse and verify a token. Pure: no I/O, no side effects.

        Raises:
            MalformedToken: structure or claim shape is unusable.
            BadSignature:   signature does not verify against the secret.
            Expired:        now >= exp.
            ConfigError:    the service has no secret.
        """
        self._require_secret()
        try:
            jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise MalformedToken("token cannot be parsed") from exc

        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTClaimsError as exc:
            raise MalformedToken(f"invalid claims: {exc}") from exc
        except JWTError as exc:
            raise BadSignature("signature verification failed") from exc

        subject = payload.get("sub")
        issued_at = payload.get("iat")
        expires_at = payload.get("exp")
        email = payload.get("email")
        role = payload.get("role")
        if not isinstance(subject, str) or not subject:
            raise MalformedToken("missing sub claim")
        if not _is_numeric_date(issued_at) or not _is_numeric_date(expires_at):
            raise MalformedToken("missing or non-numeric iat/exp claim")
        if email is not None and not isinstance(email, str):
            raise MalformedToken("email claim must be a string")
        if role is not None and not isinstance(role, str):
            raise MalformedToken("role claim must be a string")

        if self._clock().timestamp() >= expires_at:
            raise Expired("token has expired")

        return TokenClaims(
            subject=subject,
            email=email,
            role=role,
            issued_at=datetime.fromtimestamp(issued_at, timezone.utc),
            expires_at=datetime.fromtimestamp(expires_at, timezone.utc),
        )

    def _require_secret(self) -> None:
        if not self._secret_key:
            raise ConfigError("token signing secret is not configured")
