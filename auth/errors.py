"""
auth/errors.py -- Closed error taxonomy for the credential and token core.

Every failure the core can report is an AuthError subclass carrying an
ErrorKind. The API layer maps kinds to HTTP status codes in one place
(api/main.py); nothing compares error messages.

Security-sensitive kinds (credentials, OTP, reset token, token validation)
are rendered generically by the API layer. The message given here is for
logs only.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_CREDENTIALS = "invalid_credentials"
    INVALID_OR_EXPIRED_OTP = "invalid_or_expired_otp"
    UNSUPPORTED_PROVIDER = "unsupported_provider"
    INVALID_RESET_TOKEN = "invalid_reset_token"
    TOKEN_GENERATION_FAILED = "token_generation_failed"
    CONFIG_ERROR = "config_error"
    STORAGE_ERROR = "storage_error"
    UPSTREAM_ERROR = "upstream_error"
    MALFORMED_TOKEN = "malformed_token"
    BAD_SIGNATURE = "bad_signature"
    EXPIRED = "expired"


class AuthError(Exception):
    """Base class for every error raised by the auth core."""

    kind: ErrorKind

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind.value.replace("_", " "))
        self.message = str(self)


class NotFound(AuthError):
    kind = ErrorKind.NOT_FOUND


class InvalidCredentials(AuthError):
    kind = ErrorKind.INVALID_CREDENTIALS


class InvalidOrExpiredOTP(AuthError):
    kind = ErrorKind.INVALID_OR_EXPIRED_OTP


class UnsupportedProvider(AuthError):
    kind = ErrorKind.UNSUPPORTED_PROVIDER


class InvalidResetToken(AuthError):
    kind = ErrorKind.INVALID_RESET_TOKEN


class TokenGenerationFailed(AuthError):
    kind = ErrorKind.TOKEN_GENERATION_FAILED


class ConfigError(AuthError):
    kind = ErrorKind.CONFIG_ERROR


class StorageError(AuthError):
    kind = ErrorKind.STORAGE_ERROR


class DuplicateRecord(StorageError):
    """A uniqueness constraint rejected the write."""


class UpstreamError(AuthError):
    kind = ErrorKind.UPSTREAM_ERROR


# ---------------------------------------------------------------------------
# Token validation failures
# ---------------------------------------------------------------------------


class TokenError(AuthError):
    """Raised by TokenService.validate(). Subclasses say why."""


class MalformedToken(TokenError):
    kind = ErrorKind.MALFORMED_TOKEN


class BadSignature(TokenError):
    kind = ErrorKind.BAD_SIGNATURE


class Expired(TokenError):
    kind = ErrorKind.EXPIRED
