"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these only own shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    USER = "user"


# Role claim carried only by reset-capability tokens. Deliberately not a Role
# member: no stored user ever has it.
RESET_ONLY_ROLE = "reset_only"
RESET_SUBJECT_PREFIX = "RESET:"

LOCAL_PROVIDER = "local"


@dataclass
class User:
    """A local or OAuth-linked account.

    password_hash is None for OAuth-only users (they have no local password).
    provider is "" for local accounts; provider_id is None until an external
    identity owns the row. The store enforces UNIQUE(email) and
    UNIQUE(provider, provider_id).
    """

    email: str
    role: str
    id: int | None = None
    password_hash: str | None = None
    provider: str = ""
    provider_id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    last_login: str | None = None

    @property
    def is_local(self) -> bool:
        return self.provider in ("", LOCAL_PROVIDER)


@dataclass
class OTPRecord:
    """One outstanding password-reset code. At most one per email."""

    email: str
    code: str
    expires_at: datetime


@dataclass(frozen=True)
class TokenClaims:
    subject: str
    issued_at: datetime
    expires_at: datetime
    email: str | None = None
    role: str | None = None

    @property
    def is_reset_token(self) -> bool:
        return self.role == RESET_ONLY_ROLE

    @property
    def is_refresh_token(self) -> bool:
        return self.email is None and self.role is None


@dataclass(frozen=True)
class ExternalProfile:
    """Identity returned by an OAuth provider's profile endpoint."""

    external_id: str
    email: str
    display_name: str = ""


@dataclass(frozen=True)
class LoginResult:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class OAuthResult:
    user: User
    access_token: str
    refresh_token: str


class ResetRequestOutcome(str, Enum):
    """What request_reset() did. Callers render both outcomes identically."""

    CODE_SENT = "code_sent"
    UNKNOWN_ACCOUNT = "unknown_account"
