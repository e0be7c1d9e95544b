"""
auth/passwords.py -- Password hashing and timing-equalized authentication.

bcrypt is used directly (no passlib wrapper). Every hash embeds its own random
salt, so hashing the same password twice yields two different strings.
bcrypt.checkpw compares in constant time.

The _DUMMY_HASH constant lets authenticate() run bcrypt even when the account
does not exist, so response time does not reveal whether an email is
registered.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import bcrypt

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("gatehouse.auth")


# bcrypt only reads the first 72 bytes of its input, and bcrypt>=5 raises
# instead of ignoring the rest. Both hashing and checking cut here.
_BCRYPT_MAX_BYTES = 72


def _password_bytes(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Only the first 72 UTF-8 bytes count, so a long multibyte password hashes
    instead of raising.
    """
    return bcrypt.hashpw(_password_bytes(plain), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str | None) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Never raises. A missing or malformed hash compares False.
    """
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(_password_bytes(plain), hashed.encode("utf-8"))
    except (TypeError, ValueError):
        return False


# Computed once at import so the first login attempt is not measurably slower
# than later ones.
_DUMMY_HASH: str = hash_password("gatehouse_timing_dummy")


def authenticate(store: UserStore, email: str, password: str) -> User | None:
    """Authenticate a local email/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown email or OAuth-only account: bcrypt runs against _DUMMY_HASH
    - Wrong password: bcrypt runs against the real hash

    Returns the User on success, None on any failure.
    """
    user = store.get_by_email(email)
    if user is None or user.password_hash is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user
