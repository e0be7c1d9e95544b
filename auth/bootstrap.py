"""
auth/bootstrap.py -- Ensure exactly one super_admin exists at startup.

Idempotent across restarts: a second run finds the existing super_admin and
does nothing. Two processes racing on first boot are settled by the store's
partial UNIQUE index on role='super_admin': the loser's insert raises
DuplicateRecord, which is treated here as "someone else bootstrapped".
"""

from __future__ import annotations

import logging
from datetime import datetime

from auth.errors import DuplicateRecord
from auth.models import Role, User
from auth.passwords import hash_password
from auth.store import UserStore

logger = logging.getLogger("gatehouse.auth.bootstrap")


def init_superuser(store: UserStore, email: str, password: str, now: datetime | None = None) -> bool:
    """Create the super_admin from configuration if none exists.

    Returns True if a user was created. Missing email or password is not an
    error: the deployment simply has no elevated account.
    """
    if store.has_role(Role.SUPER_ADMIN):
        logger.info("Superuser already exists")
        return False

    if not email or not password:
        logger.warning("SUPERUSER_EMAIL or SUPERUSER_PASSWORD not set. Skipping superuser bootstrap.")
        return False

    superuser = User(email=email, role=Role.SUPER_ADMIN.value, password_hash=hash_password(password))
    try:
        store.create_user(superuser, now=now)
    except DuplicateRecord:
        logger.info("Superuser bootstrap lost a race or email %s is taken; leaving existing data", email)
        return False

    logger.info("Successfully bootstrapped superuser with email %s", email)
    return True
