"""
auth/reset.py -- OTP-based password reset.

State per email:

    NoRequest --request_reset--> Pending(code, expires_at) --verify_otp--> Consumed(reset token)
                                    ^        |
                                    +--------+  request_reset again replaces the code

Security notes:
  - request_reset() never tells the caller whether the email is registered.
    An unknown email returns ResetRequestOutcome.UNKNOWN_ACCOUNT and the API
    layer renders exactly the same response as for CODE_SENT.
  - verify_otp() raises the same InvalidOrExpiredOTP for a wrong code and an
    expired one. The consuming DELETE is conditional on the code, so one code
    yields at most one reset token even under concurrent verification.
  - The reset token (role=reset_only, 15 minutes) is the only artifact that
    carries reset authority. Normal access tokens are rejected by
    reset_password().
  - reset_password() does not re-check that the account is unchanged since
    the token was issued. If the account was deleted in between, the update
    matches no row and StorageError is raised.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta

from auth.errors import InvalidOrExpiredOTP, InvalidResetToken, StorageError, TokenError, UnsupportedProvider
from auth.mail import Mailer
from auth.models import RESET_SUBJECT_PREFIX, OTPRecord, ResetRequestOutcome
from auth.passwords import hash_password
from auth.store import UserStore
from auth.tokens import TokenService, utcnow

logger = logging.getLogger("gatehouse.auth.reset")

OTP_TTL = timedelta(minutes=5)


def generate_otp() -> str:
    """Return a 6-digit code sampled uniformly from 100000-999999."""
    return f"{secrets.randbelow(900000) + 100000:06d}"


class PasswordResetService:
    def __init__(
        self,
        store: UserStore,
        tokens: TokenService,
        mailer: Mailer,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._tokens = tokens
        self._mailer = mailer
        self._clock = clock

    def request_reset(self, email: str) -> ResetRequestOutcome:
        """Issue a fresh code for email and try to mail it.

        Raises:
            UnsupportedProvider: the account belongs to a social login.
            StorageError:        the store could not be read or written.
        """
        user = self._store.get_by_email(email)
        if user is None:
            logger.info("Password reset requested for unknown email %s", email)
            return ResetRequestOutcome.UNKNOWN_ACCOUNT

        if not user.is_local:
            raise UnsupportedProvider(
                f"This account uses {user.provider} login. Please use the social provider to sign in."
            )

        code = generate_otp()
        self._store.upsert_otp(OTPRecord(email=email, code=code, expires_at=self._clock() + OTP_TTL))

        # Best-effort: a flaky mail transport must not change the response.
        try:
            self._mailer.send_otp_email(email, code)
        except Exception as exc:
            logger.warning("OTP email delivery to %s failed: %s", email, exc)

        logger.info("Password reset code issued for %s", email)
        return ResetRequestOutcome.CODE_SENT

    def verify_otp(self, email: str, code: str) -> str:
        """Consume the outstanding code for email and return a reset token."""
        record = self._store.find_otp(email, code, self._clock())
        if record is None or not self._store.delete_otp(email, code):
            logger.info("OTP verification failed for %s", email)
            raise InvalidOrExpiredOTP("invalid or expired OTP")

        logger.info("OTP verified for %s", email)
        return self._tokens.issue_reset_token(email)

    def reset_password(self, reset_token: str, new_password: str) -> None:
        try:
            claims = self._tokens.validate(reset_token)
        except TokenError as exc:
            raise InvalidResetToken("invalid or expired reset token") from exc

        if not claims.is_reset_token or not claims.email or claims.subject != RESET_SUBJECT_PREFIX + claims.email:
            raise InvalidResetToken("token is not a reset token")

        password_hash = hash_password(new_password)
        if not self._store.update_password(claims.email, password_hash, self._clock()):
            raise StorageError("no account matched the reset token")
        logger.info("Password reset completed for %s", claims.email)
