"""
auth/mail.py -- Outbound delivery of password-reset codes.

The reset flow only knows the Mailer protocol. SMTPMailer is the production
implementation (stdlib smtplib, STARTTLS when credentials are configured).

Delivery is best-effort from the caller's point of view: send_otp_email()
raises on failure and PasswordResetService logs and swallows it.

Development fallback: when no SMTP host is configured the code is written to
the log at WARNING and nothing is sent.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

logger = logging.getLogger("gatehouse.auth.mail")

_SUBJECT = "Your Password Reset OTP"


class Mailer(Protocol):
    def send_otp_email(self, to_address: str, code: str) -> None: ...


class SMTPMailer:
    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        sender: str = "",
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender or username
        self.timeout = timeout

    def send_otp_email(self, to_address: str, code: str) -> None:
        if not self.host:
            logger.warning("SMTP_HOST not set. Email not sent. OTP code for %s: %s", to_address, code)
            return

        msg = EmailMessage()
        msg["Subject"] = _SUBJECT
        msg["From"] = self.sender
        msg["To"] = to_address
        msg.set_content(f"Your 6-digit password reset code is: {code}\n\nThis code will expire in 5 minutes.")
        msg.add_alternative(
            "<h2>Password Reset</h2>"
            f"<p>Your 6-digit OTP code is: <b>{code}</b></p>"
            "<p>This code will expire in 5 minutes.</p>",
            subtype="html",
        )

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.username:
                server.starttls()
                server.login(self.username, self.password)
            server.send_message(msg)
        logger.info("OTP email sent to %s", to_address)
