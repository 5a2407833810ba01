"""
auth/notifier.py -- Out-of-band delivery of one-time passcodes.

The engine depends only on the Notifier protocol: send(recipient, subject,
body) -> bool. Delivery is awaited before the engine returns, but a False
result is a degraded outcome, not an error: the account state change has
already been committed and the caller is told the code may not have arrived.

Implementations:
  SmtpNotifier     stdlib smtplib with STARTTLS or implicit TLS and a bounded
                   socket timeout, so a dead relay fails instead of hanging.
  LogNotifier      dev-mode fallback when SMTP_HOST is unset. Logs recipient
                   (redacted) and subject only. Bodies carry OTPs, so they
                   are never logged.

build_notifier(settings) picks one from configuration.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

from core.config import Settings

logger = logging.getLogger("identity.notifier")


class Notifier(Protocol):
    def send(self, recipient: str, subject: str, body: str) -> bool: ...


def redact_email(email: str) -> str:
    """Redact an email address for logs: alice@example.com -> al***@example.com."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class LogNotifier:
    """Pretends delivery succeeded. For local development only."""

    def send(self, recipient: str, subject: str, body: str) -> bool:
        logger.info("Email dispatch (dev mode, not sent): to=%s subject=%r", redact_email(recipient), subject)
        return True


class SmtpNotifier:
    def __init__(
        self,
        *,
        host: str,
        port: int = 587,
        user: str = "",
        password: str = "",
        use_tls: bool = True,
        from_email: str = "",
        from_name: str = "Identity Service",
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.from_email = from_email or user
        self.from_name = from_name
        self.timeout = timeout

    def send(self, recipient: str, subject: str, body: str) -> bool:
        """Send one HTML message. Returns False (and logs) on any SMTP or socket failure."""
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = recipient
        msg.attach(MIMEText(body, "html"))

        context = ssl.create_default_context()
        try:
            if self.use_tls:
                with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    self._login(server)
                    server.sendmail(self.from_email, [recipient], msg.as_string())
            else:
                with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout) as server:
                    self._login(server)
                    server.sendmail(self.from_email, [recipient], msg.as_string())
        except smtplib.SMTPAuthenticationError as exc:
            logger.error("SMTP authentication failed for %s: code=%s", self.host, exc.smtp_code)
            return False
        except smtplib.SMTPRecipientsRefused:
            logger.error("SMTP recipient refused: %s", redact_email(recipient))
            return False
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email delivery to %s failed: %s", redact_email(recipient), type(exc).__name__)
            return False

        logger.info("Email sent: to=%s subject=%r", redact_email(recipient), subject)
        return True

    def _login(self, server: smtplib.SMTP) -> None:
        if self.user and self.password:
            server.login(self.user, self.password)


def build_notifier(settings: Settings) -> Notifier:
    if not settings.smtp_configured:
        logger.warning("SMTP_HOST not configured -- OTP emails will be logged, not delivered")
        return LogNotifier()
    return SmtpNotifier(
        host=settings.smtp_host,
        port=settings.smtp_port,
        user=settings.smtp_user,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
        from_email=settings.smtp_from_email,
        from_name=settings.smtp_from_name,
        timeout=settings.smtp_timeout_seconds,
    )
