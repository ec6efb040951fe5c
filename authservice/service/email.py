from __future__ import annotations

import asyncio
import smtplib
import ssl
from email.mime.text import MIMEText
from typing import List, Optional, Protocol, Tuple

from authservice.config import Settings
from authservice.logging import get_logger
from authservice.storage.models import Email

logger = get_logger(__name__)


class NotificationError(Exception):
    """Raised when a message could not be handed to the mail transport."""


class EmailClient(Protocol):
    async def send_email(self, recipient: Email, subject: str, content: str) -> None: ...


def _redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class SMTPEmailClient:
    """Plain-text mail over SMTP with STARTTLS or implicit TLS.

    Falls back to logging the message when SMTP is not configured (dev mode).
    """

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "Auth Service",
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name

    @classmethod
    def from_settings(cls, settings: Settings) -> "SMTPEmailClient":
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            from_email=settings.email_from_address,
            from_name=settings.email_from_name,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def _deliver(self, to_email: str, subject: str, body: str) -> None:
        msg = MIMEText(body, "plain")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email

        context = ssl.create_default_context()
        logger.debug(
            "email_connecting",
            host=self.smtp_host,
            port=self.smtp_port,
            use_tls=self.smtp_use_tls,
            to=_redact_email(to_email),
        )
        if self.smtp_use_tls:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                server.starttls(context=context)
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to_email, msg.as_string())
        else:
            with smtplib.SMTP_SSL(
                self.smtp_host, self.smtp_port, context=context, timeout=30
            ) as server:
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to_email, msg.as_string())

    async def send_email(self, recipient: Email, subject: str, content: str) -> None:
        to_email = recipient.value
        if not self.is_configured:
            logger.info(
                "email_dev_mode",
                to=_redact_email(to_email),
                subject=subject,
                body_preview=content[:200],
            )
            return
        try:
            await asyncio.to_thread(self._deliver, to_email, subject, content)
        except smtplib.SMTPAuthenticationError as exc:
            logger.error(
                "email_auth_failed",
                to=_redact_email(to_email),
                host=self.smtp_host,
                error=str(exc),
            )
            raise NotificationError("smtp authentication failed") from exc
        except (smtplib.SMTPException, OSError) as exc:
            logger.error(
                "email_send_failed",
                to=_redact_email(to_email),
                host=self.smtp_host,
                port=self.smtp_port,
                error=str(exc),
            )
            raise NotificationError("email delivery failed") from exc
        logger.info("email_sent", to=_redact_email(to_email), subject=subject)


class MockEmailClient:
    """Records outgoing messages instead of sending them."""

    def __init__(self, *, fail: bool = False) -> None:
        self.sent: List[Tuple[Email, str, str]] = []
        self.fail = fail

    async def send_email(self, recipient: Email, subject: str, content: str) -> None:
        if self.fail:
            raise NotificationError("mock email client configured to fail")
        self.sent.append((recipient, subject, content))
        logger.debug("email_recorded", to=_redact_email(recipient.value), subject=subject)

    def last_for(self, recipient: Email) -> Optional[Tuple[Email, str, str]]:
        for message in reversed(self.sent):
            if message[0] == recipient:
                return message
        return None


__all__ = ["EmailClient", "NotificationError", "SMTPEmailClient", "MockEmailClient"]
