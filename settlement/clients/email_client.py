"""
SMTP email delivery for notifications, via aiosmtplib.
"""

from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import aiosmtplib

from settlement.core.config import settings
from settlement.core.logging import get_logger

logger = get_logger(__name__)


class EmailClient:
    """Sends a single HTML email per call; one SMTP connection per message."""

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        username: str | None = None,
        password: str | None = None,
        sender: str | None = None,
    ):
        self.host = host or settings.SMTP_HOST
        self.port = port or settings.SMTP_PORT
        self.username = username or settings.SMTP_USER
        self.password = password or settings.SMTP_PASSWORD
        self.sender = sender or settings.SMTP_FROM

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def build_message(self, to: str, subject: str, html: str, text: str) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.attach(MIMEText(text, "plain", "utf-8"))
        message.attach(MIMEText(html, "html", "utf-8"))
        return message

    async def send(self, to: str, subject: str, html: str, text: str) -> None:
        if not self.enabled:
            raise RuntimeError("SMTP is not configured")

        message = self.build_message(to, subject, html, text)
        await aiosmtplib.send(
            message,
            hostname=self.host,
            port=self.port,
            username=self.username,
            password=self.password,
            start_tls=settings.SMTP_USE_TLS,
            timeout=settings.SMTP_TIMEOUT_SECONDS,
        )
        logger.info("email_sent", to=to, subject=subject)


email_client = EmailClient()
