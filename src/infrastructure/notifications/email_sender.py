# src/infrastructure/notifications/email_sender.py

from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.message import EmailMessage
import logging
import os
import smtplib


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailMessagePayload:
    recipient: str
    subject: str
    html_body: str
    text_body: str | None = None


class NotificationSender(ABC):
    @abstractmethod
    def send(self, message: EmailMessagePayload) -> bool:
        ...


class SmtpEmailSender(NotificationSender):
    """Sends multipart mail over SMTP with STARTTLS when credentials are set."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        sender: str | None = None,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender or username or "no-reply@cineplus.local"
        self.timeout = timeout

    def send(self, message: EmailMessagePayload) -> bool:
        email = EmailMessage()
        email["From"] = self.sender
        email["To"] = message.recipient
        email["Subject"] = message.subject
        email.set_content(message.text_body or message.subject)
        email.add_alternative(message.html_body, subtype="html")

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.username and self.password:
                    smtp.starttls()
                    smtp.login(self.username, self.password)
                smtp.send_message(email)
        except (smtplib.SMTPException, OSError):
            logger.exception(
                "Email send failed. recipient=%s subject=%s",
                message.recipient,
                message.subject,
            )
            return False

        logger.info("Email sent. recipient=%s subject=%s", message.recipient, message.subject)
        return True


class LoggingEmailSender(NotificationSender):
    """Used when SMTP is not configured; keeps what it would have sent."""

    def __init__(self):
        self.sent: list[EmailMessagePayload] = []

    def send(self, message: EmailMessagePayload) -> bool:
        self.sent.append(message)
        logger.info(
            "Email would be sent to: %s subject=%s",
            message.recipient,
            message.subject,
        )
        return True


def get_notification_sender() -> NotificationSender:
    host = os.getenv("SMTP_HOST")
    if not host:
        return LoggingEmailSender()
    return SmtpEmailSender(
        host=host,
        port=int(os.getenv("SMTP_PORT", "587")),
        username=os.getenv("SMTP_USER"),
        password=os.getenv("SMTP_PASSWORD"),
        sender=os.getenv("EMAIL_FROM"),
    )
