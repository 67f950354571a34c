"""
Outbound email providers.

SendGrid is used when EMAIL_PROVIDER=sendgrid and an API key is configured;
otherwise the mock provider logs the message and reports success.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Optional

import httpx

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class EmailMessage:
    """A single outbound email."""
    to: str
    subject: str
    text: str
    html: Optional[str] = None
    from_email: Optional[str] = None
    from_name: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "EmailMessage":
        return cls(
            to=data["to"],
            subject=data["subject"],
            text=data["text"],
            html=data.get("html"),
            from_email=data.get("from_email"),
            from_name=data.get("from_name"),
        )


class EmailDeliveryError(Exception):
    """Raised when the provider refuses or fails to accept a message."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class EmailProvider(ABC):

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def send(self, message: EmailMessage) -> dict:
        """
        Deliver one message.

        Returns:
            Provider-specific result dict

        Raises:
            EmailDeliveryError if the provider rejects the message
        """
        pass


class MockEmailProvider(EmailProvider):

    @property
    def name(self) -> str:
        return "mock"

    def send(self, message: EmailMessage) -> dict:
        logger.info(f"[mock email] to={message.to} subject={message.subject!r}")
        return {"provider": self.name, "status": 202}


class SendGridProvider(EmailProvider):
    """Relays messages to the SendGrid v3 mail/send API."""

    def __init__(self, api_key: str, api_url: Optional[str] = None, timeout: Optional[float] = None):
        self.api_key = api_key
        self.api_url = api_url or settings.SENDGRID_API_URL
        self.timeout = timeout if timeout is not None else settings.API_TIMEOUT / 1000

    @property
    def name(self) -> str:
        return "sendgrid"

    def build_payload(self, message: EmailMessage) -> dict:
        content = [{"type": "text/plain", "value": message.text}]
        if message.html:
            content.append({"type": "text/html", "value": message.html})
        return {
            "personalizations": [{"to": [{"email": message.to}]}],
            "from": {
                "email": message.from_email or settings.SENDER_EMAIL,
                "name": message.from_name or settings.SENDER_NAME,
            },
            "subject": message.subject,
            "content": content,
        }

    def send(self, message: EmailMessage) -> dict:
        try:
            with httpx.Client(timeout=httpx.Timeout(self.timeout, connect=5.0)) as client:
                response = client.post(
                    self.api_url,
                    json=self.build_payload(message),
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.RequestError as e:
            raise EmailDeliveryError(f"SendGrid request error: {e}") from e

        if response.status_code >= 300:
            raise EmailDeliveryError(
                f"SendGrid API Error: {response.status_code} {response.text}",
                status_code=response.status_code,
            )

        logger.info(f"SendGrid accepted email to {message.to} (status {response.status_code})")
        return {"provider": self.name, "status": response.status_code}


def get_email_provider() -> EmailProvider:
    if settings.EMAIL_PROVIDER == "sendgrid" and settings.SENDGRID_API_KEY:
        return SendGridProvider(settings.SENDGRID_API_KEY)
    if settings.EMAIL_PROVIDER == "sendgrid":
        logger.warning("EMAIL_PROVIDER=sendgrid but SENDGRID_API_KEY is not set; using mock provider")
    return MockEmailProvider()


def send_email(message: EmailMessage) -> dict:
    """Send a message through the configured provider."""
    return get_email_provider().send(message)
