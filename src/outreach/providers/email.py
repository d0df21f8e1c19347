"""Email providers: an in-memory recorder and SendGrid delivery."""

import asyncio
import logging
import uuid
from typing import Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Content, CustomArg, Email, Header, Mail, To

from ..exceptions import ProviderError
from .base import EmailMessage, EmailProvider, EmailReceipt


logger = logging.getLogger(__name__)

# Outreach headers mirrored into SendGrid custom args for webhook correlation
TRACKING_HEADERS = ("x-campaign-id", "x-lead-id", "x-email-step")


class SimulatedEmailProvider(EmailProvider):
    """Records messages instead of sending them.

    Attributes:
        sent: Every message accepted, in send order.
    """

    name = "simulated"

    def __init__(self) -> None:
        self.sent: list[EmailMessage] = []

    async def send_email(self, message: EmailMessage) -> EmailReceipt:
        message_id = f"sim-email-{uuid.uuid4().hex[:12]}"
        self.sent.append(message)
        logger.info(
            "Simulated email to=%s subject=%r message_id=%s",
            message.to,
            message.subject,
            message_id,
        )
        return EmailReceipt(message_id=message_id)


class SendGridEmailProvider(EmailProvider):
    """Sends outreach email through SendGrid.

    Example:
        >>> provider = SendGridEmailProvider(api_key="SG...", from_email="me@agency.com")
        >>> receipt = await provider.send_email(message)
        >>> print(receipt.message_id)
    """

    name = "sendgrid"

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
        client: Optional[SendGridAPIClient] = None,
    ) -> None:
        """Initialize the SendGrid provider.

        Args:
            api_key: SendGrid API key.
            from_email: Sender address.
            from_name: Sender display name.
            client: Pre-built SendGrid client (tests).

        Raises:
            ValueError: If the API key or sender address is missing.
        """
        if client is None:
            if not api_key:
                raise ValueError(
                    "SendGrid API key required. Set SENDGRID_API_KEY environment "
                    "variable or pass api_key parameter."
                )
            client = SendGridAPIClient(api_key=api_key)
        if not from_email:
            raise ValueError(
                "From email required. Set SENDGRID_FROM_EMAIL or pass from_email."
            )
        self._client = client
        self.from_email = from_email
        self.from_name = from_name or None

    def build_mail(self, message: EmailMessage) -> Mail:
        mail = Mail(
            from_email=Email(self.from_email, self.from_name),
            to_emails=To(message.to),
            subject=message.subject,
        )
        mail.add_content(Content("text/plain", message.text))
        mail.add_content(Content("text/html", message.html))
        for key, value in message.headers.items():
            mail.add_header(Header(key, value))
            if key.lower() in TRACKING_HEADERS:
                mail.add_custom_arg(CustomArg(key.lower().replace("-", "_"), value))
        return mail

    async def send_email(self, message: EmailMessage) -> EmailReceipt:
        mail = self.build_mail(message)
        loop = asyncio.get_event_loop()
        try:
            response = await loop.run_in_executor(None, lambda: self._client.send(mail))
        except Exception as e:
            error_msg = str(e)
            logger.error("Failed to send email to %s: %s", message.to, error_msg)
            if "401" in error_msg or "unauthorized" in error_msg.lower():
                raise ProviderError(self.name, f"Authentication failed: {error_msg}") from e
            if "429" in error_msg or "rate limit" in error_msg.lower():
                raise ProviderError(self.name, f"Rate limit exceeded: {error_msg}") from e
            raise ProviderError(self.name, f"Send failed: {error_msg}") from e

        if response.status_code not in (200, 201, 202):
            raise ProviderError(
                self.name, f"SendGrid returned status code {response.status_code}"
            )

        message_id = response.headers.get("X-Message-Id") or f"sendgrid-{uuid.uuid4().hex[:12]}"
        logger.info("Email sent: to=%s, message_id=%s", message.to, message_id)
        return EmailReceipt(message_id=message_id)
