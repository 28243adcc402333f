"""
Notification dispatch for CRM state changes.

Provides:
- EmailProvider protocol with Resend (production) and SMTP (local MailDev)
  implementations
- NotificationDispatcher: renders a template and sends it exactly once,
  after the caller's transaction has committed

Delivery is best effort. A failed send is logged and swallowed so it can
never undo or fail the state change that triggered it.
"""

import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Any, Dict, Optional, Protocol

import httpx

from ..core.config import settings
from ..core.exceptions import NotificationError
from .email_templates import render_notification


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendResult:
    """Provider message id of an accepted email."""

    id: str


class EmailProvider(Protocol):
    def send(self, from_address: str, to: str, subject: str, html: str) -> SendResult:
        """Send one email. Raises NotificationError on any failure."""
        ...


# =============================================================================
# Providers
# =============================================================================

class ResendEmailProvider:
    """
    Sends email through the Resend HTTP API.

    API Documentation: https://resend.com/docs/api-reference/emails/send-email
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.resend_api_key
        self.base_url = (base_url or settings.resend_api_base_url).rstrip("/")
        self.timeout = timeout
        self._client = client

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def send(self, from_address: str, to: str, subject: str, html: str) -> SendResult:
        if not self.api_key:
            raise NotificationError("Resend API key is not configured")

        payload = {
            "from": from_address,
            "to": [to],
            "subject": subject,
            "html": html,
        }

        try:
            if self._client is not None:
                response = self._client.post(
                    f"{self.base_url}/emails", headers=self._get_headers(), json=payload
                )
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(
                        f"{self.base_url}/emails", headers=self._get_headers(), json=payload
                    )
        except httpx.TimeoutException as e:
            raise NotificationError(f"Resend API request timed out: {e}") from e
        except httpx.RequestError as e:
            raise NotificationError(f"Failed to connect to Resend API: {e}") from e

        if response.status_code not in (200, 201):
            raise NotificationError(
                f"Resend API returned {response.status_code}: {response.text[:200]}"
            )

        message_id = response.json().get("id")
        if not message_id:
            raise NotificationError("Resend API response did not include a message id")
        return SendResult(id=message_id)


class SMTPEmailProvider:
    """Plain SMTP sender. Used against MailDev in development."""

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ):
        self.host = host or settings.smtp_host
        self.port = port or settings.smtp_port
        self.username = username if username is not None else settings.smtp_username
        self.password = password if password is not None else settings.smtp_password

    def send(self, from_address: str, to: str, subject: str, html: str) -> SendResult:
        message_id = make_msgid(domain="taxcrm.local")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = from_address
        msg["To"] = to
        msg["Message-ID"] = message_id
        msg.attach(MIMEText(html, "html"))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=30) as server:
                # MailDev needs no authentication
                if self.username and self.password:
                    server.starttls()
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"SMTP send to {self.host}:{self.port} failed: {e}") from e

        return SendResult(id=message_id.strip("<>"))


def build_email_provider() -> EmailProvider:
    """Provider selected by ``settings.email_mode``."""
    if settings.email_mode == "resend":
        return ResendEmailProvider()
    return SMTPEmailProvider()


def default_from_address() -> str:
    return f"{settings.from_name} <{settings.from_email}>"


# =============================================================================
# Dispatcher
# =============================================================================

class NotificationDispatcher:
    """
    Fire-and-forget sender for CRM events.

    Events: ``contact_created``, ``contact_assigned``, ``stage_changed``.
    Must be invoked after the triggering transaction commits.
    """

    def __init__(
        self,
        provider: Optional[EmailProvider] = None,
        enabled: Optional[bool] = None,
        from_address: Optional[str] = None,
    ):
        self.provider = provider if provider is not None else build_email_provider()
        self.enabled = settings.notifications_enabled if enabled is None else enabled
        self.from_address = from_address or default_from_address()

    def notify(self, event: str, to: str, context: Dict[str, Any]) -> Optional[str]:
        """
        Render and send one notification.

        Returns the provider message id, or None when disabled or failed.
        """
        if not self.enabled:
            logger.debug(f"Notifications disabled, skipping {event}")
            return None

        try:
            subject, html = render_notification(event, context)
            result = self.provider.send(self.from_address, to, subject, html)
        except Exception as e:
            logger.warning(
                f"Notification '{event}' for contact {context.get('contact_id')} failed: "
                f"{type(e).__name__}: {e}"
            )
            return None

        logger.info(f"Notification '{event}' sent for contact {context.get('contact_id')} ({result.id})")
        return result.id

    def preparer_address(self, preparer_id: str) -> str:
        """
        Notification address for a preparer.

        Derived from ``settings.preparer_email_domain`` when set; otherwise
        preparer notifications go to the CRM inbox.
        """
        if settings.preparer_email_domain:
            return f"{preparer_id}@{settings.preparer_email_domain}"
        return settings.crm_inbox_email
