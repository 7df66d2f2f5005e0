"""
Email Service - Transactional Notifications

Provides email delivery for:
- New lead notifications (assigned preparer or the corporate inbox)
- Support ticket notifications

Supports multiple backends:
- SMTP
- Mock (development/testing)

Notification helpers never raise. A failed send is logged and reported
in the returned EmailResult so the request that triggered it still succeeds.
"""

import asyncio
import os
import logging
import smtplib
from abc import ABC, abstractmethod
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Dict, List, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

class EmailConfig:
    """Email service configuration."""

    SMTP_HOST = os.environ.get("SMTP_HOST", "smtp.gmail.com")
    SMTP_PORT = int(os.environ.get("SMTP_PORT", "587"))
    SMTP_USERNAME = os.environ.get("SMTP_USERNAME", "")
    SMTP_PASSWORD = os.environ.get("SMTP_PASSWORD", "")
    SMTP_USE_TLS = os.environ.get("SMTP_USE_TLS", "true").lower() == "true"

    FROM_EMAIL = os.environ.get("EMAIL_FROM", "noreply@example.com")
    FROM_NAME = os.environ.get("EMAIL_FROM_NAME", "Referral Platform")
    # Receives leads that are not assigned to a preparer
    CORPORATE_LEADS_EMAIL = os.environ.get("CORPORATE_LEADS_EMAIL", "leads@example.com")
    SUPPORT_EMAIL = os.environ.get("SUPPORT_EMAIL", "support@example.com")

    APP_URL = os.environ.get("APP_URL", "http://localhost:3000")
    APP_NAME = os.environ.get("APP_NAME", "Referral Platform")

    # Mode (smtp, mock, auto)
    _EMAIL_MODE_RAW = os.environ.get("EMAIL_MODE", "auto")

    @classmethod
    def is_smtp_configured(cls) -> bool:
        return bool(cls.SMTP_USERNAME and cls.SMTP_PASSWORD)

    @classmethod
    def get_email_mode(cls) -> str:
        """
        Get email mode with safe defaults.

        'auto' resolves to 'smtp' when credentials exist, otherwise 'mock'.
        """
        if cls._EMAIL_MODE_RAW != "auto":
            return cls._EMAIL_MODE_RAW

        if cls.is_smtp_configured():
            return "smtp"

        env = os.environ.get("APP_ENVIRONMENT", "development")
        if env.lower() in ("production", "prod", "staging"):
            logger.warning(
                "EMAIL_MODE not set and SMTP not configured. "
                "Emails will be MOCKED in production!"
            )
        return "mock"


# =============================================================================
# EMAIL MODELS
# =============================================================================

class EmailMessage(BaseModel):
    to: str
    subject: str
    html_body: str
    text_body: Optional[str] = None
    reply_to: Optional[str] = None
    headers: Dict[str, str] = {}


class EmailResult(BaseModel):
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


# =============================================================================
# EMAIL BACKENDS
# =============================================================================

class EmailBackend(ABC):
    """Abstract email backend."""

    @abstractmethod
    async def send(self, message: EmailMessage) -> EmailResult:
        pass


class MockEmailBackend(EmailBackend):
    """Records messages instead of sending them."""

    def __init__(self):
        self.sent_emails: List[EmailMessage] = []

    async def send(self, message: EmailMessage) -> EmailResult:
        self.sent_emails.append(message)
        logger.info(f"[MOCK EMAIL] To: {message.to} | Subject: {message.subject}")
        return EmailResult(
            success=True,
            message_id=f"mock-{datetime.utcnow().strftime('%Y%m%d%H%M%S%f')}",
        )


class SMTPEmailBackend(EmailBackend):
    """SMTP email backend."""

    SMTP_TIMEOUT = 30

    def __init__(self, config: EmailConfig = None):
        self.config = config or EmailConfig()

    def _build(self, message: EmailMessage) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = f"{self.config.FROM_NAME} <{self.config.FROM_EMAIL}>"
        msg["To"] = message.to
        if message.reply_to:
            msg["Reply-To"] = message.reply_to

        # Header values must not carry CRLF
        for key, value in message.headers.items():
            if any(c in str(key) + str(value) for c in ('\r', '\n')):
                logger.warning(f"Rejected email header with CRLF: {key!r}")
                continue
            msg[key] = value

        if message.text_body:
            msg.attach(MIMEText(message.text_body, "plain"))
        msg.attach(MIMEText(message.html_body, "html"))
        return msg

    def _deliver(self, message: EmailMessage) -> None:
        msg = self._build(message)
        with smtplib.SMTP(self.config.SMTP_HOST, self.config.SMTP_PORT, timeout=self.SMTP_TIMEOUT) as server:
            if self.config.SMTP_USE_TLS:
                server.starttls()
            if self.config.SMTP_USERNAME:
                server.login(self.config.SMTP_USERNAME, self.config.SMTP_PASSWORD)
            server.sendmail(self.config.FROM_EMAIL, [message.to], msg.as_string())

    async def send(self, message: EmailMessage) -> EmailResult:
        try:
            await asyncio.to_thread(self._deliver, message)
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed: {e}")
            return EmailResult(success=False, error="Email authentication failed. Check SMTP credentials.")
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(f"SMTP recipients refused for {message.to}: {e}")
            return EmailResult(success=False, error=f"Recipient refused: {message.to}")
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {message.to}: {e}")
            return EmailResult(success=False, error=str(e))

        logger.info(f"Email sent to {message.to}: {message.subject}")
        return EmailResult(
            success=True,
            message_id=f"smtp-{datetime.utcnow().strftime('%Y%m%d%H%M%S%f')}",
        )


# =============================================================================
# EMAIL SERVICE
# =============================================================================

class EmailService:
    """Templated notifications on top of the configured backend."""

    def __init__(self, config: EmailConfig = None, backend: Optional[EmailBackend] = None):
        self.config = config or EmailConfig()

        if backend is not None:
            self._backend = backend
        elif self.config.get_email_mode() == "smtp" and self.config.is_smtp_configured():
            self._backend = SMTPEmailBackend(self.config)
            logger.info("Email service initialized with SMTP backend")
        else:
            self._backend = MockEmailBackend()
            logger.info("Email service initialized with MOCK backend")

    @property
    def backend(self) -> EmailBackend:
        return self._backend

    async def _safe_send(self, message: EmailMessage) -> EmailResult:
        try:
            return await self._backend.send(message)
        except Exception as e:
            logger.error(f"Notification to {message.to} failed: {e}", exc_info=True)
            return EmailResult(success=False, error=str(e))

    async def send_lead_notification(
        self,
        lead: Dict[str, Optional[str]],
        to_email: Optional[str] = None,
    ) -> EmailResult:
        """
        Notify the assigned preparer (or the corporate inbox) of a new lead.

        Args:
            lead: name, email, phone, referrer_username, attribution_method
            to_email: Preparer address; defaults to the corporate inbox
        """
        recipient = to_email or self.config.CORPORATE_LEADS_EMAIL
        name = lead.get("name") or "New lead"
        referrer = lead.get("referrer_username") or "direct"
        rows = "".join(
            f"<tr><td><strong>{escape(label)}</strong></td><td>{escape(str(lead.get(key) or '-'))}</td></tr>"
            for label, key in (
                ("Name", "name"),
                ("Email", "email"),
                ("Phone", "phone"),
                ("Referrer", "referrer_username"),
                ("Attribution", "attribution_method"),
            )
        )
        html_body = f"""
<html>
<body style="font-family: sans-serif; color: #0c1b2f;">
    <h2>New tax intake lead</h2>
    <table cellpadding="6">{rows}</table>
    <p><a href="{self.config.APP_URL}/dashboard/leads">Open the lead dashboard</a></p>
</body>
</html>
"""
        text_body = (
            f"New tax intake lead\n\n"
            f"Name: {name}\nEmail: {lead.get('email')}\nPhone: {lead.get('phone')}\n"
            f"Referrer: {referrer}\n"
        )
        return await self._safe_send(EmailMessage(
            to=recipient,
            subject=f"New lead: {name} (via {referrer})",
            html_body=html_body,
            text_body=text_body,
            reply_to=lead.get("email"),
        ))

    async def send_ticket_notification(
        self,
        ticket_number: str,
        title: str,
        event: str,
        to_email: Optional[str] = None,
    ) -> EmailResult:
        """Notify a preparer or the support inbox about ticket activity."""
        recipient = to_email or self.config.SUPPORT_EMAIL
        html_body = f"""
<html>
<body style="font-family: sans-serif; color: #0c1b2f;">
    <h2>Ticket {escape(ticket_number)}: {escape(event)}</h2>
    <p>{escape(title)}</p>
    <p><a href="{self.config.APP_URL}/support/tickets">View tickets</a></p>
</body>
</html>
"""
        return await self._safe_send(EmailMessage(
            to=recipient,
            subject=f"[{ticket_number}] {event}: {title}",
            html_body=html_body,
            text_body=f"Ticket {ticket_number} {event}: {title}",
        ))


_email_service: Optional[EmailService] = None


def get_email_service() -> EmailService:
    """Process-wide email service. FastAPI dependency."""
    global _email_service
    if _email_service is None:
        _email_service = EmailService()
    return _email_service
