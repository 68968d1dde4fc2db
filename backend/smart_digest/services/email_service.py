"""Email transport with template rendering and provider abstraction."""
import asyncio
import logging
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from pathlib import Path
from typing import Optional

import aiosmtplib
from jinja2 import Environment, FileSystemLoader, select_autoescape
from jinja2.exceptions import TemplateError

from smart_digest.config import get_settings
from smart_digest.logging_config import redact_email
from smart_digest.schemas.digest import SendResult

logger = logging.getLogger(__name__)


# Template setup - load from smart_digest/templates/emails/
TEMPLATE_DIR = Path(__file__).parent.parent / "templates" / "emails"


class TemplateRenderer:
    """Jinja2 template renderer for email templates."""

    def __init__(self, template_dir: Path = TEMPLATE_DIR):
        self._template_dir = template_dir
        self._env: Optional[Environment] = None

    def _get_env(self) -> Environment:
        if self._env is None:
            if self._template_dir.exists():
                self._env = Environment(
                    loader=FileSystemLoader(str(self._template_dir)),
                    autoescape=select_autoescape(['html', 'xml']),
                )
            else:
                logger.warning(f"Email template directory not found: {self._template_dir}")
                self._env = Environment(autoescape=select_autoescape(['html', 'xml']))
        return self._env

    def render(self, template_name: str, **context) -> str:
        """Render a template, raising TemplateError if it cannot be rendered."""
        try:
            template = self._get_env().get_template(template_name)
            return template.render(**context)
        except TemplateError as e:
            logger.error(f"Failed to render template {template_name}: {e}")
            raise


template_renderer = TemplateRenderer()


class EmailProvider(ABC):
    """Abstract base class for email providers."""

    @abstractmethod
    async def send(self, to: str, subject: str, html: str, text: str) -> SendResult:
        """Send an email and report the provider's verdict."""


class SMTPProvider(EmailProvider):
    """SMTP email provider using aiosmtplib."""

    async def send(self, to: str, subject: str, html: str, text: str) -> SendResult:
        settings = get_settings()
        redacted = redact_email(to)
        logger.info(f"SMTP: attempting to send email to {redacted}, subject='{subject}'")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{settings.email_from_name} <{settings.email_from_address}>"
        msg["To"] = to
        msg["Message-ID"] = make_msgid(domain=settings.email_from_address.rpartition("@")[2] or None)
        msg.attach(MIMEText(text, "plain"))
        msg.attach(MIMEText(html, "html"))

        try:
            await aiosmtplib.send(
                msg,
                hostname=settings.smtp_host,
                port=settings.smtp_port,
                username=settings.smtp_user if settings.smtp_user else None,
                password=settings.smtp_password if settings.smtp_password else None,
                start_tls=settings.smtp_use_tls,
                timeout=settings.digest_send_timeout_seconds,
            )
        except aiosmtplib.SMTPConnectError as e:
            logger.error(
                f"SMTP connection failed for {redacted}: host={settings.smtp_host}, "
                f"port={settings.smtp_port}, error={e}"
            )
            return SendResult(success=False, error=f"SMTP connection failed: {e}")
        except aiosmtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed for {redacted}: {e}")
            return SendResult(success=False, error="SMTP authentication failed")
        except aiosmtplib.SMTPResponseException as e:
            logger.error(f"SMTP error for {redacted}: code={e.code}, message={e.message}")
            return SendResult(success=False, error=f"SMTP error {e.code}: {e.message}")
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP: unexpected error sending to {redacted}: {type(e).__name__}: {e}")
            return SendResult(success=False, error=f"{type(e).__name__}: {e}")

        logger.info(f"SMTP: email sent successfully to {redacted}")
        return SendResult(success=True, message_id=msg["Message-ID"])


class ResendProvider(EmailProvider):
    """Resend API email provider."""

    async def send(self, to: str, subject: str, html: str, text: str) -> SendResult:
        import resend
        from resend.exceptions import ResendError

        settings = get_settings()
        redacted = redact_email(to)
        logger.info(f"Resend: attempting to send email to {redacted}, subject='{subject}'")
        resend.api_key = settings.resend_api_key

        params = {
            "from": f"{settings.email_from_name} <{settings.email_from_address}>",
            "to": to,
            "subject": subject,
            "html": html,
            "text": text,
        }
        try:
            # The resend client is synchronous
            response = await asyncio.to_thread(resend.Emails.send, params)
        except ResendError as e:
            logger.error(f"Resend: failed to send email to {redacted}: {type(e).__name__}: {e}")
            return SendResult(success=False, error=str(e))

        logger.info(f"Resend: email sent successfully to {redacted}")
        return SendResult(success=True, message_id=response.get("id"))


class EmailService:
    """Picks the configured provider and guards against disabled email."""

    def __init__(self):
        self._provider: Optional[EmailProvider] = None

    def _get_provider(self) -> Optional[EmailProvider]:
        """Lazy load the email provider based on settings."""
        if self._provider is None:
            settings = get_settings()
            if settings.email_provider == "smtp":
                self._provider = SMTPProvider()
            elif settings.email_provider == "resend":
                self._provider = ResendProvider()
            else:
                logger.warning(f"Unknown email provider: {settings.email_provider}")
        return self._provider

    async def send(self, to: str, subject: str, html: str, text: str) -> SendResult:
        settings = get_settings()
        if not settings.email_enabled:
            logger.info(f"Email disabled - would send '{subject}' to {redact_email(to)}")
            return SendResult(success=False, error="Email delivery is disabled")

        provider = self._get_provider()
        if not provider:
            logger.warning("No email provider configured")
            return SendResult(success=False, error="No email provider configured")

        return await provider.send(to=to, subject=subject, html=html, text=text)


# Singleton
email_service = EmailService()
