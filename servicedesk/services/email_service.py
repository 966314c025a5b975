"""
Email delivery over SMTP.

Renders Jinja2 HTML templates from ``servicedesk/templates`` and sends them with
aiosmtplib. Every failure is raised as DeliveryError; deciding what to do about
it is the caller's business.
"""

import logging
import re
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import aiosmtplib
from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape

from servicedesk.core.config import settings
from servicedesk.core.exceptions import DeliveryError

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent.parent / "templates"

_TAG_RE = re.compile(r"<[^>]+>")
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")


def html_to_text(html: str) -> str:
    text = _TAG_RE.sub("", html)
    return _BLANK_LINES_RE.sub("\n\n", text).strip()


class EmailSender:
    """Sends templated emails via async SMTP."""

    def __init__(self):
        self.template_env = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            autoescape=select_autoescape(['html', 'xml'])
        )

    def is_configured(self) -> bool:
        return settings.NOTIFICATION_ENABLED and settings.email_enabled

    def render_template(self, template_name: str, context: Dict[str, Any]) -> str:
        """
        Render an HTML template with the given context.

        Args:
            template_name: Name of the template file
            context: Dictionary of template variables

        Returns:
            Rendered HTML string
        """
        try:
            template = self.template_env.get_template(template_name)
            return template.render(**context)
        except TemplateError as e:
            logger.error(f"Error rendering template {template_name}: {str(e)}")
            raise DeliveryError(f"Could not render {template_name}: {e}") from e

    async def send(
        self,
        to: Union[str, List[str]],
        subject: str,
        template_name: str,
        context: Dict[str, Any],
    ) -> Optional[str]:
        html_body = self.render_template(template_name, context)
        return await self.send_email(to, subject, html_to_text(html_body), html_body=html_body)

    async def send_email(
        self,
        to: Union[str, List[str]],
        subject: str,
        body: str,
        html_body: Optional[str] = None,
    ) -> Optional[str]:
        """
        Send an email using async SMTP.

        Returns the Message-ID header, if any. Raises DeliveryError when SMTP
        is not configured or the server rejects the message.
        """
        if not self.is_configured():
            raise DeliveryError("Email is not configured")

        recipients = [to] if isinstance(to, str) else to

        sender_email = settings.SMTP_FROM_EMAIL or settings.SMTP_USER
        sender_name = settings.SMTP_FROM_NAME

        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = f"{sender_name} <{sender_email}>" if sender_name else sender_email
        message["To"] = ", ".join(recipients)

        message.attach(MIMEText(body, "plain", "utf-8"))
        if html_body:
            message.attach(MIMEText(html_body, "html", "utf-8"))

        smtp_kwargs = {
            "hostname": settings.SMTP_HOST,
            "port": settings.SMTP_PORT,
            "timeout": settings.SMTP_TIMEOUT,
        }
        if settings.SMTP_USE_SSL:
            smtp_kwargs["use_tls"] = True
        elif settings.SMTP_USE_TLS:
            smtp_kwargs["start_tls"] = True

        try:
            async with aiosmtplib.SMTP(**smtp_kwargs) as smtp:
                if settings.SMTP_USER and settings.SMTP_PASSWORD:
                    await smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
                await smtp.send_message(message, recipients=recipients)
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP error sending email to {recipients}: {str(e)}")
            raise DeliveryError(f"SMTP error: {e}") from e

        logger.info(f"Email sent successfully to {recipients}")
        return message.get("Message-ID")
