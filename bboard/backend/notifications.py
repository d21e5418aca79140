"""Outbound email over SMTP."""

import asyncio
import logging
import smtplib
from email.message import EmailMessage

from config import settings

logger = logging.getLogger(__name__)

SMTP_TIMEOUT_SECONDS = 15


def _deliver(message: EmailMessage) -> None:
    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=SMTP_TIMEOUT_SECONDS) as smtp:
        if settings.SMTP_USE_TLS:
            smtp.starttls()
        if settings.SMTP_USER:
            smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
        smtp.send_message(message)


async def send_email(to: str, subject: str, html: str) -> bool:
    """Send an HTML email. Returns False when SMTP is not configured or delivery fails."""
    if not settings.SMTP_HOST:
        logger.info(f"SMTP_HOST not configured; skipping email to {to}")
        return False

    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = settings.SMTP_SENDER
    message["To"] = to
    message.set_content("This message requires an HTML-capable mail client.")
    message.add_alternative(html, subtype="html")

    try:
        await asyncio.to_thread(_deliver, message)
    except (smtplib.SMTPException, OSError):
        logger.exception(f"Failed to send email to {to}")
        return False

    logger.info(f"Sent email '{subject}' to {to}")
    return True
