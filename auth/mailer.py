"""
auth/mailer.py -- Outbound email for one-time codes.

SmtpTransport delivers multipart (text + HTML) messages over SMTP with
aiosmtplib. Every failure mode (missing credentials, connection errors, SMTP
rejections, timeouts) is raised as TransportFailure; the calling flow decides
whether that is fatal. The whole send is bounded by
Settings.email_timeout_seconds so a slow mail server cannot stall a request.

Any object with an async send(recipient, subject, text_body, html_body)
method can stand in for SmtpTransport (tests use a recording fake).

Layer rule: no imports from api/.
"""

from __future__ import annotations

import asyncio
import logging
from email.message import EmailMessage
from typing import Protocol

import aiosmtplib

from auth.errors import TransportFailure
from auth.models import Purpose
from core.config import Settings

logger = logging.getLogger("authgate.auth.mailer")


class EmailTransport(Protocol):
    async def send(self, recipient: str, subject: str, text_body: str, html_body: str) -> None: ...


class SmtpTransport:
    """SMTP delivery configured from Settings.

    Port 465 uses implicit TLS; any other port upgrades with STARTTLS.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    async def send(self, recipient: str, subject: str, text_body: str, html_body: str) -> None:
        cfg = self._settings
        if not cfg.smtp_username or not cfg.smtp_password:
            logger.error("SMTP credentials missing (SMTP_USERNAME set=%s)", bool(cfg.smtp_username))
            raise TransportFailure(detail="SMTP credentials are not configured.")

        message = EmailMessage()
        message["From"] = cfg.sender_address
        message["To"] = recipient
        message["Subject"] = subject
        message.set_content(text_body)
        message.add_alternative(html_body, subtype="html")

        implicit_tls = cfg.smtp_port == 465
        try:
            await asyncio.wait_for(
                aiosmtplib.send(
                    message,
                    hostname=cfg.smtp_host,
                    port=cfg.smtp_port,
                    username=cfg.smtp_username,
                    password=cfg.smtp_password,
                    use_tls=implicit_tls,
                    start_tls=not implicit_tls,
                    timeout=cfg.email_timeout_seconds,
                ),
                timeout=cfg.email_timeout_seconds,
            )
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as exc:
            logger.error("Email to %s failed: %s", recipient, exc.__class__.__name__)
            raise TransportFailure(detail=str(exc) or exc.__class__.__name__) from exc
        logger.info("Email sent to %s (%s)", recipient, subject)


# ---------------------------------------------------------------------------
# Message templates
# ---------------------------------------------------------------------------

_SUBJECTS = {
    Purpose.EMAIL_VERIFY: "Verify your email address",
    Purpose.PASSWORD_RESET: "Your password reset code",
}

_INTROS = {
    Purpose.EMAIL_VERIFY: "Thanks for signing up. Enter this code to verify your email address:",
    Purpose.PASSWORD_RESET: "We received a request to reset your password. Enter this code to continue:",
}


def compose_code_email(purpose: Purpose, code: str, valid_minutes: int) -> tuple[str, str, str]:
    """Return (subject, text_body, html_body) for a one-time code email."""
    intro = _INTROS[purpose]
    outro = f"This code expires in {valid_minutes} minutes. If you did not request it, you can ignore this email."
    text_body = f"{intro}\n\n{code}\n\n{outro}\n"
    html_body = (
        '<div style="font-family:Arial,sans-serif;line-height:1.5">'
        f"<p>{intro}</p>"
        f'<p style="font-size:28px;font-weight:bold;letter-spacing:6px">{code}</p>'
        f'<p style="color:#666;font-size:12px">{outro}</p>'
        "</div>"
    )
    return _SUBJECTS[purpose], text_body, html_body
