# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Message composition and SMTP delivery for the dispatch endpoint.

The gates never deliver mail themselves. This module is the collaborator
the HTTP layer hands an accepted message to: it composes an
``EmailMessage`` and sends it with aiosmtplib.

TLS behavior follows the port, as the mail proxy's SMTP pool does:
- Port 465 with use_tls=True: Direct TLS (implicit TLS)
- Other ports with use_tls=True: STARTTLS
- use_tls=False: Plain SMTP
"""

from __future__ import annotations

import asyncio
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import Protocol

import aiosmtplib

from .config_loader import SmtpConfig
from .errors import DeliveryError
from .logger import get_logger
from .models import Message

logger = get_logger("sender")


class MailSender(Protocol):
    """Anything able to deliver a composed message."""

    async def send(self, email: EmailMessage, recipients: list[str] | None = None) -> None: ...


def build_email(message: Message, default_from: str, body: str | None = None) -> EmailMessage:
    """Compose an ``EmailMessage`` from a validated message.

    Args:
        message: The validated message.
        default_from: Sender used when the message carries none.
        body: Body override (the sanitized HTML for HTML messages).

    Returns:
        The composed message, ready for delivery.
    """
    email = EmailMessage()
    sender = message.from_addr or default_from
    email["From"] = sender
    email["To"] = message.to
    if message.cc:
        email["Cc"] = ", ".join(message.cc)
    if message.reply_to:
        email["Reply-To"] = message.reply_to
    email["Subject"] = message.subject
    email["Date"] = formatdate(localtime=True)
    domain = sender.rsplit("@", 1)[1] if "@" in sender else None
    email["Message-ID"] = make_msgid(domain=domain)

    content = message.body if body is None else body
    if message.is_html:
        email.set_content(content, subtype="html")
    else:
        email.set_content(content)
    return email


def envelope_recipients(message: Message) -> list[str]:
    """All envelope recipients; bcc travels here and never in the headers."""
    return [message.to, *message.cc, *message.bcc]


class SmtpSender:
    """Deliver messages through one SMTP server using aiosmtplib.

    Attributes:
        config: SMTP connection settings.
    """

    def __init__(self, config: SmtpConfig):
        self.config = config

    def _client(self) -> aiosmtplib.SMTP:
        cfg = self.config
        if cfg.use_tls and cfg.port == 465:
            return aiosmtplib.SMTP(hostname=cfg.host, port=cfg.port, use_tls=True, start_tls=False, timeout=cfg.timeout)
        if cfg.use_tls:
            return aiosmtplib.SMTP(hostname=cfg.host, port=cfg.port, use_tls=False, start_tls=True, timeout=cfg.timeout)
        return aiosmtplib.SMTP(hostname=cfg.host, port=cfg.port, use_tls=False, start_tls=False, timeout=cfg.timeout)

    async def send(self, email: EmailMessage, recipients: list[str] | None = None) -> None:
        """Send one composed message.

        Raises:
            DeliveryError: Connection, authentication or delivery failed.
        """
        smtp = self._client()
        try:
            async with smtp:
                if self.config.user and self.config.password:
                    await smtp.login(self.config.user, self.config.password)
                await smtp.send_message(email, recipients=recipients)
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as exc:
            logger.error("SMTP delivery to %s:%s failed: %s", self.config.host, self.config.port, exc)
            raise DeliveryError(str(exc)) from exc


__all__ = ["MailSender", "SmtpSender", "build_email", "envelope_recipients"]
