"""Outbound email transports used to deliver lifecycle notifications."""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

from .domain.contracts import Notification

logger = logging.getLogger(__name__)


class DeliveryError(RuntimeError):
    """Raised by a notifier when a message could not be handed to the mail system."""


class Notifier(Protocol):
    def send(self, notification: Notification) -> None:
        ...


class SmtpNotifier:
    """Send notifications through an SMTP relay, one connection per message."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        starttls: bool = False,
        timeout: float = 10.0,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._starttls = starttls
        self._timeout = timeout

    def _build_message(self, notification: Notification) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self._sender
        message["To"] = notification.recipient
        message["Subject"] = notification.subject
        message.set_content("This message requires an HTML capable mail client.")
        message.add_alternative(notification.html_body, subtype="html")
        return message

    def send(self, notification: Notification) -> None:
        """Deliver ``notification``; transport failures surface as ``DeliveryError``."""
        message = self._build_message(notification)
        try:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as conn:
                if self._starttls:
                    conn.starttls()
                if self._username:
                    conn.login(self._username, self._password)
                conn.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning(
                "smtp delivery of %r to %s via %s:%s failed: %s",
                notification.subject,
                notification.recipient,
                self._host,
                self._port,
                exc,
            )
            raise DeliveryError(str(exc)) from exc
        logger.info("sent %r to %s", notification.subject, notification.recipient)


class LoggingNotifier:
    """Development notifier that logs messages instead of sending them."""

    def send(self, notification: Notification) -> None:
        logger.info(
            "[dev email] to=%s subject=%r\n%s",
            notification.recipient,
            notification.subject,
            notification.html_body,
        )
