"""Bonus notification mail over SMTP."""

import asyncio
import smtplib
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Protocol

from blackjack_rewards.core.config import Settings, get_settings
from blackjack_rewards.core.exceptions import DeliveryFailedError
from blackjack_rewards.core.logging import get_logger

log = get_logger(__name__)


class Mailer(Protocol):
    async def send(self, to: str, subject: str, text: str) -> str: ...

    async def close(self) -> None: ...


def welcome_bonus_message(code: str, amount: int) -> tuple[str, str]:
    subject = "Welcome to Blackjack - Here's Your Signup Bonus!"
    text = (
        "Welcome to Blackjack!\n\n"
        f"Here is your signup bonus code: {code}\n"
        f"Use this code to get {amount} coins to start playing!\n\n"
        "You'll receive your first daily bonus in 24 hours."
    )
    return subject, text


def daily_bonus_message(code: str, amount: int) -> tuple[str, str]:
    subject = "Your Daily Blackjack Bonus"
    text = (
        f"Here is your daily bonus code: {code}\n\n"
        f"Use this code in the game to get your daily bonus of {amount} coins!"
    )
    return subject, text


class SmtpMailer:
    """STARTTLS SMTP sender. Each send opens its own connection, off the event loop."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        from_name: str,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_name = from_name
        self.timeout = timeout
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "SmtpMailer":
        s = settings or get_settings()
        return cls(s.smtp_host, s.smtp_port, s.email_user, s.email_pass, s.mail_from_name)

    @property
    def configured(self) -> bool:
        return bool(self.username and self.password)

    def _build(self, to: str, subject: str, text: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = formataddr((self.from_name, self.username))
        msg["To"] = to
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid()
        msg.set_content(text)
        return msg

    def _send_sync(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            server.starttls()
            server.login(self.username, self.password)
            server.send_message(msg)

    async def send(self, to: str, subject: str, text: str) -> str:
        """Send a plain-text mail; return its Message-ID. Raises DeliveryFailedError."""
        if self._closed:
            raise DeliveryFailedError("Mailer is closed")
        if not self.configured:
            log.warning("mail_not_configured", to=to)
            raise DeliveryFailedError("Mail credentials not configured")
        msg = self._build(to, subject, text)
        try:
            await asyncio.to_thread(self._send_sync, msg)
        except (smtplib.SMTPException, OSError) as e:
            log.warning("mail_send_failed", to=to, reason=str(e))
            raise DeliveryFailedError(f"Failed to send email to {to}") from e
        log.info("mail_sent", to=to, message_id=msg["Message-ID"])
        return msg["Message-ID"]

    async def close(self) -> None:
        self._closed = True
