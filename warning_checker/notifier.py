"""
Email notification module for the JMA Warning Checker.

Sends plain-text mails for new or changed warnings and for service
events. Delivery failures surface as NotifyError.
"""

import logging
import smtplib
from datetime import datetime, timedelta, timezone
from email.message import EmailMessage
from typing import Dict, Optional

from .config import Config

logger = logging.getLogger(__name__)

JST = timezone(timedelta(hours=9))
DEFAULT_WARNING_URL = "https://www.jma.go.jp/bosai/warning/#lang=ja"
NATIONWIDE_NAME = "全国"
SMTP_TIMEOUT = 30  # seconds


class NotifyError(Exception):
    """Raised when a notification could not be delivered."""
    pass


def format_jst(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(JST).strftime("%Y/%m/%d %H:%M:%S")


class EmailNotifier:
    """Mail sender configured from Config."""

    def __init__(self, config: Config):
        self.config = config
        self.city_urls: Dict[str, str] = dict(config.city_urls)

    def _subject(self, base: str) -> str:
        if self.config.log_level.upper() == "DEBUG":
            return f"test:{base}"
        return base

    def build_warning_message(
        self,
        city: str,
        warning_kind: str,
        status: str,
        lmo: str,
        issued_at: datetime
    ) -> EmailMessage:
        url = self.city_urls.get(city)
        link_name = city if url else NATIONWIDE_NAME

        body = "\n".join([
            f"LWO:{lmo}",
            f"DATE:{format_jst(issued_at)}",
            f"CITY:{city}",
            f"WARN:{warning_kind}",
            f"STAT:{status}",
            f"LINK:気象庁｜{link_name}の警報・注意報",
            f"URL:{url or DEFAULT_WARNING_URL}",
            "END",
        ])
        return self._message(self._subject(f"{city}:{warning_kind}:{status}"), body)

    def build_system_message(self, event: str, details: str, now: Optional[datetime] = None) -> EmailMessage:
        now = now or datetime.now(timezone.utc)
        body = "\n".join([
            f"EVENT:{event}",
            f"DATE:{format_jst(now)}",
            f"DETAILS:{details}",
            "END",
        ])
        return self._message(self._subject(f"weather-checker: {event}"), body)

    def _message(self, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.config.gmail_from
        message["To"] = self.config.email_to
        if self.config.email_bcc:
            message["Bcc"] = self.config.email_bcc
        message.set_content(body)
        return message

    def notify(
        self,
        city: str,
        warning_kind: str,
        status: str,
        lmo: str,
        issued_at: datetime
    ) -> None:
        """Send a warning notification."""
        try:
            message = self.build_warning_message(city, warning_kind, status, lmo, issued_at)
        except ValueError as e:
            raise NotifyError(f"Cannot build notification for {city!r} - {warning_kind!r}: {e}") from e
        self._send(message)
        logger.info(f"Sent notification for {city} - {warning_kind} ({status})")

    def send_system_notification(self, event: str, details: str) -> None:
        try:
            message = self.build_system_message(event, details)
        except ValueError as e:
            raise NotifyError(f"Cannot build system notification {event!r}: {e}") from e
        self._send(message)
        logger.info(f"Sent system notification: {event}")

    def _send(self, message: EmailMessage) -> None:
        try:
            with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port, timeout=SMTP_TIMEOUT) as smtp:
                smtp.starttls()
                smtp.login(self.config.gmail_from, self.config.gmail_app_pass)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotifyError(f"Failed to send '{message['Subject']}': {e}") from e
