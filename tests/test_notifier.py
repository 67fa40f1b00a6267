"""
Tests for email notifications.
"""
import smtplib
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from warning_checker.notifier import (
    DEFAULT_WARNING_URL,
    EmailNotifier,
    NotifyError,
    format_jst,
)

ISSUED = datetime(2024, 6, 1, 5, 0, 0, tzinfo=timezone.utc)


def test_format_jst():
    assert format_jst(ISSUED) == "2024/06/01 14:00:00"
    assert format_jst(datetime(2024, 6, 1, 20, 30)) == "2024/06/02 05:30:00"


class TestWarningMessage:

    def test_subject_and_body(self, config):
        message = EmailNotifier(config).build_warning_message("裾野市", "大雨警報", "発表", "静岡地方気象台", ISSUED)

        assert message["Subject"] == "裾野市:大雨警報:発表"
        assert message["To"] == "operator@example.com"
        assert message["From"] == "checker@example.com"
        assert message["Bcc"] is None
        assert message.get_content().splitlines() == [
            "LWO:静岡地方気象台",
            "DATE:2024/06/01 14:00:00",
            "CITY:裾野市",
            "WARN:大雨警報",
            "STAT:発表",
            "LINK:気象庁｜全国の警報・注意報",
            f"URL:{DEFAULT_WARNING_URL}",
            "END",
        ]

    def test_city_url_and_bcc(self, config):
        config.city_urls = {"裾野市": "https://www.jma.go.jp/bosai/warning/#area_type=class20s&area_code=2222000"}
        config.email_bcc = "archive@example.com"

        message = EmailNotifier(config).build_warning_message("裾野市", "大雨警報", "発表", "静岡地方気象台", ISSUED)

        body = message.get_content()
        assert "LINK:気象庁｜裾野市の警報・注意報" in body
        assert "area_code=2222000" in body
        assert message["Bcc"] == "archive@example.com"

    def test_debug_prefix(self, config):
        config.log_level = "debug"

        message = EmailNotifier(config).build_warning_message("裾野市", "大雨警報", "発表", "静岡地方気象台", ISSUED)

        assert message["Subject"] == "test:裾野市:大雨警報:発表"


class TestSystemMessage:

    def test_body(self, config):
        message = EmailNotifier(config).build_system_message("started", "Service started successfully", now=ISSUED)

        assert message["Subject"] == "weather-checker: started"
        assert message.get_content().splitlines() == [
            "EVENT:started",
            "DATE:2024/06/01 14:00:00",
            "DETAILS:Service started successfully",
            "END",
        ]


class TestDelivery:

    @patch("warning_checker.notifier.smtplib.SMTP")
    def test_notify_sends_over_starttls(self, smtp_class, config):
        smtp = MagicMock()
        smtp_class.return_value.__enter__.return_value = smtp

        EmailNotifier(config).notify("裾野市", "大雨警報", "発表", "静岡地方気象台", ISSUED)

        smtp_class.assert_called_once_with("smtp.gmail.com", 587, timeout=30)
        smtp.starttls.assert_called_once()
        smtp.login.assert_called_once_with("checker@example.com", "app-pass")
        sent = smtp.send_message.call_args[0][0]
        assert sent["Subject"] == "裾野市:大雨警報:発表"

    @patch("warning_checker.notifier.smtplib.SMTP")
    def test_smtp_failure_raises_notify_error(self, smtp_class, config):
        smtp = MagicMock()
        smtp.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")
        smtp_class.return_value.__enter__.return_value = smtp

        with pytest.raises(NotifyError, match="bad credentials"):
            EmailNotifier(config).notify("裾野市", "大雨警報", "発表", "静岡地方気象台", ISSUED)

    @patch("warning_checker.notifier.smtplib.SMTP", side_effect=OSError("network unreachable"))
    def test_connection_failure_raises_notify_error(self, smtp_class, config):
        with pytest.raises(NotifyError):
            EmailNotifier(config).send_system_notification("started", "ok")

    @patch("warning_checker.notifier.smtplib.SMTP")
    def test_unencodable_header_raises_notify_error(self, smtp_class, config):
        with pytest.raises(NotifyError, match="Cannot build notification"):
            EmailNotifier(config).notify("裾野市\n御殿場市", "大雨警報", "発表", "静岡地方気象台", ISSUED)

        smtp_class.assert_not_called()
