"""Shared fixtures for warning checker tests."""
import os
import sys

import pytest

# Make the tests directory importable for the XML sample helpers
sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))

from warning_checker.config import Config
from warning_checker.database import Database
from warning_checker.notifier import NotifyError


class RecordingNotifier:
    """Notifier double that remembers every call and can be told to fail."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []
        self.system_events = []

    def notify(self, city, warning_kind, status, lmo, issued_at):
        self.calls.append((city, warning_kind, status, lmo, issued_at))
        if self.fail:
            raise NotifyError("SMTP unavailable")

    def send_system_notification(self, event, details):
        self.system_events.append((event, details))
        if self.fail:
            raise NotifyError("SMTP unavailable")


@pytest.fixture
def db():
    database = Database(":memory:")
    yield database
    database.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def config(tmp_path):
    return Config(
        gmail_from="checker@example.com",
        gmail_app_pass="app-pass",
        email_to="operator@example.com",
        data_dir=str(tmp_path / "xml"),
        deleted_dir=str(tmp_path / "deleted"),
        db_path=":memory:",
        heartbeat_path=str(tmp_path / "heartbeat"),
    )
