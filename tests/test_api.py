"""
Tests for the REST API, with the service wiring replaced by in-memory parts.
"""
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from warning_checker import api
from warning_checker.checker import CheckResult
from warning_checker.database import CityReport
from warning_checker.reconciler import (
    NotificationEvent,
    ReconcileOutcome,
    Transition,
    TransitionRecord,
)

ISSUED = datetime(2024, 6, 1, 5, 0, tzinfo=timezone.utc)


def sample_result(success=True, delivered=True):
    outcome = ReconcileOutcome(lmo="静岡地方気象台", xml_file="a.xml")
    outcome.transitions = [
        TransitionRecord("裾野市", "大雨警報", Transition.NEW, "発表"),
        TransitionRecord("御殿場市", "大雨警報", Transition.NEW, "発表"),
    ]
    outcome.notifications = [
        NotificationEvent("裾野市", "大雨警報", "発表", "静岡地方気象台", ISSUED),
        NotificationEvent("御殿場市", "大雨警報", "発表", "静岡地方気象台", ISSUED,
                          delivered=delivered, error=None if delivered else "SMTP unavailable"),
    ]
    outcome.reports_inserted = 2
    outcome.references_added = 1
    return CheckResult(
        success=success,
        started_at="2024-06-01T05:00:00",
        duration_ms=120,
        feed_modified=True,
        outcomes=[outcome],
        error_message=None if success else "Feed fetch failed",
    )


@pytest.fixture
def services(db, monkeypatch):
    checker = Mock()
    checker.last_result = None
    checker.monitored_regions = {"静岡地方気象台": ["裾野市", "御殿場市"]}
    scheduler = Mock()
    scheduler.consecutive_failures = 0
    scheduler.is_running = True
    scheduler.get_scheduler_status.return_value = {"is_running": True, "check_interval_minutes": 10}

    monkeypatch.setattr(api, "db", db)
    monkeypatch.setattr(api, "checker", checker)
    monkeypatch.setattr(api, "scheduler", scheduler)
    return checker, scheduler


@pytest.fixture
def client():
    return TestClient(api.app)


class TestHealth:

    def test_not_initialized(self, client, monkeypatch):
        monkeypatch.setattr(api, "db", None)
        monkeypatch.setattr(api, "scheduler", None)

        body = client.get("/health").json()

        assert body["status"] == "degraded"
        assert body["database"] == "disconnected"
        assert body["risks"] == ["System not initialized"]

    def test_healthy(self, client, services):
        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["scheduler"] == "running"
        assert body["risks"] == []

    def test_failures_reported_as_risks(self, client, services):
        checker, scheduler = services
        scheduler.consecutive_failures = 3
        checker.last_result = sample_result(success=False, delivered=False)

        risks = client.get("/health").json()["risks"]

        assert "Weather check failing repeatedly (3 times)" in risks
        assert "Last check failed: Feed fetch failed" in risks
        assert "Notifications failed for 静岡地方気象台: 1" in risks


class TestReports:

    def test_unavailable_without_database(self, client, monkeypatch):
        monkeypatch.setattr(api, "db", None)

        assert client.get("/reports").status_code == 503

    def test_filters(self, client, services, db):
        db.insert_report(CityReport("静岡地方気象台", "裾野市", "大雨警報", "発表", "a.xml"))
        db.insert_report(CityReport("静岡地方気象台", "御殿場市", "洪水注意報", "継続", "a.xml"))

        everything = client.get("/reports").json()
        susono = client.get("/reports", params={"city": "裾野市"}).json()

        assert len(everything) == 2
        assert [(r["city"], r["warning_kind"], r["status"]) for r in susono] == [("裾野市", "大雨警報", "発表")]

    def test_references(self, client, services, db):
        db.insert_reference("静岡地方気象台", "a.xml")

        body = client.get("/references", params={"lmo": "静岡地方気象台"}).json()

        assert [r["xml_file"] for r in body] == ["a.xml"]


class TestChecks:

    def test_no_result_yet(self, client, services):
        response = client.get("/check/results")

        assert response.status_code == 200
        assert response.json() is None

    def test_manual_check(self, client, services):
        _, scheduler = services
        scheduler.trigger_immediate_check.return_value = sample_result()

        body = client.post("/check").json()

        assert body["success"] is True
        outcome = body["outcomes"][0]
        assert outcome["transitions"] == {"new": 2}
        assert outcome["notifications_sent"] == 2
        assert outcome["reports_inserted"] == 2

    def test_status(self, client, services):
        checker, _ = services
        checker.last_result = sample_result(delivered=False)

        body = client.get("/status").json()

        assert body["status"] == "degraded"
        assert body["data_summary"]["active_reports"] == 0
        assert body["last_check"]["outcomes"][0]["notification_failures"] == ["SMTP unavailable"]
        assert body["monitored_regions"] == {"静岡地方気象台": ["裾野市", "御殿場市"]}
