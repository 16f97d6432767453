"""Integration tests for scheduled reports API routes."""
from unittest.mock import patch

import pytest
from apscheduler.schedulers.background import BackgroundScheduler
from fastapi.testclient import TestClient

from conftest import StubTracker, StubTransport, fixed_clock, jira_issue, make_report_payload
from jira_reports.api.scheduled_reports_routes import get_scheduler_service
from jira_reports.main import app
from jira_reports.services.email_delivery import EmailDeliveryService
from jira_reports.services.report_generator import ReportGenerator
from jira_reports.services.report_scheduler import ReportSchedulerService
from jira_reports.services.report_store import SqlReportStore

BASE = "/api/scheduled-reports"


@pytest.fixture
def api_tracker():
    return StubTracker({"type = Bug AND resolution = Unresolved": [jira_issue("BUG-1"), jira_issue("BUG-2")]})


@pytest.fixture
def api_transport():
    return StubTransport()


@pytest.fixture
def service(api_tracker, api_transport, session_factory):
    service = ReportSchedulerService(
        ReportGenerator(api_tracker, base_url="https://example.atlassian.net", clock=fixed_clock),
        EmailDeliveryService(api_transport.config, transport=api_transport, clock=fixed_clock),
        store=SqlReportStore(session_factory),
        scheduler=BackgroundScheduler(timezone="UTC"),
        clock=fixed_clock,
    )
    yield service
    service.shutdown()


@pytest.fixture
def client(service):
    app.dependency_overrides[get_scheduler_service] = lambda: service
    # Not entered as a context manager: startup would build the real service
    yield TestClient(app)
    app.dependency_overrides.clear()


def create_report(client, **overrides):
    response = client.post(BASE, json=make_report_payload(**overrides))
    assert response.status_code == 201
    return response.json()


@pytest.mark.integration
class TestListAndCreate:
    """Test GET/POST /api/scheduled-reports"""

    def test_list_empty(self, client):
        response = client.get(BASE)
        assert response.status_code == 200
        assert response.json() == []

    def test_create(self, client):
        data = create_report(client)

        assert data["id"].startswith("report-")
        assert data["name"] == "Weekly Status"
        assert data["scheduleConfig"]["frequency"] == "weekly"
        assert data["deliveryConfig"]["recipients"][0]["email"] == "lead@example.com"
        assert data["state"] == "scheduled"
        assert data["nextRunTime"].startswith("2024-03-11T08:00:00")
        assert data["lastRun"] is None

    def test_list_after_create(self, client):
        created = create_report(client)

        response = client.get(BASE)

        assert [r["id"] for r in response.json()] == [created["id"]]

    def test_create_disabled(self, client):
        data = create_report(client, enabled=False)

        assert data["enabled"] is False
        assert data["scheduleConfig"]["enabled"] is False
        assert data["state"] == "unscheduled"
        assert data["nextRunTime"] is None

    def test_create_empty_days_rejected(self, client):
        payload = make_report_payload()
        payload["scheduleConfig"]["days"] = []

        response = client.post(BASE, json=payload)

        assert response.status_code == 422
        assert response.json()["error"] == "INVALID_SCHEDULE"
        assert response.json()["details"] == {"field": "scheduleConfig"}
        assert client.get(BASE).json() == []

    def test_create_bad_frequency_rejected(self, client):
        payload = make_report_payload()
        payload["scheduleConfig"]["frequency"] = "hourly"

        response = client.post(BASE, json=payload)

        assert response.status_code == 422
        assert response.json()["error"] == "VALIDATION_ERROR"
        assert response.json()["details"]

    def test_create_missing_fields_rejected(self, client):
        response = client.post(BASE, json={"name": "Incomplete"})
        assert response.status_code == 422


@pytest.mark.integration
class TestSingleReport:
    """Test GET/PATCH/DELETE /api/scheduled-reports/{id}"""

    def test_get(self, client):
        created = create_report(client)

        response = client.get(f"{BASE}/{created['id']}")

        assert response.status_code == 200
        assert response.json()["id"] == created["id"]

    def test_get_not_found(self, client):
        response = client.get(f"{BASE}/report-missing")

        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "NOT_FOUND"
        assert body["path"] == f"{BASE}/report-missing"

    def test_patch(self, client):
        created = create_report(client)

        response = client.patch(f"{BASE}/{created['id']}", json={"name": "Renamed", "enabled": False})

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Renamed"
        assert data["enabled"] is False
        assert data["state"] == "unscheduled"
        assert data["reportConfig"] == created["reportConfig"]

    def test_patch_schedule(self, client):
        created = create_report(client)
        schedule = dict(created["scheduleConfig"], frequency="daily", time="18:30")

        response = client.patch(f"{BASE}/{created['id']}", json={"scheduleConfig": schedule})

        assert response.status_code == 200
        assert response.json()["nextRunTime"].startswith("2024-03-05T18:30:00")

    def test_patch_invalid_schedule(self, client):
        created = create_report(client)
        schedule = dict(created["scheduleConfig"], frequency="monthly", days=["32"])

        response = client.patch(f"{BASE}/{created['id']}", json={"scheduleConfig": schedule})

        assert response.status_code == 422
        assert response.json()["error"] == "INVALID_SCHEDULE"
        assert response.json()["message"] == "Monthly days must be between 1 and 31"
        assert client.get(f"{BASE}/{created['id']}").json()["scheduleConfig"]["frequency"] == "weekly"

    def test_patch_not_found(self, client):
        response = client.patch(f"{BASE}/report-missing", json={"name": "x"})
        assert response.status_code == 404

    def test_delete(self, client):
        created = create_report(client)

        response = client.delete(f"{BASE}/{created['id']}")

        assert response.status_code == 204
        assert client.get(f"{BASE}/{created['id']}").status_code == 404

    def test_delete_not_found(self, client):
        create_report(client)

        response = client.delete(f"{BASE}/report-missing")

        assert response.status_code == 404
        assert len(client.get(BASE).json()) == 1


@pytest.mark.integration
class TestRunAndHistory:
    """Test POST /{id}/run and GET /history"""

    def test_run_now(self, client, api_transport):
        created = create_report(client)

        response = client.post(f"{BASE}/{created['id']}/run")

        assert response.status_code == 200
        data = response.json()
        assert data["scheduledReportId"] == created["id"]
        assert data["delivery"] == {"success": True, "recipients": ["lead@example.com"], "error": None}
        assert len(data["report"]["sections"][0]["issues"]) == 2
        assert data["report"]["metrics"]["totalIssues"] == 2
        assert len(api_transport.sent) == 1

        history = client.get(f"{BASE}/history").json()
        assert [h["id"] for h in history] == [data["id"]]

        last_run = client.get(f"{BASE}/{created['id']}").json()["lastRun"]
        assert last_run["success"] is True

    def test_run_failure_reported_in_result(self, client, api_transport):
        api_transport.error = ConnectionError("SMTP down")
        created = create_report(client)

        response = client.post(f"{BASE}/{created['id']}/run")

        assert response.status_code == 200
        assert response.json()["delivery"]["success"] is False
        assert response.json()["delivery"]["error"] == "SMTP down"

    def test_run_not_found(self, client):
        assert client.post(f"{BASE}/report-missing/run").status_code == 404

    def test_history_empty(self, client):
        response = client.get(f"{BASE}/history")
        assert response.status_code == 200
        assert response.json() == []


@pytest.mark.integration
class TestBulkControl:
    """Test start/stop, default CEO report and email test endpoints"""

    def test_start_with_no_reports(self, client):
        response = client.post(f"{BASE}/start")

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "No reports are currently enabled for scheduling.",
        }

    def test_start_refused_without_jira(self, client, api_tracker):
        api_tracker.connected = False

        response = client.post(f"{BASE}/start")

        assert response.json()["success"] is False
        assert "Cannot connect to Jira" in response.json()["message"]

    def test_stop(self, client, service):
        created = create_report(client)

        response = client.post(f"{BASE}/stop")

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert service.get_next_run_time(created["id"]) is None
        assert client.get(f"{BASE}/{created['id']}").json()["state"] == "unscheduled"

    def test_default_ceo_report(self, client):
        response = client.post(f"{BASE}/default-ceo-report", json={
            "ceoEmail": "ceo@x.com",
            "ceoName": "CEO",
            "pmEmail": "pm@x.com",
            "pmName": "PM",
        })

        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "Daily CEO Report"
        assert len(data["reportConfig"]["jqlQueries"]) == 4
        assert data["deliveryConfig"]["ccRecipients"][0]["email"] == "pm@x.com"
        assert data["state"] == "scheduled"

    def test_email_test(self, client, api_transport):
        response = client.post(f"{BASE}/email/test")

        assert response.status_code == 200
        assert response.json() == {"success": True, "service": "smtp"}
        assert api_transport.sent[0].subject == "Test Email Connection"


@pytest.mark.integration
class TestServiceUnavailable:

    def test_routes_return_503_without_service(self):
        app.dependency_overrides.clear()
        app.state.scheduler_service = None

        response = TestClient(app).get(BASE)

        assert response.status_code == 503
        assert response.json()["error"] == "SERVICE_UNAVAILABLE"

    def test_health_reports_scheduler(self):
        app.state.scheduler_service = None

        with patch("jira_reports.main.check_db_connection", return_value=True):
            response = TestClient(app).get("/health")

        assert response.status_code == 200
        assert response.json()["database"] == "connected"
        assert response.json()["scheduler"] == "unavailable"
        assert response.json()["status"] == "unhealthy"
