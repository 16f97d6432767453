"""
Test Configuration and Fixtures

Collaborators of the report scheduler are replaced with in-process stubs and
the SQL store runs on an in-memory SQLite database.
"""

import copy
from datetime import datetime, timezone

import pytest
from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from jira_reports.database import init_db
from jira_reports.schemas.report_schemas import DeliveryResult
from jira_reports.services.email_delivery import EmailDeliveryService
from jira_reports.services.email_transports import EmailConfig, EmailTransport
from jira_reports.services.report_generator import ReportGenerator
from jira_reports.services.report_scheduler import ReportSchedulerService
from jira_reports.services.report_store import InMemoryReportStore


# Tuesday, 5 March 2024, 09:00 UTC
FIXED_NOW = datetime(2024, 3, 5, 9, 0, tzinfo=timezone.utc)

JIRA_BASE_URL = "https://example.atlassian.net"


def jira_issue(key, summary="Issue", status="To Do", assignee=None, priority="Medium",
               created="2024-03-01T10:00:00.000+0000", updated="2024-03-04T10:00:00.000+0000",
               duedate=None, labels=None):
    """Raw issue document as returned by the Jira search API"""
    return {
        "key": key,
        "fields": {
            "summary": summary,
            "status": {"name": status},
            "assignee": {"displayName": assignee} if assignee else None,
            "priority": {"name": priority},
            "created": created,
            "updated": updated,
            "duedate": duedate,
            "labels": labels or [],
        },
    }


class StubTracker:
    """Issue tracker returning canned issues per JQL query"""

    def __init__(self, issues_by_query=None, failing_queries=(), connected=True):
        self.issues_by_query = issues_by_query or {}
        self.failing_queries = set(failing_queries)
        self.connected = connected
        self.searches = []

    def test_connection(self):
        return self.connected

    def search(self, query, limit):
        self.searches.append((query, limit))
        if query in self.failing_queries:
            raise RuntimeError(f"search failed for {query}")
        return copy.deepcopy(self.issues_by_query.get(query, []))[:limit]


class StubTransport(EmailTransport):
    """Transport that records payloads instead of sending them"""

    name = "stub"

    def __init__(self, config=None, configured=True, succeed=True, error=None):
        super().__init__(config or EmailConfig(from_email="reports@example.com", from_name="Reports"))
        self.configured = configured
        self.succeed = succeed
        self.error = error
        self.sent = []

    def is_configured(self):
        return self.configured

    def send(self, payload):
        if self.error is not None:
            raise self.error
        self.sent.append(payload)
        return DeliveryResult(
            success=self.succeed,
            message_id="stub-message" if self.succeed else None,
            error=None if self.succeed else "rejected by stub",
            timestamp=FIXED_NOW,
        )


def fixed_clock():
    return FIXED_NOW


def make_report_payload(**overrides):
    """Camel-case scheduled report document as accepted by the API"""
    payload = {
        "name": "Weekly Status",
        "description": "Team status",
        "reportConfig": {
            "title": "Weekly Status",
            "description": "Open work",
            "jqlQueries": [
                {"name": "Open Bugs", "query": "type = Bug AND resolution = Unresolved", "limit": 20},
            ],
            "includeMetrics": True,
            "includeCharts": False,
            "includeSummary": True,
        },
        "scheduleConfig": {
            "enabled": True,
            "frequency": "weekly",
            "time": "08:00",
            "days": ["1"],
            "timezone": "UTC",
        },
        "deliveryConfig": {
            "recipients": [{"id": "r1", "email": "lead@example.com", "name": "Lead", "role": "Team Lead"}],
            "ccRecipients": [{"id": "r2", "email": "pm@example.com", "name": "PM", "role": "PM"}],
            "includeHtml": True,
            "includeText": True,
        },
        "enabled": True,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def tracker():
    return StubTracker()


@pytest.fixture
def transport():
    return StubTransport()


@pytest.fixture
def report_generator(tracker):
    return ReportGenerator(tracker, base_url=JIRA_BASE_URL, clock=fixed_clock)


@pytest.fixture
def email_delivery(transport):
    return EmailDeliveryService(transport.config, transport=transport, clock=fixed_clock)


@pytest.fixture
def report_store():
    return InMemoryReportStore()


@pytest.fixture
def scheduler_service(report_generator, email_delivery, report_store):
    """Scheduler service whose APScheduler instance is never started"""
    service = ReportSchedulerService(
        report_generator,
        email_delivery,
        store=report_store,
        scheduler=BackgroundScheduler(timezone="UTC"),
        clock=fixed_clock,
    )
    yield service
    service.shutdown()


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared across connections"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
