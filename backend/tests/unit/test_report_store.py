"""Unit tests for scheduled report persistence (report_store.py)"""
from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_report_payload
from jira_reports.models import ReportRunRecord, ScheduledReportRecord
from jira_reports.schemas.report_schemas import (
    LastRun,
    ReportData,
    ReportRunResult,
    RunDelivery,
    ScheduledReportConfig,
)
from jira_reports.services.report_store import InMemoryReportStore, SqlReportStore


def scheduled_report(report_id, name="Weekly Status"):
    return ScheduledReportConfig.model_validate({
        **make_report_payload(name=name),
        "id": report_id,
    })


def run_result(run_id, minutes=0, report_id="report-1"):
    timestamp = datetime(2024, 3, 5, 9, 0, tzinfo=timezone.utc) + timedelta(minutes=minutes)
    return ReportRunResult(
        id=run_id,
        scheduled_report_id=report_id,
        timestamp=timestamp,
        report=ReportData(id=f"report-data-{run_id}", title="Weekly Status", generated_at=timestamp),
        delivery=RunDelivery(success=True, recipients=["lead@example.com"]),
    )


@pytest.fixture
def sql_store(session_factory):
    return SqlReportStore(session_factory)


@pytest.mark.unit
class TestSqlReportStore:

    def test_reports_round_trip(self, sql_store):
        report = scheduled_report("report-1").model_copy(update={
            "last_run": LastRun(timestamp=datetime(2024, 3, 4, 8, 0, tzinfo=timezone.utc), success=False, error="boom"),
        })

        sql_store.save_reports({"report-1": report})
        loaded = sql_store.load_reports()

        assert list(loaded) == ["report-1"]
        assert loaded["report-1"].name == report.name
        assert loaded["report-1"].schedule_config == report.schedule_config
        assert loaded["report-1"].delivery_config == report.delivery_config
        assert loaded["report-1"].last_run.error == "boom"

    def test_documents_stored_camel_case(self, sql_store, session_factory):
        sql_store.save_reports({"report-1": scheduled_report("report-1")})

        db = session_factory()
        try:
            record = db.query(ScheduledReportRecord).one()
            assert record.name == "Weekly Status"
            assert "scheduleConfig" in record.document
            assert record.document["deliveryConfig"]["recipients"][0]["email"] == "lead@example.com"
        finally:
            db.close()

    def test_save_updates_and_deletes(self, sql_store):
        sql_store.save_reports({
            "report-1": scheduled_report("report-1"),
            "report-2": scheduled_report("report-2"),
        })

        sql_store.save_reports({"report-2": scheduled_report("report-2", name="Renamed")})
        loaded = sql_store.load_reports()

        assert list(loaded) == ["report-2"]
        assert loaded["report-2"].name == "Renamed"

    def test_unreadable_document_skipped(self, sql_store, session_factory):
        db = session_factory()
        db.add(ScheduledReportRecord(id="broken", name="Broken", document={"name": "Broken"}))
        db.commit()
        db.close()

        assert sql_store.load_reports() == {}

    def test_history_newest_first(self, sql_store):
        history = [run_result("run-3", minutes=2), run_result("run-2", minutes=1), run_result("run-1")]

        sql_store.save_history(history)

        assert [r.id for r in sql_store.load_history()] == ["run-3", "run-2", "run-1"]

    def test_history_evicted_rows_deleted(self, sql_store, session_factory):
        sql_store.save_history([run_result("run-2", minutes=1), run_result("run-1")])
        sql_store.save_history([run_result("run-3", minutes=2), run_result("run-2", minutes=1)])

        assert [r.id for r in sql_store.load_history()] == ["run-3", "run-2"]
        db = session_factory()
        try:
            assert db.query(ReportRunRecord).count() == 2
        finally:
            db.close()


@pytest.mark.unit
class TestInMemoryReportStore:

    def test_returns_copies(self):
        store = InMemoryReportStore()
        store.save_reports({"report-1": scheduled_report("report-1")})

        first = store.load_reports()
        second = store.load_reports()

        assert first == second
        assert first["report-1"] is not second["report-1"]

    def test_history(self):
        store = InMemoryReportStore()
        store.save_history([run_result("run-2", minutes=1), run_result("run-1")])
        assert [r.id for r in store.load_history()] == ["run-2", "run-1"]
