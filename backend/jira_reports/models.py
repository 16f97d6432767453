"""
Database models for persisted report automation state.

Configurations and run results are stored as the same camelCase JSON
documents the API exchanges, one row per document.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, JSON

from jira_reports.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class ScheduledReportRecord(Base):
    """Persisted scheduled report configuration"""
    __tablename__ = "scheduled_reports"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    document = Column(JSON, nullable=False)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    def __repr__(self):
        return f"<ScheduledReportRecord(id={self.id}, name={self.name})>"


class ReportRunRecord(Base):
    """Persisted report run result"""
    __tablename__ = "report_runs"

    id = Column(String(64), primary_key=True)
    scheduled_report_id = Column(String(64), nullable=False, index=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    document = Column(JSON, nullable=False)

    def __repr__(self):
        return f"<ReportRunRecord(id={self.id}, scheduled_report_id={self.scheduled_report_id})>"
