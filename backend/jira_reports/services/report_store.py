"""
Persistence for scheduled report configurations and run history.
"""

import copy
import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, List

from sqlalchemy.orm import Session

from jira_reports.models import ReportRunRecord, ScheduledReportRecord
from jira_reports.schemas.report_schemas import ReportRunResult, ScheduledReportConfig

logger = logging.getLogger(__name__)


def _dump(model) -> dict:
    return model.model_dump(mode="json", by_alias=True)


class ReportStore(ABC):
    """Load/save contract used by the scheduler"""

    @abstractmethod
    def load_reports(self) -> Dict[str, ScheduledReportConfig]:
        ...

    @abstractmethod
    def save_reports(self, reports: Dict[str, ScheduledReportConfig]) -> None:
        ...

    @abstractmethod
    def load_history(self) -> List[ReportRunResult]:
        """Run results, most recent first"""

    @abstractmethod
    def save_history(self, history: List[ReportRunResult]) -> None:
        ...


class InMemoryReportStore(ReportStore):
    """Process-local store holding serialized documents"""

    def __init__(self):
        self._reports: Dict[str, dict] = {}
        self._history: List[dict] = []

    def load_reports(self) -> Dict[str, ScheduledReportConfig]:
        return {
            report_id: ScheduledReportConfig.model_validate(copy.deepcopy(document))
            for report_id, document in self._reports.items()
        }

    def save_reports(self, reports: Dict[str, ScheduledReportConfig]) -> None:
        self._reports = {report_id: _dump(report) for report_id, report in reports.items()}

    def load_history(self) -> List[ReportRunResult]:
        return [ReportRunResult.model_validate(copy.deepcopy(document)) for document in self._history]

    def save_history(self, history: List[ReportRunResult]) -> None:
        self._history = [_dump(result) for result in history]


class SqlReportStore(ReportStore):
    """Store backed by the scheduled_reports and report_runs tables"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def load_reports(self) -> Dict[str, ScheduledReportConfig]:
        db = self.session_factory()
        try:
            records = db.query(ScheduledReportRecord).order_by(ScheduledReportRecord.created_at).all()
            reports = {}
            for record in records:
                try:
                    reports[record.id] = ScheduledReportConfig.model_validate(record.document)
                except ValueError as e:
                    logger.error(f"Skipping unreadable scheduled report {record.id}: {e}")
            return reports
        finally:
            db.close()

    def save_reports(self, reports: Dict[str, ScheduledReportConfig]) -> None:
        db = self.session_factory()
        try:
            existing = {record.id: record for record in db.query(ScheduledReportRecord).all()}

            for report_id, record in existing.items():
                if report_id not in reports:
                    db.delete(record)

            for report_id, report in reports.items():
                record = existing.get(report_id)
                if record is None:
                    db.add(ScheduledReportRecord(id=report_id, name=report.name, document=_dump(report)))
                else:
                    record.name = report.name
                    record.document = _dump(report)

            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def load_history(self) -> List[ReportRunResult]:
        db = self.session_factory()
        try:
            records = db.query(ReportRunRecord).order_by(ReportRunRecord.timestamp.desc()).all()
            return [ReportRunResult.model_validate(record.document) for record in records]
        finally:
            db.close()

    def save_history(self, history: List[ReportRunResult]) -> None:
        db = self.session_factory()
        try:
            keep = {result.id for result in history}
            existing = {record.id for record in db.query(ReportRunRecord.id).all()}

            db.query(ReportRunRecord).filter(
                ReportRunRecord.id.notin_(list(keep))
            ).delete(synchronize_session=False)

            # Run results are immutable, so only new ones are written
            for result in history:
                if result.id not in existing:
                    db.add(ReportRunRecord(
                        id=result.id,
                        scheduled_report_id=result.scheduled_report_id,
                        timestamp=result.timestamp,
                        document=_dump(result),
                    ))

            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
