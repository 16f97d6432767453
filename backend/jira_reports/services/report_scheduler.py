"""
Scheduled report orchestration.

Owns the scheduled report configurations and one APScheduler one-shot job per
enabled configuration. When a job fires the report is generated, delivered,
recorded in run history and the next occurrence is armed.

Features:
- Add/update/delete scheduled reports with immediate (re)scheduling
- Run a report on demand
- Bulk start/stop with service checks before arming
- Bounded run history (most recent first)
- Canned daily CEO report
"""

import logging
import threading
import uuid
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, List, Mapping, Optional, Union

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

from jira_reports.config import Settings, get_settings
from jira_reports.schemas.report_schemas import (
    EmailRecipient,
    JqlQuery,
    LastRun,
    ReportConfig,
    ReportData,
    ReportDeliveryConfig,
    ReportFrequency,
    ReportRunResult,
    ReportScheduleConfig,
    RunDelivery,
    ScheduledReportConfig,
    ScheduledReportCreate,
    ScheduledReportResult,
    StartResult,
)
from jira_reports.services.email_delivery import EmailDeliveryService, create_email_delivery_service
from jira_reports.services.jira_client import JiraClient
from jira_reports.services.recurrence import next_fire_time, validate_schedule
from jira_reports.services.report_generator import ReportGenerator
from jira_reports.services.report_store import InMemoryReportStore, ReportStore, SqlReportStore

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50


class ScheduleState(str, Enum):
    """Lifecycle state of one scheduled report"""
    UNSCHEDULED = "unscheduled"
    SCHEDULED = "scheduled"
    RUNNING = "running"


class SchedulerInitializationError(RuntimeError):
    """Raised when the report pipeline cannot be constructed"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


_FIELD_NAMES = {
    (field.alias or name): name for name, field in ScheduledReportConfig.model_fields.items()
}


class RunHistory:
    """Fixed-capacity run history; the newest entry is first and the oldest is evicted"""

    def __init__(self, limit: int = DEFAULT_HISTORY_LIMIT, entries: Iterable[ReportRunResult] = ()):
        # entries arrive newest first
        self._entries: Deque[ReportRunResult] = deque(list(entries)[:limit], maxlen=limit)

    @property
    def limit(self) -> int:
        return self._entries.maxlen

    def record(self, result: ReportRunResult) -> None:
        self._entries.appendleft(result)

    def items(self) -> List[ReportRunResult]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class ReportSchedulerService:
    """Scheduler for automated report generation and delivery"""

    def __init__(
        self,
        report_generator: ReportGenerator,
        email_delivery: EmailDeliveryService,
        store: Optional[ReportStore] = None,
        scheduler: Optional[BackgroundScheduler] = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        default_timezone: str = "UTC",
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.report_generator = report_generator
        self.email_delivery = email_delivery
        self.store = store or InMemoryReportStore()
        self.default_timezone = default_timezone
        self.clock = clock

        # Single worker: runs execute one at a time
        self._scheduler = scheduler or BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(max_workers=1)},
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": None},
            timezone="UTC",
        )
        self._lock = threading.RLock()
        self._reports: Dict[str, ScheduledReportConfig] = {}
        self._next_runs: Dict[str, datetime] = {}
        self._running: set = set()
        # Bumped by stop_all so in-flight runs do not re-arm afterwards
        self._stop_generation = 0
        self._history = RunHistory(history_limit)

        self.load_scheduled_reports()

    # ==================== Persistence ====================

    def load_scheduled_reports(self) -> None:
        """Load configurations and run history from the store"""
        try:
            reports = self.store.load_reports()
            history = self.store.load_history()
        except Exception as e:
            logger.error(f"Failed to load scheduled reports: {e}", exc_info=True)
            return

        with self._lock:
            self._reports = dict(reports)
            self._history = RunHistory(self._history.limit, history)
        logger.info(f"Loaded {len(reports)} scheduled report(s) and {len(history)} run(s)")

    def _save_reports(self) -> None:
        try:
            self.store.save_reports(self._reports)
        except Exception as e:
            logger.error(f"Failed to save scheduled reports: {e}", exc_info=True)

    def _save_history(self) -> None:
        try:
            self.store.save_history(self._history.items())
        except Exception as e:
            logger.error(f"Failed to save run history: {e}", exc_info=True)

    # ==================== Configuration Management ====================

    def get_scheduled_reports(self) -> List[ScheduledReportConfig]:
        with self._lock:
            return list(self._reports.values())

    def get_scheduled_report(self, report_id: str) -> Optional[ScheduledReportConfig]:
        with self._lock:
            return self._reports.get(report_id)

    def add_scheduled_report(
        self, config: Union[ScheduledReportCreate, Mapping[str, Any]]
    ) -> ScheduledReportResult:
        """
        Add a new scheduled report and schedule it if enabled.

        A schedule that cannot produce run times is rejected: the result has
        success=False and the reason in message, and nothing is stored.
        """
        data = config.model_dump() if isinstance(config, ScheduledReportCreate) else dict(config)
        data = {_FIELD_NAMES.get(key, key): value for key, value in data.items()}
        data.update(id=f"report-{uuid.uuid4()}", last_run=None)

        report = _mirror_enabled(ScheduledReportConfig.model_validate(data), from_top_level=True)
        rejected = _reject_invalid_schedule(report)
        if rejected is not None:
            return rejected

        with self._lock:
            self._reports[report.id] = report
            self._save_reports()
            if report.enabled:
                self._schedule(report)

        logger.info(f"Added scheduled report {report.id}: {report.name}")
        return ScheduledReportResult(success=True, report=report)

    def update_scheduled_report(
        self, report_id: str, patch: Mapping[str, Any]
    ) -> Optional[ScheduledReportResult]:
        """
        Merge a partial update into a scheduled report and reschedule it.

        Returns:
            None if the id is unknown. Otherwise a result holding the updated
            configuration, or success=False with the reason when the merged
            schedule is invalid; a rejected update leaves the report and its
            timer untouched.
        """
        changes = {_FIELD_NAMES.get(key, key): value for key, value in patch.items()}
        changes.pop("id", None)

        with self._lock:
            current = self._reports.get(report_id)
            if current is None:
                return None

            data = current.model_dump()
            data.update(changes)
            updated = ScheduledReportConfig.model_validate(data)
            if "enabled" in changes:
                updated = _mirror_enabled(updated, from_top_level=True)
            elif "schedule_config" in changes:
                updated = _mirror_enabled(updated, from_top_level=False)
            rejected = _reject_invalid_schedule(updated)
            if rejected is not None:
                return rejected

            self._unschedule(report_id)
            self._reports[report_id] = updated
            self._save_reports()
            if updated.enabled:
                self._schedule(updated)

        return ScheduledReportResult(success=True, report=updated)

    def delete_scheduled_report(self, report_id: str) -> bool:
        """Unschedule and remove a scheduled report; False if it does not exist"""
        with self._lock:
            if report_id not in self._reports:
                return False
            self._unschedule(report_id)
            del self._reports[report_id]
            self._save_reports()

        logger.info(f"Deleted scheduled report {report_id}")
        return True

    # ==================== Timers ====================

    def _schedule(self, report: ScheduledReportConfig) -> Optional[datetime]:
        """Arm the next one-shot job for a report, replacing any existing one"""
        self._unschedule(report.id)

        next_run = next_fire_time(report.schedule_config, self.clock())
        if next_run is None:
            logger.error(f"Invalid schedule configuration for report {report.id}")
            return None

        self._scheduler.add_job(
            self._run_scheduled,
            trigger=DateTrigger(run_date=next_run),
            id=report.id,
            name=report.name,
            args=[report.id],
            replace_existing=True,
        )
        self._next_runs[report.id] = next_run
        logger.info(f"Scheduled report {report.id} to run at {next_run.isoformat()}")
        return next_run

    def _unschedule(self, report_id: str) -> None:
        had_timer = self._next_runs.pop(report_id, None) is not None
        try:
            self._scheduler.remove_job(report_id)
        except JobLookupError:
            pass
        else:
            had_timer = True
        if had_timer:
            logger.info(f"Unscheduled report {report_id}")

    def _run_scheduled(self, report_id: str) -> None:
        """Job callback: run the report, then arm its next occurrence"""
        with self._lock:
            self._next_runs.pop(report_id, None)
            report = self._reports.get(report_id)
            generation = self._stop_generation

        if report is None or not report.enabled:
            logger.info(f"Skipping run for removed or disabled report {report_id}")
            return

        self.run_report(report)

        with self._lock:
            if self._stop_generation != generation:
                logger.info(f"Not re-arming report {report_id}: timers were stopped during the run")
                return
            current = self._reports.get(report_id)
            if current is not None and current.enabled:
                self._schedule(current)

    def get_next_run_time(self, report_id: str) -> Optional[datetime]:
        with self._lock:
            return self._next_runs.get(report_id)

    def get_schedule_state(self, report_id: str) -> Optional[ScheduleState]:
        with self._lock:
            if report_id not in self._reports:
                return None
            if report_id in self._running:
                return ScheduleState.RUNNING
            if report_id in self._next_runs:
                return ScheduleState.SCHEDULED
            return ScheduleState.UNSCHEDULED

    # ==================== Execution ====================

    def run_report(self, report: ScheduledReportConfig) -> ReportRunResult:
        """
        Generate and deliver a report immediately.

        Failures are recorded in the returned result and in run history; this
        method does not raise.
        """
        logger.info(f"Running report {report.id}: {report.name}")
        run_id = f"run-{uuid.uuid4()}"
        timestamp = self.clock()
        delivery_config = report.delivery_config

        with self._lock:
            self._running.add(report.id)
        try:
            report_data = self.report_generator.generate_report(report.report_config)
            delivery = self.email_delivery.send_report(
                report_data,
                delivery_config.recipients,
                cc_recipients=delivery_config.cc_recipients,
                bcc_recipients=delivery_config.bcc_recipients,
                include_html=delivery_config.include_html,
                include_text=delivery_config.include_text,
                custom_subject=delivery_config.custom_subject,
                custom_message=delivery_config.custom_message,
            )
            result = ReportRunResult(
                id=run_id,
                scheduled_report_id=report.id,
                timestamp=timestamp,
                report=report_data,
                delivery=RunDelivery(
                    success=delivery.success,
                    recipients=[r.email for r in delivery_config.recipients],
                    error=delivery.error,
                ),
            )
        except Exception as e:
            logger.error(f"Failed to run report {report.id}: {e}", exc_info=True)
            result = ReportRunResult(
                id=run_id,
                scheduled_report_id=report.id,
                timestamp=timestamp,
                report=ReportData(
                    id="",
                    title=report.name,
                    description=report.description,
                    generated_at=timestamp,
                ),
                delivery=RunDelivery(success=False, recipients=[], error=str(e)),
            )
        finally:
            with self._lock:
                self._running.discard(report.id)

        self._record(result)

        context = {"report_id": report.id, "run_id": run_id}
        if result.delivery.success:
            logger.info(f"Report {report.id} completed successfully", extra=context)
        else:
            logger.warning(f"Report {report.id} failed: {result.delivery.error}", extra=context)
        return result

    def _record(self, result: ReportRunResult) -> None:
        with self._lock:
            self._history.record(result)
            current = self._reports.get(result.scheduled_report_id)
            # The configuration may have been deleted while the run was in flight
            if current is not None:
                self._reports[current.id] = current.model_copy(update={
                    "last_run": LastRun(
                        timestamp=result.timestamp,
                        success=result.delivery.success,
                        error=result.delivery.error,
                    )
                })
                self._save_reports()
            self._save_history()

    def get_run_history(self) -> List[ReportRunResult]:
        with self._lock:
            return self._history.items()

    # ==================== Bulk Control ====================

    def start_all(self) -> StartResult:
        """Check the services and schedule every enabled report"""
        self.stop_all()

        try:
            if not self.report_generator.test_connection():
                return StartResult(
                    success=False,
                    message="Cannot connect to Jira service. Please check your configuration.",
                )
            if not self.email_delivery.is_configured():
                return StartResult(
                    success=False,
                    message="Email delivery service is not properly configured. Please check your email settings.",
                )

            if not self._scheduler.running:
                self._scheduler.start()

            with self._lock:
                scheduled = [r for r in self._reports.values() if r.enabled and self._schedule(r)]
        except Exception as e:
            logger.error(f"Error starting scheduled reports: {e}", exc_info=True)
            return StartResult(success=False, message=f"Error starting scheduled reports: {e}")

        if not scheduled:
            return StartResult(success=True, message="No reports are currently enabled for scheduling.")

        logger.info(f"Report scheduler started with {len(scheduled)} report(s)")
        return StartResult(success=True, message=f"{len(scheduled)} report(s) scheduled successfully.")

    def stop_all(self) -> None:
        """Remove every pending timer"""
        with self._lock:
            self._stop_generation += 1
            report_ids = set(self._next_runs) | {job.id for job in self._scheduler.get_jobs()}
            for report_id in report_ids:
                self._unschedule(report_id)

    def shutdown(self) -> None:
        """Stop all timers and the scheduler thread"""
        self.stop_all()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Report scheduler stopped")

    # ==================== Defaults ====================

    def create_default_ceo_report(
        self, ceo_email: str, ceo_name: str, pm_email: str, pm_name: str
    ) -> ScheduledReportResult:
        """Create a weekday 08:00 daily status report for the CEO, copying the PM"""
        report_config = ReportConfig(
            title="Daily CEO Report",
            description="Daily summary of project status and tasks",
            jql_queries=[
                JqlQuery(name="Critical Issues", query="priority = Highest AND resolution = Unresolved", limit=10),
                JqlQuery(name="Recent Updates", query="updated >= -1d", limit=20),
                JqlQuery(name="Approaching Deadlines", query="duedate >= now() AND duedate <= 7d", limit=15),
                JqlQuery(name="Recently Completed", query="status = Done AND updated >= -1d", limit=10),
            ],
            include_metrics=True,
            include_charts=True,
            include_summary=True,
        )
        schedule_config = ReportScheduleConfig(
            enabled=True,
            frequency=ReportFrequency.DAILY,
            time="08:00",
            days=["1", "2", "3", "4", "5"],  # Monday to Friday
            timezone=self.default_timezone,
        )
        delivery_config = ReportDeliveryConfig(
            recipients=[EmailRecipient(id=_recipient_id(), email=ceo_email, name=ceo_name, role="CEO")],
            cc_recipients=[EmailRecipient(id=_recipient_id(), email=pm_email, name=pm_name, role="Project Manager")],
            include_html=True,
            include_text=True,
            custom_subject="Daily CEO Report - [DATE]",
            custom_message="Please find attached the daily project status report.",
        )

        return self.add_scheduled_report(ScheduledReportCreate(
            name="Daily CEO Report",
            description="Automated daily report of project status for the CEO",
            report_config=report_config,
            schedule_config=schedule_config,
            delivery_config=delivery_config,
            enabled=True,
        ))


def _recipient_id() -> str:
    return f"recipient-{uuid.uuid4().hex[:12]}"


def _mirror_enabled(report: ScheduledReportConfig, from_top_level: bool) -> ScheduledReportConfig:
    """Keep the top-level enabled flag and schedule_config.enabled in step"""
    if from_top_level:
        schedule = report.schedule_config.model_copy(update={"enabled": report.enabled})
        return report.model_copy(update={"schedule_config": schedule})
    return report.model_copy(update={"enabled": report.schedule_config.enabled})


def _reject_invalid_schedule(report: ScheduledReportConfig) -> Optional[ScheduledReportResult]:
    valid, message = validate_schedule(report.schedule_config)
    if valid:
        return None
    logger.warning(f"Rejected schedule for report '{report.name}': {message}")
    return ScheduledReportResult(success=False, message=message)


def create_report_scheduler_service(
    settings: Optional[Settings] = None,
    store: Optional[ReportStore] = None,
    verify_connection: bool = True,
) -> ReportSchedulerService:
    """
    Wire the report pipeline from application settings.

    Raises:
        SchedulerInitializationError: if the Jira connection cannot be established
    """
    settings = settings or get_settings()

    jira_client = JiraClient(
        settings.jira_domain,
        settings.jira_email,
        settings.jira_api_token,
        timeout=settings.http_timeout_seconds,
    )
    report_generator = ReportGenerator(jira_client, base_url=settings.jira_domain)
    if verify_connection and not report_generator.test_connection():
        raise SchedulerInitializationError(
            "Failed to create report generator service: cannot connect to Jira"
        )

    if store is None:
        from jira_reports.database import SessionLocal
        store = SqlReportStore(SessionLocal)

    return ReportSchedulerService(
        report_generator,
        create_email_delivery_service(settings),
        store=store,
        history_limit=settings.run_history_limit,
        default_timezone=settings.default_timezone,
    )
