"""
Scheduled Reports API routes.

Endpoints:
- GET /scheduled-reports - List scheduled reports
- POST /scheduled-reports - Create scheduled report
- GET /scheduled-reports/history - Run history, most recent first
- POST /scheduled-reports/start - Check services and arm every enabled report
- POST /scheduled-reports/stop - Disarm every report
- POST /scheduled-reports/default-ceo-report - Create the canned CEO report
- POST /scheduled-reports/email/test - Send a test email
- GET /scheduled-reports/{id} - Get report details with schedule state
- PATCH /scheduled-reports/{id} - Partially update a report
- DELETE /scheduled-reports/{id} - Delete a report
- POST /scheduled-reports/{id}/run - Run immediately
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Request, Response, status

from jira_reports.error_handlers import InvalidScheduleError, ReportNotFoundError, ServiceUnavailableError
from jira_reports.schemas.report_schemas import (
    CamelModel,
    DefaultCEOReportRequest,
    ReportRunResult,
    ScheduledReportConfig,
    ScheduledReportCreate,
    ScheduledReportResult,
    ScheduledReportUpdate,
    StartResult,
)
from jira_reports.services.report_scheduler import ReportSchedulerService, ScheduleState

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scheduled-reports", tags=["Scheduled Reports"])


# ==================== Schemas ====================

class ScheduledReportDetail(ScheduledReportConfig):
    next_run_time: Optional[datetime] = None
    state: ScheduleState = ScheduleState.UNSCHEDULED


class EmailTestResponse(CamelModel):
    success: bool
    service: str


# ==================== Dependencies ====================

def get_scheduler_service(request: Request) -> ReportSchedulerService:
    """Scheduler service created at startup; unavailable if Jira could not be reached"""
    service = getattr(request.app.state, "scheduler_service", None)
    if service is None:
        raise ServiceUnavailableError("Report scheduler is not initialized")
    return service


def _get_or_404(service: ReportSchedulerService, report_id: str) -> ScheduledReportConfig:
    report = service.get_scheduled_report(report_id)
    if report is None:
        raise ReportNotFoundError(report_id)
    return report


def _detail(service: ReportSchedulerService, report: ScheduledReportConfig) -> ScheduledReportDetail:
    return ScheduledReportDetail(
        **report.model_dump(),
        next_run_time=service.get_next_run_time(report.id),
        state=service.get_schedule_state(report.id) or ScheduleState.UNSCHEDULED,
    )


def _accepted(service: ReportSchedulerService, result: ScheduledReportResult) -> ScheduledReportDetail:
    """Detail view of an accepted change; a rejected schedule becomes a 422"""
    if not result.success:
        raise InvalidScheduleError(result.message or "Invalid schedule configuration")
    return _detail(service, result.report)


# ==================== Routes ====================

@router.get(
    "",
    response_model=List[ScheduledReportConfig],
    status_code=status.HTTP_200_OK,
    summary="List scheduled reports"
)
async def list_scheduled_reports(
    service: ReportSchedulerService = Depends(get_scheduler_service),
):
    return service.get_scheduled_reports()


@router.post(
    "",
    response_model=ScheduledReportDetail,
    status_code=status.HTTP_201_CREATED,
    summary="Create scheduled report"
)
async def create_scheduled_report(
    request: ScheduledReportCreate,
    service: ReportSchedulerService = Depends(get_scheduler_service),
):
    """
    Create a new scheduled report.

    **Frequency options:**
    - daily: Runs every day at `time`
    - weekly: Runs on the listed weekdays (0=Sunday ... 6=Saturday)
    - monthly: Runs on the listed days of the month (1-31)

    An enabled report is armed immediately. A schedule that cannot produce run
    times is rejected with 422 INVALID_SCHEDULE.
    """
    return _accepted(service, service.add_scheduled_report(request))


@router.get(
    "/history",
    response_model=List[ReportRunResult],
    status_code=status.HTTP_200_OK,
    summary="Get run history"
)
async def get_run_history(
    service: ReportSchedulerService = Depends(get_scheduler_service),
):
    """Most recent runs first, bounded by the configured history limit."""
    return service.get_run_history()


@router.post(
    "/start",
    response_model=StartResult,
    status_code=status.HTTP_200_OK,
    summary="Start all scheduled reports"
)
def start_scheduled_reports(
    service: ReportSchedulerService = Depends(get_scheduler_service),
):
    """Verify Jira and email settings, then arm every enabled report."""
    return service.start_all()


@router.post(
    "/stop",
    response_model=StartResult,
    status_code=status.HTTP_200_OK,
    summary="Stop all scheduled reports"
)
async def stop_scheduled_reports(
    service: ReportSchedulerService = Depends(get_scheduler_service),
):
    service.stop_all()
    return StartResult(success=True, message="All scheduled reports stopped.")


@router.post(
    "/default-ceo-report",
    response_model=ScheduledReportDetail,
    status_code=status.HTTP_201_CREATED,
    summary="Create default CEO report"
)
async def create_default_ceo_report(
    request: DefaultCEOReportRequest,
    service: ReportSchedulerService = Depends(get_scheduler_service),
):
    result = service.create_default_ceo_report(
        ceo_email=request.ceo_email,
        ceo_name=request.ceo_name,
        pm_email=request.pm_email,
        pm_name=request.pm_name,
    )
    return _accepted(service, result)


@router.post(
    "/email/test",
    response_model=EmailTestResponse,
    status_code=status.HTTP_200_OK,
    summary="Send a test email"
)
def test_email_connection(
    service: ReportSchedulerService = Depends(get_scheduler_service),
):
    """Send a test message to the configured sender address."""
    delivery = service.email_delivery
    return EmailTestResponse(success=delivery.test_connection(), service=delivery.config.service)


@router.get(
    "/{report_id}",
    response_model=ScheduledReportDetail,
    status_code=status.HTTP_200_OK,
    summary="Get scheduled report details"
)
async def get_scheduled_report(
    report_id: str,
    service: ReportSchedulerService = Depends(get_scheduler_service),
):
    return _detail(service, _get_or_404(service, report_id))


@router.patch(
    "/{report_id}",
    response_model=ScheduledReportDetail,
    status_code=status.HTTP_200_OK,
    summary="Update scheduled report"
)
async def update_scheduled_report(
    report_id: str,
    request: ScheduledReportUpdate,
    service: ReportSchedulerService = Depends(get_scheduler_service),
):
    """Merge the supplied fields into the report and reschedule it."""
    result = service.update_scheduled_report(report_id, request.model_dump(exclude_unset=True))
    if result is None:
        raise ReportNotFoundError(report_id)
    return _accepted(service, result)


@router.delete(
    "/{report_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete scheduled report"
)
async def delete_scheduled_report(
    report_id: str,
    service: ReportSchedulerService = Depends(get_scheduler_service),
):
    if not service.delete_scheduled_report(report_id):
        raise ReportNotFoundError(report_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{report_id}/run",
    response_model=ReportRunResult,
    status_code=status.HTTP_200_OK,
    summary="Run scheduled report now"
)
def run_scheduled_report(
    report_id: str,
    service: ReportSchedulerService = Depends(get_scheduler_service),
):
    """Generate and deliver the report immediately; failures are reported in the result."""
    report = _get_or_404(service, report_id)
    logger.info(f"Manual run requested for report {report_id}")
    return service.run_report(report)
