"""
Pydantic schemas for scheduled reports, generated reports and run results.

Attributes are snake_case in Python; JSON documents use camelCase aliases.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase field names"""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class ReportFrequency(str, Enum):
    """Report frequency options"""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


# ==================== Configuration ====================

class JqlQuery(CamelModel):
    """A named JQL query rendered as one report section"""
    name: str = Field(..., min_length=1)
    query: str = Field(..., min_length=1)
    limit: int = Field(default=50, ge=1)


class ReportConfig(CamelModel):
    title: str
    description: str = ""
    jql_queries: List[JqlQuery] = Field(default_factory=list)
    include_metrics: bool = True
    include_charts: bool = False
    include_summary: bool = True


class ReportScheduleConfig(CamelModel):
    enabled: bool = True
    frequency: ReportFrequency = ReportFrequency.DAILY
    time: str = "08:00"  # HH:MM, 24-hour clock
    days: List[str] = Field(default_factory=list)  # weekday indices (0=Sunday) or days of month
    timezone: str = "UTC"

    @field_validator("days", mode="before")
    @classmethod
    def coerce_days(cls, v):
        if v is None:
            return []
        return [str(day).strip() for day in v]


class EmailRecipient(CamelModel):
    id: str = ""
    email: str = Field(..., min_length=3)
    name: str = ""
    role: str = ""


class ReportDeliveryConfig(CamelModel):
    recipients: List[EmailRecipient] = Field(default_factory=list)
    cc_recipients: Optional[List[EmailRecipient]] = None
    bcc_recipients: Optional[List[EmailRecipient]] = None
    include_html: bool = True
    include_text: bool = True
    custom_subject: Optional[str] = None
    custom_message: Optional[str] = None


class LastRun(CamelModel):
    timestamp: datetime
    success: bool
    error: Optional[str] = None


class ScheduledReportCreate(CamelModel):
    """Scheduled report configuration before an id is assigned"""
    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    report_config: ReportConfig
    schedule_config: ReportScheduleConfig
    delivery_config: ReportDeliveryConfig
    enabled: bool = True


class ScheduledReportConfig(ScheduledReportCreate):
    id: str
    last_run: Optional[LastRun] = None


class ScheduledReportUpdate(CamelModel):
    """Partial update; only fields that were set are merged"""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    report_config: Optional[ReportConfig] = None
    schedule_config: Optional[ReportScheduleConfig] = None
    delivery_config: Optional[ReportDeliveryConfig] = None
    enabled: Optional[bool] = None


class DefaultCEOReportRequest(CamelModel):
    ceo_email: str = Field(..., min_length=3)
    ceo_name: str
    pm_email: str = Field(..., min_length=3)
    pm_name: str


# ==================== Generated reports ====================

class IssueSummary(CamelModel):
    key: str
    summary: str = ""
    status: str = "Unknown"
    assignee: Optional[str] = None
    priority: str = "Unknown"
    created: Optional[str] = None
    updated: Optional[str] = None
    due_date: Optional[str] = None
    labels: List[str] = Field(default_factory=list)
    link: str = ""


class ReportSection(CamelModel):
    name: str
    issues: List[IssueSummary] = Field(default_factory=list)


class ReportMetrics(CamelModel):
    total_issues: int = 0
    issues_by_status: Dict[str, int] = Field(default_factory=dict)
    issues_by_assignee: Dict[str, int] = Field(default_factory=dict)
    issues_by_priority: Dict[str, int] = Field(default_factory=dict)
    overdue_tasks: int = 0
    completed_today: int = 0
    created_today: int = 0


class ReportData(CamelModel):
    id: str
    title: str
    description: str = ""
    generated_at: datetime
    sections: List[ReportSection] = Field(default_factory=list)
    metrics: Optional[ReportMetrics] = None
    summary: Optional[str] = None


# ==================== Delivery and runs ====================

class DeliveryResult(CamelModel):
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime


class RunDelivery(CamelModel):
    success: bool
    recipients: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class ReportRunResult(CamelModel):
    """Historical record of one run; never modified once created"""
    id: str
    scheduled_report_id: str
    timestamp: datetime
    report: ReportData
    delivery: RunDelivery

    class Config:
        frozen = True


class StartResult(CamelModel):
    success: bool
    message: Optional[str] = None


class ScheduledReportResult(CamelModel):
    """Outcome of adding or updating a scheduled report; rejected changes carry a message"""
    success: bool
    message: Optional[str] = None
    report: Optional[ScheduledReportConfig] = None
