"""
Report generation from Jira JQL queries.

Features:
- One report section per configured JQL query
- Aggregate metrics (status, assignee, priority, overdue, today's activity)
- Plain-text executive summary
- HTML and plain-text renderings of a generated report
"""

import logging
import uuid
from collections import Counter
from datetime import datetime, timezone
from html import escape
from typing import Any, Callable, Dict, List, Optional, Protocol

from jira_reports.schemas.report_schemas import (
    IssueSummary,
    ReportConfig,
    ReportData,
    ReportMetrics,
    ReportSection,
)

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({"Done", "Completed"})
UNASSIGNED = "Unassigned"


class IssueTracker(Protocol):
    def test_connection(self) -> bool: ...

    def search(self, query: str, limit: int) -> List[Dict[str, Any]]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _date_prefix(value: Optional[str]) -> Optional[str]:
    return value[:10] if value else None


JIRA_TIMESTAMP_FORMATS = ("%Y-%m-%dT%H:%M:%S.%f%z", "%Y-%m-%dT%H:%M:%S%z")


def _utc_date(value: Optional[str]) -> Optional[str]:
    """UTC calendar date of a Jira timestamp such as 2024-03-04T20:00:00.000-0700"""
    if not value:
        return None
    for fmt in JIRA_TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(value, fmt).astimezone(timezone.utc).date().isoformat()
        except ValueError:
            continue
    # Date-only or offset-less values
    return value[:10]


class ReportGenerator:
    """Builds report documents from issue tracker searches"""

    def __init__(
        self,
        tracker: IssueTracker,
        base_url: str = "",
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.tracker = tracker
        self.base_url = base_url.rstrip("/")
        self.clock = clock

    def test_connection(self) -> bool:
        try:
            return bool(self.tracker.test_connection())
        except Exception as e:
            logger.error(f"Issue tracker connection check failed: {e}")
            return False

    def generate_report(self, config: ReportConfig) -> ReportData:
        """Run every query in the configuration and assemble the report"""
        now = self.clock()

        sections = [
            ReportSection(name=query.name, issues=self._search_section(query.name, query.query, query.limit))
            for query in config.jql_queries
        ]

        metrics = compute_metrics(sections, now)

        report = ReportData(
            id=f"report-{uuid.uuid4()}",
            title=config.title,
            description=config.description,
            generated_at=now,
            sections=sections,
            metrics=metrics if config.include_metrics else None,
            summary=build_summary(config.title, sections, metrics, now) if config.include_summary else None,
        )

        logger.info(
            f"Generated report '{config.title}' with {len(sections)} sections "
            f"and {metrics.total_issues} issues",
            extra={"report_id": report.id},
        )
        return report

    def _search_section(self, name: str, query: str, limit: int) -> List[IssueSummary]:
        try:
            raw_issues = self.tracker.search(query, limit)
        except Exception as e:
            # A partial report is preferred over no report
            logger.error(f"Search for section '{name}' failed, reporting it as empty: {e}")
            return []
        return [self._project_issue(issue) for issue in raw_issues]

    def _project_issue(self, issue: Dict[str, Any]) -> IssueSummary:
        fields = issue.get("fields") or {}
        key = issue.get("key", "")
        return IssueSummary(
            key=key,
            summary=fields.get("summary") or "",
            status=(fields.get("status") or {}).get("name") or "Unknown",
            assignee=(fields.get("assignee") or {}).get("displayName") or None,
            priority=(fields.get("priority") or {}).get("name") or "Unknown",
            created=fields.get("created"),
            updated=fields.get("updated"),
            due_date=fields.get("duedate") or None,
            labels=list(fields.get("labels") or []),
            link=f"{self.base_url}/browse/{key}",
        )


def compute_metrics(sections: List[ReportSection], now: datetime) -> ReportMetrics:
    """Aggregate counts over the issues of all sections"""
    issues = [issue for section in sections for issue in section.issues]
    today = now.astimezone(timezone.utc).date().isoformat()

    overdue = 0
    for issue in issues:
        if not issue.due_date or issue.status in TERMINAL_STATUSES:
            continue
        try:
            due = datetime.fromisoformat(issue.due_date[:10]).replace(tzinfo=timezone.utc)
        except ValueError:
            logger.warning(f"Ignoring unparseable due date '{issue.due_date}' on {issue.key}")
            continue
        if due < now:
            overdue += 1

    return ReportMetrics(
        total_issues=len(issues),
        issues_by_status=dict(Counter(issue.status for issue in issues)),
        issues_by_assignee=dict(Counter(issue.assignee or UNASSIGNED for issue in issues)),
        issues_by_priority=dict(Counter(issue.priority for issue in issues)),
        overdue_tasks=overdue,
        completed_today=sum(
            1 for issue in issues
            if issue.status in TERMINAL_STATUSES and _utc_date(issue.updated) == today
        ),
        created_today=sum(1 for issue in issues if _utc_date(issue.created) == today),
    )


def build_summary(title: str, sections: List[ReportSection], metrics: ReportMetrics, now: datetime) -> str:
    status_counts = ", ".join(f"{status}: {count}" for status, count in metrics.issues_by_status.items())
    lines = [
        f"{title} Summary ({now.date().isoformat()})",
        "",
        f"Total Issues: {metrics.total_issues}",
        f"Status Breakdown: {status_counts}",
        f"Overdue Tasks: {metrics.overdue_tasks}",
        f"Completed Today: {metrics.completed_today}",
        f"Created Today: {metrics.created_today}",
        "",
        "Key Sections:",
    ]
    lines.extend(f"- {section.name}: {len(section.issues)} issues" for section in sections)
    return "\n".join(lines)


# ==================== Rendering ====================

HTML_STYLE = """
    body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 1000px; margin: 0 auto; padding: 20px; }
    h1, h2, h3 { color: #1a73e8; }
    .report-header { margin-bottom: 30px; border-bottom: 1px solid #eee; padding-bottom: 20px; }
    .report-section { margin-bottom: 30px; }
    .report-table { width: 100%; border-collapse: collapse; margin-bottom: 20px; }
    .report-table th, .report-table td { border: 1px solid #ddd; padding: 8px 12px; text-align: left; }
    .report-table th { background-color: #f2f2f2; }
    .metrics-container { display: flex; flex-wrap: wrap; gap: 20px; margin-bottom: 30px; }
    .metric-card { flex: 1; min-width: 200px; border: 1px solid #ddd; border-radius: 4px; padding: 15px; background-color: #f9f9f9; }
    .metric-value { font-size: 24px; font-weight: bold; color: #1a73e8; }
    .metric-label { font-size: 14px; color: #666; }
    .summary-box { background-color: #f0f7ff; border-left: 4px solid #1a73e8; padding: 15px; margin-bottom: 30px; }
    .priority-high { color: #d50000; font-weight: bold; }
    .priority-medium { color: #ff6d00; }
    .priority-low { color: #2e7d32; }
    .status-done { color: #2e7d32; }
    .status-progress { color: #1976d2; }
    .status-todo { color: #616161; }
    .footer { margin-top: 40px; font-size: 12px; color: #666; text-align: center; }
"""

FOOTER_TEXT = "This report was automatically generated from Jira data."


def _status_class(status: str) -> str:
    lowered = status.lower()
    if "done" in lowered:
        return "status-done"
    if "progress" in lowered:
        return "status-progress"
    return "status-todo"


def _priority_class(priority: str) -> str:
    lowered = priority.lower()
    if "high" in lowered:
        return "priority-high"
    if "medium" in lowered:
        return "priority-medium"
    return "priority-low"


def _format_timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S %Z").strip()


def _count_table(heading: str, column: str, counts: Dict[str, int]) -> str:
    rows = "".join(
        f"<tr><td>{escape(name)}</td><td>{count}</td></tr>" for name, count in counts.items()
    )
    return (
        f"<h3>{heading}</h3>"
        f'<table class="report-table"><tr><th>{column}</th><th>Count</th></tr>{rows}</table>'
    )


def render_html(report: ReportData) -> str:
    """Render a report as a standalone HTML document"""
    parts = [
        "<!DOCTYPE html>",
        '<html><head><meta charset="UTF-8">',
        '<meta name="viewport" content="width=device-width, initial-scale=1.0">',
        f"<title>{escape(report.title)}</title>",
        f"<style>{HTML_STYLE}</style></head><body>",
        '<div class="report-header">',
        f"<h1>{escape(report.title)}</h1>",
        f"<p>{escape(report.description)}</p>",
        f"<p><em>Generated on {_format_timestamp(report.generated_at)}</em></p>",
        "</div>",
    ]

    if report.summary:
        parts.append(
            '<div class="summary-box"><h2>Executive Summary</h2>'
            f"<pre>{escape(report.summary)}</pre></div>"
        )

    if report.metrics:
        m = report.metrics
        cards = [
            (m.total_issues, "Total Issues"),
            (m.overdue_tasks, "Overdue Tasks"),
            (m.completed_today, "Completed Today"),
            (m.created_today, "Created Today"),
        ]
        parts.append("<h2>Key Metrics</h2>")
        parts.append('<div class="metrics-container">')
        parts.extend(
            f'<div class="metric-card"><div class="metric-value">{value}</div>'
            f'<div class="metric-label">{label}</div></div>'
            for value, label in cards
        )
        parts.append("</div>")
        parts.append(_count_table("Issues by Status", "Status", m.issues_by_status))
        parts.append(_count_table("Issues by Priority", "Priority", m.issues_by_priority))
        parts.append(_count_table("Issues by Assignee", "Assignee", m.issues_by_assignee))

    for section in report.sections:
        parts.append(f'<div class="report-section"><h2>{escape(section.name)}</h2>')
        if not section.issues:
            parts.append("<p>No issues found in this section.</p></div>")
            continue
        parts.append(
            '<table class="report-table"><tr><th>Key</th><th>Summary</th><th>Status</th>'
            "<th>Assignee</th><th>Priority</th><th>Due Date</th></tr>"
        )
        for issue in section.issues:
            parts.append(
                "<tr>"
                f'<td><a href="{escape(issue.link)}" target="_blank">{escape(issue.key)}</a></td>'
                f"<td>{escape(issue.summary)}</td>"
                f'<td class="{_status_class(issue.status)}">{escape(issue.status)}</td>'
                f"<td>{escape(issue.assignee or UNASSIGNED)}</td>"
                f'<td class="{_priority_class(issue.priority)}">{escape(issue.priority)}</td>'
                f"<td>{escape(_date_prefix(issue.due_date) or 'No due date')}</td>"
                "</tr>"
            )
        parts.append("</table></div>")

    parts.append(f'<div class="footer"><p>{FOOTER_TEXT}</p></div>')
    parts.append("</body></html>")
    return "\n".join(parts)


def render_text(report: ReportData) -> str:
    """Render a report as plain text"""
    lines = [
        report.title.upper(),
        "=" * len(report.title),
        "",
        report.description,
        f"Generated on: {_format_timestamp(report.generated_at)}",
        "",
    ]

    if report.summary:
        lines += ["EXECUTIVE SUMMARY", "-" * 17, report.summary, ""]

    if report.metrics:
        m = report.metrics
        lines += [
            "KEY METRICS",
            "-" * 11,
            f"Total Issues: {m.total_issues}",
            f"Overdue Tasks: {m.overdue_tasks}",
            f"Completed Today: {m.completed_today}",
            f"Created Today: {m.created_today}",
            "",
            "Issues by Status:",
        ]
        lines += [f"  {status}: {count}" for status, count in m.issues_by_status.items()]
        lines += ["", "Issues by Priority:"]
        lines += [f"  {priority}: {count}" for priority, count in m.issues_by_priority.items()]
        lines.append("")

    for section in report.sections:
        lines += [section.name.upper(), "-" * len(section.name)]
        if not section.issues:
            lines += ["No issues found in this section.", ""]
            continue
        for issue in section.issues:
            lines += [
                f"{issue.key}: {issue.summary}",
                f"  Status: {issue.status}",
                f"  Assignee: {issue.assignee or UNASSIGNED}",
                f"  Priority: {issue.priority}",
            ]
            if issue.due_date:
                lines.append(f"  Due Date: {_date_prefix(issue.due_date)}")
            lines += [f"  Link: {issue.link}", ""]

    lines += ["", FOOTER_TEXT]
    return "\n".join(lines) + "\n"
