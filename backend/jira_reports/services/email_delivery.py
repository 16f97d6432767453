"""
Email delivery for generated reports.

Renders a report into subject/text/html content and hands it to the
configured transport. Every outcome, including transport exceptions, is
returned as a DeliveryResult.
"""

import logging
from datetime import datetime, timezone
from html import escape
from typing import Callable, List, Optional

from jira_reports.schemas.report_schemas import DeliveryResult, EmailRecipient, ReportData
from jira_reports.services.email_transports import (
    TRANSPORTS,
    EmailAttachment,
    EmailConfig,
    EmailPayload,
    EmailTransport,
    build_transport,
)
from jira_reports.services.report_generator import render_html, render_text

logger = logging.getLogger(__name__)

DATE_PLACEHOLDER = "[DATE]"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EmailDeliveryService:
    """Delivery gateway in front of a single email transport"""

    def __init__(
        self,
        config: EmailConfig,
        transport: Optional[EmailTransport] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.config = config
        self.transport = transport or build_transport(config)
        self.clock = clock

    def is_configured(self) -> bool:
        """Check that the selected transport has its required settings"""
        if self.config.service not in TRANSPORTS:
            return False
        return self.transport.is_configured()

    def test_connection(self) -> bool:
        """
        Send a test message to the configured sender address.

        There is no lightweight handshake: a successful test delivers a real email.
        """
        result = self.send_email(EmailPayload(
            to=[EmailRecipient(id="test", email=self.config.from_email, name=self.config.from_name, role="tester")],
            subject="Test Email Connection",
            text="This is a test email to verify the connection.",
            html="<p>This is a test email to verify the connection.</p>",
        ))
        return result.success

    def send_email(self, payload: EmailPayload) -> DeliveryResult:
        if not self.is_configured():
            message = f"Email delivery service '{self.config.service}' is not properly configured"
            logger.warning(message)
            return DeliveryResult(success=False, error=message, timestamp=self.clock())
        if not payload.to:
            return DeliveryResult(success=False, error="No recipients provided", timestamp=self.clock())

        try:
            return self.transport.send(payload)
        except Exception as e:
            logger.error(f"Failed to send email via {self.transport.name}: {e}", exc_info=True)
            return DeliveryResult(success=False, error=str(e), timestamp=self.clock())

    def build_subject(self, report: ReportData, custom_subject: Optional[str] = None) -> str:
        today = self.clock().date().isoformat()
        if custom_subject:
            return custom_subject.replace(DATE_PLACEHOLDER, today)
        return f"{report.title} - {today}"

    def send_report(
        self,
        report: ReportData,
        recipients: List[EmailRecipient],
        cc_recipients: Optional[List[EmailRecipient]] = None,
        bcc_recipients: Optional[List[EmailRecipient]] = None,
        include_html: bool = True,
        include_text: bool = True,
        custom_subject: Optional[str] = None,
        custom_message: Optional[str] = None,
        attachments: Optional[List[EmailAttachment]] = None,
    ) -> DeliveryResult:
        """Render a report and deliver it to the given recipients"""
        html_report = render_html(report) if include_html else ""
        text_report = render_text(report) if include_text else ""

        text_parts = [custom_message, "---"] if custom_message else []
        if text_report:
            text_parts.append(text_report)

        html_body = ""
        if html_report:
            html_body = html_report
            if custom_message:
                html_body = html_report.replace(
                    "<body>", f"<body><p>{escape(custom_message)}</p><hr>", 1
                )

        return self.send_email(EmailPayload(
            to=list(recipients),
            cc=list(cc_recipients or []),
            bcc=list(bcc_recipients or []),
            subject=self.build_subject(report, custom_subject),
            text="\n\n".join(text_parts),
            html=html_body,
            attachments=list(attachments or []),
        ))


def create_email_delivery_service(settings) -> EmailDeliveryService:
    """Build the delivery service from application settings"""
    return EmailDeliveryService(EmailConfig.from_settings(settings))
