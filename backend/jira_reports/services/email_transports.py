"""
Email transports used for report delivery.

Supported backends:
- SMTP (STARTTLS or implicit TLS)
- Gmail (SMTP relay with an app password)
- SendGrid v3 API
- Mailgun v3 API

Every transport accepts a fully rendered EmailPayload. send() raises on
failure; callers convert exceptions into delivery results.
"""
import base64
import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import List, Optional, Union

import httpx

from jira_reports.schemas.report_schemas import DeliveryResult, EmailRecipient

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"
MAILGUN_URL = "https://api.mailgun.net/v3/{domain}/messages"
GMAIL_SMTP_HOST = "smtp.gmail.com"
GMAIL_SMTP_PORT = 587


@dataclass
class EmailAttachment:
    filename: str
    content: Union[bytes, str]
    content_type: str = "application/octet-stream"

    def as_bytes(self) -> bytes:
        if isinstance(self.content, str):
            return self.content.encode("utf-8")
        return self.content


@dataclass
class EmailPayload:
    """A fully rendered message ready for a transport"""
    to: List[EmailRecipient]
    subject: str
    text: str = ""
    html: str = ""
    cc: List[EmailRecipient] = field(default_factory=list)
    bcc: List[EmailRecipient] = field(default_factory=list)
    attachments: List[EmailAttachment] = field(default_factory=list)


@dataclass
class EmailConfig:
    """Email delivery configuration container"""
    service: str = "smtp"
    api_key: Optional[str] = None
    domain: Optional[str] = None  # Mailgun
    smtp_host: Optional[str] = None
    smtp_port: Optional[int] = None
    smtp_secure: bool = False
    username: Optional[str] = None
    password: Optional[str] = None
    from_email: str = ""
    from_name: str = ""
    timeout: Optional[float] = None

    @classmethod
    def from_settings(cls, settings) -> "EmailConfig":
        return cls(
            service=settings.email_service,
            api_key=settings.email_api_key or None,
            domain=settings.email_domain or None,
            smtp_host=settings.email_smtp_host or None,
            smtp_port=settings.email_smtp_port,
            smtp_secure=settings.email_smtp_secure,
            username=settings.email_username or None,
            password=settings.email_password or None,
            from_email=settings.email_from_address,
            from_name=settings.email_from_name,
            timeout=settings.http_timeout_seconds,
        )


def _address(recipient: EmailRecipient) -> str:
    return formataddr((recipient.name, recipient.email)) if recipient.name else recipient.email


def _now() -> datetime:
    return datetime.now(timezone.utc)


class EmailTransport(ABC):
    """Common contract of all delivery backends"""

    name = "base"

    def __init__(self, config: EmailConfig):
        self.config = config

    @property
    def sender(self) -> str:
        if self.config.from_name:
            return formataddr((self.config.from_name, self.config.from_email))
        return self.config.from_email

    @abstractmethod
    def is_configured(self) -> bool:
        """Check the minimum settings needed before any network attempt"""

    @abstractmethod
    def send(self, payload: EmailPayload) -> DeliveryResult:
        """Deliver the payload, raising on failure"""


class SMTPTransport(EmailTransport):
    name = "smtp"

    @property
    def host(self) -> Optional[str]:
        return self.config.smtp_host

    @property
    def port(self) -> Optional[int]:
        return self.config.smtp_port

    def is_configured(self) -> bool:
        return bool(
            self.host and self.port and self.config.username and
            self.config.password and self.config.from_email
        )

    def build_message(self, payload: EmailPayload) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = payload.subject
        msg["From"] = self.sender
        msg["To"] = ", ".join(_address(r) for r in payload.to)
        if payload.cc:
            msg["Cc"] = ", ".join(_address(r) for r in payload.cc)
        msg["Date"] = _now().strftime("%a, %d %b %Y %H:%M:%S +0000")
        msg["Message-ID"] = make_msgid(domain=self.config.from_email.split("@")[-1] or None)

        msg.set_content(payload.text or "")
        if payload.html:
            msg.add_alternative(payload.html, subtype="html")

        for attachment in payload.attachments:
            maintype, _, subtype = attachment.content_type.partition("/")
            msg.add_attachment(
                attachment.as_bytes(),
                maintype=maintype or "application",
                subtype=subtype or "octet-stream",
                filename=attachment.filename,
            )
        return msg

    def send(self, payload: EmailPayload) -> DeliveryResult:
        msg = self.build_message(payload)
        recipients = [r.email for r in payload.to + payload.cc + payload.bcc]

        smtp_class = smtplib.SMTP_SSL if self.config.smtp_secure else smtplib.SMTP
        kwargs = {"timeout": self.config.timeout} if self.config.timeout else {}
        with smtp_class(self.host, self.port, **kwargs) as server:
            if not self.config.smtp_secure:
                server.starttls()
            if self.config.username and self.config.password:
                server.login(self.config.username, self.config.password)
            server.send_message(msg, from_addr=self.config.from_email, to_addrs=recipients)

        logger.info(f"Sent email via {self.name} to {len(recipients)} recipient(s)")
        return DeliveryResult(success=True, message_id=msg["Message-ID"], timestamp=_now())


class GmailTransport(SMTPTransport):
    """Gmail's SMTP relay; the password is an app password"""

    name = "gmail"

    @property
    def host(self) -> Optional[str]:
        return self.config.smtp_host or GMAIL_SMTP_HOST

    @property
    def port(self) -> Optional[int]:
        return self.config.smtp_port or GMAIL_SMTP_PORT

    def is_configured(self) -> bool:
        return bool(self.config.username and self.config.password and self.config.from_email)


class SendGridTransport(EmailTransport):
    name = "sendgrid"

    def is_configured(self) -> bool:
        return bool(self.config.api_key and self.config.from_email)

    def build_request(self, payload: EmailPayload) -> dict:
        def people(recipients: List[EmailRecipient]) -> List[dict]:
            return [
                {"email": r.email, "name": r.name} if r.name else {"email": r.email}
                for r in recipients
            ]

        personalization = {"to": people(payload.to), "subject": payload.subject}
        if payload.cc:
            personalization["cc"] = people(payload.cc)
        if payload.bcc:
            personalization["bcc"] = people(payload.bcc)

        content = []
        if payload.text:
            content.append({"type": "text/plain", "value": payload.text})
        if payload.html:
            content.append({"type": "text/html", "value": payload.html})

        data = {
            "personalizations": [personalization],
            "from": {"email": self.config.from_email, "name": self.config.from_name},
            "subject": payload.subject,
            "content": content,
        }
        if payload.attachments:
            data["attachments"] = [
                {
                    "filename": a.filename,
                    "content": base64.b64encode(a.as_bytes()).decode("ascii"),
                    "type": a.content_type,
                    "disposition": "attachment",
                }
                for a in payload.attachments
            ]
        return data

    def send(self, payload: EmailPayload) -> DeliveryResult:
        if not self.config.api_key:
            raise ValueError("SendGrid API key is required")

        response = httpx.post(
            SENDGRID_URL,
            json=self.build_request(payload),
            headers={
                "Authorization": f"Bearer {self.config.api_key}",
                "Content-Type": "application/json",
            },
            timeout=self.config.timeout,
        )
        response.raise_for_status()

        logger.info(f"SendGrid accepted message ({response.status_code})")
        return DeliveryResult(
            success=True,
            message_id=response.headers.get("x-message-id"),
            timestamp=_now(),
        )


class MailgunTransport(EmailTransport):
    name = "mailgun"

    def is_configured(self) -> bool:
        return bool(self.config.api_key and self.config.domain and self.config.from_email)

    def build_form(self, payload: EmailPayload) -> dict:
        data = {
            "from": self.sender,
            "to": [_address(r) for r in payload.to],
            "subject": payload.subject,
        }
        if payload.cc:
            data["cc"] = [_address(r) for r in payload.cc]
        if payload.bcc:
            data["bcc"] = [_address(r) for r in payload.bcc]
        if payload.text:
            data["text"] = payload.text
        if payload.html:
            data["html"] = payload.html
        return data

    def send(self, payload: EmailPayload) -> DeliveryResult:
        if not self.config.api_key or not self.config.domain:
            raise ValueError("Mailgun API key and domain are required")

        files = [
            ("attachment", (a.filename, a.as_bytes(), a.content_type))
            for a in payload.attachments
        ]
        response = httpx.post(
            MAILGUN_URL.format(domain=self.config.domain),
            auth=("api", self.config.api_key),
            data=self.build_form(payload),
            files=files or None,
            timeout=self.config.timeout,
        )
        response.raise_for_status()

        return DeliveryResult(
            success=True,
            message_id=response.json().get("id"),
            timestamp=_now(),
        )


TRANSPORTS = {
    "smtp": SMTPTransport,
    "gmail": GmailTransport,
    "sendgrid": SendGridTransport,
    "mailgun": MailgunTransport,
}


def build_transport(config: EmailConfig) -> EmailTransport:
    """Create the transport for the configured service, defaulting to SMTP"""
    transport_class = TRANSPORTS.get((config.service or "smtp").lower())
    if transport_class is None:
        logger.warning(f"Unknown email service '{config.service}', falling back to SMTP")
        transport_class = SMTPTransport
    return transport_class(config)
