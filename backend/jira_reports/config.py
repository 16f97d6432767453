from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite:///./jira_reports.db"

    # Application
    app_name: str = "Jira Report Automation"
    debug: bool = False
    log_level: str = "INFO"

    # Logging
    log_dir: str = ""  # Empty disables file logging
    log_json: bool = False  # Enable JSON logging for production
    enable_request_logging: bool = True

    # CORS (comma-separated origins)
    cors_origins: str = ""

    # Jira
    jira_domain: str = ""  # e.g. https://your-team.atlassian.net
    jira_email: str = ""
    jira_api_token: str = ""

    # Email delivery
    email_service: str = "smtp"  # smtp, sendgrid, mailgun or gmail
    email_api_key: str = ""
    email_domain: str = ""  # Mailgun sending domain
    email_smtp_host: str = ""
    email_smtp_port: Optional[int] = None
    email_smtp_secure: bool = False  # True = implicit TLS (SMTPS), False = STARTTLS
    email_username: str = ""
    email_password: str = ""
    email_from_address: str = "noreply@example.com"
    email_from_name: str = "Project Management App"

    # Scheduler
    scheduler_autostart: bool = True
    run_history_limit: int = 50
    default_timezone: str = "UTC"

    # Outbound HTTP (Jira, SendGrid, Mailgun). None means no timeout.
    http_timeout_seconds: Optional[float] = None

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(',') if origin.strip()]

    @field_validator('email_service')
    @classmethod
    def normalize_email_service(cls, v):
        return v.strip().lower()

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    return Settings()
