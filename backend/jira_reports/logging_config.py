"""
Logging configuration with rotation

Console logging is always on; a log directory adds a rotating application log
and an errors-only log. Records emitted with report_id/run_id extras (the
scheduler does this for every run) carry those ids in both the text and the
JSON output.
"""
import json
import logging
import logging.handlers
import sys
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s%(context)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_LOG_BYTES = 10 * 1024 * 1024  # 10MB
LOG_BACKUPS = 5

CONTEXT_FIELDS = ("report_id", "run_id", "request_id")

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = (
    "uvicorn.access",
    "apscheduler.executors.default",
    "apscheduler.scheduler",
    "httpx",
)

request_logger = logging.getLogger("jira_reports.requests")


class ContextFilter(logging.Filter):
    """Render the report/run/request ids of a record as a trailing [k=v ...] block"""

    def filter(self, record: logging.LogRecord) -> bool:
        pairs = [
            f"{name}={getattr(record, name)}"
            for name in CONTEXT_FIELDS
            if getattr(record, name, None)
        ]
        record.context = f" [{' '.join(pairs)}]" if pairs else ""
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record for log aggregation"""

    EXTRA_FIELDS = CONTEXT_FIELDS + ("duration_ms",)

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for field in self.EXTRA_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        return json.dumps(log_data)


def _configure(handler: logging.Handler, level: int, enable_json: bool) -> logging.Handler:
    handler.setLevel(level)
    handler.addFilter(ContextFilter())
    handler.setFormatter(JSONFormatter() if enable_json else logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    return handler


def _rotating_file(path: Path) -> logging.Handler:
    return logging.handlers.RotatingFileHandler(
        path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8"
    )


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[str] = None,
    app_name: str = "jira-reports",
    enable_json: bool = False
):
    """
    Configure application logging

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files. Empty means console only.
        app_name: Base name of the log files
        enable_json: Emit JSON instead of plain text
    """
    level = getattr(logging, log_level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    root_logger.addHandler(_configure(logging.StreamHandler(sys.stdout), level, enable_json))

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        app_log_file = log_path / f"{app_name}.log"

        root_logger.addHandler(_configure(_rotating_file(app_log_file), level, enable_json))
        root_logger.addHandler(
            _configure(_rotating_file(log_path / f"{app_name}-error.log"), logging.ERROR, enable_json)
        )
        logging.info(f"File logging enabled: {app_log_file}")

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.info(f"Logging configured: level={log_level}, json={enable_json}")


async def log_requests_middleware(request, call_next):
    """Log each API request with a short request id, status and duration"""
    request_id = uuid.uuid4().hex[:8]
    request.state.request_id = request_id
    started = time.perf_counter()

    try:
        response = await call_next(request)
    except Exception as e:
        request_logger.error(
            f"Request failed: {request.method} {request.url.path} - {e}",
            extra={"request_id": request_id, "duration_ms": round((time.perf_counter() - started) * 1000, 2)},
            exc_info=True
        )
        raise

    request_logger.info(
        f"{request.method} {request.url.path} - {response.status_code}",
        extra={"request_id": request_id, "duration_ms": round((time.perf_counter() - started) * 1000, 2)}
    )
    response.headers["X-Request-ID"] = request_id
    return response
