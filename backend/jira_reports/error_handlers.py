"""
Error handling for the API

Every error leaves the API as a JSON body of the form
{"error": CODE, "message": text, "path": request path} with optional "details".
"""
import logging
from typing import Any, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError, OperationalError

logger = logging.getLogger(__name__)


def error_response(
    request: Request,
    status_code: int,
    error: str,
    message: str,
    details: Optional[Any] = None
) -> JSONResponse:
    content = {"error": error, "message": message, "path": request.url.path}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


class APIError(Exception):
    """Base class for API exceptions"""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Any] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


class ReportNotFoundError(APIError):
    """Scheduled report id is unknown"""

    def __init__(self, report_id: str):
        super().__init__(
            message=f"Scheduled report {report_id} not found",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="NOT_FOUND"
        )
        self.report_id = report_id


class InvalidScheduleError(APIError):
    """Schedule rejected by the scheduler because it cannot produce run times"""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="INVALID_SCHEDULE",
            details={"field": "scheduleConfig"}
        )


class ServiceUnavailableError(APIError):
    """A required backing service is not available"""

    def __init__(self, message: str = "Service unavailable"):
        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="SERVICE_UNAVAILABLE"
        )


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    logger.warning(
        f"API error: {exc.error_code} - {exc.message}",
        extra={"path": request.url.path}
    )
    return error_response(request, exc.status_code, exc.error_code, exc.message, exc.details)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(error.get("loc", [])), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]
    logger.warning(f"Validation error: {errors}", extra={"path": request.url.path})
    return error_response(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "VALIDATION_ERROR",
        "Request validation failed",
        details=errors
    )


async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Report store failures surfacing through a request"""
    logger.error(
        f"Database error: {str(exc)}",
        extra={"path": request.url.path},
        exc_info=True
    )
    if isinstance(exc, OperationalError):
        return error_response(
            request,
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "DATABASE_UNAVAILABLE",
            "Database is currently unavailable"
        )
    return error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "DATABASE_ERROR",
        "An unexpected database error occurred"
    )


def register_error_handlers(app):
    """Register all error handlers with the FastAPI app"""
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_error_handler)

    logger.info("Error handlers registered")
