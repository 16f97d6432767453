from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
from contextlib import asynccontextmanager

from jira_reports.config import get_settings
from jira_reports.database import check_db_connection, init_db
from jira_reports.api.scheduled_reports_routes import router as scheduled_reports_router
from jira_reports.services.report_scheduler import (
    SchedulerInitializationError,
    create_report_scheduler_service,
)
from jira_reports.logging_config import setup_logging, log_requests_middleware
from jira_reports.error_handlers import register_error_handlers

settings = get_settings()

# Configure logging with optional file rotation
setup_logging(
    log_level=settings.log_level,
    log_dir=settings.log_dir,
    app_name="jira-reports",
    enable_json=settings.log_json
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown tasks"""
    # Startup
    logger.info("Starting application...")
    init_db()

    try:
        app.state.scheduler_service = create_report_scheduler_service(settings)
    except SchedulerInitializationError as e:
        # Routes answer 503 until the service is configured and the app restarted
        logger.error(f"Report scheduler unavailable: {e}")
        app.state.scheduler_service = None

    service = app.state.scheduler_service
    if service is not None and settings.scheduler_autostart:
        result = service.start_all()
        if result.success:
            logger.info(f"Report scheduler started: {result.message}")
        else:
            logger.warning(f"Report scheduler not started: {result.message}")

    yield

    # Shutdown
    logger.info("Shutting down application...")
    if service is not None:
        service.shutdown()
        logger.info("Report scheduler stopped")


app = FastAPI(
    title=settings.app_name,
    description="Scheduled Jira status reports delivered by email",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Add CORS middleware
cors_origins = settings.cors_origin_list or (["*"] if settings.debug else [])
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register error handlers
register_error_handlers(app)

# Add request logging middleware
if settings.enable_request_logging:
    app.middleware("http")(log_requests_middleware)

app.include_router(scheduled_reports_router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Jira Report Automation API",
        "status": "running",
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """Health check with database and scheduler status"""
    db_connected = check_db_connection()
    scheduler_ready = getattr(app.state, "scheduler_service", None) is not None

    logger.debug(
        "Health check performed",
        extra={"db_connected": db_connected, "scheduler_ready": scheduler_ready}
    )

    return {
        "status": "healthy" if db_connected and scheduler_ready else "unhealthy",
        "service": settings.app_name,
        "database": "connected" if db_connected else "disconnected",
        "scheduler": "ready" if scheduler_ready else "unavailable"
    }
