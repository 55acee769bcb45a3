"""
SLA Compliance Reporter - Main Application
===========================================

Evaluates request-based SLAs of Google Cloud services over a rolling window
and returns a compliance report per trigger.

Modules:
- Compliance: Monitoring configuration, metrics adapters, evaluation cycle,
  report history and publication

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Google Cloud adapters, database, Slack, Grafana
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from src.config import Settings, settings
from src.core import ApplicationException

# Infrastructure
from src.infrastructure.database import (
    init_database, close_database, create_tables, get_session_maker
)

# Compliance Module
from src.compliance.application import ComplianceCycleService, IReportRepository
from src.compliance.infrastructure import (
    ComplianceScheduler,
    GrafanaReportPublisher,
    InMemoryReportRepository,
    SQLAlchemyReportRepository,
    SlackNotifier,
    build_adapter_registry,
    create_google_api_client,
)
from src.compliance.interfaces import compliance_router, register_exception_handlers

# Shared
from src.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    global_exception_handler
)
from src.shared.infrastructure.logging import setup_logging, get_logger, log_latency
from src.shared.infrastructure.grafana import GrafanaOTLPExporter

logger = get_logger(__name__)


async def build_report_repository(app_settings: Settings) -> IReportRepository:
    """SQLAlchemy store when a database is configured, in-memory otherwise."""
    if not app_settings.database_url:
        return InMemoryReportRepository(max_reports=app_settings.report_history_limit)

    logger.info("Initializing database")
    init_database(app_settings.database_url)
    # Development convenience; production schemas are managed by migrations
    await create_tables()
    return SQLAlchemyReportRepository(get_session_maker())


def build_scheduled_job(app: FastAPI, app_settings: Settings):
    """Job running the same cycle as the HTTP trigger from the configured file."""
    config_path = app_settings.monitoring_config_path

    async def scheduled_compliance_job() -> None:
        cycle_service: ComplianceCycleService = app.state.cycle_service
        with log_latency(logger, "scheduled_compliance_cycle", config_path=str(config_path)):
            try:
                report = await cycle_service.run(config_path)
            except ApplicationException as e:
                logger.error(
                    "Scheduled compliance cycle failed",
                    extra={"error_type": type(e).__name__, "error": e.message, "details": e.details}
                )
                return
        logger.info(
            "Scheduled compliance report generated",
            extra={"report_id": report.report_id, "status": report.status.value}
        )

    return scheduled_compliance_job


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Create the Google API client and adapter registry
    3. Open the report history store
    4. Configure publishers (Slack, Grafana)
    5. Start the in-process scheduler when configured

    SHUTDOWN:
    1. Stop the scheduler
    2. Wait for reports still being published
    3. Close HTTP clients
    4. Close database connections
    """
    app_settings: Settings = app.state.settings

    # === STARTUP ===
    setup_logging(app_settings.log_level, app_settings.environment)
    logger.info("Starting SLA compliance reporter", extra={
        "version": app_settings.app_version,
        "environment": app_settings.environment
    })

    google_client = None
    slack_notifier = None
    scheduler = None

    if getattr(app.state, "report_repository", None) is None:
        app.state.report_repository = await build_report_repository(app_settings)

    if getattr(app.state, "cycle_service", None) is None:
        google_client = create_google_api_client(app_settings)
        publishers = []

        slack_notifier = SlackNotifier(app_settings)
        publishers.append(slack_notifier)

        if app_settings.grafana_host and app_settings.grafana_api_key and app_settings.grafana_instance_id:
            exporter = GrafanaOTLPExporter(
                host=app_settings.grafana_host,
                api_key=app_settings.grafana_api_key,
                instance_id=app_settings.grafana_instance_id
            )
            publishers.append(GrafanaReportPublisher(exporter))
        else:
            logger.info("Grafana OTLP exporter not configured - metrics will not be exported")

        app.state.cycle_service = ComplianceCycleService(
            build_adapter_registry(google_client),
            report_repository=app.state.report_repository,
            publishers=publishers,
            app_settings=app_settings,
        )

    if app_settings.schedule_interval_seconds > 0:
        if app_settings.monitoring_config_path is None:
            logger.warning("schedule_interval_seconds set without monitoring_config_path; scheduler not started")
        else:
            scheduler = ComplianceScheduler(interval_seconds=app_settings.schedule_interval_seconds)
            await scheduler.start(build_scheduled_job(app, app_settings))
    app.state.scheduler = scheduler

    logger.info("SLA compliance reporter started")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down SLA compliance reporter")

    if scheduler:
        await scheduler.stop()

    cycle_service = getattr(app.state, "cycle_service", None)
    if cycle_service is not None:
        await cycle_service.drain(timeout=app_settings.shutdown_drain_seconds)

    if slack_notifier:
        await slack_notifier.close()

    if google_client:
        await google_client.close()

    if app_settings.database_url:
        await close_database()

    logger.info("SLA compliance reporter shutdown complete")


def create_app(
    app_settings: Optional[Settings] = None,
    cycle_service: Optional[ComplianceCycleService] = None,
    report_repository: Optional[IReportRepository] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Components passed in are used as-is; the rest are created at startup.
    """
    app_settings = app_settings or settings

    app = FastAPI(
        title="SLA Compliance Reporter API",
        description="""
    ## Request-based SLA compliance for Google Cloud services

    `POST /v1/compliance_report` with a monitoring configuration evaluates
    every listed service over the report window and returns one report.

    **Service types:**
    - `cloud_run_revision` - Cloud Run request count, 5xx responses fail
    - `gcs_bucket` - Cloud Storage API request count, server errors fail
    - `bigquery_project` - BigQuery jobs, jobs with an error result fail

    **Verdicts:** `COMPLIANT` when the observed percentage is at or above the
    threshold, `BREACHED` below it, `UNDETERMINED` when it cannot be measured.

    **Report status:** `BREACHED` if any service breached, otherwise
    `DEGRADED` if any is undetermined, otherwise `COMPLIANT`.
    """,
        version=app_settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    app.state.settings = app_settings
    app.state.cycle_service = cycle_service
    app.state.report_repository = report_repository
    app.state.scheduler = None

    # === CORS Middleware ===
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # === Custom Middleware (from shared) ===
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIDMiddleware)
    register_exception_handlers(app)
    app.add_exception_handler(Exception, global_exception_handler)

    # === Include Module Routers ===
    app.include_router(compliance_router)

    # === Health Check Endpoint ===

    @app.get("/health", tags=["Health"], responses={
        200: {
            "description": "Service is healthy",
            "content": {
                "application/json": {
                    "example": {
                        "status": "healthy",
                        "version": "1.0.0",
                        "environment": "development",
                        "checks": {
                            "report_store": "InMemoryReportRepository",
                            "scheduler": "disabled"
                        }
                    }
                }
            }
        }
    })
    async def health_check(request: Request):
        """Health check endpoint for load balancers and orchestrators."""
        state = request.app.state
        repository = getattr(state, "report_repository", None)
        scheduler = getattr(state, "scheduler", None)

        if scheduler is None:
            scheduler_state = "disabled"
        else:
            scheduler_state = "running" if scheduler.is_running else "stopped"

        return {
            "status": "healthy",
            "version": app_settings.app_version,
            "environment": app_settings.environment,
            "checks": {
                "report_store": type(repository).__name__ if repository else "not_initialized",
                "scheduler": scheduler_state
            }
        }

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "service": app_settings.app_name,
            "version": app_settings.app_version,
            "docs": "/docs",
            "health": "/health",
            "endpoints": [
                "POST /v1/compliance_report - Run an evaluation cycle",
                "GET /v1/compliance_report/{report_id} - Get a stored report",
                "GET /v1/compliance_reports - List recent reports"
            ]
        }

    return app


app = create_app()


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower()
    )
