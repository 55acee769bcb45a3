"""
Compliance Controllers (API Routes)
====================================

FastAPI routes for the compliance trigger and report history.

Controllers are thin - they delegate to application services.
"""

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from src.compliance.application import (
    ComplianceCycleService,
    ComplianceReportResponse,
    ErrorResponse,
    IReportRepository,
    ReportListResponse,
)
from src.compliance.domain import MonitoringConfig
from src.core import ConfigError, DeadlineExceeded, ResourceNotFoundException
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/v1", tags=["Compliance"])


# ========== Example payloads for Swagger ==========

MONITORING_CONFIG_EXAMPLE = {
    "projects": [
        {
            "id": "acme-prod",
            "services": [
                {"name": "hello", "type": "cloud_run_revision", "threshold": 99.95},
                {"name": "acme-assets", "type": "gcs_bucket", "threshold": 99.9},
                {"name": "acme-analytics", "type": "bigquery_project", "threshold": 99.5}
            ]
        }
    ]
}

REPORT_RESPONSE_EXAMPLE = {
    "report_id": "1700000000-1",
    "generated_at": "2023-11-14T22:13:20Z",
    "window": {"start": "2023-10-15T22:13:20Z", "end": "2023-11-14T22:13:20Z"},
    "status": "COMPLIANT",
    "projects": [{"project_id": "acme-prod", "status": "COMPLIANT", "service_count": 1}],
    "results": [
        {
            "project_id": "acme-prod",
            "service": "hello",
            "type": "cloud_run_revision",
            "threshold": 99.95,
            "percentage": 99.97,
            "margin": 0.02,
            "verdict": "COMPLIANT",
            "reason": None,
            "total": 100000,
            "failed": 30,
            "detail": None
        }
    ],
    "summary": {
        "total_services": 1,
        "counts": {"COMPLIANT": 1, "BREACHED": 0, "UNDETERMINED": 0},
        "breaches": []
    }
}


# ========== Dependencies ==========

def get_cycle_service(request: Request) -> ComplianceCycleService:
    """Get the cycle service created at startup."""
    return request.app.state.cycle_service


def get_report_repository(request: Request) -> IReportRepository:
    """Get the report history store created at startup."""
    return request.app.state.report_repository


def require_json_body(request: Request) -> None:
    """Reject trigger bodies not sent as application/json (or a +json type)."""
    content_type = request.headers.get("content-type", "")
    media_type = content_type.split(";", 1)[0].strip().lower()
    if media_type != "application/json" and not (
        media_type.startswith("application/") and media_type.endswith("+json")
    ):
        raise HTTPException(
            status_code=415,
            detail=f"Content-Type must be application/json, got '{media_type or 'none'}'"
        )


# ========== Route Handlers ==========

@router.post(
    "/compliance_report",
    response_model=ComplianceReportResponse,
    summary="Run an evaluation cycle",
    dependencies=[Depends(require_json_body)],
    description="""
    Evaluate every service in the posted monitoring configuration over the
    report window and return the compliance report.

    **Service types**: `cloud_run_revision`, `gcs_bucket`, `bigquery_project`

    **Thresholds**: percentage in (0, 100]; a service is compliant when its
    observed percentage is at or above the threshold.

    Services that cannot be measured appear as `UNDETERMINED` with a reason;
    the report status is then `DEGRADED` unless something is `BREACHED`.
    """,
    openapi_extra={
        "requestBody": {
            "required": True,
            "content": {
                "application/json": {
                    "schema": MonitoringConfig.model_json_schema(),
                    "example": MONITORING_CONFIG_EXAMPLE
                }
            }
        }
    },
    responses={
        200: {
            "description": "Report generated",
            "content": {"application/json": {"example": REPORT_RESPONSE_EXAMPLE}}
        },
        400: {"model": ErrorResponse, "description": "Malformed monitoring configuration"},
        415: {"model": ErrorResponse, "description": "Body is not application/json"},
        504: {"model": ErrorResponse, "description": "Deadline elapsed with no usable result"},
    }
)
async def create_compliance_report(
    request: Request,
    cycle_service: ComplianceCycleService = Depends(get_cycle_service),
) -> ComplianceReportResponse:
    # Parsed by the descriptor store so thresholds keep their decimal text
    body = await request.body()
    correlation_id = getattr(request.state, "correlation_id", None)

    report = await cycle_service.run(body, correlation_id=correlation_id)
    return ComplianceReportResponse.from_domain(report)


@router.get(
    "/compliance_report/{report_id}",
    response_model=ComplianceReportResponse,
    summary="Get a stored report",
    responses={404: {"model": ErrorResponse, "description": "Report not found"}}
)
async def get_compliance_report(
    report_id: str,
    repository: IReportRepository = Depends(get_report_repository),
):
    report = await repository.get(report_id)
    if report is None:
        raise ResourceNotFoundException("ComplianceReport", report_id)
    return report


@router.get(
    "/compliance_reports",
    response_model=ReportListResponse,
    summary="List recent reports",
    description="Most recent stored reports, newest first."
)
async def list_compliance_reports(
    limit: int = Query(20, ge=1, le=100, description="Maximum number of reports"),
    repository: IReportRepository = Depends(get_report_repository),
):
    reports = await repository.list_recent(limit)
    return {"reports": reports, "count": len(reports)}


# ========== Exception Handlers ==========

def _correlation_id(request: Request):
    return getattr(request.state, "correlation_id", None)


async def config_error_handler(request: Request, exc: ConfigError) -> JSONResponse:
    logger.warning(
        "Rejected monitoring configuration",
        extra={
            "correlation_id": _correlation_id(request),
            "error": exc.message,
            "errors": exc.details.get("errors"),
        }
    )
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            detail=exc.message,
            errors=exc.details.get("errors"),
            correlation_id=_correlation_id(request),
        ).model_dump()
    )


async def deadline_exceeded_handler(request: Request, exc: DeadlineExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=504,
        content=ErrorResponse(
            detail=exc.message,
            correlation_id=_correlation_id(request),
        ).model_dump()
    )


async def not_found_handler(request: Request, exc: ResourceNotFoundException) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content=ErrorResponse(
            detail=exc.message,
            correlation_id=_correlation_id(request),
        ).model_dump()
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Map compliance errors to HTTP statuses."""
    app.add_exception_handler(ConfigError, config_error_handler)
    app.add_exception_handler(DeadlineExceeded, deadline_exceeded_handler)
    app.add_exception_handler(ResourceNotFoundException, not_found_handler)


compliance_router = router
