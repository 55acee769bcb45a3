"""
Compliance Application DTOs
============================

Data Transfer Objects for the compliance API layer.

These Pydantic models describe the JSON the API returns. Reports are built
as domain objects and converted here at the boundary.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from src.compliance.domain import ComplianceReport


# ========== Type Aliases for Literals ==========
ServiceTypeStr = Literal["cloud_run_revision", "gcs_bucket", "bigquery_project"]
VerdictStr = Literal["COMPLIANT", "BREACHED", "UNDETERMINED"]
ReportStatusStr = Literal["COMPLIANT", "DEGRADED", "BREACHED"]
UndeterminedReasonStr = Literal[
    "no_data", "upstream_unavailable", "invalid_service_reference", "deadline_exceeded"
]


# ========== Response DTOs ==========

class WindowResponse(BaseModel):
    """Compliance window, half-open."""
    start: datetime
    end: datetime


class EvaluationResultResponse(BaseModel):
    """Response model for a single service evaluation."""
    project_id: str
    service: str
    type: ServiceTypeStr
    threshold: float = Field(..., description="Minimum compliant percentage")
    percentage: Optional[float] = Field(None, description="Observed compliance, null if undetermined")
    margin: Optional[float] = Field(None, description="percentage - threshold; negative means breach")
    verdict: VerdictStr
    reason: Optional[UndeterminedReasonStr] = Field(None, description="Why the service is undetermined")
    total: Optional[int] = Field(None, description="Observed units in the window")
    failed: Optional[int] = Field(None, description="Failed units in the window")
    detail: Optional[str] = None


class ProjectStatusResponse(BaseModel):
    """Worst verdict among a project's services."""
    project_id: str
    status: VerdictStr
    service_count: int


class BreachSummary(BaseModel):
    project_id: str
    service: str
    margin: float


class ReportSummary(BaseModel):
    """Summary statistics for a report."""
    total_services: int
    counts: dict = Field(..., description="Number of services per verdict")
    breaches: List[BreachSummary] = Field(
        default_factory=list,
        description="Breached services, largest breach first"
    )


class ComplianceReportResponse(BaseModel):
    """Response model for a compliance report."""
    report_id: str = Field(..., description="{unixSeconds}-{counter}")
    generated_at: datetime
    window: WindowResponse
    status: ReportStatusStr
    projects: List[ProjectStatusResponse]
    results: List[EvaluationResultResponse]
    summary: ReportSummary

    @classmethod
    def from_domain(cls, report: ComplianceReport) -> "ComplianceReportResponse":
        return cls.model_validate(report.to_dict())


class ReportListResponse(BaseModel):
    """Response model for report history."""
    reports: List[ComplianceReportResponse]
    count: int


class ErrorResponse(BaseModel):
    """Error body for non-200 responses."""
    detail: str
    errors: Optional[list] = None
    correlation_id: Optional[str] = None
