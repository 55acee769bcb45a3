"""
Compliance Value Objects
=========================

Immutable value objects and pure calculation logic for the compliance domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from decimal import Decimal, ROUND_HALF_EVEN
from typing import Iterable, List, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.config import (
    ServiceType, Verdict, ReportStatus, UndeterminedReason, VERDICT_SEVERITY
)
from src.compliance.domain.entities import EvaluationResult, Service, SignalWindow

HUNDRED = Decimal(100)


class ComplianceCalculator:
    """
    Pure functions for compliance calculations.

    Stateless utility class: all percentage, verdict and aggregation
    rules live here so every service type is judged the same way.
    """

    @staticmethod
    def quantum(precision: int) -> Decimal:
        """Smallest step representable at ``precision`` decimal places."""
        return Decimal(1).scaleb(-precision)

    @staticmethod
    def quantize(value: Decimal, precision: int) -> Decimal:
        """Round half-to-even to ``precision`` decimal places."""
        return value.quantize(ComplianceCalculator.quantum(precision), rounding=ROUND_HALF_EVEN)

    @staticmethod
    def compliance_percentage(window: SignalWindow, precision: int) -> Decimal:
        """
        Percentage of successful units in the window.

        Raises:
            ValueError: If the window has no observed units
        """
        if window.is_empty:
            raise ValueError("cannot compute a percentage for an empty window")
        succeeded = Decimal(window.total - window.failed)
        raw = succeeded * HUNDRED / Decimal(window.total)
        return ComplianceCalculator.quantize(raw, precision)

    @staticmethod
    def evaluate(service: Service, window: SignalWindow, precision: int = 4) -> EvaluationResult:
        """
        Classify one service for one window.

        The threshold is an inclusive floor: a percentage equal to it is
        compliant. Identical inputs always yield identical results.
        """
        if window.is_empty:
            return EvaluationResult.undetermined(service, UndeterminedReason.NO_DATA, window)

        percentage = ComplianceCalculator.compliance_percentage(window, precision)
        threshold = ComplianceCalculator.quantize(service.threshold, precision)
        verdict = Verdict.COMPLIANT if percentage >= threshold else Verdict.BREACHED

        return EvaluationResult(
            service=service,
            verdict=verdict,
            percentage=percentage,
            margin=percentage - threshold,
            total=window.total,
            failed=window.failed,
        )

    @staticmethod
    def worst_verdict(verdicts: Iterable[Verdict]) -> Verdict:
        """Worst of the given verdicts; COMPLIANT when there are none."""
        worst = Verdict.COMPLIANT
        for verdict in verdicts:
            if VERDICT_SEVERITY[verdict] > VERDICT_SEVERITY[worst]:
                worst = verdict
        return worst

    @staticmethod
    def overall_status(results: Iterable[EvaluationResult]) -> ReportStatus:
        """Any breach wins; otherwise any undetermined entry degrades the report."""
        verdicts = {result.verdict for result in results}
        if Verdict.BREACHED in verdicts:
            return ReportStatus.BREACHED
        if Verdict.UNDETERMINED in verdicts:
            return ReportStatus.DEGRADED
        return ReportStatus.COMPLIANT

    @staticmethod
    def rank_breaches(results: Iterable[EvaluationResult]) -> Tuple[EvaluationResult, ...]:
        """Breached results, largest breach magnitude first."""
        breaches = [r for r in results if r.verdict == Verdict.BREACHED]
        breaches.sort(key=lambda r: (r.margin, r.service.project_id, r.service.name))
        return tuple(breaches)


# ========== Configuration document ==========

class ServiceDescriptor(BaseModel):
    """One ``services[]`` entry of the monitoring configuration document."""
    model_config = ConfigDict(extra="ignore", frozen=True)

    name: str = Field(..., min_length=1, description="Service name, unique within its project")
    type: ServiceType = Field(..., description="Monitored resource type")
    threshold: Decimal = Field(..., gt=0, le=100, description="Minimum compliant percentage")

    @field_validator("threshold", mode="before")
    @classmethod
    def validate_threshold(cls, v):
        """Reject booleans and read floats through their shortest repr."""
        if isinstance(v, bool):
            raise ValueError("threshold must be a number")
        if isinstance(v, float):
            return Decimal(repr(v))
        return v


class ProjectDescriptor(BaseModel):
    """One ``projects[]`` entry of the monitoring configuration document."""
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(..., min_length=1, description="Project identifier")
    services: List[ServiceDescriptor] = Field(..., min_length=1, description="Monitored services")

    @model_validator(mode="after")
    def validate_unique_services(self) -> "ProjectDescriptor":
        seen = set()
        for service in self.services:
            if service.name in seen:
                raise ValueError(f"duplicate service '{service.name}' in project '{self.id}'")
            seen.add(service.name)
        return self


class MonitoringConfig(BaseModel):
    """
    Monitoring configuration document.

    {"projects": [{"id": ..., "services": [{"name": ..., "type": ..., "threshold": ...}]}]}
    """
    model_config = ConfigDict(extra="ignore", frozen=True)

    projects: List[ProjectDescriptor] = Field(..., min_length=1)

    @model_validator(mode="after")
    def validate_unique_projects(self) -> "MonitoringConfig":
        seen = set()
        for project in self.projects:
            if project.id in seen:
                raise ValueError(f"duplicate project '{project.id}'")
            seen.add(project.id)
        return self
