"""
Compliance Domain Entities
===========================

Pure Python domain entities for SLA compliance reporting.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns. All of them are
frozen: a cycle creates them once and never mutates them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Tuple

from src.config import ServiceType, Verdict, ReportStatus, UndeterminedReason


@dataclass(frozen=True)
class TimeRange:
    """Half-open interval [start, end)."""

    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("TimeRange bounds must be timezone-aware")
        if self.end <= self.start:
            raise ValueError("TimeRange end must be after start")

    @property
    def duration_seconds(self) -> int:
        return int((self.end - self.start).total_seconds())

    def to_dict(self) -> dict:
        return {
            "start": _isoformat(self.start),
            "end": _isoformat(self.end),
        }


@dataclass(frozen=True)
class Service:
    """
    A monitored service within a project.

    ``threshold`` is the minimum compliant percentage, already quantized to
    the configured precision.
    """

    project_id: str
    name: str
    type: ServiceType
    threshold: Decimal

    def __post_init__(self):
        if not (Decimal(0) < self.threshold <= Decimal(100)):
            raise ValueError(f"threshold must be in (0, 100], got {self.threshold}")

    @property
    def key(self) -> Tuple[str, str]:
        """Identity of the service across a configuration."""
        return (self.project_id, self.name)


@dataclass(frozen=True)
class Project:
    """A project and its services, in configuration order."""

    id: str
    services: Tuple[Service, ...] = ()


@dataclass(frozen=True)
class SignalWindow:
    """
    Raw availability signal for one service over one time range.

    Produced fresh for every evaluation.
    """

    time_range: TimeRange
    total: int
    failed: int

    def __post_init__(self):
        if self.total < 0:
            raise ValueError("total must be >= 0")
        if self.failed < 0:
            raise ValueError("failed must be >= 0")
        if self.failed > self.total:
            raise ValueError(f"failed ({self.failed}) cannot exceed total ({self.total})")

    @property
    def is_empty(self) -> bool:
        return self.total == 0


@dataclass(frozen=True)
class EvaluationResult:
    """
    Outcome of evaluating one service for one report cycle.

    ``percentage`` and ``margin`` are None when the verdict is UNDETERMINED;
    ``reason`` is set only in that case.
    """

    service: Service
    verdict: Verdict
    percentage: Optional[Decimal] = None
    margin: Optional[Decimal] = None
    reason: Optional[UndeterminedReason] = None
    total: Optional[int] = None
    failed: Optional[int] = None
    detail: Optional[str] = None

    @classmethod
    def undetermined(
        cls,
        service: Service,
        reason: UndeterminedReason,
        window: Optional[SignalWindow] = None,
        detail: Optional[str] = None,
    ) -> "EvaluationResult":
        return cls(
            service=service,
            verdict=Verdict.UNDETERMINED,
            reason=reason,
            total=window.total if window else None,
            failed=window.failed if window else None,
            detail=detail,
        )

    @property
    def is_usable(self) -> bool:
        """True when the result carries a real verdict."""
        return self.verdict != Verdict.UNDETERMINED

    def to_dict(self) -> dict:
        return {
            "project_id": self.service.project_id,
            "service": self.service.name,
            "type": self.service.type.value,
            "threshold": float(self.service.threshold),
            "percentage": float(self.percentage) if self.percentage is not None else None,
            "margin": float(self.margin) if self.margin is not None else None,
            "verdict": self.verdict.value,
            "reason": self.reason.value if self.reason else None,
            "total": self.total,
            "failed": self.failed,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class ProjectStatus:
    """Aggregated verdict of a project."""

    project_id: str
    verdict: Verdict
    service_count: int

    def to_dict(self) -> dict:
        return {
            "project_id": self.project_id,
            "status": self.verdict.value,
            "service_count": self.service_count,
        }


@dataclass(frozen=True)
class ComplianceReport:
    """
    Immutable result of one evaluation cycle.

    Each cycle creates a new report; history is kept by appending reports,
    never by editing them.
    """

    report_id: str
    generated_at: datetime
    time_range: TimeRange
    status: ReportStatus
    results: Tuple[EvaluationResult, ...]
    projects: Tuple[ProjectStatus, ...]
    breaches: Tuple[EvaluationResult, ...] = field(default=())

    def counts(self) -> dict:
        counts = {verdict.value: 0 for verdict in Verdict}
        for result in self.results:
            counts[result.verdict.value] += 1
        return counts

    @property
    def usable_count(self) -> int:
        return sum(1 for result in self.results if result.is_usable)

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses and storage."""
        return {
            "report_id": self.report_id,
            "generated_at": _isoformat(self.generated_at),
            "window": self.time_range.to_dict(),
            "status": self.status.value,
            "projects": [project.to_dict() for project in self.projects],
            "results": [result.to_dict() for result in self.results],
            "summary": {
                "total_services": len(self.results),
                "counts": self.counts(),
                "breaches": [
                    {
                        "project_id": result.service.project_id,
                        "service": result.service.name,
                        "margin": float(result.margin),
                    }
                    for result in self.breaches
                ],
            },
        }


def _isoformat(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
