"""
Compliance Domain Layer
=======================

Domain layer for the compliance reporting module.

Contains:
- Entities: Project, Service, SignalWindow, EvaluationResult, ComplianceReport
- Value Objects: TimeRange, configuration document models
- Domain Services: Stateless business logic (ComplianceCalculator)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.compliance.domain.entities import (
    TimeRange,
    Service,
    Project,
    SignalWindow,
    EvaluationResult,
    ProjectStatus,
    ComplianceReport,
)
from src.compliance.domain.value_objects import (
    ComplianceCalculator,
    ServiceDescriptor,
    ProjectDescriptor,
    MonitoringConfig,
)

__all__ = [
    # Entities
    "TimeRange",
    "Service",
    "Project",
    "SignalWindow",
    "EvaluationResult",
    "ProjectStatus",
    "ComplianceReport",
    # Value Objects & Services
    "ComplianceCalculator",
    "ServiceDescriptor",
    "ProjectDescriptor",
    "MonitoringConfig",
]
