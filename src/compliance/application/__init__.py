"""
Compliance Application Layer
============================

Application layer for the compliance reporting module.

Contains:
- Services: Orchestrate evaluation cycles and coordinate with adapters
- Descriptor store: Read-only parsed monitoring configuration
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and adapter/repository interfaces,
but not on concrete infrastructure implementations.
"""

from src.compliance.application.descriptor_store import (
    ServiceDescriptorStore,
    load_projects,
    parse_document,
)
from src.compliance.application.dto import (
    ComplianceReportResponse,
    EvaluationResultResponse,
    ProjectStatusResponse,
    ReportListResponse,
    ReportSummary,
    ErrorResponse,
)
from src.compliance.application.services import (
    ComplianceCycleService,
    ComplianceEvaluator,
    EvaluationCycle,
    ReportBuilder,
    ReportIdGenerator,
    MetricsAdapterRegistry,
    IMetricsAdapter,
    IReportRepository,
    IReportPublisher,
)

__all__ = [
    # Descriptor store
    "ServiceDescriptorStore",
    "load_projects",
    "parse_document",
    # DTOs
    "ComplianceReportResponse",
    "EvaluationResultResponse",
    "ProjectStatusResponse",
    "ReportListResponse",
    "ReportSummary",
    "ErrorResponse",
    # Services
    "ComplianceCycleService",
    "ComplianceEvaluator",
    "EvaluationCycle",
    "ReportBuilder",
    "ReportIdGenerator",
    "MetricsAdapterRegistry",
    # Interfaces
    "IMetricsAdapter",
    "IReportRepository",
    "IReportPublisher",
]
