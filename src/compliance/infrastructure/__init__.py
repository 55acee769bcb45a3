"""
Compliance Infrastructure Layer
================================

Infrastructure implementations for compliance reporting:
- Adapters: Google Cloud metrics collectors, one per service type
- Models: SQLAlchemy ORM model for report history
- Repositories: Report history stores
- External: Slack, Grafana and scheduler integrations
"""

from src.compliance.infrastructure.adapters import (
    AccessTokenProvider,
    GoogleApiClient,
    CloudRunRevisionAdapter,
    StorageBucketAdapter,
    BigQueryProjectAdapter,
    build_adapter_registry,
    create_google_api_client,
)
from src.compliance.infrastructure.repositories import (
    InMemoryReportRepository,
    SQLAlchemyReportRepository,
)
from src.compliance.infrastructure.external import (
    SlackNotifier,
    GrafanaReportPublisher,
    ComplianceScheduler,
)

__all__ = [
    "AccessTokenProvider",
    "GoogleApiClient",
    "CloudRunRevisionAdapter",
    "StorageBucketAdapter",
    "BigQueryProjectAdapter",
    "build_adapter_registry",
    "create_google_api_client",
    "InMemoryReportRepository",
    "SQLAlchemyReportRepository",
    "SlackNotifier",
    "GrafanaReportPublisher",
    "ComplianceScheduler",
]
