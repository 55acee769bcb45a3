"""
Pytest configuration and shared fixtures for compliance tests.
"""

import os

# Set required environment variables BEFORE importing app modules
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_LEVEL", "INFO")
os.environ["GCP_ACCESS_TOKEN"] = "test-access-token"
os.environ.pop("DATABASE_URL", None)
os.environ.pop("SLACK_WEBHOOK_URL", None)
for _name in ("GRAFANA_HOST", "GRAFANA_API_KEY", "GRAFANA_INSTANCE_ID"):
    os.environ.pop(_name, None)

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Union

import pytest

from src.compliance.application import IMetricsAdapter
from src.compliance.domain import Service, SignalWindow, TimeRange
from src.config import ServiceType, Settings
from src.core import UpstreamUnavailable


GENERATED_AT = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

HELLO_CONFIG = {
    "projects": [
        {
            "id": "acme-prod",
            "services": [
                {"name": "hello", "type": "cloud_run_revision", "threshold": 99.95}
            ]
        }
    ]
}

THREE_SERVICE_CONFIG = {
    "projects": [
        {
            "id": "acme-prod",
            "services": [
                {"name": "hello", "type": "cloud_run_revision", "threshold": 99.95},
                {"name": "acme-assets", "type": "gcs_bucket", "threshold": 99.9},
                {"name": "acme-analytics", "type": "bigquery_project", "threshold": 99.5},
            ]
        }
    ]
}


HANG = object()

Behavior = Union[tuple, Exception, object]


class FakeMetricsAdapter(IMetricsAdapter):
    """
    In-memory adapter for one service type.

    ``behaviors`` maps a service name to a ``(total, failed)`` tuple, an
    exception to raise on every call, or HANG to block until cancelled.
    """

    def __init__(self, service_type: ServiceType, behaviors: Dict[str, Behavior]):
        self.service_type = service_type
        self.behaviors = behaviors
        self.calls: List[str] = []

    async def fetch_window(self, service: Service, time_range: TimeRange) -> SignalWindow:
        self.calls.append(service.name)
        behavior = self.behaviors.get(service.name, (0, 0))
        if behavior is HANG:
            await asyncio.Event().wait()
        if isinstance(behavior, Exception):
            raise behavior
        total, failed = behavior
        return SignalWindow(time_range=time_range, total=total, failed=failed)


def make_service(
    name: str = "hello",
    project_id: str = "acme-prod",
    service_type: ServiceType = ServiceType.COMPUTE_REVISION,
    threshold: str = "99.95",
) -> Service:
    return Service(project_id=project_id, name=name, type=service_type, threshold=Decimal(threshold))


def make_window(total: int, failed: int) -> SignalWindow:
    return SignalWindow(
        time_range=TimeRange(start=GENERATED_AT - timedelta(hours=720), end=GENERATED_AT),
        total=total,
        failed=failed,
    )


async def no_sleep(delay: float) -> None:
    return None


@pytest.fixture
def test_settings():
    """Settings with short deadlines and no backoff delay."""
    return Settings(
        environment="test",
        cycle_deadline_seconds=5.0,
        service_timeout_seconds=2.0,
        fetch_max_attempts=3,
        fetch_backoff_seconds=0.0,
        gcp_access_token="test-access-token",
        database_url=None,
        slack_webhook_url=None,
    )


@pytest.fixture
def time_range():
    return TimeRange(start=GENERATED_AT - timedelta(hours=720), end=GENERATED_AT)


@pytest.fixture
def upstream_down():
    return UpstreamUnavailable("Cloud Monitoring", "service unavailable")
