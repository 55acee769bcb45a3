"""
Metrics Adapters
================

One adapter per monitored resource type, all reading Google Cloud APIs
through a shared authenticated httpx client:

- cloud_run_revision: Cloud Monitoring request counts, failures = 5xx class
- gcs_bucket: Cloud Monitoring API request counts, failures = server-side codes
- bigquery_project: INFORMATION_SCHEMA job history, failures = jobs with an error

Provider errors are mapped onto UpstreamUnavailable (transient) and
InvalidServiceReference (resource gone).
"""

import asyncio
import re
import time
from abc import abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Tuple

import httpx

from src.compliance.application.services import IMetricsAdapter, MetricsAdapterRegistry
from src.compliance.domain import Service, SignalWindow, TimeRange
from src.config import ServiceType, Settings, settings as default_settings
from src.core import InvalidServiceReference, UpstreamUnavailable
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


class AccessTokenProvider:
    """
    Supplies OAuth access tokens for Google APIs.

    Uses the token injected through settings when present, otherwise asks the
    metadata server of the hosting runtime and caches the token until shortly
    before it expires.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        static_token: Optional[str] = None,
        token_url: Optional[str] = None,
    ):
        self._http_client = http_client
        self._static_token = static_token
        self._token_url = token_url or default_settings.metadata_token_url
        self._token: Optional[str] = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    async def get_token(self) -> str:
        if self._static_token:
            return self._static_token

        async with self._lock:
            if self._token and time.monotonic() < self._expires_at:
                return self._token

            try:
                response = await self._http_client.get(
                    self._token_url, headers={"Metadata-Flavor": "Google"}
                )
            except httpx.HTTPError as e:
                raise UpstreamUnavailable("Metadata Server", f"token request failed: {e}") from e

            if response.status_code != 200:
                raise UpstreamUnavailable(
                    "Metadata Server",
                    f"token request returned {response.status_code}",
                    retryable=response.status_code in RETRYABLE_STATUS_CODES,
                )

            try:
                payload = response.json()
                token = payload["access_token"]
                expires_in = int(payload.get("expires_in", 0))
            except (ValueError, KeyError, TypeError) as e:
                raise UpstreamUnavailable("Metadata Server", f"malformed token response: {e!r}") from e

            self._token = token
            self._expires_at = time.monotonic() + max(expires_in - 60, 0)
            return self._token


class GoogleApiClient:
    """Thin JSON client over httpx that maps HTTP failures onto domain errors."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_provider: AccessTokenProvider,
        app_settings: Optional[Settings] = None,
    ):
        self._http_client = http_client
        self._token_provider = token_provider
        self.settings = app_settings or default_settings

    async def request(
        self,
        api_name: str,
        method: str,
        url: str,
        reference: str,
        params: Any = None,
        json: Optional[dict] = None,
    ) -> dict:
        """
        Send one request and return the decoded JSON body.

        Raises:
            InvalidServiceReference: On 404
            UpstreamUnavailable: On transport errors and any other non-2xx status
        """
        token = await self._token_provider.get_token()
        try:
            response = await self._http_client.request(
                method,
                url,
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(api_name, f"request failed: {e}", details={"reference": reference}) from e

        if response.status_code == 404:
            raise InvalidServiceReference(
                api_name, f"{reference} not found", {"status_code": response.status_code}
            )

        if response.status_code >= 400:
            raise UpstreamUnavailable(
                api_name,
                f"{reference} returned {response.status_code}: {_error_message(response)}",
                retryable=response.status_code in RETRYABLE_STATUS_CODES,
                details={"status_code": response.status_code},
            )

        return response.json()

    async def close(self) -> None:
        await self._http_client.aclose()


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json().get("error", {}).get("message", "") or response.reason_phrase
    except ValueError:
        return response.text[:200]


def _rfc3339(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _point_value(point: Dict[str, Any]) -> int:
    value = point.get("value", {})
    if "int64Value" in value:
        return int(value["int64Value"])
    if "doubleValue" in value:
        return int(round(float(value["doubleValue"])))
    return 0


class CloudMonitoringAdapter(IMetricsAdapter):
    """
    Base for adapters that sum a request-count metric from Cloud Monitoring.

    Subclasses name the metric, the resource filter and which values of the
    grouping label count as failures.
    """

    metric_type: str = ""
    resource_type: str = ""
    resource_label: str = ""
    group_by_label: str = ""

    def __init__(self, client: GoogleApiClient):
        self._client = client

    def build_filter(self, service: Service) -> str:
        return (
            f'metric.type="{self.metric_type}" '
            f'AND resource.type="{self.resource_type}" '
            f'AND resource.labels.{self.resource_label}="{service.name}"'
        )

    @abstractmethod
    def is_failure(self, label_value: Optional[str]) -> bool:
        """Whether a series with this label value counts as failed requests."""

    def _params(self, service: Service, time_range: TimeRange, page_token: Optional[str]) -> list:
        params = [
            ("filter", self.build_filter(service)),
            ("interval.startTime", _rfc3339(time_range.start)),
            ("interval.endTime", _rfc3339(time_range.end)),
            ("aggregation.alignmentPeriod", f"{time_range.duration_seconds}s"),
            ("aggregation.perSeriesAligner", "ALIGN_SUM"),
            ("aggregation.crossSeriesReducer", "REDUCE_SUM"),
            ("aggregation.groupByFields", f"metric.label.{self.group_by_label}"),
            ("view", "FULL"),
        ]
        if page_token:
            params.append(("pageToken", page_token))
        return params

    async def fetch_window(self, service: Service, time_range: TimeRange) -> SignalWindow:
        url = f"{self._client.settings.monitoring_api_url}/projects/{service.project_id}/timeSeries"
        reference = f"projects/{service.project_id}"
        total = 0
        failed = 0
        page_token = None

        while True:
            payload = await self._client.request(
                "Cloud Monitoring", "GET", url, reference,
                params=self._params(service, time_range, page_token),
            )
            for series in payload.get("timeSeries", []):
                label_value = series.get("metric", {}).get("labels", {}).get(self.group_by_label)
                count = sum(_point_value(point) for point in series.get("points", []))
                total += count
                if self.is_failure(label_value):
                    failed += count
            page_token = payload.get("nextPageToken")
            if not page_token:
                break

        logger.debug(
            "Cloud Monitoring window fetched",
            extra={"metric_type": self.metric_type, "service": service.name, "total": total, "failed": failed}
        )
        return SignalWindow(time_range=time_range, total=total, failed=failed)


class CloudRunRevisionAdapter(CloudMonitoringAdapter):
    """Request-count based availability of a Cloud Run service."""

    service_type = ServiceType.COMPUTE_REVISION
    metric_type = "run.googleapis.com/request_count"
    resource_type = "cloud_run_revision"
    resource_label = "service_name"
    group_by_label = "response_code_class"

    def is_failure(self, label_value: Optional[str]) -> bool:
        return label_value == "5xx"


class StorageBucketAdapter(CloudMonitoringAdapter):
    """Operation-success based availability of a Cloud Storage bucket."""

    service_type = ServiceType.STORAGE_BUCKET
    metric_type = "storage.googleapis.com/api/request_count"
    resource_type = "gcs_bucket"
    resource_label = "bucket_name"
    group_by_label = "response_code"

    # Canonical codes the service is responsible for; client errors do not count.
    SERVER_ERROR_CODES = frozenset({
        "INTERNAL", "UNAVAILABLE", "DEADLINE_EXCEEDED", "UNKNOWN", "DATA_LOSS",
    })

    def is_failure(self, label_value: Optional[str]) -> bool:
        return label_value in self.SERVER_ERROR_CODES


class BigQueryProjectAdapter(IMetricsAdapter):
    """
    Job-success based availability of a BigQuery project.

    The service name is the BigQuery project whose job history is read; the
    query job itself runs in the configured project.
    """

    service_type = ServiceType.QUERY_PROJECT

    PROJECT_ID_PATTERN = re.compile(r"^[a-z][a-z0-9-]{4,28}[a-z0-9]$")
    QUERY = (
        "SELECT COUNT(*) AS total, COUNTIF(error_result IS NOT NULL) AS failed "
        "FROM `{project}`.`{region}`.INFORMATION_SCHEMA.JOBS_BY_PROJECT "
        "WHERE creation_time >= @window_start AND creation_time < @window_end "
        "AND state = 'DONE'"
    )

    def __init__(self, client: GoogleApiClient):
        self._client = client

    def build_request(self, service: Service, time_range: TimeRange) -> dict:
        return {
            "query": self.QUERY.format(
                project=service.name, region=self._client.settings.bigquery_region
            ),
            "useLegacySql": False,
            "parameterMode": "NAMED",
            "queryParameters": [
                _timestamp_parameter("window_start", time_range.start),
                _timestamp_parameter("window_end", time_range.end),
            ],
            "timeoutMs": int(self._client.settings.service_timeout_seconds * 1000),
        }

    async def fetch_window(self, service: Service, time_range: TimeRange) -> SignalWindow:
        if not self.PROJECT_ID_PATTERN.match(service.name):
            raise InvalidServiceReference(
                "BigQuery", f"'{service.name}' is not a valid project id"
            )

        url = f"{self._client.settings.bigquery_api_url}/projects/{service.project_id}/queries"
        payload = await self._client.request(
            "BigQuery", "POST", url, f"projects/{service.name}",
            json=self.build_request(service, time_range),
        )

        if not payload.get("jobComplete", False):
            raise UpstreamUnavailable("BigQuery", "job history query did not complete in time")

        total, failed = _first_row_counts(payload.get("rows", []))
        return SignalWindow(time_range=time_range, total=total, failed=failed)


def _timestamp_parameter(name: str, value: datetime) -> dict:
    return {
        "name": name,
        "parameterType": {"type": "TIMESTAMP"},
        "parameterValue": {"value": value.astimezone(timezone.utc).isoformat()},
    }


def _first_row_counts(rows: Iterable[dict]) -> Tuple[int, int]:
    for row in rows:
        cells = row.get("f", [])
        total = int(cells[0]["v"] or 0)
        failed = int(cells[1]["v"] or 0)
        return total, failed
    return 0, 0


def build_adapter_registry(client: GoogleApiClient) -> MetricsAdapterRegistry:
    """Registry with one adapter per supported service type."""
    return MetricsAdapterRegistry([
        CloudRunRevisionAdapter(client),
        StorageBucketAdapter(client),
        BigQueryProjectAdapter(client),
    ])


def create_google_api_client(app_settings: Optional[Settings] = None) -> GoogleApiClient:
    """Build the authenticated client used by every adapter."""
    app_settings = app_settings or default_settings
    http_client = httpx.AsyncClient(timeout=app_settings.service_timeout_seconds)
    token_provider = AccessTokenProvider(
        http_client,
        static_token=app_settings.gcp_access_token,
        token_url=app_settings.metadata_token_url,
    )
    return GoogleApiClient(http_client, token_provider, app_settings)
