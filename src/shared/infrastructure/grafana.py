"""
Grafana OTLP Metrics Exporter
==============================

Pushes gauge metrics to Grafana Cloud via the OTLP HTTP endpoint.

Callers describe what to export as GaugePoint values; this module only knows
the OTLP JSON encoding and the Grafana authentication scheme.
"""

import base64
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import httpx

from src.config import settings
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class GaugePoint:
    """One gauge data point."""
    name: str
    value: float
    unit: str = "1"
    description: str = ""
    attributes: Dict[str, str] = field(default_factory=dict)


class GrafanaOTLPExporter:
    """
    Export metrics to Grafana Cloud via OTLP HTTP endpoint.

    Uses OpenTelemetry Protocol (OTLP) JSON format for metrics.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        api_key: Optional[str] = None,
        instance_id: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize Grafana OTLP exporter.

        Args:
            host: Grafana OTLP gateway URL
            api_key: Grafana API key
            instance_id: Instance ID for authentication
            http_client: Client to send with; one is created per export otherwise
        """
        self._host = host or settings.grafana_host
        self._api_key = api_key or settings.grafana_api_key
        self._instance_id = instance_id or settings.grafana_instance_id
        self._http_client = http_client
        self._enabled = bool(self._host and self._api_key and self._instance_id)

        if self._enabled:
            auth_pair = f"{self._instance_id}:{self._api_key}"
            self._auth_encoded = base64.b64encode(auth_pair.encode()).decode()
            # Don't double-append the path if host already includes it
            if "/otlp/v1/metrics" not in self._host:
                self._url = f"{self._host.rstrip('/')}/otlp/v1/metrics"
            else:
                self._url = self._host
            logger.info(
                "Grafana OTLP exporter initialized",
                extra={"host": self._host, "instance_id": self._instance_id}
            )
        else:
            logger.info(
                "Grafana OTLP exporter not configured - metrics will not be exported",
                extra={
                    "host_configured": bool(self._host),
                    "api_key_configured": bool(self._api_key),
                    "instance_id_configured": bool(self._instance_id)
                }
            )

    def is_enabled(self) -> bool:
        """Check if exporter is properly configured."""
        return self._enabled

    def build_payload(self, points: Sequence[GaugePoint], timestamp_ns: int) -> dict:
        """Encode gauge points as an OTLP metrics request."""
        metrics: Dict[str, dict] = {}
        for point in points:
            metric = metrics.setdefault(point.name, {
                "name": point.name,
                "unit": point.unit,
                "description": point.description,
                "gauge": {"dataPoints": []},
            })
            metric["gauge"]["dataPoints"].append({
                "asDouble": point.value,
                "timeUnixNano": timestamp_ns,
                "attributes": [
                    {"key": key, "value": {"stringValue": str(value)}}
                    for key, value in sorted(point.attributes.items())
                ],
            })

        return {
            "resourceMetrics": [
                {
                    "resource": {
                        "attributes": [
                            {"key": "service.name", "value": {"stringValue": settings.app_name}},
                            {"key": "service.version", "value": {"stringValue": settings.app_version}},
                            {"key": "deployment.environment", "value": {"stringValue": settings.environment}},
                        ]
                    },
                    "scopeMetrics": [{"metrics": list(metrics.values())}]
                }
            ]
        }

    async def export_gauges(self, points: List[GaugePoint]) -> bool:
        """
        Export gauge points to Grafana.

        Returns:
            True if export succeeded, False otherwise
        """
        if not self._enabled:
            logger.debug("Grafana exporter not enabled - skipping metrics export")
            return False
        if not points:
            return True

        payload = self.build_payload(points, int(time.time() * 1_000_000_000))
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Basic {self._auth_encoded}",
            "X-Grafana-Org-Id": str(self._instance_id)
        }

        try:
            if self._http_client is not None:
                response = await self._http_client.post(self._url, headers=headers, json=payload)
            else:
                async with httpx.AsyncClient(timeout=10.0) as client:
                    response = await client.post(self._url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            logger.error("Error exporting metrics to Grafana", extra={"error": str(e)})
            return False

        if response.status_code in (200, 202):
            logger.info(
                "Metrics exported to Grafana",
                extra={"data_points": len(points), "status_code": response.status_code}
            )
            return True

        logger.warning(
            "Failed to export metrics to Grafana",
            extra={
                "status_code": response.status_code,
                "response": response.text[:500],
                "url": self._url
            }
        )
        return False

