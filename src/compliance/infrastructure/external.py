"""
Compliance External Service Integrations
=========================================

External services around the evaluation cycle:
- Slack webhook notifications for breached reports
- Grafana gauges for every report
- APScheduler for in-process scheduled cycles
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from src.compliance.application.services import IReportPublisher
from src.compliance.domain import ComplianceReport
from src.config import ReportStatus, Settings, settings as default_settings
from src.shared.infrastructure.grafana import GaugePoint, GrafanaOTLPExporter
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for a flaky notification endpoint.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if self._clock() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        """Check if request should be allowed."""
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        """Record successful request."""
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        """Record failed request."""
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class SlackNotifier(IReportPublisher):
    """
    Posts a summary of breached reports to a Slack webhook.

    Retries with exponential backoff and stops calling Slack while the
    circuit breaker is open. Compliant and degraded reports are not posted.
    """

    MAX_LISTED_BREACHES = 10

    def __init__(
        self,
        app_settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._settings = app_settings or default_settings
        self._circuit_breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._http_client = http_client
        self._sleep = sleep

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._settings.slack_timeout_seconds)
        return self._http_client

    def build_message(self, report: ComplianceReport) -> Dict[str, Any]:
        """Build Slack Block Kit message."""
        counts = report.counts()
        lines = [
            f"• `{r.service.project_id}/{r.service.name}` "
            f"{r.percentage}% (threshold {r.service.threshold}%, margin {r.margin})"
            for r in report.breaches[:self.MAX_LISTED_BREACHES]
        ]
        hidden = len(report.breaches) - len(lines)
        if hidden > 0:
            lines.append(f"…and {hidden} more")

        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": "SLA Compliance Breach", "emoji": True}
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Report:*\n{report.report_id}"},
                    {"type": "mrkdwn", "text": f"*Status:*\n{report.status.value}"},
                    {"type": "mrkdwn", "text": f"*Breached:*\n{counts['BREACHED']}"},
                    {"type": "mrkdwn", "text": f"*Undetermined:*\n{counts['UNDETERMINED']}"},
                ]
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": "\n".join(lines)}
            },
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": (
                            f"Window: {report.time_range.start.isoformat()} → "
                            f"{report.time_range.end.isoformat()}"
                        )
                    }
                ]
            }
        ]

        return {"channel": self._settings.slack_channel, "blocks": blocks}

    async def publish(self, report: ComplianceReport) -> None:
        if report.status != ReportStatus.BREACHED:
            return
        await self.send(report)

    async def send(self, report: ComplianceReport, max_retries: int = 3) -> bool:
        """
        Send report summary to the Slack webhook.

        Returns:
            True if sent successfully, False otherwise
        """
        if not self._settings.slack_webhook_url:
            logger.debug("Slack webhook URL not configured, skipping notification")
            return False

        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping Slack notification",
                extra={"report_id": report.report_id}
            )
            return False

        message = self.build_message(report)

        for attempt in range(max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._settings.slack_webhook_url, json=message)

                if response.status_code == 200:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Slack notification sent",
                        extra={"report_id": report.report_id, "breaches": len(report.breaches)}
                    )
                    return True

                logger.warning(
                    "Slack webhook returned non-200",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )

            except httpx.HTTPError as e:
                logger.error(
                    "Slack notification failed",
                    extra={"error": str(e), "attempt": attempt + 1, "report_id": report.report_id}
                )

            if attempt < max_retries - 1:
                await self._sleep(2 ** attempt)

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class GrafanaReportPublisher(IReportPublisher):
    """Exports per-service compliance and per-verdict counts as Grafana gauges."""

    def __init__(self, exporter: GrafanaOTLPExporter):
        self._exporter = exporter

    def build_points(self, report: ComplianceReport) -> list:
        points = []
        for result in report.results:
            attributes = {
                "project_id": result.service.project_id,
                "service": result.service.name,
                "type": result.service.type.value,
                "verdict": result.verdict.value,
            }
            if result.percentage is not None:
                points.append(GaugePoint(
                    name="sla_compliance_percentage",
                    value=float(result.percentage),
                    unit="%",
                    description="Observed compliance over the report window",
                    attributes=attributes,
                ))
                points.append(GaugePoint(
                    name="sla_compliance_margin",
                    value=float(result.margin),
                    unit="%",
                    description="Compliance minus threshold",
                    attributes=attributes,
                ))
        for verdict, count in report.counts().items():
            points.append(GaugePoint(
                name="sla_services_by_verdict",
                value=float(count),
                attributes={"verdict": verdict},
            ))
        points.append(GaugePoint(
            name="sla_report_breached",
            value=1.0 if report.status == ReportStatus.BREACHED else 0.0,
            attributes={"status": report.status.value},
        ))
        return points

    async def publish(self, report: ComplianceReport) -> None:
        if not self._exporter.is_enabled():
            return
        await self._exporter.export_gauges(self.build_points(report))


class ComplianceScheduler:
    """
    Wrapper for APScheduler running evaluation cycles in-process.

    Used when no external scheduler posts to the trigger endpoint.
    """

    def __init__(self, interval_seconds: int = 3600):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[Any]]) -> None:
        """Start the scheduler with the given job function."""
        if self._running:
            logger.warning("Compliance scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id="compliance_report",
            name="Compliance Report Job",
            misfire_grace_time=60,
            max_instances=1,
            replace_existing=True
        )

        self._scheduler.start()
        self._running = True

        logger.info(
            "Compliance scheduler started",
            extra={"interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("Compliance scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running
