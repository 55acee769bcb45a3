"""
Tests for Slack, Grafana and scheduler integrations.
"""

import json
from datetime import timedelta
from unittest.mock import AsyncMock

import httpx
import pytest

from conftest import GENERATED_AT, THREE_SERVICE_CONFIG, make_window
from src.compliance.application import (
    ComplianceEvaluator,
    ReportBuilder,
    ReportIdGenerator,
    load_projects,
)
from src.compliance.domain import TimeRange
from src.compliance.infrastructure import ComplianceScheduler, GrafanaReportPublisher, SlackNotifier
from src.compliance.infrastructure.external import CircuitBreaker, CircuitState
from src.shared.infrastructure.grafana import GrafanaOTLPExporter


def build_report(storage_failed=0):
    projects = load_projects(THREE_SERVICE_CONFIG)
    hello, assets, analytics = projects[0].services
    evaluator = ComplianceEvaluator()
    results = [
        evaluator.evaluate(hello, make_window(100000, 30)),
        evaluator.evaluate(assets, make_window(1000, storage_failed)),
        evaluator.evaluate(analytics, make_window(0, 0)),
    ]
    time_range = TimeRange(start=GENERATED_AT - timedelta(hours=720), end=GENERATED_AT)
    return ReportBuilder(evaluator, ReportIdGenerator()).build(projects, results, GENERATED_AT, time_range)


@pytest.fixture
def slack_settings(test_settings):
    return test_settings.model_copy(update={"slack_webhook_url": "https://hooks.slack.test/services/T/B/X"})


class TestSlackNotifier:
    """Tests for SlackNotifier"""

    @pytest.mark.asyncio
    async def test_posts_breached_report(self, slack_settings):
        posted = []

        def handler(request):
            posted.append(json.loads(request.content))
            return httpx.Response(200, text="ok")

        notifier = SlackNotifier(slack_settings, httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        await notifier.publish(build_report(storage_failed=5))

        assert len(posted) == 1
        text = json.dumps(posted[0])
        assert "acme-prod/acme-assets" in text
        assert posted[0]["channel"] == slack_settings.slack_channel

    @pytest.mark.asyncio
    async def test_skips_report_without_breach(self, slack_settings):
        handler = AsyncMock()
        notifier = SlackNotifier(slack_settings, httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        await notifier.publish(build_report(storage_failed=0))

        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_skips_without_webhook(self, test_settings):
        notifier = SlackNotifier(test_settings)

        assert await notifier.send(build_report(storage_failed=5)) is False

    @pytest.mark.asyncio
    async def test_retries_then_gives_up(self, slack_settings):
        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(500)

        sleep = AsyncMock()
        notifier = SlackNotifier(
            slack_settings, httpx.AsyncClient(transport=httpx.MockTransport(handler)), sleep=sleep
        )

        assert await notifier.send(build_report(storage_failed=5), max_retries=3) is False
        assert len(attempts) == 3
        assert [call.args[0] for call in sleep.await_args_list] == [1, 2]


class TestCircuitBreaker:
    """Tests for CircuitBreaker"""

    def test_opens_after_threshold_and_recovers(self):
        now = [0.0]
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=30, clock=lambda: now[0])

        breaker.record_failure()
        assert breaker.allow_request()
        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        assert not breaker.allow_request()

        now[0] = 31.0
        assert breaker.state == CircuitState.HALF_OPEN
        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED


class TestGrafanaReportPublisher:
    """Tests for GrafanaReportPublisher and the OTLP payload"""

    def test_points_per_service_and_verdict(self):
        publisher = GrafanaReportPublisher(GrafanaOTLPExporter(host="", api_key="", instance_id=""))

        points = publisher.build_points(build_report(storage_failed=5))

        percentages = [p for p in points if p.name == "sla_compliance_percentage"]
        assert {p.attributes["service"] for p in percentages} == {"hello", "acme-assets"}
        by_verdict = {p.attributes["verdict"]: p.value for p in points if p.name == "sla_services_by_verdict"}
        assert by_verdict == {"COMPLIANT": 1.0, "BREACHED": 1.0, "UNDETERMINED": 1.0}
        breached = [p for p in points if p.name == "sla_report_breached"]
        assert breached[0].value == 1.0

    @pytest.mark.asyncio
    async def test_exports_payload(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200)

        exporter = GrafanaOTLPExporter(
            host="https://otlp.grafana.test",
            api_key="key",
            instance_id="123",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        await GrafanaReportPublisher(exporter).publish(build_report())

        assert requests[0].url == "https://otlp.grafana.test/otlp/v1/metrics"
        assert requests[0].headers["Authorization"].startswith("Basic ")
        payload = json.loads(requests[0].content)
        names = {m["name"] for m in payload["resourceMetrics"][0]["scopeMetrics"][0]["metrics"]}
        assert "sla_compliance_margin" in names

    @pytest.mark.asyncio
    async def test_disabled_exporter_skipped(self):
        exporter = GrafanaOTLPExporter(host="", api_key="", instance_id="")
        exporter.export_gauges = AsyncMock()

        await GrafanaReportPublisher(exporter).publish(build_report())

        exporter.export_gauges.assert_not_called()


class TestComplianceScheduler:
    """Tests for ComplianceScheduler"""

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        scheduler = ComplianceScheduler(interval_seconds=3600)
        job = AsyncMock()

        await scheduler.start(job)
        assert scheduler.is_running

        await scheduler.stop()
        assert not scheduler.is_running
