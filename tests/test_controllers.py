"""
Tests for the compliance HTTP API.

The app is built with fake adapters and driven through httpx.ASGITransport.
"""

import json

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from conftest import GENERATED_AT, HANG, HELLO_CONFIG, THREE_SERVICE_CONFIG, FakeMetricsAdapter
from src.compliance.application import ComplianceCycleService, MetricsAdapterRegistry
from src.compliance.infrastructure import InMemoryReportRepository
from src.config import ServiceType
from src.main import create_app


def build_app(app_settings, run=None, storage=None, bigquery=None):
    registry = MetricsAdapterRegistry([
        FakeMetricsAdapter(ServiceType.COMPUTE_REVISION, run or {"hello": (100000, 30)}),
        FakeMetricsAdapter(ServiceType.STORAGE_BUCKET, storage or {"acme-assets": (1000, 0)}),
        FakeMetricsAdapter(ServiceType.QUERY_PROJECT, bigquery or {"acme-analytics": (100, 0)}),
    ])
    repository = InMemoryReportRepository()
    cycle_service = ComplianceCycleService(
        registry,
        report_repository=repository,
        app_settings=app_settings,
        clock=lambda: GENERATED_AT,
    )
    return create_app(app_settings, cycle_service=cycle_service, report_repository=repository)


@pytest.fixture
def app(test_settings):
    return build_app(test_settings)


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


class TestCreateComplianceReport:
    """Tests for POST /v1/compliance_report"""

    @pytest.mark.asyncio
    async def test_returns_report(self, client):
        response = await client.post("/v1/compliance_report", json=HELLO_CONFIG)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "COMPLIANT"
        assert body["results"][0]["service"] == "hello"
        assert body["results"][0]["percentage"] == pytest.approx(99.97)
        assert body["results"][0]["margin"] == pytest.approx(0.02)
        assert body["results"][0]["verdict"] == "COMPLIANT"
        assert body["summary"]["total_services"] == 1

    @pytest.mark.asyncio
    async def test_correlation_id_echoed(self, client):
        response = await client.post(
            "/v1/compliance_report", json=HELLO_CONFIG, headers={"X-Correlation-ID": "sched-42"}
        )

        assert response.headers["X-Correlation-ID"] == "sched-42"

    @pytest.mark.asyncio
    async def test_degraded_report_still_200(self, test_settings):
        app = build_app(test_settings, storage={"acme-assets": (0, 0)})

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.post("/v1/compliance_report", json=THREE_SERVICE_CONFIG)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "DEGRADED"
        assert body["results"][1]["reason"] == "no_data"
        assert body["results"][1]["percentage"] is None

    @pytest.mark.asyncio
    async def test_invalid_config_is_400(self, client):
        config = {"projects": [{"id": "acme-prod", "services": [{"name": "hello", "type": "nope", "threshold": 99}]}]}

        response = await client.post("/v1/compliance_report", json=config)

        assert response.status_code == 400
        body = response.json()
        assert body["errors"]
        assert "results" not in body

    @pytest.mark.asyncio
    async def test_non_json_body_is_400(self, client):
        response = await client.post(
            "/v1/compliance_report", content=b"projects: []", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    @pytest.mark.parametrize("headers", [{"Content-Type": "text/plain"}, {}])
    async def test_non_json_content_type_is_415(self, client, headers):
        response = await client.post(
            "/v1/compliance_report", content=json.dumps(HELLO_CONFIG).encode(), headers=headers
        )

        assert response.status_code == 415
        assert "application/json" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_json_content_type_with_charset_accepted(self, client):
        response = await client.post(
            "/v1/compliance_report",
            content=json.dumps(HELLO_CONFIG).encode(),
            headers={"Content-Type": "application/json; charset=utf-8"},
        )

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_get_not_allowed(self, client):
        response = await client.get("/v1/compliance_report")

        assert response.status_code == 405

    @pytest.mark.asyncio
    async def test_deadline_with_no_results_is_504(self, test_settings):
        app_settings = test_settings.model_copy(update={"cycle_deadline_seconds": 0.2})
        app = build_app(app_settings, run={"hello": HANG})

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.post("/v1/compliance_report", json=HELLO_CONFIG)

        assert response.status_code == 504


class TestReportHistory:
    """Tests for GET /v1/compliance_report/{id} and GET /v1/compliance_reports"""

    @pytest.mark.asyncio
    async def test_get_stored_report(self, client):
        created = (await client.post("/v1/compliance_report", json=HELLO_CONFIG)).json()

        response = await client.get(f"/v1/compliance_report/{created['report_id']}")

        assert response.status_code == 200
        assert response.json() == created

    @pytest.mark.asyncio
    async def test_unknown_report_is_404(self, client):
        response = await client.get("/v1/compliance_report/0-0")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_list_newest_first(self, client):
        first = (await client.post("/v1/compliance_report", json=HELLO_CONFIG)).json()
        second = (await client.post("/v1/compliance_report", json=THREE_SERVICE_CONFIG)).json()

        response = await client.get("/v1/compliance_reports", params={"limit": 10})

        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 2
        assert [r["report_id"] for r in body["reports"]] == [second["report_id"], first["report_id"]]


class TestHealth:
    """Tests for GET /health and GET /"""

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["checks"] == {
            "report_store": "InMemoryReportRepository",
            "scheduler": "disabled",
        }

    @pytest.mark.asyncio
    async def test_root(self, client):
        response = await client.get("/")

        assert response.status_code == 200
        assert response.json()["docs"] == "/docs"
