"""
Tests for assembling evaluation results into reports.
"""

import re
from datetime import timedelta

import pytest

from conftest import GENERATED_AT, THREE_SERVICE_CONFIG, make_window
from src.compliance.application import (
    ComplianceEvaluator,
    ReportBuilder,
    ReportIdGenerator,
    load_projects,
)
from src.compliance.domain import EvaluationResult, TimeRange
from src.config import ReportStatus, UndeterminedReason, Verdict


@pytest.fixture
def projects():
    return load_projects(THREE_SERVICE_CONFIG)


@pytest.fixture
def services(projects):
    return {service.name: service for service in projects[0].services}


@pytest.fixture
def builder():
    return ReportBuilder(ComplianceEvaluator(), ReportIdGenerator())


@pytest.fixture
def window_range():
    return TimeRange(start=GENERATED_AT - timedelta(hours=720), end=GENERATED_AT)


class TestBuild:
    """Tests for ReportBuilder.build"""

    def test_one_entry_per_service_in_config_order(self, builder, projects, services, window_range):
        evaluator = ComplianceEvaluator()
        results = [
            evaluator.evaluate(services["acme-analytics"], make_window(200, 0)),
            evaluator.evaluate(services["hello"], make_window(100000, 30)),
            evaluator.evaluate(services["acme-assets"], make_window(1000, 0)),
        ]

        report = builder.build(projects, results, GENERATED_AT, window_range)

        assert [r.service.name for r in report.results] == ["hello", "acme-assets", "acme-analytics"]
        assert report.status == ReportStatus.COMPLIANT
        assert report.projects[0].verdict == Verdict.COMPLIANT
        assert report.projects[0].service_count == 3

    def test_missing_results_filled_as_undetermined(self, builder, projects, services, window_range):
        results = [ComplianceEvaluator().evaluate(services["hello"], make_window(100, 0))]

        report = builder.build(
            projects, results, GENERATED_AT, window_range,
            missing_reason=UndeterminedReason.DEADLINE_EXCEEDED,
        )

        assert len(report.results) == 3
        missing = [r for r in report.results if r.verdict == Verdict.UNDETERMINED]
        assert {r.service.name for r in missing} == {"acme-assets", "acme-analytics"}
        assert all(r.reason == UndeterminedReason.DEADLINE_EXCEEDED for r in missing)
        assert report.status == ReportStatus.DEGRADED
        assert report.projects[0].verdict == Verdict.UNDETERMINED

    def test_breaches_summarized(self, builder, projects, services, window_range):
        evaluator = ComplianceEvaluator()
        results = [
            evaluator.evaluate(services["hello"], make_window(1000, 10)),
            evaluator.evaluate(services["acme-assets"], make_window(1000, 2)),
            EvaluationResult.undetermined(services["acme-analytics"], UndeterminedReason.NO_DATA),
        ]

        report = builder.build(projects, results, GENERATED_AT, window_range)
        body = report.to_dict()

        assert report.status == ReportStatus.BREACHED
        assert body["summary"]["counts"] == {"COMPLIANT": 0, "BREACHED": 2, "UNDETERMINED": 1}
        assert [b["service"] for b in body["summary"]["breaches"]] == ["hello", "acme-assets"]
        assert body["projects"] == [{"project_id": "acme-prod", "status": "BREACHED", "service_count": 3}]

    def test_unknown_service_rejected(self, builder, projects, window_range):
        other = load_projects({
            "projects": [{
                "id": "other",
                "services": [{"name": "x", "type": "gcs_bucket", "threshold": 99}]
            }]
        })[0].services[0]

        with pytest.raises(ValueError):
            builder.build(
                projects,
                [EvaluationResult.undetermined(other, UndeterminedReason.NO_DATA)],
                GENERATED_AT,
                window_range,
            )

    def test_duplicate_result_rejected(self, builder, projects, services, window_range):
        result = EvaluationResult.undetermined(services["hello"], UndeterminedReason.NO_DATA)

        with pytest.raises(ValueError):
            builder.build(projects, [result, result], GENERATED_AT, window_range)

    def test_same_inputs_same_report_apart_from_id(self, builder, projects, services, window_range):
        results = [ComplianceEvaluator().evaluate(services["hello"], make_window(100000, 30))]

        first = builder.build(projects, results, GENERATED_AT, window_range).to_dict()
        second = builder.build(projects, results, GENERATED_AT, window_range).to_dict()

        assert first.pop("report_id") != second.pop("report_id")
        assert first == second

    def test_serialized_window_and_timestamp(self, builder, projects, window_range):
        body = builder.build(projects, [], GENERATED_AT, window_range).to_dict()

        assert body["generated_at"] == "2023-11-14T22:13:20Z"
        assert body["window"] == {"start": "2023-10-15T22:13:20Z", "end": "2023-11-14T22:13:20Z"}


class TestReportIdGenerator:
    """Tests for ReportIdGenerator"""

    def test_format(self):
        report_id = ReportIdGenerator().next_id(GENERATED_AT)

        assert re.fullmatch(r"\d+-\d+", report_id)
        assert report_id == "1700000000-1"

    def test_unique_within_same_second(self):
        generator = ReportIdGenerator()

        ids = {generator.next_id(GENERATED_AT) for _ in range(100)}

        assert len(ids) == 100

    def test_seeded_counter_starts_at_random_point(self):
        generator = ReportIdGenerator.seeded(randbelow=lambda n: 41)

        assert generator.next_id(GENERATED_AT) == "1700000000-42"
        assert generator.next_id(GENERATED_AT) == "1700000000-43"

    def test_seeded_generators_do_not_share_counters(self):
        seeds = iter([0, 500_000_000])
        first = ReportIdGenerator.seeded(randbelow=lambda n: next(seeds))
        second = ReportIdGenerator.seeded(randbelow=lambda n: next(seeds))

        assert first.next_id(GENERATED_AT) != second.next_id(GENERATED_AT)

    def test_seeded_from_secrets_by_default(self):
        ids = [ReportIdGenerator.seeded().next_id(GENERATED_AT) for _ in range(3)]

        assert all(re.fullmatch(r"1700000000-\d+", report_id) for report_id in ids)
        assert len(set(ids)) > 1
