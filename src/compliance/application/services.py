"""
Compliance Application Services
================================

Application services orchestrate business logic and coordinate between
domain entities, metrics adapters and the report store.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (adapters, repositories), not concrete implementations
"""

import asyncio
import itertools
import secrets
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from src.compliance.application.descriptor_store import ConfigSource, ServiceDescriptorStore
from src.compliance.domain import (
    ComplianceCalculator,
    ComplianceReport,
    EvaluationResult,
    Project,
    ProjectStatus,
    Service,
    SignalWindow,
    TimeRange,
)
from src.config import CycleState, ServiceType, Settings, UndeterminedReason, settings as default_settings
from src.core import (
    ConfigError,
    DeadlineExceeded,
    InvalidServiceReference,
    RepositoryException,
    UpstreamUnavailable,
)
from src.shared.infrastructure.logging import get_context_logger, get_logger

logger = get_logger(__name__)


# ========== Adapter / Repository Interfaces (Dependency Inversion) ==========

class IMetricsAdapter(ABC):
    """
    Collects the raw availability signal of one kind of monitored resource.

    Implementations raise UpstreamUnavailable for transient provider errors
    and InvalidServiceReference when the resource no longer exists.
    """

    service_type: ServiceType

    @abstractmethod
    async def fetch_window(self, service: Service, time_range: TimeRange) -> SignalWindow:
        """Fetch total and failed units for ``service`` over ``time_range``."""


class IReportRepository(ABC):
    """Append-only history of compliance reports."""

    @abstractmethod
    async def add(self, report: ComplianceReport) -> None:
        """Store a new report."""

    @abstractmethod
    async def get(self, report_id: str) -> Optional[dict]:
        """Get a stored report by id."""

    @abstractmethod
    async def list_recent(self, limit: int = 20) -> List[dict]:
        """Most recent reports, newest first."""


class IReportPublisher(ABC):
    """Receives every finished report (notifications, metrics export)."""

    @abstractmethod
    async def publish(self, report: ComplianceReport) -> None:
        """Publish a report."""


class MetricsAdapterRegistry:
    """Metrics adapters keyed by the service type they handle."""

    def __init__(self, adapters: Iterable[IMetricsAdapter] = ()):
        self._adapters: Dict[ServiceType, IMetricsAdapter] = {}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: IMetricsAdapter) -> None:
        self._adapters[adapter.service_type] = adapter
        logger.debug(
            "Metrics adapter registered",
            extra={"service_type": adapter.service_type.value, "adapter": type(adapter).__name__}
        )

    def supports(self, service_type: ServiceType) -> bool:
        return service_type in self._adapters

    def for_service(self, service: Service) -> IMetricsAdapter:
        try:
            return self._adapters[service.type]
        except KeyError:
            raise ConfigError(
                f"No metrics adapter registered for type '{service.type.value}'",
                {"project_id": service.project_id, "service": service.name}
            ) from None

    def ensure_supports(self, services: Iterable[Service]) -> None:
        """Raise ConfigError if any service has no adapter."""
        for service in services:
            self.for_service(service)


# ========== Evaluation ==========

class ComplianceEvaluator:
    """Evaluates services at a fixed precision."""

    def __init__(self, precision: int = 4):
        self.precision = precision

    def evaluate(self, service: Service, window: SignalWindow) -> EvaluationResult:
        return ComplianceCalculator.evaluate(service, window, self.precision)

    def project_status(self, project: Project, results: Sequence[EvaluationResult]) -> ProjectStatus:
        verdict = ComplianceCalculator.worst_verdict(
            r.verdict for r in results if r.service.project_id == project.id
        )
        return ProjectStatus(project_id=project.id, verdict=verdict, service_count=len(project.services))


class ReportIdGenerator:
    """
    Issues ``{unixSeconds}-{counter}`` ids.

    The counter is monotonic, so reports generated within the same second
    still get distinct ids. The default generator is ``seeded()`` so
    replicas sharing one SQL store start their counters far apart.
    """

    SEED_RANGE = 10 ** 9

    def __init__(self, start: int = 1):
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    @classmethod
    def seeded(cls, randbelow: Callable[[int], int] = secrets.randbelow) -> "ReportIdGenerator":
        """Generator whose counter starts at a random point."""
        return cls(start=randbelow(cls.SEED_RANGE) + 1)

    def next_id(self, generated_at: datetime) -> str:
        with self._lock:
            sequence = next(self._counter)
        return f"{int(generated_at.timestamp())}-{sequence}"


class ReportBuilder:
    """
    Assembles evaluation results into a ComplianceReport.

    Output depends only on its inputs, apart from the counter part of the
    report id.
    """

    def __init__(
        self,
        evaluator: Optional[ComplianceEvaluator] = None,
        id_generator: Optional[ReportIdGenerator] = None
    ):
        self._evaluator = evaluator or ComplianceEvaluator()
        self._id_generator = id_generator or _default_id_generator

    def build(
        self,
        projects: Sequence[Project],
        results: Iterable[EvaluationResult],
        generated_at: datetime,
        time_range: TimeRange,
        missing_reason: UndeterminedReason = UndeterminedReason.NO_DATA,
    ) -> ComplianceReport:
        """
        Build the report for one cycle.

        Every configured service appears exactly once. Services without a
        result are recorded as UNDETERMINED with ``missing_reason``.

        Raises:
            ValueError: If a result names an unconfigured service or a service twice
        """
        configured = {service.key for project in projects for service in project.services}
        by_key: Dict[Tuple[str, str], EvaluationResult] = {}
        for result in results:
            key = result.service.key
            if key not in configured:
                raise ValueError(f"result for unconfigured service {key[0]}/{key[1]}")
            if key in by_key:
                raise ValueError(f"duplicate result for service {key[0]}/{key[1]}")
            by_key[key] = result

        ordered: List[EvaluationResult] = []
        for project in projects:
            for service in project.services:
                result = by_key.get(service.key)
                if result is None:
                    result = EvaluationResult.undetermined(service, missing_reason)
                ordered.append(result)

        project_statuses = tuple(
            self._evaluator.project_status(project, ordered) for project in projects
        )

        return ComplianceReport(
            report_id=self._id_generator.next_id(generated_at),
            generated_at=generated_at,
            time_range=time_range,
            status=ComplianceCalculator.overall_status(ordered),
            results=tuple(ordered),
            projects=project_statuses,
            breaches=ComplianceCalculator.rank_breaches(ordered),
        )


_default_id_generator = ReportIdGenerator.seeded()


# ========== Cycle Orchestration ==========

class EvaluationCycle:
    """
    State of one trigger invocation.

    RECEIVED -> VALIDATING -> EVALUATING -> BUILDING -> RESPONDING, with
    FAILED reachable from the first three.
    """

    _TRANSITIONS = {
        CycleState.RECEIVED: {CycleState.VALIDATING, CycleState.FAILED},
        CycleState.VALIDATING: {CycleState.EVALUATING, CycleState.FAILED},
        CycleState.EVALUATING: {CycleState.BUILDING, CycleState.FAILED},
        CycleState.BUILDING: {CycleState.RESPONDING},
        CycleState.RESPONDING: set(),
        CycleState.FAILED: set(),
    }

    def __init__(self, correlation_id: Optional[str] = None):
        self.cycle_id = str(uuid.uuid4())
        self.correlation_id = correlation_id or self.cycle_id
        self.state = CycleState.RECEIVED
        self.history: List[CycleState] = [CycleState.RECEIVED]
        self.log = get_context_logger(__name__, self.correlation_id)

    def advance(self, state: CycleState) -> None:
        if state not in self._TRANSITIONS[self.state]:
            raise RuntimeError(f"invalid cycle transition {self.state.value} -> {state.value}")
        self.log.debug(
            "Cycle state changed",
            extra={"cycle_id": self.cycle_id, "from_state": self.state.value, "to_state": state.value}
        )
        self.state = state
        self.history.append(state)

    def fail(self, error: Exception) -> None:
        self.advance(CycleState.FAILED)
        self.log.error(
            "Evaluation cycle failed",
            extra={
                "cycle_id": self.cycle_id,
                "error_type": type(error).__name__,
                "error": str(error),
            }
        )


class ComplianceCycleService:
    """
    Runs evaluation cycles: configuration in, ComplianceReport out.

    Each call to ``run`` owns its own store, tasks and results; nothing is
    shared with other cycles running at the same time.
    """

    def __init__(
        self,
        registry: MetricsAdapterRegistry,
        report_repository: Optional[IReportRepository] = None,
        publishers: Sequence[IReportPublisher] = (),
        report_builder: Optional[ReportBuilder] = None,
        app_settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable = asyncio.sleep,
    ):
        self._settings = app_settings or default_settings
        self._registry = registry
        self._report_repo = report_repository
        self._publishers = list(publishers)
        self._evaluator = ComplianceEvaluator(self._settings.percentage_precision)
        self._builder = report_builder or ReportBuilder(self._evaluator)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep
        self._background: Set[asyncio.Task] = set()

    async def run(
        self,
        source: ConfigSource,
        correlation_id: Optional[str] = None,
        cycle: Optional[EvaluationCycle] = None,
    ) -> ComplianceReport:
        """
        Evaluate every configured service and build the report.

        Raises:
            ConfigError: If the configuration is malformed or empty
            DeadlineExceeded: If the deadline elapsed with no usable result
        """
        cycle = cycle or EvaluationCycle(correlation_id)
        loop = asyncio.get_running_loop()
        started = loop.time()

        try:
            cycle.advance(CycleState.VALIDATING)
            store = ServiceDescriptorStore.load(source, self._settings.percentage_precision)
            self._registry.ensure_supports(store.services)
        except ConfigError as e:
            cycle.fail(e)
            raise

        cycle.advance(CycleState.EVALUATING)
        generated_at = self._clock()
        time_range = TimeRange(
            start=generated_at - timedelta(hours=self._settings.report_window_hours),
            end=generated_at,
        )
        cycle.log.info(
            "Evaluation cycle started",
            extra={
                "cycle_id": cycle.cycle_id,
                "projects": len(store.projects),
                "services": len(store),
                "window_start": time_range.start.isoformat(),
                "window_end": time_range.end.isoformat(),
            }
        )

        remaining = self._settings.cycle_deadline_seconds - (loop.time() - started)
        results, pending = await self._evaluate_all(store.services, time_range, remaining, cycle)

        if pending and not any(result.is_usable for result in results):
            error = DeadlineExceeded(self._settings.cycle_deadline_seconds, len(pending))
            cycle.fail(error)
            raise error

        cycle.advance(CycleState.BUILDING)
        report = self._builder.build(
            store.projects,
            results,
            generated_at,
            time_range,
            missing_reason=UndeterminedReason.DEADLINE_EXCEEDED,
        )

        cycle.advance(CycleState.RESPONDING)
        cycle.log.info(
            "Evaluation cycle completed",
            extra={
                "cycle_id": cycle.cycle_id,
                "report_id": report.report_id,
                "status": report.status.value,
                "counts": report.counts(),
                "pending_at_deadline": len(pending),
                "latency_ms": round((loop.time() - started) * 1000, 2),
            }
        )

        remaining = self._settings.cycle_deadline_seconds - (loop.time() - started)
        await self._persist(report, cycle, max(remaining, self._settings.min_store_seconds))
        self._schedule_publication(report, cycle)
        return report

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for reports still being published; used at shutdown."""
        if not self._background:
            return
        logger.info("Waiting for report publication", extra={"pending": len(self._background)})
        _, pending = await asyncio.wait(set(self._background), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("Report publication abandoned at shutdown", extra={"abandoned": len(pending)})

    async def _evaluate_all(
        self,
        services: Sequence[Service],
        time_range: TimeRange,
        timeout: float,
        cycle: EvaluationCycle,
    ) -> Tuple[List[EvaluationResult], List[Service]]:
        """Fan out one task per service; wait for all of them or the deadline."""
        semaphore = asyncio.Semaphore(self._settings.max_concurrent_fetches)
        tasks = {
            asyncio.create_task(self._evaluate_service(service, time_range, semaphore, cycle)): service
            for service in services
        }

        done, still_pending = await asyncio.wait(tasks.keys(), timeout=max(timeout, 0))

        for task in still_pending:
            task.cancel()
        if still_pending:
            await asyncio.gather(*still_pending, return_exceptions=True)

        results = []
        for task in done:
            service = tasks[task]
            error = task.exception()
            if error is not None:
                cycle.log.error(
                    "Unexpected error evaluating service",
                    extra={
                        "project_id": service.project_id,
                        "service": service.name,
                        "error_type": type(error).__name__,
                        "error": str(error),
                    }
                )
                results.append(EvaluationResult.undetermined(
                    service, UndeterminedReason.UPSTREAM_UNAVAILABLE, detail=str(error)
                ))
            else:
                results.append(task.result())

        pending_services = [tasks[task] for task in still_pending]
        for service in pending_services:
            cycle.log.warning(
                "Service still pending at cycle deadline",
                extra={"project_id": service.project_id, "service": service.name}
            )
        return results, pending_services

    async def _evaluate_service(
        self,
        service: Service,
        time_range: TimeRange,
        semaphore: asyncio.Semaphore,
        cycle: EvaluationCycle,
    ) -> EvaluationResult:
        adapter = self._registry.for_service(service)
        context = {"project_id": service.project_id, "service": service.name, "type": service.type.value}

        try:
            window = await self._fetch_with_retry(adapter, service, time_range, semaphore, cycle)
        except InvalidServiceReference as e:
            cycle.log.warning(
                "Monitored resource not found",
                extra={**context, "failure_kind": "permanent", "error": e.message}
            )
            return EvaluationResult.undetermined(
                service, UndeterminedReason.INVALID_SERVICE_REFERENCE, detail=e.message
            )
        except UpstreamUnavailable as e:
            cycle.log.warning(
                "Metrics provider unavailable",
                extra={**context, "failure_kind": "transient", "error": e.message}
            )
            return EvaluationResult.undetermined(
                service, UndeterminedReason.UPSTREAM_UNAVAILABLE, detail=e.message
            )

        result = self._evaluator.evaluate(service, window)
        cycle.log.info(
            "Service evaluated",
            extra={
                **context,
                "verdict": result.verdict.value,
                "percentage": str(result.percentage) if result.percentage is not None else None,
                "total": window.total,
                "failed": window.failed,
            }
        )
        return result

    async def _fetch_with_retry(
        self,
        adapter: IMetricsAdapter,
        service: Service,
        time_range: TimeRange,
        semaphore: asyncio.Semaphore,
        cycle: EvaluationCycle,
    ) -> SignalWindow:
        """Fetch with bounded exponential backoff on transient failures."""
        max_attempts = self._settings.fetch_max_attempts
        last_error: Optional[UpstreamUnavailable] = None

        for attempt in range(1, max_attempts + 1):
            try:
                async with semaphore:
                    return await asyncio.wait_for(
                        adapter.fetch_window(service, time_range),
                        timeout=self._settings.service_timeout_seconds,
                    )
            except asyncio.TimeoutError:
                last_error = UpstreamUnavailable(
                    type(adapter).__name__,
                    f"fetch timed out after {self._settings.service_timeout_seconds}s",
                )
            except UpstreamUnavailable as e:
                if not e.retryable:
                    raise
                last_error = e

            if attempt < max_attempts:
                delay = self._settings.fetch_backoff_seconds * (2 ** (attempt - 1))
                cycle.log.info(
                    "Retrying metrics fetch",
                    extra={
                        "project_id": service.project_id,
                        "service": service.name,
                        "attempt": attempt,
                        "delay_seconds": delay,
                        "error": last_error.message,
                    }
                )
                await self._sleep(delay)

        raise last_error

    async def _persist(self, report: ComplianceReport, cycle: EvaluationCycle, timeout: float) -> None:
        if self._report_repo is None:
            return
        try:
            await asyncio.wait_for(self._report_repo.add(report), timeout=timeout)
        except RepositoryException as e:
            cycle.log.error(
                "Report could not be stored",
                extra={"report_id": report.report_id, "error": e.message, "details": e.details}
            )
        except asyncio.TimeoutError:
            cycle.log.error(
                "Report could not be stored",
                extra={"report_id": report.report_id, "error": f"store timed out after {timeout:.3f}s"}
            )

    def _schedule_publication(self, report: ComplianceReport, cycle: EvaluationCycle) -> None:
        """Publish in the background; the response never waits for publishers."""
        if not self._publishers:
            return
        task = asyncio.create_task(self._publish(report, cycle))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _publish(self, report: ComplianceReport, cycle: EvaluationCycle) -> None:
        for publisher in self._publishers:
            try:
                await publisher.publish(report)
            except Exception as e:
                cycle.log.error(
                    "Report publication failed",
                    extra={
                        "publisher": type(publisher).__name__,
                        "report_id": report.report_id,
                        "error": str(e),
                    }
                )
