"""
Compliance Infrastructure Repositories
=======================================

Append-only report history stores.

- InMemoryReportRepository: bounded, process-local history (default)
- SQLAlchemyReportRepository: database-backed history when database_url is set
"""

import asyncio
from collections import OrderedDict
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.compliance.application import IReportRepository
from src.compliance.domain import ComplianceReport
from src.compliance.infrastructure.models import ComplianceReportModel
from src.core import RepositoryException


class InMemoryReportRepository(IReportRepository):
    """
    Keeps the most recent reports in memory.

    Oldest reports are evicted once ``max_reports`` is reached.
    """

    def __init__(self, max_reports: int = 100):
        self._max_reports = max_reports
        self._reports: "OrderedDict[str, dict]" = OrderedDict()
        self._lock = asyncio.Lock()

    async def add(self, report: ComplianceReport) -> None:
        async with self._lock:
            if report.report_id in self._reports:
                raise RepositoryException(f"Report {report.report_id} already stored")
            self._reports[report.report_id] = report.to_dict()
            while len(self._reports) > self._max_reports:
                self._reports.popitem(last=False)

    async def get(self, report_id: str) -> Optional[dict]:
        return self._reports.get(report_id)

    async def list_recent(self, limit: int = 20) -> List[dict]:
        return list(reversed(self._reports.values()))[:limit]


class SQLAlchemyReportRepository(IReportRepository):
    """
    SQLAlchemy implementation of the report store.

    Opens a short session per call, since cycles run both inside requests
    and from the scheduler.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def add(self, report: ComplianceReport) -> None:
        body = report.to_dict()
        model = ComplianceReportModel(
            report_id=report.report_id,
            generated_at=report.generated_at,
            status=report.status.value,
            service_count=len(report.results),
            breached_count=len(report.breaches),
            body=body,
        )
        async with self._session_maker() as session:
            try:
                session.add(model)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise RepositoryException(
                    f"Failed to store report {report.report_id}", {"error": str(e)}
                ) from e

    async def get(self, report_id: str) -> Optional[dict]:
        stmt = select(ComplianceReportModel.body).where(ComplianceReportModel.report_id == report_id)
        async with self._session_maker() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def list_recent(self, limit: int = 20) -> List[dict]:
        stmt = (
            select(ComplianceReportModel.body)
            .order_by(ComplianceReportModel.sequence.desc())
            .limit(limit)
        )
        async with self._session_maker() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())
