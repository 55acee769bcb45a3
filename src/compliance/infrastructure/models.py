"""
Compliance Infrastructure Models
=================================

SQLAlchemy ORM models for the report history store.

Reports are stored whole as JSON next to a few indexed columns used for
listing; rows are inserted once and never updated.
"""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database import Base


class ComplianceReportModel(Base):
    """
    Database model for ComplianceReport.

    Maps to the 'compliance_reports' table.
    """
    __tablename__ = "compliance_reports"

    # Insertion order; report ids only order by second
    sequence: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    report_id: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    service_count: Mapped[int] = mapped_column(Integer, nullable=False)
    breached_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    body: Mapped[dict] = mapped_column(JSON, nullable=False)
