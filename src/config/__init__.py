"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="sla-compliance-reporter", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port", ge=1, le=65535)

    # ========== Evaluation Cycle ==========
    report_window_hours: int = Field(
        default=720,
        description="Length of the compliance window ending at generation time",
        ge=1
    )
    cycle_deadline_seconds: float = Field(
        default=60.0,
        description="Deadline for a whole evaluation cycle",
        gt=0
    )
    service_timeout_seconds: float = Field(
        default=20.0,
        description="Timeout for a single metrics fetch attempt",
        gt=0
    )
    fetch_max_attempts: int = Field(
        default=3,
        description="Attempts per service for transient upstream failures",
        ge=1,
        le=5
    )
    fetch_backoff_seconds: float = Field(
        default=0.5,
        description="Base delay for exponential backoff between attempts",
        ge=0
    )
    max_concurrent_fetches: int = Field(
        default=8,
        description="Maximum metrics fetches running at once within a cycle",
        ge=1
    )
    min_store_seconds: float = Field(
        default=0.5,
        description="Time allowed for storing a report when the deadline is nearly spent",
        gt=0
    )
    shutdown_drain_seconds: float = Field(
        default=30.0,
        description="Time allowed at shutdown for reports still being published",
        ge=0
    )
    percentage_precision: int = Field(
        default=4,
        description="Decimal places used for percentages and thresholds",
        ge=0,
        le=10
    )

    # ========== Google Cloud APIs ==========
    gcp_access_token: Optional[str] = Field(
        default=None,
        description="Pre-issued OAuth access token; metadata server is used when unset"
    )
    metadata_token_url: str = Field(
        default="http://metadata.google.internal/computeMetadata/v1/instance/service-accounts/default/token",
        description="Metadata server token endpoint"
    )
    monitoring_api_url: str = Field(
        default="https://monitoring.googleapis.com/v3",
        description="Cloud Monitoring API base URL"
    )
    bigquery_api_url: str = Field(
        default="https://bigquery.googleapis.com/bigquery/v2",
        description="BigQuery API base URL"
    )
    bigquery_region: str = Field(
        default="region-us",
        description="Region qualifier for INFORMATION_SCHEMA job queries"
    )

    # ========== Report Store ==========
    database_url: Optional[str] = Field(
        default=None,
        description="Async SQLAlchemy URL for report history; in-memory store when unset"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)
    report_history_limit: int = Field(
        default=100,
        description="Reports kept by the in-memory store",
        ge=1
    )

    # ========== In-process Schedule ==========
    monitoring_config_path: Optional[Path] = Field(
        default=None,
        description="Path to JSON/YAML monitoring configuration for scheduled runs"
    )
    schedule_interval_seconds: int = Field(
        default=0,
        description="Seconds between scheduled cycles (0 disables the scheduler)",
        ge=0
    )

    # ========== Slack Integration ==========
    slack_webhook_url: Optional[str] = Field(
        default=None,
        description="Slack webhook URL for breach notifications"
    )
    slack_channel: str = Field(
        default="#sla-compliance",
        description="Slack channel for breach notifications"
    )
    slack_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for Slack API calls",
        ge=0.1,
        le=30
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    # ========== Grafana OTLP Metrics ==========
    grafana_host: Optional[str] = Field(
        default=None,
        description="Grafana OTLP gateway URL (e.g., https://otlp-gateway-prod-us-central-0.grafana.net)"
    )
    grafana_api_key: Optional[str] = Field(
        default=None,
        description="Grafana API key for OTLP authentication"
    )
    grafana_instance_id: Optional[str] = Field(
        default=None,
        description="Grafana instance ID for OTLP authentication"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v.upper()


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class ServiceType(str, Enum):
    """Monitored resource types, valued by their configuration tag."""
    COMPUTE_REVISION = "cloud_run_revision"
    STORAGE_BUCKET = "gcs_bucket"
    QUERY_PROJECT = "bigquery_project"


class Verdict(str, Enum):
    """Per-service compliance classification."""
    COMPLIANT = "COMPLIANT"
    BREACHED = "BREACHED"
    UNDETERMINED = "UNDETERMINED"


class ReportStatus(str, Enum):
    """Overall report status."""
    COMPLIANT = "COMPLIANT"
    DEGRADED = "DEGRADED"
    BREACHED = "BREACHED"


class UndeterminedReason(str, Enum):
    """Why a service could not be classified."""
    NO_DATA = "no_data"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    INVALID_SERVICE_REFERENCE = "invalid_service_reference"
    DEADLINE_EXCEEDED = "deadline_exceeded"


class CycleState(str, Enum):
    """Lifecycle of one trigger invocation."""
    RECEIVED = "received"
    VALIDATING = "validating"
    EVALUATING = "evaluating"
    BUILDING = "building"
    RESPONDING = "responding"
    FAILED = "failed"


# Worst first; used to rank verdicts when aggregating a project.
VERDICT_SEVERITY = {
    Verdict.BREACHED: 2,
    Verdict.UNDETERMINED: 1,
    Verdict.COMPLIANT: 0,
}
