"""
Service Descriptor Store
=========================

Read-only view of one monitoring configuration.

A store is built from a configuration document at the start of a cycle and
dropped at its end. There is no reload or mutation API: a new configuration
means a new store, so concurrent cycles never observe each other's changes.
"""

import json
from collections.abc import Mapping
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Tuple, Union

import yaml
from pydantic import ValidationError

from src.compliance.domain import (
    ComplianceCalculator,
    MonitoringConfig,
    Project,
    Service,
)
from src.core import ConfigError, ResourceNotFoundException

ConfigSource = Union[Mapping, str, bytes, Path, MonitoringConfig]


def parse_document(source: ConfigSource) -> MonitoringConfig:
    """
    Validate a configuration document.

    Accepts an already-parsed mapping, JSON text, or a path to a
    ``.json`` / ``.yaml`` / ``.yml`` file.

    Raises:
        ConfigError: If the document cannot be read or does not match the schema
    """
    if isinstance(source, MonitoringConfig):
        return source

    data = _read_source(source)
    if not isinstance(data, Mapping):
        raise ConfigError("Configuration document must be a JSON object")

    try:
        return MonitoringConfig.model_validate(data)
    except ValidationError as e:
        errors = [
            {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
            for err in e.errors()
        ]
        raise ConfigError("Invalid monitoring configuration", {"errors": errors}) from e


def _read_source(source: ConfigSource) -> Any:
    if isinstance(source, Mapping):
        return source

    if isinstance(source, Path):
        try:
            text = source.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read configuration file {source}: {e}") from e
        if source.suffix.lower() in (".yaml", ".yml"):
            try:
                return yaml.safe_load(text)
            except yaml.YAMLError as e:
                raise ConfigError(f"Configuration file {source} is not valid YAML") from e
        source = text

    if isinstance(source, (str, bytes)):
        try:
            return json.loads(source, parse_float=Decimal)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ConfigError("Configuration document is not valid JSON") from e

    raise ConfigError(f"Unsupported configuration source: {type(source).__name__}")


def load_projects(source: ConfigSource, precision: int = 4) -> List[Project]:
    """Parse a configuration document into domain projects, in document order."""
    document = parse_document(source)
    projects = []
    for project in document.projects:
        try:
            services = tuple(
                Service(
                    project_id=project.id,
                    name=service.name,
                    type=service.type,
                    threshold=ComplianceCalculator.quantize(service.threshold, precision),
                )
                for service in project.services
            )
        except ValueError as e:
            raise ConfigError(f"Invalid service in project '{project.id}': {e}") from e
        projects.append(Project(id=project.id, services=services))
    return projects


class ServiceDescriptorStore:
    """Projects and services of one configuration, indexed for lookup."""

    def __init__(self, projects: List[Project]):
        if not projects:
            raise ConfigError("Monitoring configuration has no projects")
        self._projects: Tuple[Project, ...] = tuple(projects)
        self._index: Dict[Tuple[str, str], Service] = {}
        for project in self._projects:
            for service in project.services:
                self._index[service.key] = service

    @classmethod
    def load(cls, source: ConfigSource, precision: int = 4) -> "ServiceDescriptorStore":
        return cls(load_projects(source, precision))

    @property
    def projects(self) -> Tuple[Project, ...]:
        return self._projects

    @property
    def services(self) -> Tuple[Service, ...]:
        """All services in configuration order."""
        return tuple(service for project in self._projects for service in project.services)

    def lookup(self, project_id: str, service_name: str) -> Service:
        """
        Find a configured service.

        Raises:
            ResourceNotFoundException: If the project has no such service
        """
        service = self._index.get((project_id, service_name))
        if service is None:
            raise ResourceNotFoundException("Service", f"{project_id}/{service_name}")
        return service

    def __len__(self) -> int:
        return len(self._index)
