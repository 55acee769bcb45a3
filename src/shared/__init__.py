"""
Shared Kernel Module
====================

Generic infrastructure used by the compliance bounded context:
structured logging, the Grafana OTLP exporter and API middleware.

DO NOT add compliance business logic to the shared kernel.
"""

__version__ = "1.0.0"
