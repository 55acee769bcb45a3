"""
Infrastructure Layer
=====================

Low-level technical concerns:
- Logging setup
- Grafana OTLP metrics export
"""
