"""
Compliance Reporting Module
===========================

Bounded Context for request-based SLA compliance of Google Cloud services.

Responsibilities:
- Parse and validate the monitoring configuration (projects, services, thresholds)
- Collect request/failure counts per service from Cloud Monitoring and BigQuery
- Reduce each service's window to a percentage and a verdict
- Aggregate verdicts into one report per evaluation cycle
- Keep report history and publish breaches to Slack and Grafana
"""

__version__ = "1.0.0"
