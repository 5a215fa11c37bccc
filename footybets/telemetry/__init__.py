"""
Telemetry Module

Provides Prometheus metrics for:
- Settlement runs (status, duration, points, perfect scores, faults)
- Upstream gateway requests (count, latency)
- Match data cache lookups

and optional Sentry error tracking.
"""

from footybets.telemetry.metrics import (
    get_metrics_text,
    record_cache_lookup,
    record_gateway_request,
    record_job_run,
    record_phase_error,
    record_reconciliation_fault,
    record_settlement_run,
)
from footybets.telemetry.sentry import (
    capture_exception,
    capture_message,
    init_sentry,
    sentry_job_context,
)

__all__ = [
    "get_metrics_text",
    "record_cache_lookup",
    "record_gateway_request",
    "record_job_run",
    "record_phase_error",
    "record_reconciliation_fault",
    "record_settlement_run",
    "capture_exception",
    "capture_message",
    "init_sentry",
    "sentry_job_context",
]
