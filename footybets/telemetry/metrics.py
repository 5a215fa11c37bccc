"""
Prometheus metrics for settlement, gateway and cache telemetry.

Design principles:
- Low cardinality (controlled labels)
- Best-effort (never block main flow)

=============================================================================
CARDINALITY CONTROL
=============================================================================

ALLOWED LABELS (bounded sets):
- status:       "ok", "error", "fault"
- phase:        "schedule_sync", "result_ingestion", "xp_reconciliation",
                "verification", "gameweek_completion", "gameweek_init"
- endpoint:     "fixtures", "bootstrap-static"
- status_code:  "200", "404", "500", "0" (transport failure)
- outcome:      "hit", "miss", "bypass"
- job:          "settlement", "update_cache"

FORBIDDEN AS LABELS:
- fid, match_id, external_id, gameweek number
- team names, URLs, error messages

For debugging specific users/matches use logs, NOT metric labels.
=============================================================================
"""

import logging
import time

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

# =============================================================================
# SETTLEMENT METRICS
# =============================================================================

settlement_runs_total = Counter(
    "settlement_runs_total",
    "Settlement runs by final status",
    ["status"],
)

settlement_run_duration_ms = Histogram(
    "settlement_run_duration_ms",
    "Settlement run duration in milliseconds",
    buckets=[100, 250, 500, 1000, 2500, 5000, 10000, 30000, 60000],
)

settlement_phase_errors_total = Counter(
    "settlement_phase_errors_total",
    "Settlement phase failures",
    ["phase"],
)

settlement_points_awarded_total = Counter(
    "settlement_points_awarded_total",
    "Bets credited with points by result ingestion",
)

settlement_perfect_scores_total = Counter(
    "settlement_perfect_scores_total",
    "New perfect-score awards",
)

settlement_reconciliation_faults_total = Counter(
    "settlement_reconciliation_faults_total",
    "Verification runs that found winning bets without points",
)

# =============================================================================
# GATEWAY METRICS
# =============================================================================

gateway_requests_total = Counter(
    "gateway_requests_total",
    "Requests to the upstream fixtures API",
    ["endpoint", "status_code"],
)

gateway_latency_ms = Histogram(
    "gateway_latency_ms",
    "Upstream request latency in milliseconds",
    ["endpoint"],
    buckets=[10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000],
)

# =============================================================================
# CACHE METRICS
# =============================================================================

match_cache_requests_total = Counter(
    "match_cache_requests_total",
    "Match data cache lookups",
    ["outcome"],
)

# =============================================================================
# JOB METRICS
# =============================================================================

job_runs_total = Counter(
    "job_runs_total",
    "Total job runs by job and status",
    ["job", "status"],
)

job_last_success_timestamp = Gauge(
    "job_last_success_timestamp",
    "Unix timestamp of last successful job run",
    ["job"],
)

job_duration_ms = Histogram(
    "job_duration_ms",
    "Job duration in milliseconds",
    ["job"],
    buckets=[100, 500, 1000, 5000, 10000, 30000, 60000, 120000, 300000],
)


# =============================================================================
# HELPER FUNCTIONS (for instrumentation)
# =============================================================================


def record_gateway_request(endpoint: str, status_code: int, latency_ms: float) -> None:
    """Record an upstream request with its latency."""
    try:
        gateway_requests_total.labels(endpoint=endpoint, status_code=str(status_code)).inc()
        gateway_latency_ms.labels(endpoint=endpoint).observe(latency_ms)
    except Exception as e:
        logger.warning(f"Failed to record gateway request metric: {e}")


def record_cache_lookup(outcome: str) -> None:
    """Record a cache lookup outcome: hit, miss or bypass."""
    try:
        match_cache_requests_total.labels(outcome=outcome).inc()
    except Exception as e:
        logger.warning(f"Failed to record cache metric: {e}")


def record_settlement_run(
    status: str,
    duration_ms: float,
    points_awarded: int = 0,
    perfect_scores: int = 0,
) -> None:
    """
    Record settlement run metrics.

    Args:
        status: "ok", "error" or "fault"
        duration_ms: Run duration in milliseconds
        points_awarded: Bets credited in this run
        perfect_scores: New perfect-score awards in this run
    """
    try:
        settlement_runs_total.labels(status=status).inc()
        if duration_ms > 0:
            settlement_run_duration_ms.observe(duration_ms)
        if points_awarded > 0:
            settlement_points_awarded_total.inc(points_awarded)
        if perfect_scores > 0:
            settlement_perfect_scores_total.inc(perfect_scores)
    except Exception as e:
        logger.warning(f"Failed to record settlement run metric: {e}")


def record_phase_error(phase: str) -> None:
    """Record a settlement phase failure."""
    try:
        settlement_phase_errors_total.labels(phase=phase).inc()
    except Exception as e:
        logger.warning(f"Failed to record phase error metric: {e}")


def record_reconciliation_fault() -> None:
    try:
        settlement_reconciliation_faults_total.inc()
    except Exception as e:
        logger.warning(f"Failed to record reconciliation fault metric: {e}")


def record_job_run(job: str, status: str, duration_ms: float) -> None:
    """
    Record a job run with status and duration.

    Args:
        job: Job identifier (settlement, update_cache)
        status: "ok" or "error"
        duration_ms: Job duration in milliseconds
    """
    try:
        job_runs_total.labels(job=job, status=status).inc()
        if duration_ms > 0:
            job_duration_ms.labels(job=job).observe(duration_ms)
        if status == "ok":
            job_last_success_timestamp.labels(job=job).set(time.time())
    except Exception as e:
        logger.warning(f"Failed to record job run metric: {e}")


def get_metrics_text() -> tuple[str, str]:
    """
    Generate Prometheus metrics text output.

    Returns:
        Tuple of (content, content_type)
    """
    return generate_latest(REGISTRY).decode("utf-8"), CONTENT_TYPE_LATEST
