"""
Sentry integration for footybets.

Settlement runs, cache refreshes and API requests report here when SENTRY_DSN
is set; otherwise every helper is a no-op. The cron bearer secret travels in
the Authorization header, so headers, cookies and secret-looking query
parameters are redacted and request bodies are never sent.
"""

import logging
import os
import re
from contextlib import contextmanager
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

logger = logging.getLogger(__name__)

_sentry_initialized = False

REDACTED = "[REDACTED]"
SENSITIVE_HEADERS = frozenset({"authorization", "cookie", "set-cookie", "x-forwarded-for"})
_SECRET_PARAM = re.compile(r"(?i)(token|secret|key|password)=([^&]*)")


def _redact_headers(headers: dict) -> dict:
    return {key: REDACTED if key.lower() in SENSITIVE_HEADERS else value for key, value in headers.items()}


def scrub_sensitive_data(event: dict, hint: dict) -> Optional[dict]:
    """before_send hook: strip credentials and bodies from outgoing events."""
    request = event.get("request")
    if not request:
        return event

    try:
        request["headers"] = _redact_headers(request.get("headers") or {})
        query_string = request.get("query_string")
        if isinstance(query_string, str):
            request["query_string"] = _SECRET_PARAM.sub(rf"\1={REDACTED}", query_string)
        if "data" in request:
            request["data"] = "[SCRUBBED]"
    except Exception as e:
        logger.warning(f"Sentry scrubbing error (continuing): {e}")

    return event


def init_sentry() -> bool:
    """
    Initialize the SDK from SENTRY_DSN, SENTRY_ENVIRONMENT and
    SENTRY_TRACES_SAMPLE_RATE. Returns whether Sentry is active.
    """
    global _sentry_initialized

    if _sentry_initialized:
        return True

    dsn = os.getenv("SENTRY_DSN")
    if not dsn:
        logger.info("Sentry not configured (SENTRY_DSN not set)")
        return False

    environment = os.getenv("SENTRY_ENVIRONMENT", "development")
    traces_sample_rate = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.0"))

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            LoggingIntegration(level=logging.ERROR, event_level=logging.ERROR),
        ],
        traces_sample_rate=traces_sample_rate,
        send_default_pii=False,
        before_send=scrub_sensitive_data,
        ignore_errors=[KeyboardInterrupt, SystemExit],
    )

    _sentry_initialized = True
    logger.info(f"Sentry initialized: env={environment}, traces_sample_rate={traces_sample_rate}")
    return True


def is_sentry_enabled() -> bool:
    return _sentry_initialized


def _tag_scope(scope, job_id: Optional[str], tags: dict) -> None:
    if job_id:
        scope.set_tag("job_id", job_id)
    for key, value in tags.items():
        if value is not None:
            scope.set_tag(key, str(value))


@contextmanager
def sentry_job_context(job_id: str, **tags):
    """
    Tag everything raised inside the block with the job (and e.g. gameweek).

        with sentry_job_context("settlement", gameweek=12):
            await engine.run(12)

    Exceptions are captured and re-raised.
    """
    if not _sentry_initialized:
        yield None
        return

    with sentry_sdk.new_scope() as scope:
        _tag_scope(scope, job_id, tags)
        scope.set_context("job", {"job_id": job_id, **tags})
        try:
            yield scope
        except Exception as e:
            sentry_sdk.capture_exception(e)
            raise


def capture_message(message: str, level: str = "info", **extra) -> None:
    """Report a non-exception event, e.g. a reconciliation fault summary."""
    if not _sentry_initialized:
        return

    with sentry_sdk.new_scope() as scope:
        for key, value in extra.items():
            scope.set_extra(key, value)
        sentry_sdk.capture_message(message, level=level)


def capture_exception(exception: Exception, job_id: Optional[str] = None, phase: Optional[str] = None, **extra) -> None:
    if not _sentry_initialized:
        return

    with sentry_sdk.new_scope() as scope:
        _tag_scope(scope, job_id, {"phase": phase})
        for key, value in extra.items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(exception)
