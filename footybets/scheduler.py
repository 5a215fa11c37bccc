"""Background scheduler for the periodic settlement run."""

import logging
import os
import time
from datetime import datetime, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from footybets.config import get_settings
from footybets.errors import ReconciliationFault, SettlementPhaseError
from footybets.state import get_settlement_engine
from footybets.telemetry import capture_exception, record_job_run, sentry_job_context

logger = logging.getLogger(__name__)

_scheduler_started = False
scheduler = AsyncIOScheduler()


async def settlement_job() -> None:
    """
    One settlement tick.

    Phase errors and reconciliation faults are already alerted and reported by
    the engine; here they only mark the job run as failed. The next tick heals
    whatever the failed one left behind.
    """
    start_time = time.time()
    engine = get_settlement_engine()

    with sentry_job_context("settlement"):
        try:
            report = await engine.run()
        except SettlementPhaseError as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(f"[SCHEDULER] Settlement failed in phase {e.phase}: {e.cause}")
            record_job_run(job="settlement", status="error", duration_ms=duration_ms)
            return
        except ReconciliationFault as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(f"[SCHEDULER] Settlement finished with reconciliation fault: {e}")
            record_job_run(job="settlement", status="error", duration_ms=duration_ms)
            return
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(f"[SCHEDULER] Settlement job crashed: {e}", exc_info=True)
            capture_exception(e, job_id="settlement")
            record_job_run(job="settlement", status="error", duration_ms=duration_ms)
            return

    duration_ms = (time.time() - start_time) * 1000
    record_job_run(job="settlement", status="ok", duration_ms=duration_ms)
    logger.info(
        f"[SCHEDULER] Settlement ok: {len(report.match_updates)} matches updated, "
        f"completed={report.completed_gameweeks}, initialized={report.initialized_gameweek}"
    )


def start_scheduler() -> None:
    """
    Start the background scheduler.

    Uses a module-level flag to prevent duplicate scheduler instances
    when running with --reload or multiple workers.
    """
    global _scheduler_started

    settings = get_settings()
    if not settings.SCHEDULER_ENABLED:
        logger.info("[SCHEDULER] Disabled via SCHEDULER_ENABLED=false")
        return

    if _scheduler_started:
        logger.warning("Scheduler already started, skipping duplicate initialization")
        return

    # Uvicorn sets this env var in the reloader subprocess
    if os.environ.get("UVICORN_RELOADED"):
        logger.info("Skipping scheduler in reload subprocess")
        return

    # Settlement: every N minutes. A single run at a time; missed ticks collapse
    # into one. Overlap with the HTTP cron entry point is still safe.
    scheduler.add_job(
        settlement_job,
        trigger=IntervalTrigger(minutes=settings.SETTLEMENT_INTERVAL_MINUTES),
        id="settlement",
        name=f"Gameweek Settlement (every {settings.SETTLEMENT_INTERVAL_MINUTES}min)",
        replace_existing=True,
        next_run_time=datetime.utcnow() + timedelta(seconds=30),
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    _scheduler_started = True
    logger.info(
        f"Scheduler started:\n"
        f"  - Gameweek settlement: every {settings.SETTLEMENT_INTERVAL_MINUTES} min"
    )


def stop_scheduler() -> None:
    """Stop the background scheduler."""
    global _scheduler_started
    if scheduler.running:
        scheduler.shutdown()
        _scheduler_started = False
        logger.info("Scheduler stopped")
