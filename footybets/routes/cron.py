"""Cron endpoints: settlement run and match cache refresh.

Auth: Authorization: Bearer <CRON_SECRET> on every endpoint (401 otherwise).
Both endpoints are safe to call repeatedly or concurrently with the
in-process scheduler; every settlement write is conditional.
"""

import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from footybets.alerting import AlertType, Notifier
from footybets.cache import MatchCache
from footybets.database import get_async_session
from footybets.errors import ReconciliationFault, SettlementPhaseError
from footybets.etl.base import DataProvider
from footybets.match_data import update_cache
from footybets.security import verify_cron_secret
from footybets.settlement import SettlementEngine
from footybets.settlement.report import format_phase_error
from footybets.state import get_gateway, get_match_cache, get_notifier, get_settlement_engine
from footybets.telemetry import capture_exception, record_job_run

router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(verify_cron_secret)])

logger = logging.getLogger(__name__)


@router.get("/settle")
async def settle(
    gameweek: Optional[int] = Query(None, ge=1, description="Schedule-sync this gameweek instead of the current one"),
    engine: SettlementEngine = Depends(get_settlement_engine),
):
    """Run one settlement pass. 200 with the run report, 500 on phase error or reconciliation fault."""
    start_time = time.time()
    try:
        report = await engine.run(gameweek=gameweek)
    except SettlementPhaseError as e:
        record_job_run(job="settlement_http", status="error", duration_ms=(time.time() - start_time) * 1000)
        return JSONResponse(
            status_code=500,
            content={
                "status": "error",
                "phase": e.phase,
                "error": str(e),
                "report": e.report.to_dict() if e.report else None,
            },
        )
    except ReconciliationFault as e:
        record_job_run(job="settlement_http", status="error", duration_ms=(time.time() - start_time) * 1000)
        return JSONResponse(
            status_code=500,
            content={
                "status": "fault",
                "error": str(e),
                "offenders": e.offenders,
                "report": e.report.to_dict() if e.report else None,
            },
        )

    record_job_run(job="settlement_http", status="ok", duration_ms=(time.time() - start_time) * 1000)
    return report.to_dict()


@router.get("/update-cache")
async def refresh_cache(
    gameweek: Optional[int] = Query(None, ge=1),
    session: AsyncSession = Depends(get_async_session),
    gateway: DataProvider = Depends(get_gateway),
    cache: MatchCache = Depends(get_match_cache),
    notifier: Notifier = Depends(get_notifier),
):
    """Refresh the current (or given) gameweek's schedule into the store and cache."""
    try:
        views = await update_cache(session, gateway, cache, gameweek)
    except Exception as e:
        logger.error(f"[CACHE] Update failed: {e}", exc_info=True)
        capture_exception(e, job_id="update_cache")
        await notifier.alert(AlertType.CACHE_UPDATE_FAILED, format_phase_error("Cache Update Error", e))
        return JSONResponse(status_code=500, content={"status": "error", "error": str(e)})

    return {
        "status": "ok",
        "gameweek": views[0]["gameweek"] if views else gameweek,
        "matches": len(views),
    }
