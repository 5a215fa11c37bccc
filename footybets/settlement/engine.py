"""
Gameweek settlement engine.

One run executes these phases in order, each in its own transaction(s):

    schedule_sync        refresh the current gameweek's fixtures into the store
    result_ingestion     apply new/corrected results, award points, perfect scores
    xp_reconciliation    recompute every user's xp/level/gameweeks from bets
    verification         look for bets breaking the points invariant
    gameweek_completion  flip points_calculated on finished gameweeks
    gameweek_init        create the next gameweek once it is visible

A failing phase is alerted with its tag and re-raised as SettlementPhaseError;
commits from earlier phases stand. A verification fault is alerted, the run
continues through completion and init, then ReconciliationFault is raised.
"""

import logging
import time
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from footybets.alerting import AlertType, Notifier
from footybets.cache import MatchCache
from footybets.config import Settings, get_settings
from footybets.errors import DataAnomaly, ReconciliationFault, SettlementPhaseError
from footybets.etl.base import DataProvider
from footybets.etl.results import derive_result
from footybets.match_data import update_cache
from footybets.models import Gameweek, Match
from footybets.settlement import gameweeks as lifecycle
from footybets.settlement import scoring
from footybets.settlement.report import (
    MatchUpdate,
    SettlementReport,
    format_gameweek_completed,
    format_gameweek_initialized,
    format_perfect_score,
    format_phase_error,
    format_points_update,
    format_reconciliation_fault,
)
from footybets.telemetry import (
    capture_exception,
    capture_message,
    record_phase_error,
    record_reconciliation_fault,
    record_settlement_run,
)

logger = logging.getLogger(__name__)

# Phase name -> tag used in alerts
PHASE_TAGS = {
    "schedule_sync": "Cache Update Error",
    "result_ingestion": "Result Ingestion Error",
    "xp_reconciliation": "XP Reconciliation Error",
    "verification": "Verification Error",
    "gameweek_completion": "Gameweek Completion Error",
    "gameweek_init": "Gameweek Initialization Error",
}


class SettlementEngine:
    """Runs settlement against injected store, gateway, cache and notifier."""

    def __init__(
        self,
        session_factory: Callable[[], Any],
        gateway: DataProvider,
        cache: MatchCache,
        notifier: Notifier,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.cache = cache
        self.notifier = notifier
        self.settings = settings or get_settings()

    async def run(self, gameweek: int | None = None, now: datetime | None = None) -> SettlementReport:
        """
        Execute one settlement run.

        Args:
            gameweek: Gameweek to schedule-sync instead of the current one.
            now: Clock override (naive UTC).

        Raises:
            SettlementPhaseError: a phase failed (tagged with the phase name).
            ReconciliationFault: verification found invariant violations.
        """
        now = now or datetime.utcnow()
        report = SettlementReport(started_at=datetime.utcnow(), gameweek=gameweek)
        start_time = time.time()

        logger.info(f"[SETTLEMENT] Run started (gameweek override={gameweek})")

        try:
            await self._run_phase("schedule_sync", report, self._schedule_sync, report, gameweek, now)
            await self._run_phase("result_ingestion", report, self._ingest_results, report, now)
            await self._run_phase("xp_reconciliation", report, self._reconcile_xp, report)
            offenders = await self._run_phase("verification", report, self._verify, report)
            await self._run_phase("gameweek_completion", report, self._complete_gameweeks, report, now)
            await self._run_phase("gameweek_init", report, self._initialize_next, report, now)
        except SettlementPhaseError as e:
            report.status = "error"
            report.finished_at = datetime.utcnow()
            record_settlement_run("error", (time.time() - start_time) * 1000, report.points_awarded, len(report.perfect_scores))
            e.report = report
            raise

        report.finished_at = datetime.utcnow()
        duration_ms = (time.time() - start_time) * 1000

        if offenders:
            report.status = "fault"
            record_settlement_run("fault", duration_ms, report.points_awarded, len(report.perfect_scores))
            raise ReconciliationFault(offenders, report=report)

        report.status = "ok"
        record_settlement_run("ok", duration_ms, report.points_awarded, len(report.perfect_scores))
        logger.info(
            f"[SETTLEMENT] Run complete: {len(report.match_updates)} matches, "
            f"{report.points_awarded} bets awarded, {len(report.perfect_scores)} perfect scores, "
            f"completed={report.completed_gameweeks}, initialized={report.initialized_gameweek}, "
            f"duration={duration_ms:.0f}ms"
        )
        return report

    async def _run_phase(self, phase: str, report: SettlementReport, fn, *args):
        try:
            async with self.session_factory() as session:
                return await fn(session, *args)
        except Exception as e:
            report.failed_phase = phase
            tag = PHASE_TAGS[phase]
            logger.error(f"[SETTLEMENT] [{tag}] {type(e).__name__}: {e}", exc_info=True)
            record_phase_error(phase)
            capture_exception(e, job_id="settlement", phase=phase)
            await self.notifier.alert(AlertType.SETTLEMENT_PHASE_FAILED, format_phase_error(tag, e))
            raise SettlementPhaseError(phase, e) from e

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    async def _schedule_sync(
        self, session: AsyncSession, report: SettlementReport, gameweek: int | None, now: datetime
    ) -> None:
        views = await update_cache(session, self.gateway, self.cache, gameweek, now=now)
        report.matches_synced = len(views)
        if views and report.gameweek is None:
            report.gameweek = views[0]["gameweek"]

    async def _ingest_results(self, session: AsyncSession, report: SettlementReport, now: datetime) -> None:
        open_gameweeks = select(Gameweek.gameweek_number).where(Gameweek.points_calculated == False)  # noqa: E712
        pending = (await session.execute(
            select(Match.id, Match.external_id, Match.gameweek, Match.is_finished, Match.result)
            .where(or_(
                Match.is_finished == False,  # noqa: E712
                Match.result.is_(None),
                Match.gameweek.in_(open_gameweeks),
            ))
            .order_by(Match.gameweek.desc(), Match.kickoff_time.asc())
        )).all()

        if not pending:
            return

        fixtures = {f.external_id: f for f in await self.gateway.fetch_fixtures()}
        points = self.settings.CORRECT_PREDICTION_POINTS
        achieved = []

        for match_id, external_id, gameweek, is_finished, previous in pending:
            fixture = fixtures.get(external_id)
            if fixture is None:
                continue

            try:
                result = derive_result(fixture)
            except DataAnomaly as e:
                logger.warning(f"[ANOMALY] match {match_id}: {e}")
                report.anomalies.append(f"{match_id}: {e}")
                continue

            if result is None or (is_finished and previous == result):
                continue

            try:
                awarded, revoked = await scoring.apply_match_result(session, match_id, result, points, now)
                credited, uncredited = await scoring.sync_perfect_scores(
                    session, gameweek, self.settings.PERFECT_SCORE_MIN_BETS
                )
                await scoring.update_gameweek_statistics(session, gameweek, self.settings.GAMEWEEK_END_GRACE_HOURS)
                total, breakdown, correct = await scoring.prediction_breakdown(session, match_id, result)
                achievements = await scoring.perfect_score_details(session, gameweek, credited)
                await session.commit()
            except Exception:
                await session.rollback()
                raise

            if previous is not None:
                logger.warning(f"[SETTLEMENT] Result corrected for match {match_id}: {previous} -> {result}")
            logger.info(
                f"[SETTLEMENT] Match {match_id} (GW{gameweek}) result={result}: "
                f"{awarded} awarded, {revoked} revoked, {len(credited)} perfect scores"
            )

            report.match_updates.append(MatchUpdate(
                match_id=match_id,
                external_id=external_id,
                gameweek=gameweek,
                result=result,
                previous_result=previous,
                total_bets=total,
                points_awarded=awarded,
                points_revoked=revoked,
                correct_predictions=correct,
                prediction_breakdown=breakdown,
            ))
            report.perfect_scores.extend({"fid": fid, "gameweek": gameweek} for fid in credited)
            report.perfect_scores_revoked.extend({"fid": fid, "gameweek": gameweek} for fid in uncredited)
            achieved.extend(achievements)

        rewarded = [u for u in report.match_updates if u.points_awarded > 0]
        if rewarded:
            await self.notifier.send(format_points_update(report.gameweek or rewarded[0].gameweek, rewarded))
        for achievement in achieved:
            await self.notifier.send(format_perfect_score(achievement))

    async def _reconcile_xp(self, session: AsyncSession, report: SettlementReport) -> None:
        report.users_reconciled = await scoring.recompute_user_aggregates(session, self.settings.XP_PER_LEVEL)
        await session.commit()

    async def _verify(self, session: AsyncSession, report: SettlementReport) -> list[dict]:
        offenders = await scoring.find_points_violations(session)
        if not offenders:
            return []

        report.faults = offenders
        message = format_reconciliation_fault(offenders)
        logger.error(f"[SETTLEMENT] Reconciliation fault: {len(offenders)} bets violate the points invariant")
        record_reconciliation_fault()
        capture_message("Settlement reconciliation fault", level="error", offenders=offenders[:20])
        await self.notifier.alert(AlertType.RECONCILIATION_FAULT, message)
        return offenders

    async def _complete_gameweeks(self, session: AsyncSession, report: SettlementReport, now: datetime) -> None:
        completed = await lifecycle.complete_gameweeks(session, now)
        await session.commit()

        report.completed_gameweeks = completed
        for gameweek in completed:
            row = await session.get(Gameweek, gameweek)
            stats = {
                "total_bets": row.total_bets,
                "total_players": row.total_players,
                "top_score": row.top_score,
            } if row else {}
            await self.notifier.send(format_gameweek_completed(gameweek, stats))

    async def _initialize_next(self, session: AsyncSession, report: SettlementReport, now: datetime) -> None:
        initialized = await lifecycle.initialize_next_gameweek(
            session,
            self.gateway,
            visible_days=self.settings.DAYS_BEFORE_GAMEWEEK_VISIBLE,
            grace_hours=self.settings.GAMEWEEK_END_GRACE_HOURS,
            now=now,
        )
        if initialized is None:
            return
        await session.commit()

        report.initialized_gameweek = initialized.gameweek
        await self.notifier.send(
            format_gameweek_initialized(initialized.gameweek, initialized.start_date, initialized.end_date)
        )

        # Warm the cache; a failure here is healed by the next run's schedule sync
        await update_cache(session, self.gateway, self.cache, initialized.gameweek, now=now)
