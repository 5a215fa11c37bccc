"""
Scoring statements used by settlement.

Every write here is conditional (update-where-zero, insert-if-absent,
raise-only-if-greater) so re-running against unchanged data is a no-op.
None of these functions commit; transaction boundaries belong to the engine.
"""

import logging
from datetime import datetime

from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from footybets.db_utils import insert_if_absent
from footybets.etl.results import gameweek_window
from footybets.models import Bet, Gameweek, Match, PerfectScoreAward, User

logger = logging.getLogger(__name__)


# =============================================================================
# PER-MATCH RESULT APPLICATION
# =============================================================================


async def apply_match_result(
    session: AsyncSession,
    match_id: str,
    result: str,
    points: int,
    now: datetime | None = None,
) -> tuple[int, int]:
    """
    Mark a match finished with a result and settle its bets.

    Winning bets still at zero get `points`; bets that no longer match the
    result (provisional result corrected) go back to zero.

    Returns:
        (bets awarded, bets revoked)
    """
    now = now or datetime.utcnow()

    await session.execute(
        update(Match)
        .where(Match.id == match_id)
        .values(is_finished=True, result=result, updated_at=now)
        .execution_options(synchronize_session=False)
    )

    awarded = await session.execute(
        update(Bet)
        .where(
            Bet.match_id == match_id,
            Bet.prediction == result,
            Bet.points_earned == 0,
        )
        .values(points_earned=points, updated_at=now)
        .execution_options(synchronize_session=False)
    )

    revoked = await session.execute(
        update(Bet)
        .where(
            Bet.match_id == match_id,
            Bet.prediction != result,
            Bet.points_earned != 0,
        )
        .values(points_earned=0, updated_at=now)
        .execution_options(synchronize_session=False)
    )

    return awarded.rowcount or 0, revoked.rowcount or 0


async def prediction_breakdown(session: AsyncSession, match_id: str, result: str) -> tuple[int, dict, int]:
    """(total bets, bets per prediction, correct bets) for a match."""
    rows = await session.execute(
        select(Bet.prediction, func.count(Bet.id))
        .where(Bet.match_id == match_id)
        .group_by(Bet.prediction)
    )
    breakdown = {"1": 0, "X": 0, "2": 0}
    for prediction, count in rows.all():
        breakdown[prediction] = count
    total = sum(breakdown.values())
    return total, breakdown, breakdown.get(result, 0)


# =============================================================================
# PERFECT SCORES
# =============================================================================


async def find_perfect_score_users(session: AsyncSession, gameweek: int, min_bets: int) -> set[int]:
    """Users with >= min_bets bets in the gameweek, every one on a finished match and correct."""
    correct = case(
        (and_(Match.is_finished == True, Match.result.isnot(None), Bet.prediction == Match.result), 1),  # noqa: E712
        else_=0,
    )
    result = await session.execute(
        select(Bet.fid)
        .join(Match, Match.id == Bet.match_id)
        .where(Bet.gameweek == gameweek)
        .group_by(Bet.fid)
        .having(and_(func.count(Bet.id) >= min_bets, func.sum(correct) == func.count(Bet.id)))
    )
    return {row[0] for row in result.all()}


async def sync_perfect_scores(
    session: AsyncSession,
    gameweek: int,
    min_bets: int,
) -> tuple[list[int], list[int]]:
    """
    Bring the gameweek's perfect-score markers in line with the bets.

    A marker is inserted at most once per (user, gameweek); markers whose
    user no longer qualifies are removed. users.perfect_score is then
    recounted from the markers for every affected user.

    Returns:
        (fids newly credited, fids revoked)
    """
    qualifying = await find_perfect_score_users(session, gameweek, min_bets)

    existing_rows = await session.execute(
        select(PerfectScoreAward.fid).where(PerfectScoreAward.gameweek == gameweek)
    )
    existing = {row[0] for row in existing_rows.all()}

    credited = []
    for fid in sorted(qualifying - existing):
        inserted = await insert_if_absent(
            session,
            PerfectScoreAward,
            {"fid": fid, "gameweek": gameweek, "awarded_at": datetime.utcnow()},
            conflict_columns=["fid", "gameweek"],
        )
        if inserted:
            credited.append(fid)

    revoked = sorted(existing - qualifying)
    if revoked:
        await session.execute(
            delete(PerfectScoreAward)
            .where(PerfectScoreAward.gameweek == gameweek, PerfectScoreAward.fid.in_(revoked))
            .execution_options(synchronize_session=False)
        )
        logger.warning(f"[SETTLEMENT] GW{gameweek} perfect score revoked for fids {revoked}")

    affected = credited + revoked
    if affected:
        award_count = (
            select(func.count(PerfectScoreAward.id))
            .where(PerfectScoreAward.fid == User.fid)
            .scalar_subquery()
        )
        await session.execute(
            update(User)
            .where(User.fid.in_(affected))
            .values(perfect_score=award_count)
            .execution_options(synchronize_session=False)
        )

    return credited, revoked


# =============================================================================
# GAMEWEEK STATISTICS
# =============================================================================


async def compute_gameweek_statistics(session: AsyncSession, gameweek: int) -> dict:
    """Aggregates recomputed from bets: finished-match bets, distinct players, best user total."""
    total_bets = (await session.execute(
        select(func.count(Bet.id))
        .join(Match, Match.id == Bet.match_id)
        .where(Bet.gameweek == gameweek, Match.is_finished == True)  # noqa: E712
    )).scalar() or 0

    total_players = (await session.execute(
        select(func.count(func.distinct(Bet.fid))).where(Bet.gameweek == gameweek)
    )).scalar() or 0

    per_user = (
        select(func.sum(Bet.points_earned).label("points"))
        .where(Bet.gameweek == gameweek)
        .group_by(Bet.fid)
        .subquery()
    )
    top_score = (await session.execute(select(func.max(per_user.c.points)))).scalar() or 0

    return {"total_bets": total_bets, "total_players": total_players, "top_score": top_score}


async def update_gameweek_statistics(session: AsyncSession, gameweek: int, grace_hours: int) -> dict:
    """
    Raise the stored gameweek aggregates to the recomputed values.

    Each column only ever increases. The gameweek row is created (dates from
    its match kickoffs) if settlement reaches it before the schedule sync.
    """
    stats = await compute_gameweek_statistics(session, gameweek)

    kickoffs = (await session.execute(
        select(Match.kickoff_time).where(Match.gameweek == gameweek)
    )).scalars().all()
    start_date, end_date = gameweek_window(kickoffs, grace_hours) if kickoffs else (None, None)

    await insert_if_absent(
        session,
        Gameweek,
        {
            "gameweek_number": gameweek,
            "start_date": start_date,
            "end_date": end_date,
            "points_calculated": False,
            "total_bets": 0,
            "total_players": 0,
            "top_score": 0,
        },
        conflict_columns=["gameweek_number"],
    )

    def raised(column, value):
        return case((column < value, value), else_=column)

    await session.execute(
        update(Gameweek)
        .where(Gameweek.gameweek_number == gameweek)
        .values(
            total_bets=raised(Gameweek.total_bets, stats["total_bets"]),
            total_players=raised(Gameweek.total_players, stats["total_players"]),
            top_score=raised(Gameweek.top_score, stats["top_score"]),
        )
        .execution_options(synchronize_session=False)
    )
    return stats


# =============================================================================
# GLOBAL RECONCILIATION
# =============================================================================


async def recompute_user_aggregates(session: AsyncSession, xp_per_level: int) -> int:
    """
    Recompute xp, level and gameweeks played for every user in one statement.

    xp is the sum of points_earned over the user's bets; level and
    gameweeks played are derived in the same pass.

    Returns:
        Number of user rows touched.
    """
    xp_total = (
        select(func.coalesce(func.sum(Bet.points_earned), 0))
        .where(Bet.fid == User.fid)
        .scalar_subquery()
    )
    gameweeks_played = (
        select(func.count(func.distinct(Bet.gameweek)))
        .where(Bet.fid == User.fid)
        .scalar_subquery()
    )

    result = await session.execute(
        update(User)
        .values(
            xp=xp_total,
            level=1 + xp_total // xp_per_level,
            total_gameweeks_played=gameweeks_played,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def find_points_violations(session: AsyncSession, gameweek: int | None = None) -> list[dict]:
    """
    Bets breaking "points > 0 iff the prediction equals a finished match's result".

    kind="unawarded": winning bet still at zero.
    kind="stray": points on a bet that isn't a win.
    """
    is_win = and_(Match.is_finished == True, Match.result.isnot(None), Bet.prediction == Match.result)  # noqa: E712
    not_win = or_(Match.is_finished == False, Match.result.is_(None), Bet.prediction != Match.result)  # noqa: E712

    query = (
        select(Bet.id, Bet.fid, Bet.match_id, Bet.prediction, Bet.points_earned, Match.result, Match.gameweek)
        .join(Match, Match.id == Bet.match_id)
        .where(or_(and_(is_win, Bet.points_earned == 0), and_(not_win, Bet.points_earned != 0)))
        .order_by(Bet.id)
    )
    if gameweek is not None:
        query = query.where(Match.gameweek == gameweek)

    rows = (await session.execute(query)).all()
    return [
        {
            "kind": "unawarded" if row.points_earned == 0 else "stray",
            "bet_id": row.id,
            "fid": row.fid,
            "match_id": row.match_id,
            "gameweek": row.gameweek,
            "prediction": row.prediction,
            "result": row.result,
            "points_earned": row.points_earned,
        }
        for row in rows
    ]


async def count_unawarded_winning_bets(session: AsyncSession, gameweek: int) -> int:
    result = await session.execute(
        select(func.count(Bet.id))
        .join(Match, Match.id == Bet.match_id)
        .where(
            Match.gameweek == gameweek,
            Match.is_finished == True,  # noqa: E712
            Match.result.isnot(None),
            Bet.prediction == Match.result,
            Bet.points_earned == 0,
        )
    )
    return result.scalar() or 0


async def perfect_score_details(session: AsyncSession, gameweek: int, fids: list[int]) -> list[dict]:
    """Display name, gameweek bet count and running perfect-score total for credited users."""
    if not fids:
        return []
    bet_count = (
        select(func.count(Bet.id))
        .where(Bet.fid == User.fid, Bet.gameweek == gameweek)
        .scalar_subquery()
    )
    rows = await session.execute(
        select(User.fid, User.display_name, User.perfect_score, bet_count.label("total_bets"))
        .where(User.fid.in_(fids))
        .order_by(User.fid)
    )
    return [
        {
            "fid": row.fid,
            "display_name": row.display_name,
            "gameweek": gameweek,
            "total_bets": row.total_bets,
            "perfect_score": row.perfect_score,
        }
        for row in rows.all()
    ]
