"""Gameweek lifecycle: initialized -> completed, and next-gameweek initialization."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from footybets.db_utils import insert_if_absent
from footybets.etl.base import DataProvider
from footybets.etl.results import fixtures_for_gameweek, gameweek_window
from footybets.models import Gameweek, Match
from footybets.settlement.scoring import count_unawarded_winning_bets

logger = logging.getLogger(__name__)


@dataclass
class InitializedGameweek:
    gameweek: int
    start_date: datetime
    end_date: datetime


async def is_gameweek_settled(session: AsyncSession, gameweek: int) -> bool:
    """True if the gameweek has matches and every one is finished with a result."""
    unsettled = case((or_(Match.is_finished == False, Match.result.is_(None)), 1), else_=0)  # noqa: E712
    total, pending = (await session.execute(
        select(func.count(Match.id), func.coalesce(func.sum(unsettled), 0))
        .where(Match.gameweek == gameweek)
    )).one()
    return total > 0 and pending == 0


async def complete_gameweeks(session: AsyncSession, now: datetime | None = None) -> list[int]:
    """
    Flip points_calculated for every gameweek that is over and fully settled.

    A gameweek completes when its end date has passed, it has at least one
    match, all its matches are finished with a result, and no winning bet is
    still at zero points. The flip is conditional on points_calculated being
    false, so each gameweek completes exactly once.

    Returns:
        Gameweek numbers completed by this call.
    """
    now = now or datetime.utcnow()

    candidates = (await session.execute(
        select(Gameweek.gameweek_number)
        .where(
            Gameweek.points_calculated == False,  # noqa: E712
            Gameweek.end_date.isnot(None),
            Gameweek.end_date < now,
        )
        .order_by(Gameweek.gameweek_number)
    )).scalars().all()

    completed = []
    for gameweek in candidates:
        if not await is_gameweek_settled(session, gameweek):
            logger.debug(f"[SETTLEMENT] GW{gameweek} past end date but not all matches have results")
            continue

        unprocessed = await count_unawarded_winning_bets(session, gameweek)
        if unprocessed:
            logger.warning(f"[SETTLEMENT] GW{gameweek} has {unprocessed} winning bets without points, not completing")
            continue

        result = await session.execute(
            update(Gameweek)
            .where(and_(Gameweek.gameweek_number == gameweek, Gameweek.points_calculated == False))  # noqa: E712
            .values(points_calculated=True, completed_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            completed.append(gameweek)
            logger.info(f"[SETTLEMENT] GW{gameweek} marked completed")

    return completed


async def latest_completed_gameweek(session: AsyncSession) -> Optional[int]:
    result = await session.execute(
        select(func.max(Gameweek.gameweek_number)).where(Gameweek.points_calculated == True)  # noqa: E712
    )
    return result.scalar()


async def initialize_next_gameweek(
    session: AsyncSession,
    gateway: DataProvider,
    visible_days: int,
    grace_hours: int,
    now: datetime | None = None,
) -> Optional[InitializedGameweek]:
    """
    Create the gameweek after the latest completed one, once it is visible.

    No-op (returns None) when:
      - no gameweek is completed yet, or the latest completed one still has
        unsettled matches
      - the next gameweek row already exists
      - the gateway has no fixtures for it
      - now is earlier than first kickoff minus visible_days

    Returns:
        The initialized gameweek, or None.
    """
    now = now or datetime.utcnow()

    latest = await latest_completed_gameweek(session)
    if latest is None:
        logger.debug("[SETTLEMENT] No completed gameweek yet, nothing to initialize")
        return None

    if not await is_gameweek_settled(session, latest):
        logger.warning(f"[SETTLEMENT] GW{latest} is completed but has unsettled matches")
        return None

    next_gameweek = latest + 1
    if await session.get(Gameweek, next_gameweek) is not None:
        return None

    fixtures = fixtures_for_gameweek(await gateway.fetch_fixtures(), next_gameweek)
    if not fixtures:
        logger.info(f"[SETTLEMENT] No fixtures found for GW{next_gameweek}")
        return None

    start_date, end_date = gameweek_window([f.kickoff_time for f in fixtures], grace_hours)
    visible_from = start_date - timedelta(days=visible_days)
    if now < visible_from:
        logger.debug(f"[SETTLEMENT] GW{next_gameweek} not visible until {visible_from.isoformat()}")
        return None

    inserted = await insert_if_absent(
        session,
        Gameweek,
        {
            "gameweek_number": next_gameweek,
            "start_date": start_date,
            "end_date": end_date,
            "points_calculated": False,
            "total_bets": 0,
            "total_players": 0,
            "top_score": 0,
        },
        conflict_columns=["gameweek_number"],
    )
    if not inserted:
        logger.info(f"[SETTLEMENT] GW{next_gameweek} already exists")
        return None

    logger.info(
        f"[SETTLEMENT] Initialized GW{next_gameweek}: start={start_date.isoformat()}, end={end_date.isoformat()}"
    )
    return InitializedGameweek(next_gameweek, start_date, end_date)
