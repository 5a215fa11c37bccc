"""Bet placement and bet reads."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from footybets.config import get_settings
from footybets.db_utils import upsert
from footybets.errors import BettingClosed, MatchNotFound
from footybets.match_data import format_date
from footybets.models import PREDICTIONS, Bet, Gameweek, Match
from footybets.users import get_or_create_user

logger = logging.getLogger(__name__)


@dataclass
class GameweekStatus:
    is_open: bool
    message: Optional[str] = None


async def place_bet(
    session: AsyncSession,
    fid: int,
    match_id: str,
    prediction: str,
    display_name: str = "",
    pfp_url: Optional[str] = None,
    is_x2: bool = False,
    now: datetime | None = None,
) -> Bet:
    """
    Create or overwrite the user's bet on a match, then commit.

    The deadline is checked in the same transaction that writes the bet.

    Raises:
        ValueError: prediction is not '1', 'X' or '2'.
        MatchNotFound: match_id is not in the store.
        BettingClosed: now is at or after the match's betting deadline.
    """
    if prediction not in PREDICTIONS:
        raise ValueError(f"Invalid prediction {prediction!r}, expected one of {PREDICTIONS}")
    now = now or datetime.utcnow()

    try:
        user = await get_or_create_user(session, fid, display_name, pfp_url=pfp_url, now=now)

        match = await session.get(Match, match_id)
        if match is None:
            raise MatchNotFound(f"Match {match_id} not found")

        if now >= match.deadline:
            raise BettingClosed(f"Betting for match {match_id} closed at {match.deadline.isoformat()}")

        await upsert(
            session,
            Bet,
            {
                "fid": fid,
                "match_id": match_id,
                "gameweek": match.gameweek,
                "prediction": prediction,
                "is_x2": is_x2,
                "points_earned": 0,
                "created_at": now,
                "updated_at": now,
            },
            conflict_columns=["fid", "match_id"],
            update_columns=["prediction", "is_x2", "gameweek", "updated_at"],
        )

        user.last_played = now

        await session.commit()
    except Exception:
        await session.rollback()
        raise

    bet = await get_user_bet(session, fid, match_id)
    logger.info(f"[BETS] fid={fid} match={match_id} prediction={prediction} x2={is_x2}")
    return bet


async def get_bets_for_user(session: AsyncSession, fid: int, gameweek: int) -> list[Bet]:
    result = await session.execute(
        select(Bet).where(Bet.fid == fid, Bet.gameweek == gameweek).order_by(Bet.id)
    )
    return list(result.scalars().all())


async def get_user_bet(session: AsyncSession, fid: int, match_id: str) -> Optional[Bet]:
    result = await session.execute(
        select(Bet).where(Bet.fid == fid, Bet.match_id == match_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def has_ongoing_bet_in_gameweek(session: AsyncSession, fid: int, gameweek: int) -> bool:
    result = await session.execute(
        select(Bet.id).where(Bet.fid == fid, Bet.gameweek == gameweek).limit(1)
    )
    return result.scalar() is not None


async def can_user_play(session: AsyncSession, match_id: str, now: datetime | None = None) -> bool:
    """True while the match exists and its betting deadline is ahead."""
    now = now or datetime.utcnow()
    match = await session.get(Match, match_id)
    return match is not None and now < match.deadline


async def is_gameweek_open(session: AsyncSession, gameweek: int, now: datetime | None = None) -> GameweekStatus:
    """Betting is open from the visibility threshold until the gameweek end."""
    settings = get_settings()
    now = now or datetime.utcnow()

    row = await session.get(Gameweek, gameweek)
    if row is None or row.start_date is None or row.end_date is None:
        return GameweekStatus(False, "Gameweek not found")

    if now > row.end_date:
        return GameweekStatus(
            False,
            "Thanks for playing! The betting for this gameweek is over. "
            "We are calculating the points and preparing for the next gameweek.",
        )

    visibility_threshold = row.start_date - timedelta(days=settings.DAYS_BEFORE_GAMEWEEK_VISIBLE)
    if now < visibility_threshold:
        return GameweekStatus(False, f"Betting will be available on {format_date(visibility_threshold)}.")

    return GameweekStatus(True)


def find_next_available_match(matches: list[dict], current_index: int, now: datetime | None = None) -> int:
    """Index of the first match at or after current_index still open for betting, else -1."""
    now = now or datetime.utcnow()
    for i in range(max(current_index, 0), len(matches)):
        if now < matches[i]["deadline"]:
            return i
    return -1
