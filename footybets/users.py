"""User lifecycle, titles, leaderboard and per-user statistics."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from footybets.db_utils import insert_if_absent
from footybets.etl.base import Team
from footybets.models import BETA_TESTER_TITLE, DEFAULT_TITLE, Bet, Gameweek, Match, Title, User

logger = logging.getLogger(__name__)

DEFAULT_TITLES = [
    {"name": DEFAULT_TITLE, "is_limited_time": False, "expiration_date": None},
    {"name": BETA_TESTER_TITLE, "is_limited_time": False, "expiration_date": None},
]


async def seed_titles(session: AsyncSession) -> None:
    """Insert the built-in titles if missing."""
    for title in DEFAULT_TITLES:
        await insert_if_absent(session, Title, title, conflict_columns=["name"])


async def _grantable_titles(session: AsyncSession, now: datetime) -> list[str]:
    """Titles a new user starts with: New Player, plus Beta Tester while it's live."""
    titles = [DEFAULT_TITLE]
    beta = await session.get(Title, BETA_TESTER_TITLE)
    if beta is not None and (not beta.is_limited_time or (beta.expiration_date and beta.expiration_date > now)):
        titles.append(BETA_TESTER_TITLE)
    return titles


async def get_or_create_user(
    session: AsyncSession,
    fid: int,
    display_name: str,
    pfp_url: Optional[str] = None,
    username: Optional[str] = None,
    now: datetime | None = None,
) -> User:
    """
    Load a user, creating it on first interaction and refreshing profile fields.

    Runs inside the caller's transaction (no commit). Creation is an
    insert-if-absent on fid, so concurrent first requests don't collide.
    """
    if fid is None or fid <= 0:
        raise ValueError(f"Invalid fid: {fid}")
    now = now or datetime.utcnow()

    user = await session.get(User, fid)
    if user is None:
        titles = await _grantable_titles(session, now)
        created = await insert_if_absent(
            session,
            User,
            {
                "fid": fid,
                "display_name": display_name,
                "username": username,
                "pfp_url": pfp_url,
                "title": BETA_TESTER_TITLE if BETA_TESTER_TITLE in titles else DEFAULT_TITLE,
                "available_titles": titles,
                "xp": 0,
                "level": 1,
                "total_gameweeks_played": 0,
                "perfect_score": 0,
                "last_played": now,
                "created_at": now,
            },
            conflict_columns=["fid"],
        )
        if created:
            logger.info(f"[USERS] Created user fid={fid} with titles {titles}")
        user = await session.get(User, fid)
        return user

    changed = False
    if display_name and user.display_name != display_name:
        user.display_name = display_name
        changed = True
    if username and user.username != username:
        user.username = username
        changed = True
    if pfp_url and user.pfp_url != pfp_url:
        user.pfp_url = pfp_url
        changed = True
    if changed:
        user.last_played = now
        await session.flush()
    return user


async def check_user_exists(session: AsyncSession, fid: int) -> bool:
    result = await session.execute(select(User.fid).where(User.fid == fid))
    return result.scalar() is not None


async def is_new_user(session: AsyncSession, fid: int) -> bool:
    """True if the user doesn't exist or has never played."""
    result = await session.execute(select(User.last_played).where(User.fid == fid))
    row = result.first()
    return row is None or row[0] is None


async def get_user_profile(session: AsyncSession, fid: int) -> Optional[User]:
    return await session.get(User, fid)


async def add_title_to_user(session: AsyncSession, fid: int, title_name: str) -> bool:
    """Unlock a title. Returns False if the user or title doesn't exist."""
    user = await session.get(User, fid)
    title = await session.get(Title, title_name)
    if user is None or title is None:
        return False
    if title_name not in (user.available_titles or []):
        user.available_titles = [*(user.available_titles or []), title_name]
        await session.flush()
    return True


async def set_user_title(session: AsyncSession, fid: int, title_name: str) -> bool:
    """Switch the displayed title to one the user has unlocked."""
    user = await session.get(User, fid)
    if user is None or title_name not in (user.available_titles or []):
        return False
    user.title = title_name
    await session.flush()
    return True


async def remove_title_from_user(session: AsyncSession, fid: int, title_name: str) -> bool:
    """Revoke a title; a user wearing it falls back to the default title."""
    user = await session.get(User, fid)
    if user is None:
        return False
    user.available_titles = [t for t in (user.available_titles or []) if t != title_name]
    if user.title == title_name:
        user.title = DEFAULT_TITLE
    await session.flush()
    return True


async def get_leaderboard(session: AsyncSession, limit: int = 5) -> list[User]:
    """Top users by xp, ties broken by gameweeks played."""
    result = await session.execute(
        select(User)
        .order_by(User.xp.desc(), User.total_gameweeks_played.desc(), User.fid.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_user_stats(session: AsyncSession, fid: int) -> Optional[dict]:
    """Bet totals, win rate and leaderboard rank for one user."""
    user = await session.get(User, fid)
    if user is None:
        return None

    result = await session.execute(
        select(
            func.count(Bet.id),
            func.coalesce(func.sum(case((Bet.points_earned > 0, 1), else_=0)), 0),
        ).where(Bet.fid == fid)
    )
    total_bets, correct_predictions = result.one()

    ranking = (
        select(
            User.fid.label("fid"),
            func.rank().over(
                order_by=(
                    User.level.desc(),
                    User.xp.desc(),
                    User.perfect_score.desc(),
                    User.total_gameweeks_played.desc(),
                )
            ).label("rank"),
        )
    ).subquery()
    rank = (await session.execute(select(ranking.c.rank).where(ranking.c.fid == fid))).scalar()

    win_rate = round(correct_predictions / total_bets * 100) if total_bets else 0

    return {
        "total_bets": total_bets,
        "correct_predictions": correct_predictions,
        "rank": rank or 0,
        "win_rate": win_rate,
        "total_gameweeks_played": user.total_gameweeks_played,
        "perfect_score": user.perfect_score,
    }


async def get_previous_gameweek_bets(
    session: AsyncSession,
    fid: int,
    current_gameweek: int,
    teams_by_id: dict[int, Team] | None = None,
) -> list[dict]:
    """
    The user's bets in their last two completed gameweeks.

    Returns:
        [{"gameweek": 9, "bets": [{"team_name", "prediction", "was_correct"}, ...]}, ...]
        newest gameweek first.
    """
    teams_by_id = teams_by_id or {}

    result = await session.execute(
        select(Bet.gameweek)
        .join(Gameweek, Gameweek.gameweek_number == Bet.gameweek)
        .where(
            Bet.fid == fid,
            Bet.gameweek <= current_gameweek,
            Gameweek.points_calculated == True,  # noqa: E712
        )
        .distinct()
        .order_by(Bet.gameweek.desc())
        .limit(2)
    )
    gameweeks = [row[0] for row in result.all()]
    if not gameweeks:
        return []

    result = await session.execute(
        select(Bet, Match)
        .join(Match, Match.id == Bet.match_id)
        .where(Bet.fid == fid, Bet.gameweek.in_(gameweeks))
        .order_by(Bet.gameweek.desc(), Match.kickoff_time.desc())
    )

    history = {gw: [] for gw in gameweeks}
    for bet, match in result.all():
        if bet.prediction == "X":
            team_name, label = "Draw", "Draw"
        else:
            team_id = match.home_team_id if bet.prediction == "1" else match.away_team_id
            team = teams_by_id.get(team_id)
            team_name = team.name if team else ("Home" if bet.prediction == "1" else "Away")
            label = "Win"
        history[bet.gameweek].append({
            "match_id": match.id,
            "team_name": team_name,
            "prediction": label,
            "was_correct": bet.points_earned > 0,
        })

    return [{"gameweek": gw, "bets": bets} for gw, bets in history.items() if bets]
