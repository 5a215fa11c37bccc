"""Match data read and schedule-sync paths.

Reads go cache -> store (enriched from the gateway) -> gateway. The sync path
(update_cache) writes schedule columns only; results belong to settlement.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from footybets.cache import MatchCache, cache_key
from footybets.config import get_settings
from footybets.db_utils import upsert
from footybets.errors import UpstreamFetchError
from footybets.etl.base import DataProvider, Event, Fixture, Team
from footybets.etl.results import (
    betting_deadline,
    compute_result,
    fixtures_for_gameweek,
    gameweek_window,
    generate_match_id,
    select_fixtures,
)
from footybets.models import Gameweek, Match

logger = logging.getLogger(__name__)

SCHEDULE_COLUMNS = ["external_id", "kickoff_time", "deadline", "gameweek", "home_team_id", "away_team_id", "updated_at"]


@dataclass
class MatchListing:
    """Matches shown to a user, plus whether betting is visible and why."""

    matches: list[dict] = field(default_factory=list)
    is_visible: bool = False
    message: str = ""


def format_date(value: datetime) -> str:
    return value.strftime("%d %B %Y, %H:%M UTC")


# =============================================================================
# CURRENT GAMEWEEK
# =============================================================================


async def _stored_current_gameweek(session: AsyncSession) -> Optional[int]:
    result = await session.execute(
        select(func.min(Match.gameweek)).where(Match.is_finished == False)  # noqa: E712
    )
    gameweek = result.scalar()
    if gameweek is not None:
        return gameweek

    # All stored matches are finished: the newest initialized gameweek wins,
    # so a freshly initialized gameweek becomes current before its matches load.
    result = await session.execute(select(func.max(Gameweek.gameweek_number)))
    gameweek = result.scalar()
    if gameweek is not None:
        return gameweek

    result = await session.execute(select(func.max(Match.gameweek)))
    return result.scalar()


async def get_current_gameweek(session: AsyncSession) -> int:
    """Lowest gameweek with an unfinished match, else the latest known, else 1."""
    gameweek = await _stored_current_gameweek(session)
    return gameweek if gameweek is not None else 1


def current_or_next_event(events: list[Event], now: datetime | None = None) -> int:
    """First upstream gameweek whose deadline is still ahead, else the last one."""
    now = now or datetime.utcnow()
    dated = sorted((e for e in events if e.deadline_time is not None), key=lambda e: e.deadline_time)
    for event in dated:
        if event.deadline_time > now:
            return event.id
    return dated[-1].id if dated else 1


# =============================================================================
# ENRICHMENT
# =============================================================================


def build_match_view(
    fixture: Fixture,
    teams_by_id: dict[int, Team],
    match_id: str | None = None,
    gameweek: int | None = None,
) -> dict:
    """Merge a fixture with team names/logos into the dict shape served to frames."""
    home = teams_by_id.get(fixture.home_team_id)
    away = teams_by_id.get(fixture.away_team_id)
    is_live = fixture.started and not fixture.finished
    result = compute_result(fixture)

    return {
        "id": match_id or generate_match_id(fixture),
        "external_id": fixture.external_id,
        "kickoff_time": fixture.kickoff_time,
        "deadline": betting_deadline(fixture.kickoff_time),
        "gameweek": gameweek if gameweek is not None else fixture.gameweek,
        "is_finished": result is not None,
        "result": result,
        "home_team": home.name if home else "",
        "away_team": away.name if away else "",
        "home_team_id": fixture.home_team_id,
        "away_team_id": fixture.away_team_id,
        "home_team_logo": home.logo_url if home else None,
        "away_team_logo": away.logo_url if away else None,
        "home_score": fixture.home_score,
        "away_score": fixture.away_score,
        "is_live": is_live,
        "minute": fixture.minutes if is_live else None,
    }


def _bare_view(match: Match) -> dict:
    """Store-only view used when the gateway can't enrich."""
    return {
        "id": match.id,
        "external_id": match.external_id,
        "kickoff_time": match.kickoff_time,
        "deadline": match.deadline,
        "gameweek": match.gameweek,
        "is_finished": match.is_finished,
        "result": match.result,
        "home_team": "",
        "away_team": "",
        "home_team_id": match.home_team_id,
        "away_team_id": match.away_team_id,
        "home_team_logo": None,
        "away_team_logo": None,
        "home_score": None,
        "away_score": None,
        "is_live": False,
        "minute": None,
    }


async def get_matches_for_gameweek(session: AsyncSession, gameweek: int) -> list[Match]:
    result = await session.execute(
        select(Match).where(Match.gameweek == gameweek).order_by(Match.kickoff_time)
    )
    return list(result.scalars().all())


async def fetch_from_gateway(
    gateway: DataProvider,
    gameweek: int,
    stored: list[Match] | None = None,
) -> list[dict]:
    """
    Build enriched match views for a gameweek straight from the gateway.

    With stored matches, only those fixtures are refreshed (keeping their ids
    and gameweek); otherwise the offered set is chosen by select_fixtures.
    """
    fixtures = await gateway.fetch_fixtures()
    teams, _ = await gateway.fetch_teams_and_events()
    teams_by_id = {team.external_id: team for team in teams}

    if stored:
        by_external_id = {f.external_id: f for f in fixtures}
        views = []
        for match in stored:
            fixture = by_external_id.get(match.external_id)
            if fixture is None or fixture.kickoff_time is None:
                logger.warning(f"[CACHE] Fixture {match.external_id} for match {match.id} missing upstream")
                continue
            views.append(build_match_view(fixture, teams_by_id, match_id=match.id, gameweek=match.gameweek))
        return views

    selected = select_fixtures(fixtures_for_gameweek(fixtures, gameweek), teams)
    if not selected:
        logger.info(f"[CACHE] No fixtures available for gameweek {gameweek}")
        return []

    logger.info(f"[CACHE] Selected fixtures for GW{gameweek}: {[f.external_id for f in selected]}")
    return [build_match_view(f, teams_by_id) for f in selected]


# =============================================================================
# STORE SYNC
# =============================================================================


async def upsert_matches(session: AsyncSession, views: list[dict]) -> None:
    """Upsert schedule columns. is_finished/result are only set on first insert."""
    now = datetime.utcnow()
    for view in views:
        await upsert(
            session,
            Match,
            {
                "id": view["id"],
                "external_id": view["external_id"],
                "kickoff_time": view["kickoff_time"],
                "deadline": view["deadline"],
                "gameweek": view["gameweek"],
                "home_team_id": view["home_team_id"],
                "away_team_id": view["away_team_id"],
                "is_finished": False,
                "result": None,
                "updated_at": now,
            },
            conflict_columns=["id"],
            update_columns=SCHEDULE_COLUMNS,
        )


async def update_gameweek_dates(session: AsyncSession, gameweek: int, kickoffs: list[datetime]) -> tuple[datetime, datetime]:
    """Create or refresh a gameweek's start/end from its match kickoffs."""
    start_date, end_date = gameweek_window(kickoffs)
    await upsert(
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
        update_columns=["start_date", "end_date"],
    )
    logger.info(f"[CACHE] GW{gameweek} dates: start={start_date.isoformat()}, end={end_date.isoformat()}")
    return start_date, end_date


async def update_cache(
    session: AsyncSession,
    gateway: DataProvider,
    cache: MatchCache,
    gameweek: int | None = None,
    now: datetime | None = None,
) -> list[dict]:
    """
    Refresh a gameweek's schedule from the gateway into the store and cache.

    Args:
        gameweek: Gameweek to refresh. Defaults to the stored current gameweek,
            or the upstream current/next gameweek when the store is empty.
        now: Clock used to pick the upstream gameweek (naive UTC).

    Returns:
        The enriched match views that were cached (empty if nothing upstream).

    Raises:
        UpstreamFetchError: gateway failure (nothing is written).
    """
    if gameweek is None:
        gameweek = await _stored_current_gameweek(session)
        if gameweek is None:
            _, events = await gateway.fetch_teams_and_events()
            gameweek = current_or_next_event(events, now)

    logger.info(f"[CACHE] Updating cache for gameweek {gameweek}")

    stored = await get_matches_for_gameweek(session, gameweek)
    views = await fetch_from_gateway(gateway, gameweek, stored=stored)
    if not views:
        return []

    await upsert_matches(session, views)
    await update_gameweek_dates(session, gameweek, [v["kickoff_time"] for v in views])
    await session.commit()

    cache.set(cache_key(gameweek), views)
    return views


# =============================================================================
# READ PATH
# =============================================================================


async def load_match_views(
    session: AsyncSession,
    gateway: DataProvider,
    cache: MatchCache,
    gameweek: int,
) -> list[dict]:
    """Match views for a gameweek: cache, else store enriched by gateway, else gateway."""
    key = cache_key(gameweek)
    views = cache.get(key)
    if views:
        return views

    stored = await get_matches_for_gameweek(session, gameweek)
    if stored:
        try:
            views = await fetch_from_gateway(gateway, gameweek, stored=stored)
        except UpstreamFetchError as e:
            logger.warning(f"[CACHE] Enrichment failed for GW{gameweek}, serving store rows: {e}")
            return [_bare_view(m) for m in stored]
        if views:
            cache.set(key, views)
        return views

    logger.info(f"[CACHE] No matches in store for GW{gameweek}, fetching from gateway")
    return await update_cache(session, gateway, cache, gameweek)


async def fetch_match_data(
    session: AsyncSession,
    gateway: DataProvider,
    cache: MatchCache,
    for_matchup: bool = False,
    now: datetime | None = None,
) -> MatchListing:
    """
    Matches of the current gameweek, sorted by kickoff.

    for_matchup=False returns everything (welcome / overview screens).
    for_matchup=True hides the gameweek before its visibility window and drops
    matches whose betting deadline has passed.
    """
    settings = get_settings()
    now = now or datetime.utcnow()
    gameweek = await get_current_gameweek(session)

    matches = await load_match_views(session, gateway, cache, gameweek)
    matches.sort(key=lambda m: m["kickoff_time"])

    if not for_matchup:
        return MatchListing(matches=matches, is_visible=True, message="Showing all matches for this gameweek.")

    if not matches:
        return MatchListing(matches=[], is_visible=False, message="No matches available for this gameweek.")

    visibility_threshold = matches[0]["kickoff_time"] - timedelta(days=settings.DAYS_BEFORE_GAMEWEEK_VISIBLE)
    if now < visibility_threshold:
        return MatchListing(
            matches=[],
            is_visible=False,
            message=f"Betting will be available on {format_date(visibility_threshold)}.",
        )

    available = [m for m in matches if now < m["deadline"]]
    if available:
        return MatchListing(matches=available, is_visible=True, message="Matches are available for betting.")
    return MatchListing(matches=[], is_visible=False, message="All match deadlines have passed for this gameweek.")
