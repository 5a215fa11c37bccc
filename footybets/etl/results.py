"""Pure fixture helpers shared by settlement and the read paths.

Nothing here touches the database or the network.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from footybets.config import get_settings
from footybets.errors import DataAnomaly
from footybets.etl.base import Fixture, Team

logger = logging.getLogger(__name__)


def derive_result(fixture: Fixture) -> Optional[str]:
    """
    Result of a fixture: '1' (home win), 'X' (draw), '2' (away win) or None.

    A result exists only once the fixture is both finished and
    finished_provisional.

    Raises:
        DataAnomaly: fixture is finished but a score is missing.
    """
    if not (fixture.finished and fixture.finished_provisional):
        return None

    if fixture.home_score is None or fixture.away_score is None:
        raise DataAnomaly(f"fixture {fixture.external_id} is finished but scores are not available")

    if fixture.home_score > fixture.away_score:
        return "1"
    if fixture.home_score < fixture.away_score:
        return "2"
    return "X"


def compute_result(fixture: Optional[Fixture]) -> Optional[str]:
    """Like derive_result, but an anomaly is logged and treated as no result yet."""
    if fixture is None:
        return None
    try:
        return derive_result(fixture)
    except DataAnomaly as e:
        logger.warning(f"[ANOMALY] {e}")
        return None


def generate_match_id(fixture: Fixture) -> str:
    """Synthetic match id: YY (kickoff year) + GG (gameweek) + EEEEE (external id).

    Fixed-width fields keep ids unique across years and gameweeks for the
    same external id (gameweek < 100, external id < 100000).
    """
    if fixture.kickoff_time is None or fixture.gameweek is None:
        raise ValueError(f"fixture {fixture.external_id} is not scheduled")
    return f"{fixture.kickoff_time.year % 100:02d}{fixture.gameweek:02d}{fixture.external_id:05d}"


def betting_deadline(kickoff: datetime, offset_minutes: int | None = None) -> datetime:
    """Betting closes offset_minutes before kickoff."""
    if offset_minutes is None:
        offset_minutes = get_settings().DEADLINE_OFFSET_MINUTES
    return kickoff - timedelta(minutes=offset_minutes)


def fixtures_for_gameweek(fixtures: Iterable[Fixture], gameweek: int) -> list[Fixture]:
    """Scheduled fixtures of a gameweek, earliest kickoff first."""
    selected = [f for f in fixtures if f.gameweek == gameweek and f.kickoff_time is not None]
    return sorted(selected, key=lambda f: f.kickoff_time)


def first_kickoff_for_gameweek(fixtures: Iterable[Fixture], gameweek: int) -> Optional[datetime]:
    gameweek_fixtures = fixtures_for_gameweek(fixtures, gameweek)
    if not gameweek_fixtures:
        return None
    return gameweek_fixtures[0].kickoff_time


def gameweek_window(kickoffs: Iterable[datetime], grace_hours: int | None = None) -> tuple[datetime, datetime]:
    """(start, end) of a gameweek: first kickoff, last kickoff + grace window."""
    if grace_hours is None:
        grace_hours = get_settings().GAMEWEEK_END_GRACE_HOURS
    ordered = sorted(kickoffs)
    if not ordered:
        raise ValueError("gameweek window needs at least one kickoff")
    return ordered[0], ordered[-1] + timedelta(hours=grace_hours)


def select_fixtures(
    fixtures: list[Fixture],
    teams: list[Team],
    limit: int | None = None,
    big_teams: list[str] | None = None,
) -> list[Fixture]:
    """
    Pick the fixtures offered for betting in a gameweek.

    Order of preference:
      1. matches between two big teams
      2. other matches involving a big team
      3. remaining matches by combined team strength (home + away), descending
    """
    settings = get_settings()
    if limit is None:
        limit = settings.MATCHES_TO_FETCH
    if big_teams is None:
        big_teams = settings.big_teams

    teams_by_id = {team.external_id: team for team in teams}
    big = set(big_teams)

    def is_big(team_id: int) -> bool:
        team = teams_by_id.get(team_id)
        return team is not None and team.name in big

    derbies = [f for f in fixtures if is_big(f.home_team_id) and is_big(f.away_team_id)]
    big_team_matches = [
        f for f in fixtures
        if (is_big(f.home_team_id) or is_big(f.away_team_id)) and f not in derbies
    ]

    selected = list(derbies)
    if len(selected) < limit:
        selected.extend(big_team_matches[: limit - len(selected)])

    if len(selected) < limit:
        def strength(fixture: Fixture) -> int:
            home = teams_by_id.get(fixture.home_team_id)
            away = teams_by_id.get(fixture.away_team_id)
            return (home.strength_overall_home if home else 0) + (away.strength_overall_away if away else 0)

        remaining = sorted((f for f in fixtures if f not in selected), key=strength, reverse=True)
        selected.extend(remaining[: limit - len(selected)])

    return selected[:limit]
