"""Abstract base class for fixture data providers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class Fixture:
    """Data transfer object for a single fixture as reported upstream."""

    external_id: int
    gameweek: Optional[int]  # None while the fixture is unscheduled
    kickoff_time: Optional[datetime]  # Naive UTC
    home_team_id: int
    away_team_id: int
    finished: bool = False
    finished_provisional: bool = False
    started: bool = False
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    minutes: int = 0


@dataclass
class Team:
    """Data transfer object for team information."""

    external_id: int
    name: str
    short_name: str
    code: int
    strength_overall_home: int = 0
    strength_overall_away: int = 0
    logo_url: Optional[str] = None


@dataclass
class Event:
    """A gameweek as published by the upstream API."""

    id: int
    deadline_time: Optional[datetime]
    finished: bool = False
    is_current: bool = False
    is_next: bool = False


class DataProvider(ABC):
    """Abstract base class for the external fixture gateway.

    Implementations are single-shot: a failed request raises
    UpstreamFetchError and the caller decides whether to retry.
    """

    @abstractmethod
    async def fetch_fixtures(self) -> list[Fixture]:
        """
        Fetch every fixture of the season.

        Returns:
            List of Fixture objects.

        Raises:
            UpstreamFetchError: on non-2xx or transport failure.
        """
        pass

    @abstractmethod
    async def fetch_teams_and_events(self) -> tuple[list[Team], list[Event]]:
        """
        Fetch the team list and the gameweek calendar.

        Returns:
            (teams, events)

        Raises:
            UpstreamFetchError: on non-2xx or transport failure.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections."""
        pass
