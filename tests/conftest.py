"""
Shared fixtures: in-memory SQLite store, fake gateway, recording notifier.

Environment is set before any footybets import so get_settings() (cached)
sees the test configuration.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["TELEGRAM_BOT_TOKEN"] = ""
os.environ["TELEGRAM_CHAT_ID"] = ""
os.environ["SMTP_ENABLED"] = "false"
os.environ["METRICS_BEARER_TOKEN"] = ""
os.environ["RATE_LIMIT_PER_MINUTE"] = "1000/minute"

from datetime import datetime, timedelta  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy import select  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

from footybets.alerting import Notifier  # noqa: E402
from footybets.cache import MatchCache  # noqa: E402
from footybets.errors import UpstreamFetchError  # noqa: E402
from footybets.etl.base import DataProvider, Event, Fixture, Team  # noqa: E402
from footybets.etl.results import betting_deadline, generate_match_id  # noqa: E402
from footybets.models import Bet, Match, User  # noqa: E402
from footybets.users import seed_titles  # noqa: E402

# Friday noon; every test clock is relative to this
NOW = datetime(2024, 11, 1, 12, 0, 0)


class FakeGateway(DataProvider):
    """In-memory gateway. Set fail_fixtures / fail_teams to simulate outages."""

    def __init__(self, fixtures=None, teams=None, events=None):
        self.fixtures: list[Fixture] = list(fixtures or [])
        self.teams: list[Team] = list(teams or default_teams())
        self.events: list[Event] = list(events or [])
        self.fail_fixtures = False
        self.fail_teams = False
        self.fixture_calls = 0
        self.closed = False

    async def fetch_fixtures(self) -> list[Fixture]:
        self.fixture_calls += 1
        if self.fail_fixtures:
            raise UpstreamFetchError("fixtures", "HTTP 503", status_code=503)
        return list(self.fixtures)

    async def fetch_teams_and_events(self):
        if self.fail_teams:
            raise UpstreamFetchError("bootstrap-static", "HTTP 503", status_code=503)
        return list(self.teams), list(self.events)

    async def close(self) -> None:
        self.closed = True

    def finish(self, external_id: int, home_score: int, away_score: int) -> None:
        """Mark an upstream fixture finished (and provisional-finished) with a score."""
        for fixture in self.fixtures:
            if fixture.external_id == external_id:
                fixture.finished = True
                fixture.finished_provisional = True
                fixture.started = True
                fixture.home_score = home_score
                fixture.away_score = away_score
                return
        raise KeyError(external_id)


class RecordingNotifier(Notifier):
    """Notifier that records instead of sending."""

    def __init__(self):
        self.messages: list[str] = []
        self.alerts: list[tuple] = []

    async def send(self, message: str) -> None:
        self.messages.append(message)

    async def alert(self, alert_type, message: str) -> None:
        self.alerts.append((alert_type, message))
        await self.send(message)


def default_teams() -> list[Team]:
    return [
        Team(1, "Arsenal", "ARS", 3, 1300, 1320),
        Team(2, "Chelsea", "CHE", 8, 1250, 1270),
        Team(3, "Liverpool", "LIV", 14, 1340, 1350),
        Team(4, "Everton", "EVE", 11, 1100, 1120),
        Team(5, "Brentford", "BRE", 94, 1080, 1090),
        Team(6, "Fulham", "FUL", 54, 1090, 1100),
    ]


def make_fixture(
    external_id: int,
    gameweek: int,
    kickoff_time: datetime,
    home_team_id: int = 1,
    away_team_id: int = 2,
    home_score: int | None = None,
    away_score: int | None = None,
) -> Fixture:
    finished = home_score is not None and away_score is not None
    return Fixture(
        external_id=external_id,
        gameweek=gameweek,
        kickoff_time=kickoff_time,
        home_team_id=home_team_id,
        away_team_id=away_team_id,
        finished=finished,
        finished_provisional=finished,
        started=finished,
        home_score=home_score,
        away_score=away_score,
    )


def gameweek_fixtures(gameweek: int, first_kickoff: datetime, first_external_id: int) -> list[Fixture]:
    """Three fixtures two hours apart, all between distinct teams."""
    pairs = [(1, 2), (3, 4), (5, 6)]
    return [
        make_fixture(first_external_id + i, gameweek, first_kickoff + timedelta(hours=2 * i), home, away)
        for i, (home, away) in enumerate(pairs)
    ]


def match_from_fixture(fixture: Fixture) -> Match:
    return Match(
        id=generate_match_id(fixture),
        external_id=fixture.external_id,
        kickoff_time=fixture.kickoff_time,
        deadline=betting_deadline(fixture.kickoff_time),
        gameweek=fixture.gameweek,
        home_team_id=fixture.home_team_id,
        away_team_id=fixture.away_team_id,
    )


async def add_user(session, fid: int, display_name: str | None = None, **fields) -> User:
    user = User(fid=fid, display_name=display_name or f"player{fid}", **fields)
    session.add(user)
    await session.commit()
    return user


async def add_bet(session, fid: int, match: Match, prediction: str, points_earned: int = 0) -> Bet:
    bet = Bet(
        fid=fid,
        match_id=match.id,
        gameweek=match.gameweek,
        prediction=prediction,
        points_earned=points_earned,
    )
    session.add(bet)
    await session.commit()
    return bet


async def reload(session_factory, model, key):
    """Fresh copy of a row, read outside the test session's identity map."""
    async with session_factory() as fresh:
        return await fresh.get(model, key)


async def reload_all(session_factory, model, *order_by):
    async with session_factory() as fresh:
        result = await fresh.execute(select(model).order_by(*order_by))
        return list(result.scalars().all())


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        await seed_titles(session)
        await session.commit()
        yield session


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def cache():
    return MatchCache(default_ttl=3600, bypass=False)
