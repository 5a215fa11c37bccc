"""Database models using SQLModel."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

# Match results and predictions: 1 = home win, X = draw, 2 = away win
PREDICTIONS = ("1", "X", "2")

DEFAULT_TITLE = "New Player"
BETA_TESTER_TITLE = "Beta Tester"


class User(SQLModel, table=True):
    """A player, identified by their social network fid."""

    __tablename__ = "users"

    fid: int = Field(primary_key=True, sa_column_kwargs={"autoincrement": False})
    display_name: str = Field(max_length=255)
    username: Optional[str] = Field(default=None, max_length=255)
    pfp_url: Optional[str] = Field(default=None, max_length=1000)

    title: str = Field(default=DEFAULT_TITLE, max_length=100)
    available_titles: list = Field(
        default_factory=lambda: [DEFAULT_TITLE],
        sa_column=Column(JSON),
        description="Unlocked title names",
    )

    # Derived from bets by settlement (see settlement.scoring.recompute_user_aggregates)
    xp: int = Field(default=0, description="Sum of points_earned over all bets")
    level: int = Field(default=1)
    total_gameweeks_played: int = Field(default=0)
    perfect_score: int = Field(default=0, description="Count of perfect_score_awards rows")

    last_played: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Match(SQLModel, table=True):
    """A fixture offered for betting in a gameweek."""

    __tablename__ = "matches"

    id: str = Field(primary_key=True, max_length=20, description="YYGGEEEEE synthetic id")
    external_id: int = Field(index=True, description="FPL fixture ID")
    kickoff_time: datetime = Field(index=True)
    deadline: datetime = Field(description="Kickoff minus DEADLINE_OFFSET_MINUTES")
    gameweek: int = Field(index=True)

    home_team_id: Optional[int] = Field(default=None, description="FPL team ID")
    away_team_id: Optional[int] = Field(default=None, description="FPL team ID")

    # Written by settlement only
    is_finished: bool = Field(default=False, index=True)
    result: Optional[str] = Field(default=None, max_length=1, description="'1', 'X', '2' or NULL")

    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Bet(SQLModel, table=True):
    """A user's prediction for one match."""

    __tablename__ = "bets"
    __table_args__ = (
        UniqueConstraint("fid", "match_id", name="uq_bet_user_match"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    fid: int = Field(foreign_key="users.fid", index=True)
    match_id: str = Field(foreign_key="matches.id", index=True, max_length=20)
    gameweek: int = Field(index=True, description="Denormalized from matches.gameweek")

    prediction: str = Field(max_length=1, description="'1', 'X' or '2'")
    is_x2: bool = Field(default=False, description="Double-chance flag")
    points_earned: int = Field(default=0)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Gameweek(SQLModel, table=True):
    """Betting round lifecycle: initialized -> completed (points_calculated)."""

    __tablename__ = "gameweeks"

    gameweek_number: int = Field(primary_key=True, sa_column_kwargs={"autoincrement": False})
    start_date: Optional[datetime] = Field(default=None, description="First kickoff")
    end_date: Optional[datetime] = Field(default=None, description="Last kickoff + grace window")
    points_calculated: bool = Field(default=False, index=True)

    # Monotonic aggregates (never decreased)
    total_bets: int = Field(default=0)
    total_players: int = Field(default=0)
    top_score: int = Field(default=0)

    completed_at: Optional[datetime] = Field(default=None)


class PerfectScoreAward(SQLModel, table=True):
    """Marker: the user was credited a perfect score for this gameweek."""

    __tablename__ = "perfect_score_awards"
    __table_args__ = (
        UniqueConstraint("fid", "gameweek", name="uq_perfect_score_user_gameweek"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    fid: int = Field(foreign_key="users.fid", index=True)
    gameweek: int = Field(index=True)
    awarded_at: datetime = Field(default_factory=datetime.utcnow)


class Title(SQLModel, table=True):
    """Unlockable user title."""

    __tablename__ = "titles"

    name: str = Field(primary_key=True, max_length=100)
    is_limited_time: bool = Field(default=False)
    expiration_date: Optional[datetime] = Field(default=None)
