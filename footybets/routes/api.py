"""Public API endpoints: gameweeks, matches, bets, users, leaderboard.

Auth: public, rate limited per client IP.
"""

import logging
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from footybets.bets import get_bets_for_user, is_gameweek_open, place_bet
from footybets.cache import MatchCache
from footybets.config import get_settings
from footybets.database import get_async_session
from footybets.errors import BettingClosed, MatchNotFound, UpstreamFetchError
from footybets.etl.base import DataProvider
from footybets.match_data import fetch_match_data, get_current_gameweek
from footybets.models import Bet, User
from footybets.security import limiter
from footybets.state import get_gateway, get_match_cache
from footybets.users import get_leaderboard, get_previous_gameweek_bets, get_user_profile, get_user_stats

router = APIRouter(tags=["api"])

logger = logging.getLogger(__name__)
settings = get_settings()


# =============================================================================
# REQUEST / RESPONSE MODELS
# =============================================================================


class BetRequest(BaseModel):
    fid: int = Field(..., gt=0)
    match_id: str = Field(..., min_length=1)
    prediction: Literal["1", "X", "2"]
    is_x2: bool = False
    display_name: str = ""
    pfp_url: Optional[str] = None


class BetResponse(BaseModel):
    id: int
    fid: int
    match_id: str
    gameweek: int
    prediction: str
    is_x2: bool
    points_earned: int
    created_at: datetime
    updated_at: datetime


class UserResponse(BaseModel):
    fid: int
    display_name: str
    username: Optional[str] = None
    pfp_url: Optional[str] = None
    title: str
    available_titles: list[str] = []
    xp: int
    level: int
    total_gameweeks_played: int
    perfect_score: int
    last_played: Optional[datetime] = None


class GameweekResponse(BaseModel):
    gameweek: int
    is_open: bool
    message: Optional[str] = None


def _bet_response(bet: Bet) -> BetResponse:
    return BetResponse(
        id=bet.id,
        fid=bet.fid,
        match_id=bet.match_id,
        gameweek=bet.gameweek,
        prediction=bet.prediction,
        is_x2=bet.is_x2,
        points_earned=bet.points_earned,
        created_at=bet.created_at,
        updated_at=bet.updated_at,
    )


def _user_response(user: User) -> UserResponse:
    return UserResponse(
        fid=user.fid,
        display_name=user.display_name,
        username=user.username,
        pfp_url=user.pfp_url,
        title=user.title,
        available_titles=list(user.available_titles or []),
        xp=user.xp,
        level=user.level,
        total_gameweeks_played=user.total_gameweeks_played,
        perfect_score=user.perfect_score,
        last_played=user.last_played,
    )


# =============================================================================
# GAMEWEEKS & MATCHES
# =============================================================================


@router.get("/gameweeks/current", response_model=GameweekResponse)
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def current_gameweek(request: Request, session: AsyncSession = Depends(get_async_session)):
    gameweek = await get_current_gameweek(session)
    status = await is_gameweek_open(session, gameweek)
    return GameweekResponse(gameweek=gameweek, is_open=status.is_open, message=status.message)


@router.get("/matches")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def list_matches(
    request: Request,
    for_matchup: bool = Query(False, description="Only matches still open for betting"),
    session: AsyncSession = Depends(get_async_session),
    gateway: DataProvider = Depends(get_gateway),
    cache: MatchCache = Depends(get_match_cache),
):
    """Current gameweek matches (cache -> store -> gateway)."""
    try:
        listing = await fetch_match_data(session, gateway, cache, for_matchup=for_matchup)
    except UpstreamFetchError as e:
        logger.error(f"[GATEWAY] Match listing failed: {e}")
        raise HTTPException(status_code=502, detail="Fixture data is temporarily unavailable")

    return {
        "matches": listing.matches,
        "is_visible": listing.is_visible,
        "message": listing.message,
    }


# =============================================================================
# BETS
# =============================================================================


@router.post("/bets", response_model=BetResponse)
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def create_bet(request: Request, body: BetRequest, session: AsyncSession = Depends(get_async_session)):
    """
    Place or overwrite a bet.

    404 if the match is unknown, 409 once its betting deadline has passed.
    """
    try:
        bet = await place_bet(
            session,
            fid=body.fid,
            match_id=body.match_id,
            prediction=body.prediction,
            display_name=body.display_name,
            pfp_url=body.pfp_url,
            is_x2=body.is_x2,
        )
    except MatchNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except BettingClosed as e:
        raise HTTPException(status_code=409, detail=str(e))

    return _bet_response(bet)


# =============================================================================
# USERS
# =============================================================================


@router.get("/users/{fid}", response_model=UserResponse)
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def user_profile(request: Request, fid: int, session: AsyncSession = Depends(get_async_session)):
    user = await get_user_profile(session, fid)
    if user is None:
        raise HTTPException(status_code=404, detail=f"User {fid} not found")
    return _user_response(user)


@router.get("/users/{fid}/stats")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def user_stats(request: Request, fid: int, session: AsyncSession = Depends(get_async_session)):
    stats = await get_user_stats(session, fid)
    if stats is None:
        raise HTTPException(status_code=404, detail=f"User {fid} not found")
    return stats


@router.get("/users/{fid}/bets", response_model=list[BetResponse])
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def user_bets(
    request: Request,
    fid: int,
    gameweek: Optional[int] = Query(None, ge=1, description="Defaults to the current gameweek"),
    session: AsyncSession = Depends(get_async_session),
):
    if gameweek is None:
        gameweek = await get_current_gameweek(session)
    bets = await get_bets_for_user(session, fid, gameweek)
    return [_bet_response(bet) for bet in bets]


@router.get("/users/{fid}/history")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def user_history(
    request: Request,
    fid: int,
    session: AsyncSession = Depends(get_async_session),
    gateway: DataProvider = Depends(get_gateway),
):
    """Bets from the user's last two completed gameweeks, with team names when available."""
    teams_by_id = {}
    try:
        teams, _ = await gateway.fetch_teams_and_events()
        teams_by_id = {team.external_id: team for team in teams}
    except UpstreamFetchError as e:
        logger.warning(f"[GATEWAY] Team names unavailable for history of fid={fid}: {e}")

    current = await get_current_gameweek(session)
    return await get_previous_gameweek_bets(session, fid, current, teams_by_id)


@router.get("/leaderboard", response_model=list[UserResponse])
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def leaderboard(
    request: Request,
    limit: int = Query(settings.LEADERBOARD_LIMIT, ge=1, le=100),
    session: AsyncSession = Depends(get_async_session),
):
    users = await get_leaderboard(session, limit)
    return [_user_response(user) for user in users]
