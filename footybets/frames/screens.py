"""Frame screens: payload types and one renderer per screen.

A renderer reads the store/cache through the normal read APIs and returns a
JSON-serializable FramePayload. The state dict it returns is sent back by the
client on the next button press, so it only carries small scalars (the
current screen, match index and id, pending prediction, searched fid).
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from types import MappingProxyType
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from footybets.bets import can_user_play, find_next_available_match, get_bets_for_user, is_gameweek_open
from footybets.cache import MatchCache
from footybets.config import get_settings
from footybets.errors import UpstreamFetchError
from footybets.etl.base import DataProvider
from footybets.match_data import fetch_match_data, format_date, get_current_gameweek
from footybets.models import DEFAULT_TITLE
from footybets.users import (
    check_user_exists,
    get_leaderboard,
    get_previous_gameweek_bets,
    get_user_profile,
    get_user_stats,
)

logger = logging.getLogger(__name__)


class Screen(str, Enum):
    HOME = "home"
    WELCOME = "welcome"
    MATCHUP = "matchup"
    PLACE_BET_HOME = "place-bet-home"
    PLACE_BET_DRAW = "place-bet-draw"
    PLACE_BET_AWAY = "place-bet-away"
    DEADLINE_PASSED = "deadline-passed"
    BET_OVERVIEW = "bet-overview"
    LEADERBOARD = "leaderboard"
    PROFILE = "profile"
    PROFILE_ERROR = "profile-error"
    MATCHUP_CLOSED = "matchup-closed"
    ERROR = "error"


# Prediction placed by each bet-confirmation screen
BET_SCREENS = {
    Screen.PLACE_BET_HOME: "1",
    Screen.PLACE_BET_DRAW: "X",
    Screen.PLACE_BET_AWAY: "2",
}


@dataclass
class Button:
    label: str
    action: str = "post"
    target: Optional[str] = None


@dataclass
class FramePayload:
    screen: Screen
    title: str
    buttons: list[Button]
    state: dict = field(default_factory=dict)
    data: dict = field(default_factory=dict)
    message: Optional[str] = None
    input_placeholder: Optional[str] = None

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["screen"] = self.screen.value
        payload["state"] = {**self.state, "frame": self.screen.value}
        return payload


@dataclass
class FrameContext:
    """Everything a renderer or handler needs for one button press."""

    session: AsyncSession
    gateway: DataProvider
    cache: MatchCache
    fid: int
    display_name: str
    pfp_url: Optional[str] = None
    state: dict[str, Any] = field(default_factory=dict)
    input_text: Optional[str] = None
    now: datetime = field(default_factory=datetime.utcnow)

    def with_state(self, **changes) -> "FrameContext":
        return FrameContext(
            session=self.session,
            gateway=self.gateway,
            cache=self.cache,
            fid=self.fid,
            display_name=self.display_name,
            pfp_url=self.pfp_url,
            state={**self.state, **changes},
            input_text=self.input_text,
            now=self.now,
        )


HOME_BUTTON = Button("🏠 Back to Home")


def _how_to_play() -> Button:
    return Button("📚 How to Play", action="link", target=get_settings().DOC_URL)


async def _player(ctx: FrameContext) -> dict:
    """Header info for the requesting player; level -1 marks a new player."""
    user = await get_user_profile(ctx.session, ctx.fid)
    if user is None:
        return {
            "fid": ctx.fid,
            "display_name": ctx.display_name,
            "pfp_url": ctx.pfp_url,
            "title": DEFAULT_TITLE,
            "level": -1,
            "xp": 0,
        }
    return {
        "fid": user.fid,
        "display_name": user.display_name,
        "pfp_url": user.pfp_url,
        "title": user.title,
        "level": user.level,
        "xp": user.xp,
    }


async def current_matches(ctx: FrameContext) -> list[dict]:
    listing = await fetch_match_data(ctx.session, ctx.gateway, ctx.cache, for_matchup=False, now=ctx.now)
    return listing.matches


# =============================================================================
# RENDERERS
# =============================================================================


async def render_home(ctx: FrameContext) -> FramePayload:
    return FramePayload(
        screen=Screen.HOME,
        title="Farcaster Football Bets",
        buttons=[Button("🎮 Start Betting"), _how_to_play()],
        message="Social Premier League Betting on Farcaster",
    )


async def render_welcome(ctx: FrameContext) -> FramePayload:
    matches = await current_matches(ctx)
    gameweek = matches[0]["gameweek"] if matches else await get_current_gameweek(ctx.session)
    player = await _player(ctx)
    is_new = not await check_user_exists(ctx.session, ctx.fid)
    bets = [] if is_new else await get_bets_for_user(ctx.session, ctx.fid, gameweek)

    if is_new:
        buttons = [Button("🎮 Play"), Button("🏆 Leaderboard"), _how_to_play()]
    else:
        buttons = [
            Button("📊 View Bets" if bets else "🎮 Play"),
            Button("🏆 Leaderboard"),
            Button("👤 Profile"),
        ]

    return FramePayload(
        screen=Screen.WELCOME,
        title=f"Welcome, {ctx.display_name}" if is_new else f"Gameweek {gameweek}",
        buttons=buttons,
        state={"current_gameweek": gameweek, "current_match_index": 0, "has_bets": bool(bets)},
        data={"player": player, "new_player": is_new, "matches": matches},
    )


async def render_matchup_closed(ctx: FrameContext, message: str) -> FramePayload:
    return FramePayload(
        screen=Screen.MATCHUP_CLOSED,
        title="Betting Not Available",
        buttons=[HOME_BUTTON],
        state=dict(ctx.state),
        message=message,
    )


async def render_betting_not_open(ctx: FrameContext) -> FramePayload:
    """Closed screen pointing at the next upstream gameweek, when known."""
    message = "Stay tuned for new betting opportunities!"
    try:
        _, events = await ctx.gateway.fetch_teams_and_events()
    except UpstreamFetchError as e:
        logger.warning(f"[GATEWAY] Next gameweek lookup failed: {e}")
        events = []

    upcoming = next((event for event in events if event.is_next), None)
    if upcoming is not None and upcoming.deadline_time is not None:
        opens = upcoming.deadline_time - timedelta(days=get_settings().DAYS_BEFORE_GAMEWEEK_VISIBLE)
        message = f"Betting for Gameweek {upcoming.id} opens on {format_date(opens)}."

    payload = await render_matchup_closed(ctx, message)
    payload.title = "Betting Not Open Yet"
    return payload


async def render_matchup(ctx: FrameContext) -> FramePayload:
    matches = await current_matches(ctx)
    if not matches:
        return await render_matchup_closed(ctx, "No matches available for this gameweek.")

    status = await is_gameweek_open(ctx.session, matches[0]["gameweek"], now=ctx.now)
    if not status.is_open:
        return await render_matchup_closed(ctx, status.message or "Betting is not available at this time.")

    index = find_next_available_match(matches, int(ctx.state.get("current_match_index") or 0), now=ctx.now)
    if index == -1:
        return await render_bet_overview(ctx)

    match = matches[index]
    return FramePayload(
        screen=Screen.MATCHUP,
        title=f"{match['home_team']} vs {match['away_team']}",
        buttons=[
            Button(f"1 ({match['home_team']})"),
            Button("X (Draw)"),
            Button(f"2 ({match['away_team']})"),
        ],
        state={
            **ctx.state,
            "current_match_index": index,
            "current_match_id": match["id"],
            "current_gameweek": match["gameweek"],
        },
        data={"match": match, "player": await _player(ctx)},
    )


async def render_place_bet(ctx: FrameContext, screen: Screen) -> FramePayload:
    """Confirmation screen for the prediction bound to `screen`."""
    prediction = BET_SCREENS[screen]
    matches = await current_matches(ctx)
    index = find_next_available_match(matches, int(ctx.state.get("current_match_index") or 0), now=ctx.now)
    if index == -1 or not await can_user_play(ctx.session, matches[index]["id"], now=ctx.now):
        return await render_betting_not_open(ctx)

    match = matches[index]
    return FramePayload(
        screen=screen,
        title=f"Confirm {prediction}: {match['home_team']} vs {match['away_team']}",
        buttons=[Button("Confirm"), Button("Cancel")],
        state={
            **ctx.state,
            "current_match_index": index,
            "current_match_id": match["id"],
            "bet_type": prediction,
        },
        data={"match": match, "prediction": prediction, "player": await _player(ctx)},
    )


async def render_deadline_passed(ctx: FrameContext) -> FramePayload:
    return FramePayload(
        screen=Screen.DEADLINE_PASSED,
        title="Betting Not Open Yet",
        buttons=[Button("Next Match"), HOME_BUTTON],
        state=dict(ctx.state),
        message="You can't place a bet for this match at this time.",
    )


async def render_bet_overview(ctx: FrameContext) -> FramePayload:
    matches = await current_matches(ctx)
    gameweek = matches[0]["gameweek"] if matches else await get_current_gameweek(ctx.session)
    bets = {bet.match_id: bet for bet in await get_bets_for_user(ctx.session, ctx.fid, gameweek)}

    overview = []
    for match in matches:
        bet = bets.get(match["id"])
        overview.append({
            "match_id": match["id"],
            "home_team": match["home_team"],
            "away_team": match["away_team"],
            "kickoff_time": match["kickoff_time"],
            "deadline": match["deadline"],
            "prediction": bet.prediction if bet else "Not bet",
        })

    return FramePayload(
        screen=Screen.BET_OVERVIEW,
        title=f"Your Bets - Gameweek {gameweek}",
        buttons=[Button("📝 Edit/Add Bets"), HOME_BUTTON],
        state={**ctx.state, "current_gameweek": gameweek},
        data={"player": await _player(ctx), "bets": overview},
    )


async def render_leaderboard(ctx: FrameContext) -> FramePayload:
    users = await get_leaderboard(ctx.session, get_settings().LEADERBOARD_LIMIT)
    return FramePayload(
        screen=Screen.LEADERBOARD,
        title="Leaderboard",
        buttons=[HOME_BUTTON],
        state=dict(ctx.state),
        data={
            "leaderboard": [
                {
                    "fid": u.fid,
                    "display_name": u.display_name,
                    "pfp_url": u.pfp_url,
                    "title": u.title,
                    "level": u.level,
                    "xp": u.xp,
                    "total_gameweeks_played": u.total_gameweeks_played,
                }
                for u in users
            ]
        },
    )


async def render_profile(ctx: FrameContext) -> FramePayload:
    """Profile of the searched fid, or of the requesting player."""
    fid = ctx.state.get("search_fid") or ctx.fid
    user = await get_user_profile(ctx.session, fid)
    if user is None:
        if fid == ctx.fid:
            return await render_profile_error(
                ctx, "No profile yet", "Place your first bet to create your profile."
            )
        return await render_profile_error(ctx, "Player Not Found 👀", f"FID {fid} hasn't played yet.")

    stats = await get_user_stats(ctx.session, fid)
    current = await get_current_gameweek(ctx.session)
    try:
        teams, _ = await ctx.gateway.fetch_teams_and_events()
        teams_by_id = {team.external_id: team for team in teams}
    except UpstreamFetchError as e:
        logger.warning(f"[GATEWAY] Team names unavailable for profile: {e}")
        teams_by_id = {}

    return FramePayload(
        screen=Screen.PROFILE,
        title=user.display_name,
        buttons=[Button("🏠 Home"), Button("🔍 Search")],
        state={"search_fid": ctx.state.get("search_fid")},
        data={
            "profile": {
                "fid": user.fid,
                "display_name": user.display_name,
                "pfp_url": user.pfp_url,
                "title": user.title,
                "level": user.level,
                "xp": user.xp,
            },
            "stats": stats,
            "previous_bets": await get_previous_gameweek_bets(ctx.session, fid, current, teams_by_id),
        },
        input_placeholder="Enter FID to search",
    )


async def render_profile_error(
    ctx: FrameContext,
    title: str = "Oops! 🤔",
    message: str = "Please enter an FID to search",
) -> FramePayload:
    return FramePayload(
        screen=Screen.PROFILE_ERROR,
        title=title,
        buttons=[Button("⬅️ Back to Profile"), Button("🔍 Try Again")],
        state=dict(ctx.state),
        message=message,
        input_placeholder="Enter FID to search",
    )


async def render_error(ctx: FrameContext) -> FramePayload:
    return FramePayload(
        screen=Screen.ERROR,
        title="An error occurred",
        buttons=[Button("🔄 Retry"), Button("🏠 Home")],
        state=dict(ctx.state),
        message="We're sorry, but something went wrong. Please try again.",
    )


async def render(screen: Screen, ctx: FrameContext) -> FramePayload:
    if screen in BET_SCREENS:
        return await render_place_bet(ctx, screen)
    if screen == Screen.MATCHUP_CLOSED:
        return await render_betting_not_open(ctx)
    if screen == Screen.PROFILE_ERROR:
        return await render_profile_error(ctx)
    return await RENDERERS[screen](ctx)


RENDERERS = MappingProxyType({
    Screen.HOME: render_home,
    Screen.WELCOME: render_welcome,
    Screen.MATCHUP: render_matchup,
    Screen.DEADLINE_PASSED: render_deadline_passed,
    Screen.BET_OVERVIEW: render_bet_overview,
    Screen.LEADERBOARD: render_leaderboard,
    Screen.PROFILE: render_profile,
    Screen.ERROR: render_error,
})
