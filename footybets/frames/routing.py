"""
Frame navigation.

ROUTES is built once at import and never mutated: (screen, button) maps to
either GoTo(screen), which renders that screen, or Invoke(handler), which
runs a named handler that performs an action and picks the next screen.
Anything not in the table (unknown screen, unknown button) goes home.
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Union

from footybets.bets import find_next_available_match, get_bets_for_user, place_bet
from footybets.errors import BettingClosed, MatchNotFound
from footybets.frames.screens import (
    BET_SCREENS,
    FrameContext,
    FramePayload,
    Screen,
    current_matches,
    render,
    render_bet_overview,
    render_deadline_passed,
    render_error,
    render_matchup,
    render_profile,
    render_profile_error,
)
from footybets.telemetry import capture_exception
from footybets.users import check_user_exists

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GoTo:
    screen: Screen


@dataclass(frozen=True)
class Invoke:
    handler: str


Transition = Union[GoTo, Invoke]

HOME = GoTo(Screen.HOME)


# =============================================================================
# HANDLERS
# =============================================================================


async def play_or_overview(ctx: FrameContext) -> FramePayload:
    """Welcome button 1: bet overview if the player already bet this gameweek, else matchup."""
    matches = await current_matches(ctx)
    if matches and await get_bets_for_user(ctx.session, ctx.fid, matches[0]["gameweek"]):
        return await render_bet_overview(ctx)
    return await render_matchup(ctx.with_state(current_match_index=0))


async def confirm_bet(ctx: FrameContext) -> FramePayload:
    """Place the pending bet, then move to the next open match or the overview."""
    prediction = ctx.state.get("bet_type") or BET_SCREENS.get(parse_screen(ctx.state.get("frame")))
    match_id = ctx.state.get("current_match_id")
    index = int(ctx.state.get("current_match_index") or 0)

    if not match_id:
        return await render_matchup(ctx)

    try:
        await place_bet(
            ctx.session,
            fid=ctx.fid,
            match_id=match_id,
            prediction=prediction,
            display_name=ctx.display_name,
            pfp_url=ctx.pfp_url,
            now=ctx.now,
        )
    except (BettingClosed, MatchNotFound) as e:
        logger.info(f"[BETS] Frame bet rejected for fid={ctx.fid}: {e}")
        return await render_deadline_passed(ctx)

    matches = await current_matches(ctx)
    next_index = find_next_available_match(matches, index + 1, now=ctx.now)
    if next_index == -1:
        return await render_bet_overview(ctx)
    return await render_matchup(ctx.with_state(current_match_index=next_index))


async def next_match(ctx: FrameContext) -> FramePayload:
    matches = await current_matches(ctx)
    if not matches:
        return await render_matchup(ctx)
    index = (int(ctx.state.get("current_match_index") or 0) + 1) % len(matches)
    return await render_matchup(ctx.with_state(current_match_index=index))


async def edit_bets(ctx: FrameContext) -> FramePayload:
    return await render_matchup(ctx.with_state(current_match_index=0))


async def search_profile(ctx: FrameContext) -> FramePayload:
    """Look up another player's profile by the fid typed into the input."""
    text = (ctx.input_text or "").strip()
    if not text:
        return await render_profile_error(ctx)

    if not text.isdigit():
        return await render_profile_error(ctx, "Invalid FID 🚫", "FIDs should be numbers only")

    search_fid = int(text)
    if not await check_user_exists(ctx.session, search_fid):
        return await render_profile_error(
            ctx,
            "Player Not Found 👀",
            f"Your buddy (FID: {search_fid}) hasn't played FPLBets yet",
        )

    return await render_profile(ctx.with_state(search_fid=search_fid))


async def back_to_profile(ctx: FrameContext) -> FramePayload:
    return await render_profile(ctx.with_state(search_fid=None))


async def retry(ctx: FrameContext) -> FramePayload:
    """Re-render the screen that failed, or welcome when it is unknown."""
    previous = ctx.state.get("previous_frame")
    try:
        screen = Screen(previous)
    except ValueError:
        screen = Screen.WELCOME
    if screen in (Screen.ERROR, Screen.HOME):
        screen = Screen.WELCOME
    return await render(screen, ctx)


HANDLERS: MappingProxyType = MappingProxyType({
    "play_or_overview": play_or_overview,
    "confirm_bet": confirm_bet,
    "next_match": next_match,
    "edit_bets": edit_bets,
    "search_profile": search_profile,
    "back_to_profile": back_to_profile,
    "retry": retry,
})


# =============================================================================
# ROUTING TABLE
# =============================================================================


ROUTES: MappingProxyType = MappingProxyType({
    (Screen.HOME, 1): GoTo(Screen.WELCOME),

    (Screen.WELCOME, 1): Invoke("play_or_overview"),
    (Screen.WELCOME, 2): GoTo(Screen.LEADERBOARD),
    (Screen.WELCOME, 3): GoTo(Screen.PROFILE),

    (Screen.MATCHUP, 1): GoTo(Screen.PLACE_BET_HOME),
    (Screen.MATCHUP, 2): GoTo(Screen.PLACE_BET_DRAW),
    (Screen.MATCHUP, 3): GoTo(Screen.PLACE_BET_AWAY),

    (Screen.PLACE_BET_HOME, 1): Invoke("confirm_bet"),
    (Screen.PLACE_BET_HOME, 2): GoTo(Screen.MATCHUP),
    (Screen.PLACE_BET_DRAW, 1): Invoke("confirm_bet"),
    (Screen.PLACE_BET_DRAW, 2): GoTo(Screen.MATCHUP),
    (Screen.PLACE_BET_AWAY, 1): Invoke("confirm_bet"),
    (Screen.PLACE_BET_AWAY, 2): GoTo(Screen.MATCHUP),

    (Screen.DEADLINE_PASSED, 1): Invoke("next_match"),
    (Screen.DEADLINE_PASSED, 2): GoTo(Screen.WELCOME),

    (Screen.BET_OVERVIEW, 1): Invoke("edit_bets"),
    (Screen.BET_OVERVIEW, 2): GoTo(Screen.WELCOME),

    (Screen.LEADERBOARD, 1): GoTo(Screen.WELCOME),

    (Screen.PROFILE, 1): GoTo(Screen.WELCOME),
    (Screen.PROFILE, 2): Invoke("search_profile"),

    (Screen.PROFILE_ERROR, 1): Invoke("back_to_profile"),
    (Screen.PROFILE_ERROR, 2): Invoke("search_profile"),

    (Screen.MATCHUP_CLOSED, 1): GoTo(Screen.WELCOME),

    (Screen.ERROR, 1): Invoke("retry"),
    (Screen.ERROR, 2): HOME,
})


def parse_screen(value) -> Screen | None:
    try:
        return Screen(value or Screen.HOME.value)
    except ValueError:
        return None


def resolve(screen: Screen | None, button_index: int) -> Transition:
    """Transition for a button press; anything unmapped goes home."""
    if screen is None:
        return HOME
    return ROUTES.get((screen, button_index), HOME)


async def dispatch(ctx: FrameContext, button_index: int) -> FramePayload:
    """
    Handle one button press on the screen recorded in ctx.state["frame"].

    Any failure while rendering becomes the error screen (retry / home), with
    the failing screen remembered for retry.
    """
    current = parse_screen(ctx.state.get("frame"))
    if current is None:
        logger.warning(f"Unknown frame {ctx.state.get('frame')!r}, falling back to home")

    transition = resolve(current, button_index)
    try:
        if isinstance(transition, GoTo):
            return await render(transition.screen, ctx)
        return await HANDLERS[transition.handler](ctx)
    except Exception as e:
        logger.error(f"Frame {current} button {button_index} failed: {type(e).__name__}: {e}", exc_info=True)
        capture_exception(e, frame=current.value if current else None, button=button_index)
        await ctx.session.rollback()
        failed = transition.screen.value if isinstance(transition, GoTo) else (current.value if current else None)
        return await render_error(ctx.with_state(previous_frame=failed))
