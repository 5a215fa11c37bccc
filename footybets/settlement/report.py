"""Settlement run report and notification message formatting."""

import html
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Optional


@dataclass
class MatchUpdate:
    """One match whose result was applied in a run."""

    match_id: str
    external_id: int
    gameweek: int
    result: str
    previous_result: Optional[str]
    total_bets: int = 0
    points_awarded: int = 0
    points_revoked: int = 0
    correct_predictions: int = 0
    prediction_breakdown: dict = field(default_factory=lambda: {"1": 0, "X": 0, "2": 0})

    @property
    def success_rate(self) -> float:
        return (self.correct_predictions / self.total_bets * 100) if self.total_bets else 0.0


@dataclass
class SettlementReport:
    started_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None
    gameweek: Optional[int] = None
    status: str = "running"

    matches_synced: int = 0
    match_updates: list[MatchUpdate] = field(default_factory=list)
    perfect_scores: list[dict] = field(default_factory=list)
    perfect_scores_revoked: list[dict] = field(default_factory=list)
    users_reconciled: int = 0
    faults: list[dict] = field(default_factory=list)
    completed_gameweeks: list[int] = field(default_factory=list)
    initialized_gameweek: Optional[int] = None
    anomalies: list[str] = field(default_factory=list)
    failed_phase: Optional[str] = None

    @property
    def points_awarded(self) -> int:
        return sum(u.points_awarded for u in self.match_updates)

    @property
    def duration_ms(self) -> float:
        end = self.finished_at or datetime.utcnow()
        return (end - self.started_at).total_seconds() * 1000

    def to_dict(self) -> dict:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        data["points_awarded"] = self.points_awarded
        data["duration_ms"] = round(self.duration_ms, 1)
        return data


def format_points_update(gameweek: Optional[int], updates: list[MatchUpdate]) -> str:
    """Telegram summary of matches that awarded points, with prediction breakdowns."""
    lines = [f"🎮 <b>Points Update - GW{gameweek if gameweek is not None else '?'}</b>", ""]

    for update in updates:
        breakdown = update.prediction_breakdown
        lines.extend([
            f"<b>Match {update.external_id}</b> ({update.match_id})",
            f"Result: {update.result}" + (f" (was {update.previous_result})" if update.previous_result else ""),
            f"Total Bets: {update.total_bets}",
            "Prediction Breakdown:",
            f"  Home (1): {breakdown.get('1', 0)} bets",
            f"  Draw (X): {breakdown.get('X', 0)} bets",
            f"  Away (2): {breakdown.get('2', 0)} bets",
            f"Correct Predictions: {update.correct_predictions} 🎯",
            f"Success Rate: {update.success_rate:.1f}%",
            "",
        ])

    total_bets = sum(u.total_bets for u in updates)
    total_correct = sum(u.correct_predictions for u in updates)
    overall = (total_correct / total_bets * 100) if total_bets else 0.0
    lines.extend([
        "📊 <b>Summary:</b>",
        f"Total Bets: {total_bets}",
        f"Total Correct Predictions: {total_correct} 🎯",
        f"Overall Success Rate: {overall:.1f}%",
    ])
    return "\n".join(lines)


def format_phase_error(tag: str, error: BaseException) -> str:
    return (
        f"🚨 <b>[{html.escape(tag)}]</b>\n"
        f"{html.escape(type(error).__name__)}: {html.escape(str(error))[:500]}"
    )


def format_reconciliation_fault(offenders: list[dict]) -> str:
    lines = [
        "🚨 <b>[Reconciliation Fault]</b>",
        f"{len(offenders)} bet(s) violate the points invariant after reconciliation:",
    ]
    for offender in offenders[:20]:
        lines.append(
            f"  {offender['kind']}: bet {offender['bet_id']} fid={offender['fid']} "
            f"match={offender['match_id']} prediction={offender['prediction']} "
            f"result={offender['result']} points={offender['points_earned']}"
        )
    if len(offenders) > 20:
        lines.append(f"  ... and {len(offenders) - 20} more")
    return "\n".join(lines)


def format_gameweek_completed(gameweek: int, stats: dict) -> str:
    return (
        f"✅ <b>Gameweek {gameweek} completed</b>\n"
        f"Total Bets: {stats.get('total_bets', 0)}\n"
        f"Players: {stats.get('total_players', 0)}\n"
        f"Top Score: {stats.get('top_score', 0)}"
    )


def format_gameweek_initialized(gameweek: int, start_date: datetime, end_date: datetime) -> str:
    return (
        f"🆕 <b>Gameweek {gameweek} initialized</b>\n"
        f"Start: {start_date.isoformat(timespec='minutes')} UTC\n"
        f"End: {end_date.isoformat(timespec='minutes')} UTC"
    )


def format_perfect_score(achievement: dict) -> str:
    name = html.escape(achievement.get("display_name") or f"fid {achievement['fid']}")
    bets = achievement.get("total_bets", 0)
    return (
        f"🎯 Perfect Score Achievement: {name} got {bets}/{bets} correct in "
        f"GW{achievement['gameweek']} (Perfect Score total: {achievement.get('perfect_score', 0)})"
    )
