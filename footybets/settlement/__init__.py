"""Gameweek settlement: result ingestion, scoring, reconciliation and lifecycle."""

from footybets.settlement.engine import SettlementEngine
from footybets.settlement.report import MatchUpdate, SettlementReport

__all__ = ["MatchUpdate", "SettlementEngine", "SettlementReport"]
