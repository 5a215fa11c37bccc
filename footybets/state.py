"""Shared singletons for footybets.

Singleton-by-import pattern: main.py, the routers and the scheduler import
from this module to share the same gateway client, match cache and notifier.
Routers receive them through the get_* dependencies so tests can override them.
"""

from footybets.alerting import Notifier
from footybets.cache import MatchCache
from footybets.database import get_session_with_retry
from footybets.etl import DataProvider, FPLProvider
from footybets.settlement import SettlementEngine

# Fixtures/teams gateway (one pooled httpx client for the process)
gateway: DataProvider = FPLProvider()

# Per-gameweek enriched match data
match_cache = MatchCache()

notifier = Notifier()


def get_gateway() -> DataProvider:
    return gateway


def get_match_cache() -> MatchCache:
    return match_cache


def get_notifier() -> Notifier:
    return notifier


def get_settlement_engine() -> SettlementEngine:
    """Engine wired to the process singletons and retrying session creation."""
    return SettlementEngine(
        session_factory=get_session_with_retry,
        gateway=gateway,
        cache=match_cache,
        notifier=notifier,
    )
