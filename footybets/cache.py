"""In-process TTL cache for enriched per-gameweek match data.

Advisory only: every reader falls back to the store and then the gateway on
a miss. Settlement never reads from here.
"""

import copy
import logging
import time
from typing import Callable, Optional

from footybets.config import get_settings
from footybets.telemetry import record_cache_lookup

logger = logging.getLogger(__name__)

CACHE_PREFIX = "match_data:"


def cache_key(gameweek: int) -> str:
    return f"{CACHE_PREFIX}{gameweek}"


class MatchCache:
    """Dict-backed cache with per-entry TTL.

    Values are deep-copied on the way in and out so callers can't mutate
    cached entries.
    """

    def __init__(
        self,
        default_ttl: int | None = None,
        bypass: bool | None = None,
        clock: Callable[[], float] = time.time,
    ):
        settings = get_settings()
        self.default_ttl = default_ttl if default_ttl is not None else settings.MATCH_CACHE_TTL_SECONDS
        self.bypass = bypass if bypass is not None else settings.BYPASS_CACHE
        self._clock = clock
        self._entries: dict[str, dict] = {}

    def get(self, key: str) -> Optional[list]:
        if self.bypass:
            record_cache_lookup("bypass")
            return None

        entry = self._entries.get(key)
        if entry is None:
            record_cache_lookup("miss")
            return None

        if (self._clock() - entry["timestamp"]) >= entry["ttl"]:
            del self._entries[key]
            record_cache_lookup("miss")
            logger.debug(f"[CACHE] {key} expired")
            return None

        record_cache_lookup("hit")
        return copy.deepcopy(entry["data"])

    def set(self, key: str, data: list, ttl: int | None = None) -> None:
        if self.bypass:
            return
        self._entries[key] = {
            "data": copy.deepcopy(data),
            "timestamp": self._clock(),
            "ttl": ttl if ttl is not None else self.default_ttl,
        }
        logger.debug(f"[CACHE] stored {key} ({len(data)} matches)")

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()
