"""Fantasy Premier League public API provider."""

import logging
import time
from datetime import datetime
from typing import Optional

import httpx

from footybets.config import get_settings
from footybets.errors import UpstreamFetchError
from footybets.etl.base import DataProvider, Event, Fixture, Team

logger = logging.getLogger(__name__)


def parse_upstream_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp ("2024-08-16T19:00:00Z") into naive UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"[GATEWAY] Unparseable timestamp from upstream: {value!r}")
        return None
    if parsed.tzinfo is not None:
        parsed = (parsed - parsed.utcoffset()).replace(tzinfo=None)
    return parsed


class FPLProvider(DataProvider):
    """FPL fixtures and bootstrap data. One request per call, no retries."""

    def __init__(self, base_url: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        settings = get_settings()
        self.base_url = (base_url or settings.FPL_BASE_URL).rstrip("/")
        self.badge_url = settings.FPL_BADGE_URL.rstrip("/")
        self.client = httpx.AsyncClient(
            timeout=settings.FPL_TIMEOUT_SECONDS,
            headers={"User-Agent": "footybets/1.0"},
            transport=transport,
        )

    async def _get(self, endpoint: str):
        """GET {base_url}/{endpoint}/ and return decoded JSON.

        Raises UpstreamFetchError on non-2xx, transport failure or bad JSON.
        """
        url = f"{self.base_url}/{endpoint}/"
        start_time = time.time()

        try:
            response = await self.client.get(url)
        except httpx.TimeoutException as e:
            self._record(endpoint, 0, start_time)
            logger.error(f"[GATEWAY] Timeout fetching {endpoint}: {e}")
            raise UpstreamFetchError(endpoint, "timeout") from e
        except httpx.RequestError as e:
            self._record(endpoint, 0, start_time)
            logger.error(f"[GATEWAY] Request error fetching {endpoint}: {e}")
            raise UpstreamFetchError(endpoint, f"request error: {e}") from e

        self._record(endpoint, response.status_code, start_time)

        if not response.is_success:
            logger.error(f"[GATEWAY] {endpoint} returned HTTP {response.status_code}")
            raise UpstreamFetchError(
                endpoint, f"HTTP {response.status_code}", status_code=response.status_code
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamFetchError(endpoint, "invalid JSON body", status_code=response.status_code) from e

    @staticmethod
    def _record(endpoint: str, status_code: int, start_time: float) -> None:
        # Telemetry is best-effort inside record_gateway_request
        from footybets.telemetry import record_gateway_request

        record_gateway_request(endpoint, status_code, (time.time() - start_time) * 1000)

    def _parse_fixture(self, raw: dict) -> Fixture:
        return Fixture(
            external_id=raw["id"],
            gameweek=raw.get("event"),
            kickoff_time=parse_upstream_datetime(raw.get("kickoff_time")),
            home_team_id=raw.get("team_h"),
            away_team_id=raw.get("team_a"),
            finished=bool(raw.get("finished")),
            finished_provisional=bool(raw.get("finished_provisional")),
            started=bool(raw.get("started")),
            home_score=raw.get("team_h_score"),
            away_score=raw.get("team_a_score"),
            minutes=raw.get("minutes") or 0,
        )

    def _parse_team(self, raw: dict) -> Team:
        code = raw.get("code")
        return Team(
            external_id=raw["id"],
            name=raw.get("name", ""),
            short_name=raw.get("short_name", ""),
            code=code,
            strength_overall_home=raw.get("strength_overall_home") or 0,
            strength_overall_away=raw.get("strength_overall_away") or 0,
            logo_url=f"{self.badge_url}/t{code}.png" if code is not None else None,
        )

    @staticmethod
    def _parse_event(raw: dict) -> Event:
        return Event(
            id=raw["id"],
            deadline_time=parse_upstream_datetime(raw.get("deadline_time")),
            finished=bool(raw.get("finished")),
            is_current=bool(raw.get("is_current")),
            is_next=bool(raw.get("is_next")),
        )

    @staticmethod
    def _parse_items(endpoint: str, items, parser) -> list:
        """Parse a list of upstream records; a malformed payload is an upstream failure."""
        if not isinstance(items, list):
            raise UpstreamFetchError(endpoint, f"unexpected payload: expected list, got {type(items).__name__}")
        try:
            return [parser(raw) for raw in items]
        except (KeyError, TypeError, AttributeError) as e:
            logger.error(f"[GATEWAY] Malformed {endpoint} record: {e!r}")
            raise UpstreamFetchError(endpoint, f"malformed record: {e!r}") from e

    async def fetch_fixtures(self) -> list[Fixture]:
        data = await self._get("fixtures")
        fixtures = self._parse_items("fixtures", data, self._parse_fixture)
        logger.debug(f"[GATEWAY] Fetched {len(fixtures)} fixtures")
        return fixtures

    async def fetch_teams_and_events(self) -> tuple[list[Team], list[Event]]:
        data = await self._get("bootstrap-static")
        if not isinstance(data, dict):
            raise UpstreamFetchError("bootstrap-static", f"unexpected payload: expected object, got {type(data).__name__}")
        teams = self._parse_items("bootstrap-static", data.get("teams", []), self._parse_team)
        events = self._parse_items("bootstrap-static", data.get("events", []), self._parse_event)
        logger.debug(f"[GATEWAY] Fetched {len(teams)} teams, {len(events)} events")
        return teams, events

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
