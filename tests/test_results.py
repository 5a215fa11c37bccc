"""
Tests for the pure fixture helpers: results, match ids, fixture selection.
"""

from datetime import datetime, timedelta

import pytest

from conftest import default_teams, make_fixture
from footybets.errors import DataAnomaly
from footybets.etl.base import Team
from footybets.etl.results import (
    betting_deadline,
    compute_result,
    derive_result,
    first_kickoff_for_gameweek,
    fixtures_for_gameweek,
    gameweek_window,
    generate_match_id,
    select_fixtures,
)

KICKOFF = datetime(2024, 11, 2, 15, 0, 0)


class TestDeriveResult:
    """Result derivation from a fixture's finished flags and score."""

    def test_home_draw_away(self):
        assert derive_result(make_fixture(1, 10, KICKOFF, home_score=2, away_score=0)) == "1"
        assert derive_result(make_fixture(1, 10, KICKOFF, home_score=1, away_score=1)) == "X"
        assert derive_result(make_fixture(1, 10, KICKOFF, home_score=0, away_score=3)) == "2"

    def test_goalless_draw(self):
        assert derive_result(make_fixture(1, 10, KICKOFF, home_score=0, away_score=0)) == "X"

    def test_not_finished_has_no_result(self):
        assert derive_result(make_fixture(1, 10, KICKOFF)) is None

    def test_needs_both_finished_flags(self):
        """finished without finished_provisional (or vice versa) is not a result yet."""
        fixture = make_fixture(1, 10, KICKOFF, home_score=2, away_score=1)
        fixture.finished_provisional = False
        assert derive_result(fixture) is None

        fixture.finished_provisional = True
        fixture.finished = False
        assert derive_result(fixture) is None

    def test_finished_without_scores_is_anomaly(self):
        fixture = make_fixture(1, 10, KICKOFF)
        fixture.finished = True
        fixture.finished_provisional = True
        fixture.away_score = 2

        with pytest.raises(DataAnomaly):
            derive_result(fixture)

    def test_compute_result_treats_anomaly_as_no_result(self):
        fixture = make_fixture(1, 10, KICKOFF)
        fixture.finished = True
        fixture.finished_provisional = True

        assert compute_result(fixture) is None
        assert compute_result(None) is None


class TestMatchId:
    """Synthetic ids: YY + GG + EEEEE."""

    def test_format(self):
        assert generate_match_id(make_fixture(123, 10, KICKOFF)) == "241000123"
        assert generate_match_id(make_fixture(7, 3, datetime(2025, 1, 1))) == "250300007"

    def test_deterministic(self):
        first = generate_match_id(make_fixture(123, 10, KICKOFF))
        second = generate_match_id(make_fixture(123, 10, KICKOFF + timedelta(hours=5)))
        assert first == second

    def test_unique_across_gameweeks_and_years(self):
        """Same external id in other gameweeks or seasons never collides."""
        ids = {
            generate_match_id(make_fixture(123, gameweek, datetime(year, 9, 1)))
            for year in (2023, 2024, 2025)
            for gameweek in range(1, 39)
        }
        assert len(ids) == 3 * 38

    def test_no_collision_between_adjacent_fields(self):
        """GW1 ext 12345 and GW11 ext 2345 would collide without fixed-width fields."""
        a = generate_match_id(make_fixture(12345, 1, KICKOFF))
        b = generate_match_id(make_fixture(2345, 11, KICKOFF))
        assert a != b

    def test_unscheduled_fixture_rejected(self):
        fixture = make_fixture(123, 10, KICKOFF)
        fixture.kickoff_time = None
        with pytest.raises(ValueError):
            generate_match_id(fixture)


class TestGameweekWindow:

    def test_start_is_first_kickoff_end_is_last_plus_grace(self):
        kickoffs = [KICKOFF + timedelta(days=1), KICKOFF, KICKOFF + timedelta(days=2, hours=5)]
        start, end = gameweek_window(kickoffs, grace_hours=4)
        assert start == KICKOFF
        assert end == KICKOFF + timedelta(days=2, hours=9)

    def test_empty_kickoffs_rejected(self):
        with pytest.raises(ValueError):
            gameweek_window([], grace_hours=4)

    def test_deadline_is_offset_before_kickoff(self):
        assert betting_deadline(KICKOFF, offset_minutes=60) == KICKOFF - timedelta(hours=1)

    def test_fixtures_for_gameweek_sorted_and_scheduled_only(self):
        late = make_fixture(2, 10, KICKOFF + timedelta(hours=3))
        early = make_fixture(1, 10, KICKOFF)
        unscheduled = make_fixture(3, 10, KICKOFF)
        unscheduled.kickoff_time = None
        other = make_fixture(4, 11, KICKOFF)

        selected = fixtures_for_gameweek([late, other, unscheduled, early], 10)

        assert [f.external_id for f in selected] == [1, 2]
        assert first_kickoff_for_gameweek([late, early], 10) == KICKOFF
        assert first_kickoff_for_gameweek([late, early], 12) is None


class TestSelectFixtures:
    """Offered fixtures: big-team derbies, then big-team matches, then strength."""

    def test_derbies_first(self):
        teams = default_teams()
        fixtures = [
            make_fixture(1, 10, KICKOFF, home_team_id=5, away_team_id=6),
            make_fixture(2, 10, KICKOFF, home_team_id=3, away_team_id=4),
            make_fixture(3, 10, KICKOFF, home_team_id=1, away_team_id=2),
        ]

        selected = select_fixtures(fixtures, teams, limit=2, big_teams=["Arsenal", "Chelsea", "Liverpool"])

        assert [f.external_id for f in selected] == [3, 2]

    def test_fills_remaining_by_strength(self):
        teams = default_teams() + [
            Team(7, "Ipswich", "IPS", 40, 1000, 1000),
            Team(8, "Southampton", "SOU", 20, 1010, 1010),
        ]
        fixtures = [
            make_fixture(1, 10, KICKOFF, home_team_id=7, away_team_id=8),
            make_fixture(2, 10, KICKOFF, home_team_id=5, away_team_id=6),
            make_fixture(3, 10, KICKOFF, home_team_id=1, away_team_id=4),
        ]

        selected = select_fixtures(fixtures, teams, limit=3, big_teams=["Arsenal"])

        assert [f.external_id for f in selected] == [3, 2, 1]

    def test_limit_respected(self):
        fixtures = [make_fixture(i, 10, KICKOFF, home_team_id=1, away_team_id=2) for i in range(6)]
        assert len(select_fixtures(fixtures, default_teams(), limit=3, big_teams=["Arsenal"])) == 3

    def test_fewer_fixtures_than_limit(self):
        fixtures = [make_fixture(1, 10, KICKOFF, home_team_id=5, away_team_id=6)]
        assert len(select_fixtures(fixtures, default_teams(), limit=3, big_teams=[])) == 1
