"""
Settlement engine tests.

Validates:
1. Result ingestion is idempotent (re-running never double-awards)
2. xp == sum(points_earned) for every user after a run
3. points_earned > 0 iff the bet matches a finished match's result
4. Perfect scores are credited exactly once per (user, gameweek)
5. Corrected results move points between bets
6. A failing phase keeps earlier commits and re-raises with its phase tag
7. Stray points surface as a reconciliation fault
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import (
    NOW,
    FakeGateway,
    add_bet,
    add_user,
    gameweek_fixtures,
    match_from_fixture,
    reload,
    reload_all,
)
from footybets.alerting import AlertType, Notifier
from footybets.alerting import notifier as notifier_module
from footybets.config import get_settings
from footybets.errors import ReconciliationFault, SettlementPhaseError
from footybets.etl.base import Event
from footybets.models import Bet, Gameweek, Match, PerfectScoreAward, User
from footybets.settlement import SettlementEngine
from footybets.settlement import gameweeks as lifecycle
from footybets.settlement.scoring import find_points_violations

POINTS = get_settings().CORRECT_PREDICTION_POINTS


async def _seed_gameweek(session, gameweek, first_kickoff, first_external_id):
    """Store the three matches of a gameweek and return (fixtures, matches)."""
    fixtures = gameweek_fixtures(gameweek, first_kickoff, first_external_id)
    matches = [match_from_fixture(f) for f in fixtures]
    for match in matches:
        session.add(match)
    await session.commit()
    return fixtures, matches


async def _bets_by_match(session_factory, fid):
    bets = await reload_all(session_factory, Bet, Bet.id)
    return {b.match_id: b for b in bets if b.fid == fid}


@pytest.fixture
def engine_for(session_factory, cache, notifier):
    def build(gateway: FakeGateway) -> SettlementEngine:
        return SettlementEngine(session_factory, gateway, cache, notifier)
    return build


class TestResultIngestion:
    """Results applied to matches and bets."""

    @pytest.mark.asyncio
    async def test_gameweek_ten_scenario(self, session, session_factory, engine_for, notifier):
        """Results 1/X/2 against predictions 1/X/1: two bets score, no perfect score."""
        fixtures, matches = await _seed_gameweek(session, 10, NOW - timedelta(days=1), 100)
        await add_user(session, 7)
        for match, prediction in zip(matches, ["1", "X", "1"]):
            await add_bet(session, 7, match, prediction)

        gateway = FakeGateway(fixtures)
        gateway.finish(100, 2, 0)
        gateway.finish(101, 1, 1)
        gateway.finish(102, 0, 1)

        report = await engine_for(gateway).run(now=NOW)

        bets = await _bets_by_match(session_factory, 7)
        earned = [bets[m.id].points_earned for m in matches]
        assert earned == [POINTS, POINTS, 0]

        user = await reload(session_factory, User, 7)
        assert user.xp == 2 * POINTS
        assert user.perfect_score == 0
        assert report.perfect_scores == []
        assert report.points_awarded == 2
        assert [u.result for u in report.match_updates] == ["1", "X", "2"]
        assert any("Points Update - GW10" in m for m in notifier.messages)

    @pytest.mark.asyncio
    async def test_second_run_does_not_double_award(self, session, session_factory, engine_for):
        """Two runs over the same upstream data leave points and xp unchanged."""
        fixtures, matches = await _seed_gameweek(session, 12, NOW - timedelta(hours=3), 200)
        await add_user(session, 1)
        await add_user(session, 2)
        await add_bet(session, 1, matches[0], "1")
        await add_bet(session, 2, matches[0], "2")
        await add_bet(session, 1, matches[1], "X")

        gateway = FakeGateway(fixtures)
        gateway.finish(200, 3, 1)
        engine = engine_for(gateway)

        first = await engine.run(now=NOW)
        points_after_first = {b.id: b.points_earned for b in await reload_all(session_factory, Bet, Bet.id)}
        xp_after_first = {u.fid: u.xp for u in await reload_all(session_factory, User, User.fid)}

        second = await engine.run(now=NOW)
        points_after_second = {b.id: b.points_earned for b in await reload_all(session_factory, Bet, Bet.id)}
        xp_after_second = {u.fid: u.xp for u in await reload_all(session_factory, User, User.fid)}

        assert len(first.match_updates) == 1
        assert second.match_updates == []
        assert points_after_first == points_after_second
        assert xp_after_first == xp_after_second == {1: POINTS, 2: 0}

    @pytest.mark.asyncio
    async def test_unfinished_matches_are_left_alone(self, session, session_factory, engine_for):
        fixtures, matches = await _seed_gameweek(session, 12, NOW + timedelta(days=1), 200)
        await add_user(session, 1)
        await add_bet(session, 1, matches[0], "1")

        await engine_for(FakeGateway(fixtures)).run(now=NOW)

        match = await reload(session_factory, Match, matches[0].id)
        assert match.is_finished is False
        assert match.result is None

    @pytest.mark.asyncio
    async def test_finished_fixture_without_scores_is_an_anomaly(self, session, session_factory, engine_for):
        """Finished upstream but no scores: reported, treated as no result yet."""
        fixtures, matches = await _seed_gameweek(session, 12, NOW - timedelta(hours=3), 200)
        fixtures[0].finished = True
        fixtures[0].finished_provisional = True

        report = await engine_for(FakeGateway(fixtures)).run(now=NOW)

        assert len(report.anomalies) == 1
        assert matches[0].id in report.anomalies[0]
        match = await reload(session_factory, Match, matches[0].id)
        assert match.result is None

    @pytest.mark.asyncio
    async def test_corrected_result_moves_points(self, session, session_factory, engine_for):
        """A provisional result corrected upstream revokes and re-awards points."""
        fixtures, matches = await _seed_gameweek(session, 12, NOW - timedelta(hours=3), 200)
        await add_user(session, 1)
        await add_user(session, 2)
        await add_bet(session, 1, matches[0], "1")
        await add_bet(session, 2, matches[0], "2")

        gateway = FakeGateway(fixtures)
        gateway.finish(200, 2, 0)
        engine = engine_for(gateway)
        await engine.run(now=NOW)

        gateway.finish(200, 0, 1)
        report = await engine.run(now=NOW)

        update = report.match_updates[0]
        assert (update.previous_result, update.result) == ("1", "2")
        assert update.points_awarded == 1
        assert update.points_revoked == 1

        assert (await reload(session_factory, User, 1)).xp == 0
        assert (await reload(session_factory, User, 2)).xp == POINTS
        assert (await reload(session_factory, Match, matches[0].id)).result == "2"


class TestInvariants:
    """Properties that hold after every successful run."""

    @pytest.mark.asyncio
    async def test_xp_equals_sum_of_points(self, session, session_factory, engine_for):
        fixtures, matches = await _seed_gameweek(session, 12, NOW - timedelta(hours=5), 200)
        predictions = {1: ["1", "X", "2"], 2: ["2", "2", "2"], 3: ["X", "X", "1"]}
        for fid, picks in predictions.items():
            await add_user(session, fid)
            for match, prediction in zip(matches, picks):
                await add_bet(session, fid, match, prediction)
        # Stale aggregate that reconciliation must overwrite
        await add_user(session, 4, xp=99, level=10)

        gateway = FakeGateway(fixtures)
        gateway.finish(200, 1, 0)
        gateway.finish(201, 2, 2)
        engine = engine_for(gateway)
        await engine.run(now=NOW)

        bets = await reload_all(session_factory, Bet, Bet.id)
        for user in await reload_all(session_factory, User, User.fid):
            expected = sum(b.points_earned for b in bets if b.fid == user.fid)
            assert user.xp == expected, f"fid {user.fid}: xp={user.xp}, bets sum={expected}"
            assert user.level == 1 + expected // get_settings().XP_PER_LEVEL

    @pytest.mark.asyncio
    async def test_points_iff_correct_on_finished_match(self, session, session_factory, engine_for):
        fixtures, matches = await _seed_gameweek(session, 12, NOW - timedelta(hours=5), 200)
        for fid, picks in {1: ["1", "X", "2"], 2: ["2", "1", "X"]}.items():
            await add_user(session, fid)
            for match, prediction in zip(matches, picks):
                await add_bet(session, fid, match, prediction)

        gateway = FakeGateway(fixtures)
        gateway.finish(200, 1, 0)
        gateway.finish(201, 0, 0)
        await engine_for(gateway).run(now=NOW)

        stored = {m.id: m for m in await reload_all(session_factory, Match, Match.id)}
        for bet in await reload_all(session_factory, Bet, Bet.id):
            match = stored[bet.match_id]
            wins = match.is_finished and bet.prediction == match.result
            assert (bet.points_earned > 0) == wins

        async with session_factory() as fresh:
            assert await find_points_violations(fresh) == []

    @pytest.mark.asyncio
    async def test_gameweek_stats_never_decrease(self, session, session_factory, engine_for):
        fixtures, matches = await _seed_gameweek(session, 12, NOW - timedelta(hours=3), 200)
        await add_user(session, 1)
        await add_bet(session, 1, matches[0], "1")

        gateway = FakeGateway(fixtures)
        gateway.finish(200, 1, 0)
        engine = engine_for(gateway)
        await engine.run(now=NOW)

        async with session_factory() as fresh:
            row = await fresh.get(Gameweek, 12)
            row.total_bets = 50
            row.top_score = 40
            await fresh.commit()

        gateway.finish(200, 0, 1)
        await engine.run(now=NOW)

        row = await reload(session_factory, Gameweek, 12)
        assert row.total_bets == 50
        assert row.top_score == 40
        assert row.total_players == 1


class TestPerfectScore:
    """Perfect score: >= 3 bets in a gameweek, all finished and correct."""

    @pytest.mark.asyncio
    async def test_credited_exactly_once_across_runs(self, session, session_factory, engine_for, notifier):
        fixtures, matches = await _seed_gameweek(session, 12, NOW - timedelta(hours=5), 200)
        await add_user(session, 1, display_name="Alice")
        for match, prediction in zip(matches, ["1", "X", "2"]):
            await add_bet(session, 1, match, prediction)

        gateway = FakeGateway(fixtures)
        gateway.finish(200, 1, 0)
        gateway.finish(201, 1, 1)
        engine = engine_for(gateway)

        # Two of three finished: not yet
        first = await engine.run(now=NOW)
        assert first.perfect_scores == []
        assert (await reload(session_factory, User, 1)).perfect_score == 0

        gateway.finish(202, 0, 2)
        second = await engine.run(now=NOW)
        third = await engine.run(now=NOW)

        assert second.perfect_scores == [{"fid": 1, "gameweek": 12}]
        assert third.perfect_scores == []
        assert (await reload(session_factory, User, 1)).perfect_score == 1

        markers = await reload_all(session_factory, PerfectScoreAward, PerfectScoreAward.id)
        assert [(m.fid, m.gameweek) for m in markers] == [(1, 12)]

        achievements = [m for m in notifier.messages if "Perfect Score Achievement" in m]
        assert achievements == ["🎯 Perfect Score Achievement: Alice got 3/3 correct in GW12 (Perfect Score total: 1)"]

    @pytest.mark.asyncio
    async def test_two_of_three_correct_is_not_perfect(self, session, session_factory, engine_for):
        fixtures, matches = await _seed_gameweek(session, 12, NOW - timedelta(hours=5), 200)
        await add_user(session, 1)
        for match, prediction in zip(matches, ["1", "X", "1"]):
            await add_bet(session, 1, match, prediction)

        gateway = FakeGateway(fixtures)
        gateway.finish(200, 1, 0)
        gateway.finish(201, 1, 1)
        gateway.finish(202, 0, 2)
        report = await engine_for(gateway).run(now=NOW)

        assert report.perfect_scores == []
        assert (await reload(session_factory, User, 1)).perfect_score == 0

    @pytest.mark.asyncio
    async def test_fewer_than_minimum_bets_is_not_perfect(self, session, session_factory, engine_for):
        fixtures, matches = await _seed_gameweek(session, 12, NOW - timedelta(hours=5), 200)
        await add_user(session, 1)
        await add_bet(session, 1, matches[0], "1")
        await add_bet(session, 1, matches[1], "X")

        gateway = FakeGateway(fixtures)
        gateway.finish(200, 1, 0)
        gateway.finish(201, 1, 1)
        gateway.finish(202, 0, 2)
        await engine_for(gateway).run(now=NOW)

        assert (await reload(session_factory, User, 1)).perfect_score == 0

    @pytest.mark.asyncio
    async def test_correction_revokes_perfect_score(self, session, session_factory, engine_for):
        fixtures, matches = await _seed_gameweek(session, 12, NOW - timedelta(hours=5), 200)
        await add_user(session, 1)
        for match, prediction in zip(matches, ["1", "X", "2"]):
            await add_bet(session, 1, match, prediction)

        gateway = FakeGateway(fixtures)
        gateway.finish(200, 1, 0)
        gateway.finish(201, 1, 1)
        gateway.finish(202, 0, 2)
        engine = engine_for(gateway)
        await engine.run(now=NOW)
        assert (await reload(session_factory, User, 1)).perfect_score == 1

        gateway.finish(202, 3, 2)
        report = await engine.run(now=NOW)

        assert report.perfect_scores_revoked == [{"fid": 1, "gameweek": 12}]
        assert (await reload(session_factory, User, 1)).perfect_score == 0
        assert await reload_all(session_factory, PerfectScoreAward, PerfectScoreAward.id) == []


class TestGameweekCompletion:
    """Gameweeks complete once over and fully settled."""

    @pytest.mark.asyncio
    async def test_completes_once(self, session, session_factory, engine_for, notifier):
        fixtures, matches = await _seed_gameweek(session, 10, NOW - timedelta(days=1), 100)
        await add_user(session, 1)
        await add_bet(session, 1, matches[0], "1")

        gateway = FakeGateway(fixtures)
        for fixture in fixtures:
            gateway.finish(fixture.external_id, 1, 0)
        engine = engine_for(gateway)

        first = await engine.run(now=NOW)
        second = await engine.run(now=NOW)

        assert first.completed_gameweeks == [10]
        assert second.completed_gameweeks == []
        row = await reload(session_factory, Gameweek, 10)
        assert row.points_calculated is True
        assert sum("Gameweek 10 completed" in m for m in notifier.messages) == 1

    @pytest.mark.asyncio
    async def test_not_completed_while_a_match_is_pending(self, session, session_factory, engine_for):
        fixtures, _ = await _seed_gameweek(session, 10, NOW - timedelta(days=1), 100)
        gateway = FakeGateway(fixtures)
        gateway.finish(100, 1, 0)
        gateway.finish(101, 1, 0)

        report = await engine_for(gateway).run(now=NOW)

        assert report.completed_gameweeks == []
        assert (await reload(session_factory, Gameweek, 10)).points_calculated is False

    @pytest.mark.asyncio
    async def test_initializes_next_gameweek_after_completion(self, session, session_factory, engine_for):
        fixtures, _ = await _seed_gameweek(session, 10, NOW - timedelta(days=1), 100)
        next_fixtures = gameweek_fixtures(11, NOW + timedelta(days=2), 110)
        gateway = FakeGateway(fixtures + next_fixtures)
        for fixture in fixtures:
            gateway.finish(fixture.external_id, 1, 0)

        report = await engine_for(gateway).run(now=NOW)

        assert report.initialized_gameweek == 11
        row = await reload(session_factory, Gameweek, 11)
        assert row.start_date == NOW + timedelta(days=2)
        assert row.points_calculated is False


class TestPhaseFailures:
    """Error propagation: tagged, alerted, earlier commits kept."""

    @pytest.mark.asyncio
    async def test_completion_failure_keeps_earlier_phases(
        self, session, session_factory, engine_for, notifier, monkeypatch
    ):
        fixtures, matches = await _seed_gameweek(session, 10, NOW - timedelta(days=1), 100)
        await add_user(session, 1)
        await add_bet(session, 1, matches[0], "1")

        gateway = FakeGateway(fixtures)
        gateway.finish(100, 1, 0)

        async def broken(session, now=None):
            raise RuntimeError("disk full")

        monkeypatch.setattr(lifecycle, "complete_gameweeks", broken)

        with pytest.raises(SettlementPhaseError) as exc_info:
            await engine_for(gateway).run(now=NOW)

        error = exc_info.value
        assert error.phase == "gameweek_completion"
        assert isinstance(error.cause, RuntimeError)
        assert error.report.failed_phase == "gameweek_completion"
        assert error.report.status == "error"

        # Ingestion and xp reconciliation committed before the failure
        assert (await reload(session_factory, Match, matches[0].id)).result == "1"
        assert (await reload(session_factory, User, 1)).xp == POINTS

        alert_types = [alert_type for alert_type, _ in notifier.alerts]
        assert alert_types == [AlertType.SETTLEMENT_PHASE_FAILED]
        assert "Gameweek Completion Error" in notifier.alerts[0][1]

    @pytest.mark.asyncio
    async def test_upstream_outage_fails_schedule_sync(self, session, engine_for, notifier):
        fixtures, _ = await _seed_gameweek(session, 10, NOW + timedelta(days=1), 100)
        gateway = FakeGateway(fixtures)
        gateway.fail_fixtures = True

        with pytest.raises(SettlementPhaseError) as exc_info:
            await engine_for(gateway).run(now=NOW)

        assert exc_info.value.phase == "schedule_sync"
        assert "Cache Update Error" in notifier.alerts[0][1]

    @pytest.mark.asyncio
    async def test_stray_points_raise_reconciliation_fault(
        self, session, session_factory, engine_for, notifier
    ):
        fixtures, matches = await _seed_gameweek(session, 12, NOW + timedelta(days=1), 200)
        await add_user(session, 1)
        await add_bet(session, 1, matches[0], "1", points_earned=POINTS)

        with pytest.raises(ReconciliationFault) as exc_info:
            await engine_for(FakeGateway(fixtures)).run(now=NOW)

        fault = exc_info.value
        assert [o["kind"] for o in fault.offenders] == ["stray"]
        assert fault.offenders[0]["match_id"] == matches[0].id
        assert fault.report.status == "fault"
        assert [alert_type for alert_type, _ in notifier.alerts] == [AlertType.RECONCILIATION_FAULT]

    @pytest.mark.asyncio
    async def test_unawarded_winning_bet_raises_reconciliation_fault(
        self, session, session_factory, engine_for, notifier
    ):
        """A settled match whose winning bet still shows 0 points is a hard fault."""
        fixtures, matches = await _seed_gameweek(session, 10, NOW - timedelta(days=1), 100)
        gateway = FakeGateway(fixtures)
        for match in matches:
            gateway.finish(match.external_id, 1, 0)
            match.is_finished = True
            match.result = "1"
        await session.commit()
        await add_user(session, 1)
        await add_bet(session, 1, matches[0], "1")

        with pytest.raises(ReconciliationFault) as exc_info:
            await engine_for(gateway).run(now=NOW)

        fault = exc_info.value
        assert [o["kind"] for o in fault.offenders] == ["unawarded"]
        assert fault.offenders[0]["match_id"] == matches[0].id
        assert fault.report.match_updates == []
        assert [alert_type for alert_type, _ in notifier.alerts] == [AlertType.RECONCILIATION_FAULT]
        # Completion waits until the bet is paid
        assert fault.report.completed_gameweeks == []

    @pytest.mark.asyncio
    async def test_initialization_failure_keeps_completed_gameweek(
        self, session, session_factory, engine_for, notifier, monkeypatch
    ):
        fixtures, matches = await _seed_gameweek(session, 10, NOW - timedelta(days=1), 100)
        await add_user(session, 1)
        await add_bet(session, 1, matches[0], "1")

        gateway = FakeGateway(fixtures)
        for fixture in fixtures:
            gateway.finish(fixture.external_id, 1, 0)

        async def broken(*args, **kwargs):
            raise RuntimeError("upstream schema changed")

        monkeypatch.setattr(lifecycle, "initialize_next_gameweek", broken)

        with pytest.raises(SettlementPhaseError) as exc_info:
            await engine_for(gateway).run(now=NOW + timedelta(days=1))

        error = exc_info.value
        assert error.phase == "gameweek_init"
        assert error.report.completed_gameweeks == [10]
        assert error.report.failed_phase == "gameweek_init"

        assert (await reload(session_factory, Gameweek, 10)).points_calculated is True
        assert (await reload(session_factory, User, 1)).xp == POINTS
        assert (await reload(session_factory, Match, matches[0].id)).result == "1"

        assert [alert_type for alert_type, _ in notifier.alerts] == [AlertType.SETTLEMENT_PHASE_FAILED]
        assert "Gameweek Initialization Error" in notifier.alerts[0][1]

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_abort_settlement(self, session, session_factory, cache, monkeypatch):
        """The real Notifier swallows channel failures."""
        async def unreachable(message, client=None):
            raise ConnectionError("telegram down")

        monkeypatch.setattr(notifier_module, "send_telegram_message", unreachable)

        fixtures, matches = await _seed_gameweek(session, 12, NOW - timedelta(hours=3), 200)
        await add_user(session, 1)
        await add_bet(session, 1, matches[0], "1")
        gateway = FakeGateway(fixtures)
        gateway.finish(200, 1, 0)

        report = await SettlementEngine(session_factory, gateway, cache, Notifier()).run(now=NOW)

        assert report.status == "ok"
        assert (await reload(session_factory, User, 1)).xp == POINTS


class TestScheduleSync:
    """Schedule sync refreshes schedule columns without touching results."""

    @pytest.mark.asyncio
    async def test_kickoff_change_moves_deadline(self, session, session_factory, engine_for):
        fixtures, matches = await _seed_gameweek(session, 12, NOW + timedelta(days=1), 200)
        fixtures[0].kickoff_time = NOW + timedelta(days=2)

        report = await engine_for(FakeGateway(fixtures)).run(now=NOW)

        assert report.matches_synced == 3
        match = await reload(session_factory, Match, matches[0].id)
        assert match.kickoff_time == NOW + timedelta(days=2)
        assert match.deadline == NOW + timedelta(days=2) - timedelta(minutes=get_settings().DEADLINE_OFFSET_MINUTES)

    @pytest.mark.asyncio
    async def test_gameweek_override_syncs_that_gameweek(self, session, session_factory, engine_for):
        await _seed_gameweek(session, 12, NOW + timedelta(days=1), 200)
        upcoming = gameweek_fixtures(13, NOW + timedelta(days=8), 300)
        gateway = FakeGateway(gameweek_fixtures(12, NOW + timedelta(days=1), 200) + upcoming)

        report = await engine_for(gateway).run(gameweek=13, now=NOW)

        assert report.gameweek == 13
        async with session_factory() as fresh:
            stored = (await fresh.execute(select(Match.external_id).where(Match.gameweek == 13))).scalars().all()
        assert sorted(stored) == [300, 301, 302]

    @pytest.mark.asyncio
    async def test_empty_store_bootstraps_gameweek_from_run_clock(self, session_factory, engine_for):
        """With no stored matches the upstream gameweek is chosen by the run's clock."""
        fixtures = gameweek_fixtures(10, NOW + timedelta(days=1), 100) + gameweek_fixtures(11, NOW + timedelta(days=8), 110)
        events = [
            Event(10, NOW + timedelta(days=1) - timedelta(minutes=90)),
            Event(11, NOW + timedelta(days=8) - timedelta(minutes=90)),
        ]

        report = await engine_for(FakeGateway(fixtures, events=events)).run(now=NOW)

        assert report.gameweek == 10
        async with session_factory() as fresh:
            stored = (await fresh.execute(select(Match.gameweek).distinct())).scalars().all()
        assert stored == [10]
