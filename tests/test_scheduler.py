"""
Scheduler wiring: the settlement job never raises and respects SCHEDULER_ENABLED.
"""

import pytest

from footybets import scheduler
from footybets.errors import ReconciliationFault, SettlementPhaseError
from footybets.settlement.report import SettlementReport


class FakeEngine:
    def __init__(self, error=None):
        self.error = error
        self.runs = 0

    async def run(self, gameweek=None, now=None):
        self.runs += 1
        if self.error is not None:
            raise self.error
        return SettlementReport(status="ok")


class TestSettlementJob:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        None,
        SettlementPhaseError("verification", RuntimeError("boom")),
        ReconciliationFault([{"kind": "stray"}]),
        RuntimeError("unexpected"),
    ])
    async def test_job_swallows_run_outcome(self, monkeypatch, error):
        engine = FakeEngine(error)
        monkeypatch.setattr(scheduler, "get_settlement_engine", lambda: engine)

        await scheduler.settlement_job()

        assert engine.runs == 1


class TestStartScheduler:

    def test_disabled_by_setting(self):
        # SCHEDULER_ENABLED=false in the test environment
        scheduler.start_scheduler()
        assert scheduler.scheduler.running is False
        assert scheduler._scheduler_started is False
