"""Tests for the adaptive tick schedule."""

import asyncio

from photobooth.workers.reconciler import TickReport, TickResult
from photobooth.workers.tick_worker import next_interval, worker_loop


class _ScriptedReconciler:
    max_concurrent = 3

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.ticks = 0
        self.drained = False

    async def tick(self):
        self.ticks += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def drain(self):
        self.drained = True


def test_error_backs_off():
    assert next_interval(None) == 20


def test_active_work_polls_fast():
    assert next_interval(TickResult(TickReport(), active_count=2)) == 5


def test_advance_without_remaining_work_polls_fast():
    assert next_interval(TickResult(TickReport(processed=1), active_count=0)) == 5


def test_idle_polls_slowly():
    assert next_interval(TickResult(TickReport(), active_count=0)) == 15


def test_rescue_alone_is_not_activity():
    assert next_interval(TickResult(TickReport(rescued=1), active_count=0)) == 15


def test_loop_survives_failed_tick():
    reconciler = _ScriptedReconciler([RuntimeError("ledger down")])

    asyncio.run(worker_loop(reconciler, max_ticks=1))

    assert reconciler.ticks == 1
    assert reconciler.drained
