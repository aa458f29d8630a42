"""
Unit tests for monitor/scheduler.py -- single-flight scan scheduling.
"""

import threading
import time

import pytest

from monitor.scheduler import ScanScheduler
from scanner.errors import AdapterUnavailable, ScanAborted, ScanFailed
from scanner.models import (
    ArbOpportunity,
    DebugScanResult,
    DebugTrace,
    Platform,
    ScanResult,
    ScanSnapshot,
    ScanStats,
    SchedulerState,
)
from scanner.query import ScanQuery


def _opp(opp_id: str = "opp1", spread: float = 5.0) -> ArbOpportunity:
    return ArbOpportunity(
        id=opp_id,
        event_title="Will Trump win the 2028 election?",
        category="politics",
        buy_platform=Platform.POLYMARKET,
        buy_external_id="0xtrump",
        buy_price=60.0,
        sell_platform=Platform.KALSHI,
        sell_external_id="KX-TRUMP",
        sell_price=60.0 * (1 + spread / 100),
        spread_pct=spread,
        estimated_profit_pct=spread - 2.0,
        buy_volume=100.0,
        sell_volume=100.0,
        match_score=95.0,
        match_reason="Matched: trump",
    )


def _snapshot(cycle: int, opportunities=()) -> ScanSnapshot:
    return ScanSnapshot(
        cycle=cycle,
        scanned_at=time.time(),
        opportunities=tuple(opportunities),
        stats=ScanStats(opportunities_found=len(opportunities)),
        warnings=(),
        trace=DebugTrace(),
        min_similarity=60.0,
    )


def _wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class FakePipeline:
    """Returns a snapshot per call. Optionally blocks until released, or raises."""

    def __init__(self, block: bool = False, errors: list | None = None, opportunities=()):
        self.calls = 0
        self.started = threading.Event()
        self.release = threading.Event()
        self.block = block
        self.errors = list(errors or [])
        self.opportunities = opportunities
        self.states_seen: list[SchedulerState] = []
        self.scheduler: ScanScheduler | None = None
        self._lock = threading.Lock()

    def run(self, cycle=0, should_stop=None):
        with self._lock:
            self.calls += 1
        if self.scheduler is not None:
            self.states_seen.append(self.scheduler.state)
        self.started.set()
        if self.block:
            while not self.release.wait(0.01):
                if should_stop is not None and should_stop():
                    raise ScanAborted("cancelled")
        if self.errors:
            raise self.errors.pop(0)
        return _snapshot(cycle, self.opportunities)

    def close(self):
        pass


class RecordingEvaluator:
    def __init__(self, fail: bool = False):
        self.seen: list = []
        self.fail = fail

    def evaluate(self, opportunities, now=None):
        self.seen.append(opportunities)
        if self.fail:
            raise RuntimeError("db locked")
        return []


def _failure() -> ScanFailed:
    return ScanFailed([
        AdapterUnavailable(Platform.POLYMARKET, "/polymarket/markets", "down"),
        AdapterUnavailable(Platform.KALSHI, "/kalshi/markets", "down"),
    ])


class TestRefresh:
    def test_publishes_latest(self):
        sched = ScanScheduler(FakePipeline(), interval_sec=60)
        assert sched.latest is None
        snap = sched.refresh()
        assert sched.latest is snap
        assert snap.cycle == 1
        assert sched.state is SchedulerState.IDLE
        assert sched.refresh().cycle == 2

    def test_scanning_state_during_run(self):
        pipeline = FakePipeline()
        sched = ScanScheduler(pipeline, interval_sec=60)
        pipeline.scheduler = sched
        sched.refresh()
        assert pipeline.states_seen == [SchedulerState.SCANNING]

    def test_concurrent_refresh_is_single_flight(self):
        pipeline = FakePipeline(block=True)
        sched = ScanScheduler(pipeline, interval_sec=60)
        results: list = []
        first = threading.Thread(target=lambda: results.append(sched.refresh()))
        first.start()
        assert pipeline.started.wait(2.0)
        second = threading.Thread(target=lambda: results.append(sched.refresh()))
        second.start()
        assert _wait_for(lambda: sched.tracker.coalesced_refreshes == 1)
        pipeline.release.set()
        first.join(2.0)
        second.join(2.0)
        assert pipeline.calls == 1
        assert len(results) == 2
        assert results[0] is results[1]

    def test_coalesced_waiter_sees_failure(self):
        pipeline = FakePipeline(block=True, errors=[_failure()])
        sched = ScanScheduler(pipeline, interval_sec=60)
        errors: list = []

        def call():
            try:
                sched.refresh()
            except ScanFailed as e:
                errors.append(e)

        first = threading.Thread(target=call)
        first.start()
        assert pipeline.started.wait(2.0)
        second = threading.Thread(target=call)
        second.start()
        assert _wait_for(lambda: sched.tracker.coalesced_refreshes == 1)
        pipeline.release.set()
        first.join(2.0)
        second.join(2.0)
        assert len(errors) == 2
        assert errors[0] is errors[1]

    def test_failure_then_recovery(self):
        sched = ScanScheduler(FakePipeline(errors=[_failure()]), interval_sec=60)
        with pytest.raises(ScanFailed):
            sched.refresh()
        assert sched.state is SchedulerState.FAILED
        assert isinstance(sched.last_error, ScanFailed)
        assert sched.latest is None

        snap = sched.refresh()
        assert sched.state is SchedulerState.IDLE
        assert sched.last_error is None
        assert sched.latest is snap
        summary = sched.tracker.summary()
        assert summary["total_cycles"] == 2
        assert summary["failed_cycles"] == 1

    def test_failure_keeps_previous_snapshot(self):
        sched = ScanScheduler(FakePipeline(errors=[]), interval_sec=60)
        snap = sched.refresh()
        sched.pipeline.errors.append(_failure())
        with pytest.raises(ScanFailed):
            sched.refresh()
        assert sched.latest is snap

    def test_cancel_aborts_in_flight_scan(self):
        pipeline = FakePipeline(block=True)
        sched = ScanScheduler(pipeline, interval_sec=60)
        errors: list = []

        def call():
            try:
                sched.refresh()
            except ScanAborted as e:
                errors.append(e)

        t = threading.Thread(target=call)
        t.start()
        assert pipeline.started.wait(2.0)
        sched.cancel()
        t.join(2.0)
        assert len(errors) == 1
        assert sched.state is SchedulerState.IDLE
        assert sched.latest is None
        assert sched.tracker.summary()["aborted_cycles"] == 1

    def test_invalid_interval(self):
        with pytest.raises(ValueError):
            ScanScheduler(FakePipeline(), interval_sec=0)


class TestSubscribers:
    def test_subscriber_and_unsubscribe(self):
        sched = ScanScheduler(FakePipeline(), interval_sec=60)
        seen: list = []
        unsubscribe = sched.subscribe(seen.append)
        snap = sched.refresh()
        assert seen == [snap]
        unsubscribe()
        sched.refresh()
        assert seen == [snap]

    def test_failing_subscriber_does_not_break_cycle(self):
        sched = ScanScheduler(FakePipeline(), interval_sec=60)

        def boom(snapshot):
            raise RuntimeError("subscriber bug")

        seen: list = []
        sched.subscribe(boom)
        sched.subscribe(seen.append)
        snap = sched.refresh()
        assert seen == [snap]

    def test_alert_evaluator_runs_per_cycle(self):
        opps = (_opp(),)
        evaluator = RecordingEvaluator()
        sched = ScanScheduler(FakePipeline(opportunities=opps), interval_sec=60, alert_evaluator=evaluator)
        sched.refresh()
        assert evaluator.seen == [opps]

    def test_alert_evaluator_failure_is_contained(self):
        sched = ScanScheduler(FakePipeline(), interval_sec=60, alert_evaluator=RecordingEvaluator(fail=True))
        assert sched.refresh().cycle == 1
        assert sched.state is SchedulerState.IDLE


class TestQuery:
    def test_before_first_cycle(self):
        sched = ScanScheduler(FakePipeline(), interval_sec=60)
        result = sched.query(ScanQuery())
        assert type(result) is ScanResult
        assert result.opportunities == ()

    def test_debug_type(self):
        sched = ScanScheduler(FakePipeline(opportunities=(_opp(),)), interval_sec=60)
        sched.refresh()
        assert type(sched.query(ScanQuery())) is ScanResult
        assert isinstance(sched.query(ScanQuery(debug=True)), DebugScanResult)

    def test_filters_latest(self):
        opps = (_opp("big", 9.0), _opp("small", 2.0))
        sched = ScanScheduler(FakePipeline(opportunities=opps), interval_sec=60)
        sched.refresh()
        result = sched.query(ScanQuery(min_spread=5.0))
        assert [o.id for o in result.opportunities] == ["big"]
        assert result.stats.opportunities_found == 1


class TestTimerLoop:
    def test_runs_on_interval_and_stops(self):
        pipeline = FakePipeline()
        sched = ScanScheduler(pipeline, interval_sec=0.05)
        sched.start()
        try:
            assert sched.is_running
            assert _wait_for(lambda: pipeline.calls >= 3)
        finally:
            sched.stop(timeout=2.0)
        assert not sched.is_running

    def test_refresh_now_wakes_loop(self):
        pipeline = FakePipeline()
        sched = ScanScheduler(pipeline, interval_sec=60)
        sched.start()
        try:
            assert _wait_for(lambda: pipeline.calls == 1 and not sched.is_scanning)
            assert sched.refresh_now() is True
            assert _wait_for(lambda: pipeline.calls == 2)
        finally:
            sched.stop(timeout=2.0)

    def test_refresh_now_during_scan_is_coalesced(self):
        pipeline = FakePipeline(block=True)
        sched = ScanScheduler(pipeline, interval_sec=60)
        sched.start()
        try:
            assert pipeline.started.wait(2.0)
            assert sched.refresh_now() is False
            pipeline.release.set()
            assert _wait_for(lambda: sched.latest is not None and not sched.is_scanning)
            time.sleep(0.2)
            assert pipeline.calls == 1
            assert sched.tracker.summary()["coalesced_refreshes"] == 1
        finally:
            sched.stop(timeout=2.0)

    def test_loop_survives_failures(self):
        pipeline = FakePipeline(errors=[_failure(), _failure()])
        sched = ScanScheduler(pipeline, interval_sec=0.05)
        sched.start()
        try:
            assert _wait_for(lambda: sched.latest is not None)
        finally:
            sched.stop(timeout=2.0)
        assert sched.tracker.summary()["failed_cycles"] == 2

    def test_stop_cancels_in_flight(self):
        pipeline = FakePipeline(block=True)
        sched = ScanScheduler(pipeline, interval_sec=60)
        sched.start()
        assert pipeline.started.wait(2.0)
        sched.stop(timeout=2.0)
        assert not sched.is_running
        assert sched.latest is None
