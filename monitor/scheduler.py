"""
Scan scheduler. Runs the scan pipeline on a fixed interval plus on demand.

State machine:  IDLE -> SCANNING -> IDLE
                             \\-> FAILED -> IDLE (before the next scan)

At most one scan runs at a time. A refresh that arrives while a scan is in
flight does not start a second scan; it waits for the in-flight one and
returns its snapshot. Each snapshot is published by replacing `latest`
whole, then handed to subscribers and the alert evaluator.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from monitor.scan_tracker import ScanTracker
from report.alerts import AlertEvaluator
from scanner.errors import ScanAborted, ScanFailed
from scanner.models import DebugScanResult, SchedulerState, ScanResult, ScanSnapshot
from scanner.pipeline import ScanPipeline
from scanner.query import ScanQuery, empty_result, query_snapshot

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SEC = 30.0

Subscriber = Callable[[ScanSnapshot], None]


class ScanScheduler:
    def __init__(
        self,
        pipeline: ScanPipeline,
        interval_sec: float = DEFAULT_INTERVAL_SEC,
        alert_evaluator: AlertEvaluator | None = None,
        tracker: ScanTracker | None = None,
    ) -> None:
        if interval_sec <= 0:
            raise ValueError(f"interval_sec must be positive, got {interval_sec}")
        self.pipeline = pipeline
        self.interval_sec = interval_sec
        self.alert_evaluator = alert_evaluator
        self.tracker = tracker or ScanTracker()

        self._cond = threading.Condition()
        self._state = SchedulerState.IDLE
        self._scanning = False
        self._finished = 0
        self._outcome: tuple[ScanSnapshot | None, BaseException | None] = (None, None)
        self._latest: ScanSnapshot | None = None
        self._last_error: BaseException | None = None
        self._cycle = 0

        self._subscribers: list[Subscriber] = []
        self._subscribers_lock = threading.Lock()

        self._cancel = threading.Event()
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: threading.Thread | None = None

    # -- Read side --

    @property
    def state(self) -> SchedulerState:
        with self._cond:
            return self._state

    @property
    def latest(self) -> ScanSnapshot | None:
        """Most recent successful snapshot. Replaced whole, never mutated."""
        with self._cond:
            return self._latest

    @property
    def last_error(self) -> BaseException | None:
        with self._cond:
            return self._last_error

    @property
    def is_scanning(self) -> bool:
        with self._cond:
            return self._scanning

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a snapshot callback. Returns an unsubscribe function."""
        with self._subscribers_lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._subscribers_lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def query(self, query: ScanQuery) -> ScanResult | DebugScanResult:
        """Filter the latest snapshot. Empty result before the first successful cycle."""
        snapshot = self.latest
        if snapshot is None:
            return empty_result(query)
        return query_snapshot(snapshot, query)

    # -- Triggers --

    def refresh(self) -> ScanSnapshot:
        """
        Run one scan now, or join the scan already in flight.

        Raises ScanFailed when every platform failed, ScanAborted on
        cancellation. Either way the scheduler keeps running.
        """
        with self._cond:
            if self._scanning:
                self.tracker.record_coalesced()
                logger.info("Refresh coalesced into in-flight scan (cycle %d)", self._cycle)
                generation = self._finished
                while self._finished == generation:
                    self._cond.wait()
                snapshot, error = self._outcome
                if error is not None:
                    raise error
                return snapshot  # type: ignore[return-value]
            self._scanning = True
            if self._state is SchedulerState.FAILED:
                self._transition(SchedulerState.IDLE)
            self._transition(SchedulerState.SCANNING)
            self._cycle += 1
            cycle = self._cycle
            self._cancel.clear()

        start = time.time()
        snapshot: ScanSnapshot | None = None
        error: BaseException | None = None
        try:
            snapshot = self.pipeline.run(cycle=cycle, should_stop=self._should_stop)
        except ScanAborted as e:
            logger.info("Cycle %d aborted: %s", cycle, e, extra={"cycle": cycle})
            error = e
        except Exception as e:
            logger.error(
                "Cycle %d failed: %s", cycle, e,
                exc_info=not isinstance(e, ScanFailed), extra={"cycle": cycle},
            )
            error = e
        elapsed = time.time() - start

        with self._cond:
            if snapshot is not None:
                self._latest = snapshot
                self._last_error = None
                self.tracker.record_cycle(snapshot, elapsed)
                self._transition(SchedulerState.IDLE)
            elif isinstance(error, ScanAborted):
                self.tracker.record_abort()
                self._transition(SchedulerState.IDLE)
            else:
                self._last_error = error
                self.tracker.record_failure(error, elapsed)  # type: ignore[arg-type]
                self._transition(SchedulerState.FAILED)

        try:
            if snapshot is not None:
                self._publish(snapshot)
        finally:
            with self._cond:
                self._scanning = False
                self._finished += 1
                self._outcome = (snapshot, error)
                self._cond.notify_all()

        if error is not None:
            raise error
        return snapshot  # type: ignore[return-value]

    def refresh_now(self) -> bool:
        """
        Wake the timer loop for an immediate scan without blocking the caller.

        A request that arrives while a scan is in flight is coalesced into it
        and not queued. Returns False in that case.
        """
        with self._cond:
            if self._scanning:
                self.tracker.record_coalesced()
                logger.info("Manual refresh coalesced into in-flight scan (cycle %d)", self._cycle)
                return False
            self._wake.set()
        return True

    def cancel(self) -> None:
        """Abort the in-flight scan, if any. Its partial results are discarded."""
        self._cancel.set()

    # -- Timer loop --

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run_loop, daemon=True, name="scan-scheduler")
        self._thread.start()
        logger.info("Scan scheduler started (every %.0fs)", self.interval_sec)

    def stop(self, timeout: float = 10.0) -> None:
        """Cancel any in-flight scan, stop the timer and join the loop thread."""
        self._stop.set()
        self._cancel.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Scan scheduler did not stop within %.1fs", timeout)
            self._thread = None
        logger.info("Scan scheduler stopped")

    def _run_loop(self) -> None:
        while not self._stop.is_set():
            cycle_start = time.time()
            try:
                self.refresh()
            except ScanAborted:
                pass
            except Exception as e:
                logger.warning("Scan cycle failed, retrying in %.0fs: %s", self.interval_sec, e)
            if self._stop.is_set():
                break
            remaining = self.interval_sec - (time.time() - cycle_start)
            if remaining > 0:
                logger.debug("Sleeping %.1fs until next cycle...", remaining)
                self._wake.wait(remaining)
            self._wake.clear()

    # -- Internals --

    def _should_stop(self) -> bool:
        return self._cancel.is_set() or self._stop.is_set()

    def _transition(self, new_state: SchedulerState) -> None:
        if new_state is not self._state:
            logger.debug("Scheduler %s -> %s", self._state.value, new_state.value)
            self._state = new_state

    def _publish(self, snapshot: ScanSnapshot) -> None:
        with self._subscribers_lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(snapshot)
            except Exception as e:
                logger.error("Snapshot subscriber %r failed: %s", callback, e, exc_info=True)
        if self.alert_evaluator is not None:
            try:
                self.alert_evaluator.evaluate(snapshot.opportunities)
            except Exception as e:
                logger.error("Alert evaluation failed for cycle %d: %s", snapshot.cycle, e, exc_info=True)
