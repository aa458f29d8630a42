"""
Session-level scan tracker. Accumulates per-cycle outcomes and produces an
aggregate summary for the status endpoint and the shutdown log.

Memory-bounded: the set of distinct opportunity ids is capped.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field

from scanner.models import ScanSnapshot


@dataclass
class ScanTracker:
    total_cycles: int = 0
    failed_cycles: int = 0
    aborted_cycles: int = 0
    coalesced_refreshes: int = 0
    total_opportunities_found: int = 0
    total_orderbook_errors: int = 0
    best_spread_pct_seen: float = 0.0
    best_opportunity_title: str = ""
    last_cycle_duration_sec: float = 0.0
    last_error: str = ""
    unique_opportunity_ids: set[str] = field(default_factory=set)
    # Memory cap for unique_opportunity_ids
    max_tracked_ids: int = 10_000
    _session_start: float = field(default_factory=time.time)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record_cycle(self, snapshot: ScanSnapshot, duration_sec: float) -> None:
        """Record one successful scan cycle."""
        with self._lock:
            self.total_cycles += 1
            self.last_cycle_duration_sec = duration_sec
            self.total_opportunities_found += len(snapshot.opportunities)
            self.total_orderbook_errors += len(snapshot.stats.orderbook_errors)
            for opp in snapshot.opportunities:
                if len(self.unique_opportunity_ids) < self.max_tracked_ids:
                    self.unique_opportunity_ids.add(opp.id)
                if opp.spread_pct > self.best_spread_pct_seen:
                    self.best_spread_pct_seen = opp.spread_pct
                    self.best_opportunity_title = opp.event_title

    def record_failure(self, error: BaseException, duration_sec: float) -> None:
        with self._lock:
            self.total_cycles += 1
            self.failed_cycles += 1
            self.last_cycle_duration_sec = duration_sec
            self.last_error = str(error)

    def record_abort(self) -> None:
        with self._lock:
            self.aborted_cycles += 1

    def record_coalesced(self) -> None:
        with self._lock:
            self.coalesced_refreshes += 1

    @property
    def uptime_sec(self) -> float:
        return time.time() - self._session_start

    def summary(self) -> dict:
        """Aggregate session stats as a JSON-friendly dict."""
        with self._lock:
            ok_cycles = self.total_cycles - self.failed_cycles
            return {
                "total_cycles": self.total_cycles,
                "failed_cycles": self.failed_cycles,
                "aborted_cycles": self.aborted_cycles,
                "coalesced_refreshes": self.coalesced_refreshes,
                "success_rate": (ok_cycles / self.total_cycles) if self.total_cycles else 0.0,
                "total_opportunities_found": self.total_opportunities_found,
                "unique_opportunities": len(self.unique_opportunity_ids),
                "total_orderbook_errors": self.total_orderbook_errors,
                "best_spread_pct_seen": round(self.best_spread_pct_seen, 4),
                "best_opportunity_title": self.best_opportunity_title,
                "last_cycle_duration_sec": round(self.last_cycle_duration_sec, 3),
                "last_error": self.last_error,
                "uptime_sec": round(self.uptime_sec, 1),
            }
