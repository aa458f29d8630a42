"""
Clean, scannable console output for the arbitrage scanner.

Pure formatting functions that emit structured log lines using box-drawing
characters. No side effects beyond logging. All data arrives via arguments.
"""

from __future__ import annotations

import argparse
import logging
import time
from collections import Counter

from config import Config
from monitor.scan_tracker import ScanTracker
from scanner.models import ArbOpportunity, ScanResult

logger = logging.getLogger(__name__)

# Box-drawing characters
_TOP = "┌"  # ┌
_MID = "│"  # │
_BOT = "└"  # └
_DASH = "─"  # ─
_VERT_SEP = "│"  # │ (inline separator)

_MAX_TITLE_LEN = 50


def _truncate(text: str, length: int = _MAX_TITLE_LEN) -> str:
    """Truncate text to *length* chars, appending ellipsis if trimmed."""
    if len(text) <= length:
        return text
    return text[: length - 1] + "…"


def _route_label(opp: ArbOpportunity) -> str:
    """e.g. 'kalshi->polymarket' (buy side first)."""
    return f"{opp.buy_platform.value}->{opp.sell_platform.value}"


def _category_breakdown(opps: tuple[ArbOpportunity, ...]) -> str:
    """Return e.g. '(2 politics, 1 crypto)'."""
    counts: Counter[str] = Counter(o.category for o in opps)
    parts = [f"{v} {k}" for k, v in counts.most_common()]
    return f"({', '.join(parts)})"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def print_startup(cfg: Config, args: argparse.Namespace) -> None:
    """Compact config block emitted once after the banner."""
    mode = "ONCE" if getattr(args, "once", False) else "LOOP"
    category = getattr(args, "category", None) or "all"
    logger.info(
        "  Mode: %-8s Category: %-12s Spread >= %.1f%%  Fee %.1f%%/side",
        mode, category, getattr(args, "min_spread", None) or cfg.min_spread_pct,
        cfg.fee_pct_per_platform,
    )
    logger.info(
        "  Matching: %s >= %.0f  Markets/platform <= %d  Book workers: %d",
        cfg.match_scorer, cfg.min_similarity, cfg.max_markets_per_platform, cfg.orderbook_workers,
    )
    logger.info("  Platforms: polymarket  kalshi  (via %s)", cfg.dome_api_host)
    logger.info(
        "  Interval: %.1fs  API: %s",
        cfg.scan_interval_sec,
        f"{cfg.server_host}:{cfg.server_port}" if getattr(args, "serve", False) else "off",
    )


def print_cycle_header(cycle: int) -> None:
    """Emit a horizontal divider with cycle number and wall-clock time."""
    ts = time.strftime("%H:%M:%S")
    label = f" Cycle {cycle} "
    left_dashes = _DASH * 2
    right_pad = 60 - len(left_dashes) - len(label) - len(ts) - 3
    if right_pad < 2:
        right_pad = 2
    line = f"{left_dashes}{label}{_DASH * right_pad} {ts} {_DASH * 2}"
    logger.info(line)


def print_scan_result(result: ScanResult, scan_elapsed: float) -> None:
    """
    Emit the boxed scan summary.

    When there are no opportunities: compact box.
    When opportunities exist: full table with event titles.
    """
    stats = result.stats
    logger.info(
        "  Fetched %s polymarket + %s kalshi markets, %s comparisons, %d matched in %.1fs",
        f"{stats.platform_a_count:,}",
        f"{stats.platform_b_count:,}",
        f"{stats.comparison_attempts:,}",
        stats.matched_pairs,
        scan_elapsed,
    )
    for w in result.warnings:
        logger.info("  %s %s: %s", _MID, w.code, w.message)
    if stats.orderbook_errors:
        logger.info("  %s %d orderbook fetches failed", _MID, len(stats.orderbook_errors))

    opps = result.opportunities
    if not opps:
        logger.info("  %s No opportunities found", _TOP)
        return

    n = len(opps)
    logger.info("  %s %d opportunit%s found %s", _TOP, n, "y" if n == 1 else "ies", _category_breakdown(opps))
    logger.info("  %s", _MID)

    logger.info(
        "  %s  %-3s %-22s %-50s %6s %6s %7s %7s %5s",
        _MID, "#", "Route", "Event", "Buy", "Sell", "Spread", "Net", "Match",
    )

    for idx, opp in enumerate(opps, 1):
        logger.info(
            "  %s  %-3d %-22s %-50s %5.1fc %5.1fc %6.2f%% %6.2f%% %5.0f",
            _MID,
            idx,
            _route_label(opp),
            _truncate(opp.event_title),
            opp.buy_price,
            opp.sell_price,
            opp.spread_pct,
            opp.estimated_profit_pct,
            opp.match_score,
        )

    logger.info("  %s", _MID)

    best = opps[0]
    logger.info(
        "  %s  Best: %.2f%% spread (%.2f%% after fees) %s %s",
        _MID, best.spread_pct, best.estimated_profit_pct, _VERT_SEP, _truncate(best.event_title, 40),
    )


def print_cycle_error(error: BaseException) -> None:
    """Emit a compact error box when a cycle fails before the scan completes."""
    retry = " (will retry)" if getattr(error, "retryable", False) else ""
    logger.info("  %s Scan failed%s: %s", _TOP, retry, error)


def print_cycle_footer(tracker: ScanTracker) -> None:
    """Close the box with session-level totals."""
    s = tracker.summary()
    if s["best_spread_pct_seen"] > 0:
        logger.info(
            "  %s Session: %d cycles %s %d opps total (%d unique) %s best %.2f%% spread",
            _BOT, s["total_cycles"], _VERT_SEP, s["total_opportunities_found"],
            s["unique_opportunities"], _VERT_SEP, s["best_spread_pct_seen"],
        )
    else:
        logger.info(
            "  %s Session: %d cycles %s %d opps total",
            _BOT, s["total_cycles"], _VERT_SEP, s["total_opportunities_found"],
        )
