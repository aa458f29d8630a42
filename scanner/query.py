"""
Query surface over the latest published scan snapshot.

Production callers get a ScanResult; debug callers get a DebugScanResult
carrying the diagnostic trace. The two are distinct types.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from scanner.models import DebugScanResult, ScanResult, ScanSnapshot, ScanStats, ScanWarning
from scanner.opportunities import rank_opportunities


@dataclass(frozen=True)
class ScanQuery:
    category: str | None = None
    min_spread: float = 0.0
    min_similarity: float | None = None  # can only tighten the cycle's threshold
    limit: int | None = None
    debug: bool = False


def query_snapshot(snapshot: ScanSnapshot, query: ScanQuery) -> ScanResult | DebugScanResult:
    """
    Filter, sort and limit one snapshot's opportunities. Pure.

    Pairs below the cycle's match threshold were never matched, so a looser
    min_similarity cannot bring them back; the result then carries a
    "min_similarity_clamped" warning naming the threshold actually applied.
    """
    min_score = max(snapshot.min_similarity, query.min_similarity or 0.0)
    warnings = snapshot.warnings
    if query.min_similarity is not None and query.min_similarity < snapshot.min_similarity:
        warnings = warnings + (ScanWarning(
            code="min_similarity_clamped",
            message=(
                f"min_similarity {query.min_similarity:g} is below the scan threshold "
                f"{snapshot.min_similarity:g}; {snapshot.min_similarity:g} was applied"
            ),
        ),)
    opportunities = tuple(rank_opportunities(
        snapshot.opportunities,
        min_spread=query.min_spread,
        category=query.category,
        limit=query.limit,
        min_match_score=min_score,
    ))
    stats = replace(snapshot.stats, opportunities_found=len(opportunities))
    if query.debug:
        return DebugScanResult(
            opportunities=opportunities,
            stats=stats,
            warnings=warnings,
            scanned_at=snapshot.scanned_at,
            cycle=snapshot.cycle,
            debug=snapshot.trace,
        )
    return ScanResult(
        opportunities=opportunities,
        stats=stats,
        warnings=warnings,
        scanned_at=snapshot.scanned_at,
        cycle=snapshot.cycle,
    )


def empty_result(query: ScanQuery) -> ScanResult | DebugScanResult:
    """Result shape returned before the first cycle has completed."""
    if query.debug:
        return DebugScanResult(opportunities=(), stats=ScanStats())
    return ScanResult(opportunities=(), stats=ScanStats())
