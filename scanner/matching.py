"""
Cross-platform candidate matching.

Pairs Polymarket (platform A) markets with Kalshi (platform B) markets:
  1. Bucket by category (unknown "general" markets compare against everything)
  2. Score normalized titles with a pluggable similarity strategy (0-100)
  3. Disqualify pairs whose extracted entities contradict each other
  4. Keep the best passing pairing per market, one-to-one across platforms

Output is deterministic for a given input regardless of input ordering.
"""

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from rapidfuzz import fuzz

from scanner.models import MatchCandidate, Market
from scanner.normalizer import KNOWN_ENTITIES, is_numeric_entity

logger = logging.getLogger(__name__)

DEFAULT_MIN_SIMILARITY = 60.0
DEFAULT_TOP_MATCHES = 10
_GENERAL = "general"

# Similarity strategy: (market_a, market_b) -> score in [0, 100]
SimilarityScorer = Callable[[Market, Market], float]


def fuzzy_score(a: Market, b: Market) -> float:
    """Mean of rapidfuzz token_set_ratio and token_sort_ratio over normalized titles."""
    if not a.normalized_title or not b.normalized_title:
        return 0.0
    set_ratio = fuzz.token_set_ratio(a.normalized_title, b.normalized_title)
    sort_ratio = fuzz.token_sort_ratio(a.normalized_title, b.normalized_title)
    return (set_ratio + sort_ratio) / 2.0


def token_overlap(title_a: str, title_b: str) -> float:
    """Exact token hits count 1, substring hits 0.5, over the union size."""
    tokens_a = set(title_a.split())
    tokens_b = set(title_b.split())
    if not tokens_a or not tokens_b:
        return 0.0
    hits = 0.0
    for tok in tokens_a:
        if tok in tokens_b:
            hits += 1.0
        elif any(tok in other or other in tok for other in tokens_b):
            hits += 0.5
    return hits / len(tokens_a | tokens_b) * 100.0


def _parse_date(raw: str) -> datetime | None:
    if not raw:
        return None
    dt_str = raw.replace("Z", "+00:00")
    if "T" not in dt_str:
        dt_str += "T23:59:59+00:00"
    try:
        dt = datetime.fromisoformat(dt_str)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def date_proximity(end_a: str, end_b: str) -> float:
    """100 for same day, stepping down to 0 beyond a quarter. 50 when unknown."""
    dt_a = _parse_date(end_a)
    dt_b = _parse_date(end_b)
    if dt_a is None or dt_b is None:
        return 50.0
    diff_days = abs((dt_a - dt_b).total_seconds()) / 86400.0
    if diff_days <= 1:
        return 100.0
    if diff_days <= 7:
        return 80.0
    if diff_days <= 30:
        return 50.0
    if diff_days <= 90:
        return 20.0
    return 0.0


def weighted_score(a: Market, b: Market) -> float:
    """0.5 token overlap + 0.3 entity overlap + 0.2 resolution-date proximity."""
    token_sim = token_overlap(a.normalized_title, b.normalized_title)
    entity_sim = 0.0
    if a.entities and b.entities:
        shared = set(a.entities) & set(b.entities)
        entity_sim = 100.0 * len(shared) / max(len(a.entities), len(b.entities))
    date_sim = date_proximity(a.end_date, b.end_date)
    return min(100.0, token_sim * 0.5 + entity_sim * 0.3 + date_sim * 0.2)


SCORERS: dict[str, SimilarityScorer] = {
    "fuzzy": fuzzy_score,
    "weighted": weighted_score,
}


def get_scorer(name: str) -> SimilarityScorer:
    try:
        return SCORERS[name]
    except KeyError:
        raise ValueError(f"Unknown match scorer {name!r} (choose from {sorted(SCORERS)})") from None


def entity_conflict(entities_a: tuple[str, ...], entities_b: tuple[str, ...]) -> bool:
    """
    True when both sides have entities and they contradict: the full sets are
    disjoint, or the known names (or the numbers) present on both sides are disjoint.
    """
    if not entities_a or not entities_b:
        return False
    set_a, set_b = set(entities_a), set(entities_b)
    if set_a.isdisjoint(set_b):
        return True
    known_a, known_b = set_a & KNOWN_ENTITIES, set_b & KNOWN_ENTITIES
    if known_a and known_b and known_a.isdisjoint(known_b):
        return True
    nums_a = {e for e in set_a if is_numeric_entity(e)}
    nums_b = {e for e in set_b if is_numeric_entity(e)}
    return bool(nums_a and nums_b and nums_a.isdisjoint(nums_b))


def _rationale(a: Market, b: Market, mismatch: frozenset[str], conflict: bool) -> str:
    shared = [e for e in a.entities if e in set(b.entities)]
    if shared:
        reason = f"Matched: {', '.join(shared[:3])}"
    elif fuzz.token_set_ratio(a.normalized_title, b.normalized_title) > 50:
        reason = "Title similarity"
    elif date_proximity(a.end_date, b.end_date) > 70:
        reason = "Date proximity"
    else:
        reason = "Partial match"
    if conflict:
        reason += f"; entity mismatch: {', '.join(sorted(mismatch)[:6])}"
    return reason


def _rank_key(c: MatchCandidate) -> tuple[float, str, str]:
    return (-c.score, c.market_a.external_id, c.market_b.external_id)


@dataclass(frozen=True)
class MatchReport:
    """Best one-to-one pairings plus diagnostics for one matching pass."""
    matches: tuple[MatchCandidate, ...]
    top_matches: tuple[MatchCandidate, ...]
    comparison_attempts: int


class CandidateMatcher:
    """
    Matches markets across platforms with a replaceable similarity strategy.

    A candidate passes iff score >= min_similarity and its entities do not
    conflict. Passing candidates are reduced to one pairing per market on each
    side, highest score first, ties broken by external id.
    """

    def __init__(
        self,
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
        scorer: SimilarityScorer = fuzzy_score,
        top_matches_cap: int = DEFAULT_TOP_MATCHES,
    ) -> None:
        if not 0.0 <= min_similarity <= 100.0:
            raise ValueError(f"min_similarity must be within [0, 100], got {min_similarity}")
        self.min_similarity = min_similarity
        self._scorer = scorer
        self._top_matches_cap = top_matches_cap

    def score_pair(self, a: Market, b: Market) -> MatchCandidate:
        score = round(max(0.0, min(100.0, self._scorer(a, b))), 2)
        conflict = entity_conflict(a.entities, b.entities)
        mismatch: frozenset[str] = frozenset()
        if a.entities and b.entities:
            mismatch = frozenset(set(a.entities) ^ set(b.entities))
        return MatchCandidate(
            market_a=a,
            market_b=b,
            score=score,
            entities_a=a.entities,
            entities_b=b.entities,
            entity_mismatch=mismatch,
            passed=score >= self.min_similarity and not conflict,
            rationale=_rationale(a, b, mismatch, conflict),
        )

    def match(
        self,
        markets_a: list[Market],
        markets_b: list[Market],
        should_stop: Callable[[], bool] | None = None,
    ) -> MatchReport:
        by_category: dict[str, list[Market]] = {}
        for m in sorted(markets_b, key=lambda m: m.external_id):
            by_category.setdefault(m.category, []).append(m)
        general_b = by_category.get(_GENERAL, [])
        all_b = sorted(markets_b, key=lambda m: m.external_id)

        passed: list[MatchCandidate] = []
        scored: list[MatchCandidate] = []
        attempts = 0

        for a in sorted(markets_a, key=lambda m: m.external_id):
            if should_stop is not None and should_stop():
                break
            if a.category == _GENERAL:
                pool = all_b
            else:
                pool = by_category.get(a.category, []) + general_b
            for b in pool:
                attempts += 1
                cand = self.score_pair(a, b)
                scored.append(cand)
                if cand.passed:
                    passed.append(cand)
                elif cand.score >= self.min_similarity:
                    logger.debug(
                        "Match REJECTED (entity mismatch): A '%s' vs B '%s' (score %.1f)",
                        a.raw_title, b.raw_title, cand.score,
                    )

        matches = _best_one_to_one(passed)
        top = tuple(heapq.nsmallest(self._top_matches_cap, scored, key=_rank_key))
        logger.info(
            "Matched %d pairs from %d A x %d B markets (%d comparisons)",
            len(matches), len(markets_a), len(markets_b), attempts,
        )
        return MatchReport(matches=matches, top_matches=top, comparison_attempts=attempts)


def _best_one_to_one(candidates: list[MatchCandidate]) -> tuple[MatchCandidate, ...]:
    used_a: set[str] = set()
    used_b: set[str] = set()
    best: list[MatchCandidate] = []
    for cand in sorted(candidates, key=_rank_key):
        a_id = cand.market_a.external_id
        b_id = cand.market_b.external_id
        if a_id in used_a or b_id in used_b:
            continue
        used_a.add(a_id)
        used_b.add(b_id)
        best.append(cand)
    return tuple(best)
