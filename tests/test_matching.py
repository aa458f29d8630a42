"""
Unit tests for scanner/matching.py -- cross-platform candidate matching.
"""

import random

import pytest

from scanner.matching import (
    CandidateMatcher,
    date_proximity,
    entity_conflict,
    fuzzy_score,
    get_scorer,
    token_overlap,
    weighted_score,
)
from scanner.models import Market, Platform
from scanner.normalizer import detect_category, extract_entities, normalize


def _market(
    platform: Platform,
    external_id: str,
    title: str,
    category: str | None = None,
    end_date: str = "",
) -> Market:
    return Market(
        platform=platform,
        external_id=external_id,
        raw_title=title,
        normalized_title=normalize(title),
        entities=extract_entities(title),
        category=category or detect_category(title),
        yes_price=0.5,
        no_price=0.5,
        orderbook_key=external_id,
        end_date=end_date,
    )


def _pm(external_id: str, title: str, **kw) -> Market:
    return _market(Platform.POLYMARKET, external_id, title, **kw)


def _ks(external_id: str, title: str, **kw) -> Market:
    return _market(Platform.KALSHI, external_id, title, **kw)


class TestScorers:
    def test_identical_titles_score_100(self):
        a = _pm("a1", "Will Trump win the 2028 election?")
        b = _ks("b1", "Will Trump win the 2028 election?")
        assert fuzzy_score(a, b) == 100.0

    def test_empty_title_scores_zero(self):
        a = _pm("a1", "???")
        b = _ks("b1", "Will Trump win?")
        assert fuzzy_score(a, b) == 0.0

    def test_unrelated_titles_score_low(self):
        a = _pm("a1", "Will Trump win the 2028 election?")
        b = _ks("b1", "Lakers win the NBA finals?")
        assert fuzzy_score(a, b) < 60

    def test_token_overlap(self):
        assert token_overlap("trump win", "trump win") == 100.0
        assert token_overlap("", "trump") == 0.0
        assert token_overlap("trump win", "biden lose") == 0.0

    def test_date_proximity(self):
        assert date_proximity("2028-11-07", "2028-11-07T12:00:00Z") == 100.0
        assert date_proximity("2028-11-01", "2028-11-07") == 80.0
        assert date_proximity("", "2028-11-07") == 50.0
        assert date_proximity("2028-01-01", "2028-12-31") == 0.0

    def test_weighted_identical_same_day(self):
        a = _pm("a1", "Will Trump win the 2028 election?", end_date="2028-11-07")
        b = _ks("b1", "Will Trump win the 2028 election?", end_date="2028-11-07")
        assert weighted_score(a, b) == pytest.approx(100.0)

    def test_get_scorer(self):
        assert get_scorer("fuzzy") is fuzzy_score
        assert get_scorer("weighted") is weighted_score
        with pytest.raises(ValueError):
            get_scorer("neural")


class TestEntityConflict:
    def test_no_entities_no_conflict(self):
        assert not entity_conflict((), ("trump",))

    def test_disjoint_sets(self):
        assert entity_conflict(("newsom",), ("desantis",))

    def test_disjoint_known_names_with_shared_year(self):
        assert entity_conflict(("trump", "2028"), ("biden", "2028"))

    def test_disjoint_numbers(self):
        assert entity_conflict(("bitcoin", "100000"), ("bitcoin", "150000"))

    def test_compatible(self):
        assert not entity_conflict(("bitcoin", "100000", "december"), ("bitcoin", "100000"))


class TestScorePair:
    def test_identical_titles_pass(self):
        m = CandidateMatcher(min_similarity=60)
        c = m.score_pair(
            _pm("a1", "Will Trump win the 2028 election?"),
            _ks("b1", "Will Trump win the 2028 election?"),
        )
        assert c.score == 100.0
        assert c.passed
        assert c.entity_mismatch == frozenset()
        assert c.rationale.startswith("Matched: ")

    def test_trump_vs_biden_disqualified(self):
        m = CandidateMatcher(min_similarity=60)
        c = m.score_pair(
            _pm("a1", "Will Trump win the 2028 election?"),
            _ks("b1", "Will Biden win the 2028 election?"),
        )
        assert c.score >= 60
        assert not c.passed
        assert c.entity_mismatch == frozenset({"trump", "biden"})
        assert "entity mismatch" in c.rationale

    def test_below_threshold_fails(self):
        m = CandidateMatcher(min_similarity=99)
        c = m.score_pair(
            _pm("a1", "Bitcoin above $100k by December?"),
            _ks("b1", "BTC above 100,000 in December"),
        )
        assert not c.passed

    def test_custom_scorer_clamped(self):
        m = CandidateMatcher(min_similarity=60, scorer=lambda a, b: 250.0)
        c = m.score_pair(_pm("a1", "Fed cuts rates"), _ks("b1", "Fed cuts rates"))
        assert c.score == 100.0

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            CandidateMatcher(min_similarity=101)


class TestMatch:
    def _markets(self):
        markets_a = [
            _pm("pm-trump", "Will Trump win the 2028 election?"),
            _pm("pm-btc", "Bitcoin above $100k by December?"),
            _pm("pm-lakers", "Lakers win the 2026 NBA finals?"),
            _pm("pm-misc", "Will it rain gold tomorrow?"),
        ]
        markets_b = [
            _ks("KX-BIDEN", "Will Biden win the 2028 election?"),
            _ks("KX-TRUMP", "Will Trump win the 2028 election?"),
            _ks("KX-BTC", "BTC above 100,000 in December"),
            _ks("KX-LAKERS", "Lakers win 2026 NBA finals"),
        ]
        return markets_a, markets_b

    def test_pairs_equivalent_events(self):
        a, b = self._markets()
        report = CandidateMatcher(min_similarity=60).match(a, b)
        pairs = {(c.market_a.external_id, c.market_b.external_id) for c in report.matches}
        assert ("pm-trump", "KX-TRUMP") in pairs
        assert ("pm-lakers", "KX-LAKERS") in pairs
        assert all(b_id != "KX-BIDEN" for _, b_id in pairs)

    def test_deterministic_across_input_order(self):
        a, b = self._markets()
        matcher = CandidateMatcher(min_similarity=60)
        baseline = matcher.match(a, b)
        rng = random.Random(7)
        for _ in range(5):
            sa, sb = a[:], b[:]
            rng.shuffle(sa)
            rng.shuffle(sb)
            again = matcher.match(sa, sb)
            assert again.matches == baseline.matches
            assert again.top_matches == baseline.top_matches
            assert again.comparison_attempts == baseline.comparison_attempts

    def test_one_to_one(self):
        a = [
            _pm("pm-1", "Will Trump win the 2028 election?"),
            _pm("pm-2", "Trump wins the 2028 election"),
        ]
        b = [_ks("KX-1", "Will Trump win the 2028 election?")]
        report = CandidateMatcher(min_similarity=60).match(a, b)
        assert len(report.matches) == 1
        assert report.matches[0].market_a.external_id == "pm-1"

    def test_sorted_by_score_descending(self):
        a, b = self._markets()
        report = CandidateMatcher(min_similarity=60).match(a, b)
        scores = [c.score for c in report.matches]
        assert scores == sorted(scores, reverse=True)

    def test_category_buckets_limit_comparisons(self):
        a = [_pm("pm-1", "Will Trump win the 2028 election?")]
        b = [
            _ks("KX-1", "Will Trump win the 2028 election?"),
            _ks("KX-2", "Bitcoin above 100k?"),
            _ks("KX-3", "Will it happen soon?"),  # general compares with everything
        ]
        report = CandidateMatcher(min_similarity=60).match(a, b)
        assert report.comparison_attempts == 2

    def test_general_market_compares_with_all(self):
        a = [_pm("pm-1", "Will it happen soon?")]
        b = [
            _ks("KX-1", "Will Trump win the 2028 election?"),
            _ks("KX-2", "Bitcoin above 100k?"),
        ]
        report = CandidateMatcher(min_similarity=60).match(a, b)
        assert report.comparison_attempts == 2

    def test_top_matches_capped_and_include_failures(self):
        a, b = self._markets()
        report = CandidateMatcher(min_similarity=60, top_matches_cap=3).match(a, b)
        assert len(report.top_matches) == 3
        assert report.top_matches[0].score == 100.0
        ranked = CandidateMatcher(min_similarity=60, top_matches_cap=50).match(a, b)
        assert any(not c.passed for c in ranked.top_matches)

    def test_empty_inputs(self):
        report = CandidateMatcher().match([], [_ks("KX-1", "Anything")])
        assert report.matches == ()
        assert report.comparison_attempts == 0

    def test_should_stop_halts_early(self):
        a, b = self._markets()
        report = CandidateMatcher().match(a, b, should_stop=lambda: True)
        assert report.comparison_attempts == 0
