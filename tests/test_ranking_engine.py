"""
tests/test_ranking_engine.py
----------------------------
Unit tests for RankingEngine.

Test coverage:
    Sort order and tie-breaks
    Percentile assignment
    Small vs large portfolio underperformer policy
    Eligibility filter
    Full ranking pass (rank_portfolio)
"""

import unittest

from rebalancer.constants import UNIT
from rebalancer.enums import StrategyStatus, ThresholdMode
from rebalancer.errors import EmptyInputError, InsufficientStrategies, InvalidRebalanceThreshold
from rebalancer.models import StableLending, StrategyPerformance
from rebalancer.ranking_engine import RankingEngine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _perf(sid, score, balance=UNIT, volatility=4_000, **kwargs) -> StrategyPerformance:
    return StrategyPerformance(
        strategy_id=sid,
        performance_score=score,
        current_balance=balance,
        volatility_score=volatility,
        protocol=StableLending(f"pool-{sid}", 5_000, f"reserve-{sid}"),
        **kwargs,
    )


def _four():
    return [
        _perf("c", 5_000, 2 * UNIT),
        _perf("a", 9_500, 10 * UNIT),
        _perf("d", 2_500, 1 * UNIT),
        _perf("b", 7_500, 5 * UNIT),
    ]


# ===========================================================================
# 1. Ordering
# ===========================================================================

class TestOrdering(unittest.TestCase):

    def test_score_descending(self):
        outcome = RankingEngine.rank(_four(), 23)
        self.assertEqual([s.strategy_id for s in outcome.strategies], ["a", "b", "c", "d"])

    def test_balance_breaks_score_ties(self):
        outcome = RankingEngine.rank([_perf("small", 5_000, UNIT), _perf("big", 5_000, 3 * UNIT)], 20)
        self.assertEqual(outcome.strategies[0].strategy_id, "big")

    def test_volatility_breaks_balance_ties(self):
        outcome = RankingEngine.rank(
            [_perf("risky", 5_000, UNIT, 6_000), _perf("calm", 5_000, UNIT, 1_000)], 20
        )
        self.assertEqual(outcome.strategies[0].strategy_id, "calm")

    def test_full_ties_keep_input_order(self):
        outcome = RankingEngine.rank([_perf("x", 1, 1, 1), _perf("y", 1, 1, 1)], 20)
        self.assertEqual([s.strategy_id for s in outcome.strategies], ["x", "y"])

    def test_input_is_not_mutated(self):
        records = _four()
        RankingEngine.rank(records, 23)
        self.assertTrue(all(r.percentile_rank == 0 for r in records))
        self.assertEqual(records[0].strategy_id, "c")

    def test_idempotent(self):
        records = _four()
        self.assertEqual(RankingEngine.rank(records, 23), RankingEngine.rank(records, 23))


# ===========================================================================
# 2. Percentiles and underperformers
# ===========================================================================

class TestPercentiles(unittest.TestCase):

    def test_four_strategy_ranks(self):
        outcome = RankingEngine.rank(_four(), 23)
        self.assertEqual([s.percentile_rank for s in outcome.strategies], [100, 66, 33, 0])
        self.assertEqual(outcome.underperformers, ("d",))

    def test_dynamic_threshold_when_omitted(self):
        # volatility 4000 everywhere → average 40% → threshold 23
        strategies, underperformers = RankingEngine.rank(_four())
        self.assertEqual(underperformers, ("d",))

    def test_single_strategy_is_median_and_never_flagged(self):
        for threshold in (None, 1, 10, 50):
            outcome = RankingEngine.rank([_perf("solo", 100)], threshold)
            self.assertEqual(outcome.strategies[0].percentile_rank, 50)
            self.assertEqual(outcome.underperformers, ())

    def test_large_portfolio_flags_bottom_slice_only(self):
        records = [_perf(f"s{i}", 9_000 - i * 1_000) for i in range(5)]
        outcome = RankingEngine.rank(records, 30)
        # rank 25 is below 30 but the slice is max(5 * 30 // 100, 1) = 1
        self.assertEqual([s.percentile_rank for s in outcome.strategies], [100, 75, 50, 25, 0])
        self.assertEqual(outcome.underperformers, ("s4",))

    def test_large_portfolio_slice_grows_with_threshold(self):
        records = [_perf(f"s{i}", 9_000 - i * 500) for i in range(10)]
        outcome = RankingEngine.rank(records, 40)
        self.assertEqual(outcome.underperformers, ("s6", "s7", "s8", "s9"))

    def test_empty_raises(self):
        with self.assertRaises(EmptyInputError):
            RankingEngine.rank([], 20)

    def test_threshold_out_of_range(self):
        with self.assertRaises(InvalidRebalanceThreshold):
            RankingEngine.rank(_four(), 51)

    def test_zero_threshold_rejected(self):
        records = [_perf(f"s{i}", 9_000 - i * 1_000) for i in range(6)]
        with self.assertRaises(InvalidRebalanceThreshold):
            RankingEngine.rank(records, 0)


# ===========================================================================
# 3. Eligibility
# ===========================================================================

class TestEligibility(unittest.TestCase):

    def test_eligible(self):
        self.assertTrue(RankingEngine.is_eligible(_perf("a", 1, percentile_rank=10), 20))

    def test_rank_at_threshold_not_eligible(self):
        self.assertFalse(RankingEngine.is_eligible(_perf("a", 1, percentile_rank=20), 20))

    def test_dust_balance_not_eligible(self):
        self.assertFalse(
            RankingEngine.is_eligible(_perf("a", 1, balance=49_999_999, percentile_rank=0), 20)
        )
        self.assertTrue(
            RankingEngine.is_eligible(_perf("a", 1, balance=50_000_000, percentile_rank=0), 20)
        )

    def test_inactive_not_eligible(self):
        paused = _perf("a", 1, percentile_rank=0, status=StrategyStatus.PAUSED)
        self.assertFalse(RankingEngine.is_eligible(paused, 20))


# ===========================================================================
# 4. Full ranking pass
# ===========================================================================

class TestRankPortfolio(unittest.TestCase):

    def test_inactive_carried_through_unranked(self):
        records = _four() + [_perf("old", 9_999, status=StrategyStatus.DEPRECATED)]
        results = RankingEngine.rank_portfolio(records)
        self.assertEqual(results.total_strategies, 5)
        self.assertEqual(results.active_strategies, 4)
        self.assertEqual(results.threshold, 23)
        self.assertEqual(results.strategies[-1].strategy_id, "old")
        self.assertEqual(results.ranks()["old"], 0)
        self.assertEqual(results.underperformers, ("d",))
        self.assertEqual(results.rebalancing_candidates, ("d",))

    def test_dust_underperformer_is_not_a_candidate(self):
        records = [_perf("a", 9_000), _perf("b", 1_000, balance=10_000_000)]
        results = RankingEngine.rank_portfolio(records)
        self.assertEqual(results.underperformers, ("b",))
        self.assertEqual(results.rebalancing_candidates, ())

    def test_fixed_mode_uses_given_threshold(self):
        results = RankingEngine.rank_portfolio(
            _four(), threshold_mode=ThresholdMode.FIXED, fixed_threshold=50
        )
        self.assertEqual(results.threshold, 50)
        self.assertEqual(results.underperformers, ("c", "d"))

    def test_fixed_mode_requires_threshold(self):
        with self.assertRaises(InvalidRebalanceThreshold):
            RankingEngine.rank_portfolio(_four(), threshold_mode=ThresholdMode.FIXED)

    def test_needs_two_strategies(self):
        with self.assertRaises(InsufficientStrategies):
            RankingEngine.rank_portfolio([_perf("a", 1)])

    def test_needs_an_active_strategy(self):
        paused = [_perf(s, 1, status=StrategyStatus.PAUSED) for s in ("a", "b")]
        with self.assertRaises(InsufficientStrategies):
            RankingEngine.rank_portfolio(paused)


if __name__ == "__main__":
    unittest.main()
