"""
tests/test_allocation_engine.py
-------------------------------
Unit tests for AllocationEngine.

Test coverage:
    Exact three-candidate allocation
    Batch invariants (exact sum, unique targets, protocol floors)
    Bounds (cap / diversification floor / protocol floor)
    Remainder folding
    Risk adjustment band and direction
    Error handling
    summarize() and risk_decomposition()
"""

import unittest

from rebalancer.allocation_engine import AllocationEngine
from rebalancer.constants import UNIT
from rebalancer.enums import AllocationPurpose
from rebalancer.errors import (
    BalanceOverflow,
    DuplicateStrategy,
    EmptyInputError,
    InsufficientCapital,
    InvalidAllocationPercentage,
    InvalidTotalAllocation,
    ZeroScoreSum,
)
from rebalancer.models import (
    CapitalAllocation,
    LiquidStaking,
    RiskLimits,
    StableLending,
    StrategyPerformance,
    YieldFarming,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_SL = StableLending("pool-1", 7_000, "reserve-1")
_YF = YieldFarming("pair-1", 2, "mint-a", "mint-b", 30)
_LS = LiquidStaking("validator-1", 500, "stake-pool-1", 2)


def _cand(sid, score, volatility=2_000, protocol=_SL) -> StrategyPerformance:
    return StrategyPerformance(
        strategy_id=sid,
        performance_score=score,
        current_balance=UNIT,
        volatility_score=volatility,
        protocol=protocol,
    )


def _three():
    return [
        _cand("s1", 8_000, 2_000, _SL),
        _cand("s2", 7_000, 3_000, _YF),
        _cand("s3", 6_000, 4_000, _LS),
    ]


def _by_id(records) -> dict:
    return {r.strategy_id: r for r in records}


# ===========================================================================
# 1. Exact allocation
# ===========================================================================

class TestExactAllocation(unittest.TestCase):

    def setUp(self):
        self.records = AllocationEngine.allocate(10 * UNIT, _three())
        self.by_id = _by_id(self.records)

    def test_fee_records_first(self):
        self.assertEqual(self.records[0].purpose, AllocationPurpose.PLATFORM_FEE)
        self.assertEqual(self.records[0].amount, 50_000_000)
        self.assertEqual(self.records[1].purpose, AllocationPurpose.MANAGER_INCENTIVE)
        self.assertEqual(self.records[1].amount, 150_000_000)

    def test_strategy_amounts(self):
        # s1 absorbs the 3_012_091_735 remainder
        self.assertEqual(self.by_id["s1"].amount, 3_882_666_666 + 3_012_091_735)
        self.assertEqual(self.by_id["s2"].amount, 1_893_546_666)
        self.assertEqual(self.by_id["s3"].amount, 1_011_694_933)

    def test_sums_to_capital(self):
        self.assertEqual(sum(r.amount for r in self.records), 10 * UNIT)

    def test_first_three_survivors_are_top_performers(self):
        for sid in ("s1", "s2", "s3"):
            self.assertEqual(self.by_id[sid].purpose, AllocationPurpose.TOP_PERFORMER)

    def test_deterministic(self):
        self.assertEqual(self.records, AllocationEngine.allocate(10 * UNIT, _three()))


# ===========================================================================
# 2. Bounds and tagging
# ===========================================================================

class TestBounds(unittest.TestCase):

    def test_protocol_floor_skips_small_share(self):
        # 1.5 units capital: LS share can never reach 1.0 unit
        records = AllocationEngine.allocate(
            3 * UNIT // 2, [_cand("sl", 9_000, 1_000, _SL), _cand("ls", 1_000, 1_000, _LS)]
        )
        self.assertNotIn("ls", _by_id(records))
        self.assertEqual(sum(r.amount for r in records), 3 * UNIT // 2)

    def test_amounts_respect_protocol_floors(self):
        candidates = _three()
        floors = {c.strategy_id: c.protocol.min_allocation() for c in candidates}
        for r in AllocationEngine.allocate(5 * UNIT, candidates):
            if r.strategy_id in floors:
                self.assertGreaterEqual(r.amount, floors[r.strategy_id])

    def test_diversification_floor_skips_tiny_score(self):
        records = AllocationEngine.allocate(
            10 * UNIT, [_cand("big", 10_000), _cand("tiny", 1)]
        )
        self.assertNotIn("tiny", _by_id(records))

    def test_fourth_survivor_is_diversification(self):
        candidates = [_cand(f"s{i}", 5_000) for i in range(5)]
        limits = RiskLimits(max_single_strategy_bps=1_500)
        records = [r for r in AllocationEngine.allocate(100 * UNIT, candidates, limits)
                   if not r.purpose.is_fee]
        purposes = [r.purpose for r in records]
        self.assertEqual(purposes[:3], [AllocationPurpose.TOP_PERFORMER] * 3)
        self.assertTrue(all(p == AllocationPurpose.RISK_DIVERSIFICATION for p in purposes[3:]))
        self.assertGreater(len(purposes), 3)

    def test_zero_fees_produce_no_fee_records(self):
        limits = RiskLimits(platform_fee_bps=0, manager_fee_bps=0)
        records = AllocationEngine.allocate(UNIT, [_cand("a", 100)], limits)
        self.assertEqual([r.strategy_id for r in records], ["a"])
        self.assertEqual(records[0].amount, UNIT)


# ===========================================================================
# 3. Remainder folding
# ===========================================================================

class TestRemainder(unittest.TestCase):

    def test_no_survivor_raises(self):
        # every share falls under the liquid staking floor
        with self.assertRaises(InsufficientCapital):
            AllocationEngine.allocate(UNIT // 2, [_cand("ls", 5_000, 0, _LS)])

    def test_fold_without_top_performer_raises(self):
        records = [
            CapitalAllocation("fee", 10, AllocationPurpose.PLATFORM_FEE),
            CapitalAllocation("small", 100, AllocationPurpose.RISK_DIVERSIFICATION),
            CapitalAllocation("large", 300, AllocationPurpose.RISK_DIVERSIFICATION),
        ]
        with self.assertRaises(InsufficientCapital):
            AllocationEngine._fold_remainder(records, 5_000_000)

    def test_fold_nothing_left_is_noop(self):
        records = [CapitalAllocation("small", 100, AllocationPurpose.RISK_DIVERSIFICATION)]
        self.assertEqual(AllocationEngine._fold_remainder(records, 0), records)

    def test_first_survivor_is_always_top_performer(self):
        # a low-score first candidate is skipped; tagging restarts at the next survivor
        candidates = [
            _cand("tiny", 1, 0, _SL),
            _cand("big", 9_000, 0, _SL),
            _cand("mid", 5_000, 0, _SL),
            _cand("low", 4_000, 0, _SL),
            _cand("last", 3_000, 0, _SL),
        ]
        allocations = AllocationEngine.allocate(10 * UNIT, candidates)
        strategy_records = [a for a in allocations if not a.purpose.is_fee]
        self.assertEqual(strategy_records[0].purpose, AllocationPurpose.TOP_PERFORMER)
        self.assertEqual(sum(a.amount for a in allocations), 10 * UNIT)

    def test_fold_prefers_first_top_performer(self):
        records = [
            CapitalAllocation("a", 100, AllocationPurpose.TOP_PERFORMER),
            CapitalAllocation("b", 900, AllocationPurpose.TOP_PERFORMER),
        ]
        folded = AllocationEngine._fold_remainder(records, 7)
        self.assertEqual(folded[0].amount, 107)


# ===========================================================================
# 4. Risk adjustment
# ===========================================================================

class TestRiskAdjustment(unittest.TestCase):

    def test_default_tolerance_values(self):
        limits = RiskLimits()
        self.assertEqual(AllocationEngine.risk_adjustment(2_000, limits), 10_400)
        self.assertEqual(AllocationEngine.risk_adjustment(3_000, limits), 9_600)
        self.assertEqual(AllocationEngine.risk_adjustment(4_000, limits), 8_800)

    def test_clamped_both_sides(self):
        high = RiskLimits(risk_tolerance_bps=20_000)
        low = RiskLimits(risk_tolerance_bps=1_000)
        self.assertEqual(AllocationEngine.risk_adjustment(0, high), 15_000)
        self.assertEqual(AllocationEngine.risk_adjustment(10_000, low), 5_000)

    def test_decreasing_in_volatility(self):
        limits = RiskLimits()
        values = [AllocationEngine.risk_adjustment(v, limits) for v in range(0, 10_001, 500)]
        self.assertEqual(values, sorted(values, reverse=True))
        self.assertTrue(all(5_000 <= v <= 15_000 for v in values))


# ===========================================================================
# 5. Error handling
# ===========================================================================

class TestErrors(unittest.TestCase):

    def test_empty_candidates(self):
        with self.assertRaises(EmptyInputError):
            AllocationEngine.allocate(UNIT, [])

    def test_zero_capital(self):
        with self.assertRaises(InsufficientCapital):
            AllocationEngine.allocate(0, _three())

    def test_zero_score_sum(self):
        with self.assertRaises(ZeroScoreSum):
            AllocationEngine.allocate(UNIT, [_cand("a", 0), _cand("b", 0)])

    def test_duplicate_candidates(self):
        with self.assertRaises(DuplicateStrategy):
            AllocationEngine.allocate(UNIT, [_cand("a", 10), _cand("a", 20)])

    def test_invalid_limits(self):
        with self.assertRaises(InvalidAllocationPercentage):
            AllocationEngine.allocate(
                UNIT, _three(), RiskLimits(min_single_strategy_bps=5_000, max_single_strategy_bps=4_000)
            )


# ===========================================================================
# 6. Batch validation and accounting
# ===========================================================================

class TestBatch(unittest.TestCase):

    def test_check_batch_rejects_mismatch(self):
        records = [CapitalAllocation("a", 10, AllocationPurpose.TOP_PERFORMER)]
        with self.assertRaises(InvalidTotalAllocation):
            AllocationEngine.check_batch(records, 11)

    def test_rejects_duplicate_targets(self):
        records = [
            CapitalAllocation("a", 10, AllocationPurpose.TOP_PERFORMER),
            CapitalAllocation("a", 5, AllocationPurpose.RISK_DIVERSIFICATION),
        ]
        with self.assertRaises(DuplicateStrategy):
            AllocationEngine.validate_allocations(records)

    def test_rejects_zero_amount(self):
        with self.assertRaises(InsufficientCapital):
            AllocationEngine.validate_allocations(
                [CapitalAllocation("a", 0, AllocationPurpose.TOP_PERFORMER)]
            )

    def test_rejects_oversized_amount(self):
        with self.assertRaises(BalanceOverflow):
            AllocationEngine.validate_allocations(
                [CapitalAllocation("a", 2**64 // 1000, AllocationPurpose.TOP_PERFORMER)]
            )

    def test_summarize(self):
        summary = AllocationEngine.summarize(AllocationEngine.allocate(10 * UNIT, _three()))
        self.assertEqual(summary.total_allocated, 10 * UNIT)
        self.assertEqual(summary.strategies_updated, 3)
        self.assertEqual(summary.platform_fees, 50_000_000)
        self.assertEqual(summary.manager_fees, 150_000_000)
        self.assertEqual(summary.total_strategy_allocation, 9_800_000_000)

    def test_risk_decomposition(self):
        candidates = _three()
        shares = AllocationEngine.risk_decomposition(
            AllocationEngine.allocate(10 * UNIT, candidates), candidates
        )
        self.assertEqual(set(shares), {"s1", "s2", "s3"})
        self.assertLessEqual(sum(shares.values()), 10_000)
        self.assertEqual(max(shares, key=shares.get), "s1")

    def test_risk_decomposition_without_risk(self):
        records = [CapitalAllocation("a", 10, AllocationPurpose.TOP_PERFORMER)]
        self.assertEqual(
            AllocationEngine.risk_decomposition(records, [_cand("a", 1, volatility=0)]), {}
        )


if __name__ == "__main__":
    unittest.main()
