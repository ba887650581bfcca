"""
rebalancer/allocation_engine.py
-------------------------------
Pure transformation engine: extracted capital + ranked recipients →
capital allocation records.

Design contract:
  - No score computation
  - No ranking
  - No persistence or transfer execution
  - Fully deterministic and stateless (all methods are @staticmethod)
  - Every batch it returns sums exactly to the capital it was given
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, List, Optional, Sequence

from rebalancer.constants import (
    BPS_DENOMINATOR,
    MAX_RISK_MULTIPLIER_BPS,
    MAX_VOLATILITY_SCORE,
    MIN_RISK_MULTIPLIER_BPS,
    TOP_PERFORMER_SLOTS,
)
from rebalancer.enums import AllocationPurpose
from rebalancer.errors import (
    BalanceOverflow,
    DuplicateStrategy,
    EmptyInputError,
    InsufficientCapital,
    InvalidTotalAllocation,
    ZeroScoreSum,
)
from rebalancer.fixed_point import U64_MAX, U128_MAX, checked_add, checked_sum, ensure_u64, mul_div
from rebalancer.models import AllocationSummary, CapitalAllocation, RiskLimits, StrategyPerformance

logger = logging.getLogger(__name__)

_STRATEGY_PURPOSES = (AllocationPurpose.TOP_PERFORMER, AllocationPurpose.RISK_DIVERSIFICATION)


class AllocationEngine:
    """
    Split available capital into fee records and per-strategy allocations.

    Algorithm (strictly ordered)::

        1. platform fee, manager fee          (bps of capital, off the top)
        2. share = remaining * score / Σscore (u128 intermediate)
        3. cap at max_single, drop below min_single   (bps of capital)
        4. drop below the protocol's absolute minimum
        5. × risk multiplier, cap at remaining pool, re-check the minimum
        6. first three survivors → TopPerformer, rest → RiskDiversification
        7. fold the remainder so the batch sums to capital exactly

    The pool shrinks as candidates are funded, so candidate order matters:
    callers pass recipients best first.
    """

    # ------------------------------------------------------------------ #
    #  Public entry point
    # ------------------------------------------------------------------ #

    @staticmethod
    def allocate(
        capital: int,
        candidates: Sequence[StrategyPerformance],
        risk_limits: Optional[RiskLimits] = None,
    ) -> List[CapitalAllocation]:
        """
        Allocate *capital* across *candidates*.

        Parameters
        ----------
        capital:
            Capital to distribute, smallest currency units (> 0).
        candidates:
            Recipients in priority order.  Each record needs
            ``strategy_id``, ``performance_score``, ``volatility_score`` and
            ``protocol``.
        risk_limits:
            Bounds and fee configuration; defaults to ``RiskLimits()``.

        Returns
        -------
        List of ``CapitalAllocation``: fee records first, then strategy
        records in candidate order.  Amounts sum exactly to *capital*.

        Raises
        ------
        InsufficientCapital
            *capital* is zero, or no candidate survived the bounds.
        EmptyInputError
            *candidates* is empty.
        DuplicateStrategy
            A target id appears twice (among candidates or treasuries).
        ZeroScoreSum
            Every candidate has a zero performance score.
        MathOverflow
            Any fixed-point step overflows.
        """
        capital = ensure_u64(capital, "capital")
        if capital == 0:
            raise InsufficientCapital("Cannot allocate zero capital.")
        if not candidates:
            raise EmptyInputError("No candidate strategies to allocate to.")

        limits = risk_limits or RiskLimits()
        limits.validate()
        AllocationEngine._reject_duplicate_candidates(candidates)

        total_score = AllocationEngine._total_score(candidates)

        records: List[CapitalAllocation] = []
        remaining = capital

        # --- Step 1: fees off the top -----------------------------------
        for bps, target, purpose in (
            (limits.platform_fee_bps, limits.platform_treasury, AllocationPurpose.PLATFORM_FEE),
            (limits.manager_fee_bps, limits.manager_treasury, AllocationPurpose.MANAGER_INCENTIVE),
        ):
            fee = AllocationEngine._bps_of(capital, bps)
            if fee > 0:
                records.append(CapitalAllocation(target, fee, purpose))
                remaining -= fee

        max_single = AllocationEngine._bps_of(capital, limits.max_single_strategy_bps)
        min_single = AllocationEngine._bps_of(capital, limits.min_single_strategy_bps)

        # --- Steps 2-6: per-candidate shares -----------------------------
        survivors = 0
        for strategy in candidates:
            if remaining == 0:
                break

            share = mul_div(remaining, strategy.performance_score, total_score)
            amount = min(share, max_single)

            if amount < min_single:
                logger.debug("Skip %s: %d below diversification floor %d",
                             strategy.strategy_id, amount, min_single)
                continue

            floor = strategy.protocol.min_allocation()
            if amount < floor:
                logger.debug("Skip %s: %d below %s minimum %d",
                             strategy.strategy_id, amount, strategy.protocol.protocol_name, floor)
                continue

            multiplier = AllocationEngine.risk_adjustment(strategy.volatility_score, limits)
            amount = min(mul_div(amount, multiplier, BPS_DENOMINATOR), remaining)
            if amount < floor:
                logger.debug("Skip %s: risk-adjusted %d below %s minimum %d",
                             strategy.strategy_id, amount, strategy.protocol.protocol_name, floor)
                continue

            purpose = (
                AllocationPurpose.TOP_PERFORMER
                if survivors < TOP_PERFORMER_SLOTS
                else AllocationPurpose.RISK_DIVERSIFICATION
            )
            records.append(CapitalAllocation(strategy.strategy_id, amount, purpose))
            remaining -= amount
            survivors += 1

        # --- Step 7: remainder -------------------------------------------
        records = AllocationEngine._fold_remainder(records, remaining)

        AllocationEngine.check_batch(records, capital)
        logger.debug("Allocated %d across %d records (%d strategies)",
                     capital, len(records), survivors)
        return records

    @staticmethod
    def risk_adjustment(volatility_score: int, risk_limits: RiskLimits) -> int:
        """
        Allocation multiplier in basis points, always within 5000–15000.

        Inverse volatility is rescaled linearly onto 5000–15000, scaled by
        the portfolio's risk tolerance, then clamped back into the band.
        Lower volatility never yields a smaller multiplier.
        """
        inverse = MAX_VOLATILITY_SCORE - min(volatility_score, MAX_VOLATILITY_SCORE)
        span = MAX_RISK_MULTIPLIER_BPS - MIN_RISK_MULTIPLIER_BPS
        multiplier = MIN_RISK_MULTIPLIER_BPS + mul_div(inverse, span, BPS_DENOMINATOR)
        multiplier = mul_div(multiplier, risk_limits.risk_tolerance_bps, BPS_DENOMINATOR)
        return max(MIN_RISK_MULTIPLIER_BPS, min(multiplier, MAX_RISK_MULTIPLIER_BPS))

    # ------------------------------------------------------------------ #
    #  Batch validation and accounting
    # ------------------------------------------------------------------ #

    @staticmethod
    def validate_allocations(allocations: Sequence[CapitalAllocation]) -> int:
        """
        Per-record checks; returns the checked batch total.

        Raises ``DuplicateStrategy`` on a repeated target,
        ``InsufficientCapital`` on a non-positive amount and
        ``BalanceOverflow`` on an amount beyond the supported ceiling.
        """
        seen = set()
        total = 0
        for record in allocations:
            if record.strategy_id in seen:
                raise DuplicateStrategy(
                    f"Target {record.strategy_id} appears more than once in the batch."
                )
            seen.add(record.strategy_id)

            if record.amount <= 0:
                raise InsufficientCapital(
                    f"Allocation to {record.strategy_id} must be positive (got {record.amount})."
                )
            if record.amount >= U64_MAX // 1000:
                raise BalanceOverflow(f"Allocation to {record.strategy_id} is too large.")

            total = checked_add(total, record.amount, error=BalanceOverflow)
        return total

    @staticmethod
    def check_batch(allocations: Sequence[CapitalAllocation], capital: int) -> int:
        """Validate *allocations* and require they sum exactly to *capital*."""
        total = AllocationEngine.validate_allocations(allocations)
        if total != capital:
            raise InvalidTotalAllocation(
                f"Batch allocates {total} but {capital} was submitted."
            )
        return total

    @staticmethod
    def summarize(allocations: Sequence[CapitalAllocation]) -> AllocationSummary:
        """
        Break a validated batch down by purpose.

        Returns
        -------
        AllocationSummary
            ``total_allocated``, ``strategies_updated``,
            ``total_strategy_allocation``, ``platform_fees``, ``manager_fees``.
        """
        total = AllocationEngine.validate_allocations(allocations)

        strategy_amounts = [a.amount for a in allocations if a.purpose in _STRATEGY_PURPOSES]
        summary = AllocationSummary(
            total_allocated=total,
            strategies_updated=len(strategy_amounts),
            total_strategy_allocation=checked_sum(strategy_amounts, error=BalanceOverflow),
            platform_fees=checked_sum(
                (a.amount for a in allocations if a.purpose == AllocationPurpose.PLATFORM_FEE),
                error=BalanceOverflow,
            ),
            manager_fees=checked_sum(
                (a.amount for a in allocations if a.purpose == AllocationPurpose.MANAGER_INCENTIVE),
                error=BalanceOverflow,
            ),
        )

        expected = checked_sum(
            (summary.total_strategy_allocation, summary.platform_fees, summary.manager_fees),
            error=BalanceOverflow,
        )
        if expected != summary.total_allocated:
            raise InvalidTotalAllocation("Purpose breakdown does not add up to the batch total.")
        return summary

    @staticmethod
    def risk_decomposition(
        allocations: Sequence[CapitalAllocation],
        candidates: Sequence[StrategyPerformance],
    ) -> Dict[str, int]:
        """
        Each strategy record's share of portfolio risk, in basis points.

        Uses a simplified independent-volatility model:
        ``risk_i = amount_i * volatility_i``, share = ``risk_i / Σ risk``.
        Fee records carry no risk.  Returns an empty dict when total risk
        is zero.
        """
        volatility = {c.strategy_id: c.volatility_score for c in candidates}
        risks = {
            a.strategy_id: a.amount * volatility.get(a.strategy_id, 0)
            for a in allocations
            if a.purpose in _STRATEGY_PURPOSES
        }
        total_risk = checked_sum(risks.values(), limit=U128_MAX)
        if total_risk == 0:
            return {}
        return {
            sid: mul_div(risk, BPS_DENOMINATOR, total_risk, intermediate=U128_MAX * BPS_DENOMINATOR)
            for sid, risk in risks.items()
        }

    # ------------------------------------------------------------------ #
    #  Private helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _bps_of(capital: int, bps: int) -> int:
        """``capital * bps // 10000`` with a 64-bit product."""
        return mul_div(capital, bps, BPS_DENOMINATOR, intermediate=U64_MAX)

    @staticmethod
    def _total_score(candidates: Sequence[StrategyPerformance]) -> int:
        """Sum of candidate scores (128-bit); raise if zero."""
        total = checked_sum((c.performance_score for c in candidates), limit=U128_MAX)
        if total == 0:
            raise ZeroScoreSum(
                "At least one candidate needs a non-zero performance score."
            )
        return total

    @staticmethod
    def _reject_duplicate_candidates(candidates: Sequence[StrategyPerformance]) -> None:
        seen = set()
        for c in candidates:
            if c.strategy_id in seen:
                raise DuplicateStrategy(f"Candidate {c.strategy_id} listed more than once.")
            seen.add(c.strategy_id)

    @staticmethod
    def _fold_remainder(
        records: List[CapitalAllocation],
        remaining: int,
    ) -> List[CapitalAllocation]:
        """
        Hand whatever is left to the first TopPerformer record.

        Tags follow survivor order, so any batch holding a strategy record
        also holds a TopPerformer; without one nothing can absorb the rest.
        """
        if remaining == 0:
            return records

        target = next(
            (i for i, r in enumerate(records) if r.purpose == AllocationPurpose.TOP_PERFORMER),
            None,
        )
        if target is None:
            raise InsufficientCapital(
                f"No candidate cleared the allocation bounds; {remaining} would stay unallocated."
            )

        folded = list(records)
        folded[target] = replace(
            folded[target],
            amount=checked_add(folded[target].amount, remaining, error=BalanceOverflow),
        )
        logger.debug("Folded remainder %d into %s", remaining, folded[target].strategy_id)
        return folded
