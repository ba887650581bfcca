"""
rebalancer/plan_engine.py
-------------------------
End-to-end rebalance cycle: gate → rank → select → extract → allocate.

Design contract:
  - Composes the scoring, threshold, ranking and allocation engines; adds no
    arithmetic of its own beyond extraction and estimates
  - Never mutates a snapshot: ``apply_plan`` returns a new Portfolio
  - Atomic: a call either returns a complete plan or raises
  - Fully stateless (all methods are @staticmethod)
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterator, List, Optional, Sequence, Tuple

from rebalancer import config
from rebalancer.allocation_engine import AllocationEngine
from rebalancer.constants import BPS_DENOMINATOR, EXTRACTION_RESERVE, MIN_EXTRACTABLE_CAPITAL
from rebalancer.enums import ThresholdMode
from rebalancer.errors import (
    BalanceOverflow,
    EmergencyPauseActive,
    InsufficientCapital,
    InsufficientStrategies,
    RebalanceIntervalNotMet,
)
from rebalancer.fixed_point import checked_add, checked_div, checked_sum, mul_div, saturating_sub
from rebalancer.models import (
    CycleOutcome,
    Portfolio,
    RebalancingPlan,
    RiskLimits,
    StrategyPerformance,
    validate_rebalance_threshold,
)
from rebalancer.ranking_engine import RankingEngine
from rebalancer.threshold_engine import ThresholdEngine

logger = logging.getLogger(__name__)


class PlanEngine:
    """
    Turn one portfolio snapshot into a ``RebalancingPlan``.

    Usage::

        outcome = PlanEngine.run_cycle(portfolio, strategies, now=time.time())
        if outcome.plan is not None:
            portfolio = PlanEngine.apply_plan(portfolio, outcome.plan, now)

    ``plan_cycle`` is the lower-level entry point: it trusts the percentile
    ranks already on the records and skips interval gating.
    """

    # ------------------------------------------------------------------ #
    #  Public entry points
    # ------------------------------------------------------------------ #

    @staticmethod
    def plan_cycle(
        portfolio: Portfolio,
        strategies: Sequence[StrategyPerformance],
        threshold: Optional[int] = None,
        risk_limits: Optional[RiskLimits] = None,
    ) -> RebalancingPlan:
        """
        Build a rebalancing plan from already-ranked *strategies*.

        Parameters
        ----------
        portfolio:
            Snapshot; only ``emergency_pause`` is consulted here.
        strategies:
            Every strategy of the portfolio with its current
            ``percentile_rank``.  Inactive records are ignored.
        threshold:
            Underperformer cutoff percentile, 1–50.  ``None`` uses the
            dynamic threshold of the active records.
        risk_limits:
            Passed to the allocation engine; defaults to ``RiskLimits()``.

        Raises
        ------
        EmergencyPauseActive
            The portfolio is paused.
        InvalidRebalanceThreshold
            An explicit *threshold* is outside 1–50.
        InsufficientStrategies
            No underperformer or no top performer among active records.
        InsufficientCapital
            Extractable capital is below 0.1 unit.
        """
        if portfolio.emergency_pause:
            raise EmergencyPauseActive()

        active = [s for s in strategies if s.is_active]
        if not active:
            raise InsufficientStrategies("No active strategies to plan over.")

        if threshold is None:
            threshold = ThresholdEngine.dynamic_threshold(active)
        else:
            validate_rebalance_threshold(threshold)

        underperformers = [s for s in active if s.percentile_rank < threshold]
        return PlanEngine._assemble_plan(active, underperformers, threshold, risk_limits)

    @staticmethod
    def run_cycle(
        portfolio: Portfolio,
        strategies: Sequence[StrategyPerformance],
        now: int,
        threshold_mode: ThresholdMode = config.DEFAULT_THRESHOLD_MODE,
        risk_limits: Optional[RiskLimits] = None,
    ) -> CycleOutcome:
        """
        Gate, rank and plan one cycle.

        Extraction targets are the ranking pass's underperformers that also
        pass the eligibility filter.  When there are none the outcome carries
        the ranking and ``plan=None``.
        """
        PlanEngine.ensure_can_rebalance(portfolio, now)

        ranking = RankingEngine.rank_portfolio(
            strategies,
            threshold_mode=threshold_mode,
            fixed_threshold=portfolio.rebalance_threshold,
        )
        if ranking.active_strategies < 2:
            raise InsufficientStrategies(
                f"A rebalance cycle needs at least 2 active strategies "
                f"(got {ranking.active_strategies})."
            )

        eligible = set(ranking.rebalancing_candidates)
        targets = [
            s for s in ranking.strategies
            if s.strategy_id in ranking.underperformers and s.strategy_id in eligible
        ]
        if not targets:
            logger.info("No eligible underperformers at threshold %d%%; nothing to move",
                        ranking.threshold)
            return CycleOutcome(ranking=ranking, plan=None)

        active = [s for s in ranking.strategies if s.is_active]
        plan = PlanEngine._assemble_plan(active, targets, ranking.threshold, risk_limits)
        return CycleOutcome(ranking=ranking, plan=plan)

    @staticmethod
    def can_rebalance(portfolio: Portfolio, now: int) -> bool:
        return portfolio.can_rebalance(now)

    @staticmethod
    def ensure_can_rebalance(portfolio: Portfolio, now: int) -> None:
        """Raise unless a cycle may run at *now*."""
        if portfolio.emergency_pause:
            raise EmergencyPauseActive()
        if not portfolio.can_rebalance(now):
            due = portfolio.last_rebalance + portfolio.min_rebalance_interval
            raise RebalanceIntervalNotMet(
                f"Next rebalance allowed at {due} (now {now})."
            )

    @staticmethod
    def apply_plan(portfolio: Portfolio, plan: RebalancingPlan, now: int) -> Portfolio:
        """Portfolio bookkeeping after *plan* has been executed externally."""
        summary = AllocationEngine.summarize(plan.redistribution_plan)
        return replace(
            portfolio,
            total_capital_moved=checked_add(
                portfolio.total_capital_moved, summary.total_allocated, error=BalanceOverflow
            ),
            last_rebalance=now,
        )

    @staticmethod
    def chunk(
        strategies: Sequence[StrategyPerformance],
        size: int = config.MAX_BATCH_SIZE,
    ) -> Iterator[Tuple[StrategyPerformance, ...]]:
        """Split *strategies* into consecutive batches of at most *size*."""
        if size < 1:
            raise ValueError(f"Batch size must be positive (got {size}).")
        for start in range(0, len(strategies), size):
            yield tuple(strategies[start:start + size])

    @staticmethod
    def expected_improvement(top_performers: Sequence[StrategyPerformance]) -> int:
        """15% of the average score of *top_performers*.  An estimate only."""
        total = checked_sum(s.performance_score for s in top_performers)
        average = checked_div(total, len(top_performers))
        return checked_div(average * config.EXPECTED_IMPROVEMENT_PCT, 100)

    # ------------------------------------------------------------------ #
    #  Private helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _top_performers(active: Sequence[StrategyPerformance]) -> List[StrategyPerformance]:
        top = [s for s in active if s.percentile_rank >= config.TOP_PERFORMER_PERCENTILE]
        top.sort(key=RankingEngine.sort_key)
        return top[:config.MAX_TOP_PERFORMERS]

    @staticmethod
    def _extractable(underperformers: Sequence[StrategyPerformance]) -> int:
        """Sum of balances above the per-strategy reserve."""
        return checked_sum(
            (saturating_sub(s.current_balance, EXTRACTION_RESERVE) for s in underperformers),
            error=BalanceOverflow,
        )

    @staticmethod
    def _assemble_plan(
        active: Sequence[StrategyPerformance],
        underperformers: Sequence[StrategyPerformance],
        threshold: int,
        risk_limits: Optional[RiskLimits],
    ) -> RebalancingPlan:
        if not underperformers:
            raise InsufficientStrategies(
                f"No strategy ranks below the {threshold}% threshold."
            )

        top = PlanEngine._top_performers(active)
        if not top:
            raise InsufficientStrategies(
                f"No strategy ranks at or above the {config.TOP_PERFORMER_PERCENTILE}th percentile."
            )

        total_to_extract = PlanEngine._extractable(underperformers)
        if total_to_extract < MIN_EXTRACTABLE_CAPITAL:
            raise InsufficientCapital(
                f"Only {total_to_extract} extractable; at least "
                f"{MIN_EXTRACTABLE_CAPITAL} is needed for a viable cycle."
            )

        limits = risk_limits or RiskLimits()
        allocations = AllocationEngine.allocate(total_to_extract, top, limits)
        estimated_fees = mul_div(total_to_extract, limits.total_fee_bps, BPS_DENOMINATOR)

        plan = RebalancingPlan(
            extraction_targets=tuple(s.strategy_id for s in underperformers),
            total_to_extract=total_to_extract,
            redistribution_plan=tuple(allocations),
            estimated_fees=estimated_fees,
            expected_improvement=PlanEngine.expected_improvement(top),
            threshold=threshold,
            recipients=tuple(top),
        )
        logger.info(
            "Plan: extract %d from %d strategies into %d recipients (fees %d, threshold %d%%)",
            total_to_extract, len(plan.extraction_targets), len(top), estimated_fees, threshold,
        )
        return plan
