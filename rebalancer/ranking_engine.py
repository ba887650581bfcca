"""
rebalancer/ranking_engine.py
----------------------------
Percentile ranking, underperformer selection and rebalance eligibility.

Design contract:
  - No score computation (scores arrive precomputed on each record)
  - No allocation logic
  - Never mutates its input: ranked records are fresh copies
  - Fully deterministic and stateless (all methods are @staticmethod)
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from rebalancer.constants import (
    REBALANCE_DUST_FLOOR,
    SINGLE_STRATEGY_PERCENTILE,
    SMALL_PORTFOLIO_SIZE,
)
from rebalancer.enums import StrategyStatus, ThresholdMode
from rebalancer.errors import EmptyInputError, InsufficientStrategies, InvalidRebalanceThreshold
from rebalancer.fixed_point import checked_div, checked_mul
from rebalancer.models import (
    RankingOutcome,
    RankingResults,
    StrategyPerformance,
    validate_rebalance_threshold,
)
from rebalancer.threshold_engine import ThresholdEngine

logger = logging.getLogger(__name__)


class RankingEngine:
    """
    Sort strategies into a total order and assign 0–100 percentile ranks.

    Sort order::

        performance_score  descending
        current_balance    descending   (larger capital wins ties)
        volatility_score   ascending    (lower risk wins remaining ties)

    ``sorted`` is stable, so records equal on all three keys keep their
    input order.
    """

    # ------------------------------------------------------------------ #
    #  Public entry points
    # ------------------------------------------------------------------ #

    @staticmethod
    def sort_key(strategy) -> Tuple[int, int, int]:
        return (-strategy.performance_score, -strategy.current_balance, strategy.volatility_score)

    @staticmethod
    def rank(
        strategies: Sequence[StrategyPerformance],
        threshold: Optional[int] = None,
    ) -> RankingOutcome:
        """
        Rank *strategies* and flag underperformers.

        Parameters
        ----------
        strategies:
            Records to rank.  Callers pass only active strategies.
        threshold:
            Cutoff percentile.  ``None`` computes the dynamic threshold from
            *strategies* themselves.

        Returns
        -------
        RankingOutcome
            ``(strategies, underperformers)``: records in ranked order (best
            first) carrying their new ``percentile_rank``, and the ids chosen
            for capital extraction.

        Raises
        ------
        EmptyInputError
            If *strategies* is empty.
        InvalidRebalanceThreshold
            If an explicit *threshold* is outside 1–50.
        """
        if not strategies:
            raise EmptyInputError("Cannot rank an empty strategy set.")

        if threshold is None:
            threshold = ThresholdEngine.dynamic_threshold(strategies)
        else:
            validate_rebalance_threshold(threshold)

        ordered = sorted(strategies, key=RankingEngine.sort_key)
        total = len(ordered)
        bottom_slice = RankingEngine._bottom_slice_size(total, threshold)

        ranked: List[StrategyPerformance] = []
        underperformers: List[str] = []

        for index, strategy in enumerate(ordered):
            percentile = RankingEngine.percentile(index, total)
            ranked.append(strategy.with_rank(percentile))

            if total == 1:
                flagged = False
            elif total <= SMALL_PORTFOLIO_SIZE:
                flagged = percentile < threshold
            else:
                flagged = index >= total - bottom_slice
            if flagged:
                underperformers.append(strategy.strategy_id)

            logger.debug(
                "Strategy %s ranked: percentile=%d%% score=%d balance=%d threshold=%d%%%s",
                strategy.strategy_id, percentile, strategy.performance_score,
                strategy.current_balance, threshold, " [underperformer]" if flagged else "",
            )

        return RankingOutcome(tuple(ranked), tuple(underperformers))

    @staticmethod
    def percentile(index: int, total: int) -> int:
        """
        Percentile of the record at sorted *index* out of *total*.

        Best gets 100, worst gets 0; a lone strategy sits at the median (50)
        because there is nothing to compare it against.
        """
        if total == 1:
            return SINGLE_STRATEGY_PERCENTILE
        from_bottom = total - 1 - index
        return checked_div(checked_mul(from_bottom, 100), total - 1)

    @staticmethod
    def is_eligible(strategy, threshold: int) -> bool:
        """
        Whether *strategy* is a valid candidate for capital extraction.

        All three must hold: status is active, balance is at or above the
        0.05-unit dust floor, percentile rank is strictly below *threshold*.
        """
        if strategy.status != StrategyStatus.ACTIVE:
            return False
        if strategy.current_balance < REBALANCE_DUST_FLOOR:
            return False
        return strategy.percentile_rank < threshold

    @staticmethod
    def rank_portfolio(
        strategies: Sequence[StrategyPerformance],
        threshold_mode: ThresholdMode = ThresholdMode.DYNAMIC,
        fixed_threshold: Optional[int] = None,
    ) -> RankingResults:
        """
        Full ranking pass over every strategy of a portfolio.

        Inactive strategies are carried through untouched (and never become
        candidates); active ones are ranked; then every strategy is run
        through the eligibility filter with its refreshed rank.

        ``ThresholdMode.FIXED`` ranks against *fixed_threshold* (the
        portfolio's configured value) instead of the dynamic threshold.
        """
        if len(strategies) < 2:
            raise InsufficientStrategies(
                f"A ranking pass needs at least 2 strategies (got {len(strategies)})."
            )

        active = [s for s in strategies if s.is_active]
        if not active:
            raise InsufficientStrategies("No active strategies to rank.")

        if threshold_mode == ThresholdMode.FIXED:
            if fixed_threshold is None:
                raise InvalidRebalanceThreshold("Fixed-threshold mode needs a threshold.")
            threshold = fixed_threshold
        else:
            threshold = ThresholdEngine.dynamic_threshold(active)

        outcome = RankingEngine.rank(active, threshold)
        ranked_by_id = {s.strategy_id: s for s in outcome.strategies}

        refreshed = [ranked_by_id.get(s.strategy_id, s) for s in strategies]
        candidates = tuple(
            s.strategy_id for s in refreshed
            if RankingEngine.is_eligible(s, threshold)
        )
        inactive = [s for s in strategies if not s.is_active]

        results = RankingResults(
            total_strategies=len(strategies),
            active_strategies=len(active),
            threshold=threshold,
            strategies=outcome.strategies + tuple(inactive),
            underperformers=outcome.underperformers,
            rebalancing_candidates=candidates,
        )
        logger.info(
            "Ranking pass: %d total, %d active, %d underperformers, %d candidates, threshold %d%% (%s)",
            results.total_strategies, results.active_strategies,
            len(results.underperformers), len(results.rebalancing_candidates),
            threshold, threshold_mode.value,
        )
        return results

    # ------------------------------------------------------------------ #
    #  Private helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _bottom_slice_size(total: int, threshold: int) -> int:
        """Proportional underperformer count for large portfolios, at least 1."""
        return max(checked_div(checked_mul(total, threshold), 100), 1)
