from __future__ import annotations

import logging
import math
from dataclasses import replace

from rebalancer.constants import (
    BALANCE_LINEAR_CEILING,
    BALANCE_LOG_CAP,
    BALANCE_LOG_FLOOR,
    BPS_DENOMINATOR,
    LOG_PRECISION,
    MAX_VOLATILITY_SCORE,
    MAX_YIELD_RATE_BPS,
    SCORE_SCALE,
    SCORE_WEIGHTS,
)
from rebalancer.errors import BalanceOverflow, StrategyNotFound
from rebalancer.fixed_point import checked_add, checked_div, checked_mul, ensure_u64, mul_div, saturating_sub
from rebalancer.models import Strategy, validate_balance, validate_volatility_score, validate_yield_rate

logger = logging.getLogger(__name__)


def _scaled_log(value: int) -> int:
    """ln(value) in LOG_PRECISION fixed point, truncated."""
    return int(math.log(value) * LOG_PRECISION)


# ===========================================================================
# ScoringEngine: raw strategy metrics → bounded composite score
# ===========================================================================

class ScoringEngine:
    """
    Converts a strategy's yield, balance and volatility into a single
    performance score on a 0–10000 scale.

    Pipeline::

        raw metrics
            → normalize_yield / normalize_balance / inverse_volatility
              (each onto 0..10000)
            → weight in basis points (45% / 35% / 20%)
            → checked integer sum

    Every step is integer multiply-then-divide; an overflow at any step
    raises ``BalanceOverflow`` for the whole call.
    """

    # Criteria definition: label → weight in basis points
    WEIGHTS: dict = SCORE_WEIGHTS

    # ------------------------------------------------------------------ #
    #  Normalisation
    # ------------------------------------------------------------------ #

    @staticmethod
    def normalize_yield(yield_rate: int) -> int:
        """Linear: 0–50000 bp onto 0–10000, saturating above the range."""
        capped = min(yield_rate, MAX_YIELD_RATE_BPS)
        return mul_div(capped, SCORE_SCALE, MAX_YIELD_RATE_BPS, error=BalanceOverflow)

    @staticmethod
    def normalize_balance(balance: int) -> int:
        """
        Logarithmic between 0.1 and 100 units.

        Balances span orders of magnitude, so a linear scale would let one
        large strategy dominate the balance component.

        * ``0``                 → ``0``
        * below 0.1 unit        → linear onto ``0..1000``
        * at/above 100 units    → ``10000``
        * otherwise             → ``(L(b) - L(floor)) * 10000 / (L(cap) - L(floor))``
          with ``L(x) = int(ln(x) * 1000)``
        """
        if balance == 0:
            return 0
        if balance >= BALANCE_LOG_CAP:
            return SCORE_SCALE
        if balance < BALANCE_LOG_FLOOR:
            return mul_div(balance, BALANCE_LINEAR_CEILING, BALANCE_LOG_FLOOR,
                           error=BalanceOverflow)

        log_balance = _scaled_log(balance)
        log_min = _scaled_log(BALANCE_LOG_FLOOR)
        log_max = _scaled_log(BALANCE_LOG_CAP)
        return mul_div(
            saturating_sub(log_balance, log_min),
            SCORE_SCALE,
            log_max - log_min,
            error=BalanceOverflow,
        )

    @staticmethod
    def inverse_volatility(volatility: int) -> int:
        """Lower risk → higher value."""
        return saturating_sub(MAX_VOLATILITY_SCORE, min(volatility, MAX_VOLATILITY_SCORE))

    @staticmethod
    def weighted(normalized: int, weight_bps: int) -> int:
        product = checked_mul(normalized, weight_bps, error=BalanceOverflow)
        return checked_div(product, BPS_DENOMINATOR)

    # ------------------------------------------------------------------ #
    #  Public entry points
    # ------------------------------------------------------------------ #

    @staticmethod
    def components(yield_rate: int, balance: int, volatility: int) -> dict:
        """
        Weighted contribution of each criterion, for explainability.

        Returns
        -------
        dict with keys ``"yield"``, ``"balance"``, ``"volatility"``.
        """
        yield_rate = ensure_u64(yield_rate, "yield_rate")
        balance = ensure_u64(balance, "balance")
        volatility = ensure_u64(volatility, "volatility")

        return {
            "yield": ScoringEngine.weighted(
                ScoringEngine.normalize_yield(yield_rate), SCORE_WEIGHTS["yield"]),
            "balance": ScoringEngine.weighted(
                ScoringEngine.normalize_balance(balance), SCORE_WEIGHTS["balance"]),
            "volatility": ScoringEngine.weighted(
                ScoringEngine.inverse_volatility(volatility), SCORE_WEIGHTS["volatility"]),
        }

    @staticmethod
    def score(yield_rate: int, balance: int, volatility: int) -> int:
        """
        Composite performance score in ``[0, 10000]``.

        Parameters
        ----------
        yield_rate : int
            Annual yield in basis points (values above 50000 saturate).
        balance : int
            Current balance in smallest currency units.
        volatility : int
            Risk score 0–10000 (values above 10000 saturate).

        Raises
        ------
        BalanceOverflow
            If any fixed-point step overflows 64 bits.
        ValueError
            If an input is negative.
        """
        parts = ScoringEngine.components(yield_rate, balance, volatility)
        total = checked_add(parts["yield"], parts["balance"], error=BalanceOverflow)
        return checked_add(total, parts["volatility"], error=BalanceOverflow)

    @staticmethod
    def refresh(
        strategy: Strategy,
        *,
        yield_rate: int,
        volatility_score: int,
        current_balance: int,
        now: int,
    ) -> Strategy:
        """
        Return a copy of *strategy* carrying new metrics and a recomputed
        performance score.  Only active strategies accept updates.
        """
        validate_yield_rate(yield_rate)
        validate_volatility_score(volatility_score)
        validate_balance(current_balance)
        if not strategy.is_active:
            raise StrategyNotFound(
                f"Strategy {strategy.strategy_id} is {strategy.status.value}; "
                "only active strategies accept performance updates."
            )

        score = ScoringEngine.score(yield_rate, current_balance, volatility_score)
        logger.debug(
            "Performance updated: strategy=%s yield=%dbps volatility=%d balance=%d score=%d",
            strategy.strategy_id, yield_rate, volatility_score, current_balance, score,
        )
        return replace(
            strategy,
            yield_rate=yield_rate,
            volatility_score=volatility_score,
            current_balance=current_balance,
            performance_score=score,
            last_updated=now,
        )
