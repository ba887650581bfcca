"""
rebalancer/threshold_engine.py
------------------------------
Volatility-driven rebalance threshold.

In calm markets the engine tolerates smaller deviations before moving
capital (lower threshold); in volatile markets it requires a larger gap
before acting, which avoids churning positions on noise.

    avg_volatility    = sum(volatility_score // 100) // count     (percent)
    dynamic_threshold = clamp(15 + avg_volatility * 20 // 100, 10, 40)
"""

from __future__ import annotations

import logging
from typing import Sequence

from rebalancer.constants import (
    BASE_THRESHOLD_PCT,
    MAX_DYNAMIC_THRESHOLD_PCT,
    MIN_DYNAMIC_THRESHOLD_PCT,
    VOLATILITY_ADJUSTMENT_PCT,
)
from rebalancer.errors import EmptyInputError
from rebalancer.fixed_point import checked_add, checked_div, checked_mul

logger = logging.getLogger(__name__)


class ThresholdEngine:
    """Stateless; every method is a pure function of its arguments."""

    @staticmethod
    def average_volatility(strategies: Sequence) -> int:
        """
        Mean volatility of *strategies* as a whole percent (0–100).

        Each record only needs a ``volatility_score`` attribute (0–10000,
        two-decimal percent); it is truncated to a whole percent before
        averaging.

        Raises
        ------
        EmptyInputError
            If *strategies* is empty.
        """
        if not strategies:
            raise EmptyInputError("Cannot average volatility over zero strategies.")

        total = 0
        count = 0
        for strategy in strategies:
            total = checked_add(total, checked_div(strategy.volatility_score, 100))
            count = checked_add(count, 1)

        return min(checked_div(total, count), 100)

    @staticmethod
    def dynamic_threshold(strategies: Sequence) -> int:
        """Bounded rebalance threshold in percent, always within 10..40."""
        avg = ThresholdEngine.average_volatility(strategies)
        adjustment = checked_div(checked_mul(avg, VOLATILITY_ADJUSTMENT_PCT), 100)
        raw = checked_add(BASE_THRESHOLD_PCT, adjustment)
        bounded = max(MIN_DYNAMIC_THRESHOLD_PCT, min(raw, MAX_DYNAMIC_THRESHOLD_PCT))

        logger.debug(
            "Dynamic threshold %d%% (avg volatility %d%% over %d strategies, adjustment %d%%)",
            bounded, avg, len(strategies), adjustment,
        )
        return bounded
