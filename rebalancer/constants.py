"""
rebalancer/constants.py
-----------------------
Fixed business constants shared across the engine modules.

These are part of the scoring and allocation contract: changing any of them
changes results bit-for-bit, so they live apart from the tunable defaults in
``rebalancer/config.py``.
"""

from __future__ import annotations

from rebalancer.enums import ProtocolKind


# ---------------------------------------------------------------------------
# Units
# ---------------------------------------------------------------------------

# Smallest currency units per whole unit.
UNIT: int = 1_000_000_000

# Basis-point denominator (100.00%).
BPS_DENOMINATOR: int = 10_000

# Unset / zero address.
DEFAULT_ADDRESS: str = "11111111111111111111111111111111"


# ---------------------------------------------------------------------------
# Declared input ranges
# ---------------------------------------------------------------------------

MAX_YIELD_RATE_BPS: int = 50_000
MAX_VOLATILITY_SCORE: int = 10_000
MAX_PERFORMANCE_SCORE: int = 10_000
MAX_PERCENTILE_RANK: int = 100


# ---------------------------------------------------------------------------
# Performance score
# ---------------------------------------------------------------------------
# Each input is normalised to 0..SCORE_SCALE and then weighted in basis
# points.  Weights must sum to BPS_DENOMINATOR.

SCORE_SCALE: int = 10_000

SCORE_WEIGHTS: dict[str, int] = {
    "yield":      4_500,
    "balance":    3_500,
    "volatility": 2_000,   # applied to inverse volatility
}

# Balances below the floor are scaled linearly onto 0..BALANCE_LINEAR_CEILING;
# between floor and cap the scale is logarithmic; at or above the cap the
# normalised balance saturates at SCORE_SCALE.
BALANCE_LOG_FLOOR: int = UNIT // 10        # 0.1 unit
BALANCE_LOG_CAP: int = 100 * UNIT          # 100 units
BALANCE_LINEAR_CEILING: int = 1_000

# Natural logs are scaled by this factor and truncated before interpolation.
LOG_PRECISION: int = 1_000


# ---------------------------------------------------------------------------
# Dynamic threshold
# ---------------------------------------------------------------------------

BASE_THRESHOLD_PCT: int = 15
VOLATILITY_ADJUSTMENT_PCT: int = 20
MIN_DYNAMIC_THRESHOLD_PCT: int = 10
MAX_DYNAMIC_THRESHOLD_PCT: int = 40


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------

SINGLE_STRATEGY_PERCENTILE: int = 50
# Portfolios at or below this size flag underperformers by percentile value;
# larger ones flag a proportional bottom slice.
SMALL_PORTFOLIO_SIZE: int = 4


# ---------------------------------------------------------------------------
# Floors
# ---------------------------------------------------------------------------

REBALANCE_DUST_FLOOR: int = 50_000_000       # 0.05 unit, eligibility
EXTRACTION_RESERVE: int = 10_000_000         # 0.01 unit left behind per strategy
MIN_EXTRACTABLE_CAPITAL: int = 100_000_000   # 0.1 unit, plan viability

PROTOCOL_MIN_ALLOCATION: dict[ProtocolKind, int] = {
    ProtocolKind.STABLE_LENDING: 100_000_000,    # 0.1 unit
    ProtocolKind.YIELD_FARMING:  500_000_000,    # 0.5 unit
    ProtocolKind.LIQUID_STAKING: 1_000_000_000,  # 1.0 unit
}


# ---------------------------------------------------------------------------
# Risk adjustment multiplier band (basis points)
# ---------------------------------------------------------------------------

MIN_RISK_MULTIPLIER_BPS: int = 5_000
MAX_RISK_MULTIPLIER_BPS: int = 15_000

# Number of surviving candidates tagged TopPerformer.
TOP_PERFORMER_SLOTS: int = 3
