"""
rebalancer/config.py
--------------------
Tunable financial defaults.

Kept apart from rebalancer/constants.py (which fixes the scoring and
allocation arithmetic) so this file owns the knobs an operator is expected to
adjust per deployment.
"""

from rebalancer.enums import ThresholdMode

# ---------------------------------------------------------------------------
# Default risk limits
# ---------------------------------------------------------------------------
# Used whenever a cycle is planned without an explicit RiskLimits value.
#
#   * 40% cap on any single strategy keeps one winner from absorbing the pool
#   * 1% floor drops allocations too small to be worth a position
#   * 0.5% platform fee + 1.5% manager fee = 2% total extraction cost
#   * 80% risk tolerance scales every risk multiplier down (conservative)

DEFAULT_MAX_SINGLE_STRATEGY_BPS: int = 4_000
DEFAULT_MIN_SINGLE_STRATEGY_BPS: int = 100
DEFAULT_PLATFORM_FEE_BPS: int = 50
DEFAULT_MANAGER_FEE_BPS: int = 150
DEFAULT_RISK_TOLERANCE_BPS: int = 8_000

# Fee destinations. They must differ: fee records share one batch with the
# strategy records and target ids are unique per batch.
PLATFORM_TREASURY: str = "PlatformTreasury1111111111111111"
MANAGER_TREASURY: str = "ManagerTreasury11111111111111111"

# ---------------------------------------------------------------------------
# Portfolio configuration windows
# ---------------------------------------------------------------------------

MIN_REBALANCE_THRESHOLD_PCT: int = 1
MAX_REBALANCE_THRESHOLD_PCT: int = 50

MIN_REBALANCE_INTERVAL_SECS: int = 3_600     # 1 hour
MAX_REBALANCE_INTERVAL_SECS: int = 86_400    # 1 day

DEFAULT_PERFORMANCE_FEE_BPS: int = 200

# ---------------------------------------------------------------------------
# Plan construction
# ---------------------------------------------------------------------------

TOP_PERFORMER_PERCENTILE: int = 75   # top quartile
MAX_TOP_PERFORMERS: int = 5          # diversification cap on recipients

# Expected improvement is estimated as this share of the average score of
# the chosen recipients.  An estimate, not a guarantee.
EXPECTED_IMPROVEMENT_PCT: int = 15

DEFAULT_THRESHOLD_MODE: ThresholdMode = ThresholdMode.DYNAMIC

# Largest strategy batch an external caller submits per call.
MAX_BATCH_SIZE: int = 4

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_FORMAT: str = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
DEFAULT_LOG_LEVEL: str = "WARNING"
