"""
rebalancer/models.py
--------------------
Immutable snapshots the engine consumes and the result records it returns.

Snapshots are built by the caller for a single invocation; the engine never
mutates them and never keeps them between calls.  Anything that looks like
an update (a new percentile rank, a refreshed score) is produced with
``dataclasses.replace`` on a fresh object.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, NamedTuple, Optional, Tuple, Union

from rebalancer import config
from rebalancer.constants import (
    BPS_DENOMINATOR,
    DEFAULT_ADDRESS,
    MAX_PERCENTILE_RANK,
    MAX_PERFORMANCE_SCORE,
    MAX_VOLATILITY_SCORE,
    MAX_YIELD_RATE_BPS,
    PROTOCOL_MIN_ALLOCATION,
)
from rebalancer.enums import AllocationPurpose, ProtocolKind, StrategyStatus
from rebalancer.errors import (
    BalanceOverflow,
    InvalidAllocationPercentage,
    InvalidProtocolType,
    InvalidRebalanceInterval,
    InvalidRebalanceThreshold,
    InvalidTokenMint,
)
from rebalancer.fixed_point import U64_MAX


def _require_address(value: str, what: str, error=InvalidProtocolType) -> None:
    if not value or value == DEFAULT_ADDRESS:
        raise error(f"{what} must be a non-default address")


def _require_range(value: int, low: int, high: int, what: str) -> None:
    if not low <= value <= high:
        raise InvalidAllocationPercentage(f"{what} {value} outside {low}..{high}")


# ===========================================================================
# Protocol variants
# ===========================================================================

@dataclass(frozen=True)
class StableLending:
    """Single-asset lending pool position."""
    pool_id: str
    utilization: int          # basis points
    reserve_address: str

    kind = ProtocolKind.STABLE_LENDING
    protocol_name = "Stable Lending"

    def validate(self) -> None:
        _require_address(self.pool_id, "pool_id")
        _require_address(self.reserve_address, "reserve_address")
        _require_range(self.utilization, 0, BPS_DENOMINATOR, "utilization")

    def min_allocation(self) -> int:
        return PROTOCOL_MIN_ALLOCATION[self.kind]


@dataclass(frozen=True)
class YieldFarming:
    """Two-sided liquidity pair with reward boost."""
    pair_id: str
    reward_multiplier: int    # 1-10x
    token_a_mint: str
    token_b_mint: str
    fee_tier: int             # basis points

    kind = ProtocolKind.YIELD_FARMING
    protocol_name = "Yield Farming"

    def validate(self) -> None:
        _require_address(self.pair_id, "pair_id")
        _require_address(self.token_a_mint, "token_a_mint", InvalidTokenMint)
        _require_address(self.token_b_mint, "token_b_mint", InvalidTokenMint)
        if self.token_a_mint == self.token_b_mint:
            raise InvalidTokenMint("token_a_mint and token_b_mint must differ")
        _require_range(self.reward_multiplier, 1, 10, "reward_multiplier")
        _require_range(self.fee_tier, 0, 1_000, "fee_tier")

    def min_allocation(self) -> int:
        return PROTOCOL_MIN_ALLOCATION[self.kind]


@dataclass(frozen=True)
class LiquidStaking:
    """Delegated stake through a stake pool."""
    validator_id: str
    commission: int           # basis points
    stake_pool: str
    unstake_delay: int        # epochs

    kind = ProtocolKind.LIQUID_STAKING
    protocol_name = "Liquid Staking"

    def validate(self) -> None:
        _require_address(self.validator_id, "validator_id")
        _require_address(self.stake_pool, "stake_pool")
        _require_range(self.commission, 0, 1_000, "commission")
        _require_range(self.unstake_delay, 0, 50, "unstake_delay")

    def min_allocation(self) -> int:
        return PROTOCOL_MIN_ALLOCATION[self.kind]


ProtocolType = Union[StableLending, YieldFarming, LiquidStaking]


# ===========================================================================
# Snapshots
# ===========================================================================

@dataclass(frozen=True)
class StrategyPerformance:
    """
    Per-cycle view of one strategy: the fields ranking, eligibility and
    allocation actually read.
    """
    strategy_id: str
    performance_score: int
    current_balance: int
    volatility_score: int
    protocol: ProtocolType
    percentile_rank: int = 0
    status: StrategyStatus = StrategyStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == StrategyStatus.ACTIVE

    def with_rank(self, percentile_rank: int) -> "StrategyPerformance":
        return replace(self, percentile_rank=percentile_rank)


@dataclass(frozen=True)
class Strategy:
    """Full snapshot of one managed strategy."""
    strategy_id: str
    protocol: ProtocolType
    current_balance: int = 0
    yield_rate: int = 0                # bp, 0-50000
    volatility_score: int = 0          # 0-10000, two-decimal percent
    performance_score: int = 0         # derived, 0-10000
    percentile_rank: int = 0           # 0-100
    status: StrategyStatus = StrategyStatus.ACTIVE

    # Lifetime accounting
    total_deposits: int = 0
    total_withdrawals: int = 0
    creation_time: int = 0
    last_updated: int = 0

    def validate(self) -> None:
        _require_address(self.strategy_id, "strategy_id")
        self.protocol.validate()
        validate_yield_rate(self.yield_rate)
        validate_volatility_score(self.volatility_score)
        validate_balance(self.current_balance)
        _require_range(self.performance_score, 0, MAX_PERFORMANCE_SCORE, "performance_score")
        _require_range(self.percentile_rank, 0, MAX_PERCENTILE_RANK, "percentile_rank")

    @property
    def is_active(self) -> bool:
        return self.status == StrategyStatus.ACTIVE

    def to_performance(self) -> StrategyPerformance:
        return StrategyPerformance(
            strategy_id=self.strategy_id,
            performance_score=self.performance_score,
            current_balance=self.current_balance,
            volatility_score=self.volatility_score,
            protocol=self.protocol,
            percentile_rank=self.percentile_rank,
            status=self.status,
        )


def validate_yield_rate(rate: int) -> None:
    _require_range(rate, 0, MAX_YIELD_RATE_BPS, "yield_rate")


def validate_volatility_score(score: int) -> None:
    _require_range(score, 0, MAX_VOLATILITY_SCORE, "volatility_score")


def validate_balance(balance: int) -> None:
    if balance < 0:
        raise InvalidAllocationPercentage(f"balance {balance} is negative")
    if balance >= U64_MAX // 1000:
        raise BalanceOverflow(f"balance {balance} exceeds the supported ceiling")


@dataclass(frozen=True)
class Portfolio:
    """
    Portfolio-level configuration and cycle bookkeeping.

    ``rebalance_threshold`` is only a compatibility value: ranking computes
    its own dynamic threshold unless run in fixed-threshold mode.
    """
    manager: str
    rebalance_threshold: int = 25
    min_rebalance_interval: int = config.MIN_REBALANCE_INTERVAL_SECS
    last_rebalance: int = 0
    emergency_pause: bool = False
    total_capital_moved: int = 0
    total_strategies: int = 0
    portfolio_creation: int = 0
    performance_fee_bps: int = config.DEFAULT_PERFORMANCE_FEE_BPS

    def validate(self) -> None:
        _require_address(self.manager, "manager")
        validate_rebalance_threshold(self.rebalance_threshold)
        validate_min_interval(self.min_rebalance_interval)

    def can_rebalance(self, now: int) -> bool:
        if self.emergency_pause:
            return False
        # Saturating: an absurd interval never wraps into the past.
        due = min(self.last_rebalance + self.min_rebalance_interval, 2 ** 63 - 1)
        return now >= due


def validate_rebalance_threshold(threshold: int) -> None:
    low, high = config.MIN_REBALANCE_THRESHOLD_PCT, config.MAX_REBALANCE_THRESHOLD_PCT
    if not low <= threshold <= high:
        raise InvalidRebalanceThreshold(
            f"Rebalance threshold must be between {low} and {high} (got {threshold})."
        )


def validate_min_interval(interval: int) -> None:
    low, high = config.MIN_REBALANCE_INTERVAL_SECS, config.MAX_REBALANCE_INTERVAL_SECS
    if not low <= interval <= high:
        raise InvalidRebalanceInterval(
            f"Minimum rebalance interval must be between {low}s and {high}s (got {interval})."
        )


@dataclass(frozen=True)
class RiskLimits:
    """Per-cycle allocation bounds, all in basis points."""
    max_single_strategy_bps: int = config.DEFAULT_MAX_SINGLE_STRATEGY_BPS
    min_single_strategy_bps: int = config.DEFAULT_MIN_SINGLE_STRATEGY_BPS
    platform_fee_bps: int = config.DEFAULT_PLATFORM_FEE_BPS
    manager_fee_bps: int = config.DEFAULT_MANAGER_FEE_BPS
    risk_tolerance_bps: int = config.DEFAULT_RISK_TOLERANCE_BPS
    platform_treasury: str = config.PLATFORM_TREASURY
    manager_treasury: str = config.MANAGER_TREASURY

    def validate(self) -> None:
        for name in ("max_single_strategy_bps", "min_single_strategy_bps",
                     "platform_fee_bps", "manager_fee_bps"):
            _require_range(getattr(self, name), 0, BPS_DENOMINATOR, name)
        _require_range(self.risk_tolerance_bps, 1, 2 * BPS_DENOMINATOR, "risk_tolerance_bps")
        if self.min_single_strategy_bps > self.max_single_strategy_bps:
            raise InvalidAllocationPercentage(
                "min_single_strategy_bps must not exceed max_single_strategy_bps"
            )
        if self.platform_fee_bps + self.manager_fee_bps >= BPS_DENOMINATOR:
            raise InvalidAllocationPercentage("combined fees must stay below 100%")
        _require_address(self.platform_treasury, "platform_treasury")
        _require_address(self.manager_treasury, "manager_treasury")
        if self.platform_treasury == self.manager_treasury:
            raise InvalidProtocolType("platform and manager treasuries must differ")

    @property
    def total_fee_bps(self) -> int:
        return self.platform_fee_bps + self.manager_fee_bps


# ===========================================================================
# Results
# ===========================================================================

@dataclass(frozen=True)
class CapitalAllocation:
    """One (target, amount, purpose) triple."""
    strategy_id: str
    amount: int
    purpose: AllocationPurpose


class RankingOutcome(NamedTuple):
    """Ranked records (best first) and the ids flagged for extraction."""
    strategies: Tuple[StrategyPerformance, ...]
    underperformers: Tuple[str, ...]


@dataclass(frozen=True)
class RankingResults:
    """Outcome of a full ranking pass over a portfolio's strategies."""
    total_strategies: int
    active_strategies: int
    threshold: int
    strategies: Tuple[StrategyPerformance, ...]
    underperformers: Tuple[str, ...]
    rebalancing_candidates: Tuple[str, ...]

    def ranks(self) -> Dict[str, int]:
        return {s.strategy_id: s.percentile_rank for s in self.strategies}


@dataclass(frozen=True)
class AllocationSummary:
    total_allocated: int = 0
    strategies_updated: int = 0
    total_strategy_allocation: int = 0
    platform_fees: int = 0
    manager_fees: int = 0


@dataclass(frozen=True)
class RebalancingPlan:
    extraction_targets: Tuple[str, ...]
    total_to_extract: int
    redistribution_plan: Tuple[CapitalAllocation, ...]
    estimated_fees: int
    expected_improvement: int
    threshold: int
    recipients: Tuple[StrategyPerformance, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class CycleOutcome:
    ranking: RankingResults
    plan: Optional[RebalancingPlan]
