from enum import Enum


class StrategyStatus(Enum):
    """Lifecycle status of a managed strategy."""
    ACTIVE = "active"          # participates in ranking and allocation
    PAUSED = "paused"          # temporarily disabled, no new allocations
    DEPRECATED = "deprecated"  # marked for removal, extract when possible


class AllocationPurpose(Enum):
    """Why a slice of capital was routed to a target."""
    TOP_PERFORMER = "top_performer"
    RISK_DIVERSIFICATION = "risk_diversification"
    PLATFORM_FEE = "platform_fee"
    MANAGER_INCENTIVE = "manager_incentive"

    @property
    def is_fee(self) -> bool:
        return self in (AllocationPurpose.PLATFORM_FEE, AllocationPurpose.MANAGER_INCENTIVE)


class ProtocolKind(Enum):
    """Protocol family a strategy deploys capital into."""
    STABLE_LENDING = "stable_lending"
    YIELD_FARMING = "yield_farming"
    LIQUID_STAKING = "liquid_staking"


class ThresholdMode(Enum):
    """Which cutoff the ranking pass uses to flag underperformers."""
    DYNAMIC = "dynamic"   # volatility-driven, computed every cycle
    FIXED = "fixed"       # legacy: the portfolio's configured threshold
