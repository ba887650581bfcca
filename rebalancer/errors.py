"""
rebalancer/errors.py
--------------------
Exception taxonomy for the ranking-and-allocation engine.

Every error carries a stable integer ``code`` so callers that persist or
forward failures can match on it without parsing messages.  Numeric errors
also inherit from the matching builtin, so ``except OverflowError`` and
``except ValueError`` behave the way Python callers expect.

Nothing inside the engine catches these: the first failure aborts the whole
call and no partial result is returned.
"""

from __future__ import annotations


class RebalancerError(Exception):
    """Base class for every engine failure."""

    code: int = 6000
    default_message: str = "Rebalancer error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


# ---------------------------------------------------------------------------
# Input shape
# ---------------------------------------------------------------------------

class InsufficientStrategies(RebalancerError):
    code = 6001
    default_message = "Not enough active strategies for this operation"


class EmptyInputError(InsufficientStrategies):
    code = 6002
    default_message = "No strategies supplied"


class StrategyNotFound(RebalancerError):
    code = 6003
    default_message = "Strategy not found or not active"


class DuplicateStrategy(RebalancerError):
    code = 6004
    default_message = "Duplicate target identifier in allocation batch"


# ---------------------------------------------------------------------------
# Arithmetic
# ---------------------------------------------------------------------------

class MathOverflow(RebalancerError, OverflowError):
    code = 6010
    default_message = "Mathematical overflow in calculations"


class BalanceOverflow(MathOverflow):
    code = 6011
    default_message = "Balance arithmetic overflow"


class DivisionByZero(RebalancerError, ZeroDivisionError):
    code = 6012
    default_message = "Division by zero"


# ---------------------------------------------------------------------------
# Allocation
# ---------------------------------------------------------------------------

class ZeroScoreSum(RebalancerError):
    code = 6020
    default_message = "Candidate performance scores sum to zero"


class InsufficientCapital(RebalancerError):
    code = 6021
    default_message = "Insufficient capital for rebalancing"


class InvalidTotalAllocation(RebalancerError):
    code = 6022
    default_message = "Allocated total does not match submitted capital"


# ---------------------------------------------------------------------------
# Cycle gating
# ---------------------------------------------------------------------------

class EmergencyPauseActive(RebalancerError):
    code = 6030
    default_message = "Portfolio is under emergency pause"


class RebalanceIntervalNotMet(RebalancerError):
    code = 6031
    default_message = "Portfolio has not reached minimum rebalance interval"


# ---------------------------------------------------------------------------
# Domain validation
# ---------------------------------------------------------------------------

class ValidationError(RebalancerError, ValueError):
    code = 6040
    default_message = "Invalid configuration value"


class InvalidRebalanceThreshold(ValidationError):
    code = 6041
    default_message = "Rebalance threshold out of range"


class InvalidRebalanceInterval(ValidationError):
    code = 6042
    default_message = "Minimum rebalance interval out of range"


class InvalidProtocolType(ValidationError):
    code = 6043
    default_message = "Invalid protocol type"


class InvalidTokenMint(ValidationError):
    code = 6044
    default_message = "Invalid token mint"


class InvalidAllocationPercentage(ValidationError):
    code = 6045
    default_message = "Value outside its declared range"
