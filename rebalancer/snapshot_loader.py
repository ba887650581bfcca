from __future__ import annotations

import json
from dataclasses import fields
from pathlib import Path

import numpy as np
import pandas as pd

from rebalancer.enums import ProtocolKind, StrategyStatus
from rebalancer.errors import DuplicateStrategy, InvalidProtocolType, ValidationError
from rebalancer.models import (
    LiquidStaking,
    Portfolio,
    ProtocolType,
    StableLending,
    Strategy,
    YieldFarming,
)
from rebalancer.scoring_engine import ScoringEngine


_U64 = np.iinfo(np.uint64)

REQUIRED_COLUMNS = (
    "strategy_id",
    "protocol",
    "current_balance",
    "yield_rate",
    "volatility_score",
    "status",
)

# Optional integer columns and their value when absent or blank.
# performance_score has no default: a missing score is computed.
_OPTIONAL_INT_COLUMNS = {
    "percentile_rank": 0,
    "total_deposits": 0,
    "total_withdrawals": 0,
    "creation_time": 0,
    "last_updated": 0,
}

# Protocol kind → (variant class, string fields, integer fields)
_PROTOCOL_FIELDS = {
    ProtocolKind.STABLE_LENDING: (
        StableLending, ("pool_id", "reserve_address"), ("utilization",),
    ),
    ProtocolKind.YIELD_FARMING: (
        YieldFarming, ("pair_id", "token_a_mint", "token_b_mint"), ("reward_multiplier", "fee_tier"),
    ),
    ProtocolKind.LIQUID_STAKING: (
        LiquidStaking, ("validator_id", "stake_pool"), ("commission", "unstake_delay"),
    ),
}


class SnapshotLoader:
    """
    Builds validated ``Strategy`` and ``Portfolio`` snapshots from files.

    File layout::

        strategies.csv   one row per strategy
        portfolio.json   one object with Portfolio field names as keys

    The strategies CSV must contain at minimum the columns
    ``strategy_id``, ``protocol``, ``current_balance``, ``yield_rate``,
    ``volatility_score``, ``status`` plus the fields of every protocol kind it
    uses (e.g. ``pool_id``, ``utilization``, ``reserve_address`` for
    ``stable_lending``).  ``performance_score`` is optional; rows without one
    are scored on load.
    """

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def load_strategies(self, path: str | Path) -> list[Strategy]:
        """
        Return the strategies in *path* in file order.

        Raises
        ------
        FileNotFoundError
            If *path* does not exist.
        ValidationError
            On a missing column, a malformed or out-of-range integer, or an
            unknown status.
        InvalidProtocolType
            On an unknown protocol kind.
        DuplicateStrategy
            If a ``strategy_id`` appears twice.
        """
        frame = pd.read_csv(path, dtype=str, keep_default_na=False)
        frame.columns = [c.strip() for c in frame.columns]

        missing = set(REQUIRED_COLUMNS) - set(frame.columns)
        if missing:
            raise ValidationError(
                f"Strategies file {path} is missing columns: {sorted(missing)}"
            )

        strategies = [self._build_strategy(row) for row in frame.to_dict(orient="records")]

        seen = set()
        for s in strategies:
            if s.strategy_id in seen:
                raise DuplicateStrategy(f"Strategy {s.strategy_id} appears twice in {path}.")
            seen.add(s.strategy_id)
        return strategies

    def load_portfolio(self, path: str | Path) -> Portfolio:
        """Return the validated portfolio described by the JSON object in *path*."""
        with open(path, encoding="utf-8") as fh:
            raw = json.load(fh)
        if not isinstance(raw, dict):
            raise ValidationError(f"Portfolio file {path} must hold a JSON object.")

        known = {f.name for f in fields(Portfolio)}
        unknown = set(raw) - known
        if unknown:
            raise ValidationError(f"Unknown portfolio keys in {path}: {sorted(unknown)}")
        if "manager" not in raw:
            raise ValidationError(f"Portfolio file {path} has no manager.")

        values = {}
        for key, value in raw.items():
            if key == "manager":
                values[key] = str(value)
            elif key == "emergency_pause":
                if not isinstance(value, bool):
                    raise ValidationError("emergency_pause must be true or false.")
                values[key] = value
            else:
                values[key] = _to_u64(value, key)

        portfolio = Portfolio(**values)
        portfolio.validate()
        return portfolio

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    def _build_strategy(self, row: dict) -> Strategy:
        sid = row["strategy_id"].strip()
        protocol = _build_protocol(row)

        status_text = row["status"].strip().lower()
        try:
            status = StrategyStatus(status_text)
        except ValueError:
            raise ValidationError(f"Strategy {sid}: unknown status {row['status']!r}") from None

        balance = _to_u64(row["current_balance"], "current_balance")
        yield_rate = _to_u64(row["yield_rate"], "yield_rate")
        volatility = _to_u64(row["volatility_score"], "volatility_score")

        score_text = str(row.get("performance_score", "")).strip()
        if score_text:
            score = _to_u64(score_text, "performance_score")
        else:
            score = ScoringEngine.score(yield_rate, balance, volatility)

        extras = {
            name: _to_u64(row[name], name) if str(row.get(name, "")).strip() else default
            for name, default in _OPTIONAL_INT_COLUMNS.items()
        }

        strategy = Strategy(
            strategy_id=sid,
            protocol=protocol,
            current_balance=balance,
            yield_rate=yield_rate,
            volatility_score=volatility,
            performance_score=score,
            status=status,
            **extras,
        )
        strategy.validate()
        return strategy


# ------------------------------------------------------------------
# Module-level helpers
# ------------------------------------------------------------------

def _to_u64(value, name: str) -> int:
    """
    Parse *value* as an integer that fits numpy's uint64 range.

    Parsing goes through ``int`` rather than a float dtype so balances above
    2**53 keep every digit.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer, got {value!r}")
    text = str(value).strip()
    try:
        number = int(text)
    except ValueError:
        raise ValidationError(f"{name} must be an integer, got {value!r}") from None
    if not int(_U64.min) <= number <= int(_U64.max):
        raise ValidationError(f"{name} {number} is outside the unsigned 64-bit range")
    return number


def _build_protocol(row: dict) -> ProtocolType:
    kind_text = row["protocol"].strip().lower()
    try:
        kind = ProtocolKind(kind_text)
    except ValueError:
        raise InvalidProtocolType(
            f"Strategy {row['strategy_id']}: unknown protocol {row['protocol']!r}"
        ) from None

    cls, text_fields, int_fields = _PROTOCOL_FIELDS[kind]
    missing = [f for f in text_fields + int_fields if not str(row.get(f, "")).strip()]
    if missing:
        raise ValidationError(
            f"Strategy {row['strategy_id']}: {kind.value} needs {', '.join(missing)}"
        )

    kwargs = {f: str(row[f]).strip() for f in text_fields}
    kwargs.update({f: _to_u64(row[f], f) for f in int_fields})
    return cls(**kwargs)
