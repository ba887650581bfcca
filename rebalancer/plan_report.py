"""
rebalancer/plan_report.py
-------------------------
Deterministic, formatting-aware explanation of a ranking pass and a plan.

Design contract:
  - Does NOT compute scores
  - Does NOT rank or allocate
  - Does NOT mutate its inputs
  - Only interprets and explains RankingEngine / PlanEngine output
  - Fully stateless (all methods are @staticmethod)
"""

from typing import Dict, Optional

from rebalancer.allocation_engine import AllocationEngine
from rebalancer.constants import BPS_DENOMINATOR, UNIT
from rebalancer.models import RankingResults, RebalancingPlan


def _units(amount: int) -> str:
    """Smallest units → whole units with nine decimals, no float rounding."""
    whole, frac = divmod(amount, UNIT)
    return f"{whole:,}.{frac:09d}"


def _bps(value: int) -> str:
    return f"{value // 100}.{value % 100:02d}%"


class PlanReport:
    """
    Produce structured, human-readable explanations for a rebalance cycle.

    Entry point::

        report = PlanReport.explain(outcome.ranking, outcome.plan)

        Returns a dict with six string sections:
        ``summary``             – one-line overview
        ``ranking_table``       – every strategy with score and percentile
        ``allocation_table``    – redistribution records
        ``fee_breakdown``       – platform / manager fees and the estimate
        ``risk_decomposition``  – risk share per recipient
        ``final_statement``     – closing sentence
    """

    # ------------------------------------------------------------------ #
    #  Public entry point
    # ------------------------------------------------------------------ #

    @staticmethod
    def explain(
        ranking: RankingResults,
        plan: Optional[RebalancingPlan] = None,
    ) -> Dict[str, str]:
        """
        Build every section for *ranking* and, when present, *plan*.

        A cycle without a plan still gets a summary, the ranking table and a
        final statement; the allocation sections are left empty.
        """
        return {
            "summary":            PlanReport._summary(ranking, plan),
            "ranking_table":      PlanReport._ranking_table(ranking),
            "allocation_table":   PlanReport._allocation_table(plan) if plan else "",
            "fee_breakdown":      PlanReport._fee_breakdown(plan) if plan else "",
            "risk_decomposition": PlanReport._risk_decomposition(plan) if plan else "",
            "final_statement":    PlanReport._final_statement(ranking, plan),
        }

    # ------------------------------------------------------------------ #
    #  Section builders
    # ------------------------------------------------------------------ #

    @staticmethod
    def _summary(ranking: RankingResults, plan: Optional[RebalancingPlan]) -> str:
        head = (
            f"Ranked {ranking.active_strategies} of {ranking.total_strategies} "
            f"strategies at a {ranking.threshold}% threshold; "
            f"{len(ranking.underperformers)} underperformer"
            f"{'s' if len(ranking.underperformers) != 1 else ''}."
        )
        if plan is None:
            return head + " No capital will move this cycle."
        return (
            f"{head} Extracting {_units(plan.total_to_extract)} units from "
            f"{len(plan.extraction_targets)} strateg"
            f"{'ies' if len(plan.extraction_targets) != 1 else 'y'}."
        )

    @staticmethod
    def _ranking_table(ranking: RankingResults) -> str:
        """Fixed-width table: Strategy | Score | Rank | Status | Flag."""
        under = set(ranking.underperformers)
        candidates = set(ranking.rebalancing_candidates)
        lines = [f"{'Strategy':<34} {'Score':>6} {'Rank':>5}  {'Status':<10} Flag"]
        for s in ranking.strategies:
            if s.strategy_id in candidates:
                flag = "extract"
            elif s.strategy_id in under:
                flag = "below threshold"
            else:
                flag = ""
            lines.append(
                f"{s.strategy_id:<34} {s.performance_score:>6} {s.percentile_rank:>4}%"
                f"  {s.status.value:<10} {flag}".rstrip()
            )
        return "\n".join(lines)

    @staticmethod
    def _allocation_table(plan: RebalancingPlan) -> str:
        """Fixed-width table: Target | Purpose | Amount | Share."""
        lines = [f"{'Target':<34} {'Purpose':<22} {'Amount (units)':>22} {'Share':>8}"]
        for record in plan.redistribution_plan:
            share = record.amount * BPS_DENOMINATOR // plan.total_to_extract
            lines.append(
                f"{record.strategy_id:<34} {record.purpose.value:<22} "
                f"{_units(record.amount):>22} {_bps(share):>8}"
            )
        return "\n".join(lines)

    @staticmethod
    def _fee_breakdown(plan: RebalancingPlan) -> str:
        summary = AllocationEngine.summarize(plan.redistribution_plan)
        return "\n".join([
            f"Platform fee        : {_units(summary.platform_fees)}",
            f"Manager incentive   : {_units(summary.manager_fees)}",
            f"Estimated total fees: {_units(plan.estimated_fees)}",
            f"To strategies       : {_units(summary.total_strategy_allocation)} "
            f"across {summary.strategies_updated} record"
            f"{'s' if summary.strategies_updated != 1 else ''}",
        ])

    @staticmethod
    def _risk_decomposition(plan: RebalancingPlan) -> str:
        """Each recipient's share of allocated risk (amount × volatility)."""
        shares = AllocationEngine.risk_decomposition(plan.redistribution_plan, plan.recipients)
        if not shares:
            return "Risk decomposition not available."

        lines = [f"{'Strategy':<34} Risk Share"]
        for sid, share in shares.items():
            lines.append(f"{sid:<34} {_bps(share):>10}")

        dominant = max(shares, key=shares.get)
        lines.append("")
        lines.append(f"{dominant} contributes the largest share of allocated risk.")
        return "\n".join(lines)

    @staticmethod
    def _final_statement(ranking: RankingResults, plan: Optional[RebalancingPlan]) -> str:
        if plan is None:
            return "Portfolio is within its rebalance threshold; no action required."
        lead = max(
            (r for r in plan.redistribution_plan if not r.purpose.is_fee),
            key=lambda r: r.amount,
        )
        return (
            f"Capital moves toward {lead.strategy_id}, with an estimated score "
            f"improvement of {plan.expected_improvement} points."
        )

    # ------------------------------------------------------------------ #
    #  CLI formatter
    # ------------------------------------------------------------------ #

    @staticmethod
    def format_for_cli(explanation: Dict[str, str]) -> str:
        """
        Render every non-empty section as a single printable string.

        Example::

            print(PlanReport.format_for_cli(PlanReport.explain(ranking, plan)))
        """
        sections = [
            "=== Rebalance Cycle ===",
            explanation["summary"],
            "",
            "--- Ranking ---",
            explanation["ranking_table"],
        ]
        if explanation["allocation_table"]:
            sections += [
                "",
                "--- Redistribution ---",
                explanation["allocation_table"],
                "",
                "--- Fees ---",
                explanation["fee_breakdown"],
                "",
                "--- Risk Decomposition ---",
                explanation["risk_decomposition"],
            ]
        sections += ["", explanation["final_statement"]]
        return "\n".join(sections)
