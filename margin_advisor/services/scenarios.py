"""
Planned vs. recommended scenario comparison.

A scenario prices the deal at a margin (margin on price), estimates the win
probability there and reports the risk-adjusted gross profit
(gross profit x win% / 100).
"""

from typing import Optional

from margin_advisor.models.schemas import (
    DealContext,
    Scenario,
    ScenarioComparison,
    ScenarioDelta,
)
from margin_advisor.services.win_probability import estimate_win_prob_for_deal


def build_scenario(deal: DealContext, margin_pct: float) -> Scenario:
    price = deal.oemCost / (1 - margin_pct / 100)
    gross_profit = price - deal.oemCost
    win_prob = estimate_win_prob_for_deal(deal, margin_pct)
    return Scenario(
        marginPct=margin_pct,
        price=round(price, 2),
        grossProfit=round(gross_profit, 2),
        winProbability=win_prob,
        riskAdjusted=round(gross_profit * win_prob / 100, 2),
    )


def compare_with_plan(
    deal: DealContext,
    planned_margin_pct: Optional[float],
    recommended_margin_pct: float,
) -> Optional[ScenarioComparison]:
    """
    Compare the rep's planned margin with the recommended one.

    Returns None when there is no planned margin.
    """
    if planned_margin_pct is None:
        return None

    planned = build_scenario(deal, planned_margin_pct)
    recommended = build_scenario(deal, recommended_margin_pct)
    return ScenarioComparison(
        planned=planned,
        recommended=recommended,
        delta=ScenarioDelta(
            grossProfit=round(recommended.grossProfit - planned.grossProfit, 2),
            riskAdjusted=round(recommended.riskAdjusted - planned.riskAdjusted, 2),
        ),
    )
