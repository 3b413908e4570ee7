"""
Win-Probability Model.

Heuristic estimate of the chance of winning a deal at a given margin.

Model:
    base      = competitor base rate (0 -> 0.68, 1 -> 0.58, 2 -> 0.43, 3+ -> 0.32)
                + deal registration, segment, relationship, value-add,
                  new-logo, complexity, services, quarter-end adjustments
                + (3 - average competitor priceAggression) * 0.02
    logistic  = 1 / (1 + exp(0.08 * (marginPct - 18)))
    win %     = round(100 * clamp(0.6 * base + 0.4 * logistic, 0.05, 0.95))

    The result is always an integer in [5, 95] and is deterministic for a
    given input. It decreases monotonically as the margin rises.

Absent margin:
    When margin_pct is None the logistic term takes its neutral value 0.5
    (the value at the 18% knee), so the estimate reflects deal context only.
"""

import math
from typing import Optional, Sequence

from margin_advisor.models.enums import (
    CompetitorCount,
    CustomerSegment,
    DealRegType,
    Level,
    RelationshipStrength,
)
from margin_advisor.models.schemas import CompetitorProfile, DealContext


# =============================================================================
# Constants
# =============================================================================

MARGIN_KNEE: float = 18.0

LOGISTIC_SLOPE: float = 0.08

NEUTRAL_LOGISTIC: float = 0.5

MIN_WIN_PROB: float = 0.05

MAX_WIN_PROB: float = 0.95

BASE_BY_COMPETITORS = {
    CompetitorCount.NONE: 0.68,
    CompetitorCount.ONE: 0.58,
    CompetitorCount.TWO: 0.43,
    CompetitorCount.THREE_PLUS: 0.32,
}
DEFAULT_COMPETITOR_BASE: float = 0.32

DEAL_REG_ADJ = {
    DealRegType.PREMIUM_HUNTING: 0.12,
    DealRegType.STANDARD_APPROVED: 0.06,
    DealRegType.TEAMING: 0.06,
}

RELATIONSHIP_ADJ = {
    RelationshipStrength.STRATEGIC: 0.06,
    RelationshipStrength.GOOD: 0.03,
    RelationshipStrength.NEW: -0.03,
}

VALUE_ADD_ADJ = {
    Level.HIGH: 0.04,
    Level.LOW: -0.02,
}

COMPLEXITY_ADJ = {
    Level.HIGH: -0.02,
    Level.LOW: 0.01,
}

NEUTRAL_AGGRESSION: float = 3.0


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def estimate_win_prob(
    margin_pct: Optional[float],
    competitors: Optional[CompetitorCount] = None,
    deal_reg_type: Optional[DealRegType] = None,
    customer_segment: Optional[CustomerSegment] = None,
    relationship_strength: Optional[RelationshipStrength] = None,
    value_add: Optional[Level] = None,
    is_new_logo: bool = False,
    solution_complexity: Optional[Level] = None,
    services_attached: bool = False,
    quarter_end: bool = False,
    competitor_profiles: Optional[Sequence[CompetitorProfile]] = None,
) -> int:
    """
    Estimate the win probability at a margin.

    Args:
        margin_pct: Proposed margin on the 0-100 scale, or None.
        competitors: Competitor bucket; absent uses the 3+ base rate.
        deal_reg_type, customer_segment, relationship_strength, value_add,
        solution_complexity: Deal context; absent values add nothing.
        is_new_logo, services_attached, quarter_end: Deal flags.
        competitor_profiles: Known competitors; a missing priceAggression
            counts as 3.

    Returns:
        Integer win probability percent in [5, 95].
    """
    base = BASE_BY_COMPETITORS.get(competitors, DEFAULT_COMPETITOR_BASE)
    base += DEAL_REG_ADJ.get(deal_reg_type, 0.0)
    if customer_segment == CustomerSegment.ENTERPRISE:
        base -= 0.04
    base += RELATIONSHIP_ADJ.get(relationship_strength, 0.0)
    base += VALUE_ADD_ADJ.get(value_add, 0.0)
    if is_new_logo:
        base -= 0.04
    base += COMPLEXITY_ADJ.get(solution_complexity, 0.0)
    if services_attached:
        base += 0.03
    if quarter_end:
        base += 0.03

    if competitor_profiles:
        avg_aggression = sum(
            p.priceAggression or NEUTRAL_AGGRESSION for p in competitor_profiles
        ) / len(competitor_profiles)
        base += (NEUTRAL_AGGRESSION - avg_aggression) * 0.02

    if margin_pct is None:
        logistic = NEUTRAL_LOGISTIC
    else:
        logistic = 1.0 / (1.0 + math.exp(LOGISTIC_SLOPE * (margin_pct - MARGIN_KNEE)))

    wp = min(MAX_WIN_PROB, max(MIN_WIN_PROB, 0.6 * base + 0.4 * logistic))
    return round_half_up(wp * 100)


def estimate_win_prob_for_deal(deal: DealContext, margin_pct: Optional[float]) -> int:
    """estimate_win_prob() with every context argument taken from a deal."""
    d = deal.with_defaults()
    return estimate_win_prob(
        margin_pct,
        competitors=d.competitors,
        deal_reg_type=d.dealRegType,
        customer_segment=d.customerSegment,
        relationship_strength=d.relationshipStrength,
        value_add=d.valueAdd,
        is_new_logo=bool(d.isNewLogo),
        solution_complexity=d.solutionComplexity,
        services_attached=bool(d.servicesAttached),
        quarter_end=bool(d.quarterEnd),
        competitor_profiles=d.competitorProfiles,
    )
