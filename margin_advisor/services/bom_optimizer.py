"""
BOM Margin Optimizer.

Allocates per-line margins across a bill of materials so the blended margin
lands on a requested target while respecting per-category floors and
ceilings, then scores the resulting BOM and suggests improvements.

Margins are margin on selling price throughout:
    margin = (price - cost) / price
    price  = cost / (1 - margin)

Algorithm Overview:
    1. Each category gets a target: base target + a single deal-context
       adjustment (segment, registration, competition, value-add,
       relationship, complexity), clamped to [floor, 55%].
    2. Every line starts at its category target clamped to
       [floor, ceiling].
    3. If a target blended margin is set and the blend misses it by more
       than 0.1pp, the gross-profit gap is spread over the lines in up to
       five passes. Each pass shares the remaining gap in proportion to
       elasticity x extended cost among lines that still have headroom
       (toward the ceiling when raising, toward the floor when lowering).
    4. Totals, a 0-100 health score and a deduplicated list of insights
       are derived from the final allocation.

Usage:
    from margin_advisor.services.bom_optimizer import optimize_bom

    allocation = optimize_bom(lines, BomContext(targetBlendedMargin=15))
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from margin_advisor.models.enums import (
    CompetitorCount,
    CustomerSegment,
    DealRegType,
    Level,
    ProductCategory,
    RelationshipStrength,
)
from margin_advisor.models.schemas import (
    BomAllocation,
    BomContext,
    BomLine,
    BomLineAllocation,
    BomRecommendations,
    BomStats,
    BomTotals,
)
from margin_advisor.services.win_probability import round_half_up

logger = logging.getLogger(__name__)


# =============================================================================
# Category Tables
# =============================================================================

DEFAULT_CATEGORY = ProductCategory.HARDWARE.value

CATEGORY_FLOORS: Dict[str, float] = {
    'Hardware': 0.05,
    'Software': 0.08,
    'Cloud': 0.06,
    'ProfessionalServices': 0.15,
    'ManagedServices': 0.12,
    'ComplexSolution': 0.10,
}
DEFAULT_FLOOR: float = 0.05

CATEGORY_CEILINGS: Dict[str, float] = {
    'Hardware': 0.25,
    'Software': 0.40,
    'Cloud': 0.30,
    'ProfessionalServices': 0.50,
    'ManagedServices': 0.45,
    'ComplexSolution': 0.35,
}
DEFAULT_CEILING: float = 0.35

# Share of a gross-profit adjustment a category absorbs relative to its cost
CATEGORY_ELASTICITY: Dict[str, float] = {
    'Hardware': 0.3,
    'Software': 0.7,
    'Cloud': 0.5,
    'ProfessionalServices': 0.9,
    'ManagedServices': 0.8,
    'ComplexSolution': 0.5,
}
DEFAULT_ELASTICITY: float = 0.5

CATEGORY_BASE_TARGETS: Dict[str, float] = {
    'Hardware': 0.12,
    'Software': 0.18,
    'Cloud': 0.14,
    'ProfessionalServices': 0.30,
    'ManagedServices': 0.25,
    'ComplexSolution': 0.18,
}
DEFAULT_BASE_TARGET: float = 0.12

MAX_CATEGORY_TARGET: float = 0.55

SERVICES_CATEGORIES = ('ProfessionalServices', 'ManagedServices')

MAX_PASSES: int = 5
GP_TOLERANCE: float = 0.01
REDISTRIBUTE_THRESHOLD: float = 0.001
TARGET_TOLERANCE_PCT: float = 0.5
HEALTH_BASE: int = 50

_COMPETITIVE = (CompetitorCount.TWO, CompetitorCount.THREE_PLUS)

CONTEXT_ADJ: Dict[str, Dict] = {
    'customerSegment': {CustomerSegment.SMB: 0.03, CustomerSegment.ENTERPRISE: -0.02},
    'dealRegType': {
        DealRegType.PREMIUM_HUNTING: 0.04,
        DealRegType.STANDARD_APPROVED: 0.02,
        DealRegType.TEAMING: 0.02,
        DealRegType.NOT_REGISTERED: -0.01,
    },
    'competitors': {
        CompetitorCount.NONE: 0.02,
        CompetitorCount.TWO: -0.015,
        CompetitorCount.THREE_PLUS: -0.03,
    },
    'valueAdd': {Level.HIGH: 0.03, Level.LOW: -0.02},
    'relationshipStrength': {RelationshipStrength.STRATEGIC: 0.015, RelationshipStrength.NEW: -0.01},
    'solutionComplexity': {Level.HIGH: 0.01, Level.LOW: -0.005},
}


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def _round_currency(value: float) -> float:
    return round_half_up(value * 100) / 100


def _round_pct(value: float) -> float:
    return round_half_up(value * 10) / 10


def _gross_profit(cost: float, margin: float) -> float:
    return cost / (1 - margin) - cost


# =============================================================================
# Targets
# =============================================================================


def context_adjustment(context: BomContext) -> float:
    """Single additive margin adjustment from the deal context."""
    adj = 0.0
    for attr, table in CONTEXT_ADJ.items():
        adj += table.get(getattr(context, attr), 0.0)
    return adj


def category_target(category: str, context: BomContext) -> float:
    base = CATEGORY_BASE_TARGETS.get(category, DEFAULT_BASE_TARGET)
    floor = CATEGORY_FLOORS.get(category, DEFAULT_FLOOR)
    return _clamp(base + context_adjustment(context), floor, MAX_CATEGORY_TARGET)


# =============================================================================
# Working Line State
# =============================================================================


@dataclass
class _WorkLine:
    index: int
    category: str
    extended_cost: float
    current_margin_pct: float
    floor: float
    ceiling: float
    elasticity: float
    margin: float
    part_number: Optional[str] = None
    description: Optional[str] = None

    @property
    def gross_profit(self) -> float:
        return _gross_profit(self.extended_cost, self.margin)

    @property
    def extended_price(self) -> float:
        return self.extended_cost / (1 - self.margin)


def _build_line(index: int, line: BomLine, context: BomContext) -> _WorkLine:
    category = line.category or DEFAULT_CATEGORY
    quantity = max(1.0, line.quantity or 1.0)
    unit_cost = max(0.0, line.unitCost or 0.0)
    floor = CATEGORY_FLOORS.get(category, DEFAULT_FLOOR)
    ceiling = CATEGORY_CEILINGS.get(category, DEFAULT_CEILING)
    return _WorkLine(
        index=index,
        category=category,
        extended_cost=unit_cost * quantity,
        current_margin_pct=line.marginPct or 0.0,
        floor=floor,
        ceiling=ceiling,
        elasticity=CATEGORY_ELASTICITY.get(category, DEFAULT_ELASTICITY),
        margin=_clamp(category_target(category, context), floor, ceiling),
        part_number=line.partNumber or None,
        description=line.description or None,
    )


# =============================================================================
# Redistribution
# =============================================================================


def distribute_gp(lines: List[_WorkLine], gp_delta: float, raise_margins: bool) -> float:
    """
    Spread a gross-profit delta over the lines by elasticity x cost.

    Args:
        lines: Working lines, updated in place.
        gp_delta: Positive amount of gross profit to add or remove.
        raise_margins: True pushes toward ceilings, False toward floors.

    Returns:
        Gross profit left undistributed (0 when fully absorbed).
    """
    rooms: List[float] = []
    weights: List[float] = []
    for line in lines:
        bound = line.ceiling if raise_margins else line.floor
        room = _gross_profit(line.extended_cost, bound) - line.gross_profit
        rooms.append(max(0.0, room if raise_margins else -room))
        weights.append(line.elasticity * line.extended_cost)

    remaining = gp_delta
    for _ in range(MAX_PASSES):
        if remaining <= GP_TOLERANCE:
            break
        active_weight = sum(w for w, r in zip(weights, rooms) if r > 0)
        if active_weight <= 0:
            break

        for i, line in enumerate(lines):
            if rooms[i] <= 0 or remaining <= 0:
                continue
            applied = min(weights[i] / active_weight * remaining, rooms[i])
            before = line.gross_profit
            new_gp = before + applied if raise_margins else before - applied
            new_price = line.extended_cost + max(0.0, new_gp)
            new_margin = (new_price - line.extended_cost) / new_price if new_price > 0 else 0.0
            line.margin = _clamp(new_margin, line.floor, line.ceiling)

            moved = max(0.0, abs(line.gross_profit - before))
            remaining -= moved
            rooms[i] -= moved

    return max(0.0, remaining)


# =============================================================================
# Output
# =============================================================================


def line_rationale(line: _WorkLine, context: BomContext) -> str:
    oem = context.oem or 'OEM'
    competitive = context.competitors in _COMPETITIVE
    category = line.category

    if category == 'Hardware':
        text = (
            f"Hardware in competitive {oem} deal: keep tight to win" if competitive
            else f"Hardware line: standard margin for {oem}"
        )
    elif category == 'ProfessionalServices':
        text = (
            'Professional services: high value-add justifies premium' if context.valueAdd == Level.HIGH
            else 'Professional services: standard delivery margin'
        )
    elif category == 'ManagedServices':
        text = 'Managed services: recurring revenue supports healthy margin'
    elif category == 'Software':
        text = 'Software line: low marginal cost supports margin'
    elif category == 'Cloud':
        text = (
            'Cloud capacity: keep competitive against hyperscaler direct' if competitive
            else 'Cloud line: moderate margin on reserved capacity'
        )
    elif category == 'ComplexSolution':
        text = 'Complex solution bundle: blended margin across stack'
    else:
        text = f"{category}: standard margin"

    if line.margin * 100 <= line.floor * 100 + 1:
        text += ' (at floor)'
    return text


def _format_line(line: _WorkLine, context: BomContext) -> BomLineAllocation:
    return BomLineAllocation(
        index=line.index,
        currentMarginPct=_round_pct(line.current_margin_pct),
        recommendedMarginPct=_round_pct(line.margin * 100),
        marginFloor=_round_pct(line.floor * 100),
        extendedCost=_round_currency(line.extended_cost),
        extendedPrice=_round_currency(line.extended_price),
        grossProfit=_round_currency(line.gross_profit),
        rationale=line_rationale(line, context),
        partNumber=line.part_number,
        description=line.description,
    )


def _health_and_insights(
    lines: List[_WorkLine],
    allocations: List[BomLineAllocation],
    blended_pct: float,
    target_pct: float,
    target_achieved: bool,
    context: BomContext,
) -> Tuple[int, List[str]]:
    insights: List[str] = []
    health = HEALTH_BASE

    if target_pct > 0:
        if target_achieved:
            health += 25
        else:
            health -= min(25, round_half_up((target_pct - blended_pct) * 3))

            services = [
                l for l in lines
                if l.category in SERVICES_CATEGORIES and l.margin < l.ceiling - 0.02
            ]
            if services:
                room = sum((l.ceiling - l.margin) * 100 for l in services)
                insights.append(
                    f"Services margin can absorb {round_half_up(room / len(services))}pp more to close the gap"
                )
            if context.dealRegType == DealRegType.NOT_REGISTERED:
                insights.append('Consider deal registration to unlock 3pp of OEM margin')
            if context.valueAdd != Level.HIGH:
                insights.append('Increasing value-add (professional services, training) justifies higher margins')

    if context.dealRegType in (DealRegType.PREMIUM_HUNTING, DealRegType.STANDARD_APPROVED):
        health += 10

    if context.valueAdd == Level.HIGH:
        health += 10
    elif context.valueAdd == Level.LOW:
        health -= 5

    if context.relationshipStrength == RelationshipStrength.STRATEGIC:
        health += 5

    if context.competitors == CompetitorCount.THREE_PLUS:
        health -= 10
        insights.append('Heavy competition: focus on differentiation to protect margin')
    elif context.competitors == CompetitorCount.NONE:
        health += 10

    if all(l.margin <= l.floor + 0.005 for l in lines):
        insights.append('All lines at minimum floor: consider restructuring the deal mix')

    total_cost = sum(l.extended_cost for l in lines)
    hardware_cost = sum(l.extended_cost for l in lines if l.category == 'Hardware')
    if total_cost > 0 and hardware_cost / total_cost > 0.8:
        insights.append('BOM is hardware-heavy: adding services lines improves blended margin')

    if len(allocations) > 1:
        margins = [a.recommendedMarginPct for a in allocations]
        if max(margins) - min(margins) > 25:
            health += 5

    if not insights:
        if target_achieved and target_pct > 0:
            insights.append('BOM margins are well-balanced and meet the target')
        else:
            insights.append('Review per-line margins for optimization opportunities')

    # Preserve first occurrence order
    return int(_clamp(health, 0, 100)), list(dict.fromkeys(insights))


# =============================================================================
# Entry Points
# =============================================================================


def optimize_bom(bom_lines: Sequence[BomLine], context: Optional[BomContext] = None) -> BomAllocation:
    """
    Recommend per-line margins for a bill of materials.

    Args:
        bom_lines: BOM lines; quantity defaults to at least 1, negative or
            missing costs count as 0, missing category means Hardware.
        context: Deal context and optional target blended margin (percent).

    Returns:
        BomAllocation with per-line allocations, totals and recommendations.

    Edge Cases:
        - No lines: zero totals, targetAchieved False, "No BOM lines provided"
        - Zero total cost: zero totals, "All lines have zero cost"
    """
    context = context or BomContext()
    target_pct_raw = context.targetBlendedMargin or 0.0

    if not bom_lines:
        return BomAllocation(
            lines=[],
            totals=BomTotals(
                totalCost=0, totalPrice=0, blendedMarginPct=0, totalGrossProfit=0,
                targetAchieved=False, targetMarginPct=target_pct_raw, gap=target_pct_raw,
            ),
            recommendations=BomRecommendations(healthScore=0, insights=['No BOM lines provided']),
        )

    target = target_pct_raw / 100
    lines = [_build_line(i, line, context) for i, line in enumerate(bom_lines)]
    total_cost = sum(l.extended_cost for l in lines)

    if total_cost <= 0:
        for line in lines:
            line.margin = line.floor
        return BomAllocation(
            lines=[_format_line(l, context) for l in lines],
            totals=BomTotals(
                totalCost=0, totalPrice=0, blendedMarginPct=0, totalGrossProfit=0,
                targetAchieved=target <= 0,
                targetMarginPct=_round_pct(target * 100),
                gap=_round_pct(target * 100),
            ),
            recommendations=BomRecommendations(healthScore=0, insights=['All lines have zero cost']),
        )

    blended = 1 - total_cost / sum(l.extended_price for l in lines)
    if target > 0 and abs(blended - target) > REDISTRIBUTE_THRESHOLD:
        target_gp = total_cost / (1 - target) - total_cost
        gp_gap = target_gp - sum(l.gross_profit for l in lines)
        if gp_gap != 0:
            left = distribute_gp(lines, abs(gp_gap), raise_margins=gp_gap > 0)
            if left > GP_TOLERANCE:
                logger.debug(f"BOM redistribution left {left:.2f} GP unallocated")

    allocations = [_format_line(l, context) for l in lines]
    total_price = sum(a.extendedPrice for a in allocations)
    total_gp = total_price - total_cost
    blended_pct = total_gp / total_price * 100 if total_price > 0 else 0.0

    target_achieved = abs(blended_pct - target * 100) < TARGET_TOLERANCE_PCT if target > 0 else True
    gap = 0.0 if target_achieved else _round_pct(max(0.0, target * 100 - blended_pct))

    health, insights = _health_and_insights(
        lines, allocations, blended_pct, target * 100, target_achieved, context
    )

    return BomAllocation(
        lines=allocations,
        totals=BomTotals(
            totalCost=_round_currency(total_cost),
            totalPrice=_round_currency(total_price),
            blendedMarginPct=_round_pct(blended_pct),
            totalGrossProfit=_round_currency(total_gp),
            targetAchieved=target_achieved,
            targetMarginPct=_round_pct(target * 100),
            gap=gap,
        ),
        recommendations=BomRecommendations(healthScore=health, insights=insights),
    )


def compute_bom_stats(lines: Sequence[BomLine]) -> BomStats:
    """
    Summarize a manually entered BOM for the k-NN neighbour input.

    avgMargin is the unweighted mean line margin as a 0-1 fraction.
    """
    if not lines:
        return BomStats(lineCount=0, avgMargin=None, manual=False)
    margins = [(line.marginPct or 0.0) / 100 for line in lines]
    return BomStats(lineCount=len(lines), avgMargin=sum(margins) / len(margins), manual=True)
