"""
k-NN Similarity Engine.

Finds the closed deals most similar to a prospective deal and summarizes
their outcomes for the rule scorer's neighbour blend.

Similarity:
    An additive, unbounded, non-negative score. Each attribute contributes a
    "match" weight when the two deals agree and a smaller "mismatch" weight
    when they do not. A few attributes only contribute when both deals carry
    them (industry, OEM, BOM average margin, services-attached, quarter-end).

Time Decay:
    time_decay(close_date) down-weights stale deals in steps:
        <= 1 year  -> 1.00
        <= 2 years -> 0.85
        <= 3 years -> 0.70
        <  6 years -> 0.50
        >= 6 years -> 0.30
    Future dates count as fresh (1.0); missing or unparsable dates are
    neutral (0.5). top_k_neighbors multiplies similarity by the decay
    unless use_time_decay=False.

Neighbour Summary:
    top            - the k best (score, deal) pairs
    weightedAvg    - score-weighted mean achievedMargin (0-1 fraction)
    lossOnPrice    - Lost neighbours whose loss reason mentions "price"
    highWins       - Won neighbours with achievedMargin > 0.20
    count          - number of neighbours returned
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import List, Optional, Sequence, Union

from margin_advisor.models.enums import CompetitorCount, DealStatus
from margin_advisor.models.schemas import DEFAULT_RATING, DealContext, HistoricalDeal


# =============================================================================
# Constants
# =============================================================================

DEFAULT_K: int = 12

HIGH_WIN_MARGIN: float = 0.20

NEUTRAL_DECAY: float = 0.5

DECAY_FLOOR: float = 0.30

_COMPETITIVE = (CompetitorCount.TWO, CompetitorCount.THREE_PLUS)

_PRICE_PATTERN = re.compile(r'price', re.IGNORECASE)


@dataclass
class ScoredDeal:
    score: float
    deal: HistoricalDeal


@dataclass
class NeighborSummary:
    top: List[ScoredDeal] = field(default_factory=list)
    weightedAvg: float = 0.0
    lossOnPrice: int = 0
    highWins: int = 0
    count: int = 0

    @property
    def deals(self) -> List[HistoricalDeal]:
        return [s.deal for s in self.top]


# =============================================================================
# Similarity
# =============================================================================


def _match(a, b, hit: float, miss: float) -> float:
    return hit if a == b else miss


def _rating(value: Optional[int]) -> int:
    return DEFAULT_RATING if value is None else value


def _cost_band(oem_cost: float) -> int:
    if oem_cost > 500_000:
        return 3
    if oem_cost > 100_000:
        return 2
    return 1


def _competitor_score(a: Optional[CompetitorCount], b: Optional[CompetitorCount]) -> float:
    if a == b:
        return 0.6
    if a in _COMPETITIVE and b in _COMPETITIVE:
        return 0.4
    return 0.1


def _competitor_names_score(input_names: Optional[List[str]], deal_names: Optional[List[str]]) -> float:
    if not input_names or not deal_names:
        return 0.1
    input_set, deal_set = set(input_names), set(deal_names)
    jaccard = len(input_set & deal_set) / len(input_set | deal_set)
    return 0.1 + jaccard * 0.5


def _bom_line_count_score(a: Optional[int], b: Optional[int]) -> float:
    a, b = a or 0, b or 0
    if a == 0 and b == 0:
        return 0.15
    if a > 0 and b > 0:
        diff = abs(a - b)
        if diff == 0:
            return 0.6
        return 0.4 if diff <= 2 else 0.2
    return 0.1


def _bom_avg_margin_score(a: Optional[float], b: Optional[float]) -> float:
    if a is None or b is None:
        return 0.0
    diff = abs(a - b)
    if diff < 0.02:
        return 0.45
    if diff < 0.05:
        return 0.3
    if diff < 0.1:
        return 0.18
    return 0.08


def similarity(input_deal: DealContext, deal: DealContext) -> float:
    """
    Additive similarity between a prospective deal and a historical deal.

    Args:
        input_deal: The deal being priced, with defaults applied by the caller.
        deal: A historical deal.

    Returns:
        Non-negative similarity score; higher is more similar.
    """
    s = 0.0

    if input_deal.customerIndustry and deal.customerIndustry:
        s += _match(deal.customerIndustry, input_deal.customerIndustry, 0.5, 0.1)

    s += _match(deal.customerSegment, input_deal.customerSegment, 1.0, 0.2)
    s += _match(deal.productCategory, input_deal.productCategory, 0.8, 0.1)
    s += _match(deal.dealRegType, input_deal.dealRegType, 0.6, 0.2)
    s += _match(deal.valueAdd, input_deal.valueAdd, 0.6, 0.2)
    s += _match(deal.solutionComplexity, input_deal.solutionComplexity, 0.5, 0.2)
    s += _match(deal.relationshipStrength, input_deal.relationshipStrength, 0.4, 0.1)
    s += _match(deal.customerTechSophistication, input_deal.customerTechSophistication, 0.3, 0.1)
    s += _competitor_score(deal.competitors, input_deal.competitors)
    s += _competitor_names_score(input_deal.competitorNames, deal.competitorNames)

    s += _match(_rating(deal.customerPriceSensitivity), _rating(input_deal.customerPriceSensitivity), 0.3, 0.1)
    s += _match(_rating(deal.customerLoyalty), _rating(input_deal.customerLoyalty), 0.2, 0.1)
    s += _match(_rating(deal.dealUrgency), _rating(input_deal.dealUrgency), 0.3, 0.1)
    s += _match(bool(deal.isNewLogo), bool(input_deal.isNewLogo), 0.2, 0.1)
    s += _match(_rating(deal.solutionDifferentiation), _rating(input_deal.solutionDifferentiation), 0.3, 0.1)
    s += _match(_cost_band(deal.oemCost), _cost_band(input_deal.oemCost), 0.4, 0.1)

    s += _bom_line_count_score(input_deal.bomLineCount, deal.bomLineCount)
    s += _bom_avg_margin_score(input_deal.bomAvgMargin, deal.bomAvgMargin)
    s += _match(bool(deal.hasManualBom), bool(input_deal.hasManualBom), 0.3, 0.1)

    if input_deal.oem and deal.oem:
        s += _match(deal.oem, input_deal.oem, 0.5, 0.1)
    if input_deal.servicesAttached is not None and deal.servicesAttached is not None:
        s += _match(deal.servicesAttached, input_deal.servicesAttached, 0.25, 0.1)
    if input_deal.quarterEnd is not None and deal.quarterEnd is not None:
        s += _match(deal.quarterEnd, input_deal.quarterEnd, 0.2, 0.1)

    return s


# =============================================================================
# Time Decay
# =============================================================================


def _parse_close_date(close_date: Union[str, date, datetime, None]) -> Optional[date]:
    if close_date is None:
        return None
    if isinstance(close_date, datetime):
        return close_date.date()
    if isinstance(close_date, date):
        return close_date
    text = str(close_date).strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace('Z', '+00:00')).date()
    except ValueError:
        return None


def time_decay(
    close_date: Union[str, date, datetime, None],
    today: Optional[date] = None,
) -> float:
    """
    Recency weight for a closed deal.

    Args:
        close_date: date, datetime, or 'YYYY-MM-DD' / ISO-8601 string.
        today: Reference date; defaults to the current UTC date.

    Returns:
        1.0, 0.85, 0.70, 0.50 or 0.30 by age; 0.5 when the date is missing
        or unparsable.
    """
    closed = _parse_close_date(close_date)
    if closed is None:
        return NEUTRAL_DECAY

    reference = today or datetime.now(timezone.utc).date()
    age_years = (reference - closed).days / 365.25
    if age_years <= 0:
        return 1.0

    if age_years <= 1:
        return 1.0
    if age_years <= 2:
        return 0.85
    if age_years <= 3:
        return 0.70
    if age_years < 6:
        return 0.50
    return DECAY_FLOOR


# =============================================================================
# Neighbour Search
# =============================================================================


def top_k_neighbors(
    input_deal: DealContext,
    deals: Sequence[HistoricalDeal],
    k: int = DEFAULT_K,
    use_time_decay: bool = True,
    today: Optional[date] = None,
) -> NeighborSummary:
    """
    Score every historical deal and summarize the k most similar.

    Args:
        input_deal: Deal being priced.
        deals: Closed deals to search.
        k: Number of neighbours to keep.
        use_time_decay: Multiply similarity by time_decay(closeDate).
        today: Reference date for the decay.

    Returns:
        NeighborSummary; an empty summary when deals is empty.
    """
    scored = []
    for deal in deals:
        score = similarity(input_deal, deal)
        if use_time_decay:
            score *= time_decay(deal.closeDate, today=today)
        scored.append(ScoredDeal(score=score, deal=deal))

    # Stable sort keeps input order among equal scores
    scored.sort(key=lambda sd: sd.score, reverse=True)
    top = scored[:max(0, k)]

    total_score = sum(sd.score for sd in top) or 1.0
    weighted_avg = sum(sd.score * (sd.deal.achievedMargin or 0.0) for sd in top) / total_score

    loss_on_price = sum(
        1 for sd in top
        if sd.deal.status == DealStatus.LOST and _PRICE_PATTERN.search(sd.deal.lossReason or '')
    )
    high_wins = sum(
        1 for sd in top
        if sd.deal.status == DealStatus.WON and (sd.deal.achievedMargin or 0.0) > HIGH_WIN_MARGIN
    )

    return NeighborSummary(
        top=top,
        weightedAvg=weighted_avg,
        lossOnPrice=loss_on_price,
        highWins=high_wins,
        count=len(top),
    )
