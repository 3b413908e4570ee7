"""
Rule-Based Heuristic Scorer.

Produces a margin recommendation from deal context alone, optionally blended
with the outcomes of the most similar historical deals.

Algorithm Overview:
    1. Start from a segment base margin (SMB 20%, MidMarket 17%, otherwise
       the Enterprise base of 14%).
    2. Apply ~20 independent signed adjustments (registration, competition,
       competitor profiles, value-add, relationship, ratings, category,
       complexity, deal size, industry, OEM, services, timing ...). Each
       applied adjustment is recorded as a named driver.
    3. If neighbour data is available, blend:
           alpha = clamp(0.25 + count / 40, 0.25, 0.6)
           final = alpha * weightedAvg + (1 - alpha) * base + adj
       where adj = -0.015 per loss-on-price neighbour, or +0.01 per
       high-margin win when no neighbour was lost on price.
    4. Clamp to [policy floor, 55%]. The policy floor is 0.5% for Enterprise
       deals facing 2+ competitors without registration, 3% otherwise.

compute_recommendation() is the request-time entry point. When MODEL_URL is
configured it first asks the external model service (bounded timeout, no
retry) and falls back to the rule scorer on any failure.

Prices use margin on price: price = cost / (1 - margin).
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests

from margin_advisor.core.config import Settings, get_settings
from margin_advisor.models.enums import (
    CompetitorCount,
    CustomerSegment,
    DealRegType,
    Level,
    ProductCategory,
    RecommendationSource,
    RelationshipStrength,
)
from margin_advisor.models.schemas import (
    BomStats,
    DealContext,
    Driver,
    HistoricalDeal,
    RecommendationResult,
)
from margin_advisor.services.knn import DEFAULT_K, NeighborSummary, top_k_neighbors
from margin_advisor.services.win_probability import estimate_win_prob_for_deal

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

MARGIN_CEILING: float = 0.55

DEFAULT_POLICY_FLOOR: float = 0.03

CRITICAL_POLICY_FLOOR: float = 0.005

RULES_ONLY_CONFIDENCE: float = 0.4

DEFAULT_MODEL_CONFIDENCE: float = 0.5

MAX_DRIVERS: int = 6

SEGMENT_BASE: Dict[CustomerSegment, Tuple[str, float]] = {
    CustomerSegment.SMB: ('SMB base', 0.20),
    CustomerSegment.MID_MARKET: ('Mid-market base', 0.17),
    CustomerSegment.ENTERPRISE: ('Enterprise base', 0.14),
}
# Absent segment scores like Enterprise
DEFAULT_SEGMENT_BASE: Tuple[str, float] = SEGMENT_BASE[CustomerSegment.ENTERPRISE]

# Expected OEM base margin per segment (percent) for admin OEM profiles
SEGMENT_BASE_PCT: Dict[CustomerSegment, float] = {
    CustomerSegment.SMB: 20.0,
    CustomerSegment.MID_MARKET: 17.0,
    CustomerSegment.ENTERPRISE: 14.0,
}
DEFAULT_SEGMENT_BASE_PCT: float = 17.0

COMPETITOR_ADJ: Dict[CompetitorCount, Tuple[str, float]] = {
    CompetitorCount.NONE: ('No competitors', 0.025),
    CompetitorCount.ONE: ('1 competitor', 0.0),
    CompetitorCount.TWO: ('2 competitors', -0.02),
    CompetitorCount.THREE_PLUS: ('3+ competitors', -0.035),
}

VALUE_ADD_ADJ: Dict[Level, Tuple[str, float]] = {
    Level.HIGH: ('High VAR value-add', 0.06),
    Level.MEDIUM: ('Medium VAR value-add', 0.03),
}

RELATIONSHIP_ADJ: Dict[RelationshipStrength, Tuple[str, float]] = {
    RelationshipStrength.STRATEGIC: ('Strategic relationship', 0.02),
    RelationshipStrength.GOOD: ('Good relationship', 0.01),
}

CATEGORY_ADJ: Dict[ProductCategory, Tuple[str, float]] = {
    ProductCategory.MANAGED_SERVICES: ('Services category', 0.03),
    ProductCategory.PROFESSIONAL_SERVICES: ('Services category', 0.03),
    ProductCategory.SOFTWARE: ('Software/Cloud', 0.01),
    ProductCategory.CLOUD: ('Software/Cloud', 0.01),
    ProductCategory.COMPLEX_SOLUTION: ('Complex solution', 0.015),
}

COMPLEXITY_ADJ: Dict[Level, Tuple[str, float]] = {
    Level.HIGH: ('High complexity', 0.01),
    Level.LOW: ('Low complexity', -0.005),
}

TECH_SOPHISTICATION_ADJ: Dict[Level, Tuple[str, float]] = {
    Level.HIGH: ('High tech sophistication', -0.005),
    Level.LOW: ('Low tech sophistication', 0.005),
}

# Typical VAR margin variability by vertical
INDUSTRY_MARGIN_ADJ: Dict[str, float] = {
    'Financial Services': 0.015,
    'Life Sciences & Healthcare': 0.01,
    'Energy': 0.01,
    'Transportation & Logistics': 0.005,
    'Manufacturing & Automotive': 0.0,
    'Diversified Conglomerates': 0.0,
    'Media & Telecommunications': -0.005,
    'Technology': -0.01,
    'Consumer Goods & Food': -0.01,
    'Retail': -0.015,
}

OEM_MARGIN_ADJ: Dict[str, float] = {
    'Cisco': 0.01,
    'Palo Alto': 0.015,
    'Fortinet': 0.005,
    'HPE': 0.0,
    'Dell': -0.005,
    'VMware': 0.01,
    'Microsoft': -0.01,
    'Pure Storage': 0.015,
    'NetApp': 0.005,
    'Arista': 0.01,
}

_COMPETITIVE = (CompetitorCount.TWO, CompetitorCount.THREE_PLUS)


class ExternalModelError(RuntimeError):
    """Raised when the external model service returns an unusable response."""


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def policy_floor_for(deal: DealContext) -> float:
    """0.5% for Enterprise deals with 2+ competitors and no registration, else 3%."""
    d = deal.with_defaults()
    critical = (
        d.customerSegment == CustomerSegment.ENTERPRISE
        and d.competitors in _COMPETITIVE
        and d.dealRegType == DealRegType.NOT_REGISTERED
    )
    return CRITICAL_POLICY_FLOOR if critical else DEFAULT_POLICY_FLOOR


def neighbor_alpha(count: int) -> float:
    """Weight given to the neighbour average: clamp(0.25 + count/40, 0.25, 0.6)."""
    return _clamp(0.25 + count / 40, 0.25, 0.6)


def price_for_margin(cost: float, margin: float) -> float:
    return cost / (1 - margin)


# =============================================================================
# Rule Adjustments
# =============================================================================


def _rule_drivers(d: DealContext) -> List[Tuple[str, float]]:
    """
    Build the ordered list of (name, value) drivers for a defaulted deal.

    The first driver is always the segment base; the margin before blending
    is the sum of all driver values.
    """
    drivers: List[Tuple[str, float]] = [SEGMENT_BASE.get(d.customerSegment, DEFAULT_SEGMENT_BASE)]
    profile = d.oemProfile

    # Deal registration (admin OEM profile overrides the defaults)
    reg_boost = profile.dealRegBoost / 100 if profile and profile.dealRegBoost is not None else None
    if d.dealRegType == DealRegType.PREMIUM_HUNTING:
        drivers.append(('Premium/Hunting registration', reg_boost if reg_boost is not None else 0.06))
    elif d.dealRegType in (DealRegType.STANDARD_APPROVED, DealRegType.TEAMING):
        drivers.append(('Standard/Teaming registration', reg_boost / 2 if reg_boost is not None else 0.03))
    else:
        drivers.append(('No registration benefit', 0.0))

    drivers.append(COMPETITOR_ADJ.get(d.competitors, COMPETITOR_ADJ[CompetitorCount.ONE]))

    # Competitor profiles
    profiles = d.competitorProfiles or []
    with_margin = [p for p in profiles if p.marginAggression is not None]
    if with_margin:
        adj = sum(p.marginAggression for p in with_margin) / len(with_margin) * 0.005
        if abs(adj) > 0.001:
            names = ', '.join(p.name for p in with_margin)
            drivers.append((f"Competitor profile ({names})", adj))
    aggressive = [p for p in profiles if (p.priceAggression or 3) >= 4]
    if aggressive:
        names = ', '.join(p.name for p in aggressive)
        drivers.append((f"Price-aggressive competitors ({names})", -0.01 * len(aggressive)))

    if d.valueAdd in VALUE_ADD_ADJ:
        drivers.append(VALUE_ADD_ADJ[d.valueAdd])
    if d.relationshipStrength in RELATIONSHIP_ADJ:
        drivers.append(RELATIONSHIP_ADJ[d.relationshipStrength])

    if d.customerPriceSensitivity >= 4:
        drivers.append(('High price sensitivity', -0.02))
    elif d.customerPriceSensitivity <= 2:
        drivers.append(('Low price sensitivity', 0.02))

    if d.customerLoyalty >= 4:
        drivers.append(('High customer loyalty', 0.015))
    elif d.customerLoyalty <= 2:
        drivers.append(('Low customer loyalty', -0.01))

    if d.productCategory in CATEGORY_ADJ:
        drivers.append(CATEGORY_ADJ[d.productCategory])
    if d.solutionComplexity in COMPLEXITY_ADJ:
        drivers.append(COMPLEXITY_ADJ[d.solutionComplexity])

    if d.varStrategicImportance == Level.HIGH:
        drivers.append(('High strategic importance (accept lower)', -0.01))

    if d.dealUrgency >= 4:
        drivers.append(('High deal urgency', 0.015))
    elif d.dealUrgency <= 2:
        drivers.append(('Low deal urgency', -0.01))

    if d.isNewLogo:
        drivers.append(('New logo deal', -0.015))

    if d.solutionDifferentiation >= 4:
        drivers.append(('Strong solution differentiation', 0.02))
    elif d.solutionDifferentiation <= 2:
        drivers.append(('Weak solution differentiation', -0.015))

    if d.customerTechSophistication in TECH_SOPHISTICATION_ADJ:
        drivers.append(TECH_SOPHISTICATION_ADJ[d.customerTechSophistication])

    if d.oemCost > 500_000:
        drivers.append(('XL deal size', -0.01))
    elif d.oemCost > 100_000:
        drivers.append(('Large deal size', -0.005))

    if d.customerIndustry:
        adj = INDUSTRY_MARGIN_ADJ.get(d.customerIndustry, 0.0)
        if adj != 0:
            drivers.append((f"{d.customerIndustry} industry", adj))

    if d.oem:
        oem_key = d.oem.strip()
        adj = OEM_MARGIN_ADJ.get(oem_key, 0.0)
        if profile and profile.baseMargin is not None:
            expected = SEGMENT_BASE_PCT.get(d.customerSegment, DEFAULT_SEGMENT_BASE_PCT)
            adj = (profile.baseMargin - expected) / 100
        if adj != 0:
            drivers.append((f"{oem_key} OEM margin profile", adj))

    if d.servicesAttached:
        adj = profile.servicesBoost / 100 if profile and profile.servicesBoost is not None else 0.02
        drivers.append(('Services attached', adj))

    if d.quarterEnd:
        adj = profile.quarterEndDiscount / 100 if profile and profile.quarterEndDiscount is not None else 0.015
        drivers.append(('Quarter-end timing', adj))

    if d.displacementDeal:
        drivers.append(('Displacement deal', -0.02))

    if d.servicesAttached and d.productCategory in (ProductCategory.HARDWARE, ProductCategory.COMPLEX_SOLUTION):
        drivers.append(('Services uplift on hardware', 0.01))

    if d.oemCost <= 25_000:
        drivers.append(('Small deal premium', 0.015))
    elif d.oemCost > 1_000_000:
        drivers.append(('Mega deal compression', -0.01))

    return drivers


def rule_based_recommendation(
    deal: DealContext,
    deals: Optional[Sequence[HistoricalDeal]] = None,
    neighbor_data: Optional[NeighborSummary] = None,
) -> RecommendationResult:
    """
    Score a deal with the rule set, blending in k-NN neighbours when available.

    Args:
        deal: Deal being priced.
        deals: Historical deals; searched for neighbours when neighbor_data
            is not supplied.
        neighbor_data: Precomputed neighbour summary.

    Returns:
        RecommendationResult with the top 6 drivers by absolute value.
    """
    d = deal.with_defaults()
    drivers = _rule_drivers(d)
    base = sum(value for _, value in drivers)
    policy_floor = policy_floor_for(deal)

    if neighbor_data is None and deals:
        neighbor_data = top_k_neighbors(d, deals, DEFAULT_K)

    final = base
    confidence = RULES_ONLY_CONFIDENCE
    method_note = 'Rules only'
    neighbor_count = 0

    if neighbor_data is not None:
        adj = 0.0
        if neighbor_data.lossOnPrice > 0:
            adj -= 0.015 * neighbor_data.lossOnPrice
        elif neighbor_data.highWins > 0:
            adj += 0.01 * neighbor_data.highWins
        alpha = neighbor_alpha(neighbor_data.count)
        final = alpha * neighbor_data.weightedAvg + (1 - alpha) * base + adj
        agree = 1 - min(1.0, abs(base - neighbor_data.weightedAvg) / 0.12)
        confidence = _clamp(0.3 + 0.015 * neighbor_data.count + 0.25 * agree, 0.2, 0.8)
        method_note = f"Rules {100 * (1 - alpha):.0f}% + kNN {100 * alpha:.0f}%"
        neighbor_count = neighbor_data.count

    final = _clamp(final, policy_floor, MARGIN_CEILING)

    top_drivers = sorted(drivers, key=lambda item: abs(item[1]), reverse=True)[:MAX_DRIVERS]

    return RecommendationResult(
        suggestedMarginPct=final * 100,
        suggestedPrice=round(price_for_margin(d.oemCost, final), 2),
        winProbability=estimate_win_prob_for_deal(deal, final * 100) / 100,
        drivers=[Driver(name=name, value=value) for name, value in top_drivers],
        policyFloor=policy_floor,
        confidence=confidence,
        method=f"Advanced rules + kNN ({method_note})",
        source=RecommendationSource.RULES,
        neighborCount=neighbor_count,
    )


# =============================================================================
# External Model Service
# =============================================================================


def _neighbor_input(deal: DealContext, bom_stats: Optional[BomStats]) -> DealContext:
    stats = bom_stats or BomStats()
    return deal.model_copy(update={
        'bomLineCount': stats.lineCount,
        'bomAvgMargin': stats.avgMargin,
        'hasManualBom': stats.manual,
    })


def _call_model_service(
    url: str,
    payload: Dict[str, Any],
    timeout: float,
    session: Optional[requests.Session] = None,
) -> Dict[str, Any]:
    if session is not None:
        response = session.post(url, json=payload, timeout=timeout)
    else:
        with requests.Session() as http:
            response = http.post(url, json=payload, timeout=timeout)
    if not response.ok:
        raise ExternalModelError(f"Model service returned HTTP {response.status_code}")
    data = response.json()
    if not isinstance(data, dict):
        raise ExternalModelError("Model service response is not a JSON object")
    return data


def compute_recommendation(
    deal: DealContext,
    historical_deals: Optional[Sequence[HistoricalDeal]] = None,
    bom_stats: Optional[BomStats] = None,
    settings: Optional[Settings] = None,
    session: Optional[requests.Session] = None,
) -> RecommendationResult:
    """
    Recommend a margin for a deal.

    Runs the k-NN search once (with BOM statistics folded into the neighbour
    input), then tries the external model service when MODEL_URL is set.
    Any failure there (timeout, transport error, non-2xx status, malformed
    body) is logged and the rule scorer answers with the same neighbours.

    Args:
        deal: Deal being priced.
        historical_deals: Closed deals for neighbour search.
        bom_stats: BOM summary for the neighbour input.
        settings: Settings override; defaults to get_settings().
        session: requests session override.

    Returns:
        RecommendationResult from the model service or the rule scorer.
    """
    settings = settings or get_settings()
    deal = deal.with_defaults()
    neighbor_input = _neighbor_input(deal, bom_stats)
    neighbors = top_k_neighbors(neighbor_input, historical_deals, settings.knn_k) if historical_deals else None
    policy_floor = policy_floor_for(deal)

    if settings.model_url:
        payload = {
            'input': neighbor_input.model_dump(mode='json'),
            'neighbors': [d.model_dump(mode='json') for d in neighbors.deals] if neighbors else [],
        }
        try:
            data = _call_model_service(settings.model_url, payload, settings.model_timeout_seconds, session)
            margin = _clamp(float(data.get('marginPct') or 0.0), policy_floor, MARGIN_CEILING)
            drivers = [Driver.model_validate(item) for item in data.get('drivers') or []]
            confidence = data.get('confidence')
            return RecommendationResult(
                suggestedMarginPct=margin * 100,
                suggestedPrice=round(price_for_margin(deal.oemCost, margin), 2),
                winProbability=estimate_win_prob_for_deal(deal, margin * 100) / 100,
                drivers=drivers,
                policyFloor=policy_floor,
                confidence=DEFAULT_MODEL_CONFIDENCE if confidence is None else float(confidence),
                method='ML model',
                source=RecommendationSource.EXTERNAL_MODEL,
                neighborCount=neighbors.count if neighbors else 0,
            )
        except (requests.RequestException, ExternalModelError, ValueError, TypeError) as e:
            logger.warning(f"Model service call failed, falling back to rules: {e}")

    return rule_based_recommendation(deal, historical_deals, neighbors)
