"""
FastAPI router for deal margin recommendations.

Key Endpoints:
- POST /recommend - rule/k-NN (or external model) recommendation for one deal,
  with planned-vs-recommended comparison, prediction quality, deal score and
  narrative explanations

Processing Flow:
    1. Load the organisation's closed deals through the TTL-cached reader
    2. Summarize manually entered BOM lines for the k-NN neighbour input
    3. compute_recommendation() (external model when configured, else rules)
    4. Compare with the rep's planned margin, score quality and the deal
    5. Ask the narrative client for prose, falling back to deterministic text

Endpoints are synchronous: the outbound model and narrative calls block, so
FastAPI runs them in its worker threadpool.

Dependencies:
- margin_advisor/core/dependencies.py: SettingsDep, DealReaderDep, NarrativeClientDep
- margin_advisor/services/rules.py: compute_recommendation
"""

import logging

from fastapi import APIRouter, HTTPException

from margin_advisor.core.dependencies import DealReaderDep, NarrativeClientDep, SettingsDep
from margin_advisor.models.schemas import RecommendRequest, RecommendResponse
from margin_advisor.services.bom_optimizer import compute_bom_stats
from margin_advisor.services.narrative import fallback_explanation, fallback_qualitative
from margin_advisor.services.quality import assess_prediction_quality, compute_deal_score
from margin_advisor.services.rules import compute_recommendation
from margin_advisor.services.scenarios import compare_with_plan

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=RecommendResponse)
def recommend(
    request: RecommendRequest,
    reader: DealReaderDep,
    narrative: NarrativeClientDep,
    settings: SettingsDep,
) -> RecommendResponse:
    """
    Recommend a margin for a deal.

    Args:
        request: Deal context, optional planned margin, BOM lines and orgId.
        reader: Cached historical-deal reader.
        narrative: Narrative client.
        settings: Application settings.

    Returns:
        RecommendResponse

    Raises:
        HTTPException 400: When the deal cannot be scored.
    """
    deal = request.input
    bom_stats = compute_bom_stats(request.bomLines) if request.bomLines else None

    try:
        history = reader.get_deals(request.orgId)
        rec = compute_recommendation(deal, history, bom_stats=bom_stats, settings=settings)
        comparison = compare_with_plan(deal, request.plannedMarginPct, rec.suggestedMarginPct)
    except ValueError as e:
        logger.warning(f"POST /recommend rejected: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    quality = assess_prediction_quality(deal, rec.confidence)
    score = compute_deal_score(
        planned_margin_pct=request.plannedMarginPct,
        suggested_margin_pct=rec.suggestedMarginPct,
        win_probability=rec.winProbability,
        confidence=rec.confidence,
        prediction_quality=quality,
    )

    explanation = None
    qualitative = None
    if request.includeNarrative:
        manual_bom = bom_stats is not None and bom_stats.manual
        explanation = (
            narrative.explain_recommendation(rec.suggestedMarginPct, rec.drivers, manual_bom=manual_bom)
            or fallback_explanation(rec.suggestedMarginPct, rec.drivers, manual_bom=manual_bom)
        )
        qualitative = (
            narrative.summarize_qualitative(deal, rec.suggestedMarginPct, comparison, bom_stats)
            or fallback_qualitative(deal, rec.suggestedMarginPct, comparison, bom_stats)
        )

    logger.info(
        f"Recommendation for org {request.orgId or 'global'}: {rec.suggestedMarginPct:.1f}% "
        f"via {rec.source.value} ({len(history)} historical deals, quality {quality.score})"
    )

    return RecommendResponse(
        recommendation=rec,
        comparison=comparison,
        predictionQuality=quality,
        dealScore=score,
        bomStats=bom_stats,
        explanation=explanation,
        qualitativeSummary=qualitative,
    )
