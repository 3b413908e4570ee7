"""
Prediction Quality and Deal Score.

assess_prediction_quality() rates how much context backs a recommendation:

    baseline          22 pts (core deal fields)
    optional fields   up to 26 pts (OEM, ratings, deal flags)
    enrichment        up to 12 pts (OEM profile, competitor names/profiles)
    confidence        round(25 * confidence) pts
    grade             Excellent >= 80, Good >= 60, Fair >= 40, else Poor

compute_deal_score() combines four factors into a 0-100 score:

    margin alignment  0-40  (40 at the recommended margin, 0 at 10pp away,
                             20 when no margin was planned)
    win probability   0-25
    data quality      0-20  (quality score / 5, 10 when unknown)
    confidence        0-15  (0.4 when unknown)
"""

from typing import List, Optional, Tuple

from margin_advisor.models.enums import QualityGrade
from margin_advisor.models.schemas import (
    DealContext,
    DealScore,
    PredictionQuality,
    ScoreFactors,
)
from margin_advisor.services.win_probability import round_half_up


# =============================================================================
# Constants
# =============================================================================

BASELINE_POINTS: int = 22

DEFAULT_CONFIDENCE: float = 0.4

MAX_MISSING_FIELDS: int = 5

# (attribute, points, label when missing)
OPTIONAL_FIELDS: List[Tuple[str, int, str]] = [
    ('customerPriceSensitivity', 4, 'Price sensitivity (1-5)'),
    ('dealUrgency', 4, 'Deal urgency (1-5)'),
    ('customerLoyalty', 3, 'Customer loyalty (1-5)'),
    ('solutionDifferentiation', 3, 'Solution differentiation (1-5)'),
    ('isNewLogo', 2, 'New logo flag'),
    ('servicesAttached', 2, 'Services attached'),
    ('quarterEnd', 2, 'Quarter-end timing'),
    ('displacementDeal', 1, 'Displacement deal'),
]

OEM_POINTS: int = 5
OEM_PROFILE_POINTS: int = 5
COMPETITOR_NAMES_POINTS: int = 3
COMPETITOR_PROFILES_POINTS: int = 4

GRADE_THRESHOLDS: List[Tuple[int, QualityGrade]] = [
    (80, QualityGrade.EXCELLENT),
    (60, QualityGrade.GOOD),
    (40, QualityGrade.FAIR),
]


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def grade_for(score: int) -> QualityGrade:
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return QualityGrade.POOR


def assess_prediction_quality(deal: DealContext, confidence: Optional[float]) -> PredictionQuality:
    """
    Score the completeness of a deal's context (0-100).

    Args:
        deal: The raw deal as submitted (before defaults).
        confidence: Recommendation confidence; falsy values count as 0.4.

    Returns:
        PredictionQuality with at most five missing-field labels.
    """
    score = BASELINE_POINTS
    missing: List[str] = []

    if deal.oem and deal.oem.strip():
        score += OEM_POINTS
    else:
        missing.append('OEM vendor')

    for attr, points, label in OPTIONAL_FIELDS:
        if getattr(deal, attr) is not None:
            score += points
        else:
            missing.append(label)

    if deal.oemProfile is not None:
        score += OEM_PROFILE_POINTS
    else:
        missing.append('OEM margin profile (admin config)')
    if deal.competitorNames:
        score += COMPETITOR_NAMES_POINTS
    else:
        missing.append('Competitor names')
    if deal.competitorProfiles:
        score += COMPETITOR_PROFILES_POINTS
    else:
        missing.append('Competitor profiles (admin config)')

    score += round_half_up((confidence or DEFAULT_CONFIDENCE) * 25)
    score = min(100, score)

    return PredictionQuality(score=score, grade=grade_for(score), missingFields=missing[:MAX_MISSING_FIELDS])


def compute_deal_score(
    planned_margin_pct: Optional[float],
    suggested_margin_pct: Optional[float],
    win_probability: Optional[float],
    confidence: Optional[float],
    prediction_quality: Optional[PredictionQuality] = None,
) -> DealScore:
    """
    Combine alignment, win odds, data quality and confidence into one score.

    Args:
        planned_margin_pct: Rep's planned margin (percent) or None.
        suggested_margin_pct: Recommended margin (percent) or None.
        win_probability: 0-1 fraction or None (neutral 0.5).
        confidence: 0-1 or None (0.4).
        prediction_quality: Output of assess_prediction_quality().

    Returns:
        DealScore with per-factor points.
    """
    if planned_margin_pct is not None and suggested_margin_pct is not None:
        diff = abs(planned_margin_pct - suggested_margin_pct)
        alignment = max(0.0, 40 * (1 - diff / 10))
    else:
        alignment = 20.0

    wp = 0.5 if win_probability is None else win_probability
    win_score = wp * 25

    dq_score = prediction_quality.score / 100 * 20 if prediction_quality is not None else 10.0

    conf = DEFAULT_CONFIDENCE if confidence is None else confidence
    conf_score = conf * 15

    alignment = _clamp(alignment, 0, 40)
    win_score = _clamp(win_score, 0, 25)
    dq_score = _clamp(dq_score, 0, 20)
    conf_score = _clamp(conf_score, 0, 15)

    total = round_half_up(alignment + win_score + dq_score + conf_score)

    return DealScore(
        dealScore=int(_clamp(total, 0, 100)),
        scoreFactors=ScoreFactors(
            marginAlignment=round_half_up(alignment),
            winProbability=round_half_up(win_score),
            dataQuality=round_half_up(dq_score),
            confidence=round_half_up(conf_score),
        ),
    )
