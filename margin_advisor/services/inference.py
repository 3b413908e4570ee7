"""
Margin Sweep Inference.

Runs a trained customer model across a grid of candidate margins and picks
three operating points:

    optimal       - highest expected gross profit (first on ties)
    conservative  - highest margin still winning with pWin >= 0.70
                    (falls back to the highest-pWin point)
    aggressive    - highest margin still winning with pWin >= 0.45
                    (falls back to optimal)

Expected gross profit at margin m:
    price       = cost / (1 - m)
    expected GP = (price - cost) * pWin(m)

The grid is 61 points from 5% to 35% in 0.5pp steps.
"""

import logging
from dataclasses import dataclass
from typing import List

from margin_advisor.models.schemas import (
    DealContext,
    GpCurvePoint,
    InferenceResult,
    KeyDriver,
    MarginOption,
    ModelMetricsSummary,
    ModelPackage,
)
from margin_advisor.services.features import display_name, featurize
from margin_advisor.services.logistic_regression import predict
from margin_advisor.services.win_probability import round_half_up

logger = logging.getLogger(__name__)


SWEEP_START: float = 0.05
SWEEP_STEP: float = 0.005
SWEEP_POINTS: int = 61

CONSERVATIVE_MIN_WIN: float = 0.70
AGGRESSIVE_MIN_WIN: float = 0.45

MIN_CONFIDENCE: float = 0.1
MAX_CONFIDENCE: float = 0.95
CONFIDENCE_SATURATION_DEALS: int = 500

KEY_DRIVER_COUNT: int = 5
CURVE_STRIDE: int = 3


@dataclass
class SweepPoint:
    margin: float
    p_win: float
    price: float
    gross_profit: float
    expected_gp: float

    def to_option(self) -> MarginOption:
        return MarginOption(
            marginPct=round(self.margin * 100, 1),
            price=round(self.price, 2),
            winProbability=self.p_win,
            expectedGP=self.expected_gp,
        )


def sweep_margins(deal: DealContext, package: ModelPackage) -> List[SweepPoint]:
    """Score every grid margin with the package's model."""
    points: List[SweepPoint] = []
    for i in range(SWEEP_POINTS):
        margin = SWEEP_START + i * SWEEP_STEP
        vector = featurize(deal, package.normStats, proposed_margin=margin)
        p_win = predict(package.model, vector.features)
        price = deal.oemCost / (1 - margin)
        gross_profit = price - deal.oemCost
        points.append(SweepPoint(
            margin=margin,
            p_win=p_win,
            price=price,
            gross_profit=gross_profit,
            expected_gp=gross_profit * p_win,
        ))
    return points


def compute_confidence(package: ModelPackage) -> float:
    """clamp((AUC - 0.5) * 2 * min(1, dealCount / 500), 0.1, 0.95)"""
    base = (package.metrics.auc - 0.5) * 2
    data_factor = min(1.0, package.dealCount / CONFIDENCE_SATURATION_DEALS)
    return max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, base * data_factor))


def _pick_optimal(points: List[SweepPoint]) -> SweepPoint:
    best = points[0]
    for pt in points:
        if pt.expected_gp > best.expected_gp:
            best = pt
    return best


def _highest_margin_above(points: List[SweepPoint], min_win: float):
    eligible = [pt for pt in points if pt.p_win >= min_win]
    return max(eligible, key=lambda pt: pt.margin) if eligible else None


def _pick_conservative(points: List[SweepPoint]) -> SweepPoint:
    chosen = _highest_margin_above(points, CONSERVATIVE_MIN_WIN)
    if chosen is not None:
        return chosen
    best = points[0]
    for pt in points:
        if pt.p_win > best.p_win:
            best = pt
    return best


def key_drivers(deal: DealContext, package: ModelPackage) -> List[KeyDriver]:
    """
    Explain the top model features for this deal.

    contribution = weight * the deal's own normalized feature value
    (featurized without a margin override).
    """
    vector = featurize(deal, package.normStats)
    values = dict(zip(vector.featureNames, vector.features))

    drivers: List[KeyDriver] = []
    for feat in package.importance[:KEY_DRIVER_COUNT]:
        name = display_name(feat.name)
        contribution = feat.weight * values.get(feat.name, 0.0)
        impact = abs(contribution) * 100
        if contribution >= 0:
            sentence = f"{name} is helping win probability (+{impact:.1f}pp)"
        else:
            sentence = f"{name} is reducing win probability (-{impact:.1f}pp)"
        drivers.append(KeyDriver(
            feature=feat.name,
            displayName=name,
            contribution=contribution,
            impact=impact,
            sentence=sentence,
        ))
    return drivers


def recommend_margin(deal: DealContext, model_package: ModelPackage) -> InferenceResult:
    """
    Recommend margins for a deal from a customer's trained model.

    Args:
        deal: Deal being priced.
        model_package: Package produced by train_customer_model().

    Returns:
        InferenceResult with optimal/conservative/aggressive options, key
        drivers and a GP curve sampled at every third grid point.
    """
    deal = deal.with_defaults()
    points = sweep_margins(deal, model_package)

    optimal = _pick_optimal(points)
    conservative = _pick_conservative(points)
    aggressive = _highest_margin_above(points, AGGRESSIVE_MIN_WIN) or optimal

    curve = [
        GpCurvePoint(
            marginPct=round(pt.margin * 100, 1),
            winProbabilityPct=round_half_up(pt.p_win * 100),
            expectedGP=float(round_half_up(pt.expected_gp)),
        )
        for pt in points[::CURVE_STRIDE]
    ]

    logger.debug(
        f"Margin sweep: optimal {optimal.margin:.3f} (pWin {optimal.p_win:.2f}), "
        f"conservative {conservative.margin:.3f}, aggressive {aggressive.margin:.3f}"
    )

    return InferenceResult(
        suggestedMarginPct=round(optimal.margin * 100, 1),
        conservativeMarginPct=round(conservative.margin * 100, 1),
        aggressiveMarginPct=round(aggressive.margin * 100, 1),
        suggestedPrice=round(optimal.price, 2),
        winProbability=optimal.p_win,
        expectedGP=optimal.expected_gp,
        confidence=compute_confidence(model_package),
        optimal=optimal.to_option(),
        conservative=conservative.to_option(),
        aggressive=aggressive.to_option(),
        keyDrivers=key_drivers(deal, model_package),
        expectedGPCurve=curve,
        modelMetrics=ModelMetricsSummary(
            auc=model_package.metrics.auc,
            dealCount=model_package.dealCount,
            trainedAt=model_package.trainedAt,
        ),
    )
