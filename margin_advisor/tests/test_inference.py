"""
Tests for the margin sweep inference service.

Most tests use a hand-built model package whose only non-zero weight is on
proposed_margin, so pWin(m) = sigmoid(-30 * (m - 0.20)) and every operating
point can be derived by hand:

    conservative (pWin >= 0.70): highest grid margin 17.0%
    aggressive   (pWin >= 0.45): highest grid margin 20.5%
"""

from datetime import datetime, timezone

import pytest

from margin_advisor.models import (
    CustomerSegment,
    DealContext,
    EvaluationMetrics,
    ModelPackage,
    NormStats,
    RecommendationSource,
    TrainedModel,
)
from margin_advisor.services.features import FEATURE_NAMES, get_feature_count
from margin_advisor.services.inference import (
    SWEEP_POINTS,
    compute_confidence,
    key_drivers,
    recommend_margin,
    sweep_margins,
)
from margin_advisor.services.logistic_regression import get_feature_importance


def build_package(
    margin_weight: float = -3.0,
    bias: float = 0.0,
    auc: float = 0.8,
    deal_count: int = 250,
) -> ModelPackage:
    """Package with a single margin-driven weight and fixed metrics."""
    weights = [0.0] * get_feature_count()
    weights[FEATURE_NAMES.index('proposed_margin')] = margin_weight
    model = TrainedModel(weights=weights, bias=bias, featureCount=get_feature_count())
    return ModelPackage(
        model=model,
        normStats=NormStats(means={'proposed_margin': 0.20}, stds={'proposed_margin': 0.10}),
        featureNames=list(FEATURE_NAMES),
        metrics=EvaluationMetrics(auc=auc, logLoss=0.5, accuracy=0.75, n=deal_count),
        importance=get_feature_importance(model, FEATURE_NAMES),
        dealCount=deal_count,
        trainedAt=datetime.now(timezone.utc).isoformat(),
    )


@pytest.fixture
def package() -> ModelPackage:
    return build_package()


class TestSweep:
    """Tests for the candidate margin grid."""

    def test_grid_spans_5_to_35_percent(self, make_deal, package: ModelPackage) -> None:
        points = sweep_margins(make_deal(), package)

        assert len(points) == SWEEP_POINTS == 61
        assert points[0].margin == pytest.approx(0.05)
        assert points[-1].margin == pytest.approx(0.35)

    def test_expected_gp_is_profit_times_win(self, make_deal, package: ModelPackage) -> None:
        deal = make_deal(oemCost=100_000)
        point = sweep_margins(deal, package)[30]

        assert point.price == pytest.approx(100_000 / (1 - point.margin))
        assert point.expected_gp == pytest.approx((point.price - 100_000) * point.p_win)

    def test_win_probability_falls_with_margin(self, make_deal, package: ModelPackage) -> None:
        wins = [pt.p_win for pt in sweep_margins(make_deal(), package)]

        assert wins == sorted(wins, reverse=True)


class TestRecommendMargin:
    """Tests for the three operating points and the result payload."""

    def test_operating_points(self, make_deal, package: ModelPackage) -> None:
        result = recommend_margin(make_deal(), package)

        assert result.conservativeMarginPct == 17.0
        assert result.aggressiveMarginPct == 20.5
        assert result.source == RecommendationSource.ML_MODEL
        assert result.conservative.winProbability >= 0.70
        assert result.aggressive.winProbability >= 0.45

    def test_optimal_maximizes_expected_gp(self, make_deal, package: ModelPackage) -> None:
        deal = make_deal()
        result = recommend_margin(deal, package)
        best = max(pt.expected_gp for pt in sweep_margins(deal, package))

        assert result.expectedGP == pytest.approx(best)
        assert result.optimal.marginPct == result.suggestedMarginPct
        assert result.suggestedPrice == pytest.approx(deal.oemCost / (1 - result.suggestedMarginPct / 100), abs=0.01)

    def test_conservative_falls_back_to_highest_win(self, make_deal) -> None:
        """A pessimistic model never reaches 70%, so the best-pWin point is used."""
        pessimistic = build_package(margin_weight=-3.0, bias=-5.0)
        result = recommend_margin(make_deal(), pessimistic)

        assert result.conservativeMarginPct == 5.0

    def test_aggressive_falls_back_to_optimal(self, make_deal) -> None:
        pessimistic = build_package(margin_weight=-3.0, bias=-5.0)
        result = recommend_margin(make_deal(), pessimistic)

        assert result.aggressiveMarginPct == result.suggestedMarginPct

    def test_curve_samples_every_third_point(self, make_deal, package: ModelPackage) -> None:
        curve = recommend_margin(make_deal(), package).expectedGPCurve

        assert len(curve) == 21
        assert [pt.marginPct for pt in curve[:3]] == [5.0, 6.5, 8.0]
        assert all(isinstance(pt.winProbabilityPct, int) for pt in curve)

    def test_model_metrics_summary(self, make_deal, package: ModelPackage) -> None:
        result = recommend_margin(make_deal(), package)

        assert result.modelMetrics.auc == 0.8
        assert result.modelMetrics.dealCount == 250
        assert result.confidence == pytest.approx(0.3)

    def test_bare_deal_matches_its_defaulted_copy(self) -> None:
        """Absent relationship and complexity are encoded as their defaults (Good, Medium)."""
        base = build_package()
        weights = list(base.model.weights)
        weights[FEATURE_NAMES.index('relationship_Good')] = 0.8
        weights[FEATURE_NAMES.index('complexity_Medium')] = 0.6
        model = base.model.model_copy(update={'weights': weights})
        pkg = base.model_copy(update={
            'model': model,
            'importance': get_feature_importance(model, FEATURE_NAMES),
        })
        bare = DealContext(oemCost=50_000, customerSegment=CustomerSegment.SMB)

        result = recommend_margin(bare, pkg)

        assert result.model_dump() == recommend_margin(bare.with_defaults(), pkg).model_dump()
        drivers = {d.feature: d for d in result.keyDrivers}
        assert drivers['relationship_Good'].contribution == pytest.approx(0.8)
        assert drivers['complexity_Medium'].contribution == pytest.approx(0.6)

    def test_mismatched_package_raises(self, make_deal, package: ModelPackage) -> None:
        broken = package.model_copy(update={
            'model': TrainedModel(weights=[0.0, 0.0], bias=0.0, featureCount=2),
        })

        with pytest.raises(ValueError, match="Feature length mismatch"):
            recommend_margin(make_deal(), broken)


class TestConfidence:
    """confidence = clamp((AUC - 0.5) * 2 * min(1, n / 500), 0.1, 0.95)"""

    @pytest.mark.parametrize("auc,deals,expected", [
        (0.8, 250, 0.3),
        (0.9, 1000, 0.8),
        (1.0, 500, 0.95),
        (0.5, 500, 0.1),
        (0.4, 500, 0.1),
    ])
    def test_confidence_formula(self, auc: float, deals: int, expected: float) -> None:
        assert compute_confidence(build_package(auc=auc, deal_count=deals)) == pytest.approx(expected)


class TestKeyDrivers:
    """Tests for per-deal feature contributions."""

    def test_top_five_drivers(self, make_deal, package: ModelPackage) -> None:
        drivers = key_drivers(make_deal(), package)

        assert len(drivers) == 5
        assert drivers[0].feature == 'proposed_margin'
        assert drivers[0].displayName == 'Proposed Margin'

    def test_sentence_direction(self, make_deal) -> None:
        weights_pkg = build_package()
        weights = list(weights_pkg.model.weights)
        weights[FEATURE_NAMES.index('segment_MidMarket')] = 0.4
        weights[FEATURE_NAMES.index('quarter_end')] = -0.2
        model = weights_pkg.model.model_copy(update={'weights': weights})
        pkg = weights_pkg.model_copy(update={
            'model': model,
            'importance': get_feature_importance(model, FEATURE_NAMES),
        })

        drivers = {d.feature: d for d in key_drivers(make_deal(quarterEnd=True), pkg)}

        assert drivers['segment_MidMarket'].sentence == (
            'Mid-Market Segment is helping win probability (+40.0pp)'
        )
        assert drivers['quarter_end'].sentence == 'Quarter End is reducing win probability (-20.0pp)'
        assert drivers['quarter_end'].contribution == pytest.approx(-0.2)
