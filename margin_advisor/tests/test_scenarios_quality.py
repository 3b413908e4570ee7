"""
Tests for scenario comparison, prediction quality and the deal score.

Reference deal (make_deal): $125K MidMarket, 2 competitors, standard
registration, good relationship. Its heuristic win probability is 54% at
15% margin and 50% at 20% margin.
"""

import pytest

from margin_advisor.models import (
    CompetitorProfile,
    DealContext,
    OemProfile,
    PredictionQuality,
    QualityGrade,
)
from margin_advisor.services.quality import (
    assess_prediction_quality,
    compute_deal_score,
    grade_for,
)
from margin_advisor.services.scenarios import build_scenario, compare_with_plan


# =============================================================================
# SCENARIOS
# =============================================================================


class TestScenarios:
    """Tests for planned vs. recommended scenario math."""

    def test_build_scenario(self, make_deal) -> None:
        scenario = build_scenario(make_deal(), 20.0)

        assert scenario.price == pytest.approx(156_250.0)
        assert scenario.grossProfit == pytest.approx(31_250.0)
        assert scenario.winProbability == 50
        assert scenario.riskAdjusted == pytest.approx(15_625.0)

    def test_comparison_deltas(self, make_deal) -> None:
        comparison = compare_with_plan(make_deal(), 15.0, 20.0)

        assert comparison is not None
        assert comparison.planned.price == pytest.approx(147_058.82, abs=0.01)
        assert comparison.planned.winProbability == 54
        assert comparison.planned.riskAdjusted == pytest.approx(11_911.76, abs=0.01)
        assert comparison.delta.grossProfit == pytest.approx(9_191.18, abs=0.01)
        assert comparison.delta.riskAdjusted == pytest.approx(3_713.24, abs=0.01)

    def test_no_plan_means_no_comparison(self, make_deal) -> None:
        assert compare_with_plan(make_deal(), None, 18.0) is None


# =============================================================================
# PREDICTION QUALITY
# =============================================================================


class TestPredictionQuality:
    """Tests for the completeness score."""

    def test_sparse_deal(self, make_deal) -> None:
        quality = assess_prediction_quality(make_deal(), 0.4)

        # 22 baseline + 5 OEM + 10 confidence
        assert quality.score == 37
        assert quality.grade == QualityGrade.POOR
        assert quality.missingFields == [
            'Price sensitivity (1-5)',
            'Deal urgency (1-5)',
            'Customer loyalty (1-5)',
            'Solution differentiation (1-5)',
            'New logo flag',
        ]

    def test_complete_deal(self, make_deal) -> None:
        deal = make_deal(
            customerPriceSensitivity=3,
            dealUrgency=4,
            customerLoyalty=2,
            solutionDifferentiation=5,
            isNewLogo=False,
            servicesAttached=True,
            quarterEnd=False,
            displacementDeal=False,
            oemProfile=OemProfile(baseMargin=18),
            competitorNames=['Acme IT'],
            competitorProfiles=[CompetitorProfile(name='Acme IT', priceAggression=4)],
        )
        quality = assess_prediction_quality(deal, 0.8)

        # 22 + 5 OEM + 21 optional fields + 12 enrichment + 20 confidence
        assert quality.score == 80
        assert quality.grade == QualityGrade.EXCELLENT
        assert quality.missingFields == []

    def test_false_flags_count_as_provided(self, make_deal) -> None:
        unset = assess_prediction_quality(make_deal(), 0.4)
        explicit_false = assess_prediction_quality(make_deal(isNewLogo=False), 0.4)

        assert explicit_false.score == unset.score + 2

    def test_missing_oem_is_reported_first(self) -> None:
        quality = assess_prediction_quality(DealContext(oemCost=10_000, oem='  '), None)

        assert quality.missingFields[0] == 'OEM vendor'
        assert len(quality.missingFields) == 5

    @pytest.mark.parametrize("confidence", [None, 0.0])
    def test_falsy_confidence_counts_as_default(self, make_deal, confidence) -> None:
        assert assess_prediction_quality(make_deal(), confidence).score == 37

    @pytest.mark.parametrize("score,grade", [
        (80, QualityGrade.EXCELLENT),
        (79, QualityGrade.GOOD),
        (60, QualityGrade.GOOD),
        (59, QualityGrade.FAIR),
        (40, QualityGrade.FAIR),
        (39, QualityGrade.POOR),
    ])
    def test_grade_thresholds(self, score: int, grade: QualityGrade) -> None:
        assert grade_for(score) == grade


# =============================================================================
# DEAL SCORE
# =============================================================================


class TestDealScore:
    """Tests for the four-factor deal score."""

    def test_aligned_plan(self) -> None:
        quality = PredictionQuality(score=70, grade=QualityGrade.GOOD, missingFields=[])
        score = compute_deal_score(18.0, 18.0, 0.6, 0.5, quality)

        # 40 + 15 + 14 + 7.5 = 76.5
        assert score.dealScore == 77
        assert score.scoreFactors.marginAlignment == 40
        assert score.scoreFactors.winProbability == 15
        assert score.scoreFactors.dataQuality == 14
        assert score.scoreFactors.confidence == 8

    def test_defaults_without_inputs(self) -> None:
        score = compute_deal_score(None, None, None, None)

        # 20 + 12.5 + 10 + 6 = 48.5
        assert score.dealScore == 49
        assert score.scoreFactors.marginAlignment == 20

    def test_alignment_decays_to_zero_at_ten_points(self) -> None:
        halfway = compute_deal_score(13.0, 18.0, 0.5, 0.4)
        far = compute_deal_score(5.0, 18.0, 0.5, 0.4)

        assert halfway.scoreFactors.marginAlignment == 20
        assert far.scoreFactors.marginAlignment == 0

    def test_factors_are_clamped(self) -> None:
        score = compute_deal_score(18.0, 18.0, 2.0, 3.0)

        assert score.scoreFactors.winProbability == 25
        assert score.scoreFactors.confidence == 15
        assert score.dealScore <= 100
