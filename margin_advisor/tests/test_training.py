"""
Tests for the per-customer training pipeline.

Uses the seeded deal history from conftest.py, in which deals quoted under
~18% are mostly won and deals above are mostly lost, so a trained model
should rank real outcomes well and learn a negative margin weight.
"""

from typing import List

import pytest

from margin_advisor.core.config import Settings
from margin_advisor.core.repositories import (
    InMemoryDealRepository,
    InMemoryModelRepository,
    InMemoryPhaseRepository,
)
from margin_advisor.models import (
    CustomerSegment,
    DealStatus,
    HistoricalDeal,
    ShortfallReport,
    TrainingResult,
)
from margin_advisor.services.features import FEATURE_NAMES
from margin_advisor.services.training import (
    MAX_SYNTHETIC_MARGIN,
    MIN_SYNTHETIC_MARGIN,
    ML_PHASE,
    TOP_FEATURES_RETURNED,
    augment_deals,
    margin_shifts,
    train_customer_model,
)

from margin_advisor.tests.conftest import generate_deal_history


# =============================================================================
# DATA GATE
# =============================================================================


class TestShortfall:
    """Insufficient data is reported, not raised."""

    def test_customer_without_deals(
        self,
        model_repository: InMemoryModelRepository,
        settings: Settings,
    ) -> None:
        result = train_customer_model('cust-empty', InMemoryDealRepository(), model_repository, settings=settings)

        assert isinstance(result, ShortfallReport)
        assert result.success is False
        assert result.shortfall == 100
        assert result.reason == 'Need 100 more deals (0 won, 0 lost currently)'
        assert model_repository.get('cust-empty') is None, "No model is stored on shortfall"

    def test_enough_deals_but_one_outcome(
        self,
        make_historical_deal,
        model_repository: InMemoryModelRepository,
        settings: Settings,
    ) -> None:
        repo = InMemoryDealRepository([make_historical_deal(orgId='org-won') for _ in range(120)])
        result = train_customer_model('org-won', repo, model_repository, settings=settings)

        assert isinstance(result, ShortfallReport)
        assert result.wonCount == 120
        assert result.lostCount == 0
        assert result.shortfall == 0
        assert result.reason == 'Need 0 more deals (120 won, 0 lost currently)'


# =============================================================================
# AUGMENTATION
# =============================================================================


class TestAugmentation:
    """Tests for benchmark-sized synthetic counterfactuals."""

    def test_shifts_follow_benchmark_iqr(self, make_historical_deal) -> None:
        won_shift, lost_shift = margin_shifts(
            make_historical_deal(oem='Cisco', customerSegment=CustomerSegment.ENTERPRISE)
        )

        assert won_shift == pytest.approx(0.75 * 7 / 100)
        assert lost_shift == pytest.approx(won_shift / 2)

    def test_won_becomes_lost_at_higher_margin(self, make_historical_deal) -> None:
        deal = make_historical_deal(
            oem='Cisco', customerSegment=CustomerSegment.ENTERPRISE, achievedMargin=0.10
        )
        [synthetic] = augment_deals([deal])

        assert synthetic.status == DealStatus.LOST
        assert synthetic.achievedMargin == pytest.approx(0.1525)
        assert deal.status == DealStatus.WON, "The real deal is left untouched"

    def test_lost_becomes_won_at_lower_margin(self, make_historical_deal) -> None:
        deal = make_historical_deal(
            oem='Cisco', customerSegment=CustomerSegment.ENTERPRISE,
            achievedMargin=0.10, status=DealStatus.LOST,
        )
        [synthetic] = augment_deals([deal])

        assert synthetic.status == DealStatus.WON
        assert synthetic.achievedMargin == pytest.approx(0.07375)

    def test_synthetic_margins_are_clamped(self, make_historical_deal) -> None:
        deals = [
            make_historical_deal(achievedMargin=0.54),
            make_historical_deal(achievedMargin=0.02, status=DealStatus.LOST),
        ]
        high, low = augment_deals(deals)

        assert high.achievedMargin == MAX_SYNTHETIC_MARGIN
        assert low.achievedMargin == MIN_SYNTHETIC_MARGIN


# =============================================================================
# TRAINING
# =============================================================================


@pytest.mark.slow
class TestTrainCustomerModel:
    """End-to-end training on the seeded history."""

    def test_trains_and_stores_package(
        self,
        deal_repository: InMemoryDealRepository,
        model_repository: InMemoryModelRepository,
        phase_repository: InMemoryPhaseRepository,
        settings: Settings,
    ) -> None:
        result = train_customer_model('cust-1', deal_repository, model_repository, phase_repository, settings)

        assert isinstance(result, TrainingResult)
        assert result.success is True
        assert result.dealCount == 160
        assert result.syntheticCount == 160
        assert len(result.topFeatures) == TOP_FEATURES_RETURNED
        assert result.metrics.n == 160, "Evaluation uses real deals only"
        assert result.metrics.auc > 0.7, f"Margin signal should be learnable, got AUC {result.metrics.auc:.3f}"

        package = model_repository.get('cust-1')
        assert package is not None
        assert package.featureNames == FEATURE_NAMES
        assert package.dealCount == 160
        assert package.model.featureCount == len(FEATURE_NAMES)

    def test_learns_negative_margin_weight(
        self,
        deal_repository: InMemoryDealRepository,
        model_repository: InMemoryModelRepository,
        settings: Settings,
    ) -> None:
        train_customer_model('cust-1', deal_repository, model_repository, settings=settings)
        package = model_repository.get('cust-1')
        weights = dict(zip(package.featureNames, package.model.weights))

        assert weights['proposed_margin'] < 0, "Higher margins should lower win probability"

    def test_promotes_phase_on_good_auc(
        self,
        deal_repository: InMemoryDealRepository,
        model_repository: InMemoryModelRepository,
        phase_repository: InMemoryPhaseRepository,
        settings: Settings,
    ) -> None:
        result = train_customer_model('cust-1', deal_repository, model_repository, phase_repository, settings)

        assert result.phase == ML_PHASE
        assert phase_repository.get_phase('cust-1') == ML_PHASE

    def test_never_demotes_phase(
        self,
        deal_repository: InMemoryDealRepository,
        model_repository: InMemoryModelRepository,
        phase_repository: InMemoryPhaseRepository,
        settings: Settings,
    ) -> None:
        phase_repository.set_phase('cust-1', 3)
        result = train_customer_model('cust-1', deal_repository, model_repository, phase_repository, settings)

        assert result.phase == 3

    def test_unreachable_auc_threshold_keeps_phase(
        self,
        deal_repository: InMemoryDealRepository,
        model_repository: InMemoryModelRepository,
        phase_repository: InMemoryPhaseRepository,
        settings: Settings,
    ) -> None:
        strict = settings.model_copy(update={'phase_promotion_auc': 1.01})
        result = train_customer_model('cust-1', deal_repository, model_repository, phase_repository, strict)

        assert result.phase == 1

    def test_collects_deals_across_linked_orgs(
        self,
        model_repository: InMemoryModelRepository,
        settings: Settings,
    ) -> None:
        history: List[HistoricalDeal] = (
            generate_deal_history(70, seed=1, org_id='org-a')
            + generate_deal_history(70, seed=2, org_id='org-b')
            + generate_deal_history(70, seed=3, org_id='org-unlinked')
        )
        repo = InMemoryDealRepository(history)
        repo.link_customer('cust-2', ['org-a', 'org-b'])

        result = train_customer_model('cust-2', repo, model_repository, settings=settings)

        assert isinstance(result, TrainingResult)
        assert result.dealCount == 140

    def test_retraining_replaces_package(
        self,
        deal_repository: InMemoryDealRepository,
        model_repository: InMemoryModelRepository,
        settings: Settings,
    ) -> None:
        train_customer_model('cust-1', deal_repository, model_repository, settings=settings)
        first = model_repository.get('cust-1')

        deal_repository.add_deal(generate_deal_history(1, seed=99)[0], org_id='org-a')
        train_customer_model('cust-1', deal_repository, model_repository, settings=settings)
        second = model_repository.get('cust-1')

        assert first.dealCount == 160
        assert second.dealCount == 161
