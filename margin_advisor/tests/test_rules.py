"""
Tests for the rule-based scorer and the recommendation entry point.

The external model service is never contacted: compute_recommendation()
receives a MagicMock session whose post() returns canned responses or
raises transport errors, which exercises the fallback to the rule scorer.

Dependencies:
- pytest
- requests (exception types and Session)
"""

from typing import Any, Dict, Optional
from unittest.mock import MagicMock

import pytest
import requests

from margin_advisor.core.config import Settings
from margin_advisor.models import (
    BomStats,
    CompetitorCount,
    CompetitorProfile,
    CustomerSegment,
    DealContext,
    DealRegType,
    Level,
    OemProfile,
    ProductCategory,
    RecommendationSource,
    RelationshipStrength,
)
from margin_advisor.services.knn import NeighborSummary
from margin_advisor.services.rules import (
    CRITICAL_POLICY_FLOOR,
    DEFAULT_POLICY_FLOOR,
    MARGIN_CEILING,
    MAX_DRIVERS,
    compute_recommendation,
    neighbor_alpha,
    policy_floor_for,
    price_for_margin,
    rule_based_recommendation,
)

MODEL_URL = 'http://model.internal/predict'


# =============================================================================
# HELPERS
# =============================================================================


def make_response(payload: Any = None, status_code: int = 200) -> MagicMock:
    """Fake requests.Response with ok/status_code/json()."""
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.json.return_value = payload
    return response


def make_session(response: Optional[MagicMock] = None, error: Optional[Exception] = None) -> MagicMock:
    session = MagicMock(spec=requests.Session)
    if error is not None:
        session.post.side_effect = error
    else:
        session.post.return_value = response
    return session


@pytest.fixture
def model_settings() -> Settings:
    return Settings(model_url=MODEL_URL, gemini_api_key=None, training_seed=7)


@pytest.fixture
def smb_deal() -> DealContext:
    """SMB deal whose drivers sum to exactly 24% (base 20 + value-add 3 + relationship 1)."""
    return DealContext(oemCost=50_000, customerSegment=CustomerSegment.SMB)


@pytest.fixture
def squeezed_deal() -> DealContext:
    """Enterprise, 3+ competitors, unregistered, with every negative signal."""
    return DealContext(
        oemCost=2_000_000,
        oem='Microsoft',
        customerSegment=CustomerSegment.ENTERPRISE,
        customerIndustry='Retail',
        competitors=CompetitorCount.THREE_PLUS,
        dealRegType=DealRegType.NOT_REGISTERED,
        valueAdd=Level.LOW,
        relationshipStrength=RelationshipStrength.NEW,
        customerPriceSensitivity=5,
        customerLoyalty=1,
        dealUrgency=1,
        solutionDifferentiation=1,
        varStrategicImportance=Level.HIGH,
        customerTechSophistication=Level.HIGH,
        isNewLogo=True,
        displacementDeal=True,
    )


@pytest.fixture
def premium_deal() -> DealContext:
    """SMB deal with every positive signal; the raw sum exceeds the ceiling."""
    return DealContext(
        oemCost=20_000,
        oem='Palo Alto',
        customerSegment=CustomerSegment.SMB,
        customerIndustry='Financial Services',
        productCategory=ProductCategory.MANAGED_SERVICES,
        competitors=CompetitorCount.NONE,
        dealRegType=DealRegType.PREMIUM_HUNTING,
        valueAdd=Level.HIGH,
        relationshipStrength=RelationshipStrength.STRATEGIC,
        solutionComplexity=Level.HIGH,
        customerTechSophistication=Level.LOW,
        customerPriceSensitivity=1,
        customerLoyalty=5,
        dealUrgency=5,
        solutionDifferentiation=5,
        servicesAttached=True,
        quarterEnd=True,
        competitorProfiles=[CompetitorProfile(name='Boutique', marginAggression=5)],
    )


# =============================================================================
# GUARDRAILS
# =============================================================================


class TestGuardrails:
    """Tests for the policy floor, ceiling and blend weight helpers."""

    def test_critical_floor_for_contested_enterprise(self, squeezed_deal: DealContext) -> None:
        assert policy_floor_for(squeezed_deal) == CRITICAL_POLICY_FLOOR

    def test_default_floor_when_registered(self, squeezed_deal: DealContext) -> None:
        registered = squeezed_deal.model_copy(update={'dealRegType': DealRegType.STANDARD_APPROVED})

        assert policy_floor_for(registered) == DEFAULT_POLICY_FLOOR

    def test_default_floor_when_segment_absent(self) -> None:
        deal = DealContext(oemCost=1_000, competitors=CompetitorCount.THREE_PLUS)

        assert policy_floor_for(deal) == DEFAULT_POLICY_FLOOR

    @pytest.mark.parametrize("count,expected", [(0, 0.25), (10, 0.5), (14, 0.6), (40, 0.6)])
    def test_neighbor_alpha(self, count: int, expected: float) -> None:
        assert neighbor_alpha(count) == pytest.approx(expected)

    def test_price_for_margin_is_margin_on_price(self) -> None:
        assert price_for_margin(80.0, 0.2) == pytest.approx(100.0)


# =============================================================================
# RULE SCORER
# =============================================================================


class TestRuleBasedRecommendation:
    """Tests for driver accumulation, clamping and the neighbour blend."""

    def test_rules_only_result(self, smb_deal: DealContext) -> None:
        rec = rule_based_recommendation(smb_deal)

        assert rec.suggestedMarginPct == pytest.approx(24.0)
        assert rec.suggestedPrice == pytest.approx(65_789.47, abs=0.01)
        assert rec.confidence == 0.4
        assert rec.method == 'Advanced rules + kNN (Rules only)'
        assert rec.source == RecommendationSource.RULES
        assert rec.neighborCount == 0
        assert rec.winProbability == pytest.approx(0.52)

    def test_drivers_are_ranked_by_magnitude(self, smb_deal: DealContext) -> None:
        names = [d.name for d in rule_based_recommendation(smb_deal).drivers]

        assert names[:3] == ['SMB base', 'Medium VAR value-add', 'Good relationship']
        assert set(names[3:]) == {'No registration benefit', '1 competitor'}

    def test_missing_segment_uses_enterprise_base(self) -> None:
        rec = rule_based_recommendation(DealContext(oemCost=50_000))

        assert rec.drivers[0].name == 'Enterprise base'
        assert rec.drivers[0].value == 0.14

    def test_clamped_to_policy_floor(self, squeezed_deal: DealContext) -> None:
        rec = rule_based_recommendation(squeezed_deal)

        assert rec.policyFloor == CRITICAL_POLICY_FLOOR
        assert rec.suggestedMarginPct == pytest.approx(CRITICAL_POLICY_FLOOR * 100)

    def test_clamped_to_ceiling(self, premium_deal: DealContext) -> None:
        rec = rule_based_recommendation(premium_deal)

        assert rec.suggestedMarginPct == pytest.approx(MARGIN_CEILING * 100)
        assert len(rec.drivers) == MAX_DRIVERS
        magnitudes = [abs(d.value) for d in rec.drivers]
        assert magnitudes == sorted(magnitudes, reverse=True)

    def test_oem_profile_overrides_defaults(self) -> None:
        deal = DealContext(
            oemCost=50_000,
            oem='Cisco',
            customerSegment=CustomerSegment.SMB,
            dealRegType=DealRegType.STANDARD_APPROVED,
            oemProfile=OemProfile(baseMargin=23, dealRegBoost=8),
        )
        drivers = {d.name: d.value for d in rule_based_recommendation(deal).drivers}

        assert drivers['Standard/Teaming registration'] == pytest.approx(0.04), "Half the premium boost"
        assert drivers['Cisco OEM margin profile'] == pytest.approx(0.03), "23% vs. SMB expectation of 20%"

    def test_neighbour_blend(self, smb_deal: DealContext) -> None:
        neighbors = NeighborSummary(weightedAvg=0.10, count=10)
        rec = rule_based_recommendation(smb_deal, neighbor_data=neighbors)

        # alpha 0.5: 0.5 * 0.10 + 0.5 * 0.24
        assert rec.suggestedMarginPct == pytest.approx(17.0)
        assert rec.method == 'Advanced rules + kNN (Rules 50% + kNN 50%)'
        assert rec.neighborCount == 10
        assert rec.confidence == pytest.approx(0.45), "Neighbours disagree by more than 12pp"

    def test_price_losses_override_high_wins(self, smb_deal: DealContext) -> None:
        neighbors = NeighborSummary(weightedAvg=0.10, count=10, lossOnPrice=2, highWins=3)
        rec = rule_based_recommendation(smb_deal, neighbor_data=neighbors)

        assert rec.suggestedMarginPct == pytest.approx(14.0)

    def test_high_wins_lift_margin(self, smb_deal: DealContext) -> None:
        neighbors = NeighborSummary(weightedAvg=0.10, count=10, highWins=2)
        rec = rule_based_recommendation(smb_deal, neighbor_data=neighbors)

        assert rec.suggestedMarginPct == pytest.approx(19.0)

    def test_agreeing_neighbours_raise_confidence(self, smb_deal: DealContext) -> None:
        neighbors = NeighborSummary(weightedAvg=0.24, count=12)
        rec = rule_based_recommendation(smb_deal, neighbor_data=neighbors)

        assert rec.confidence == pytest.approx(0.73)
        assert rec.suggestedMarginPct == pytest.approx(24.0)

    def test_searches_history_when_no_summary_given(self, make_deal, deal_history) -> None:
        rec = rule_based_recommendation(make_deal(), deals=deal_history)

        assert rec.neighborCount == 12
        assert 'kNN' in rec.method and 'Rules only' not in rec.method


# =============================================================================
# RECOMMENDATION ENTRY POINT
# =============================================================================


class TestComputeRecommendation:
    """Tests for the external model call and its fallback."""

    def test_rules_when_no_model_configured(self, smb_deal: DealContext, settings: Settings) -> None:
        session = make_session(make_response({}))
        rec = compute_recommendation(smb_deal, settings=settings, session=session)

        assert rec.source == RecommendationSource.RULES
        session.post.assert_not_called()

    def test_external_model_success(self, smb_deal: DealContext, model_settings: Settings) -> None:
        payload: Dict[str, Any] = {
            'marginPct': 0.22,
            'drivers': [{'name': 'Model signal', 'value': 0.02}],
            'confidence': 0.7,
        }
        session = make_session(make_response(payload))

        rec = compute_recommendation(smb_deal, settings=model_settings, session=session)

        assert rec.source == RecommendationSource.EXTERNAL_MODEL
        assert rec.method == 'ML model'
        assert rec.suggestedMarginPct == pytest.approx(22.0)
        assert rec.confidence == 0.7
        assert rec.drivers[0].name == 'Model signal'
        assert rec.suggestedPrice == pytest.approx(50_000 / 0.78, abs=0.01)

        args, kwargs = session.post.call_args
        assert args[0] == MODEL_URL
        assert kwargs['timeout'] == model_settings.model_timeout_seconds
        assert set(kwargs['json']) == {'input', 'neighbors'}

    def test_external_margin_is_clamped(self, smb_deal: DealContext, model_settings: Settings) -> None:
        session = make_session(make_response({'marginPct': 0.9}))
        rec = compute_recommendation(smb_deal, settings=model_settings, session=session)

        assert rec.suggestedMarginPct == pytest.approx(MARGIN_CEILING * 100)
        assert rec.confidence == 0.5, "Missing confidence defaults to 0.5"

    def test_neighbours_and_bom_stats_are_sent(
        self,
        make_deal,
        deal_history,
        model_settings: Settings,
    ) -> None:
        session = make_session(make_response({'marginPct': 0.18}))
        bom = BomStats(lineCount=3, avgMargin=0.2, manual=True)

        rec = compute_recommendation(make_deal(), deal_history, bom_stats=bom, settings=model_settings, session=session)

        sent = session.post.call_args.kwargs['json']
        assert len(sent['neighbors']) == model_settings.knn_k
        assert sent['input']['bomLineCount'] == 3
        assert sent['input']['hasManualBom'] is True
        assert rec.neighborCount == model_settings.knn_k

    @pytest.mark.parametrize("response,error", [
        (make_response({'error': 'boom'}, status_code=500), None),
        (make_response(['not', 'an', 'object']), None),
        (make_response({'marginPct': 'abc'}), None),
        (make_response({'marginPct': 0.2, 'drivers': [{'label': 'bad'}]}), None),
        (None, requests.Timeout('timed out')),
        (None, requests.ConnectionError('refused')),
    ])
    def test_falls_back_to_rules(
        self,
        smb_deal: DealContext,
        model_settings: Settings,
        response,
        error,
    ) -> None:
        session = make_session(response, error)
        rec = compute_recommendation(smb_deal, settings=model_settings, session=session)

        assert rec.source == RecommendationSource.RULES
        assert rec.suggestedMarginPct == pytest.approx(24.0)
        session.post.assert_called_once()

    def test_fallback_reuses_neighbours(self, make_deal, deal_history, model_settings: Settings) -> None:
        session = make_session(error=requests.Timeout('timed out'))
        rec = compute_recommendation(make_deal(), deal_history, settings=model_settings, session=session)

        assert rec.source == RecommendationSource.RULES
        assert rec.neighborCount == model_settings.knn_k

    def test_own_session_is_closed(self, smb_deal: DealContext, model_settings: Settings, monkeypatch) -> None:
        """Without an injected session, each call opens one and closes it afterwards."""
        session = make_session(make_response({'marginPct': 0.2}))
        session_factory = MagicMock()
        session_factory.return_value.__enter__.return_value = session
        monkeypatch.setattr(requests, 'Session', session_factory)

        rec = compute_recommendation(smb_deal, settings=model_settings)

        assert rec.source == RecommendationSource.EXTERNAL_MODEL
        session.post.assert_called_once()
        session_factory.return_value.__exit__.assert_called_once()

    def test_injected_session_is_left_open(self, smb_deal: DealContext, model_settings: Settings) -> None:
        session = make_session(make_response({'marginPct': 0.2}))
        compute_recommendation(smb_deal, settings=model_settings, session=session)

        session.close.assert_not_called()

    def test_bare_deal_matches_its_defaulted_copy(
        self, smb_deal: DealContext, deal_history, settings: Settings
    ) -> None:
        """Absent attributes are scored as their defaults by k-NN and the rules alike."""
        bare = compute_recommendation(smb_deal, deal_history, settings=settings)
        defaulted = compute_recommendation(smb_deal.with_defaults(), deal_history, settings=settings)

        assert bare.model_dump() == defaulted.model_dump()
        assert bare.neighborCount == settings.knn_k

    def test_bare_deal_sends_defaulted_input(self, smb_deal: DealContext, model_settings: Settings) -> None:
        session = make_session(make_response({'marginPct': 0.2}))
        compute_recommendation(smb_deal, settings=model_settings, session=session)

        sent = session.post.call_args.kwargs['json']['input']
        assert sent['relationshipStrength'] == 'Good'
        assert sent['valueAdd'] == 'Medium'
        assert sent['servicesAttached'] is False
        assert sent['customerSegment'] == 'SMB'

    def test_rule_search_uses_defaulted_deal(self, smb_deal: DealContext, deal_history) -> None:
        bare = rule_based_recommendation(smb_deal, deals=deal_history)
        defaulted = rule_based_recommendation(smb_deal.with_defaults(), deals=deal_history)

        assert bare.suggestedMarginPct == defaulted.suggestedMarginPct
        assert bare.confidence == defaulted.confidence
