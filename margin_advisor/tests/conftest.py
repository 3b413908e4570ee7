"""
Pytest Configuration and Shared Fixtures for Margin Advisor Tests.

This module provides fixtures and configuration for all tests, supporting:
- Deal factories with realistic defaults (DealContext / HistoricalDeal)
- Seeded synthetic deal history with a learnable price signal
- In-memory repositories and TTL caches
- Settings overrides with every external service disabled
- A FastAPI TestClient bound to a fresh application state

Dependencies:
- pytest
- numpy
- httpx (FastAPI TestClient)
"""

from datetime import date, timedelta
from typing import Any, Callable, Dict, Generator, List

import numpy as np
import pytest

from margin_advisor.core.cache import TTLCache
from margin_advisor.core.config import Settings
from margin_advisor.core.repositories import (
    CachedDealReader,
    InMemoryDealRepository,
    InMemoryModelRepository,
    InMemoryPhaseRepository,
)
from margin_advisor.models import (
    CompetitorCount,
    CustomerSegment,
    DealContext,
    DealRegType,
    DealStatus,
    HistoricalDeal,
    Level,
    ProductCategory,
    RelationshipStrength,
)


# ============================================================
# PYTEST HOOKS
# ============================================================

def pytest_configure(config) -> None:
    """
    Configure custom pytest markers for test organization.

    Custom markers defined:
    - slow: Marks tests as slow (deselect with -m "not slow")
    - integration: Marks tests that exercise the HTTP layer end to end
    """
    config.addinivalue_line(
        'markers',
        'slow: marks tests as slow (deselect with -m "not slow")'
    )
    config.addinivalue_line(
        'markers',
        'integration: marks tests that exercise the HTTP layer end to end'
    )


# ============================================================
# SETTINGS FIXTURES
# ============================================================

@pytest.fixture
def settings() -> Settings:
    """
    Settings with every external service disabled and a fixed training seed.

    Values are passed explicitly so a developer's .env cannot leak in.
    """
    return Settings(
        model_url=None,
        gemini_api_key=None,
        narrative_backoff_seconds=0.0,
        training_seed=7,
    )


# ============================================================
# DEAL FACTORIES
# ============================================================

@pytest.fixture
def make_deal() -> Callable[..., DealContext]:
    """
    Factory for a mid-market Cisco hardware deal; keyword arguments override.

    Example:
        deal = make_deal(oemCost=50_000, competitors=CompetitorCount.THREE_PLUS)
    """
    def _make(**overrides: Any) -> DealContext:
        fields: Dict[str, Any] = {
            'oemCost': 125_000.0,
            'oem': 'Cisco',
            'productCategory': ProductCategory.HARDWARE,
            'customerSegment': CustomerSegment.MID_MARKET,
            'customerIndustry': 'Financial Services',
            'relationshipStrength': RelationshipStrength.GOOD,
            'dealRegType': DealRegType.STANDARD_APPROVED,
            'competitors': CompetitorCount.TWO,
            'valueAdd': Level.MEDIUM,
        }
        fields.update(overrides)
        return DealContext(**fields)
    return _make


@pytest.fixture
def make_historical_deal() -> Callable[..., HistoricalDeal]:
    """Factory for a Won historical deal closed 90 days ago; keyword arguments override."""
    counter = {'n': 0}

    def _make(**overrides: Any) -> HistoricalDeal:
        counter['n'] += 1
        fields: Dict[str, Any] = {
            'id': f"deal-{counter['n']}",
            'orgId': 'org-a',
            'oemCost': 100_000.0,
            'oem': 'Cisco',
            'productCategory': ProductCategory.HARDWARE,
            'customerSegment': CustomerSegment.MID_MARKET,
            'customerIndustry': 'Financial Services',
            'relationshipStrength': RelationshipStrength.GOOD,
            'dealRegType': DealRegType.STANDARD_APPROVED,
            'competitors': CompetitorCount.TWO,
            'valueAdd': Level.MEDIUM,
            'achievedMargin': 0.16,
            'status': DealStatus.WON,
            'closeDate': (date.today() - timedelta(days=90)).isoformat(),
        }
        fields.update(overrides)
        return HistoricalDeal(**fields)
    return _make


def generate_deal_history(
    n: int,
    seed: int = 42,
    org_id: str = 'org-a',
) -> List[HistoricalDeal]:
    """
    Generate closed deals whose outcome depends mainly on margin.

    Deals quoted below ~18% are won 90% of the time; deals above are lost
    90% of the time, so a margin-aware model should reach a high AUC.

    Args:
        n: Number of deals.
        seed: numpy Generator seed for reproducibility.
        org_id: Organisation id stamped on every deal.

    Returns:
        List of HistoricalDeal with both outcomes represented.
    """
    rng = np.random.default_rng(seed)
    segments = list(CustomerSegment)
    categories = list(ProductCategory)
    competitors = list(CompetitorCount)
    oems = ['Cisco', 'Dell', 'HPE', 'Palo Alto', 'NetApp']
    deals: List[HistoricalDeal] = []

    for i in range(n):
        margin = float(rng.uniform(0.05, 0.33))
        below_knee = margin < 0.18
        won = rng.random() < (0.9 if below_knee else 0.1)
        deals.append(HistoricalDeal(
            id=f"{org_id}-{i}",
            orgId=org_id,
            oemCost=float(rng.uniform(10_000, 900_000)),
            oem=oems[int(rng.integers(len(oems)))],
            productCategory=categories[int(rng.integers(len(categories)))],
            customerSegment=segments[int(rng.integers(len(segments)))],
            competitors=competitors[int(rng.integers(len(competitors)))],
            customerPriceSensitivity=int(rng.integers(1, 6)),
            achievedMargin=round(margin, 4),
            status=DealStatus.WON if won else DealStatus.LOST,
            lossReason=None if won else 'Lost on price',
            closeDate=(date.today() - timedelta(days=int(rng.integers(0, 900)))).isoformat(),
        ))
    return deals


@pytest.fixture
def deal_history() -> List[HistoricalDeal]:
    """160 seeded closed deals for org-a."""
    return generate_deal_history(160)


# ============================================================
# REPOSITORY FIXTURES
# ============================================================

@pytest.fixture
def deal_repository(deal_history: List[HistoricalDeal]) -> InMemoryDealRepository:
    """Deal repository holding the seeded history, with cust-1 linked to org-a."""
    repo = InMemoryDealRepository(deal_history)
    repo.link_customer('cust-1', ['org-a'])
    return repo


@pytest.fixture
def model_repository() -> InMemoryModelRepository:
    return InMemoryModelRepository()


@pytest.fixture
def phase_repository() -> InMemoryPhaseRepository:
    return InMemoryPhaseRepository()


class FakeClock:
    """Manually advanced monotonic clock for TTL tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def deal_reader(deal_repository: InMemoryDealRepository, fake_clock: FakeClock) -> CachedDealReader:
    return CachedDealReader(deal_repository, TTLCache(300, clock=fake_clock))


# ============================================================
# API FIXTURES
# ============================================================

@pytest.fixture
def client(settings: Settings) -> Generator:
    """
    TestClient over a fresh application state.

    The settings dependency is overridden so no external service is called.
    """
    from fastapi.testclient import TestClient

    from margin_advisor.core.dependencies import build_app_state, get_settings_dependency
    from margin_advisor.main import app

    app.dependency_overrides[get_settings_dependency] = lambda: settings
    with TestClient(app) as test_client:
        app.state.engine = build_app_state(settings)
        yield test_client
    app.dependency_overrides.clear()
