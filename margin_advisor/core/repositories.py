"""
Repository layer for historical deals, model packages and recommendation phases.

The engine reads closed deals and model packages as plain data and writes
model packages and phase transitions back. These repositories define that
boundary. The in-memory implementations back the API process and the tests;
a durable store only needs to honour the same protocol.

Key Guarantees:
- Model packages are replaced wholesale. A reader observes either the previous
  package or the new one, never a partially written package.
- Historical-deal reads go through a TTL cache that is invalidated for the
  written organisation (and the cross-organisation 'global' entry) immediately
  after a write.
- Customer phases are integers 1-3; customers default to phase 1.

Usage:
    deals = InMemoryDealRepository()
    deals.link_customer("cust-1", ["org-a", "org-b"])
    deals.add_deal(HistoricalDeal(...), org_id="org-a")

    reader = CachedDealReader(deals, TTLCache(ttl_seconds=300))
    history = reader.get_deals("org-a")
"""

import logging
import threading
from typing import Dict, List, Optional, Protocol, Sequence

from margin_advisor.core.cache import TTLCache
from margin_advisor.models.schemas import HistoricalDeal, ModelPackage

logger = logging.getLogger(__name__)

GLOBAL_CACHE_KEY = 'global'

MIN_PHASE = 1
MAX_PHASE = 3


# =============================================================================
# Protocols
# =============================================================================


class DealRepository(Protocol):
    def list_deals(self, org_id: Optional[str] = None) -> List[HistoricalDeal]:
        ...

    def org_ids_for_customer(self, customer_id: str) -> List[str]:
        ...

    def add_deal(self, deal: HistoricalDeal, org_id: Optional[str] = None) -> HistoricalDeal:
        ...


class ModelRepository(Protocol):
    def get(self, customer_id: str) -> Optional[ModelPackage]:
        ...

    def replace(self, customer_id: str, package: ModelPackage) -> None:
        ...


class PhaseRepository(Protocol):
    def get_phase(self, customer_id: str) -> int:
        ...

    def set_phase(self, customer_id: str, phase: int) -> None:
        ...


# =============================================================================
# Historical Deals
# =============================================================================


class InMemoryDealRepository:
    """Closed deals grouped by organisation, plus a customer -> org mapping."""

    def __init__(self, deals: Optional[Sequence[HistoricalDeal]] = None) -> None:
        self._lock = threading.Lock()
        self._deals: List[HistoricalDeal] = []
        self._customer_orgs: Dict[str, List[str]] = {}
        for deal in deals or []:
            self.add_deal(deal)

    def list_deals(self, org_id: Optional[str] = None) -> List[HistoricalDeal]:
        with self._lock:
            if org_id is None:
                return list(self._deals)
            return [d for d in self._deals if d.orgId == org_id]

    def org_ids_for_customer(self, customer_id: str) -> List[str]:
        with self._lock:
            # A customer with no explicit links owns the org of the same id
            return list(self._customer_orgs.get(customer_id, [customer_id]))

    def link_customer(self, customer_id: str, org_ids: Sequence[str]) -> None:
        with self._lock:
            self._customer_orgs[customer_id] = list(org_ids)

    def add_deal(self, deal: HistoricalDeal, org_id: Optional[str] = None) -> HistoricalDeal:
        if org_id is not None and deal.orgId != org_id:
            deal = deal.model_copy(update={"orgId": org_id})
        with self._lock:
            self._deals.append(deal)
        return deal


class CachedDealReader:
    """
    TTL-cached read path over a DealRepository.

    Cache keys are organisation ids, with 'global' for unscoped reads.
    record_deal() writes through and invalidates the written organisation
    and the global entry before returning.

    Every write or invalidation bumps a generation counter. A read that
    loaded from the repository only fills the cache if no write landed
    while it was loading, so a snapshot taken before a write never
    overwrites the invalidation.
    """

    def __init__(self, repository: DealRepository, cache: TTLCache) -> None:
        self.repository = repository
        self.cache = cache
        self._lock = threading.Lock()
        self._generation = 0

    def get_deals(self, org_id: Optional[str] = None) -> List[HistoricalDeal]:
        key = org_id or GLOBAL_CACHE_KEY
        cached = self.cache.get(key)
        if cached is not None:
            return list(cached)
        with self._lock:
            generation = self._generation
        deals = self.repository.list_deals(org_id)
        with self._lock:
            if generation == self._generation:
                self.cache.set(key, deals)
            else:
                logger.debug(f"Deal cache fill for {key} skipped: a write landed during the load")
        return list(deals)

    def record_deal(self, deal: HistoricalDeal, org_id: Optional[str] = None) -> HistoricalDeal:
        stored = self.repository.add_deal(deal, org_id=org_id)
        self.invalidate(stored.orgId)
        return stored

    def invalidate(self, org_id: Optional[str] = None) -> None:
        """Invalidate one organisation (plus global), or everything when org_id is None."""
        with self._lock:
            self._generation += 1
            if org_id:
                self.cache.invalidate(org_id, GLOBAL_CACHE_KEY)
            else:
                self.cache.clear()


# =============================================================================
# Model Packages
# =============================================================================


class InMemoryModelRepository:
    """
    Stores each customer's model package as a serialized JSON snapshot.

    replace() serializes outside the lock and swaps the snapshot under it,
    so concurrent get() calls decode either the old or the new package.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snapshots: Dict[str, str] = {}

    def get(self, customer_id: str) -> Optional[ModelPackage]:
        with self._lock:
            snapshot = self._snapshots.get(customer_id)
        if snapshot is None:
            return None
        return ModelPackage.model_validate_json(snapshot)

    def replace(self, customer_id: str, package: ModelPackage) -> None:
        snapshot = package.model_dump_json()
        with self._lock:
            self._snapshots[customer_id] = snapshot
        logger.info(f"Stored model package for customer {customer_id} (trained {package.trainedAt})")


# =============================================================================
# Recommendation Phases
# =============================================================================


class InMemoryPhaseRepository:
    """Customer recommendation phase (1 = rules, 2 = customer model, 3 = full)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._phases: Dict[str, int] = {}

    def get_phase(self, customer_id: str) -> int:
        with self._lock:
            return self._phases.get(customer_id, MIN_PHASE)

    def set_phase(self, customer_id: str, phase: int) -> None:
        if not MIN_PHASE <= phase <= MAX_PHASE:
            raise ValueError(f"Invalid phase {phase}: must be between {MIN_PHASE} and {MAX_PHASE}")
        with self._lock:
            self._phases[customer_id] = phase
