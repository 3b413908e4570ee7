"""
FastAPI dependency injection module for the Margin Advisor backend.

Endpoint handlers receive settings, repositories and the narrative client
through these dependencies instead of importing shared state. The objects
themselves are built once per application by build_app_state() and owned by
`app.state`, which keeps every cache explicitly owned and lets tests swap in
fresh instances by overriding dependencies or rebuilding the state.

Key Dependencies Provided:
- SettingsDep: cached Settings instance
- DealRepositoryDep: historical deal store (customer -> org links)
- DealReaderDep: TTL-cached historical deal reader
- ModelRepositoryDep: customer model package store
- PhaseRepositoryDep: customer recommendation phase store
- NarrativeClientDep: Gemini narrative client (falls back when unconfigured)

Usage:
    @router.post("/recommend")
    def recommend(deal: DealContext, reader: DealReaderDep, settings: SettingsDep):
        history = reader.get_deals(org_id)
        ...
"""

from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import Depends, Request

from margin_advisor.core.cache import TTLCache
from margin_advisor.core.config import Settings, get_settings
from margin_advisor.core.repositories import (
    CachedDealReader,
    InMemoryDealRepository,
    InMemoryModelRepository,
    InMemoryPhaseRepository,
)
from margin_advisor.services.narrative import NarrativeClient


@dataclass
class AppState:
    """Per-application collaborators stored on `app.state.engine`."""
    deal_repository: InMemoryDealRepository
    deal_reader: CachedDealReader
    model_repository: InMemoryModelRepository
    phase_repository: InMemoryPhaseRepository
    narrative_client: NarrativeClient


def build_app_state(settings: Optional[Settings] = None) -> AppState:
    """Construct fresh repositories, caches and clients from settings."""
    settings = settings or get_settings()
    deal_repository = InMemoryDealRepository()
    return AppState(
        deal_repository=deal_repository,
        deal_reader=CachedDealReader(deal_repository, TTLCache(settings.deals_cache_ttl_seconds)),
        model_repository=InMemoryModelRepository(),
        phase_repository=InMemoryPhaseRepository(),
        narrative_client=NarrativeClient(
            settings=settings,
            cache=TTLCache(settings.narrative_cache_ttl_seconds),
        ),
    )


# =============================================================================
# Settings Dependency
# =============================================================================


def get_settings_dependency() -> Settings:
    """Return the Settings singleton instance."""
    return get_settings()


SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]


# =============================================================================
# Application State Dependencies
# =============================================================================


def get_app_state(request: Request) -> AppState:
    state = getattr(request.app.state, 'engine', None)
    if state is None:
        state = build_app_state()
        request.app.state.engine = state
    return state


def get_deal_repository(request: Request) -> InMemoryDealRepository:
    return get_app_state(request).deal_repository


def get_deal_reader(request: Request) -> CachedDealReader:
    return get_app_state(request).deal_reader


def get_model_repository(request: Request) -> InMemoryModelRepository:
    return get_app_state(request).model_repository


def get_phase_repository(request: Request) -> InMemoryPhaseRepository:
    return get_app_state(request).phase_repository


def get_narrative_client(request: Request) -> NarrativeClient:
    return get_app_state(request).narrative_client


DealRepositoryDep = Annotated[InMemoryDealRepository, Depends(get_deal_repository)]
DealReaderDep = Annotated[CachedDealReader, Depends(get_deal_reader)]
ModelRepositoryDep = Annotated[InMemoryModelRepository, Depends(get_model_repository)]
PhaseRepositoryDep = Annotated[InMemoryPhaseRepository, Depends(get_phase_repository)]
NarrativeClientDep = Annotated[NarrativeClient, Depends(get_narrative_client)]
