"""
Core infrastructure package for the Margin Advisor backend.

Provides:
- Configuration management via pydantic-settings
- Explicitly owned TTL caches
- Repositories for historical deals, model packages and phases

Dependency-injection helpers live in margin_advisor.core.dependencies and are
imported from there directly, since they depend on the service layer.

Usage Examples:
    from margin_advisor.core import get_settings, TTLCache

    settings = get_settings()
    cache = TTLCache(settings.deals_cache_ttl_seconds)
"""

# =============================================================================
# Re-exports from margin_advisor.core.config
# =============================================================================
from margin_advisor.core.config import Settings, get_settings

# =============================================================================
# Re-exports from margin_advisor.core.cache
# =============================================================================
from margin_advisor.core.cache import TTLCache

# =============================================================================
# Re-exports from margin_advisor.core.repositories
# =============================================================================
from margin_advisor.core.repositories import (
    CachedDealReader,
    DealRepository,
    InMemoryDealRepository,
    InMemoryModelRepository,
    InMemoryPhaseRepository,
    ModelRepository,
    PhaseRepository,
)

__all__ = [
    # Configuration management (from config.py)
    'Settings',
    'get_settings',
    # Caching (from cache.py)
    'TTLCache',
    # Repositories (from repositories.py)
    'DealRepository',
    'ModelRepository',
    'PhaseRepository',
    'InMemoryDealRepository',
    'InMemoryModelRepository',
    'InMemoryPhaseRepository',
    'CachedDealReader',
]
