"""
Settings and environment management module for the Margin Advisor backend.

This module provides centralized configuration management using pydantic-settings,
which automatically loads settings from environment variables and .env files.

Key Features:
- Environment variable validation and type coercion
- Sensible defaults for development (no external services required)
- Singleton pattern via @lru_cache for efficient access
- Optional external service endpoints (model service, Gemini narratives)
- Training thresholds and cache TTLs tunable per deployment

Environment Variables:
- MODEL_URL: External margin model endpoint. When unset the rule scorer is used.
- MODEL_TIMEOUT_SECONDS: Timeout for the model call (default: 2.0)
- GEMINI_API_KEY: API key for narrative generation. When unset, deterministic
  fallback narratives are returned.
- GEMINI_MODEL: Gemini model name (default: gemini-2.5-flash-lite)
- DEALS_CACHE_TTL_SECONDS: Historical-deal read cache TTL (default: 300)

Usage:
    from margin_advisor.core.config import get_settings

    settings = get_settings()
    if settings.model_url:
        ...
"""

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes:
        cors_origins: Browser origins allowed by CORS (env: JSON list).
        model_url: External margin model endpoint (POST {input, neighbors}).
        model_timeout_seconds: Bounded timeout for the external model call.
        gemini_api_key: Gemini API key for narrative generation.
        gemini_model: Gemini model used for narratives.
        gemini_base_url: Base URL of the Gemini generateContent API.
        narrative_timeout_seconds: Per-attempt timeout for narrative calls.
        narrative_retries: Retries after the first narrative attempt.
        narrative_backoff_seconds: Linear backoff step between attempts.
        narrative_cache_ttl_seconds: Narrative response cache TTL.
        deals_cache_ttl_seconds: Historical-deal read cache TTL.
        knn_k: Number of neighbours used for blending.
        min_training_deals: Minimum closed deals to train a customer model.
        min_won_deals: Minimum won deals to train.
        min_lost_deals: Minimum lost deals to train.
        phase_promotion_auc: AUC required to promote a customer to phase 2.
        training_seed: Seed for the training shuffle (None = random).
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore',
        case_sensitive=False,
        protected_namespaces=('settings_',),
    )

    # =========================================================================
    # HTTP
    # =========================================================================

    # Browser origins allowed by the CORS middleware
    cors_origins: List[str] = ['http://localhost:3000', 'http://127.0.0.1:3000']

    # =========================================================================
    # External Model Service (Optional)
    # =========================================================================

    # When unset, compute_recommendation goes straight to the rule scorer
    model_url: Optional[str] = None

    model_timeout_seconds: float = 2.0

    # =========================================================================
    # Narrative Generation (Optional - Gemini)
    # =========================================================================

    gemini_api_key: Optional[str] = None

    gemini_model: str = 'gemini-2.5-flash-lite'

    gemini_base_url: str = 'https://generativelanguage.googleapis.com/v1beta'

    narrative_timeout_seconds: float = 8.0

    # One retry with linear backoff: attempt N waits N * backoff seconds
    narrative_retries: int = 1

    narrative_backoff_seconds: float = 1.0

    narrative_cache_ttl_seconds: float = 600.0

    # =========================================================================
    # Historical Deal Cache
    # =========================================================================

    deals_cache_ttl_seconds: float = 300.0

    # =========================================================================
    # Recommendation / Training Defaults
    # =========================================================================

    knn_k: int = 12

    min_training_deals: int = 100

    min_won_deals: int = 20

    min_lost_deals: int = 20

    phase_promotion_auc: float = 0.60

    training_seed: Optional[int] = None


@lru_cache()
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Returns:
        Settings: The cached settings instance.

    Note:
        To refresh settings in tests, clear the cache:
        >>> get_settings.cache_clear()
    """
    return Settings()
