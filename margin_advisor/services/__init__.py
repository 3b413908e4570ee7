"""
Margin Advisor Services Module

Business logic for margin recommendation and BOM allocation. Every service is
synchronous and stateless apart from injected repositories, caches and HTTP
sessions.

Services:
- features: deal -> fixed-length numeric feature vector
- logistic_regression: numpy logistic regression engine
- benchmarks: OEM x segment industry margin benchmarks
- knn: similarity search over closed deals
- win_probability: heuristic win-probability estimate
- rules: rule scorer and request-time recommendation entry point
- training: per-customer model training pipeline
- inference: margin sweep over a trained model
- scenarios: planned vs. recommended comparison
- bom_optimizer: per-line BOM margin allocation
- quality: prediction quality and deal score
- narrative: Gemini narratives with deterministic fallbacks

All services are consumed by the API layer (margin_advisor/api/).
"""

# =============================================================================
# Feature Engineering / Regression Exports
# =============================================================================

from margin_advisor.services.features import (
    FEATURE_DISPLAY_NAMES,
    FEATURE_NAMES,
    compute_norm_stats,
    featurize,
    get_feature_count,
)
from margin_advisor.services.logistic_regression import (
    FeatureLengthMismatchError,
    TrainingOptions,
    compute_auc,
    deserialize_model,
    evaluate,
    get_feature_importance,
    predict,
    serialize_model,
    train,
)

# =============================================================================
# Heuristic Recommendation Exports
# Benchmarks, k-NN, win probability and the rule scorer
# =============================================================================

from margin_advisor.services.benchmarks import (
    generate_benchmark_response,
    get_benchmark,
    get_benchmark_iqr,
    get_size_bucket,
)
from margin_advisor.services.knn import NeighborSummary, similarity, time_decay, top_k_neighbors
from margin_advisor.services.win_probability import estimate_win_prob, estimate_win_prob_for_deal
from margin_advisor.services.rules import (
    ExternalModelError,
    compute_recommendation,
    policy_floor_for,
    rule_based_recommendation,
)

# =============================================================================
# Customer Model Exports
# =============================================================================

from margin_advisor.services.training import train_customer_model
from margin_advisor.services.inference import recommend_margin

# =============================================================================
# Scenario / Scoring / BOM / Narrative Exports
# =============================================================================

from margin_advisor.services.scenarios import compare_with_plan
from margin_advisor.services.quality import assess_prediction_quality, compute_deal_score
from margin_advisor.services.bom_optimizer import compute_bom_stats, optimize_bom
from margin_advisor.services.narrative import (
    NarrativeClient,
    NarrativeRequestError,
    RetryableNarrativeError,
    fallback_explanation,
    fallback_qualitative,
)

__all__ = [
    # Features / regression
    'FEATURE_DISPLAY_NAMES',
    'FEATURE_NAMES',
    'compute_norm_stats',
    'featurize',
    'get_feature_count',
    'FeatureLengthMismatchError',
    'TrainingOptions',
    'compute_auc',
    'deserialize_model',
    'evaluate',
    'get_feature_importance',
    'predict',
    'serialize_model',
    'train',
    # Heuristics
    'generate_benchmark_response',
    'get_benchmark',
    'get_benchmark_iqr',
    'get_size_bucket',
    'NeighborSummary',
    'similarity',
    'time_decay',
    'top_k_neighbors',
    'estimate_win_prob',
    'estimate_win_prob_for_deal',
    'ExternalModelError',
    'compute_recommendation',
    'policy_floor_for',
    'rule_based_recommendation',
    # Customer models
    'train_customer_model',
    'recommend_margin',
    # Scenario / scoring / BOM / narrative
    'compare_with_plan',
    'assess_prediction_quality',
    'compute_deal_score',
    'compute_bom_stats',
    'optimize_bom',
    'NarrativeClient',
    'NarrativeRequestError',
    'RetryableNarrativeError',
    'fallback_explanation',
    'fallback_qualitative',
]
