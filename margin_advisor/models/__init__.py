"""
Data models for the Margin Advisor backend.

Re-exports the enums and Pydantic schemas so callers can write:

    from margin_advisor.models import DealContext, RecommendationResult
"""

from margin_advisor.models.enums import (
    CompetitorCount,
    CustomerSegment,
    DealRegType,
    DealStatus,
    Level,
    ProductCategory,
    QualityGrade,
    RecommendationSource,
    RelationshipStrength,
)
from margin_advisor.models.schemas import (
    DEFAULT_RATING,
    BenchmarkResponse,
    BomAllocation,
    BomContext,
    BomLine,
    BomLineAllocation,
    BomRecommendations,
    BomStats,
    BomTotals,
    CalibrationBin,
    CompetitorProfile,
    DealContext,
    DealScore,
    Driver,
    EvaluationMetrics,
    FeatureImportance,
    FeatureVector,
    FractionMargin,
    GpCurvePoint,
    HistoricalDeal,
    InferenceResult,
    KeyDriver,
    MarginOption,
    MarginRange,
    ModelMetricsSummary,
    ModelPackage,
    NormStats,
    OemProfile,
    PercentMargin,
    PredictionQuality,
    RecommendationResult,
    Scenario,
    ScenarioComparison,
    ScenarioDelta,
    ScoreFactors,
    ShortfallReport,
    BomAnalyzeRequest,
    DealRecordResponse,
    RecommendRequest,
    RecommendResponse,
    TrainedModel,
    TrainingResult,
)

__all__ = [
    # Enums
    'CompetitorCount',
    'CustomerSegment',
    'DealRegType',
    'DealStatus',
    'Level',
    'ProductCategory',
    'QualityGrade',
    'RecommendationSource',
    'RelationshipStrength',
    # Margin scale aliases
    'FractionMargin',
    'PercentMargin',
    'DEFAULT_RATING',
    # Deal inputs
    'CompetitorProfile',
    'OemProfile',
    'DealContext',
    'HistoricalDeal',
    'BomStats',
    # Model package
    'FeatureVector',
    'NormStats',
    'TrainedModel',
    'CalibrationBin',
    'EvaluationMetrics',
    'FeatureImportance',
    'ModelPackage',
    # Recommendation / inference
    'Driver',
    'RecommendationResult',
    'MarginOption',
    'KeyDriver',
    'GpCurvePoint',
    'ModelMetricsSummary',
    'InferenceResult',
    # Training
    'TrainingResult',
    'ShortfallReport',
    # Benchmarks, scenarios, scoring
    'MarginRange',
    'BenchmarkResponse',
    'Scenario',
    'ScenarioDelta',
    'ScenarioComparison',
    'PredictionQuality',
    'ScoreFactors',
    'DealScore',
    # BOM
    'BomLine',
    'BomContext',
    'BomLineAllocation',
    'BomTotals',
    'BomRecommendations',
    'BomAllocation',
    # API
    'RecommendRequest',
    'RecommendResponse',
    'BomAnalyzeRequest',
    'DealRecordResponse',
]
