"""
Pydantic request/response models for the Margin Advisor backend.

This module provides type-safe data validation and serialization for every
contract that crosses the engine boundary: deal context inputs, historical
deal records, feature vectors, trained model packages, recommendation
results, BOM line inputs and allocations, and the supplementary scoring
records (benchmarks, scenarios, prediction quality, deal score).

Margin scale conventions:
    Two annotated aliases make the scale of every margin field explicit:

    - FractionMargin: margin-on-price as a 0-1 fraction (0.18 == 18%).
      Used inside model packages, feature computation, k-NN and the rule
      scorer's driver values.
    - PercentMargin: margin-on-price on the 0-100 scale (18.0 == 18%).
      Used for every field the API returns to a human, e.g.
      RecommendationResult.suggestedMarginPct and BOM line margins.

    Margin-on-price means (price - cost) / price, so price = cost / (1 - m).

All models use Pydantic v2 syntax with camelCase field names matching the
JSON payloads exchanged with the API layer.
"""

from typing import Annotated, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

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


# =============================================================================
# Margin Scale Aliases
# =============================================================================

FractionMargin = Annotated[
    float,
    Field(lt=1.0, description="Margin on price as a 0-1 fraction"),
]

PercentMargin = Annotated[
    float,
    Field(lt=100.0, description="Margin on price on the 0-100 scale"),
]

# Neutral value for an absent 1-5 rating
DEFAULT_RATING: int = 3


# =============================================================================
# Deal Context Models
# =============================================================================


class CompetitorProfile(BaseModel):
    """
    Known behaviour of a named competitor.

    priceAggression (1-5) feeds the win-probability model and the rule
    scorer's price-aggressive competitor penalty; marginAggression (-5..5)
    feeds the rule scorer's competitor-profile adjustment.
    """
    name: str = Field(..., description="Competitor name")
    priceAggression: Optional[int] = Field(
        default=None, ge=1, le=5, description="How aggressively the competitor cuts price (1-5)"
    )
    marginAggression: Optional[float] = Field(
        default=None, ge=-5, le=5, description="Signed margin pressure the competitor exerts (-5..5)"
    )
    typicalDiscount: Optional[float] = Field(default=None, description="Typical discount off list, percent")
    servicesCapability: Optional[str] = Field(default=None, description="Services capability (Low/Medium/High)")
    primaryStrength: Optional[str] = Field(default=None, description="Primary competitive strength")


class OemProfile(BaseModel):
    """
    Admin-configured OEM margin profile. All values are on the 0-100 scale.

    When present these override the rule scorer's built-in registration,
    services, quarter-end and OEM margin tables.
    """
    baseMargin: Optional[float] = Field(default=None, description="Typical base margin for this OEM, percent")
    dealRegBoost: Optional[float] = Field(default=None, description="Premium registration uplift, percent")
    quarterEndDiscount: Optional[float] = Field(default=None, description="Quarter-end uplift, percent")
    servicesBoost: Optional[float] = Field(default=None, description="Services-attached uplift, percent")


class DealContext(BaseModel):
    """
    Descriptive attributes of a prospective deal.

    Every attribute except oemCost is optional. Call with_defaults() to get a
    copy with the neutral defaults applied. The recommendation entry points
    (compute_recommendation, recommend_margin) default the deal once so
    k-NN, features and rules all see the same values; only quality scoring
    reads the raw instance, since it reports which fields were left absent.
    """
    model_config = ConfigDict(
        use_enum_values=False,
        json_schema_extra={
            "example": {
                "oemCost": 125000,
                "oem": "Cisco",
                "productCategory": "Hardware",
                "customerSegment": "MidMarket",
                "customerIndustry": "Financial Services",
                "relationshipStrength": "Good",
                "dealRegType": "StandardApproved",
                "competitors": "2",
                "valueAdd": "High",
                "solutionComplexity": "Medium",
                "customerPriceSensitivity": 4,
                "servicesAttached": True,
                "quarterEnd": False,
            }
        },
    )

    oemCost: float = Field(..., gt=0, description="Total OEM cost of the deal in dollars")
    oem: Optional[str] = Field(default=None, description="OEM vendor name (Cisco, Dell, ...)")
    productCategory: Optional[ProductCategory] = Field(default=None, description="Primary product category")
    customerSegment: Optional[CustomerSegment] = Field(default=None, description="Customer size segment")
    customerIndustry: Optional[str] = Field(default=None, description="Customer industry vertical")
    relationshipStrength: Optional[RelationshipStrength] = Field(default=None)
    customerTechSophistication: Optional[Level] = Field(default=None)
    dealRegType: Optional[DealRegType] = Field(default=None)
    competitors: Optional[CompetitorCount] = Field(default=None, description="Bucketed competitor count")
    valueAdd: Optional[Level] = Field(default=None, description="VAR value-add on the deal")
    solutionComplexity: Optional[Level] = Field(default=None)
    varStrategicImportance: Optional[Level] = Field(default=None)

    # 1-5 ratings
    customerPriceSensitivity: Optional[int] = Field(default=None, ge=1, le=5)
    customerLoyalty: Optional[int] = Field(default=None, ge=1, le=5)
    dealUrgency: Optional[int] = Field(default=None, ge=1, le=5)
    solutionDifferentiation: Optional[int] = Field(default=None, ge=1, le=5)

    # Flags
    isNewLogo: Optional[bool] = Field(default=None)
    servicesAttached: Optional[bool] = Field(default=None)
    quarterEnd: Optional[bool] = Field(default=None)
    displacementDeal: Optional[bool] = Field(default=None)

    competitorNames: Optional[List[str]] = Field(default=None)
    competitorProfiles: Optional[List[CompetitorProfile]] = Field(default=None)
    oemProfile: Optional[OemProfile] = Field(default=None)

    # BOM descriptors used by k-NN and features
    bomLineCount: Optional[int] = Field(default=None, ge=0, description="Number of BOM lines on the deal")
    bomAvgMargin: Optional[FractionMargin] = Field(
        default=None, description="Average BOM line margin as a 0-1 fraction"
    )
    hasManualBom: Optional[bool] = Field(default=None, description="Whether the BOM was entered manually")

    def with_defaults(self) -> "DealContext":
        """
        Return a copy with neutral defaults applied to absent attributes.

        Defaults:
            - ratings: 3
            - booleans: False
            - relationshipStrength: Good
            - customerTechSophistication: Medium
            - dealRegType: NotRegistered
            - competitors: '1'
            - valueAdd, solutionComplexity, varStrategicImportance: Medium
            - bomLineCount: 0
            - competitorNames, competitorProfiles: []

        customerSegment, productCategory, customerIndustry and oem stay
        absent; each consumer documents how it treats a missing value.
        """
        defaults = {
            "customerPriceSensitivity": DEFAULT_RATING,
            "customerLoyalty": DEFAULT_RATING,
            "dealUrgency": DEFAULT_RATING,
            "solutionDifferentiation": DEFAULT_RATING,
            "isNewLogo": False,
            "servicesAttached": False,
            "quarterEnd": False,
            "displacementDeal": False,
            "relationshipStrength": RelationshipStrength.GOOD,
            "customerTechSophistication": Level.MEDIUM,
            "dealRegType": DealRegType.NOT_REGISTERED,
            "competitors": CompetitorCount.ONE,
            "valueAdd": Level.MEDIUM,
            "solutionComplexity": Level.MEDIUM,
            "varStrategicImportance": Level.MEDIUM,
            "bomLineCount": 0,
            "competitorNames": [],
            "competitorProfiles": [],
        }
        update = {key: value for key, value in defaults.items() if getattr(self, key) is None}
        return self.model_copy(update=update)


class HistoricalDeal(DealContext):
    """
    A closed deal with its achieved margin and outcome.

    closeDate is kept as a raw string so unparsable dates survive loading and
    are scored neutrally by the k-NN time decay.
    """
    id: Optional[str] = Field(default=None, description="Deal identifier")
    orgId: Optional[str] = Field(default=None, description="Owning organisation / connected account")
    achievedMargin: Optional[FractionMargin] = Field(
        default=None, description="Margin achieved (won) or quoted (lost), 0-1 fraction"
    )
    status: DealStatus = Field(..., description="Won or Lost")
    lossReason: Optional[str] = Field(default=None)
    closeDate: Optional[str] = Field(default=None, description="Close date, YYYY-MM-DD or ISO-8601")


class BomStats(BaseModel):
    """BOM summary folded into the k-NN neighbour input."""
    lineCount: int = Field(default=0, ge=0)
    avgMargin: Optional[FractionMargin] = Field(default=None)
    manual: bool = Field(default=False)


# =============================================================================
# Feature Engineering / Model Package Models
# =============================================================================


class FeatureVector(BaseModel):
    """Fixed-length numeric encoding of a deal plus its feature names."""
    features: List[float]
    featureNames: List[str]


class NormStats(BaseModel):
    """Population mean and standard deviation per continuous feature."""
    means: Dict[str, float]
    stds: Dict[str, float]


class TrainedModel(BaseModel):
    """Flat, JSON-serializable logistic regression model record."""
    weights: List[float]
    bias: float
    featureCount: int
    epochsRun: int = 0
    trainLoss: Optional[float] = None
    valLoss: Optional[float] = None
    trainedAt: Optional[str] = None


class CalibrationBin(BaseModel):
    """One equal-width calibration bucket (e.g. '0.3-0.4')."""
    bucket: str
    predicted: float
    actual: float
    count: int


class EvaluationMetrics(BaseModel):
    auc: float
    logLoss: float
    accuracy: float
    calibration: List[CalibrationBin] = Field(default_factory=list)
    n: int


class FeatureImportance(BaseModel):
    name: str
    weight: float
    absWeight: float
    direction: str = Field(..., description="'positive' or 'negative'")


class ModelPackage(BaseModel):
    """
    Everything needed to run inference for one customer.

    Replaced wholesale by each successful training run.
    """
    model: TrainedModel
    normStats: NormStats
    featureNames: List[str]
    metrics: EvaluationMetrics
    importance: List[FeatureImportance]
    dealCount: int
    trainedAt: str
    version: int = 1


# =============================================================================
# Recommendation Models
# =============================================================================


class Driver(BaseModel):
    """A signed margin adjustment (0-1 fraction) with a human-readable name."""
    name: str
    value: float


class RecommendationResult(BaseModel):
    """
    Output of the rule scorer or the external model service.

    Frozen once built; callers derive new results instead of mutating.
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "suggestedMarginPct": 17.4,
                "suggestedPrice": 151331.72,
                "winProbability": 0.54,
                "drivers": [{"name": "Mid-market base", "value": 0.17}],
                "policyFloor": 0.03,
                "confidence": 0.4,
                "method": "Advanced rules + kNN (Rules only)",
                "source": "rules",
            }
        },
    )

    suggestedMarginPct: PercentMargin
    suggestedPrice: float
    winProbability: float = Field(..., ge=0.0, le=1.0)
    drivers: List[Driver]
    policyFloor: FractionMargin
    confidence: float = Field(..., ge=0.0, le=1.0)
    method: str
    source: RecommendationSource
    neighborCount: int = 0


class MarginOption(BaseModel):
    """One point of the inference margin sweep."""
    marginPct: PercentMargin
    price: float
    winProbability: float
    expectedGP: float


class KeyDriver(BaseModel):
    feature: str
    displayName: str
    contribution: float
    impact: float
    sentence: str


class GpCurvePoint(BaseModel):
    marginPct: float
    winProbabilityPct: int
    expectedGP: float


class ModelMetricsSummary(BaseModel):
    auc: float
    dealCount: int
    trainedAt: Optional[str] = None


class InferenceResult(BaseModel):
    """Customer-model recommendation with three operating points."""
    suggestedMarginPct: PercentMargin
    conservativeMarginPct: PercentMargin
    aggressiveMarginPct: PercentMargin
    suggestedPrice: float
    winProbability: float
    expectedGP: float
    confidence: float
    optimal: MarginOption
    conservative: MarginOption
    aggressive: MarginOption
    keyDrivers: List[KeyDriver]
    expectedGPCurve: List[GpCurvePoint]
    modelMetrics: ModelMetricsSummary
    source: RecommendationSource = RecommendationSource.ML_MODEL


# =============================================================================
# Training Models
# =============================================================================


class TrainingResult(BaseModel):
    success: bool = True
    metrics: EvaluationMetrics
    dealCount: int
    syntheticCount: int
    topFeatures: List[FeatureImportance]
    phase: int
    epochsRun: int


class ShortfallReport(BaseModel):
    """Non-exceptional outcome when a customer lacks enough closed deals."""
    success: bool = False
    reason: str
    dealCount: int
    wonCount: int
    lostCount: int
    shortfall: int = Field(..., description="Additional deals needed to reach the minimum")


# =============================================================================
# Benchmark / Scenario / Scoring Models
# =============================================================================


class MarginRange(BaseModel):
    low: float
    high: float


class BenchmarkResponse(BaseModel):
    """Pre-model recommendation from the industry benchmark table."""
    suggestedMarginPct: PercentMargin
    suggestedMarginRange: MarginRange
    suggestedPrice: float
    sizeBucket: str
    benchmarkSource: str
    benchmarkLevel: str
    insights: List[str]
    source: RecommendationSource = RecommendationSource.INDUSTRY_BENCHMARK


class Scenario(BaseModel):
    marginPct: PercentMargin
    price: float
    grossProfit: float
    winProbability: int = Field(..., ge=0, le=100, description="Win probability percent")
    riskAdjusted: float


class ScenarioDelta(BaseModel):
    grossProfit: float
    riskAdjusted: float


class ScenarioComparison(BaseModel):
    planned: Scenario
    recommended: Scenario
    delta: ScenarioDelta


class PredictionQuality(BaseModel):
    score: int = Field(..., ge=0, le=100)
    grade: QualityGrade
    missingFields: List[str]


class ScoreFactors(BaseModel):
    marginAlignment: float
    winProbability: float
    dataQuality: float
    confidence: float


class DealScore(BaseModel):
    dealScore: int = Field(..., ge=0, le=100)
    scoreFactors: ScoreFactors


# =============================================================================
# BOM Models
# =============================================================================


class BomLine(BaseModel):
    """
    One line of a bill of materials.

    category is kept as a plain string: unknown categories are legal and get
    the default floor/ceiling/elasticity.
    """
    category: Optional[str] = Field(default=None, description="Product category; defaults to Hardware")
    quantity: Optional[float] = Field(default=None, description="Quantity; values below 1 count as 1")
    unitCost: Optional[float] = Field(default=None, description="Unit cost; negative counts as 0")
    marginPct: Optional[float] = Field(default=None, description="Current quoted margin, percent")
    partNumber: Optional[str] = None
    description: Optional[str] = None


class BomContext(BaseModel):
    """Deal context for the BOM optimizer. Every field is optional."""
    oem: Optional[str] = None
    customerSegment: Optional[CustomerSegment] = None
    dealRegType: Optional[DealRegType] = None
    competitors: Optional[CompetitorCount] = None
    valueAdd: Optional[Level] = None
    relationshipStrength: Optional[RelationshipStrength] = None
    solutionComplexity: Optional[Level] = None
    targetBlendedMargin: Optional[PercentMargin] = Field(
        default=None, description="Requested blended margin, percent"
    )


class BomLineAllocation(BaseModel):
    index: int
    currentMarginPct: float
    recommendedMarginPct: PercentMargin
    marginFloor: PercentMargin
    extendedCost: float
    extendedPrice: float
    grossProfit: float
    rationale: str
    partNumber: Optional[str] = None
    description: Optional[str] = None


class BomTotals(BaseModel):
    totalCost: float
    totalPrice: float
    blendedMarginPct: float
    totalGrossProfit: float
    targetAchieved: bool
    targetMarginPct: float
    gap: float


class BomRecommendations(BaseModel):
    healthScore: int = Field(..., ge=0, le=100)
    insights: List[str]


class BomAllocation(BaseModel):
    lines: List[BomLineAllocation]
    totals: BomTotals
    recommendations: BomRecommendations


# =============================================================================
# API Request / Response Models
# =============================================================================


class RecommendRequest(BaseModel):
    """Body of POST /recommend."""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "input": {
                    "oemCost": 125000,
                    "oem": "Cisco",
                    "customerSegment": "MidMarket",
                    "productCategory": "Hardware",
                    "competitors": "2",
                    "dealRegType": "StandardApproved",
                },
                "plannedMarginPct": 15.0,
                "orgId": "org-a",
            }
        }
    )

    input: DealContext
    plannedMarginPct: Optional[PercentMargin] = Field(default=None, description="Rep's planned margin, percent")
    bomLines: List[BomLine] = Field(default_factory=list, description="Manually entered BOM lines")
    orgId: Optional[str] = Field(default=None, description="Organisation whose closed deals feed k-NN")
    includeNarrative: bool = Field(default=True, description="Generate explanation texts")


class RecommendResponse(BaseModel):
    recommendation: RecommendationResult
    comparison: Optional[ScenarioComparison] = None
    predictionQuality: PredictionQuality
    dealScore: DealScore
    bomStats: Optional[BomStats] = None
    explanation: Optional[str] = None
    qualitativeSummary: Optional[str] = None


class BomAnalyzeRequest(BaseModel):
    """Body of POST /bom/analyze."""
    bomLines: List[BomLine]
    context: BomContext = Field(default_factory=BomContext)


class DealRecordResponse(BaseModel):
    success: bool = True
    deal: HistoricalDeal
