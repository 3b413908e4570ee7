"""
Feature Engineering Service.

Converts deal records into fixed-length numeric feature vectors for logistic
regression training and inference.

Feature Layout (29 features, constant for every input):
    Continuous (8), z-normalized with externally supplied NormStats:
        deal_size_log, price_sensitivity, customer_loyalty, deal_urgency,
        solution_differentiation, bom_line_count, competitor_count,
        proposed_margin
    Binary (4), truthy -> 1, falsy/absent -> 0:
        is_new_logo, services_attached, quarter_end, has_bom
    Categorical (6 groups), one-hot with the LAST category dropped:
        segment        [SMB, MidMarket, Enterprise]
        deal_reg       [NotRegistered, StandardApproved, PremiumHunting]
        complexity     [Low, Medium, High]
        relationship   [New, Good, Strategic]
        oem_top        [Cisco, Dell, HPE, Microsoft, Palo Alto, CrowdStrike, Other]
        product_cat    [Hardware, Software, Services, Other]

Normalization:
    normalized = (value - mean) / std. A continuous value that is absent
    (e.g. a deal with no recorded margin) normalizes to exactly 0, which is
    mean imputation. Constant features get std 1 so the division is safe.

Counterfactual margins:
    featurize(deal, stats, proposed_margin=0.22) substitutes 0.22 for the
    deal's own achievedMargin without touching the deal, which is how the
    inference sweep scores candidate margins.

Usage:
    from margin_advisor.services.features import compute_norm_stats, featurize

    stats = compute_norm_stats(training_deals)
    vector = featurize(deal, stats, proposed_margin=0.18)
    assert len(vector.features) == get_feature_count()
"""

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from margin_advisor.models.enums import DealRegType, ProductCategory
from margin_advisor.models.schemas import DEFAULT_RATING, FeatureVector, NormStats


# =============================================================================
# Category Mapping Helpers
# =============================================================================

TOP_OEMS = frozenset({'Cisco', 'Dell', 'HPE', 'Microsoft', 'Palo Alto', 'CrowdStrike'})

# Product categories collapse onto four model buckets
PRODUCT_CATEGORY_BUCKETS: Dict[str, str] = {
    ProductCategory.HARDWARE.value: 'Hardware',
    ProductCategory.SOFTWARE.value: 'Software',
    ProductCategory.CLOUD.value: 'Software',
    ProductCategory.PROFESSIONAL_SERVICES.value: 'Services',
    ProductCategory.MANAGED_SERVICES.value: 'Services',
    ProductCategory.COMPLEX_SOLUTION.value: 'Other',
}


def _enum_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    return getattr(value, 'value', value)


def competitor_to_num(competitors: Any) -> float:
    """
    Convert a competitor bucket to a number.

    '0' -> 0, '1' -> 1, '2' -> 2, '3+' -> 4. Absent or unparsable -> 0.
    """
    raw = _enum_value(competitors)
    if raw is None:
        return 0.0
    if raw == '3+':
        return 4.0
    try:
        return float(int(raw))
    except (TypeError, ValueError):
        return 0.0


def _map_product_category(category: Any) -> str:
    return PRODUCT_CATEGORY_BUCKETS.get(_enum_value(category), 'Other')


def _map_deal_reg(reg: Any) -> Optional[str]:
    raw = _enum_value(reg)
    if raw == DealRegType.TEAMING.value:
        return DealRegType.STANDARD_APPROVED.value
    return raw


def _map_oem(oem: Optional[str]) -> str:
    if oem and oem.strip() in TOP_OEMS:
        return oem.strip()
    return 'Other'


def _rating(value: Optional[int]) -> float:
    return float(DEFAULT_RATING if value is None else value)


# =============================================================================
# Feature Specification
# =============================================================================


@dataclass(frozen=True)
class FeatureSpec:
    """
    One feature (or categorical group) of the encoding.

    Attributes:
        name: Feature name, or group prefix for categorical features.
        kind: 'continuous', 'binary' or 'categorical'.
        source: Extracts the raw value from a deal.
        categories: Ordered categories for categorical groups; the last
            one is dropped from the encoding.
    """
    name: str
    kind: str
    source: Callable[[Any], Any]
    categories: Sequence[str] = field(default_factory=tuple)


FEATURE_SPEC: List[FeatureSpec] = [
    # --- Continuous (8) ---
    FeatureSpec('deal_size_log', 'continuous', lambda d: math.log((d.oemCost or 0.0) + 1.0)),
    FeatureSpec('price_sensitivity', 'continuous', lambda d: _rating(d.customerPriceSensitivity)),
    FeatureSpec('customer_loyalty', 'continuous', lambda d: _rating(d.customerLoyalty)),
    FeatureSpec('deal_urgency', 'continuous', lambda d: _rating(d.dealUrgency)),
    FeatureSpec('solution_differentiation', 'continuous', lambda d: _rating(d.solutionDifferentiation)),
    FeatureSpec('bom_line_count', 'continuous', lambda d: float(d.bomLineCount or 0)),
    FeatureSpec('competitor_count', 'continuous', lambda d: competitor_to_num(d.competitors)),
    FeatureSpec('proposed_margin', 'continuous', lambda d: getattr(d, 'achievedMargin', None)),

    # --- Binary (4) ---
    FeatureSpec('is_new_logo', 'binary', lambda d: d.isNewLogo),
    FeatureSpec('services_attached', 'binary', lambda d: d.servicesAttached),
    FeatureSpec('quarter_end', 'binary', lambda d: d.quarterEnd),
    FeatureSpec('has_bom', 'binary', lambda d: (d.bomLineCount or 0) > 0),

    # --- Categorical (6 groups, one-hot, drop last) ---
    FeatureSpec(
        'segment', 'categorical', lambda d: _enum_value(d.customerSegment),
        ('SMB', 'MidMarket', 'Enterprise'),
    ),
    FeatureSpec(
        'deal_reg', 'categorical', lambda d: _map_deal_reg(d.dealRegType),
        ('NotRegistered', 'StandardApproved', 'PremiumHunting'),
    ),
    FeatureSpec(
        'complexity', 'categorical', lambda d: _enum_value(d.solutionComplexity),
        ('Low', 'Medium', 'High'),
    ),
    FeatureSpec(
        'relationship', 'categorical', lambda d: _enum_value(d.relationshipStrength),
        ('New', 'Good', 'Strategic'),
    ),
    FeatureSpec(
        'oem_top', 'categorical', lambda d: _map_oem(d.oem),
        ('Cisco', 'Dell', 'HPE', 'Microsoft', 'Palo Alto', 'CrowdStrike', 'Other'),
    ),
    FeatureSpec(
        'product_cat', 'categorical', lambda d: _map_product_category(d.productCategory),
        ('Hardware', 'Software', 'Services', 'Other'),
    ),
]

CONTINUOUS_FEATURES: List[str] = [s.name for s in FEATURE_SPEC if s.kind == 'continuous']


def _build_feature_names() -> List[str]:
    names: List[str] = []
    for spec in FEATURE_SPEC:
        if spec.kind == 'categorical':
            names.extend(f"{spec.name}_{cat}" for cat in spec.categories[:-1])
        else:
            names.append(spec.name)
    return names


FEATURE_NAMES: List[str] = _build_feature_names()


def get_feature_count() -> int:
    """Return the expected feature vector length (29)."""
    return len(FEATURE_NAMES)


FEATURE_DISPLAY_NAMES: Dict[str, str] = {
    # Continuous
    'deal_size_log': 'Deal Size',
    'price_sensitivity': 'Price Sensitivity',
    'customer_loyalty': 'Customer Loyalty',
    'deal_urgency': 'Deal Urgency',
    'solution_differentiation': 'Solution Differentiation',
    'bom_line_count': 'BOM Line Count',
    'competitor_count': 'Competitor Count',
    'proposed_margin': 'Proposed Margin',
    # Binary
    'is_new_logo': 'New Logo',
    'services_attached': 'Services Attached',
    'quarter_end': 'Quarter End',
    'has_bom': 'Has BOM',
    # Categorical
    'segment_SMB': 'SMB Segment',
    'segment_MidMarket': 'Mid-Market Segment',
    'deal_reg_NotRegistered': 'Not Registered',
    'deal_reg_StandardApproved': 'Standard Approved',
    'complexity_Low': 'Low Complexity',
    'complexity_Medium': 'Medium Complexity',
    'relationship_New': 'New Relationship',
    'relationship_Good': 'Good Relationship',
    'oem_top_Cisco': 'Cisco (OEM)',
    'oem_top_Dell': 'Dell (OEM)',
    'oem_top_HPE': 'HPE (OEM)',
    'oem_top_Microsoft': 'Microsoft (OEM)',
    'oem_top_Palo Alto': 'Palo Alto (OEM)',
    'oem_top_CrowdStrike': 'CrowdStrike (OEM)',
    'product_cat_Hardware': 'Hardware',
    'product_cat_Software': 'Software',
    'product_cat_Services': 'Services',
}


def display_name(feature: str) -> str:
    return FEATURE_DISPLAY_NAMES.get(feature, feature)


# =============================================================================
# Normalization Statistics
# =============================================================================


def compute_norm_stats(deals: Sequence[Any]) -> NormStats:
    """
    Compute population mean and standard deviation per continuous feature.

    Args:
        deals: Deal records (DealContext / HistoricalDeal or anything with the
            same attributes).

    Returns:
        NormStats with one mean/std per continuous feature.

    Edge Cases:
        - Empty deal set: mean 0, std 1 for every feature
        - Constant feature: std forced to 1
        - Absent values (e.g. no achievedMargin) are excluded from that
          feature's statistics
    """
    means: Dict[str, float] = {}
    stds: Dict[str, float] = {}

    for spec in FEATURE_SPEC:
        if spec.kind != 'continuous':
            continue
        values = [v for v in (spec.source(d) for d in deals) if v is not None]
        if not values:
            means[spec.name] = 0.0
            stds[spec.name] = 1.0
            continue

        values_array = np.asarray(values, dtype=np.float64)
        mean_val = float(np.mean(values_array))
        std_val = float(np.std(values_array))  # Population std (ddof=0)

        means[spec.name] = mean_val
        stds[spec.name] = std_val if std_val > 0 else 1.0

    return NormStats(means=means, stds=stds)


# =============================================================================
# Featurize
# =============================================================================


def featurize(
    deal: Any,
    norm_stats: NormStats,
    proposed_margin: Optional[float] = None,
) -> FeatureVector:
    """
    Transform a single deal into a numeric feature vector.

    Args:
        deal: DealContext or HistoricalDeal.
        norm_stats: Statistics from compute_norm_stats().
        proposed_margin: Optional 0-1 margin replacing the deal's own
            achievedMargin for the proposed_margin feature.

    Returns:
        FeatureVector with 29 features and matching names.
    """
    features: List[float] = []

    for spec in FEATURE_SPEC:
        if spec.kind == 'continuous':
            if spec.name == 'proposed_margin' and proposed_margin is not None:
                value = proposed_margin
            else:
                value = spec.source(deal)
            if value is None:
                features.append(0.0)
                continue
            mean = norm_stats.means.get(spec.name, 0.0)
            std = norm_stats.stds.get(spec.name) or 1.0
            features.append((float(value) - mean) / std)
        elif spec.kind == 'binary':
            features.append(1.0 if spec.source(deal) else 0.0)
        else:
            raw = spec.source(deal)
            features.extend(1.0 if raw == cat else 0.0 for cat in spec.categories[:-1])

    return FeatureVector(features=features, featureNames=list(FEATURE_NAMES))
