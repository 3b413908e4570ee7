"""
Per-Customer Model Training Pipeline.

Trains a customer-specific win-probability model from the closed deals of
every organisation connected to the customer, stores the resulting model
package, and promotes the customer to the ML-assisted phase when the model
is good enough.

Key Features:
- Minimum-data gate (deal count, won count, lost count) reported as a
  ShortfallReport rather than an exception
- Synthetic counterfactual augmentation sized by the OEM x segment
  benchmark interquartile range
- Down-weighted synthetic samples (0.5) so real outcomes dominate
- Honest evaluation on real deals only
- Atomic model replacement and automatic phase promotion

Augmentation:
    For every real deal, one counterfactual sample is added:
        Won  at margin m  ->  synthetic Lost at m + wonShift
        Lost at margin m  ->  synthetic Won  at m - lostShift
    wonShift  = 0.75 * IQR / 100
    lostShift = 0.5 * wonShift
    Synthetic margins are clamped to [0.01, 0.55].

Dependencies:
- margin_advisor/services/features.py: featurize, compute_norm_stats
- margin_advisor/services/logistic_regression.py: train, evaluate, get_feature_importance
- margin_advisor/services/benchmarks.py: get_benchmark_iqr
- margin_advisor/core/repositories.py: deal, model and phase repositories
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple, Union

from margin_advisor.core.config import Settings, get_settings
from margin_advisor.core.repositories import DealRepository, ModelRepository, PhaseRepository
from margin_advisor.models.enums import DealStatus
from margin_advisor.models.schemas import (
    HistoricalDeal,
    ModelPackage,
    ShortfallReport,
    TrainingResult,
)
from margin_advisor.services.benchmarks import get_benchmark_iqr
from margin_advisor.services.features import FEATURE_NAMES, compute_norm_stats, featurize
from margin_advisor.services.logistic_regression import (
    TrainingOptions,
    evaluate,
    get_feature_importance,
    train,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Module Constants
# =============================================================================

MIN_SYNTHETIC_MARGIN: float = 0.01
MAX_SYNTHETIC_MARGIN: float = 0.55

# Shift applied to won deals, as a share of the benchmark IQR
WON_SHIFT_IQR_FACTOR: float = 0.75
LOST_SHIFT_RATIO: float = 0.5

REAL_SAMPLE_WEIGHT: float = 1.0
SYNTHETIC_SAMPLE_WEIGHT: float = 0.5

ML_PHASE: int = 2

TOP_FEATURES_RETURNED: int = 10

PACKAGE_VERSION: int = 1


# =============================================================================
# Data Collection
# =============================================================================


def _collect_closed_deals(customer_id: str, deal_repository: DealRepository) -> List[HistoricalDeal]:
    """All Won/Lost deals across the customer's connected organisations."""
    deals: List[HistoricalDeal] = []
    for org_id in deal_repository.org_ids_for_customer(customer_id):
        deals.extend(
            d for d in deal_repository.list_deals(org_id)
            if d.status in (DealStatus.WON, DealStatus.LOST)
        )
    return deals


def _shortfall(deals: List[HistoricalDeal], won: int, lost: int, settings: Settings) -> Optional[ShortfallReport]:
    if (
        len(deals) >= settings.min_training_deals
        and won >= settings.min_won_deals
        and lost >= settings.min_lost_deals
    ):
        return None
    needed = max(0, settings.min_training_deals - len(deals))
    return ShortfallReport(
        reason=f"Need {needed} more deals ({won} won, {lost} lost currently)",
        dealCount=len(deals),
        wonCount=won,
        lostCount=lost,
        shortfall=needed,
    )


# =============================================================================
# Augmentation
# =============================================================================


def margin_shifts(deal: HistoricalDeal) -> Tuple[float, float]:
    """
    Counterfactual margin shifts for a deal.

    Returns:
        (wonShift, lostShift) as 0-1 fractions.
    """
    iqr_pct = get_benchmark_iqr(deal.oem, deal.customerSegment)
    won_shift = WON_SHIFT_IQR_FACTOR * iqr_pct / 100
    return won_shift, LOST_SHIFT_RATIO * won_shift


def _clamp_margin(margin: float) -> float:
    return min(MAX_SYNTHETIC_MARGIN, max(MIN_SYNTHETIC_MARGIN, margin))


def augment_deals(deals: List[HistoricalDeal]) -> List[HistoricalDeal]:
    """
    Build one synthetic counterfactual per real deal.

    The synthetic copy carries the shifted margin as its achievedMargin and
    the flipped status as its label.
    """
    synthetic: List[HistoricalDeal] = []
    for deal in deals:
        margin = deal.achievedMargin or 0.0
        won_shift, lost_shift = margin_shifts(deal)
        if deal.status == DealStatus.WON:
            update = {'achievedMargin': _clamp_margin(margin + won_shift), 'status': DealStatus.LOST}
        else:
            update = {'achievedMargin': _clamp_margin(margin - lost_shift), 'status': DealStatus.WON}
        synthetic.append(deal.model_copy(update=update))
    return synthetic


def _label(deal: HistoricalDeal) -> int:
    return 1 if deal.status == DealStatus.WON else 0


# =============================================================================
# Training Entry Point
# =============================================================================


def train_customer_model(
    customer_id: str,
    deal_repository: DealRepository,
    model_repository: ModelRepository,
    phase_repository: Optional[PhaseRepository] = None,
    settings: Optional[Settings] = None,
) -> Union[TrainingResult, ShortfallReport]:
    """
    Train and store a customer-specific win-probability model.

    Args:
        customer_id: Customer whose connected organisations supply the deals.
        deal_repository: Source of closed deals and customer -> org links.
        model_repository: Destination for the model package.
        phase_repository: Optional phase store for automatic promotion.
        settings: Settings override; defaults to get_settings().

    Returns:
        TrainingResult on success, ShortfallReport when the customer does not
        have enough closed deals.
    """
    settings = settings or get_settings()

    real_deals = _collect_closed_deals(customer_id, deal_repository)
    won_count = sum(1 for d in real_deals if d.status == DealStatus.WON)
    lost_count = len(real_deals) - won_count

    shortfall = _shortfall(real_deals, won_count, lost_count, settings)
    if shortfall is not None:
        logger.info(f"Training skipped for customer {customer_id}: {shortfall.reason}")
        return shortfall

    synthetic_deals = augment_deals(real_deals)
    samples = real_deals + synthetic_deals
    sample_weights = (
        [REAL_SAMPLE_WEIGHT] * len(real_deals)
        + [SYNTHETIC_SAMPLE_WEIGHT] * len(synthetic_deals)
    )

    norm_stats = compute_norm_stats(samples)
    X = [featurize(d, norm_stats).features for d in samples]
    y = [_label(d) for d in samples]

    model = train(X, y, TrainingOptions(seed=settings.training_seed, sample_weights=sample_weights))

    X_real = [featurize(d, norm_stats).features for d in real_deals]
    y_real = [_label(d) for d in real_deals]
    metrics = evaluate(model, X_real, y_real)

    importance = get_feature_importance(model, FEATURE_NAMES)
    trained_at = datetime.now(timezone.utc).isoformat()

    package = ModelPackage(
        model=model,
        normStats=norm_stats,
        featureNames=list(FEATURE_NAMES),
        metrics=metrics,
        importance=importance,
        dealCount=len(real_deals),
        trainedAt=trained_at,
        version=PACKAGE_VERSION,
    )
    model_repository.replace(customer_id, package)

    phase = 1
    if phase_repository is not None:
        phase = phase_repository.get_phase(customer_id)
        if (
            metrics.auc >= settings.phase_promotion_auc
            and len(real_deals) >= settings.min_training_deals
            and phase < ML_PHASE
        ):
            phase_repository.set_phase(customer_id, ML_PHASE)
            phase = phase_repository.get_phase(customer_id)
            logger.info(f"Customer {customer_id} promoted to phase {phase} (AUC {metrics.auc:.3f})")

    logger.info(
        f"Trained model for customer {customer_id}: {len(real_deals)} real deals, "
        f"{len(synthetic_deals)} synthetic, AUC {metrics.auc:.3f}, {model.epochsRun} epochs"
    )

    return TrainingResult(
        metrics=metrics,
        dealCount=len(real_deals),
        syntheticCount=len(synthetic_deals),
        topFeatures=importance[:TOP_FEATURES_RETURNED],
        phase=phase,
        epochsRun=model.epochsRun,
    )
