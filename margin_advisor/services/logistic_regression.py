"""
Logistic Regression Engine.

Binary logistic regression trained with mini-batch gradient descent and L2
regularization, written directly against numpy so the model stays a small,
flat, JSON-serializable record (weights, bias, feature count, diagnostics).

Algorithm Overview:
    1. Shuffle row indices with a seedable generator and hold out a
       validation fraction (at least one row).
    2. For each epoch, reshuffle the training rows and walk them in
       mini-batches. For each batch:
           p      = sigmoid(w . x + b)
           grad_w = sum((p - y) * s * x) / sum(s) + lambda * w
           grad_b = sum((p - y) * s) / sum(s)
       where s are the per-sample weights (1 when not supplied). The bias
       is not regularized.
    3. After each epoch compute the weighted validation log-loss. When it
       fails to improve for `early_stopping_patience` epochs, restore the
       best weights seen and stop.

Numeric Safety:
    - Logits are clipped to [-500, 500] before exp
    - Probabilities are clipped to [1e-15, 1 - 1e-15] before log

Evaluation:
    evaluate() reports mean log-loss, accuracy at a 0.5 threshold, ROC AUC by
    trapezoidal integration (0.5 when only one class is present), and
    10 equal-width calibration bins (empty bins omitted, last bin inclusive).

Usage:
    from margin_advisor.services.logistic_regression import TrainingOptions, train, predict

    model = train(X, y, TrainingOptions(seed=42))
    p_win = predict(model, x)
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

import numpy as np

from margin_advisor.models.schemas import (
    CalibrationBin,
    EvaluationMetrics,
    FeatureImportance,
    TrainedModel,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

LOGIT_CLIP: float = 500.0

PROB_EPS: float = 1e-15

CALIBRATION_BINS: int = 10


class FeatureLengthMismatchError(ValueError):
    """Raised when a feature vector does not match the model's feature count."""

    def __init__(self, expected: int, got: int) -> None:
        self.expected = expected
        self.got = got
        super().__init__(f"Feature length mismatch: expected {expected}, got {got}")


@dataclass
class TrainingOptions:
    """
    Hyperparameters for train().

    Attributes:
        learning_rate: Gradient descent step size.
        l2_lambda: L2 regularization strength applied to weights only.
        epochs: Maximum number of passes over the training rows.
        batch_size: Mini-batch size.
        validation_split: Fraction of rows held out for early stopping.
        early_stopping_patience: Non-improving epochs tolerated before stopping.
        seed: Seed for all shuffles; None draws fresh entropy.
        sample_weights: Optional non-negative weight per row.
    """
    learning_rate: float = 0.01
    l2_lambda: float = 0.01
    epochs: int = 500
    batch_size: int = 32
    validation_split: float = 0.2
    early_stopping_patience: int = 20
    seed: Optional[int] = None
    sample_weights: Optional[Sequence[float]] = None


# =============================================================================
# Numeric Helpers
# =============================================================================


def _sigmoid(z: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-np.clip(z, -LOGIT_CLIP, LOGIT_CLIP)))


def _log_loss(y: np.ndarray, p: np.ndarray) -> np.ndarray:
    pc = np.clip(p, PROB_EPS, 1.0 - PROB_EPS)
    return -(y * np.log(pc) + (1.0 - y) * np.log(1.0 - pc))


def _validate(X: np.ndarray, y: np.ndarray, sample_weights: Optional[np.ndarray]) -> None:
    if X.ndim != 2:
        raise ValueError("X must be a 2-D array of feature vectors")
    if X.shape[0] != y.shape[0]:
        raise ValueError(f"X has {X.shape[0]} rows but y has {y.shape[0]} labels")
    if X.shape[0] == 0:
        raise ValueError("X must not be empty")
    if X.shape[1] == 0:
        raise ValueError("Feature vectors must have at least one feature")
    bad = np.flatnonzero((y != 0) & (y != 1))
    if bad.size:
        raise ValueError(f"y[{bad[0]}] = {y[bad[0]]}, expected 0 or 1")
    if sample_weights is not None:
        if sample_weights.shape[0] != X.shape[0]:
            raise ValueError(
                f"sample_weights has {sample_weights.shape[0]} entries but X has {X.shape[0]} rows"
            )
        negative = np.flatnonzero(~(sample_weights >= 0))
        if negative.size:
            raise ValueError(
                f"sample_weights[{negative[0]}] = {sample_weights[negative[0]]}, "
                f"expected non-negative number"
            )


# =============================================================================
# Training
# =============================================================================


def train(
    X: Sequence[Sequence[float]],
    y: Sequence[int],
    options: Optional[TrainingOptions] = None,
) -> TrainedModel:
    """
    Train a logistic regression model.

    Args:
        X: Feature matrix, one row per sample.
        y: Labels, each 0 or 1.
        options: Hyperparameters; defaults when None.

    Returns:
        TrainedModel with the best-validation weights and loss diagnostics.

    Raises:
        ValueError: On mismatched lengths, empty input, zero-width rows,
            non-binary labels or invalid sample weights.
    """
    opts = options or TrainingOptions()
    X_arr = np.asarray(X, dtype=np.float64)
    y_arr = np.asarray(y, dtype=np.float64)
    sw = None if opts.sample_weights is None else np.asarray(opts.sample_weights, dtype=np.float64)
    _validate(X_arr, y_arr, sw)

    n_samples, n_features = X_arr.shape
    sample_w = sw if sw is not None else np.ones(n_samples, dtype=np.float64)

    rng = np.random.default_rng(opts.seed)
    indices = rng.permutation(n_samples)

    val_size = max(1, int(np.floor(n_samples * opts.validation_split)))
    train_idx = indices[: n_samples - val_size]
    val_idx = indices[n_samples - val_size:]

    weights = np.zeros(n_features, dtype=np.float64)
    bias = 0.0

    def weighted_loss(idx: np.ndarray, w: np.ndarray, b: float) -> float:
        if idx.size == 0:
            return 0.0
        total_w = float(np.sum(sample_w[idx]))
        if total_w <= 0:
            return 0.0
        p = _sigmoid(X_arr[idx] @ w + b)
        return float(np.sum(_log_loss(y_arr[idx], p) * sample_w[idx]) / total_w)

    best_val_loss = np.inf
    best_weights = weights.copy()
    best_bias = bias
    patience_counter = 0
    epochs_run = 0

    for epoch in range(opts.epochs):
        epochs_run = epoch + 1
        shuffled = rng.permutation(train_idx)

        for start in range(0, shuffled.size, opts.batch_size):
            batch = shuffled[start:start + opts.batch_size]
            xb = X_arr[batch]
            wb = sample_w[batch]
            divisor = float(np.sum(wb))
            if divisor <= 0:
                continue

            err = (_sigmoid(xb @ weights + bias) - y_arr[batch]) * wb
            grad_w = (err @ xb) / divisor + opts.l2_lambda * weights
            grad_b = float(np.sum(err)) / divisor

            weights = weights - opts.learning_rate * grad_w
            bias -= opts.learning_rate * grad_b

        val_loss = weighted_loss(val_idx, weights, bias)
        if val_loss < best_val_loss:
            best_val_loss = val_loss
            best_weights = weights.copy()
            best_bias = bias
            patience_counter = 0
        else:
            patience_counter += 1
            if patience_counter >= opts.early_stopping_patience:
                weights = best_weights
                bias = best_bias
                logger.debug(f"Early stopping after {epochs_run} epochs (best val loss {best_val_loss:.4f})")
                break

    return TrainedModel(
        weights=[float(w) for w in weights],
        bias=float(bias),
        featureCount=n_features,
        epochsRun=epochs_run,
        trainLoss=weighted_loss(train_idx, weights, bias),
        valLoss=weighted_loss(val_idx, weights, bias),
        trainedAt=datetime.now(timezone.utc).isoformat(),
    )


# =============================================================================
# Prediction
# =============================================================================


def predict(model: TrainedModel, features: Sequence[float]) -> float:
    """
    Predict the positive-class probability for one feature vector.

    Raises:
        FeatureLengthMismatchError: When len(features) != model.featureCount.
    """
    if len(features) != model.featureCount:
        raise FeatureLengthMismatchError(model.featureCount, len(features))
    z = float(np.dot(np.asarray(model.weights, dtype=np.float64), np.asarray(features, dtype=np.float64)))
    return float(_sigmoid(np.float64(z + model.bias)))


def predict_batch(model: TrainedModel, X: Sequence[Sequence[float]]) -> List[float]:
    return [predict(model, row) for row in X]


# =============================================================================
# Evaluation
# =============================================================================


def compute_auc(preds: Sequence[float], labels: Sequence[int]) -> float:
    """
    Area under the ROC curve by trapezoidal integration.

    Rows are ranked by descending prediction; tied predictions are treated as
    a single threshold so the result does not depend on row order.

    Returns 0.5 when there are no positives or no negatives.
    """
    p = np.asarray(preds, dtype=np.float64)
    y = np.asarray(labels, dtype=np.float64)
    n_pos = int(np.sum(y == 1))
    n_neg = int(y.size - n_pos)
    if n_pos == 0 or n_neg == 0:
        return 0.5

    order = np.argsort(-p, kind='mergesort')
    p_sorted = p[order]
    y_sorted = y[order]

    tps = np.cumsum(y_sorted)
    fps = np.cumsum(1.0 - y_sorted)

    # Keep the last index of each run of tied predictions
    distinct = np.r_[np.flatnonzero(np.diff(p_sorted)), p_sorted.size - 1]
    tpr = np.r_[0.0, tps[distinct] / n_pos]
    fpr = np.r_[0.0, fps[distinct] / n_neg]

    return float(np.sum(np.diff(fpr) * (tpr[1:] + tpr[:-1]) / 2.0))


def compute_calibration(preds: Sequence[float], labels: Sequence[int]) -> List[CalibrationBin]:
    """10 equal-width bins of mean predicted vs. actual rate; empty bins omitted."""
    p = np.asarray(preds, dtype=np.float64)
    y = np.asarray(labels, dtype=np.float64)
    bins: List[CalibrationBin] = []

    for b in range(CALIBRATION_BINS):
        lo = b / CALIBRATION_BINS
        hi = (b + 1) / CALIBRATION_BINS
        if b < CALIBRATION_BINS - 1:
            mask = (p >= lo) & (p < hi)
        else:
            mask = (p >= lo) & (p <= hi)
        count = int(np.sum(mask))
        if count == 0:
            continue
        bins.append(CalibrationBin(
            bucket=f"{lo:.1f}-{hi:.1f}",
            predicted=float(np.mean(p[mask])),
            actual=float(np.mean(y[mask])),
            count=count,
        ))

    return bins


def evaluate(
    model: TrainedModel,
    X: Sequence[Sequence[float]],
    y: Sequence[int],
) -> EvaluationMetrics:
    """
    Evaluate a model on labelled data.

    Args:
        model: Trained model.
        X: Feature rows.
        y: 0/1 labels.

    Returns:
        EvaluationMetrics with auc, logLoss, accuracy, calibration and n.

    Raises:
        ValueError: When X is empty or X and y differ in length.
    """
    if len(X) == 0:
        raise ValueError("Cannot evaluate on an empty dataset")
    if len(X) != len(y):
        raise ValueError(f"X has {len(X)} rows but y has {len(y)} labels")

    preds = np.asarray(predict_batch(model, X), dtype=np.float64)
    labels = np.asarray(y, dtype=np.float64)

    return EvaluationMetrics(
        auc=compute_auc(preds, labels),
        logLoss=float(np.mean(_log_loss(labels, preds))),
        accuracy=float(np.mean((preds >= 0.5).astype(np.float64) == labels)),
        calibration=compute_calibration(preds, labels),
        n=int(labels.size),
    )


def get_feature_importance(model: TrainedModel, feature_names: Sequence[str]) -> List[FeatureImportance]:
    """Rank features by absolute weight, largest first."""
    if len(feature_names) != len(model.weights):
        raise ValueError(
            f"feature_names length ({len(feature_names)}) != model weights length ({len(model.weights)})"
        )
    ranked = [
        FeatureImportance(
            name=name,
            weight=weight,
            absWeight=abs(weight),
            direction='positive' if weight >= 0 else 'negative',
        )
        for name, weight in zip(feature_names, model.weights)
    ]
    ranked.sort(key=lambda fi: fi.absWeight, reverse=True)
    return ranked


# =============================================================================
# Serialization
# =============================================================================

REQUIRED_MODEL_FIELDS: Tuple[str, ...] = ('weights', 'bias', 'featureCount')


def serialize_model(model: TrainedModel) -> str:
    return model.model_dump_json()


def deserialize_model(payload: str) -> TrainedModel:
    """
    Rebuild a model from serialize_model() output.

    Raises:
        ValueError: When the payload is not a JSON object or lacks weights,
            bias or featureCount.
    """
    data = json.loads(payload)
    if not isinstance(data, dict):
        raise ValueError("Serialized model must be a JSON object")
    for key in REQUIRED_MODEL_FIELDS:
        if key not in data:
            raise ValueError(f"Missing required field: {key}")
    return TrainedModel.model_validate(data)
