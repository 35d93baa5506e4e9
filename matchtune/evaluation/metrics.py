"""
Evaluation metrics for the match outcome classifier.
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np
from numpy.typing import ArrayLike
from sklearn.base import BaseEstimator
from sklearn.metrics import (
    accuracy_score, confusion_matrix, precision_score, recall_score,
    f1_score, roc_auc_score, log_loss,
)
from sklearn.model_selection import cross_val_score, StratifiedKFold

from ..config import RANDOM_STATE, CV_FOLDS, PRIMARY_METRIC

logger = logging.getLogger('matchtune')

# Metric name -> sklearn scorer name. Scorers are higher-is-better, so
# log loss is negated during search and flipped back when collected.
SCORING: dict[str, str] = {
    'accuracy': 'accuracy',
    'roc_auc': 'roc_auc',
    'log_loss': 'neg_log_loss',
}

# True where larger values are better
METRIC_DIRECTIONS: dict[str, bool] = {
    'accuracy': True,
    'roc_auc': True,
    'log_loss': False,
}


def get_cv_splitter(n_splits: int | None = None) -> StratifiedKFold:
    """
    Get configured StratifiedKFold splitter.

    Every candidate is scored on these same folds.

    Args:
        n_splits: Number of folds (default: CV_FOLDS from config)

    Returns:
        Configured StratifiedKFold instance
    """
    return StratifiedKFold(
        n_splits=n_splits or CV_FOLDS,
        shuffle=True,
        random_state=RANDOM_STATE
    )


def unpack_confusion_matrix(y_true: ArrayLike, y_pred: ArrayLike) -> tuple[int, int, int, int]:
    """
    Unpack confusion matrix into (tn, fp, fn, tp).

    Args:
        y_true: True labels
        y_pred: Predicted labels

    Returns:
        Tuple of (tn, fp, fn, tp)
    """
    cm = confusion_matrix(y_true, y_pred, labels=[0, 1])
    return tuple(int(v) for v in cm.ravel())


def calculate_sensitivity_specificity(
    y_true: ArrayLike,
    y_pred: ArrayLike
) -> tuple[float, float]:
    """
    Compute sensitivity and specificity from predictions.

    Returns:
        tuple: (sensitivity, specificity); 0.0 where a class is absent
    """
    tn, fp, fn, tp = unpack_confusion_matrix(y_true, y_pred)
    sensitivity = tp / (tp + fn) if (tp + fn) > 0 else 0.0
    specificity = tn / (tn + fp) if (tn + fp) > 0 else 0.0
    return sensitivity, specificity


def evaluate_model(
    y_true: ArrayLike,
    y_pred: ArrayLike,
    y_pred_proba: ArrayLike | None = None,
    model_name: str = "Model"
) -> dict[str, Any]:
    """
    Holdout evaluation of a fitted classifier.

    Args:
        y_true: True binary labels
        y_pred: Predicted binary labels
        y_pred_proba: Predicted probabilities for the positive class
        model_name: Identifier for logging

    Returns:
        dict with accuracy, sensitivity, specificity, precision, f1_score,
        and roc_auc/log_loss when probabilities are given
    """
    sensitivity, specificity = calculate_sensitivity_specificity(y_true, y_pred)

    results = {
        'model': model_name,
        'accuracy': accuracy_score(y_true, y_pred),
        'sensitivity': sensitivity,
        'specificity': specificity,
        'precision': precision_score(y_true, y_pred, zero_division=0),
        'recall': recall_score(y_true, y_pred, zero_division=0),
        'f1_score': f1_score(y_true, y_pred, zero_division=0),
    }

    if y_pred_proba is not None:
        proba_arr = np.asarray(y_pred_proba)
        if np.any(proba_arr < 0) or np.any(proba_arr > 1):
            logger.warning(
                f"y_pred_proba contains values outside [0, 1] range "
                f"(min={proba_arr.min():.3f}, max={proba_arr.max():.3f}). "
                f"ROC AUC is rank-based and unaffected; log loss will be clipped."
            )
        results['roc_auc'] = roc_auc_score(y_true, proba_arr)
        results['log_loss'] = log_loss(y_true, np.clip(proba_arr, 1e-15, 1 - 1e-15), labels=[0, 1])

    logger.debug(f"{model_name}: accuracy={results['accuracy']:.4f}"
                 + (f", roc_auc={results['roc_auc']:.4f}" if 'roc_auc' in results else ""))
    return results


def run_cv_evaluation(
    pipeline: BaseEstimator,
    X_train: ArrayLike,
    y_train: ArrayLike,
    experiment_name: str,
    metric: str = PRIMARY_METRIC,
    n_jobs: int = 1
) -> dict[str, Any]:
    """Cross-validate a single configuration on the shared folds."""
    if metric not in SCORING:
        raise ValueError(f"Unknown metric '{metric}'. Valid options: {list(SCORING)}")

    cv = get_cv_splitter()
    cv_scores = cross_val_score(pipeline, X_train, y_train, cv=cv, scoring=SCORING[metric], n_jobs=n_jobs)
    if not METRIC_DIRECTIONS[metric]:
        cv_scores = -cv_scores

    logger.debug(f"{experiment_name}: CV {metric}={cv_scores.mean():.4f} +/- {cv_scores.std(ddof=1):.4f}")

    return {
        'model': experiment_name,
        'metric': metric,
        'cv_mean': cv_scores.mean(),
        'cv_std': cv_scores.std(ddof=1),
        'cv_min': cv_scores.min(),
        'cv_max': cv_scores.max(),
    }
