"""
MLflow experiment tracking utilities for the match outcome walkthrough
"""

from __future__ import annotations

import logging
import time
from typing import Any

import mlflow
import mlflow.sklearn
import pandas as pd
from sklearn.base import BaseEstimator
from sqlalchemy.exc import OperationalError, DatabaseError

from .config import MLFLOW_EXPERIMENT_NAME
from .models.registry import TUNABLE_PARAMS

logger = logging.getLogger('matchtune')

# Database contention errors; safe to retry
_RETRYABLE_EXCEPTIONS = (OperationalError, DatabaseError)


def setup_mlflow(max_retries: int = 3) -> None:
    """
    Initialize MLflow experiment tracking with retry for parallel workers.

    MLflow defaults to sqlite:///mlflow.db when no mlruns/ directory exists.
    Parallel processes can race to create the schema, so we retry on failure.

    Args:
        max_retries: Number of retry attempts for initialization

    Raises:
        RuntimeError: If initialization fails after all retries
    """
    last_exception: Exception | None = None

    for attempt in range(max_retries):
        try:
            mlflow.set_experiment(MLFLOW_EXPERIMENT_NAME)
            mlflow.sklearn.autolog(disable=True)
            logger.debug(f"MLflow experiment: {MLFLOW_EXPERIMENT_NAME}")
            return
        except _RETRYABLE_EXCEPTIONS as e:
            last_exception = e
            logger.debug(f"MLflow setup attempt {attempt + 1}/{max_retries} failed ({type(e).__name__}): {e}")
            if attempt < max_retries - 1:
                time.sleep(1 * (attempt + 1))
        except Exception as e:
            logger.exception(f"MLflow setup failed with non-retryable error: {type(e).__name__}")
            raise RuntimeError(f"MLflow setup failed: {e}") from e

    raise RuntimeError(f"MLflow setup failed after {max_retries} attempts: {last_exception}") from last_exception


def log_tuning_run(
    metrics: pd.DataFrame,
    best: dict[str, Any],
    method: str,
    metric: str,
    artifact_paths: list[str] | None = None
) -> None:
    """
    Log one tuning run: search settings, the selected configuration, artifacts.

    Args:
        metrics: Long-format tuning metrics
        best: select_best() output
        method: 'grid' or 'optuna'
        metric: Selection metric
        artifact_paths: Files to attach (CSV reports, figures)

    Raises:
        ValueError: If best is missing tuned parameters or metrics lacks the metric
    """
    missing = set(TUNABLE_PARAMS) - best.keys()
    if missing:
        raise ValueError(f"best missing required keys: {sorted(missing)}")

    rows = metrics[(metrics['.metric'] == metric) & (metrics['.config'] == best['.config'])]
    if rows.empty:
        raise ValueError(f"No '{metric}' result for {best['.config']}")

    with mlflow.start_run(run_name=f"tuning_{method}_{metric}"):
        mlflow.log_param("method", method)
        mlflow.log_param("metric", metric)
        mlflow.log_param("n_candidates", metrics['.config'].nunique())
        mlflow.log_param("best_config", best['.config'])
        for name in TUNABLE_PARAMS:
            mlflow.log_param(name, best[name])

        mlflow.log_metric(f"best_cv_{metric}", float(rows['mean'].iloc[0]))
        mlflow.log_metric(f"best_cv_{metric}_std_err", float(rows['std_err'].iloc[0]))

        for path in artifact_paths or []:
            mlflow.log_artifact(path)


def log_final_fit(
    pipeline: BaseEstimator,
    params: dict[str, Any],
    test_metrics: dict[str, Any],
    cv_metrics: dict[str, float] | None = None
) -> None:
    """
    Log the refit model with its holdout metrics.

    Args:
        pipeline: Pipeline fitted on the full training set
        params: Selected configuration
        test_metrics: evaluate_model() output on the test set
        cv_metrics: Optional CV estimates of the same configuration

    Raises:
        ValueError: If test_metrics lacks required keys
    """
    required = {'accuracy', 'roc_auc', 'log_loss', 'sensitivity', 'specificity'}
    if not required.issubset(test_metrics.keys()):
        missing = required - test_metrics.keys()
        raise ValueError(f"test_metrics missing required keys: {sorted(missing)}")

    with mlflow.start_run(run_name="final_fit"):
        for name in TUNABLE_PARAMS:
            if name in params:
                mlflow.log_param(name, params[name])

        for key in ('accuracy', 'roc_auc', 'log_loss', 'sensitivity', 'specificity',
                    'precision', 'f1_score'):
            if key in test_metrics:
                mlflow.log_metric(f"test_{key}", float(test_metrics[key]))

        for key, value in (cv_metrics or {}).items():
            mlflow.log_metric(f"cv_{key}", float(value))

        mlflow.sklearn.log_model(pipeline, name="model")
        mlflow.set_tag("model_type", "XGBClassifier")
