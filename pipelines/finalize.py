#!/usr/bin/env python
"""
Final Fit Pipeline

Selects the best tuned configuration, refits it on the whole training split,
and evaluates it once on the held-out test split.

The test split is touched exactly once, here. Everything upstream (tuning,
selection) only sees cross-validation folds of the training split.

Usage:
    python -m pipelines.finalize
    python -m pipelines.finalize --metric=log_loss --no-mlflow
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any

import joblib
import pandas as pd

project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from matchtune.config import (
    FIGURES_DIR, FINAL_ARTIFACTS, TUNING_REPORTS, N_TREES, TUNING_METRICS,
    setup_logging, ensure_directories, load_json, pipeline_step, log_scores,
)
from matchtune.data import load_splits, split_features_target
from matchtune.evaluation import evaluate_model
from matchtune.models import build_pipeline
from matchtune.models.registry import TUNABLE_PARAMS
from matchtune.tuning_utils import select_best
from matchtune.visualization import plot_roc_curve, plot_confusion_matrix, plot_feature_importance
from matchtune.mlflow_utils import setup_mlflow, log_final_fit

logger = logging.getLogger('matchtune')

MODEL_NAME = 'XGBoost'


def load_tuning_outputs() -> tuple[pd.DataFrame, dict[str, Any]]:
    """
    Read the metrics table and run summary written by the tune step.

    Raises:
        FileNotFoundError: If tuning has not been run
    """
    metrics_path = TUNING_REPORTS['metrics']
    if not metrics_path.exists():
        raise FileNotFoundError(
            f"No tuning results at {metrics_path}. Run: python -m pipelines.tune"
        )
    metrics = pd.read_csv(metrics_path)

    summary: dict[str, Any] = {}
    if TUNING_REPORTS['summary'].exists():
        summary = load_json(TUNING_REPORTS['summary'])
    return metrics, summary


def _safe_json_write(data: dict[str, Any], path: Path) -> None:
    """
    Write JSON via a temporary file and atomic replace.

    Raises:
        RuntimeError: If the write fails
    """
    temp_path = path.with_name(f".{path.name}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(temp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
        temp_path.replace(path)
        logger.debug(f"Wrote {path}")
    except (OSError, TypeError) as e:
        if temp_path.exists():
            temp_path.unlink()
        raise RuntimeError(f"Failed to write JSON to {path}: {e}") from e


def finalize_model(metric: str | None = None, track: bool = True) -> dict[str, Any]:
    """
    Select, refit, evaluate and save the final model.

    Args:
        metric: Selection metric (default: the one tuning optimized)
        track: Log the fit to MLflow

    Returns:
        Dict with the selected parameters, test metrics and CV estimates
    """
    metrics, summary = load_tuning_outputs()
    metric = metric or summary.get('metric', 'roc_auc')
    n_trees = int(summary.get('n_trees', N_TREES))

    best = select_best(metrics, metric)
    cv_rows = metrics[metrics['.config'] == best['.config']].set_index('.metric')
    cv_metrics = {m: float(cv_rows.loc[m, 'mean']) for m in cv_rows.index}

    train, test = load_splits()
    X_train, y_train = split_features_target(train)
    X_test, y_test = split_features_target(test)

    pipeline = build_pipeline(best, X_train.shape[1], n_estimators=n_trees)

    start = time.time()
    pipeline.fit(X_train, y_train)
    training_time = time.time() - start
    logger.info(f"Refit {best['.config']} on {len(X_train):,} matches in {training_time:.1f}s")

    y_proba = pipeline.predict_proba(X_test)[:, 1]
    y_pred = pipeline.predict(X_test)
    test_metrics = evaluate_model(y_test, y_pred, y_proba, MODEL_NAME)
    log_scores(logger, {k: v for k, v in test_metrics.items() if k != 'model'}, 'test', config=best['.config'])

    plot_roc_curve(y_test, y_proba, MODEL_NAME, save_path=FIGURES_DIR / 'roc_curve.png')
    plot_confusion_matrix(y_test, y_pred, MODEL_NAME, save_path=FIGURES_DIR / 'confusion_matrix.png')
    importance = plot_feature_importance(
        pipeline, list(X_train.columns), save_path=FIGURES_DIR / 'feature_importance.png'
    )

    FINAL_ARTIFACTS['model'].parent.mkdir(parents=True, exist_ok=True)
    joblib.dump(pipeline, FINAL_ARTIFACTS['model'])
    logger.debug(f"Saved model: {FINAL_ARTIFACTS['model']}")

    metadata = {
        'config': best['.config'],
        'selection_metric': metric,
        'tuning_method': summary.get('method'),
        'params': {name: best[name] for name in TUNABLE_PARAMS},
        'n_trees': n_trees,
        'features': list(X_train.columns),
        'cv_metrics': cv_metrics,
        'test_metrics': {k: float(v) for k, v in test_metrics.items() if k != 'model'},
        'n_train': int(len(X_train)),
        'n_test': int(len(X_test)),
        'training_time_seconds': float(training_time),
        'timestamp': pd.Timestamp.now().isoformat(),
    }
    _safe_json_write(metadata, FINAL_ARTIFACTS['metadata'])

    if track:
        setup_mlflow()
        log_final_fit(pipeline, best, test_metrics, cv_metrics)

    return {
        'best': best,
        'test_metrics': test_metrics,
        'cv_metrics': cv_metrics,
        'importance': importance,
        'pipeline': pipeline,
    }


def print_results(result: dict[str, Any]) -> None:
    """Print the selected configuration and the test metrics table."""
    best = result['best']
    print(f"\nSelected configuration: {best['.config']}")
    print("-" * 50)
    for name in TUNABLE_PARAMS:
        print(f"{name:<20} {best[name]:>14.6g}")

    print(f"\n{'Metric':<20} {'CV':>12} {'Test':>12}")
    print("-" * 50)
    for key in ('accuracy', 'roc_auc', 'log_loss', 'sensitivity', 'specificity', 'f1_score'):
        cv_value = result['cv_metrics'].get(key)
        cv_str = f"{cv_value:.4f}" if cv_value is not None else "-"
        print(f"{key:<20} {cv_str:>12} {result['test_metrics'][key]:>12.4f}")
    print("-" * 50 + "\n")


def main() -> None:
    parser = argparse.ArgumentParser(description='Refit the best configuration and evaluate on the test split')
    parser.add_argument('--metric', choices=list(TUNING_METRICS), default=None,
                        help='Selection metric (default: the tuning metric)')
    parser.add_argument('--no-mlflow', action='store_true', help='Skip MLflow tracking')
    parser.add_argument('--json-logs', action='store_true', help='Log one JSON object per line')
    parser.add_argument('--log-file', type=Path, default=None, help='Also write logs to this file')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')
    args = parser.parse_args()

    setup_logging(logging.DEBUG if args.verbose else logging.INFO,
                  json_format=args.json_logs, log_file=args.log_file)
    ensure_directories()

    with pipeline_step(logger, 'finalize') as stats:
        result = finalize_model(metric=args.metric, track=not args.no_mlflow)
        stats['config'] = result['best']['.config']
        stats['test_roc_auc'] = float(result['test_metrics']['roc_auc'])

    print_results(result)


if __name__ == '__main__':
    main()
