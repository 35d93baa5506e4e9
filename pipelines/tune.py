#!/usr/bin/env python
"""
Boosted Tree Hyperparameter Tuning Pipeline

Scores candidate configurations of the six tuned parameters with 5-fold
stratified cross-validation on the training split.

Methods:
- grid:   Latin hypercube (default) or regular grid, evaluated by GridSearchCV
          with candidate x fold fits spread across --n-jobs workers
- optuna: sequential TPE search; studies persist to SQLite (optuna_studies.db)
          and resume automatically

Usage:
    # Space-filling grid of 30 candidates on all cores
    python -m pipelines.tune

    # Larger grid, fewer trees for a quick look
    python -m pipelines.tune --grid-size=60 --n-trees=300

    # Sequential search, resuming previous progress
    python -m pipelines.tune --method=optuna --n-trials=100

    # Check status of existing Optuna studies
    python -m pipelines.tune --status

    # Structured JSON logs for aggregation
    python -m pipelines.tune --json-logs --log-file=reports/tune.jsonl
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any

import pandas as pd

project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from matchtune.config import (
    FIGURES_DIR, TUNING_REPORTS, OPTUNA_STORAGE_PATH, OPTUNA_N_TRIALS_DEFAULT,
    GRID_SIZE, GRID_METHODS, REGULAR_GRID_LEVELS, N_TREES, PRIMARY_METRIC, TUNING_METRICS,
    setup_logging, ensure_directories, pipeline_step, log_scores,
)
from matchtune.data import load_splits, split_features_target
from matchtune.tuning_utils import (
    build_search_grid,
    run_grid_search,
    collect_metrics,
    summarize_metrics,
    show_best,
    select_best,
    run_optuna_study,
    study_to_metrics,
    list_existing_studies,
    get_study_progress,
)
from matchtune.visualization import plot_tuning_results, plot_optuna_history
from matchtune.mlflow_utils import setup_mlflow, log_tuning_run

logger = logging.getLogger('matchtune')


def run_tuning(
    method: str = 'grid',
    metric: str = PRIMARY_METRIC,
    grid_type: str = 'latin_hypercube',
    grid_size: int = GRID_SIZE,
    levels: int = REGULAR_GRID_LEVELS,
    n_trials: int = OPTUNA_N_TRIALS_DEFAULT,
    n_jobs: int = -1,
    n_trees: int = N_TREES,
    fresh: bool = False,
    track: bool = True,
) -> dict[str, Any]:
    """
    Tune on the training split and write reports.

    Args:
        method: 'grid' or 'optuna'
        metric: Selection metric
        grid_type: 'latin_hypercube' or 'regular' (grid method)
        grid_size: Latin hypercube candidates (grid method)
        levels: Values per parameter (regular grids)
        n_trials: Total trials (optuna method)
        n_jobs: GridSearchCV workers (grid method)
        n_trees: Fixed number of boosting rounds
        fresh: Discard an existing Optuna study
        track: Log the run to MLflow

    Returns:
        Dict with the metrics table, best configuration and timing

    Raises:
        RuntimeError: If tuning fails or produces no usable results
    """
    train, _ = load_splits()
    X_train, y_train = split_features_target(train)
    overrides = {'n_estimators': n_trees}

    figures = [FIGURES_DIR / f'tuning_{method}_{metric}.png']
    start = time.time()
    try:
        if method == 'grid':
            grid = build_search_grid(X_train.shape[1], size=grid_size, method=grid_type, levels=levels)
            search = run_grid_search(X_train, y_train, grid, n_jobs=n_jobs, **overrides)
            metrics = collect_metrics(search, grid)
        elif method == 'optuna':
            result = run_optuna_study(X_train, y_train, metric=metric, n_trials=n_trials,
                                      fresh=fresh, **overrides)
            metrics = study_to_metrics(result['study'], metric)
            figures.append(FIGURES_DIR / f'optuna_history_{metric}.png')
            plot_optuna_history(result['study'], save_path=figures[-1])
        else:
            raise ValueError(f"Unknown method '{method}'")
    except Exception as e:
        raise RuntimeError(f"Tuning failed ({method}): {type(e).__name__}: {e}") from e
    elapsed = time.time() - start

    if metrics.empty or metric not in set(metrics['.metric']):
        raise RuntimeError(
            f"No '{metric}' results from {method} tuning. "
            f"Check that the training split loaded correctly."
        )

    metrics.to_csv(TUNING_REPORTS['metrics'], index=False)
    summarize_metrics(metrics).to_csv(TUNING_REPORTS['results'], index=False)
    plot_tuning_results(metrics, metric=metric, save_path=figures[0])

    best = select_best(metrics, metric)
    best_rows = metrics[metrics['.config'] == best['.config']]
    log_scores(logger, dict(zip(best_rows['.metric'], best_rows['mean'])), 'cv', config=best['.config'])

    summary = {
        'method': method,
        'metric': metric,
        'n_trees': n_trees,
        'n_candidates': int(metrics['.config'].nunique()),
        'n_features': int(X_train.shape[1]),
        'best': best,
        'elapsed_minutes': elapsed / 60,
    }
    with open(TUNING_REPORTS['summary'], 'w') as f:
        json.dump(summary, f, indent=2)

    logger.info(f"Tuning ({method}) completed: {summary['n_candidates']} candidates in {elapsed / 60:.1f} minutes")

    if track:
        setup_mlflow()
        log_tuning_run(
            metrics, best, method, metric,
            artifact_paths=[str(TUNING_REPORTS['metrics']), str(TUNING_REPORTS['summary'])]
                           + [str(p) for p in figures],
        )

    return {**summary, 'metrics': metrics}


def print_best(metrics: pd.DataFrame, metric: str, n: int = 5) -> None:
    """Print the top candidates for a metric."""
    best = show_best(metrics, metric, n=n)
    print(f"\nTop {len(best)} candidates by {metric}:")
    print("-" * 100)
    print(best.to_string(index=False, float_format=lambda v: f"{v:.4g}"))
    print("-" * 100 + "\n")


def show_tuning_status() -> None:
    """Display status of all Optuna studies."""
    studies = list_existing_studies()

    if not studies:
        print(f"No studies found in {OPTUNA_STORAGE_PATH}")
        return

    print(f"\nOptuna Studies ({OPTUNA_STORAGE_PATH}):")
    print("-" * 70)
    print(f"{'Study Name':<40} {'Done':>6} {'Pruned':>7} {'Best':>10}")
    print("-" * 70)

    for study_name in sorted(studies):
        progress = get_study_progress(study_name)
        if progress:
            best_str = f"{progress['best_value']:.4f}" if progress['best_value'] is not None else "N/A"
            print(
                f"{study_name:<40} "
                f"{progress['n_trials_completed']:>6} "
                f"{progress['n_trials_pruned']:>7} "
                f"{best_str:>10}"
            )

    print("-" * 70)
    print(f"Total: {len(studies)} studies\n")


def main() -> None:
    """CLI entrypoint for hyperparameter tuning."""
    parser = argparse.ArgumentParser(
        description='Boosted tree hyperparameter tuning',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m pipelines.tune
  python -m pipelines.tune --grid-type=regular --levels=2
  python -m pipelines.tune --method=optuna --n-trials=100 --fresh
  python -m pipelines.tune --status
        """
    )
    parser.add_argument('--method', choices=['grid', 'optuna'], default='grid', help='Search method')
    parser.add_argument('--metric', choices=list(TUNING_METRICS), default=PRIMARY_METRIC,
                        help='Metric used to pick the best candidate')
    parser.add_argument('--grid-type', choices=list(GRID_METHODS), default='latin_hypercube')
    parser.add_argument('--grid-size', type=int, default=GRID_SIZE, help='Latin hypercube candidates')
    parser.add_argument('--levels', type=int, default=REGULAR_GRID_LEVELS, help='Levels per parameter (regular grid)')
    parser.add_argument('--n-trials', type=int, default=OPTUNA_N_TRIALS_DEFAULT, help='Optuna trials')
    parser.add_argument('--n-jobs', type=int, default=-1, help='Parallel workers for grid search')
    parser.add_argument('--n-trees', type=int, default=N_TREES, help='Boosting rounds (fixed)')
    parser.add_argument('--fresh', action='store_true', help='Delete the existing Optuna study first')
    parser.add_argument('--no-mlflow', action='store_true', help='Skip MLflow tracking')
    parser.add_argument('--status', action='store_true', help='Show Optuna study status and exit')
    parser.add_argument('--json-logs', action='store_true', help='Log one JSON object per line')
    parser.add_argument('--log-file', type=Path, default=None, help='Also write logs to this file')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')
    args = parser.parse_args()

    if args.status:
        show_tuning_status()
        return

    setup_logging(logging.DEBUG if args.verbose else logging.INFO,
                  json_format=args.json_logs, log_file=args.log_file)
    ensure_directories()

    with pipeline_step(logger, 'tune') as stats:
        result = run_tuning(
            method=args.method,
            metric=args.metric,
            grid_type=args.grid_type,
            grid_size=args.grid_size,
            levels=args.levels,
            n_trials=args.n_trials,
            n_jobs=args.n_jobs,
            n_trees=args.n_trees,
            fresh=args.fresh,
            track=not args.no_mlflow,
        )
        stats['n_candidates'] = result['n_candidates']
        stats['best_config'] = result['best']['.config']

    print_best(result['metrics'], args.metric)


if __name__ == '__main__':
    main()
