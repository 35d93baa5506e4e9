"""
Hyperparameter tuning utilities for the match outcome classifier.

Two ways to search the same space:
- grid: a fixed set of candidates (space-filling Latin hypercube or regular
  levels) scored by GridSearchCV on shared CV folds
- optuna: sequential TPE search with a persistent SQLite study

Both produce the same long-format metrics table (one row per candidate and
metric), so selection and plotting don't care which search ran.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Callable, Sequence

import numpy as np
import optuna
import pandas as pd
from numpy.typing import ArrayLike
from optuna.samplers import TPESampler
from scipy.stats import qmc
from sklearn.model_selection import GridSearchCV, cross_val_score
from sklearn.pipeline import Pipeline

from .config import (
    RANDOM_STATE, CV_FOLDS, GRID_SIZE, GRID_METHODS, REGULAR_GRID_LEVELS,
    TUNING_METRICS, PRIMARY_METRIC, OPTUNA_STORAGE_PATH, OPTUNA_N_TRIALS_DEFAULT,
    GridMethod, log_execution_time,
)
from .evaluation import SCORING, METRIC_DIRECTIONS, get_cv_splitter
from .models import build_pipeline, create_xgboost_model
from .models.registry import TUNABLE_PARAMS, PARAM_ALIASES, INT_PARAMS, finalize_space, to_xgb_params

logger = logging.getLogger('matchtune')

optuna.logging.set_verbosity(optuna.logging.WARNING)

CONFIG_COLUMN = '.config'
METRIC_COLUMN = '.metric'


# =============================================================================
# GRID CONSTRUCTION
# =============================================================================

def _scale_unit(u: np.ndarray, space: tuple) -> np.ndarray:
    """Map unit-interval samples onto a SEARCH_SPACE range."""
    ptype, low, high = space
    if ptype == 'int':
        # Equal-width bins per integer, so both ends are reachable
        return np.clip(np.floor(low + u * (high - low + 1)), low, high).astype(int)
    elif ptype == 'float':
        return low + u * (high - low)
    elif ptype == 'log10':
        return 10 ** (low + u * (high - low))
    raise ValueError(f"Unknown parameter type: {ptype}")


def _regular_levels(space: tuple, levels: int) -> np.ndarray:
    """Evenly spaced levels across a SEARCH_SPACE range."""
    ptype, low, high = space
    if ptype == 'int':
        return np.unique(np.round(np.linspace(low, high, levels)).astype(int))
    elif ptype == 'float':
        return np.linspace(low, high, levels)
    elif ptype == 'log10':
        return 10 ** np.linspace(low, high, levels)
    raise ValueError(f"Unknown parameter type: {ptype}")


def build_search_grid(
    n_features: int,
    size: int = GRID_SIZE,
    method: GridMethod = 'latin_hypercube',
    levels: int = REGULAR_GRID_LEVELS,
) -> pd.DataFrame:
    """
    Build the candidate grid for the six tuned parameters.

    Args:
        n_features: Number of model features (bounds mtry)
        size: Number of candidates for Latin hypercube grids
        method: 'latin_hypercube' (space-filling sample) or 'regular'
            (every combination of `levels` values per parameter)
        levels: Values per parameter for regular grids

    Returns:
        DataFrame with a '.config' label and one column per parameter,
        duplicate candidates removed

    Raises:
        ValueError: On unknown method or non-positive size/levels
    """
    if method not in GRID_METHODS:
        raise ValueError(f"Unknown grid method '{method}'. Valid options: {GRID_METHODS}")

    space = finalize_space(n_features)

    if method == 'latin_hypercube':
        if size < 1:
            raise ValueError(f"size must be >= 1, got {size}")
        sampler = qmc.LatinHypercube(d=len(TUNABLE_PARAMS), rng=np.random.default_rng(RANDOM_STATE))
        unit = sampler.random(n=size)
        grid = pd.DataFrame({
            name: _scale_unit(unit[:, i], space[name])
            for i, name in enumerate(TUNABLE_PARAMS)
        })
    else:
        if levels < 1:
            raise ValueError(f"levels must be >= 1, got {levels}")
        values = [_regular_levels(space[name], levels) for name in TUNABLE_PARAMS]
        grid = pd.DataFrame(list(itertools.product(*values)), columns=list(TUNABLE_PARAMS))

    grid = grid.drop_duplicates().reset_index(drop=True)
    for name in INT_PARAMS:
        grid[name] = grid[name].astype(int)
    grid.insert(0, CONFIG_COLUMN, [f"Model{i + 1:03d}" for i in range(len(grid))])

    logger.info(f"Search grid ({method}): {len(grid)} candidates x {len(TUNABLE_PARAMS)} parameters")
    return grid


def grid_to_param_grid(grid: pd.DataFrame, n_features: int) -> list[dict[str, list[Any]]]:
    """
    Convert candidate rows to GridSearchCV's param_grid.

    Each candidate becomes its own single-point sub-grid, so GridSearchCV
    evaluates exactly these rows, in this order.
    """
    engine_names = set(PARAM_ALIASES.values())
    param_grid = []
    for record in grid[list(TUNABLE_PARAMS)].to_dict(orient='records'):
        xgb_params = to_xgb_params(record, n_features)
        param_grid.append({
            f'classifier__{key}': [value]
            for key, value in xgb_params.items()
            if key in engine_names
        })
    return param_grid


# =============================================================================
# GRID SEARCH
# =============================================================================

def run_grid_search(
    X_train: pd.DataFrame | np.ndarray,
    y_train: ArrayLike,
    grid: pd.DataFrame,
    metrics: Sequence[str] = TUNING_METRICS,
    cv_folds: int | None = None,
    n_jobs: int = -1,
    **model_overrides: Any
) -> GridSearchCV:
    """
    Score every grid candidate with stratified cross-validation.

    Candidate x fold fits are spread over `n_jobs` joblib workers; each
    XGBoost fit itself is single-threaded (FIXED_PARAMS) so the two levels
    don't oversubscribe the CPU.

    Args:
        X_train: Training features
        y_train: Training labels
        grid: Output of build_search_grid()
        metrics: Metric names from SCORING
        cv_folds: Number of folds (default: CV_FOLDS)
        n_jobs: Parallel workers (-1 for all cores)
        **model_overrides: Fixed XGBoost settings (e.g. n_estimators=50)

    Returns:
        Fitted GridSearchCV (refit=False: no final model is trained here)

    Raises:
        ValueError: On empty grid or unknown metric
    """
    if grid.empty:
        raise ValueError("Search grid is empty")
    unknown = [m for m in metrics if m not in SCORING]
    if unknown:
        raise ValueError(f"Unknown metrics {unknown}. Valid options: {list(SCORING)}")

    n_features = X_train.shape[1]
    pipeline = build_pipeline(None, n_features, **model_overrides)

    search = GridSearchCV(
        pipeline,
        param_grid=grid_to_param_grid(grid, n_features),
        scoring={m: SCORING[m] for m in metrics},
        cv=get_cv_splitter(cv_folds),
        n_jobs=n_jobs,
        refit=False,
    )

    with log_execution_time(logger, "grid_search", extra_context={'n_jobs': n_jobs}) as timing:
        search.fit(X_train, y_train)
        timing['n_candidates'] = len(grid)
        timing['n_folds'] = search.n_splits_

    n_failed = int(np.isnan(search.cv_results_[f'mean_test_{metrics[0]}']).sum())
    if n_failed:
        logger.warning(f"{n_failed}/{len(grid)} candidates failed on at least one fold")

    return search


def collect_metrics(search: GridSearchCV, grid: pd.DataFrame) -> pd.DataFrame:
    """
    Tidy GridSearchCV results into one row per candidate and metric.

    Args:
        search: Fitted search from run_grid_search()
        grid: The grid it was run on (same row order)

    Returns:
        DataFrame with '.config', parameters, '.metric', 'mean', 'n', 'std_err'
    """
    cv_results = search.cv_results_
    n_folds = search.n_splits_

    if len(cv_results['params']) != len(grid):
        raise ValueError(
            f"Search evaluated {len(cv_results['params'])} candidates, grid has {len(grid)}"
        )

    frames = []
    for metric in search.scoring:
        sign = 1.0 if METRIC_DIRECTIONS[metric] else -1.0
        frame = grid[[CONFIG_COLUMN, *TUNABLE_PARAMS]].copy()
        frame[METRIC_COLUMN] = metric
        frame['mean'] = sign * np.asarray(cv_results[f'mean_test_{metric}'], dtype=float)
        frame['n'] = n_folds
        # Sample SD across folds; cv_results_ std_test_* is the population SD
        fold_scores = np.column_stack([
            np.asarray(cv_results[f'split{i}_test_{metric}'], dtype=float) for i in range(n_folds)
        ])
        frame['std_err'] = fold_scores.std(axis=1, ddof=1) / np.sqrt(n_folds)
        frames.append(frame)

    return (
        pd.concat(frames, ignore_index=True)
        .sort_values([CONFIG_COLUMN, METRIC_COLUMN])
        .reset_index(drop=True)
    )


def summarize_metrics(metrics: pd.DataFrame) -> pd.DataFrame:
    """Wide view: one row per candidate with mean_<metric>/std_err_<metric> columns."""
    params = metrics.drop_duplicates(CONFIG_COLUMN)[[CONFIG_COLUMN, *TUNABLE_PARAMS]]
    wide = metrics.pivot(index=CONFIG_COLUMN, columns=METRIC_COLUMN, values=['mean', 'std_err'])
    wide.columns = [f"{stat}_{metric}" for stat, metric in wide.columns]
    return params.merge(wide.reset_index(), on=CONFIG_COLUMN).reset_index(drop=True)


def _metric_rows(metrics: pd.DataFrame, metric: str) -> pd.DataFrame:
    if metric not in METRIC_DIRECTIONS:
        raise ValueError(f"Unknown metric '{metric}'. Valid options: {list(METRIC_DIRECTIONS)}")
    rows = metrics[metrics[METRIC_COLUMN] == metric].dropna(subset=['mean'])
    if rows.empty:
        raise ValueError(f"No results for metric '{metric}'")
    return rows


def show_best(metrics: pd.DataFrame, metric: str = PRIMARY_METRIC, n: int = 5) -> pd.DataFrame:
    """
    Top `n` candidates for one metric, best first.

    Raises:
        ValueError: If the metric is unknown or has no results
    """
    rows = _metric_rows(metrics, metric)
    return (
        rows.sort_values('mean', ascending=not METRIC_DIRECTIONS[metric], kind='stable')
        .head(n)
        .reset_index(drop=True)
    )


def select_best(metrics: pd.DataFrame, metric: str = PRIMARY_METRIC) -> dict[str, Any]:
    """
    Parameters of the best candidate for one metric.

    Returns:
        Dict with '.config' and one entry per tuned parameter, ready for
        build_model()
    """
    best = show_best(metrics, metric, n=1).iloc[0]
    selected: dict[str, Any] = {CONFIG_COLUMN: best[CONFIG_COLUMN]}
    for name in TUNABLE_PARAMS:
        selected[name] = int(best[name]) if name in INT_PARAMS else float(best[name])

    logger.info(f"Best by {metric}: {best[CONFIG_COLUMN]} ({metric}={best['mean']:.4f})")
    return selected


# =============================================================================
# OPTUNA (sequential search)
# =============================================================================

def create_objective(
    X_train: pd.DataFrame | np.ndarray,
    y_train: ArrayLike,
    metric: str = PRIMARY_METRIC,
    cv_n_jobs: int = 1,
    **model_overrides: Any
) -> Callable[[optuna.Trial], float]:
    """
    Create the Optuna objective: mean CV score of one suggested configuration.

    Sets trial user attributes:
    - cv_std: Sample standard deviation (ddof=1) of the fold scores
    - failed: Boolean indicating if trial failed
    - failure_reason: String describing failure (if failed)

    Raises (from the returned objective):
        optuna.TrialPruned: When cross-validation fails
    """
    if metric not in SCORING:
        raise ValueError(f"Unknown metric '{metric}'. Valid options: {list(SCORING)}")

    n_features = X_train.shape[1]
    sign = 1.0 if METRIC_DIRECTIONS[metric] else -1.0

    def objective(trial: optuna.Trial) -> float:
        model = create_xgboost_model(trial, n_features)
        if model_overrides:
            model.set_params(**model_overrides)
        pipeline = Pipeline([('classifier', model)])

        try:
            cv_scores = cross_val_score(
                pipeline, X_train, y_train,
                cv=get_cv_splitter(), scoring=SCORING[metric], n_jobs=cv_n_jobs,
                error_score='raise',
            )
        except ValueError as e:
            logger.warning(f"CV failed for trial {trial.number}: {type(e).__name__}: {e}")
            trial.set_user_attr('cv_std', 0.0)
            trial.set_user_attr('failed', True)
            trial.set_user_attr('failure_reason', f'{type(e).__name__}: {str(e)[:80]}')
            raise optuna.TrialPruned(f"CV failed: {type(e).__name__}")

        trial.set_user_attr('cv_std', float(cv_scores.std(ddof=1)))
        trial.set_user_attr('failed', False)
        return float(sign * cv_scores.mean())

    return objective


def get_optuna_storage_url() -> str:
    """SQLite connection string for Optuna storage."""
    return f"sqlite:///{OPTUNA_STORAGE_PATH}"


def get_study_progress(study_name: str) -> dict[str, Any] | None:
    """
    Check progress of an existing Optuna study.

    Returns:
        Dict with trial counts and best value, or None if study doesn't exist
    """
    try:
        study = optuna.load_study(study_name=study_name, storage=get_optuna_storage_url())
    except KeyError:
        return None

    states = optuna.trial.TrialState
    completed = len([t for t in study.trials if t.state == states.COMPLETE])
    pruned = len([t for t in study.trials if t.state == states.PRUNED])
    failed = len([t for t in study.trials if t.state == states.FAIL])

    return {
        'study_name': study_name,
        'n_trials_completed': completed,
        'n_trials_pruned': pruned,
        'n_trials_failed': failed,
        'n_trials_total': len(study.trials),
        'best_value': study.best_value if completed > 0 else None,
    }


def list_existing_studies() -> list[str]:
    """List all study names in storage (empty if no storage file yet)."""
    if not OPTUNA_STORAGE_PATH.exists():
        return []
    return optuna.study.get_all_study_names(storage=get_optuna_storage_url())


def delete_study(study_name: str) -> bool:
    """
    Delete an existing Optuna study.

    Returns:
        True if deleted, False if study didn't exist
    """
    try:
        optuna.delete_study(study_name=study_name, storage=get_optuna_storage_url())
    except KeyError:
        return False
    logger.info(f"Deleted study: {study_name}")
    return True


def run_optuna_study(
    X_train: pd.DataFrame | np.ndarray,
    y_train: ArrayLike,
    metric: str = PRIMARY_METRIC,
    n_trials: int = OPTUNA_N_TRIALS_DEFAULT,
    resume: bool = True,
    fresh: bool = False,
    study_name: str | None = None,
    **model_overrides: Any
) -> dict[str, Any]:
    """
    Run Optuna hyperparameter optimization with persistent SQLite storage.

    Args:
        X_train: Training features
        y_train: Training labels
        metric: Objective metric (direction taken from METRIC_DIRECTIONS)
        n_trials: Total number of trials (including any already completed)
        resume: Continue from existing study progress
        fresh: Delete existing study and start over (overrides resume)
        study_name: Storage key (default: xgboost_<metric>)
        **model_overrides: Fixed XGBoost settings (e.g. n_estimators=50)

    Returns:
        Dict with best parameters, best value, and the study
    """
    study_name = study_name or f"xgboost_{metric}"
    storage_url = get_optuna_storage_url()

    if fresh:
        resume = False

    existing = get_study_progress(study_name)
    if existing and not resume:
        logger.info(f"Starting fresh study '{study_name}' (dropping {existing['n_trials_total']} existing trials)")
        delete_study(study_name)
        existing = None

    remaining = n_trials
    if existing:
        completed = existing['n_trials_completed']
        remaining = max(n_trials - completed, 0)
        logger.info(f"Resuming study '{study_name}': {completed}/{n_trials} complete, running {remaining} more")

    study = optuna.create_study(
        direction='maximize' if METRIC_DIRECTIONS[metric] else 'minimize',
        sampler=TPESampler(seed=RANDOM_STATE),
        study_name=study_name,
        storage=storage_url,
        load_if_exists=True,
    )

    if remaining:
        objective = create_objective(X_train, y_train, metric, **model_overrides)
        study.optimize(objective, n_trials=remaining, show_progress_bar=False)

    result: dict[str, Any] = {
        'metric': metric,
        'best_params': {},
        'best_value': None,
        'cv_std': None,
        'study': study,
        'resumed': existing is not None,
        'trials_run': remaining,
    }

    # best_value raises until at least one trial completes
    if not any(t.state == optuna.trial.TrialState.COMPLETE for t in study.trials):
        logger.warning(f"{study_name}: none of {len(study.trials)} trials completed")
        return result

    logger.debug(f"{study_name}: {metric}={study.best_value:.4f} ({len(study.trials)} trials)")
    result.update(
        best_params=study.best_params,
        best_value=study.best_value,
        cv_std=study.best_trial.user_attrs.get('cv_std', 0.0),
    )
    return result


def study_to_metrics(study: optuna.Study, metric: str, n_folds: int = CV_FOLDS) -> pd.DataFrame:
    """
    Completed Optuna trials in collect_metrics() format.

    Trials only record the objective metric, so the table has one metric.
    """
    rows = []
    for trial in study.trials:
        if trial.state != optuna.trial.TrialState.COMPLETE:
            continue
        row = {CONFIG_COLUMN: f"Trial{trial.number:03d}"}
        row.update({name: trial.params.get(name) for name in TUNABLE_PARAMS})
        row[METRIC_COLUMN] = metric
        row['mean'] = trial.value
        row['n'] = n_folds
        row['std_err'] = trial.user_attrs.get('cv_std', 0.0) / np.sqrt(n_folds)
        rows.append(row)

    columns = [CONFIG_COLUMN, *TUNABLE_PARAMS, METRIC_COLUMN, 'mean', 'n', 'std_err']
    return pd.DataFrame(rows, columns=columns)
