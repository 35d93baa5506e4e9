"""
Hyperparameter space for the boosted tree classifier.

Configurations use engine-neutral names (tree_depth, min_n, ...). They are
translated to XGBoost keyword arguments only when a model is built, so grids,
tuning reports and plots all speak the same vocabulary.

METHODOLOGY NOTES:
- The number of trees is fixed (N_TREES); the six parameters below are tuned
- mtry is a feature COUNT; XGBoost wants a per-split fraction, so it is
  divided by the number of model features
- Log-scaled ranges are given as log10 exponents
"""

from __future__ import annotations

from typing import Any, Mapping

from xgboost import XGBClassifier

from ..config import RANDOM_STATE, N_TREES

# Tuned parameters, in display order
TUNABLE_PARAMS: tuple[str, ...] = (
    'tree_depth', 'min_n', 'loss_reduction', 'sample_size', 'mtry', 'learn_rate',
)

# Engine-neutral name -> XGBoost keyword
PARAM_ALIASES: dict[str, str] = {
    'tree_depth': 'max_depth',
    'min_n': 'min_child_weight',
    'loss_reduction': 'gamma',
    'sample_size': 'subsample',
    'mtry': 'colsample_bynode',
    'learn_rate': 'learning_rate',
}

INT_PARAMS: frozenset[str] = frozenset({'tree_depth', 'min_n', 'mtry'})

# (type, low, high). 'log10' bounds are exponents. mtry's upper bound is
# unknown until the feature count is; see finalize_space().
SEARCH_SPACE: dict[str, tuple] = {
    'tree_depth': ('int', 1, 15),
    'min_n': ('int', 2, 40),
    'loss_reduction': ('log10', -10.0, 1.5),
    'sample_size': ('float', 0.1, 1.0),
    'mtry': ('int', 1, None),
    'learn_rate': ('log10', -10.0, -1.0),
}

# Always applied on top of the tuned parameters
FIXED_PARAMS: dict[str, Any] = {
    'n_estimators': N_TREES,
    'random_state': RANDOM_STATE,
    'n_jobs': 1,
    'eval_metric': 'logloss',
    'tree_method': 'hist',
}

# Untuned baseline, mostly XGBoost's own defaults. mtry=None means all features.
DEFAULT_PARAMS: dict[str, Any] = {
    'tree_depth': 6,
    'min_n': 2,
    'loss_reduction': 0.0,
    'sample_size': 1.0,
    'mtry': None,
    'learn_rate': 0.3,
}


def finalize_space(n_features: int) -> dict[str, tuple]:
    """
    Bind data-dependent bounds of SEARCH_SPACE.

    Args:
        n_features: Number of model features

    Returns:
        Copy of SEARCH_SPACE with mtry's upper bound set

    Raises:
        ValueError: If n_features < 1
    """
    if n_features < 1:
        raise ValueError(f"n_features must be >= 1, got {n_features}")
    space = dict(SEARCH_SPACE)
    ptype, low, _ = space['mtry']
    space['mtry'] = (ptype, low, n_features)
    return space


def to_xgb_params(params: Mapping[str, Any], n_features: int) -> dict[str, Any]:
    """
    Translate a configuration to XGBClassifier keyword arguments.

    Unknown keys are passed through unchanged so callers can override
    engine settings (e.g. n_estimators) directly.

    Args:
        params: Configuration keyed by TUNABLE_PARAMS names
        n_features: Number of model features (for mtry)

    Returns:
        Keyword arguments including FIXED_PARAMS
    """
    xgb_params: dict[str, Any] = dict(FIXED_PARAMS)

    for name, value in params.items():
        if name not in PARAM_ALIASES:
            xgb_params[name] = value
            continue
        if value is None:
            continue
        if name == 'mtry':
            mtry = min(max(int(value), 1), n_features)
            xgb_params['colsample_bynode'] = mtry / n_features
        elif name in INT_PARAMS:
            xgb_params[PARAM_ALIASES[name]] = int(value)
        else:
            xgb_params[PARAM_ALIASES[name]] = float(value)

    return xgb_params


def suggest_param(trial: Any, param_name: str, space: tuple) -> Any:
    """
    Suggest a hyperparameter value from an Optuna trial.

    Args:
        trial: Optuna trial object
        param_name: Name of the parameter
        space: Tuple from SEARCH_SPACE (type, low, high)

    Returns:
        Suggested parameter value

    Raises:
        ValueError: If space type is unknown or bounds are unset
    """
    ptype, low, high = space
    if high is None:
        raise ValueError(f"Upper bound for '{param_name}' not set; call finalize_space() first")

    if ptype == 'int':
        return trial.suggest_int(param_name, low, high)
    elif ptype == 'float':
        return trial.suggest_float(param_name, low, high)
    elif ptype == 'log10':
        return trial.suggest_float(param_name, 10 ** low, 10 ** high, log=True)
    else:
        raise ValueError(f"Unknown parameter type: {ptype}")


def create_xgboost_model(trial: Any, n_features: int) -> XGBClassifier:
    """Create XGBClassifier with Optuna-suggested hyperparameters."""
    space = finalize_space(n_features)
    params = {name: suggest_param(trial, name, space[name]) for name in TUNABLE_PARAMS}
    return XGBClassifier(**to_xgb_params(params, n_features))
