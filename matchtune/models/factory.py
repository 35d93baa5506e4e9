"""
Model factory for the match outcome walkthrough.

Builds the boosted tree classifier from whatever shape a configuration
arrives in: a plain dict, a tuning results row, or a select_best() result.
"""

from __future__ import annotations

from typing import Any

import pandas as pd
from sklearn.pipeline import Pipeline
from xgboost import XGBClassifier

from .registry import TUNABLE_PARAMS, INT_PARAMS, DEFAULT_PARAMS, to_xgb_params


def _extract_params(row_or_params: dict[str, Any] | pd.Series) -> dict[str, Any]:
    """Pull tuned parameters out of a dict or row, accepting 'param_' prefixes."""
    items = row_or_params.index if hasattr(row_or_params, 'index') else row_or_params.keys()
    params: dict[str, Any] = {}

    for col in items:
        name = col.removeprefix('param_')
        if name not in TUNABLE_PARAMS:
            continue
        value = row_or_params[col]
        if value is None or pd.isna(value):
            continue
        # Grid values come back from CSV as floats
        params[name] = int(value) if name in INT_PARAMS else float(value)

    return params


def build_model(
    row_or_params: dict[str, Any] | pd.Series | None,
    n_features: int,
    **overrides: Any
) -> XGBClassifier:
    """
    Build an XGBClassifier from a hyperparameter configuration.

    Supports three input patterns:
    1. Dict keyed by tuned names: {'tree_depth': 6, 'learn_rate': 0.05, ...}
    2. Tuning results row (pd.Series or dict) with plain or 'param_*' columns;
       non-parameter columns (.config, mean_roc_auc, ...) are ignored
    3. None, for DEFAULT_PARAMS

    Args:
        row_or_params: Configuration, see above
        n_features: Number of model features (needed to translate mtry)
        **overrides: XGBoost keyword arguments applied last (e.g. n_estimators=50)

    Returns:
        Unfitted XGBClassifier

    Raises:
        ValueError: If n_features < 1

    Examples:
        best = select_best(metrics, 'roc_auc')
        model = build_model(best, n_features=X_train.shape[1])

        best_row = results_df.loc[results_df['mean_roc_auc'].idxmax()]
        model = build_model(best_row, n_features=X_train.shape[1])
    """
    if n_features < 1:
        raise ValueError(f"n_features must be >= 1, got {n_features}")

    params = dict(DEFAULT_PARAMS)
    if row_or_params is not None:
        params.update(_extract_params(row_or_params))

    xgb_params = to_xgb_params(params, n_features)
    xgb_params.update(overrides)
    return XGBClassifier(**xgb_params)


def build_pipeline(
    row_or_params: dict[str, Any] | pd.Series | None,
    n_features: int,
    **overrides: Any
) -> Pipeline:
    """
    Wrap build_model() in a single-step pipeline.

    The 'classifier' step name is what GridSearchCV parameter keys and
    feature importance extraction rely on.
    """
    return Pipeline([('classifier', build_model(row_or_params, n_features, **overrides))])
