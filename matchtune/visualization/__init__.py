"""
Visualization utilities.
"""

from .plots import (
    finalize_figure,
    plot_outcome_balance,
    plot_feature_distributions,
    plot_correlation_heatmap,
    plot_missingness,
    plot_tuning_results,
    plot_optuna_history,
    plot_roc_curve,
    plot_confusion_matrix,
    plot_feature_importance,
)

__all__ = [
    'finalize_figure',
    'plot_outcome_balance',
    'plot_feature_distributions',
    'plot_correlation_heatmap',
    'plot_missingness',
    'plot_tuning_results',
    'plot_optuna_history',
    'plot_roc_curve',
    'plot_confusion_matrix',
    'plot_feature_importance',
]
