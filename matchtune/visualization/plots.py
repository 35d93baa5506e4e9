"""
Visualization utilities for the match outcome walkthrough.

Three groups: exploratory plots of the match table, tuning result plots,
and holdout evaluation plots. Every function returns the numbers it drew.
"""

from __future__ import annotations

import logging
import warnings
from pathlib import Path
from typing import Any, Sequence

import matplotlib.pyplot as plt
import missingno as msno
import numpy as np
import optuna
import pandas as pd
import seaborn as sns
from numpy.typing import ArrayLike
from sklearn.base import BaseEstimator
from sklearn.metrics import (
    RocCurveDisplay, ConfusionMatrixDisplay, roc_auc_score, confusion_matrix, precision_score
)

from ..config import VIZ_CONFIG, TARGET_COLUMN, PRIMARY_METRIC
from ..evaluation.metrics import calculate_sensitivity_specificity, METRIC_DIRECTIONS
from ..models.registry import TUNABLE_PARAMS, SEARCH_SPACE

logger = logging.getLogger('matchtune')

# Suppress sklearn FutureWarning about kwargs deprecation in display helpers
warnings.filterwarnings('ignore', category=FutureWarning, module='sklearn.utils._plotting')

OUTCOME_LABELS = ('Loss', 'Win')


def finalize_figure(save_path: str | Path | None = None, close: bool = True) -> None:
    """
    Finalize figure with consistent save settings.

    Args:
        save_path: Optional path to save the figure. If None, figure is not saved.
        close: Whether to close the figure after saving (default: True)

    Plot functions below keep the figure open when nothing is saved, so a
    notebook can still show it with plt.show().
    """
    if save_path is not None:
        plt.savefig(save_path, dpi=VIZ_CONFIG['dpi'], bbox_inches='tight', facecolor='white')
    if close:
        plt.close()


def _outcome_palette() -> dict[str, str]:
    return {OUTCOME_LABELS[0]: VIZ_CONFIG['loss_color'], OUTCOME_LABELS[1]: VIZ_CONFIG['win_color']}


# =============================================================================
# EXPLORATORY PLOTS
# =============================================================================

def plot_outcome_balance(
    df: pd.DataFrame,
    target: str = TARGET_COLUMN,
    save_path: str | Path | None = None
) -> dict[str, int]:
    """
    Bar chart of outcome counts.

    Returns:
        Dict mapping outcome label to match count
    """
    counts = df[target].map(dict(enumerate(OUTCOME_LABELS))).value_counts()
    counts = counts.reindex(list(OUTCOME_LABELS), fill_value=0)

    fig, ax = plt.subplots(figsize=VIZ_CONFIG['figsize_medium'])
    bars = ax.bar(counts.index, counts.values,
                  color=[VIZ_CONFIG['loss_color'], VIZ_CONFIG['win_color']])
    ax.bar_label(bars, labels=[f"{v:,} ({v / counts.sum():.1%})" for v in counts.values])

    ax.set_title(f'Outcome balance: {target}', fontsize=VIZ_CONFIG['title_fontsize'], fontweight='bold')
    ax.set_ylabel('Matches', fontsize=VIZ_CONFIG['label_fontsize'])
    ax.grid(axis='y', alpha=0.3)

    plt.tight_layout()
    finalize_figure(save_path, close=save_path is not None)

    return {label: int(count) for label, count in counts.items()}


def plot_feature_distributions(
    df: pd.DataFrame,
    features: Sequence[str] | None = None,
    target: str = TARGET_COLUMN,
    max_features: int = 9,
    save_path: str | Path | None = None
) -> list[dict[str, Any]]:
    """
    Density of each feature split by outcome.

    Without an explicit list, the features most correlated with the
    outcome are shown.

    Returns:
        List of dicts with per-outcome means for each plotted feature
    """
    if features is None:
        correlations = df.drop(columns=[target]).corrwith(df[target]).abs()
        features = correlations.sort_values(ascending=False).index[:max_features].tolist()
    features = list(features)[:max_features]
    if not features:
        raise ValueError("No features to plot")

    n_cols = min(3, len(features))
    n_rows = (len(features) + n_cols - 1) // n_cols
    _, axes = plt.subplots(n_rows, n_cols, figsize=(5 * n_cols, 3.5 * n_rows))
    axes = np.atleast_1d(axes).ravel()

    plot_df = df.assign(outcome=df[target].map(dict(enumerate(OUTCOME_LABELS))))
    summary = []

    for ax, feature in zip(axes, features):
        sns.histplot(
            data=plot_df, x=feature, hue='outcome', hue_order=list(OUTCOME_LABELS),
            palette=_outcome_palette(), bins=VIZ_CONFIG['hist_bins'],
            stat='density', common_norm=False, element='step', ax=ax,
        )
        ax.set_title(feature, fontsize=VIZ_CONFIG['label_fontsize'])
        ax.set_xlabel('')

        means = plot_df.groupby('outcome')[feature].mean()
        summary.append({
            'feature': feature,
            'mean_loss': float(means.get(OUTCOME_LABELS[0], np.nan)),
            'mean_win': float(means.get(OUTCOME_LABELS[1], np.nan)),
        })

    for ax in axes[len(features):]:
        ax.set_visible(False)

    plt.suptitle('Feature distributions by outcome', fontsize=VIZ_CONFIG['title_fontsize'], fontweight='bold')
    plt.tight_layout()
    finalize_figure(save_path, close=save_path is not None)

    return summary


def plot_correlation_heatmap(
    df: pd.DataFrame,
    target: str = TARGET_COLUMN,
    max_features: int | None = None,
    save_path: str | Path | None = None
) -> pd.Series:
    """
    Correlation heatmap of the features most correlated with the outcome.

    Returns:
        Feature-outcome correlations, sorted by absolute value
    """
    max_features = max_features or VIZ_CONFIG['max_heatmap_features']
    target_corr = df.drop(columns=[target]).corrwith(df[target])
    target_corr = target_corr.reindex(target_corr.abs().sort_values(ascending=False).index)

    top = target_corr.index[:max_features].tolist()
    corr_matrix = df[top + [target]].corr()

    fig, ax = plt.subplots(figsize=VIZ_CONFIG['figsize_wide'])
    sns.heatmap(
        corr_matrix, annot=len(top) <= 12, fmt='.2f', cmap=VIZ_CONFIG['heatmap_cmap'],
        vmin=-1, vmax=1, center=0, square=True, linewidths=0.5, ax=ax,
    )
    ax.set_title(f'Correlation: top {len(top)} features vs {target}',
                 fontsize=VIZ_CONFIG['title_fontsize'], fontweight='bold')

    plt.tight_layout()
    finalize_figure(save_path, close=save_path is not None)

    return target_corr


def plot_missingness(
    df: pd.DataFrame,
    save_path: str | Path | None = None
) -> dict[str, int]:
    """
    Nullity matrix of the raw table.

    Returns:
        Dict mapping column to missing count (columns with none omitted)
    """
    missing = df.isna().sum()
    missing = missing[missing > 0]

    ax = msno.matrix(df, figsize=VIZ_CONFIG['figsize_wide'], fontsize=8, sparkline=False)
    ax.set_title(f'Missing values: {int(missing.sum())} cells in {len(missing)} columns',
                 fontsize=VIZ_CONFIG['title_fontsize'], fontweight='bold')

    finalize_figure(save_path, close=save_path is not None)

    return {col: int(n) for col, n in missing.items()}


# =============================================================================
# TUNING PLOTS
# =============================================================================

def plot_tuning_results(
    metrics: pd.DataFrame,
    metric: str = PRIMARY_METRIC,
    save_path: str | Path | None = None
) -> pd.DataFrame:
    """
    Mean CV metric against each tuned parameter, one panel per parameter.

    Log-scaled parameters get a log x axis. The best candidate is marked.

    Args:
        metrics: Long-format table from collect_metrics()/study_to_metrics()
        metric: Metric to plot
        save_path: Optional path to save the figure

    Returns:
        The rows that were plotted
    """
    rows = metrics[metrics['.metric'] == metric].dropna(subset=['mean'])
    if rows.empty:
        raise ValueError(f"No results for metric '{metric}'")

    higher_better = METRIC_DIRECTIONS[metric]
    best = rows.loc[rows['mean'].idxmax() if higher_better else rows['mean'].idxmin()]

    n_cols = 3
    n_rows = (len(TUNABLE_PARAMS) + n_cols - 1) // n_cols
    fig, axes = plt.subplots(n_rows, n_cols, figsize=(15, 4 * n_rows), sharey=True)
    axes = np.atleast_1d(axes).ravel()

    for ax, param in zip(axes, TUNABLE_PARAMS):
        ax.scatter(rows[param], rows['mean'], color=VIZ_CONFIG['primary'], alpha=0.7, s=40)
        ax.scatter([best[param]], [best['mean']], color=VIZ_CONFIG['optimal_marker'],
                   s=120, marker='*', zorder=5, label='best')
        if SEARCH_SPACE[param][0] == 'log10':
            ax.set_xscale('log')
        ax.set_xlabel(param, fontsize=VIZ_CONFIG['label_fontsize'])
        ax.grid(True, alpha=0.3)

    for ax in axes[len(TUNABLE_PARAMS):]:
        ax.set_visible(False)

    for ax in axes[::n_cols]:
        ax.set_ylabel(f'mean {metric}', fontsize=VIZ_CONFIG['label_fontsize'])
    axes[0].legend(loc='best')

    fig.suptitle(f'Tuning results: {len(rows)} candidates, {metric}',
                 fontsize=VIZ_CONFIG['title_fontsize'], fontweight='bold')
    plt.tight_layout()
    finalize_figure(save_path, close=save_path is not None)

    return rows.reset_index(drop=True)


def plot_optuna_history(study: Any, save_path: str | Path | None = None) -> dict[str, list[float]]:
    """
    Objective value per completed trial with the running best.

    Returns:
        Dict with 'values' and 'best_so_far' lists
    """
    trials = [t for t in study.trials if t.state == optuna.trial.TrialState.COMPLETE]
    if not trials:
        raise ValueError(f"Study '{study.study_name}' has no completed trials")

    numbers = [t.number for t in trials]
    values = [float(t.value) for t in trials]
    accumulate = np.maximum.accumulate if study.direction == optuna.study.StudyDirection.MAXIMIZE else np.minimum.accumulate
    best_so_far = accumulate(values).tolist()

    fig, ax = plt.subplots(figsize=VIZ_CONFIG['figsize_medium'])
    ax.scatter(numbers, values, color=VIZ_CONFIG['primary'], alpha=0.7, label='trial')
    ax.step(numbers, best_so_far, where='post', color=VIZ_CONFIG['optimal_marker'],
            linewidth=2, label='best so far')

    ax.set_xlabel('Trial', fontsize=VIZ_CONFIG['label_fontsize'])
    ax.set_ylabel('Objective', fontsize=VIZ_CONFIG['label_fontsize'])
    ax.set_title(f'Optimization history: {study.study_name}',
                 fontsize=VIZ_CONFIG['title_fontsize'], fontweight='bold')
    ax.legend(loc='best')
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    finalize_figure(save_path, close=save_path is not None)

    return {'values': values, 'best_so_far': best_so_far}


# =============================================================================
# EVALUATION PLOTS
# =============================================================================

def plot_roc_curve(
    y_true: ArrayLike,
    y_pred_proba: ArrayLike,
    model_name: str = "Model",
    save_path: str | Path | None = None
) -> dict[str, Any]:
    """
    Plot ROC curve and calculate AUC-ROC.

    Returns:
        Dict with auc_roc score and fpr/tpr arrays
    """
    fig, ax = plt.subplots(figsize=(8, 6))

    display = RocCurveDisplay.from_predictions(
        y_true, y_pred_proba,
        ax=ax,
        name=model_name,
        color=VIZ_CONFIG['roc_color'],
        plot_chance_level=True
    )

    ax.set_title(f'ROC Curve: {model_name}', fontsize=VIZ_CONFIG['title_fontsize'], fontweight='bold')
    ax.set_xlabel('False Positive Rate (1 - Specificity)', fontsize=VIZ_CONFIG['label_fontsize'])
    ax.set_ylabel('True Positive Rate (Sensitivity)', fontsize=VIZ_CONFIG['label_fontsize'])
    ax.grid(alpha=0.3)
    ax.legend(loc='lower right', fontsize=10)

    auc_roc = roc_auc_score(y_true, y_pred_proba)
    ax.text(0.6, 0.2, f'AUC-ROC = {auc_roc:.4f}',
            bbox=dict(boxstyle='round', facecolor='wheat', alpha=0.5),
            fontsize=11, verticalalignment='top')

    plt.tight_layout()
    finalize_figure(save_path, close=save_path is not None)

    return {
        'auc_roc': auc_roc,
        'fpr': display.fpr,
        'tpr': display.tpr
    }


def plot_confusion_matrix(
    y_true: ArrayLike,
    y_pred: ArrayLike,
    model_name: str = "Model",
    save_path: str | Path | None = None
) -> dict[str, int]:
    """
    Plot confusion matrix heatmap with counts and percentages.

    Returns:
        Dict with tn, fp, fn, tp counts and total
    """
    fig, ax = plt.subplots(figsize=(8, 6))

    cm = confusion_matrix(y_true, y_pred, labels=[0, 1])
    disp = ConfusionMatrixDisplay(confusion_matrix=cm, display_labels=list(OUTCOME_LABELS))
    disp.plot(ax=ax, cmap=VIZ_CONFIG['confusion_cmap'], values_format='d', colorbar=True)

    ax.set_title(f'Confusion Matrix: {model_name}',
                 fontsize=VIZ_CONFIG['title_fontsize'], fontweight='bold')
    ax.set_xlabel('Predicted', fontsize=VIZ_CONFIG['label_fontsize'])
    ax.set_ylabel('Actual', fontsize=VIZ_CONFIG['label_fontsize'])

    tn, fp, fn, tp = cm.ravel()
    total = cm.sum()

    for (row, col), count in zip([(0, 0), (0, 1), (1, 0), (1, 1)], [tn, fp, fn, tp]):
        ax.text(col, row, f'\n\n{count / total * 100:.1f}%', ha='center', va='center',
                fontsize=10, color='gray')

    sensitivity, specificity = calculate_sensitivity_specificity(y_true, y_pred)
    prec = precision_score(y_true, y_pred, zero_division=0)

    metrics_text = f'Sens: {sensitivity:.3f}\nSpec: {specificity:.3f}\nPrec: {prec:.3f}'
    ax.text(1.35, 0.5, metrics_text, transform=ax.transAxes,
            bbox=dict(boxstyle='round', facecolor='wheat', alpha=0.5),
            fontsize=10, verticalalignment='center')

    plt.tight_layout()
    finalize_figure(save_path, close=save_path is not None)

    return {'tn': int(tn), 'fp': int(fp), 'fn': int(fn), 'tp': int(tp), 'total': int(total)}


def plot_feature_importance(
    model: BaseEstimator,
    feature_names: Sequence[str],
    top_n: int = 15,
    save_path: str | Path | None = None
) -> pd.DataFrame:
    """
    Horizontal bar chart of the fitted booster's feature importances.

    Args:
        model: Fitted classifier, or a pipeline with a 'classifier' step
        feature_names: Model feature names, in training column order
        top_n: Number of features to show
        save_path: Optional path to save the figure

    Returns:
        DataFrame with feature, importance, rank (top_n rows)

    Raises:
        ValueError: If the model has no feature_importances_ or names don't match
    """
    classifier = model.named_steps['classifier'] if hasattr(model, 'named_steps') else model
    if not hasattr(classifier, 'feature_importances_'):
        raise ValueError(f"{type(classifier).__name__} has no feature_importances_")

    importances = np.asarray(classifier.feature_importances_)
    if len(importances) != len(feature_names):
        raise ValueError(
            f"Feature names length ({len(feature_names)}) doesn't match "
            f"importance values length ({len(importances)})"
        )

    importance_df = (
        pd.DataFrame({'feature': list(feature_names), 'importance': importances})
        .sort_values('importance', ascending=False)
        .head(top_n)
        .reset_index(drop=True)
    )
    importance_df['rank'] = range(1, len(importance_df) + 1)

    fig, ax = plt.subplots(figsize=(8, max(3, 0.35 * len(importance_df) + 1)))
    ax.barh(importance_df['feature'][::-1], importance_df['importance'][::-1], color=VIZ_CONFIG['primary'])
    ax.set_xlabel('Importance (gain)', fontsize=VIZ_CONFIG['label_fontsize'])
    ax.set_title(f'Top {len(importance_df)} features', fontsize=VIZ_CONFIG['title_fontsize'], fontweight='bold')
    ax.grid(axis='x', alpha=0.3)

    plt.tight_layout()
    finalize_figure(save_path, close=save_path is not None)

    return importance_df
