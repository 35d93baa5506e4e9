#!/usr/bin/env python
"""
Exploratory Analysis Pipeline

Writes the exploratory figures and prints a short summary of the training
table. The raw table (before row removal) is used for the missingness plot;
everything else looks at the training split only.

Usage:
    python -m pipelines.explore
    python -m pipelines.explore --top-n=12
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any

project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from matchtune.config import (
    FIGURES_DIR, RAW_DATA_DIR, RAW_MATCHES_FILE, TARGET_COLUMN, setup_logging, ensure_directories, pipeline_step,
)
from matchtune.data import load_splits, load_raw_matches
from matchtune.visualization import (
    plot_outcome_balance,
    plot_feature_distributions,
    plot_correlation_heatmap,
    plot_missingness,
)

logger = logging.getLogger('matchtune')


def run_exploration(top_n: int = 9, figures_dir: Path | None = None) -> dict[str, Any]:
    """
    Generate exploratory figures.

    Args:
        top_n: Number of outcome-correlated features to plot
        figures_dir: Output directory (default: FIGURES_DIR)

    Returns:
        Dict with outcome counts, top correlations, and missing counts
    """
    figures_dir = figures_dir or FIGURES_DIR
    figures_dir.mkdir(parents=True, exist_ok=True)

    train, _ = load_splits()

    outcome_counts = plot_outcome_balance(train, save_path=figures_dir / 'outcome_balance.png')
    correlations = plot_correlation_heatmap(train, save_path=figures_dir / 'correlation_heatmap.png')
    distributions = plot_feature_distributions(
        train, max_features=top_n, save_path=figures_dir / 'feature_distributions.png'
    )

    missing: dict[str, int] = {}
    raw_path = RAW_DATA_DIR / RAW_MATCHES_FILE
    if raw_path.exists():
        missing = plot_missingness(load_raw_matches(raw_path), save_path=figures_dir / 'missingness.png')
    else:
        logger.info(f"No cached raw table at {raw_path} (run pipelines.prepare); skipping missingness plot")

    logger.info(f"Saved exploratory figures to {figures_dir}")

    return {
        'outcome_counts': outcome_counts,
        'top_correlations': correlations.head(top_n),
        'distributions': distributions,
        'missing': missing,
    }


def print_summary(summary: dict[str, Any]) -> None:
    """Print the exploration summary tables."""
    counts = summary['outcome_counts']
    total = sum(counts.values())

    print(f"\nOutcome balance ({TARGET_COLUMN}):")
    print("-" * 40)
    for label, count in counts.items():
        print(f"{label:<10} {count:>8,} {count / total:>8.1%}")

    print(f"\nTop features by |correlation| with {TARGET_COLUMN}:")
    print("-" * 40)
    for feature, corr in summary['top_correlations'].items():
        print(f"{feature:<28} {corr:>+8.3f}")

    if summary['missing']:
        print(f"\nRaw columns with missing values: {len(summary['missing'])}")
    print()


def main() -> None:
    parser = argparse.ArgumentParser(description='Exploratory plots for the match table')
    parser.add_argument('--top-n', type=int, default=9, help='Features to plot by outcome')
    parser.add_argument('--json-logs', action='store_true', help='Log one JSON object per line')
    parser.add_argument('--log-file', type=Path, default=None, help='Also write logs to this file')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')
    args = parser.parse_args()

    setup_logging(logging.DEBUG if args.verbose else logging.INFO,
                  json_format=args.json_logs, log_file=args.log_file)
    ensure_directories()

    with pipeline_step(logger, 'explore') as stats:
        summary = run_exploration(top_n=args.top_n)
        stats['n_missing_columns'] = len(summary['missing'])

    print_summary(summary)


if __name__ == '__main__':
    main()
