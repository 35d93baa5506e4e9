#!/usr/bin/env python
"""
Match Data Preparation Pipeline

Fetches the match CSV, removes incomplete rows, turns per-team columns into
team differences, and writes a stratified train/test split.

METHODOLOGY NOTES:
- Column arithmetic is row-wise (no statistics learned), so it is safe to
  apply before the split
- The split is stratified on the outcome and seeded

Usage:
    python -m pipelines.prepare --source=https://example.org/matches.csv
    python -m pipelines.prepare --force-download --verbose
    python -m pipelines.prepare --json-logs --log-file=reports/prepare.jsonl
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import pandas as pd

project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from matchtune.config import (
    TEST_SIZE, TARGET_COLUMN, setup_logging, ensure_directories, log_execution_time, pipeline_step,
)
from matchtune.data import (
    fetch_matches, load_raw_matches, clean_matches, engineer_features, split_matches, save_splits,
)

logger = logging.getLogger('matchtune')


def prepare_matches(
    source: str | None = None,
    force_download: bool = False,
    test_size: float = TEST_SIZE,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Run fetch -> clean -> engineer -> split -> save.

    The source is copied into the raw data cache first, so the explore step
    can plot the table before row removal.

    Args:
        source: URL or local CSV path (default: cached file / MATCHTUNE_DATA_URL)
        force_download: Re-download even if a cached copy exists
        test_size: Fraction of matches held out for the final evaluation

    Returns:
        Tuple of (train, test) modelling tables
    """
    cached = fetch_matches(url=source, force=force_download)
    raw = load_raw_matches(cached)

    with log_execution_time(logger, "prepare", level=logging.DEBUG) as timing:
        clean = clean_matches(raw)
        model_table = engineer_features(clean)
        train, test = split_matches(model_table, test_size=test_size)
        save_splits(train, test)
        timing['n_features'] = model_table.shape[1] - 1
        timing['n_matches'] = len(model_table)

    logger.info(f"Prepared {len(model_table):,} matches, {model_table.shape[1] - 1} features "
                f"(target: {TARGET_COLUMN})")
    return train, test


def main() -> None:
    parser = argparse.ArgumentParser(description='Fetch and prepare the match table')
    parser.add_argument('--source', type=str, default=None,
                        help='CSV URL or local path (default: cached file or MATCHTUNE_DATA_URL)')
    parser.add_argument('--force-download', action='store_true', help='Ignore the cached CSV')
    parser.add_argument('--test-size', type=float, default=TEST_SIZE, help='Held-out fraction')
    parser.add_argument('--json-logs', action='store_true', help='Log one JSON object per line')
    parser.add_argument('--log-file', type=Path, default=None, help='Also write logs to this file')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')
    args = parser.parse_args()

    if not 0.0 < args.test_size < 1.0:
        parser.error(f"--test-size must be in (0, 1), got {args.test_size}")

    setup_logging(logging.DEBUG if args.verbose else logging.INFO,
                  json_format=args.json_logs, log_file=args.log_file)
    ensure_directories()

    with pipeline_step(logger, 'prepare') as stats:
        train, test = prepare_matches(args.source, args.force_download, args.test_size)
        stats['n_train'] = len(train)
        stats['n_test'] = len(test)
        stats['n_features'] = train.shape[1] - 1


if __name__ == '__main__':
    main()
