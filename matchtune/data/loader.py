"""
Data loading utilities for the match outcome walkthrough
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pandas as pd
from sklearn.model_selection import train_test_split

from ..config import (
    DATA_URL, RAW_DATA_DIR, DATA_DIR, RAW_MATCHES_FILE, TRAIN_FILE, TEST_FILE,
    TARGET_COLUMN, TEST_SIZE, RANDOM_STATE,
)

logger = logging.getLogger('matchtune')


def _is_url(source: str | Path) -> bool:
    return str(source).startswith(('http://', 'https://'))


def _source_key(source: str | Path) -> str:
    return str(source) if _is_url(source) else str(Path(source).resolve())


def source_record_path(dest: Path) -> Path:
    """File next to the cached CSV that holds the location it was fetched from."""
    return dest.with_name(f"{dest.name}.source")


def fetch_matches(
    url: str | Path | None = None,
    dest: Path | None = None,
    force: bool = False
) -> Path:
    """
    Fetch the match CSV and cache it locally.

    The cache is reused unless `force` is set or an explicit `url` differs
    from the location recorded when the cache was written.

    Args:
        url: CSV URL or local path (default: DATA_URL from config)
        dest: Cache file (default: RAW_DATA_DIR / RAW_MATCHES_FILE)
        force: Re-download even if the cache exists

    Returns:
        Path to the cached CSV

    Raises:
        ValueError: If no URL is configured and no cache exists
        IOError: If the download or parse fails
    """
    dest = dest or (RAW_DATA_DIR / RAW_MATCHES_FILE)
    record = source_record_path(dest)
    explicit = url is not None
    url = url or DATA_URL

    if dest.exists() and not force:
        recorded = record.read_text().strip() if record.exists() else None
        if not explicit or recorded is None or recorded == _source_key(url):
            logger.info(f"Using cached matches: {dest}")
            return dest
        logger.info(f"Cached matches came from {recorded}; fetching {url}")

    if not url:
        raise ValueError(
            f"No data URL configured and no cached file at {dest}.\n"
            "Pass --source or set MATCHTUNE_DATA_URL."
        )

    logger.info(f"Downloading matches from {url}")
    try:
        df = pd.read_csv(url)
    except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise IOError(f"Failed to fetch {url}: {type(e).__name__}: {e}") from e

    dest.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(dest, index=False)
    record.write_text(_source_key(url))
    logger.info(f"Cached {len(df):,} matches x {df.shape[1]} columns to {dest}")
    return dest


def load_raw_matches(
    source: str | Path | None = None,
    target: str = TARGET_COLUMN
) -> pd.DataFrame:
    """
    Read the match table from a local path or URL.

    Args:
        source: Path or URL (default: cached file, then DATA_URL)
        target: Outcome column that must be present

    Returns:
        Raw match DataFrame

    Raises:
        FileNotFoundError: If a local source doesn't exist
        ValueError: If the file is empty, unparseable, or lacks the target column
    """
    if source is None:
        cached = RAW_DATA_DIR / RAW_MATCHES_FILE
        source = cached if cached.exists() else DATA_URL
    if source is None:
        raise FileNotFoundError(
            f"Raw matches not found: {RAW_DATA_DIR / RAW_MATCHES_FILE}\n"
            "Run `python -m pipelines.prepare --source=<csv url or path>` first."
        )

    if not _is_url(source) and not Path(source).exists():
        raise FileNotFoundError(f"Raw matches not found: {source}")

    try:
        df = pd.read_csv(source)
    except pd.errors.EmptyDataError as e:
        raise ValueError(f"Matches file is empty: {source}") from e
    except pd.errors.ParserError as e:
        raise ValueError(f"Matches file has invalid format: {e}") from e

    if df.empty:
        raise ValueError(f"Matches file has no data rows: {source}")

    if target not in df.columns:
        raise ValueError(
            f"Target column '{target}' not found. "
            f"Got columns: {list(df.columns)[:10]}..."
        )

    logger.info(f"Raw data: {len(df):,} matches, {df.shape[1]} columns")
    return df


def clean_matches(df: pd.DataFrame, target: str = TARGET_COLUMN) -> pd.DataFrame:
    """
    Drop rows with any missing value and coerce the target to 0/1.

    Args:
        df: Raw match table
        target: Outcome column

    Returns:
        Cleaned copy of the table

    Raises:
        ValueError: If the target isn't binary or no rows survive
    """
    cleaned = df.dropna().reset_index(drop=True)
    dropped = len(df) - len(cleaned)
    if dropped:
        logger.info(f"Removed {dropped} rows with missing values ({dropped / len(df):.1%})")

    if cleaned.empty:
        raise ValueError("No rows left after removing missing values")

    values = cleaned[target]
    if values.dtype == bool:
        values = values.astype(int)

    unique = set(pd.unique(values))
    if not unique.issubset({0, 1}):
        raise ValueError(f"Target '{target}' must be binary 0/1, got values {sorted(unique)}")

    cleaned[target] = values.astype(int)
    logger.info(f"Clean data: {len(cleaned):,} matches, win_rate={cleaned[target].mean():.1%}")
    return cleaned


def split_matches(
    df: pd.DataFrame,
    test_size: float = TEST_SIZE,
    target: str = TARGET_COLUMN
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Stratified train/test split of the match table."""
    train, test = train_test_split(
        df, test_size=test_size, random_state=RANDOM_STATE, stratify=df[target]
    )
    train = train.reset_index(drop=True)
    test = test.reset_index(drop=True)

    logger.info(f"Split: train={len(train)} test={len(test)} "
                f"(win_rate train={train[target].mean():.1%}, test={test[target].mean():.1%})")
    return train, test


def split_features_target(
    df: pd.DataFrame,
    target: str = TARGET_COLUMN
) -> tuple[pd.DataFrame, np.ndarray]:
    """Separate model features from the outcome column."""
    return df.drop(columns=[target]), df[target].to_numpy()


def save_splits(
    train: pd.DataFrame,
    test: pd.DataFrame,
    data_dir: Path | None = None
) -> tuple[Path, Path]:
    """Write train/test tables to the processed data directory."""
    data_dir = data_dir or DATA_DIR
    data_dir.mkdir(parents=True, exist_ok=True)

    train_path = data_dir / TRAIN_FILE
    test_path = data_dir / TEST_FILE
    train.to_csv(train_path, index=False)
    test.to_csv(test_path, index=False)

    logger.info(f"Saved splits: {train_path.name}, {test_path.name} -> {data_dir}")
    return train_path, test_path


def load_splits(data_dir: Path | None = None) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Load train and test tables.

    Returns:
        Tuple of (train, test) DataFrames

    Raises:
        FileNotFoundError: If split files don't exist (run prepare first)
    """
    data_dir = data_dir or DATA_DIR
    train_path = data_dir / TRAIN_FILE
    test_path = data_dir / TEST_FILE

    if not train_path.exists() or not test_path.exists():
        raise FileNotFoundError(
            f"Splits not found in {data_dir}\n"
            "Run `python -m pipelines.prepare` first."
        )

    train = pd.read_csv(train_path)
    test = pd.read_csv(test_path)
    logger.info(f"Loaded splits: train={train.shape}, test={test.shape}")
    return train, test
