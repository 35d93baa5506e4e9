"""
Column arithmetic for per-team match statistics

Each match row carries the same aggregates once per team (``blueKills``,
``redKills``, ...). The model works on first-team-minus-second-team
differences, which halves the column count and puts both sides on one axis.
"""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

import numpy as np
import pandas as pd
from numpy.typing import ArrayLike, NDArray
from sklearn.base import BaseEstimator, TransformerMixin

from ..config import TEAM_PREFIXES, DIFF_SUFFIX, TARGET_COLUMN, ID_COLUMN

logger = logging.getLogger('matchtune')


def _validate_prefixes(prefixes: Sequence[str]) -> None:
    if len(prefixes) < 2:
        raise ValueError(f"Need at least two team prefixes, got {list(prefixes)}")


def team_stat_pairs(
    columns: Iterable[str],
    prefixes: Sequence[str] = TEAM_PREFIXES,
    suffix: str = DIFF_SUFFIX,
    exclude: Iterable[str] = (TARGET_COLUMN, ID_COLUMN),
) -> list[str]:
    """
    Find statistics reported for every team.

    Columns that are already differences (ending in ``suffix``) are skipped:
    the second team's copy is just the negation of the first.

    Args:
        columns: Table columns
        prefixes: Team column prefixes, first team first
        suffix: Difference suffix
        exclude: Columns never treated as statistics

    Returns:
        Sorted stat names (column name with the prefix removed)
    """
    _validate_prefixes(prefixes)
    columns = [c for c in columns if c not in set(exclude)]
    column_set = set(columns)

    stats = []
    first = prefixes[0]
    for col in columns:
        if not col.startswith(first) or col == first:
            continue
        stat = col[len(first):]
        if stat.endswith(suffix):
            continue
        if all(f"{p}{stat}" in column_set for p in prefixes[1:]):
            stats.append(stat)

    return sorted(stats)


def add_team_differences(
    df: pd.DataFrame,
    prefixes: Sequence[str] = TEAM_PREFIXES,
    suffix: str = DIFF_SUFFIX,
    drop_source: bool = False,
) -> pd.DataFrame:
    """
    Add ``<stat><suffix> = <first><stat> - <second><stat>`` for every shared stat.

    Args:
        df: Match table
        prefixes: Team prefixes; the first two are differenced
        suffix: Name suffix for the new columns
        drop_source: Remove the per-team columns that were differenced

    Returns:
        New DataFrame with difference columns appended

    Raises:
        ValueError: On fewer than two prefixes or a name collision
    """
    _validate_prefixes(prefixes)
    first, second = prefixes[0], prefixes[1]
    stats = team_stat_pairs(df.columns, prefixes, suffix)

    out = df.copy()
    for stat in stats:
        name = f"{stat}{suffix}"
        if name in out.columns:
            raise ValueError(f"Column '{name}' already exists")
        out[name] = out[f"{first}{stat}"] - out[f"{second}{stat}"]

    if drop_source:
        out = out.drop(columns=[f"{p}{s}" for s in stats for p in prefixes])

    logger.debug(f"Added {len(stats)} difference columns ({first} - {second})")
    return out


class TeamDifferenceTransformer(BaseEstimator, TransformerMixin):
    """
    Replace per-team columns with first-minus-second differences.

    Columns that aren't part of a team pair pass through unchanged.

    Args:
        prefixes: Team prefixes, first team first
        suffix: Suffix for difference columns
        drop_source: Drop the per-team columns after differencing
    """

    def __init__(
        self,
        prefixes: Sequence[str] = TEAM_PREFIXES,
        suffix: str = DIFF_SUFFIX,
        drop_source: bool = True,
    ):
        self.prefixes = prefixes
        self.suffix = suffix
        self.drop_source = drop_source

    def fit(self, X: pd.DataFrame, y: ArrayLike | None = None) -> "TeamDifferenceTransformer":
        if not isinstance(X, pd.DataFrame):
            raise TypeError(
                f"TeamDifferenceTransformer requires pandas DataFrame, "
                f"got {type(X).__name__}"
            )
        self.stats_ = team_stat_pairs(X.columns, self.prefixes, self.suffix)
        self.feature_names_out_ = add_team_differences(
            X.head(0), self.prefixes, self.suffix, self.drop_source
        ).columns.tolist()
        logger.info(f"TeamDifferenceTransformer: {len(self.stats_)} paired stats, "
                    f"{len(X.columns)} -> {len(self.feature_names_out_)} columns")
        return self

    def transform(self, X: pd.DataFrame) -> pd.DataFrame:
        out = add_team_differences(X, self.prefixes, self.suffix, self.drop_source)
        return out[self.feature_names_out_]

    def get_feature_names_out(self, input_features: ArrayLike | None = None) -> NDArray:
        return np.array(self.feature_names_out_)


def engineer_features(
    df: pd.DataFrame,
    target: str = TARGET_COLUMN,
    id_column: str | None = ID_COLUMN,
    prefixes: Sequence[str] = TEAM_PREFIXES,
    suffix: str = DIFF_SUFFIX,
) -> pd.DataFrame:
    """
    Build the modelling table: team differences plus the outcome.

    Every per-team column is removed, including a second team's copy of a
    precomputed difference (``redGoldDiff`` mirrors ``blueGoldDiff``). The id
    column is dropped.
    """
    out = add_team_differences(df, prefixes, suffix, drop_source=True)

    mirrored = [
        c for c in out.columns
        if any(c.startswith(p) for p in prefixes[1:]) and c.endswith(suffix)
    ]
    drop = mirrored + ([id_column] if id_column and id_column in out.columns else [])
    out = out.drop(columns=drop)

    non_numeric = [c for c in out.columns if c != target and not pd.api.types.is_numeric_dtype(out[c])]
    if non_numeric:
        logger.warning(f"Dropping non-numeric columns: {non_numeric}")
        out = out.drop(columns=non_numeric)

    # Outcome last, features first
    features = [c for c in out.columns if c != target]
    logger.info(f"Engineered {len(features)} model features")
    return out[features + [target]]
