"""
Data loading and column arithmetic utilities.
"""

from .loader import (
    fetch_matches,
    load_raw_matches,
    clean_matches,
    split_matches,
    split_features_target,
    save_splits,
    load_splits,
)
from .features import (
    team_stat_pairs,
    add_team_differences,
    engineer_features,
    TeamDifferenceTransformer,
)

__all__ = [
    'fetch_matches',
    'load_raw_matches',
    'clean_matches',
    'split_matches',
    'split_features_target',
    'save_splits',
    'load_splits',
    'team_stat_pairs',
    'add_team_differences',
    'engineer_features',
    'TeamDifferenceTransformer',
]
