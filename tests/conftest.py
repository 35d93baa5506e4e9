"""
Shared pytest fixtures for match outcome tuning tests.

Synthetic match tables mimic the real layout: a match id, a binary outcome
for the first team, and per-team aggregates behind 'blue'/'red' prefixes.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from matchtune.config import RANDOM_STATE, TARGET_COLUMN, ID_COLUMN


@pytest.fixture(autouse=True)
def close_figures():
    """Plot functions leave unsaved figures open."""
    yield
    plt.close('all')


@pytest.fixture(autouse=True)
def reset_project_logger():
    """CLI entry points install handlers and turn off propagation; undo it so caplog works."""
    logger = logging.getLogger('matchtune')
    yield
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


# =============================================================================
# MATCH TABLE FIXTURES
# =============================================================================

def _make_matches(n_matches: int, seed: int = RANDOM_STATE) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    blue_kills = rng.poisson(6, n_matches)
    red_kills = rng.poisson(6, n_matches)
    blue_gold = rng.normal(16500, 1500, n_matches).round()
    red_gold = rng.normal(16500, 1500, n_matches).round()
    blue_first_blood = rng.integers(0, 2, n_matches)

    # Outcome driven by the kill and gold gaps, plus noise
    signal = 0.3 * (blue_kills - red_kills) + (blue_gold - red_gold) / 1000
    wins = (signal + rng.normal(0, 1, n_matches) > 0).astype(int)

    return pd.DataFrame({
        ID_COLUMN: np.arange(4_500_000_000, 4_500_000_000 + n_matches),
        TARGET_COLUMN: wins,
        'blueWardsPlaced': rng.poisson(22, n_matches),
        'blueKills': blue_kills,
        'blueFirstBlood': blue_first_blood,
        'blueTotalGold': blue_gold,
        'blueGoldDiff': blue_gold - red_gold,
        'redWardsPlaced': rng.poisson(22, n_matches),
        'redKills': red_kills,
        'redFirstBlood': 1 - blue_first_blood,
        'redTotalGold': red_gold,
        'redGoldDiff': red_gold - blue_gold,
    })


@pytest.fixture
def raw_matches() -> pd.DataFrame:
    """Raw match table (200 matches) with a few missing cells."""
    df = _make_matches(200)
    df = df.astype({'blueWardsPlaced': float, 'redKills': float})
    df.loc[[3, 50], 'blueWardsPlaced'] = np.nan
    df.loc[120, 'redKills'] = np.nan
    return df


@pytest.fixture
def clean_raw_matches() -> pd.DataFrame:
    """Complete raw match table (200 matches)."""
    return _make_matches(200)


@pytest.fixture
def raw_matches_csv(tmp_path: Path, raw_matches: pd.DataFrame) -> Path:
    """Raw match table written to a CSV file."""
    path = tmp_path / 'matches.csv'
    raw_matches.to_csv(path, index=False)
    return path


@pytest.fixture
def model_table(clean_raw_matches: pd.DataFrame) -> pd.DataFrame:
    """Engineered modelling table (features + outcome last)."""
    from matchtune.data import engineer_features
    return engineer_features(clean_raw_matches)


@pytest.fixture
def train_xy(model_table: pd.DataFrame) -> tuple[pd.DataFrame, np.ndarray]:
    """Features and labels of the whole modelling table."""
    from matchtune.data import split_features_target
    return split_features_target(model_table)


# =============================================================================
# TUNING FIXTURES
# =============================================================================

@pytest.fixture
def small_grid():
    """Three-candidate Latin hypercube grid for 5 features."""
    from matchtune.tuning_utils import build_search_grid
    return build_search_grid(n_features=5, size=3)


@pytest.fixture
def long_metrics() -> pd.DataFrame:
    """Hand-built long metrics table for three candidates."""
    params = {
        'Model001': dict(tree_depth=3, min_n=5, loss_reduction=1e-3, sample_size=0.5, mtry=2, learn_rate=0.05),
        'Model002': dict(tree_depth=8, min_n=20, loss_reduction=1e-8, sample_size=0.9, mtry=4, learn_rate=1e-4),
        'Model003': dict(tree_depth=5, min_n=10, loss_reduction=0.5, sample_size=0.7, mtry=3, learn_rate=0.02),
    }
    means = {
        'Model001': {'accuracy': 0.72, 'roc_auc': 0.80, 'log_loss': 0.55},
        'Model002': {'accuracy': 0.50, 'roc_auc': 0.65, 'log_loss': 0.69},
        'Model003': {'accuracy': 0.73, 'roc_auc': 0.79, 'log_loss': 0.53},
    }
    rows = []
    for config, p in params.items():
        for metric, mean in means[config].items():
            rows.append({'.config': config, **p, '.metric': metric,
                         'mean': mean, 'n': 5, 'std_err': 0.01})
    return pd.DataFrame(rows)


# =============================================================================
# PROJECT DIRECTORY FIXTURES
# =============================================================================

@pytest.fixture
def project_dirs(tmp_path: Path, monkeypatch) -> dict[str, Path]:
    """
    Point every module that writes files at a temporary project root.

    Paths are imported by value in several modules, so each binding is
    patched where it is used.
    """
    import matchtune.config as config
    import matchtune.data.loader as loader
    import matchtune.tuning_utils as tuning_utils
    import pipelines.explore as explore
    import pipelines.tune as tune
    import pipelines.finalize as finalize

    raw_dir = tmp_path / 'data' / 'raw'
    data_dir = tmp_path / 'data' / 'processed'
    models_dir = tmp_path / 'models'
    reports_dir = tmp_path / 'reports'
    figures_dir = reports_dir / 'figures'
    for path in (raw_dir, data_dir, models_dir, figures_dir):
        path.mkdir(parents=True)

    tuning_reports = {
        'metrics': reports_dir / 'tuning_metrics.csv',
        'results': reports_dir / 'tuning_results.csv',
        'summary': reports_dir / 'tuning_summary.json',
    }
    final_artifacts = {
        'model': models_dir / 'final_model.pkl',
        'metadata': models_dir / 'final_model_metadata.json',
    }
    optuna_db = tmp_path / 'optuna_studies.db'

    monkeypatch.setattr(config, 'RAW_DATA_DIR', raw_dir)
    monkeypatch.setattr(config, 'DATA_DIR', data_dir)
    monkeypatch.setattr(config, 'MODELS_DIR', models_dir)
    monkeypatch.setattr(config, 'REPORTS_DIR', reports_dir)
    monkeypatch.setattr(config, 'FIGURES_DIR', figures_dir)
    monkeypatch.setattr(loader, 'RAW_DATA_DIR', raw_dir)
    monkeypatch.setattr(loader, 'DATA_DIR', data_dir)
    monkeypatch.setattr(loader, 'DATA_URL', None)
    monkeypatch.setattr(tuning_utils, 'OPTUNA_STORAGE_PATH', optuna_db)
    monkeypatch.setattr(explore, 'RAW_DATA_DIR', raw_dir)
    monkeypatch.setattr(explore, 'FIGURES_DIR', figures_dir)
    monkeypatch.setattr(tune, 'FIGURES_DIR', figures_dir)
    monkeypatch.setattr(tune, 'TUNING_REPORTS', tuning_reports)
    monkeypatch.setattr(tune, 'OPTUNA_STORAGE_PATH', optuna_db)
    monkeypatch.setattr(finalize, 'FIGURES_DIR', figures_dir)
    monkeypatch.setattr(finalize, 'TUNING_REPORTS', tuning_reports)
    monkeypatch.setattr(finalize, 'FINAL_ARTIFACTS', final_artifacts)

    return {
        'root': tmp_path,
        'raw': raw_dir,
        'data': data_dir,
        'models': models_dir,
        'reports': reports_dir,
        'figures': figures_dir,
        'optuna_db': optuna_db,
        **{f'tuning_{k}': v for k, v in tuning_reports.items()},
        **{f'final_{k}': v for k, v in final_artifacts.items()},
    }
