"""
Unit tests for grid construction, grid search, metric collection and
the Optuna search path.
"""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from matchtune import tuning_utils
from matchtune.models.registry import TUNABLE_PARAMS, INT_PARAMS
from matchtune.tuning_utils import (
    CONFIG_COLUMN,
    METRIC_COLUMN,
    build_search_grid,
    grid_to_param_grid,
    run_grid_search,
    collect_metrics,
    summarize_metrics,
    show_best,
    select_best,
    create_objective,
    get_study_progress,
    list_existing_studies,
    delete_study,
    run_optuna_study,
    study_to_metrics,
)


@pytest.fixture
def optuna_storage(tmp_path, monkeypatch):
    db = tmp_path / 'optuna_studies.db'
    monkeypatch.setattr(tuning_utils, 'OPTUNA_STORAGE_PATH', db)
    return db


class TestBuildSearchGrid:
    """Tests for build_search_grid."""

    def test_latin_hypercube_shape(self):
        grid = build_search_grid(n_features=8, size=20)

        assert 1 <= len(grid) <= 20
        assert list(grid.columns) == [CONFIG_COLUMN, *TUNABLE_PARAMS]
        assert grid[CONFIG_COLUMN].iloc[0] == 'Model001'
        assert grid[CONFIG_COLUMN].is_unique

    def test_values_within_ranges(self):
        grid = build_search_grid(n_features=8, size=30)

        assert grid['tree_depth'].between(1, 15).all()
        assert grid['min_n'].between(2, 40).all()
        assert grid['mtry'].between(1, 8).all()
        assert grid['sample_size'].between(0.1, 1.0).all()
        assert grid['learn_rate'].between(1e-10, 1e-1).all()
        assert grid['loss_reduction'].between(1e-10, 10 ** 1.5).all()

    def test_integer_parameters(self):
        grid = build_search_grid(n_features=8, size=10)
        for name in INT_PARAMS:
            assert pd.api.types.is_integer_dtype(grid[name])

    def test_latin_hypercube_covers_each_range(self):
        """One sample per stratum: tree_depth spans low and high bins."""
        grid = build_search_grid(n_features=8, size=30)

        assert grid['tree_depth'].min() <= 2
        assert grid['tree_depth'].max() >= 14

    def test_positional_arguments(self):
        """Feature count comes first, candidate count second."""
        grid = build_search_grid(3, 12)

        assert len(grid) == 12
        assert grid['mtry'].max() <= 3

    def test_reproducible(self):
        pd.testing.assert_frame_equal(
            build_search_grid(n_features=6, size=12),
            build_search_grid(n_features=6, size=12),
        )

    def test_regular_grid(self):
        grid = build_search_grid(n_features=8, method='regular', levels=2)

        assert len(grid) == 2 ** len(TUNABLE_PARAMS)
        assert set(grid['tree_depth']) == {1, 15}
        assert set(grid['mtry']) == {1, 8}

    def test_regular_grid_deduplicates_integer_levels(self):
        """mtry with 2 features has only two distinct values."""
        grid = build_search_grid(n_features=2, method='regular', levels=3)

        assert set(grid['mtry']) == {1, 2}
        assert not grid.drop(columns=[CONFIG_COLUMN]).duplicated().any()

    def test_unknown_method_raises(self):
        with pytest.raises(ValueError, match="Unknown grid method"):
            build_search_grid(n_features=5, method='random')

    def test_bad_size_raises(self):
        with pytest.raises(ValueError, match="size"):
            build_search_grid(n_features=5, size=0)

    def test_bad_levels_raises(self):
        with pytest.raises(ValueError, match="levels"):
            build_search_grid(n_features=5, method='regular', levels=0)


class TestGridToParamGrid:
    """Tests for grid_to_param_grid."""

    def test_one_subgrid_per_candidate(self, small_grid):
        param_grid = grid_to_param_grid(small_grid, n_features=5)

        assert len(param_grid) == len(small_grid)
        first = param_grid[0]
        assert set(first) == {
            'classifier__max_depth', 'classifier__min_child_weight', 'classifier__gamma',
            'classifier__subsample', 'classifier__colsample_bynode', 'classifier__learning_rate',
        }
        assert all(len(values) == 1 for values in first.values())

    def test_mtry_becomes_fraction(self, small_grid):
        param_grid = grid_to_param_grid(small_grid, n_features=5)

        for row, sub in zip(small_grid.itertuples(), param_grid):
            assert sub['classifier__colsample_bynode'][0] == pytest.approx(row.mtry / 5)


class TestGridSearch:
    """Tests for run_grid_search and collect_metrics."""

    @pytest.fixture
    def search_and_metrics(self, train_xy, small_grid):
        X, y = train_xy
        search = run_grid_search(X, y, small_grid, cv_folds=3, n_jobs=1, n_estimators=10)
        return search, collect_metrics(search, small_grid)

    def test_long_format(self, search_and_metrics, small_grid):
        _, metrics = search_and_metrics

        assert list(metrics.columns) == [
            CONFIG_COLUMN, *TUNABLE_PARAMS, METRIC_COLUMN, 'mean', 'n', 'std_err',
        ]
        assert len(metrics) == len(small_grid) * 3
        assert set(metrics[METRIC_COLUMN]) == {'accuracy', 'roc_auc', 'log_loss'}
        assert (metrics['n'] == 3).all()

    def test_rows_match_grid(self, search_and_metrics, small_grid):
        _, metrics = search_and_metrics
        auc = metrics[metrics[METRIC_COLUMN] == 'roc_auc'].set_index(CONFIG_COLUMN)
        grid = small_grid.set_index(CONFIG_COLUMN)

        for name in TUNABLE_PARAMS:
            np.testing.assert_allclose(auc.loc[grid.index, name], grid[name])

    def test_log_loss_sign_flipped(self, search_and_metrics):
        _, metrics = search_and_metrics
        log_loss = metrics[metrics[METRIC_COLUMN] == 'log_loss']['mean']

        assert (log_loss > 0).all()

    def test_std_err_non_negative(self, search_and_metrics):
        _, metrics = search_and_metrics
        assert (metrics['std_err'] >= 0).all()

    def test_std_err_uses_sample_sd_of_folds(self, search_and_metrics):
        search, metrics = search_and_metrics
        n = search.n_splits_
        folds = np.column_stack([search.cv_results_[f'split{i}_test_roc_auc'] for i in range(n)])
        auc = metrics[metrics[METRIC_COLUMN] == 'roc_auc']

        np.testing.assert_allclose(auc['std_err'], folds.std(axis=1, ddof=1) / np.sqrt(n))
        np.testing.assert_allclose(
            auc['std_err'] * np.sqrt((n - 1) / n),
            search.cv_results_['std_test_roc_auc'] / np.sqrt(n),
        )

    def test_no_refit(self, search_and_metrics):
        search, _ = search_and_metrics
        assert not hasattr(search, 'best_estimator_')

    def test_single_metric(self, train_xy, small_grid):
        X, y = train_xy
        search = run_grid_search(X, y, small_grid, metrics=('roc_auc',), cv_folds=3,
                                 n_jobs=1, n_estimators=10)

        metrics = collect_metrics(search, small_grid)

        assert set(metrics[METRIC_COLUMN]) == {'roc_auc'}

    def test_empty_grid_raises(self, train_xy, small_grid):
        X, y = train_xy
        with pytest.raises(ValueError, match="empty"):
            run_grid_search(X, y, small_grid.iloc[0:0])

    def test_unknown_metric_raises(self, train_xy, small_grid):
        X, y = train_xy
        with pytest.raises(ValueError, match="Unknown metrics"):
            run_grid_search(X, y, small_grid, metrics=('brier',))

    def test_grid_mismatch_raises(self, search_and_metrics, small_grid):
        search, _ = search_and_metrics
        with pytest.raises(ValueError, match="candidates"):
            collect_metrics(search, small_grid.iloc[:1])


class TestSelection:
    """Tests for summarize_metrics, show_best and select_best."""

    def test_summarize_is_wide(self, long_metrics):
        wide = summarize_metrics(long_metrics)

        assert len(wide) == 3
        assert {'mean_roc_auc', 'std_err_log_loss', 'tree_depth'}.issubset(wide.columns)
        assert wide.set_index(CONFIG_COLUMN).loc['Model002', 'mean_accuracy'] == 0.50

    def test_show_best_higher_is_better(self, long_metrics):
        best = show_best(long_metrics, 'roc_auc', n=2)

        assert best[CONFIG_COLUMN].tolist() == ['Model001', 'Model003']

    def test_show_best_lower_is_better(self, long_metrics):
        best = show_best(long_metrics, 'log_loss', n=3)

        assert best[CONFIG_COLUMN].tolist() == ['Model003', 'Model001', 'Model002']

    def test_show_best_n_larger_than_candidates(self, long_metrics):
        assert len(show_best(long_metrics, 'accuracy', n=10)) == 3

    def test_show_best_skips_failed_candidates(self, long_metrics):
        metrics = long_metrics.copy()
        metrics.loc[(metrics[CONFIG_COLUMN] == 'Model001'), 'mean'] = np.nan

        assert show_best(metrics, 'roc_auc', n=1)[CONFIG_COLUMN].iloc[0] == 'Model003'

    def test_unknown_metric_raises(self, long_metrics):
        with pytest.raises(ValueError, match="Unknown metric"):
            show_best(long_metrics, 'brier')

    def test_missing_metric_raises(self, long_metrics):
        metrics = long_metrics[long_metrics[METRIC_COLUMN] != 'accuracy']
        with pytest.raises(ValueError, match="No results"):
            select_best(metrics, 'accuracy')

    def test_select_best(self, long_metrics):
        best = select_best(long_metrics, 'roc_auc')

        assert best[CONFIG_COLUMN] == 'Model001'
        assert best['tree_depth'] == 3
        assert isinstance(best['mtry'], int)
        assert isinstance(best['learn_rate'], float)
        assert set(best) == {CONFIG_COLUMN, *TUNABLE_PARAMS}

    def test_select_best_depends_on_metric(self, long_metrics):
        assert select_best(long_metrics, 'accuracy')[CONFIG_COLUMN] == 'Model003'


class TestOptuna:
    """Tests for the sequential search path."""

    def test_objective_returns_score(self, train_xy):
        import optuna

        X, y = train_xy
        objective = create_objective(X, y, metric='roc_auc', n_estimators=10)
        study = optuna.create_study(direction='maximize')
        study.optimize(objective, n_trials=1)

        trial = study.trials[0]
        assert 0.0 <= trial.value <= 1.0
        assert trial.user_attrs['failed'] is False
        assert trial.user_attrs['cv_std'] >= 0

    def test_objective_records_sample_sd(self, train_xy, monkeypatch):
        import optuna

        fold_scores = np.array([0.6, 0.7, 0.8, 0.9, 1.0])
        monkeypatch.setattr(tuning_utils, 'cross_val_score', lambda *args, **kwargs: fold_scores)
        X, y = train_xy
        study = optuna.create_study(direction='maximize')
        study.optimize(create_objective(X, y, metric='roc_auc'), n_trials=1)

        trial = study.trials[0]
        assert trial.value == pytest.approx(0.8)
        assert trial.user_attrs['cv_std'] == pytest.approx(fold_scores.std(ddof=1))

    def test_objective_unknown_metric(self, train_xy):
        X, y = train_xy
        with pytest.raises(ValueError, match="Unknown metric"):
            create_objective(X, y, metric='brier')

    def test_no_studies_without_storage(self, optuna_storage):
        assert list_existing_studies() == []
        assert get_study_progress('missing') is None

    def test_run_and_resume(self, train_xy, optuna_storage):
        X, y = train_xy

        first = run_optuna_study(X, y, metric='roc_auc', n_trials=2, n_estimators=10)
        assert first['resumed'] is False
        assert first['trials_run'] == 2
        assert set(first['best_params']) == set(TUNABLE_PARAMS)

        second = run_optuna_study(X, y, metric='roc_auc', n_trials=3, n_estimators=10)
        assert second['resumed'] is True
        assert second['trials_run'] == 1
        assert len(second['study'].trials) == 3

        assert list_existing_studies() == ['xgboost_roc_auc']
        progress = get_study_progress('xgboost_roc_auc')
        assert progress['n_trials_total'] == 3

    def test_fresh_discards_previous_trials(self, train_xy, optuna_storage):
        X, y = train_xy
        run_optuna_study(X, y, metric='log_loss', n_trials=2, n_estimators=10)

        result = run_optuna_study(X, y, metric='log_loss', n_trials=1, fresh=True, n_estimators=10)

        assert result['resumed'] is False
        assert len(result['study'].trials) == 1
        assert result['best_value'] > 0

    def test_delete_study(self, train_xy, optuna_storage):
        X, y = train_xy
        run_optuna_study(X, y, n_trials=1, study_name='to_delete', n_estimators=10)

        assert delete_study('to_delete') is True
        assert delete_study('to_delete') is False
        assert get_study_progress('to_delete') is None

    def test_study_to_metrics(self, train_xy, optuna_storage):
        X, y = train_xy
        result = run_optuna_study(X, y, metric='roc_auc', n_trials=2, n_estimators=10)

        metrics = study_to_metrics(result['study'], 'roc_auc')

        assert list(metrics.columns) == [
            CONFIG_COLUMN, *TUNABLE_PARAMS, METRIC_COLUMN, 'mean', 'n', 'std_err',
        ]
        assert metrics[CONFIG_COLUMN].tolist() == ['Trial000', 'Trial001']
        assert select_best(metrics, 'roc_auc')[CONFIG_COLUMN] in {'Trial000', 'Trial001'}

    def test_all_trials_pruned(self, train_xy, optuna_storage, monkeypatch):
        def failing_cv(*args, **kwargs):
            raise ValueError("Input contains NaN")
        monkeypatch.setattr(tuning_utils, 'cross_val_score', failing_cv)
        X, y = train_xy

        result = run_optuna_study(X, y, metric='roc_auc', n_trials=2, n_estimators=10)

        assert result['best_value'] is None
        assert result['best_params'] == {}
        assert result['trials_run'] == 2
        assert study_to_metrics(result['study'], 'roc_auc').empty
