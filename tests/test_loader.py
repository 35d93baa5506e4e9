"""
Unit tests for fetching, loading, cleaning and splitting the match table.
"""

import numpy as np
import pandas as pd
import pytest

from matchtune.config import TARGET_COLUMN
from matchtune.data import loader
from matchtune.data.loader import (
    fetch_matches,
    source_record_path,
    load_raw_matches,
    clean_matches,
    split_matches,
    split_features_target,
    save_splits,
    load_splits,
)


class TestFetchMatches:
    """Tests for fetch_matches (download + cache)."""

    def test_uses_cache_without_reading_url(self, tmp_path, raw_matches, monkeypatch):
        dest = tmp_path / 'matches.csv'
        raw_matches.to_csv(dest, index=False)

        def fail(*args, **kwargs):
            raise AssertionError("should not download")
        monkeypatch.setattr(loader.pd, 'read_csv', fail)

        assert fetch_matches('https://example.org/matches.csv', dest=dest) == dest

    def test_downloads_and_caches(self, tmp_path, raw_matches, monkeypatch):
        dest = tmp_path / 'raw' / 'matches.csv'
        requested = []

        def fake_read_csv(url):
            requested.append(url)
            return raw_matches
        monkeypatch.setattr(loader.pd, 'read_csv', fake_read_csv)

        path = fetch_matches('https://example.org/matches.csv', dest=dest)

        assert path == dest
        assert requested == ['https://example.org/matches.csv']
        assert len(dest.read_text().splitlines()) == len(raw_matches) + 1

    def test_force_redownloads(self, tmp_path, raw_matches, monkeypatch):
        dest = tmp_path / 'matches.csv'
        pd.DataFrame({TARGET_COLUMN: [1]}).to_csv(dest, index=False)
        monkeypatch.setattr(loader.pd, 'read_csv', lambda url: raw_matches)

        fetch_matches('https://example.org/matches.csv', dest=dest, force=True)

        assert len(dest.read_text().splitlines()) == len(raw_matches) + 1

    def test_records_source_next_to_cache(self, tmp_path, raw_matches, monkeypatch):
        dest = tmp_path / 'matches.csv'
        monkeypatch.setattr(loader.pd, 'read_csv', lambda url: raw_matches)

        fetch_matches('https://example.org/matches.csv', dest=dest)

        assert source_record_path(dest).read_text() == 'https://example.org/matches.csv'

    def test_changed_url_refetches(self, tmp_path, raw_matches, monkeypatch):
        dest = tmp_path / 'matches.csv'
        requested = []

        def fake_read_csv(url):
            requested.append(url)
            return raw_matches.head(len(requested) * 10)
        monkeypatch.setattr(loader.pd, 'read_csv', fake_read_csv)

        fetch_matches('https://example.org/2023.csv', dest=dest)
        fetch_matches('https://example.org/2023.csv', dest=dest)
        fetch_matches('https://example.org/2024.csv', dest=dest)

        assert requested == ['https://example.org/2023.csv', 'https://example.org/2024.csv']
        assert len(dest.read_text().splitlines()) == 20 + 1

    def test_default_url_reuses_recorded_cache(self, tmp_path, raw_matches, monkeypatch):
        dest = tmp_path / 'matches.csv'
        monkeypatch.setattr(loader.pd, 'read_csv', lambda url: raw_matches)
        fetch_matches('https://example.org/2023.csv', dest=dest)

        def fail(*args, **kwargs):
            raise AssertionError("should not download")
        monkeypatch.setattr(loader.pd, 'read_csv', fail)
        monkeypatch.setattr(loader, 'DATA_URL', 'https://example.org/2024.csv')

        assert fetch_matches(dest=dest) == dest

    def test_local_path_is_cached(self, tmp_path, raw_matches_csv, raw_matches):
        dest = tmp_path / 'raw' / 'cache.csv'

        fetch_matches(raw_matches_csv, dest=dest)

        assert pd.read_csv(dest).shape == raw_matches.shape
        assert source_record_path(dest).read_text() == str(raw_matches_csv.resolve())

    def test_no_url_no_cache_raises(self, tmp_path, monkeypatch):
        monkeypatch.setattr(loader, 'DATA_URL', None)
        with pytest.raises(ValueError, match="No data URL"):
            fetch_matches(dest=tmp_path / 'missing.csv')

    def test_download_failure_raises_ioerror(self, tmp_path, monkeypatch):
        def broken(url):
            raise OSError("connection refused")
        monkeypatch.setattr(loader.pd, 'read_csv', broken)

        with pytest.raises(IOError, match="Failed to fetch"):
            fetch_matches('https://example.org/matches.csv', dest=tmp_path / 'm.csv')


class TestLoadRawMatches:
    """Tests for load_raw_matches."""

    def test_loads_csv(self, raw_matches_csv, raw_matches):
        df = load_raw_matches(raw_matches_csv)
        assert df.shape == raw_matches.shape

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_raw_matches(tmp_path / 'nope.csv')

    def test_empty_file_raises(self, tmp_path):
        path = tmp_path / 'empty.csv'
        path.write_text('')
        with pytest.raises(ValueError, match="empty"):
            load_raw_matches(path)

    def test_header_only_raises(self, tmp_path):
        path = tmp_path / 'header.csv'
        path.write_text(f'gameId,{TARGET_COLUMN}\n')
        with pytest.raises(ValueError, match="no data rows"):
            load_raw_matches(path)

    def test_missing_target_raises(self, tmp_path):
        path = tmp_path / 'no_target.csv'
        pd.DataFrame({'a': [1, 2]}).to_csv(path, index=False)
        with pytest.raises(ValueError, match="Target column"):
            load_raw_matches(path)

    def test_no_source_configured_raises(self, tmp_path, monkeypatch):
        monkeypatch.setattr(loader, 'RAW_DATA_DIR', tmp_path)
        monkeypatch.setattr(loader, 'DATA_URL', None)
        with pytest.raises(FileNotFoundError, match="prepare"):
            load_raw_matches()


class TestCleanMatches:
    """Tests for clean_matches."""

    def test_drops_incomplete_rows(self, raw_matches):
        cleaned = clean_matches(raw_matches)

        assert len(cleaned) == len(raw_matches) - 3
        assert not cleaned.isna().any().any()
        assert cleaned.index.equals(pd.RangeIndex(len(cleaned)))

    def test_bool_target_becomes_int(self):
        df = pd.DataFrame({TARGET_COLUMN: [True, False, True], 'x': [1, 2, 3]})
        cleaned = clean_matches(df)
        assert cleaned[TARGET_COLUMN].tolist() == [1, 0, 1]

    def test_non_binary_target_raises(self):
        df = pd.DataFrame({TARGET_COLUMN: [0, 1, 2], 'x': [1, 2, 3]})
        with pytest.raises(ValueError, match="binary"):
            clean_matches(df)

    def test_all_rows_incomplete_raises(self):
        df = pd.DataFrame({TARGET_COLUMN: [0, 1], 'x': [np.nan, np.nan]})
        with pytest.raises(ValueError, match="No rows left"):
            clean_matches(df)


class TestSplits:
    """Tests for split/save/load helpers."""

    def test_split_is_stratified(self, model_table):
        train, test = split_matches(model_table, test_size=0.25)

        assert len(train) + len(test) == len(model_table)
        assert len(test) == pytest.approx(0.25 * len(model_table), abs=1)
        assert train[TARGET_COLUMN].mean() == pytest.approx(test[TARGET_COLUMN].mean(), abs=0.05)

    def test_split_is_reproducible(self, model_table):
        first, _ = split_matches(model_table)
        second, _ = split_matches(model_table)
        pd.testing.assert_frame_equal(first, second)

    def test_split_features_target(self, model_table):
        X, y = split_features_target(model_table)

        assert TARGET_COLUMN not in X.columns
        assert isinstance(y, np.ndarray)
        assert len(X) == len(y)

    def test_save_and_load(self, tmp_path, model_table):
        train, test = split_matches(model_table)
        save_splits(train, test, data_dir=tmp_path)

        loaded_train, loaded_test = load_splits(data_dir=tmp_path)

        assert loaded_train.shape == train.shape
        assert list(loaded_test.columns) == list(test.columns)

    def test_load_missing_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="prepare"):
            load_splits(data_dir=tmp_path / 'empty')
