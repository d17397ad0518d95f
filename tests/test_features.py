"""
Test Suite for Feature Engineering Module
===========================================

Tests for fetching, the leakage guard, derived features and validation.
"""

from datetime import date

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import withdrawals.features as features_module
from withdrawals.cache import DiskCache
from withdrawals.config import FeatureOptions
from withdrawals.data_loader import REQUIRED_FEATURE_COLUMNS, fetch, validate
from withdrawals.exceptions import SchemaError
from withdrawals.features import (
    SEASONAL_GROUPINGS, build_features, hide_test_usage, restore_usage,
    seasonal_factor_by, sequence
)

START = pd.Timestamp('2024-01-01')
SPLIT_AT = date(2024, 2, 19)
LAST_DAY = date(2024, 2, 29)

DERIVED = [name for name, _ in SEASONAL_GROUPINGS] + [
    'sequence', 'usage_lag_7', 'usage_lag_14', 'usage_mean_7'
]


def make_history(seed=42, days=60):
    rng = np.random.default_rng(seed)
    trandate = pd.date_range(START, periods=days, freq='D')
    weekly = 200 * np.sin(2 * np.pi * np.arange(days) / 7)
    return pd.concat([
        pd.DataFrame({'atm': 'A', 'trandate': trandate, 'usage': 0}),
        pd.DataFrame({
            'atm': 'B',
            'trandate': trandate,
            'usage': np.round(1000 + weekly + rng.normal(0, 50, days)).astype(int),
        }),
    ], ignore_index=True)


def write_history(path, history):
    history.to_csv(path, index=False, date_format='%Y-%m-%d')
    return str(path)


def options_for(path):
    return FeatureOptions(
        history_file=str(path),
        data_dir=str(Path(path).parent),
        split_at=SPLIT_AT,
        forecast_out=0,
        today=LAST_DAY,
    )


class TestFetch:
    """Tests for loading the history."""

    def test_fills_missing_days_and_horizon(self, tmp_path):
        history = make_history()
        history = history[history['trandate'] != pd.Timestamp('2024-01-10')]
        path = write_history(tmp_path / 'withd.csv', history)

        withd = fetch(path, date(2024, 3, 5), str(tmp_path))

        assert len(withd) == 2 * 65
        gap = withd[(withd['atm'] == 'B') & (withd['trandate'] == pd.Timestamp('2024-01-10'))]
        assert gap['usage'].isna().all()
        future = withd[withd['trandate'] > pd.Timestamp('2024-02-29')]
        assert future['usage'].isna().all()
        assert (withd['fault'] == 0).all()

    def test_drops_rows_after_as_of(self, tmp_path):
        path = write_history(tmp_path / 'withd.csv', make_history())
        withd = fetch(path, date(2024, 1, 31), str(tmp_path))
        assert withd['trandate'].max() == pd.Timestamp('2024-01-31')

    def test_resolves_file_in_data_dir(self, tmp_path):
        write_history(tmp_path / 'withd.csv', make_history())
        withd = fetch('withd.csv', LAST_DAY, str(tmp_path))
        assert len(withd) == 120

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            fetch(str(tmp_path / 'nope.csv'), LAST_DAY, str(tmp_path))

    def test_missing_columns(self, tmp_path):
        path = write_history(tmp_path / 'withd.csv', make_history().drop(columns=['usage']))
        with pytest.raises(SchemaError, match="usage"):
            fetch(path, LAST_DAY, str(tmp_path))


class TestDerivedFeatures:
    """Tests for seasonal factors and sequence features."""

    @pytest.fixture
    def table(self):
        return pd.DataFrame({
            'atm': ['A'] * 4 + ['B'] * 4,
            'trandate': list(pd.date_range(START, periods=4)) * 2,
            'group': [1, 1, 2, 2] * 2,
            'usage': [10.0, 30.0, 40.0, np.nan, 0.0, 0.0, 0.0, 0.0],
        })

    def test_seasonal_factor_is_ratio_to_baseline(self, table):
        seasonal_factor_by(table, 'factor', ['atm', 'group'])
        a = table[table['atm'] == 'A']['factor'].tolist()
        # baseline of A is mean(10, 30, 40) = 80/3
        assert a[0] == pytest.approx(20 / (80 / 3))
        assert a[2] == pytest.approx(40 / (80 / 3))
        assert a[3] == pytest.approx(40 / (80 / 3))

    def test_seasonal_factor_neutral_for_zero_baseline(self, table):
        seasonal_factor_by(table, 'factor', ['atm', 'group'])
        assert (table[table['atm'] == 'B']['factor'] == 1.0).all()

    def test_sequence_features(self, table):
        sequence(table, lags=(1,))
        a = table[table['atm'] == 'A']
        assert a['sequence'].tolist() == [0, 1, 2, 3]
        assert np.isnan(a['usage_lag_1'].iloc[0])
        assert a['usage_lag_1'].iloc[1:].tolist() == [10.0, 30.0, 40.0]
        assert np.isnan(a['usage_mean_7'].iloc[0])
        assert a['usage_mean_7'].iloc[3] == pytest.approx(80 / 3)

    def test_sequence_respects_date_order(self, table):
        shuffled = table.iloc[[3, 1, 0, 2, 4, 5, 6, 7]].copy()
        sequence(shuffled, lags=(1,))
        row = shuffled[(shuffled['atm'] == 'A') & (shuffled['trandate'] == START + pd.Timedelta(days=1))]
        assert row['usage_lag_1'].iloc[0] == 10.0
        assert row['sequence'].iloc[0] == 1

    def test_hide_and_restore_usage(self, table):
        table['train'] = [1, 1, 0, 0] * 2
        truth = table[['atm', 'trandate', 'usage']].copy()

        working = hide_test_usage(table)
        assert working.loc[working['train'] == 0, 'usage'].isna().all()
        assert table.loc[2, 'usage'] == 40.0

        restored = restore_usage(working, truth)
        pd.testing.assert_series_equal(restored['usage'], truth['usage'])
        assert list(restored.columns[:3]) == ['atm', 'trandate', 'usage']


class TestBuildFeatures:
    """Tests for the complete feature builder."""

    @pytest.fixture
    def history(self):
        return make_history()

    @pytest.fixture
    def built(self, tmp_path, history):
        path = write_history(tmp_path / 'withd.csv', history)
        return build_features(options_for(path), DiskCache())

    def test_no_history_before_as_of_date(self, tmp_path, history):
        path = write_history(tmp_path / 'withd.csv', history)
        options = options_for(path)
        options.today = date(2023, 1, 1)

        with pytest.raises(SchemaError, match="Degenerate"):
            build_features(options, DiskCache())

    def test_header_only_history(self, tmp_path, history):
        path = write_history(tmp_path / 'withd.csv', history.iloc[0:0])

        with pytest.raises(SchemaError, match="Degenerate"):
            build_features(options_for(path), DiskCache())

    def test_shape_and_columns(self, built):
        assert len(built) == 120
        for col in REQUIRED_FEATURE_COLUMNS:
            assert col in built.columns

    def test_train_flag_splits_at_date(self, built):
        split = pd.Timestamp(SPLIT_AT)
        assert (built.loc[built['trandate'] < split, 'train'] == 1).all()
        assert (built.loc[built['trandate'] >= split, 'train'] == 0).all()
        assert built.loc[built['trandate'] == split, 'train'].eq(0).all()

    def test_usage_restored_for_every_row(self, built, history):
        merged = built.merge(history, on=['atm', 'trandate'], suffixes=('', '_fetched'))
        assert len(merged) == len(built)
        np.testing.assert_array_equal(merged['usage'].to_numpy(), merged['usage_fetched'].to_numpy())

    def test_test_usage_does_not_leak_into_features(self, tmp_path, history):
        perturbed = history.copy()
        held_out = perturbed['trandate'] >= pd.Timestamp(SPLIT_AT)
        perturbed.loc[held_out, 'usage'] = perturbed.loc[held_out, 'usage'] * 10 + 12345

        (tmp_path / 'a').mkdir()
        (tmp_path / 'b').mkdir()
        original = build_features(options_for(write_history(tmp_path / 'a' / 'withd.csv', history)), DiskCache())
        changed = build_features(options_for(write_history(tmp_path / 'b' / 'withd.csv', perturbed)), DiskCache())

        pd.testing.assert_frame_equal(original[DERIVED], changed[DERIVED])
        assert not original['usage'].equals(changed['usage'])

    def test_training_usage_does_feed_features(self, tmp_path, history):
        perturbed = history.copy()
        early = (perturbed['atm'] == 'B') & (perturbed['trandate'] < pd.Timestamp('2024-01-20'))
        perturbed.loc[early, 'usage'] = perturbed.loc[early, 'usage'] * 3

        (tmp_path / 'a').mkdir()
        (tmp_path / 'b').mkdir()
        original = build_features(options_for(write_history(tmp_path / 'a' / 'withd.csv', history)), DiskCache())
        changed = build_features(options_for(write_history(tmp_path / 'b' / 'withd.csv', perturbed)), DiskCache())

        assert not original['seasonal_dow'].equals(changed['seasonal_dow'])

    def test_faulted_usage_hidden_from_features(self, tmp_path, history):
        faulted = history.copy()
        faulted['fault'] = 0
        day = (faulted['atm'] == 'B') & (faulted['trandate'] == pd.Timestamp('2024-01-20'))
        faulted.loc[day, 'fault'] = 1

        built = build_features(options_for(write_history(tmp_path / 'withd.csv', faulted)), DiskCache())
        b = built[built['atm'] == 'B'].reset_index(drop=True)

        idx = b.index[b['trandate'] == pd.Timestamp('2024-01-27')][0]
        assert np.isnan(b.loc[idx, 'usage_lag_7'])
        # the actual usage is still reported
        assert b.loc[b['trandate'] == pd.Timestamp('2024-01-20'), 'usage'].iloc[0] == \
            history.loc[day, 'usage'].iloc[0]

    def test_result_is_cached(self, tmp_path, history, monkeypatch):
        path = write_history(tmp_path / 'withd.csv', history)
        calls = []
        real_fetch = features_module.fetch

        def counting_fetch(*args, **kwargs):
            calls.append(args)
            return real_fetch(*args, **kwargs)

        monkeypatch.setattr(features_module, 'fetch', counting_fetch)
        cache = DiskCache(str(tmp_path / 'cache'))

        first = build_features(options_for(path), cache)
        second = build_features(options_for(path), cache)
        assert len(calls) == 1
        assert first is second

        # a new cache over the same directory reads the table back from disk
        third = build_features(options_for(path), DiskCache(str(tmp_path / 'cache')))
        assert len(calls) == 1
        pd.testing.assert_frame_equal(first, third)

    def test_split_date_required(self, tmp_path, history):
        path = write_history(tmp_path / 'withd.csv', history)
        options = options_for(path)
        options.split_at = None
        with pytest.raises(ValueError, match="split date"):
            build_features(options, DiskCache())


class TestValidate:
    """Tests for feature table validation."""

    @pytest.fixture
    def built(self, tmp_path):
        path = write_history(tmp_path / 'withd.csv', make_history())
        return build_features(options_for(path), DiskCache())

    def test_valid_table(self, built):
        is_valid, report = validate(built)
        assert is_valid
        assert report['total_rows'] == 120

    def test_missing_column(self, built):
        with pytest.raises(SchemaError, match="seasonal_dow"):
            validate(built.drop(columns=['seasonal_dow']))

    def test_non_finite_column(self, built):
        broken = built.copy()
        broken.loc[0, 'seasonal_pay'] = np.inf
        with pytest.raises(SchemaError, match="Non-finite"):
            validate(broken)

    def test_empty_table(self, built):
        with pytest.raises(SchemaError, match="Degenerate"):
            validate(built.iloc[0:0])

    def test_duplicate_keys(self, built):
        with pytest.raises(SchemaError, match="Duplicate"):
            validate(pd.concat([built, built.iloc[[0]]], ignore_index=True))

    def test_missing_usage_is_allowed(self, built):
        relaxed = built.copy()
        relaxed.loc[0, 'usage'] = np.nan
        assert validate(relaxed)[0]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
