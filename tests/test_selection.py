"""
Test Suite for Feature Selection Module
=========================================

Tests for near-zero-variance detection and correlation pruning.
"""

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from withdrawals.selection import correlation_matrix, find_correlation, near_zero_variance


class TestNearZeroVariance:
    """Tests for near_zero_variance."""

    @pytest.fixture
    def matrix(self):
        rng = np.random.default_rng(0)
        rare = np.zeros(100)
        rare[:3] = 1
        return pd.DataFrame({
            'continuous': rng.normal(size=100),
            'constant': np.full(100, 7.0),
            'missing': np.full(100, np.nan),
            'rare_flag': rare,
            'weekday': np.arange(100) % 7,
        })

    def test_constant_column_removed(self, matrix):
        assert 'constant' in near_zero_variance(matrix)

    def test_all_missing_column_removed(self, matrix):
        assert 'missing' in near_zero_variance(matrix)

    def test_rare_flag_removed(self, matrix):
        # 97:3 frequency ratio, 2% distinct values
        assert 'rare_flag' in near_zero_variance(matrix)

    def test_informative_columns_kept(self, matrix):
        drop = near_zero_variance(matrix)
        assert 'continuous' not in drop
        assert 'weekday' not in drop

    def test_constant_with_missing_values_removed(self):
        df = pd.DataFrame({'x': [1.0, np.nan, 1.0, np.nan], 'y': [1.0, 2.0, 3.0, 4.0]})
        assert near_zero_variance(df) == ['x']

    def test_cutoffs(self, matrix):
        assert 'rare_flag' not in near_zero_variance(matrix, freq_cut=50)
        assert 'rare_flag' not in near_zero_variance(matrix, unique_cut=1)


class TestCorrelation:
    """Tests for correlation_matrix and find_correlation."""

    @pytest.fixture
    def matrix(self):
        rng = np.random.default_rng(1)
        x = rng.normal(size=200)
        y = rng.normal(size=200)
        z = rng.normal(size=200)
        return pd.DataFrame({
            'x': x,
            'x2': 2 * x + 1,
            'y': y,
            'y_noisy': y + rng.normal(scale=0.05, size=200),
            'z': z,
        })

    def test_undefined_correlation_is_zero(self):
        df = pd.DataFrame({'a': [1.0, 2.0, 3.0, 4.0], 'const': [5.0] * 4})
        corr = correlation_matrix(df)
        assert corr.loc['a', 'const'] == 0.0
        assert corr.loc['const', 'const'] == 0.0
        assert corr.loc['a', 'a'] == pytest.approx(1.0)

    def test_pairwise_complete_observations(self):
        df = pd.DataFrame({
            'a': [1.0, 2.0, 3.0, 4.0, np.nan, 6.0],
            'b': [2.0, 4.0, 6.0, 8.0, 10.0, np.nan],
            'c': [np.nan, 1.0, 0.0, 1.0, 0.0, 1.0],
        })
        corr = correlation_matrix(df)
        assert corr.loc['a', 'b'] == pytest.approx(1.0)

    def test_constant_column_not_dropped(self):
        df = pd.DataFrame({'a': np.arange(10.0), 'const': np.ones(10)})
        assert find_correlation(df) == []

    def test_drops_one_of_each_redundant_pair(self, matrix):
        dropped = find_correlation(matrix, cutoff=0.9)
        assert len(dropped) == 2
        assert len({'x', 'x2'} & set(dropped)) == 1
        assert len({'y', 'y_noisy'} & set(dropped)) == 1
        assert 'z' not in dropped

    def test_tie_drops_later_column(self):
        x = np.arange(20.0)
        df = pd.DataFrame({'x': x, 'x2': x * 3})
        assert find_correlation(df) == ['x2']

    def test_drops_column_with_larger_mean_correlation(self):
        rng = np.random.default_rng(2)
        base = rng.normal(size=500)
        other = rng.normal(size=500)
        df = pd.DataFrame({
            'hub': base + 0.3 * other,
            'a': base + rng.normal(scale=0.1, size=500),
            'b': other,
        })
        # 'hub' is correlated with both 'a' and 'b'; 'a' only with 'hub'
        assert find_correlation(df, cutoff=0.9) == ['hub']

    def test_idempotent(self, matrix):
        dropped = find_correlation(matrix, cutoff=0.9)
        pruned = matrix.drop(columns=dropped)
        assert find_correlation(pruned, cutoff=0.9) == []

    def test_deterministic(self, matrix):
        assert find_correlation(matrix) == find_correlation(matrix.copy())

    def test_small_inputs(self):
        assert find_correlation(pd.DataFrame()) == []
        assert find_correlation(pd.DataFrame({'a': [1.0, 2.0]})) == []

    def test_missing_values_tolerated(self, matrix):
        holes = matrix.copy()
        holes.iloc[::5, 1] = np.nan
        holes.iloc[::7, 3] = np.nan
        dropped = find_correlation(holes, cutoff=0.9)
        assert len(dropped) == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
