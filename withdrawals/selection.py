"""
Feature Selection Module
========================

Removes features that carry little information before a model is trained.

Functions:
    - near_zero_variance: Constant or nearly constant columns
    - correlation_matrix: Pairwise-complete correlations with undefined values set to 0
    - find_correlation: Redundant columns of a highly correlated feature set
"""

import logging
from typing import List

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def near_zero_variance(
    df: pd.DataFrame,
    freq_cut: float = 95 / 5,
    unique_cut: float = 10.0
) -> List[str]:
    """
    Find columns with zero or near-zero variance.

    A column is dropped when it is all-missing or constant, or when both:
        - the most common value is more than `freq_cut` times as frequent
          as the second most common value, and
        - distinct values make up no more than `unique_cut` percent of rows.

    Missing values are ignored when counting.

    Args:
        df: Numeric feature matrix
        freq_cut: Cutoff for the ratio of the two most common values
        unique_cut: Cutoff for the percentage of distinct values

    Returns:
        Names of the columns to drop, in column order
    """
    drop = []
    n_rows = len(df)

    for col in df.columns:
        values = df[col].dropna()
        counts = values.value_counts()

        if len(counts) <= 1:
            drop.append(col)
            continue

        freq_ratio = counts.iloc[0] / counts.iloc[1]
        percent_unique = 100.0 * len(counts) / n_rows
        if freq_ratio > freq_cut and percent_unique <= unique_cut:
            drop.append(col)

    return drop


def correlation_matrix(df: pd.DataFrame) -> pd.DataFrame:
    """
    Pearson correlation over pairwise-complete observations.

    Each pair of columns uses only the rows where both are present.
    Undefined correlations (constant columns, no overlapping rows) are 0.
    """
    return df.astype(float).corr(method='pearson', min_periods=1).fillna(0.0)


def find_correlation(df: pd.DataFrame, cutoff: float = 0.90) -> List[str]:
    """
    Find redundant columns among highly correlated features.

    Repeatedly takes the pair of remaining columns with the largest
    absolute correlation. While that correlation is above `cutoff`, the
    member of the pair with the larger mean absolute correlation to the
    other remaining columns is dropped (on a tie, the later column).

    Running this again on the remaining columns drops nothing.

    Args:
        df: Numeric feature matrix (may contain missing values)
        cutoff: Absolute correlation above which a pair is redundant

    Returns:
        Names of the columns to drop, in the order they were dropped
    """
    if df.shape[1] < 2:
        return []

    names = list(df.columns)
    corr = correlation_matrix(df).abs().to_numpy(copy=True)
    np.fill_diagonal(corr, np.nan)

    active = list(range(len(names)))
    dropped = []

    while len(active) > 1:
        sub = corr[np.ix_(active, active)]
        upper = np.triu(np.nan_to_num(sub, nan=-1.0), k=1)
        upper[np.tril_indices_from(upper)] = -1.0

        flat = int(np.argmax(upper))
        i, j = divmod(flat, len(active))
        if upper[i, j] <= cutoff:
            break

        mean_i = np.nanmean(sub[i])
        mean_j = np.nanmean(sub[j])
        victim = active[i] if mean_i > mean_j else active[j]

        dropped.append(names[victim])
        active.remove(victim)

    return dropped
