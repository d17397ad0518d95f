"""
Finite Statistics Module
========================

Aggregate functions that always return a usable number.

Each statistic ignores missing values and substitutes a default whenever
the result would not be finite (empty input, all-missing input, a single
observation for the standard deviation, ...).

Functions:
    - finite: Pass-through that replaces a non-finite result by a default
    - mean_finite, sd_finite, min_finite, max_finite, median_finite
    - median_ordered: Median of an ordered categorical
    - default: Replace missing values by a default
    - is_finite_frame: Per-column check that every value is finite
    - cross_join: Every combination of the given values as a DataFrame
"""

import logging
import warnings
from itertools import product
from typing import Any, Callable

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def finite(default: Any, fn: Callable, *args, **kwargs) -> Any:
    """
    Call `fn` and return its result, or `default` if the result is not finite.

    Args:
        default: Value returned when the result is NaN, infinite, not a number
            or not a scalar
        fn: Function to call
        *args, **kwargs: Passed through to `fn`

    Returns:
        The result of `fn` or `default`
    """
    result = fn(*args, **kwargs)
    try:
        ok = result is not None and np.ndim(result) == 0 and bool(np.isfinite(result))
    except (TypeError, ValueError):
        ok = False
    return result if ok else default


def _series(values) -> pd.Series:
    return pd.Series(values, dtype='float64')


def mean_finite(values, default: float = 0) -> float:
    return finite(default, lambda: _series(values).mean(skipna=True))


def sd_finite(values, default: float = 0) -> float:
    return finite(default, lambda: _series(values).std(skipna=True))


def min_finite(values, default: float = 0) -> float:
    return finite(default, lambda: _series(values).min(skipna=True))


def max_finite(values, default: float = 0) -> float:
    return finite(default, lambda: _series(values).max(skipna=True))


def median_finite(values, default: float = 0) -> float:
    """
    Finite "median" of the values.

    NOTE: this returns the mean, not the median. Seasonal factors and other
    callers were tuned against this behaviour so it is kept as is.
    """
    return finite(default, lambda: _series(values).mean(skipna=True))


def median_ordered(values) -> Any:
    """
    Median of an ordered categorical.

    When the median of the category codes falls between two levels the
    lower level is used and a RuntimeWarning is emitted.

    Args:
        values: Ordered pandas Categorical (or Series of one)

    Returns:
        The category label at the median rank
    """
    cat = pd.Categorical(values)
    if not cat.ordered:
        raise ValueError("median_ordered requires an ordered categorical")

    codes = cat.codes[cat.codes >= 0]
    if len(codes) == 0:
        raise ValueError("median_ordered requires at least one non-missing value")

    m = float(np.median(codes))
    if np.floor(m) != m:
        warnings.warn("median is between two values; using the first one", RuntimeWarning)
        m = np.floor(m)

    return cat.categories[int(m)]


def default(values, default):
    """Replace missing values with a default."""
    if isinstance(values, (pd.Series, pd.DataFrame)):
        return values.fillna(default)
    if np.isscalar(values) or values is None:
        return default if pd.isna(values) else values
    values = np.array(values, dtype='float64')
    values[np.isnan(values)] = default
    return values


def is_finite_frame(df: pd.DataFrame) -> pd.Series:
    """
    Check that every value of every column is finite.

    Non-numeric columns are finite when they have no missing values.

    Returns:
        Boolean Series indexed by column name
    """
    result = {}
    for col in df.columns:
        series = df[col]
        if pd.api.types.is_bool_dtype(series) or not pd.api.types.is_numeric_dtype(series):
            result[col] = bool(series.notna().all())
        else:
            result[col] = bool(np.isfinite(series.to_numpy(dtype='float64')).all())
    return pd.Series(result, dtype=bool)


def cross_join(**columns) -> pd.DataFrame:
    """
    Every combination of the given values.

    Example:
        cross_join(atm=['a', 'b'], trandate=dates)
    """
    names = list(columns)
    rows = list(product(*(list(columns[name]) for name in names)))
    return pd.DataFrame(rows, columns=names)
