"""
Feature Engineering Module
==========================

Builds the withdrawal feature table that every ATM model is trained on.

The usage of test rows (on or after the split date) must never leak into
a feature. The builder keeps two tables: an untouched "truth" table of
actual usage and a working copy in which test usage is hidden. Features
are derived from the working copy only, and the actual usage is joined
back by (atm, trandate) once every feature has been computed.

Functions:
    - build_features: Fetch, split, derive and validate the feature table (cached)
    - hide_test_usage: Working copy with test usage removed
    - restore_usage: Join the actual usage back onto the working copy
    - seasonal_factor_by: Typical usage of a calendar slice relative to the ATM baseline
    - sequence: Day counter and lagged usage per ATM
"""

import logging
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from .cache import DiskCache
from .calendar_features import dates, holidays, paydays, social_security
from .config import FeatureOptions
from .data_loader import faults, fetch, validate
from .exceptions import SchemaError
from .stats import default, median_finite

logger = logging.getLogger(__name__)

KEY = ['atm', 'trandate']

SEASONAL_GROUPINGS = (
    ('seasonal_woy', ['atm', 'week_of_year']),
    ('seasonal_moy', ['atm', 'month_of_year']),
    ('seasonal_dow', ['atm', 'day_of_week']),
    ('seasonal_wom', ['atm', 'week_of_month']),
    ('seasonal_qua', ['atm', 'quarter']),
    ('seasonal_hol', ['atm', 'holiday']),
    ('seasonal_pay', ['atm', 'payday']),
)

SEQUENCE_LAGS = (7, 14)


def _typical(values: pd.Series) -> float:
    return median_finite(values, default=np.nan)


def seasonal_factor_by(df: pd.DataFrame, name: str, by: Sequence[str], value: str = 'usage') -> pd.DataFrame:
    """
    Append a seasonal factor column.

    The factor is the typical usage of each `by` group divided by the
    typical usage of the ATM overall. Groups without any visible usage,
    or ATMs with a zero baseline, get the neutral factor 1.0.

    Args:
        df: Working feature table
        name: Name of the new column
        by: Grouping columns, starting with 'atm'
        value: Column holding the usage

    Returns:
        The same DataFrame, for chaining
    """
    by = list(by)
    typical = df.groupby(by, sort=False)[value].transform(_typical)
    baseline = df.groupby(by[0], sort=False)[value].transform(_typical)

    factor = (typical / baseline).replace([np.inf, -np.inf], np.nan)
    df[name] = default(factor, 1.0).astype(float)
    return df


def sequence(df: pd.DataFrame, value: str = 'usage', lags: Sequence[int] = SEQUENCE_LAGS) -> pd.DataFrame:
    """
    Append sequence features per ATM in date order.

    Adds `sequence` (day number within the ATM's history), one
    `usage_lag_N` column per lag and `usage_mean_7`, the mean usage of the
    previous seven days. A row's own usage never contributes to its
    sequence features.

    Returns:
        The same DataFrame, for chaining
    """
    ordered = df.sort_values(KEY)
    grouped = ordered.groupby('atm', sort=False)[value]

    df['sequence'] = ordered.groupby('atm', sort=False).cumcount()
    for lag in lags:
        df[f'{value}_lag_{lag}'] = grouped.shift(lag)
    df[f'{value}_mean_7'] = grouped.transform(lambda s: s.shift(1).rolling(7, min_periods=1).mean())
    return df


def hide_test_usage(withd: pd.DataFrame) -> pd.DataFrame:
    """Copy of the table with usage removed from every test row."""
    working = withd.copy()
    working.loc[working['train'] == 0, 'usage'] = np.nan
    return working


def restore_usage(working: pd.DataFrame, truth: pd.DataFrame) -> pd.DataFrame:
    """
    Replace the working usage with the actual usage, keyed by (atm, trandate).

    Row order of `working` is preserved.
    """
    restored = working.drop(columns=['usage']).merge(
        truth[KEY + ['usage']], on=KEY, how='left', validate='one_to_one'
    )
    columns = KEY + ['usage'] + [c for c in restored.columns if c not in KEY + ['usage']]
    return restored[columns]


def _build(options: FeatureOptions) -> pd.DataFrame:
    if options.split_at is None:
        raise ValueError("A split date is required to build features")

    logger.info("=" * 60)
    logger.info("BUILDING FEATURE SET")
    logger.info("=" * 60)

    # fetch the withdrawal history, including the forecast horizon
    withd = fetch(options.history_file, options.as_of(), options.data_dir)
    if withd.empty:
        raise SchemaError(f"Degenerate feature table: no withdrawal history on or before {options.as_of()}")

    # split and mark test versus training data
    split_at = pd.Timestamp(options.split_at)
    withd['train'] = (withd['trandate'] < split_at).astype(int)
    logger.info(
        f"Split at {split_at.date()}: {int(withd['train'].sum())} train rows, "
        f"{int((withd['train'] == 0).sum())} test rows"
    )

    # the actual usage is kept aside; features only ever see the working copy
    truth = withd[KEY + ['usage']].copy()
    working = hide_test_usage(withd)

    # actuals cannot be trusted when a fault occurs; ignore them before building features
    faults(working)

    dates(working)
    paydays(working)
    holidays(working)
    social_security(working)
    for name, by in SEASONAL_GROUPINGS:
        seasonal_factor_by(working, name, by)
    sequence(working)

    features = restore_usage(working, truth)
    validate(features)

    logger.info(f"Completed building feature set: [{features.shape[0]} x {features.shape[1]}]")
    return features


def build_features(options: FeatureOptions, cache: Optional[DiskCache] = None) -> pd.DataFrame:
    """
    Build (or load from cache) the feature table.

    Args:
        options: History source, split date and forecast horizon
        cache: Cache for the finished table; a memory-only cache is used if None

    Returns:
        Validated feature table, one row per (atm, trandate)

    Raises:
        SchemaError: If there is no history to build from, or the finished
            table fails validation
    """
    cache = cache if cache is not None else DiskCache()
    return cache.get_or_compute(f"{options.data_id}-features", lambda: _build(options))


def feature_columns(features: pd.DataFrame) -> List[str]:
    """Columns usable as model inputs (everything but the key, response and split flag)."""
    return [c for c in features.columns if c not in ('atm', 'usage', 'train')]
