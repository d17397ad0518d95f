"""
Data Loader Module
==================

Handles configuration loading, withdrawal history ingestion, fault
handling and validation of the finished feature table.

Functions:
    - load_config: Load YAML configuration file
    - fetch: Load the withdrawal history for every ATM up to a date
    - faults: Hide usage recorded while an ATM was faulted
    - validate: Check the feature table before training
"""

import logging
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, Tuple

import numpy as np
import pandas as pd
import yaml

from .exceptions import SchemaError
from .stats import cross_join, is_finite_frame

logger = logging.getLogger(__name__)

REQUIRED_HISTORY_COLUMNS = ('atm', 'trandate', 'usage')

# columns that must be present and finite once the features are built
REQUIRED_FEATURE_COLUMNS = (
    'atm', 'trandate', 'train', 'fault',
    'day_of_week', 'day_of_month', 'week_of_year', 'week_of_month', 'month_of_year', 'quarter',
    'payday', 'days_since_payday', 'holiday', 'social_security',
    'seasonal_woy', 'seasonal_moy', 'seasonal_dow', 'seasonal_wom',
    'seasonal_qua', 'seasonal_hol', 'seasonal_pay',
    'sequence',
)


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Dictionary containing configuration parameters

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    logger.info(f"Loaded configuration from {config_path}")
    return config


def _resolve(history_file: str, data_dir: str) -> Path:
    path = Path(history_file)
    if not path.exists() and data_dir:
        path = Path(data_dir) / path.name
    return path


def fetch(history_file: str, as_of: date, data_dir: str = "") -> pd.DataFrame:
    """
    Load the withdrawal history up to and including `as_of`.

    Every ATM gets one row per day from its first transaction date through
    `as_of`; days without history (including the forecast horizon) carry
    a missing `usage`.

    Args:
        history_file: CSV with at least `atm`, `trandate` and `usage` columns
            (an optional `fault` column flags faulted days)
        as_of: Last date to include
        data_dir: Directory searched when `history_file` is not found as given

    Returns:
        DataFrame sorted by (atm, trandate)

    Raises:
        FileNotFoundError: If the history file doesn't exist
        SchemaError: If required columns are missing
    """
    path = _resolve(history_file, data_dir)
    if not path.exists():
        raise FileNotFoundError(f"History file not found: {history_file}")

    history = pd.read_csv(path)
    logger.info(f"Loaded history from {path}: {history.shape[0]} rows × {history.shape[1]} columns")

    missing = [c for c in REQUIRED_HISTORY_COLUMNS if c not in history.columns]
    if missing:
        raise SchemaError(f"History is missing required columns: {missing}")

    history['atm'] = history['atm'].astype(str)
    history['trandate'] = pd.to_datetime(history['trandate']).dt.normalize()
    history['usage'] = pd.to_numeric(history['usage'], errors='coerce').astype(float)
    if 'fault' not in history.columns:
        history['fault'] = 0

    as_of = pd.Timestamp(as_of).normalize()
    history = history[history['trandate'] <= as_of]

    duplicates = history.duplicated(['atm', 'trandate']).sum()
    if duplicates > 0:
        logger.warning(f"Dropping {duplicates} duplicate (atm, trandate) rows")
        history = history.drop_duplicates(['atm', 'trandate'], keep='last')

    frames = []
    for atm, first in history.groupby('atm')['trandate'].min().items():
        frames.append(cross_join(atm=[atm], trandate=pd.date_range(first, as_of, freq='D')))

    if not frames:
        return history.iloc[0:0].reset_index(drop=True)

    grid = pd.concat(frames, ignore_index=True)
    withd = grid.merge(history, on=['atm', 'trandate'], how='left')
    withd['fault'] = withd['fault'].fillna(0).astype(int)

    withd = withd.sort_values(['atm', 'trandate']).reset_index(drop=True)
    logger.info(f"Fetched {withd['atm'].nunique()} ATM(s) through {as_of.date()}: {len(withd)} rows")
    return withd


def faults(df: pd.DataFrame) -> pd.DataFrame:
    """Usage recorded on a faulted day cannot be trusted; hide it."""
    faulted = df['fault'] == 1
    df.loc[faulted, 'usage'] = np.nan
    if faulted.any():
        logger.info(f"Ignoring usage on {int(faulted.sum())} faulted day(s)")
    return df


def validate(df: pd.DataFrame, required: Iterable[str] = REQUIRED_FEATURE_COLUMNS) -> Tuple[bool, Dict[str, Any]]:
    """
    Validate the feature table before training.

    Checks:
        - The table is not empty
        - Required columns are present
        - Required columns hold only finite values
        - (atm, trandate) is unique

    Args:
        df: Feature table
        required: Columns that must be present and finite

    Returns:
        Tuple of (is_valid, validation_report)

    Raises:
        SchemaError: If any check fails
    """
    required = list(required)
    report = {
        "total_rows": len(df),
        "total_columns": len(df.columns),
        "issues": []
    }

    if df.shape[0] == 0 or df.shape[1] == 0:
        report["issues"].append(f"Degenerate feature table: {df.shape[0]} rows × {df.shape[1]} columns")

    missing = [c for c in required if c not in df.columns]
    if missing:
        report["issues"].append(f"Missing columns: {missing}")

    present = [c for c in required if c in df.columns]
    if present and len(df) > 0:
        finite = is_finite_frame(df[present])
        not_finite = finite[~finite].index.tolist()
        if not_finite:
            report["issues"].append(f"Non-finite values in columns: {not_finite}")

    if {'atm', 'trandate'}.issubset(df.columns):
        duplicates = int(df.duplicated(['atm', 'trandate']).sum())
        if duplicates > 0:
            report["issues"].append(f"Duplicate (atm, trandate) rows: {duplicates}")

    for issue in report["issues"]:
        logger.error(issue)

    if report["issues"]:
        raise SchemaError(f"Feature validation failed: {report['issues']}")

    report["is_valid"] = True
    return True, report
