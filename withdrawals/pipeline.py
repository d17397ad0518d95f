"""
Challenger Pipeline Module
==========================

Trains and applies one challenger ensemble per ATM over the feature table.

Each ATM is independent: its design matrix, training and prediction only
read that ATM's rows, so groups run in parallel on a thread pool. An ATM
whose learners all fail does not stop the others; the failure is raised
once every group has finished.

Functions:
    - design_matrix: Numeric feature matrix and usage vector for one ATM
    - train_then_predict: Train the ATM's ensemble and predict all its dates
    - run_challenger: Apply train_then_predict to every selected ATM
"""

import logging
from typing import Callable, Optional, Tuple, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from .cache import DiskCache
from .config import RunOptions, TrainingOptions
from .exceptions import TrainingFailure
from .features import feature_columns
from .model import train_entity
from .prediction import predict_entity

logger = logging.getLogger(__name__)

OUTPUT_COLUMNS = ['atm', 'trandate', 'usage', 'usage_hat', 'model']

_EPOCH = pd.Timestamp('1970-01-01')


def design_matrix(data: pd.DataFrame) -> Tuple[pd.DataFrame, np.ndarray]:
    """
    Model `usage` on every other column except the ATM and the train flag.

    Dates become day numbers and non-numeric columns are one-hot encoded.
    Rows keep the order of `data`.

    Returns:
        Tuple of (feature matrix, usage vector)
    """
    frame = data[feature_columns(data)].copy()

    if 'trandate' in frame.columns:
        frame['trandate'] = (pd.to_datetime(frame['trandate']) - _EPOCH).dt.days

    categorical = frame.select_dtypes(exclude=[np.number, 'bool']).columns.tolist()
    if categorical:
        frame = pd.get_dummies(frame, columns=categorical, drop_first=True)

    data_x = frame.astype(float).reset_index(drop=True)
    data_y = pd.to_numeric(data['usage'], errors='coerce').to_numpy(dtype=float)
    return data_x, data_y


def train_then_predict(
    by: str,
    data: pd.DataFrame,
    data_id: str,
    training: TrainingOptions,
    run: RunOptions,
    cache: DiskCache
) -> pd.DataFrame:
    """
    Train the challenger for one ATM and predict every one of its dates.

    Args:
        by: ATM identifier
        data: The ATM's rows of the feature table
        data_id: Identity of the history source
        training: Training options
        run: Driver options (default prediction, model label)
        cache: Cache of fitted ensembles

    Returns:
        One row per date: atm, trandate, usage, usage_hat, model
    """
    train_index = np.flatnonzero(data['train'].to_numpy() == 1)
    data_x, data_y = design_matrix(data)

    fit = train_entity(by, data_x, data_y, train_index, data_id, training, cache)
    usage_hat = predict_entity(by, fit, data_x, default=run.default_prediction)

    return pd.DataFrame({
        'atm': by,
        'trandate': data['trandate'].to_numpy(),
        'usage': data_y,
        'usage_hat': usage_hat,
        'model': run.model_label,
    }, columns=OUTPUT_COLUMNS)


def select_atms(features: pd.DataFrame, subset: Union[str, Callable, None]) -> pd.DataFrame:
    """
    Rows passing the `subset` predicate.

    Args:
        features: Feature table
        subset: Expression for DataFrame.eval (e.g. "atm in ['A1', 'B7']"),
            a callable returning a boolean mask, or None for everything
    """
    if subset is None or (isinstance(subset, str) and not subset.strip()):
        return features

    mask = subset(features) if callable(subset) else features.eval(subset)
    if np.isscalar(mask):
        return features if bool(mask) else features.iloc[0:0]
    return features[np.asarray(mask, dtype=bool)]


def run_challenger(
    features: pd.DataFrame,
    subset: Union[str, Callable, None],
    data_id: str,
    training: Optional[TrainingOptions] = None,
    run: Optional[RunOptions] = None,
    cache: Optional[DiskCache] = None
) -> pd.DataFrame:
    """
    Train a challenger model for each selected ATM and predict its usage.

    Args:
        features: Validated feature table
        subset: Predicate choosing the ATMs to model, see select_atms
        data_id: Identity of the history source, part of each model's cache key
        training: Training options
        run: Driver options (n_jobs, default prediction, model label)
        cache: Cache of fitted ensembles; a memory-only cache is used if None

    Returns:
        Concatenated per-ATM results; dates keep their order within an ATM

    Raises:
        TrainingFailure: If any ATM could not be modelled, naming all such ATMs
    """
    training = training or TrainingOptions()
    run = run or RunOptions()
    cache = cache if cache is not None else DiskCache()

    selected = select_atms(features, subset)
    groups = list(selected.groupby('atm', sort=True))

    logger.info("=" * 60)
    logger.info(f"TRAINING CHALLENGER FOR {len(groups)} ATM(S)")
    logger.info("=" * 60)

    def _isolated(by, data):
        try:
            return train_then_predict(by, data, data_id, training, run, cache)
        except TrainingFailure as exc:
            logger.error(str(exc))
            return exc

    results = Parallel(n_jobs=run.n_jobs, prefer='threads')(
        delayed(_isolated)(by, data) for by, data in groups
    )

    failures = [r for r in results if isinstance(r, TrainingFailure)]
    if failures:
        failed = [f.by for f in failures]
        raise TrainingFailure(failed, f"unable to successfully build any models for ATM(s): {failed}")

    if not results:
        return pd.DataFrame(columns=OUTPUT_COLUMNS)

    output = pd.concat(results, ignore_index=True)
    logger.info(f"Challenger complete: {len(output)} rows for {len(results)} ATM(s)")
    return output
