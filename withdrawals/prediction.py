"""
Prediction Module
=================

Applies a fitted ATM ensemble to its feature matrix and exports the
resulting forecasts.

Functions:
    - predict_entity: Rounded usage predictions with a safe default
    - export_predictions: Write the forecast table to CSV
"""

import logging
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd

from .model import FittedEnsemble

logger = logging.getLogger(__name__)


def _summary(values: np.ndarray) -> str:
    if len(values) == 0:
        return "{}"
    s = pd.Series(values).describe()
    return (
        f"min={s['min']:.0f} q1={s['25%']:.0f} median={s['50%']:.0f} "
        f"mean={s['mean']:.2f} q3={s['75%']:.0f} max={s['max']:.0f}"
    )


def predict_entity(
    by: str,
    fit: Optional[FittedEnsemble],
    data_x: pd.DataFrame,
    default: float = 0
) -> np.ndarray:
    """
    Predict usage for every row of an ATM's feature matrix.

    Without a model every row gets `default`. Otherwise the matrix is
    restricted to the features the ensemble was trained on, predictions
    are rounded to whole currency units, and any non-finite prediction is
    replaced by `default`.

    Args:
        by: ATM identifier
        fit: Fitted ensemble, or None
        data_x: Feature matrix (may hold more columns than the model uses)
        default: Prediction used when no model or no finite value exists

    Returns:
        Predictions, one per row of `data_x`
    """
    prediction = np.full(len(data_x), default, dtype=float)

    if fit is not None:
        # extract only the features used to train the model
        data_x = data_x.loc[:, fit.feature_names]

        raw = np.round(fit.predict(data_x))
        degenerate = ~np.isfinite(raw)
        if degenerate.any():
            logger.debug(f"[{by}] replacing {int(degenerate.sum())} non-finite prediction(s) with {default}")
        prediction = np.where(degenerate, default, raw)

    logger.info(f"[{by}] prediction: [{data_x.shape[0]} x {data_x.shape[1]}]: {_summary(prediction)}")
    return prediction


def export_predictions(results: pd.DataFrame, output_path: str) -> str:
    """
    Export the forecast table to CSV.

    Args:
        results: Output of the grouped driver
        output_path: CSV file to write

    Returns:
        Path to the saved file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    results.to_csv(output_path, index=False, date_format='%Y-%m-%d')

    logger.info(f"Predictions exported to {output_path}")
    return str(output_path)
