"""
Model Training Module
=====================

Trains one weighted ensemble of challenger learners per ATM.

Steps for each ATM:
    - Drop near-zero-variance and highly correlated features
    - Split rows into train/test by the precomputed train positions
    - Skip ATMs with no training rows or an all-zero training response
    - Cross-validate every configured learner on the same folds
    - Weight the surviving learners by greedy forward selection on the
      out-of-fold predictions
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.model_selection import KFold

from .cache import DiskCache
from .config import TrainingOptions
from .exceptions import LearnerFitFailure, TrainingFailure
from .learners import FittedLearner, fit_learner
from .selection import find_correlation, near_zero_variance
from .stats import max_finite, sd_finite

logger = logging.getLogger(__name__)


def _rmse(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    return float(np.sqrt(np.mean((y_true - y_pred) ** 2)))


def greedy_weights(predictions: np.ndarray, y: np.ndarray, iterations: int = 1000) -> Tuple[np.ndarray, float]:
    """
    Greedy forward selection (with replacement) of ensemble members.

    At every step the member whose addition gives the lowest RMSE of the
    running average is added once more. Weights are the selection counts
    divided by the number of iterations. Ties go to the lowest index, so
    the result is deterministic for fixed predictions.

    Args:
        predictions: Out-of-fold predictions, one column per member
        y: Observed response
        iterations: Number of selection steps

    Returns:
        Tuple of (weights, rmse of the weighted predictions)
    """
    predictions = np.asarray(predictions, dtype=float)
    y = np.asarray(y, dtype=float)
    n_models = predictions.shape[1]

    if iterations < 1:
        raise ValueError(f"iterations must be positive, got {iterations}")

    counts = np.zeros(n_models)
    running = np.zeros(len(y))
    for step in range(1, iterations + 1):
        candidates = (running[:, None] + predictions) / step
        errors = np.sqrt(np.mean((candidates - y[:, None]) ** 2, axis=0))
        best = int(np.argmin(errors))
        counts[best] += 1
        running += predictions[:, best]

    weights = counts / iterations
    return weights, _rmse(y, predictions @ weights)


class FittedEnsemble:
    """
    Weighted ensemble of fitted learners for one ATM.

    All members are trained on the same pruned feature matrix, so the
    first member's feature names define the ensemble's inputs.
    """

    def __init__(self, by: str, members: List[FittedLearner], weights: np.ndarray, error: float):
        if len(members) == 0:
            raise ValueError("An ensemble needs at least one member")
        if len(members) != len(weights):
            raise ValueError(f"Expected {len(members)} weights, got {len(weights)}")
        if np.any(np.asarray(weights) < 0):
            raise ValueError("Ensemble weights must be non-negative")

        self.by = by
        self.members = list(members)
        self.weights = np.asarray(weights, dtype=float)
        self.error = float(error)

    @property
    def feature_names(self) -> List[str]:
        return list(self.members[0].feature_names)

    def weights_by_method(self) -> Dict[str, float]:
        """Weight per member, largest first."""
        weights: Dict[str, float] = {}
        for member, weight in zip(self.members, self.weights):
            weights[member.method] = weights.get(member.method, 0.0) + float(weight)
        return dict(sorted(weights.items(), key=lambda kv: kv[1], reverse=True))

    def predict(self, X: pd.DataFrame) -> np.ndarray:
        predictions = np.column_stack([m.predict(X) for m in self.members])
        return predictions @ self.weights

    def __repr__(self):
        return f"FittedEnsemble(by={self.by!r}, error={self.error:.2f}, weights={self.weights_by_method()})"


def prune_features(data_x: pd.DataFrame, options: TrainingOptions) -> Tuple[pd.DataFrame, List[str]]:
    """
    Remove near-zero-variance columns, then redundant correlated columns.

    Returns:
        Tuple of (pruned matrix, names of the removed columns)
    """
    low_variance = near_zero_variance(data_x, options.freq_cut, options.unique_cut)
    data_x = data_x.drop(columns=low_variance)

    correlated = find_correlation(data_x, options.correlation_cutoff)
    data_x = data_x.drop(columns=correlated)

    return data_x, low_variance + correlated


def make_folds(n_rows: int, options: TrainingOptions) -> List[Tuple[np.ndarray, np.ndarray]]:
    """Folds assigned once and shared by every learner of an ATM."""
    splitter = KFold(n_splits=min(options.folds, n_rows), shuffle=True, random_state=options.random_state)
    return list(splitter.split(np.arange(n_rows)))


def _train(
    by: str,
    data_x: pd.DataFrame,
    data_y: np.ndarray,
    train_index: Sequence[int],
    options: TrainingOptions
) -> Optional[FittedEnsemble]:
    logger.info(f"[{by}] pre-processing: [{data_x.shape[0]} x {data_x.shape[1]}]")

    # remove features that are highly correlated or with little/no variance
    data_x, removed = prune_features(data_x.reset_index(drop=True), options)
    logger.debug(f"[{by}] low variance/correlation detected: {sorted(removed)}")

    data_y = np.asarray(data_y, dtype=float)
    train_index = np.asarray(train_index, dtype=int)
    is_test = np.ones(len(data_y), dtype=bool)
    is_test[train_index] = False

    train_x = data_x.iloc[train_index]
    train_y = data_y[train_index]
    test_x = data_x.iloc[np.flatnonzero(is_test)]

    # rows without an observed response cannot be learned from
    known = ~np.isnan(train_y)
    train_x = train_x.iloc[np.flatnonzero(known)].reset_index(drop=True)
    train_y = train_y[known]

    logger.info(f"[{by}] training: [{train_x.shape[0]} x {train_x.shape[1]}], test: [{test_x.shape[0]} x {test_x.shape[1]}]")

    # if no training data, or training response all 0s then don't train
    if len(train_y) < 2 or not np.any(train_y > 0):
        logger.info(f"[{by}] insufficient training signal; no model trained")
        return None

    upper_bound = max_finite(train_y) + options.bound_sd * sd_finite(train_y)
    folds = make_folds(len(train_y), options)

    # train each of the challengers; a learner that fails is left out
    challengers = []
    for spec in options.learners:
        try:
            challengers.append(fit_learner(
                spec, train_x, train_y, folds,
                upper_bound=upper_bound,
                knn_neighbors=options.knn_neighbors,
                n_jobs=options.cv_jobs,
            ))
        except LearnerFitFailure as exc:
            logger.info(f"[{by}] {exc}")

    logger.info(f"[{by}] trained {len(challengers)} model(s) for ensembling")
    if not challengers:
        raise TrainingFailure(by)

    predictions = np.column_stack([c.cv_predictions for c in challengers])
    weights, error = greedy_weights(predictions, train_y, options.iterations)
    return FittedEnsemble(by, challengers, weights, error)


def train_entity(
    by: str,
    data_x: pd.DataFrame,
    data_y: np.ndarray,
    train_index: Sequence[int],
    data_id: str,
    options: Optional[TrainingOptions] = None,
    cache: Optional[DiskCache] = None
) -> Optional[FittedEnsemble]:
    """
    Train (or load from cache) the ensemble for one ATM.

    Args:
        by: ATM identifier
        data_x: Feature matrix for every date of the ATM
        data_y: Usage, aligned with `data_x`
        train_index: Row positions of the training rows
        data_id: Identity of the history source, part of the cache key
        options: Pruning, cross-validation and learner settings
        cache: Cache for the result; a memory-only cache is used if None

    Returns:
        The fitted ensemble, or None when there is nothing to learn from

    Raises:
        TrainingFailure: If every learner failed to fit
    """
    options = options or TrainingOptions()
    cache = cache if cache is not None else DiskCache()

    fit = cache.get_or_compute(
        f"{data_id}-challenger-{by}",
        lambda: _train(by, data_x, data_y, train_index, options)
    )

    if fit is not None:
        weights = ', '.join(f"{k}={v:.3f}" for k, v in fit.weights_by_method().items())
        logger.info(f"[{by}] ensemble chosen with rmse: {fit.error:.2f} models: {weights}")

    return fit
