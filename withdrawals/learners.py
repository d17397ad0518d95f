"""
Learner Registry Module
=======================

Maps learner names to scikit-learn regressors so that new challenger
models can be added without touching the trainer.

Every learner is wrapped the same way: centering and scaling, nearest
neighbour imputation of missing features, the regressor itself, and
clipping of predictions into [0, upper bound]. All steps are refit inside
each cross-validation fold.

Usage:
    @register_learner('my_model')
    def my_model(**options):
        return MyRegressor(**options)
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator, RegressorMixin, clone
from sklearn.ensemble import HistGradientBoostingRegressor
from sklearn.feature_selection import SequentialFeatureSelector
from sklearn.impute import KNNImputer
from sklearn.linear_model import Lasso, LinearRegression, Ridge
from sklearn.metrics import mean_squared_error
from sklearn.model_selection import cross_val_predict
from sklearn.neighbors import KNeighborsRegressor
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from .exceptions import LearnerFitFailure

logger = logging.getLogger(__name__)

LEARNERS: Dict[str, Callable[..., BaseEstimator]] = {}


def register_learner(name: str):
    """Register a factory returning an unfitted regressor under `name`."""
    def decorator(factory):
        LEARNERS[name] = factory
        return factory
    return decorator


@register_learner('linear')
def linear(**options):
    return LinearRegression(**options)


@register_learner('leap_forward')
def leap_forward(n_features_to_select='auto', tol=1e-4, cv=5, **options):
    """Forward stepwise selection of features for a linear model."""
    return Pipeline([
        ('select', SequentialFeatureSelector(
            LinearRegression(),
            n_features_to_select=n_features_to_select,
            tol=tol,
            direction='forward',
            scoring='neg_root_mean_squared_error',
            cv=cv,
        )),
        ('linear', LinearRegression(**options)),
    ])


@register_learner('ridge')
def ridge(alpha=1.0, **options):
    return Ridge(alpha=alpha, **options)


@register_learner('lasso')
def lasso(alpha=1.0, max_iter=10000, **options):
    return Lasso(alpha=alpha, max_iter=max_iter, **options)


@register_learner('knn')
def knn(n_neighbors=5, **options):
    return KNeighborsRegressor(n_neighbors=n_neighbors, **options)


@register_learner('gbm')
def gbm(
    max_iter=100,
    max_depth=3,
    learning_rate=0.1,
    min_samples_leaf=20,
    l2_regularization=0.1,
    random_state=42,
    **options
):
    return HistGradientBoostingRegressor(
        max_iter=max_iter,
        max_depth=max_depth,
        learning_rate=learning_rate,
        min_samples_leaf=min_samples_leaf,
        l2_regularization=l2_regularization,
        random_state=random_state,
        **options
    )


class BoundedRegressor(BaseEstimator, RegressorMixin):
    """
    Regressor whose predictions are clipped into [lower, upper].

    Args:
        estimator: Unfitted regressor (or pipeline) to wrap
        lower: Smallest allowed prediction
        upper: Largest allowed prediction (None for no upper bound)
    """

    def __init__(self, estimator=None, lower: float = 0.0, upper: Optional[float] = None):
        self.estimator = estimator
        self.lower = lower
        self.upper = upper

    def fit(self, X, y):
        self.estimator_ = clone(self.estimator).fit(X, y)
        return self

    def predict(self, X):
        return np.clip(self.estimator_.predict(X), self.lower, self.upper)


def make_learner(spec: Dict[str, Any], upper_bound: Optional[float] = None, knn_neighbors: int = 5) -> BoundedRegressor:
    """
    Build the unfitted, preprocessed and bounded model for a learner spec.

    Args:
        spec: {'method': <registered name>, **learner options}
        upper_bound: Largest allowed prediction
        knn_neighbors: Neighbours used to impute missing features

    Raises:
        LearnerFitFailure: If the method is unknown or its options are invalid
    """
    options = dict(spec)
    method = options.pop('method', None)
    if method not in LEARNERS:
        raise LearnerFitFailure(f"Unknown learner '{method}'")

    try:
        estimator = LEARNERS[method](**options)
    except (TypeError, ValueError) as exc:
        raise LearnerFitFailure(f"Invalid options for learner '{method}': {exc}") from exc

    model = Pipeline([
        ('center_scale', StandardScaler()),
        ('impute', KNNImputer(n_neighbors=knn_neighbors)),
        ('model', estimator),
    ])
    return BoundedRegressor(model, lower=0.0, upper=upper_bound)


@dataclass
class FittedLearner:
    """One trained challenger: the model, its inputs and its cross-validated predictions."""

    method: str
    model: BoundedRegressor
    feature_names: List[str]
    cv_predictions: np.ndarray = field(repr=False)
    cv_rmse: float = float('nan')

    def predict(self, X: pd.DataFrame) -> np.ndarray:
        return self.model.predict(X[self.feature_names])


def fit_learner(
    spec: Dict[str, Any],
    X: pd.DataFrame,
    y: np.ndarray,
    folds: Sequence[Tuple[np.ndarray, np.ndarray]],
    upper_bound: Optional[float] = None,
    knn_neighbors: int = 5,
    n_jobs: int = 1
) -> FittedLearner:
    """
    Cross-validate a learner on fixed folds, then fit it on all rows.

    Args:
        spec: Learner spec, see make_learner
        X: Training features
        y: Training response
        folds: (train, validation) row positions shared by every learner
        upper_bound: Largest allowed prediction
        knn_neighbors: Neighbours used to impute missing features
        n_jobs: Folds fit in parallel

    Returns:
        FittedLearner with its out-of-fold predictions

    Raises:
        LearnerFitFailure: If the learner cannot be built or fit
    """
    method = spec.get('method')
    model = make_learner(spec, upper_bound, knn_neighbors)

    try:
        cv_predictions = cross_val_predict(model, X, y, cv=list(folds), n_jobs=n_jobs)
        model.fit(X, y)
    except Exception as exc:
        raise LearnerFitFailure(f"Learner '{method}' failed to fit: {exc}") from exc

    if not np.all(np.isfinite(cv_predictions)):
        raise LearnerFitFailure(f"Learner '{method}' produced non-finite cross-validated predictions")

    cv_rmse = float(np.sqrt(mean_squared_error(y, cv_predictions)))
    return FittedLearner(method, model, list(X.columns), cv_predictions, cv_rmse)
