"""
Configuration Module
====================

Explicit option structs handed to each pipeline entry point.

Classes:
    - FeatureOptions: what history to fetch and where to split it
    - TrainingOptions: per-ATM pruning, cross-validation and ensembling
    - RunOptions: which ATMs to model and how to execute the groups
    - ForecastConfig: all of the above, built from the YAML config file
"""

from dataclasses import dataclass, field, fields
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd


def _default_learners() -> List[Dict[str, Any]]:
    return [
        {'method': 'leap_forward'},
        {'method': 'ridge', 'alpha': 1.0},
        {'method': 'gbm', 'max_iter': 100, 'max_depth': 3},
    ]


@dataclass
class FeatureOptions:
    """Options for building the feature table."""

    history_file: str = 'data/raw/withdrawals.csv'
    data_dir: str = 'data/raw/'
    split_at: Optional[date] = None
    forecast_out: int = 14
    today: Optional[date] = None

    def __post_init__(self):
        if self.split_at is not None:
            self.split_at = pd.Timestamp(self.split_at).date()
        if self.today is not None:
            self.today = pd.Timestamp(self.today).date()
        if self.forecast_out < 0:
            raise ValueError(f"forecast_out must be non-negative, got {self.forecast_out}")

    @property
    def data_id(self) -> str:
        """Identity of the history source, used to key cached results."""
        return Path(self.history_file).stem

    def as_of(self) -> date:
        """Last date to fetch: today plus the forecast horizon."""
        today = self.today or date.today()
        return today + timedelta(days=self.forecast_out)


@dataclass
class TrainingOptions:
    """Options for training one ensemble per ATM."""

    folds: int = 5
    iterations: int = 1000
    correlation_cutoff: float = 0.90
    freq_cut: float = 95 / 5
    unique_cut: float = 10.0
    bound_sd: float = 4.0
    knn_neighbors: int = 5
    random_state: int = 42
    cv_jobs: int = 1
    learners: List[Dict[str, Any]] = field(default_factory=_default_learners)


@dataclass
class RunOptions:
    """Options for the grouped driver."""

    subset: Optional[str] = None
    n_jobs: int = 1
    default_prediction: float = 0
    model_label: str = 'challenger'
    output_path: str = 'data/predictions/challenger.csv'


@dataclass
class ForecastConfig:
    """Complete configuration of a forecasting run."""

    features: FeatureOptions = field(default_factory=FeatureOptions)
    training: TrainingOptions = field(default_factory=TrainingOptions)
    run: RunOptions = field(default_factory=RunOptions)
    cache_dir: Optional[str] = 'data/cache/'
    log_level: str = 'INFO'

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'ForecastConfig':
        """
        Build a configuration from the dictionary loaded out of YAML.

        Unknown keys are ignored so that one file can also carry
        settings for other tools.

        Args:
            config: Parsed configuration dictionary

        Returns:
            ForecastConfig instance
        """
        data = config.get('data', {}) or {}
        feature_args = dict(config.get('features', {}) or {})
        for key in ('history_file', 'data_dir'):
            if key in data:
                feature_args[key] = data[key]

        run_args = dict(config.get('run', {}) or {})
        if 'output_path' in data:
            run_args['output_path'] = data['output_path']

        return cls(
            features=FeatureOptions(**_known(FeatureOptions, feature_args)),
            training=TrainingOptions(**_known(TrainingOptions, config.get('training', {}) or {})),
            run=RunOptions(**_known(RunOptions, run_args)),
            cache_dir=data.get('cache_dir', 'data/cache/'),
            log_level=(config.get('logging', {}) or {}).get('level', 'INFO'),
        )


def _known(cls, values: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in values.items() if k in names}
