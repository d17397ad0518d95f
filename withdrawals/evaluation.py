"""
Evaluation Module
=================

Scores challenger forecasts against the actual usage of the held-out
dates (on or after the split date).

Functions:
    - calculate_metrics: RMSE / MAE / R² per ATM and overall
    - print_evaluation_report: Console summary of the metrics
"""

import logging
from datetime import date
from typing import Any, Dict

import numpy as np
import pandas as pd
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score

logger = logging.getLogger(__name__)


def calculate_metrics(results: pd.DataFrame, split_at: date) -> Dict[str, Any]:
    """
    Calculate hold-out metrics for each ATM and overall.

    Only rows dated on or after `split_at` with an observed usage count.

    Args:
        results: Output of run_challenger
        split_at: First test date

    Returns:
        Dictionary with 'per_atm' and 'overall' metrics
    """
    held_out = results[
        (pd.to_datetime(results['trandate']) >= pd.Timestamp(split_at))
        & results['usage'].notna()
    ]

    metrics = {
        'per_atm': {},
        'overall': {}
    }

    for atm, group in held_out.groupby('atm', sort=True):
        y_true = group['usage'].to_numpy(dtype=float)
        y_pred = group['usage_hat'].to_numpy(dtype=float)
        metrics['per_atm'][atm] = {
            'rmse': float(np.sqrt(mean_squared_error(y_true, y_pred))),
            'mae': float(mean_absolute_error(y_true, y_pred)),
            'r2': float(r2_score(y_true, y_pred)) if len(group) > 1 else float('nan'),
            'n_samples': int(len(group))
        }

    if len(held_out) > 0:
        y_true = held_out['usage'].to_numpy(dtype=float)
        y_pred = held_out['usage_hat'].to_numpy(dtype=float)
        metrics['overall'] = {
            'total_rmse': float(np.sqrt(mean_squared_error(y_true, y_pred))),
            'total_mae': float(mean_absolute_error(y_true, y_pred)),
            'mean_rmse': float(np.mean([m['rmse'] for m in metrics['per_atm'].values()])),
            'n_samples': int(len(held_out)),
            'n_atms': int(len(metrics['per_atm']))
        }
    else:
        logger.warning("No held-out rows with observed usage; nothing to evaluate")
        metrics['overall'] = {'n_samples': 0, 'n_atms': 0}

    return metrics


def print_evaluation_report(metrics: Dict[str, Any]) -> None:
    """
    Print a formatted evaluation report to console.

    Args:
        metrics: Metrics dictionary from calculate_metrics
    """
    print("\n" + "=" * 70)
    print("CHALLENGER EVALUATION REPORT")
    print("=" * 70)

    if not metrics['per_atm']:
        print("No held-out usage to evaluate.")
        print("=" * 70 + "\n")
        return

    print(f"\n{'ATM':<15} {'RMSE':<12} {'MAE':<12} {'R²':<12} {'Days':<8}")
    print("-" * 70)

    for atm, atm_metrics in metrics['per_atm'].items():
        print(f"{str(atm):<15} {atm_metrics['rmse']:<12.2f} {atm_metrics['mae']:<12.2f} "
              f"{atm_metrics['r2']:<12.4f} {atm_metrics['n_samples']:<8}")

    overall = metrics['overall']
    print("-" * 70)
    print("\nOverall Metrics:")
    print(f"  • Total RMSE: {overall['total_rmse']:.2f}")
    print(f"  • Total MAE: {overall['total_mae']:.2f}")
    print(f"  • Mean RMSE per ATM: {overall['mean_rmse']:.2f}")
    print(f"  • Days evaluated: {overall['n_samples']} across {overall['n_atms']} ATM(s)")
    print("=" * 70 + "\n")
