#!/usr/bin/env python3
"""
ATM Withdrawal Forecasting - Main Pipeline
==========================================

Builds the feature set from the withdrawal history, trains one challenger
ensemble per ATM and forecasts usage for every date through the forecast
horizon.

Phases:
    1. Features - Fetch, split and derive the leakage-safe feature table
    2. Challenger - Train and predict per ATM
    3. Evaluation - Score the held-out dates
    4. Export - Write the forecast table

Usage:
    # Run with the default config
    python main.py --history data/raw/withdrawals.csv --split-at 2024-06-01

    # Only some ATMs, retraining everything
    python main.py --history data/raw/withdrawals.csv --subset "atm in ['A1', 'B7']" --refresh
"""

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict

import pandas as pd

from withdrawals.cache import DiskCache
from withdrawals.config import ForecastConfig
from withdrawals.data_loader import load_config
from withdrawals.evaluation import calculate_metrics, print_evaluation_report
from withdrawals.features import build_features
from withdrawals.pipeline import run_challenger
from withdrawals.prediction import export_predictions


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the pipeline."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(f'pipeline_{datetime.now().strftime("%Y%m%d_%H%M%S")}.log')
        ]
    )


def build_config(args: argparse.Namespace) -> ForecastConfig:
    """Load the config file and apply command-line overrides."""
    config = ForecastConfig.from_dict(load_config(args.config))

    if args.history:
        config.features.history_file = args.history
    if args.data_dir:
        config.features.data_dir = args.data_dir
    if args.split_at:
        config.features.split_at = pd.Timestamp(args.split_at).date()
    if args.forecast_out is not None:
        config.features.forecast_out = args.forecast_out
    if args.subset is not None:
        config.run.subset = args.subset
    if args.n_jobs is not None:
        config.run.n_jobs = args.n_jobs
    if args.output:
        config.run.output_path = args.output
    if args.verbose:
        config.log_level = 'DEBUG'

    return config


def run_full_pipeline(config: ForecastConfig, refresh: bool = False) -> Dict[str, Any]:
    """
    Execute the complete forecasting pipeline.

    Args:
        config: Run configuration
        refresh: Rebuild cached features and models

    Returns:
        Dictionary containing the results of every phase
    """
    print("\n" + "=" * 70)
    print("ATM WITHDRAWAL FORECAST")
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    cache = DiskCache(config.cache_dir, refresh=refresh)
    data_id = config.features.data_id

    # Phase 1: Features
    features = build_features(config.features, cache)

    # Phase 2: Challenger
    results = run_challenger(
        features,
        config.run.subset,
        data_id,
        training=config.training,
        run=config.run,
        cache=cache
    )

    # Phase 3: Evaluation
    metrics = calculate_metrics(results, config.features.split_at)
    print_evaluation_report(metrics)

    # Phase 4: Export
    output_path = export_predictions(results, config.run.output_path)

    print("\n" + "=" * 70)
    print("PIPELINE COMPLETE")
    print("=" * 70)
    print(f"  • Feature table: {features.shape[0]} rows × {features.shape[1]} columns")
    print(f"  • ATMs forecast: {results['atm'].nunique()}")
    print(f"  • Output: {output_path}")
    print(f"Completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70 + "\n")

    return {
        'features': features,
        'results': results,
        'metrics': metrics,
        'output_path': output_path
    }


def main():
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Per-ATM cash withdrawal forecasting",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --history data/raw/withdrawals.csv --split-at 2024-06-01
  python main.py --history data/raw/withdrawals.csv --forecast-out 28 --n-jobs 8
  python main.py --subset "atm == 'A1'" --refresh --verbose
        """
    )

    parser.add_argument('--history', type=str, help='Withdrawal history CSV (atm, trandate, usage[, fault])')
    parser.add_argument('--config', '-c', type=str, default='config/config.yaml',
                        help='Path to configuration file (default: config/config.yaml)')
    parser.add_argument('--data-dir', type=str, help='Directory searched for the history file')
    parser.add_argument('--split-at', type=str, help='First test date (YYYY-MM-DD)')
    parser.add_argument('--forecast-out', type=int, help='Days beyond today to forecast')
    parser.add_argument('--subset', type=str, help='Expression selecting the ATMs to model')
    parser.add_argument('--output', '-o', type=str, help='Output CSV for the forecasts')
    parser.add_argument('--n-jobs', type=int, help='ATMs trained in parallel')
    parser.add_argument('--refresh', action='store_true', help='Ignore cached features and models')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose output')

    args = parser.parse_args()

    if not Path(args.config).exists():
        print(f"Error: Config file not found: {args.config}")
        sys.exit(1)

    try:
        config = build_config(args)
        setup_logging(config.log_level)
        run_full_pipeline(config, refresh=args.refresh)
        return 0

    except Exception as e:
        logging.error(f"Pipeline failed: {e}", exc_info=True)
        print(f"\n❌ Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
