"""
ATM Withdrawal Forecasting
==========================

Forecasts daily cash withdrawals per ATM with one ensemble of regression
learners per machine.

Modules:
    - data_loader: Configuration, history ingestion, fault handling, validation
    - calendar_features: Calendar, payday, holiday and social-security features
    - features: Leakage-safe feature table construction
    - selection: Near-zero-variance and correlation feature pruning
    - learners: Registry of challenger learners
    - model: Per-ATM ensemble training
    - prediction: Per-ATM prediction and export
    - pipeline: Grouped train-then-predict driver
    - evaluation: Hold-out metrics
    - stats: Finite aggregate statistics
    - cache: At-most-once memoization of expensive results
"""

__version__ = "1.0.0"
__author__ = "Predictive Analytics Team"
