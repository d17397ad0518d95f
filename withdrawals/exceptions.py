"""
Exceptions raised by the withdrawals forecasting pipeline.
"""


class WithdrawalsError(Exception):
    """Base class for all pipeline errors."""


class SchemaError(WithdrawalsError):
    """The feature table failed validation."""


class LearnerFitFailure(WithdrawalsError):
    """A single candidate learner could not be fit."""


class TrainingFailure(WithdrawalsError):
    """No candidate learner could be fit for one or more ATMs."""

    def __init__(self, by, message=None):
        self.by = by
        super().__init__(message or f"[{by}] unable to successfully build any models")
