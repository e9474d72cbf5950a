"""Exceptions and warning categories raised by the forecasting pipeline."""
from __future__ import annotations

from typing import Optional


class PollForecastError(Exception):
    """Base class for pipeline errors."""


class EmptyInputError(PollForecastError, ValueError):
    """A stage received (or produced) zero rows where at least one is needed.

    This is a recoverable condition: callers typically retry with a looser
    grade threshold or date floor.
    """

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.stage = stage


class MalformedRecordError(PollForecastError, ValueError):
    """A single raw poll row could not be parsed into a PollRecord."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class UnseenCategoryWarning(UserWarning):
    """A prediction-time pollster/population level was absent from training."""


class NonConvergenceWarning(UserWarning):
    """Posterior sampling diagnostics are outside acceptable bounds."""


class FitBudgetExceededError(PollForecastError):
    """The sampling time budget ran out before any usable posterior draw."""
