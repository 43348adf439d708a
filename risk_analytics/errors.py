"""Typed errors raised by the risk analytics core."""

from __future__ import annotations


class RiskAnalyticsError(Exception):
    """Base class for every error raised by this package."""


class InvalidInputError(RiskAnalyticsError, ValueError):
    """Non-positive price, mismatched lengths, scenario count too low, ..."""


class InsufficientDataError(RiskAnalyticsError, ValueError):
    """Too few aligned or usable observations to compute a result."""

    def __init__(self, message: str, available: int | None = None, required: int | None = None) -> None:
        super().__init__(message)
        self.available = available
        self.required = required


class InvalidBenchmarkVarianceError(RiskAnalyticsError):
    """Benchmark variance is zero or negative, so beta is undefined."""


class NonConvergenceError(RiskAnalyticsError):
    """An iterative solver failed to reach its tolerance."""

    def __init__(self, message: str, last_estimate: float | None = None, iterations: int = 0) -> None:
        super().__init__(message)
        self.last_estimate = last_estimate
        self.iterations = iterations


class UpstreamDataUnavailableError(RiskAnalyticsError):
    """A data collaborator failed to supply the requested data."""
