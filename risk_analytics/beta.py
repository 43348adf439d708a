"""CAPM beta estimation from aligned return series."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

import numpy as np

from risk_analytics.errors import (
    InsufficientDataError,
    InvalidBenchmarkVarianceError,
    InvalidInputError,
)
from risk_analytics.series import ReturnSeries

logger = logging.getLogger(__name__)

# Sample-size / correlation thresholds for the confidence grade.
HIGH_MIN_SAMPLES = 36
HIGH_MIN_CORRELATION = 0.7
MEDIUM_MIN_SAMPLES = 24
MEDIUM_MIN_CORRELATION = 0.5


class Confidence(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class BetaEstimate:
    """Immutable container for a beta estimate and its sample statistics."""

    beta: float
    covariance: float
    benchmark_variance: float
    correlation: float
    sample_size: int
    confidence: Confidence
    quality_score: float
    estimated: bool = False

    def __post_init__(self) -> None:
        if not self.estimated and not self.benchmark_variance > 0:
            raise InvalidBenchmarkVarianceError(
                f"Benchmark variance must be positive, got {self.benchmark_variance}"
            )

    @classmethod
    def assumed(cls, beta: float) -> BetaEstimate:
        """A caller-chosen beta, tagged as estimated rather than computed."""
        return cls(
            beta=beta,
            covariance=math.nan,
            benchmark_variance=math.nan,
            correlation=math.nan,
            sample_size=0,
            confidence=Confidence.LOW,
            quality_score=0.0,
            estimated=True,
        )

    @property
    def r_squared(self) -> float:
        """Share of the asset's variance explained by the benchmark."""
        return self.correlation ** 2

    def to_dict(self) -> dict:
        return {
            "Beta": round(self.beta, 4),
            "Covariance": _round_or_none(self.covariance, 8),
            "Benchmark_Variance": _round_or_none(self.benchmark_variance, 8),
            "Correlation": _round_or_none(self.correlation, 4),
            "R_Squared": _round_or_none(self.r_squared, 4),
            "Sample_Size": self.sample_size,
            "Confidence": self.confidence.value,
            "Quality_Score": round(self.quality_score, 1),
            "Estimated": self.estimated,
        }


def grade_confidence(sample_size: int, correlation: float) -> Confidence:
    """Grade an estimate by sample size and strength of co-movement."""
    strength = abs(correlation)
    if sample_size >= HIGH_MIN_SAMPLES and strength > HIGH_MIN_CORRELATION:
        return Confidence.HIGH
    if sample_size >= MEDIUM_MIN_SAMPLES and strength > MEDIUM_MIN_CORRELATION:
        return Confidence.MEDIUM
    return Confidence.LOW


def quality_score(sample_size: int, correlation: float) -> float:
    """Data-quality score in [0, 100]."""
    raw = (sample_size / HIGH_MIN_SAMPLES) * 50 + abs(correlation) * 30 + 20
    return float(min(100.0, max(0.0, raw)))


def estimate_beta(
    asset_returns: ReturnSeries | Sequence[float] | np.ndarray,
    benchmark_returns: ReturnSeries | Sequence[float] | np.ndarray,
) -> BetaEstimate:
    """
    Estimate CAPM beta as Cov(asset, benchmark) / Var(benchmark).

    Sample statistics use the n - 1 denominator.

    Raises:
        InvalidInputError: lengths differ, or either series is empty.
        InsufficientDataError: fewer than 2 observations.
        InvalidBenchmarkVarianceError: benchmark returns have no variance.
    """
    a = _as_array(asset_returns)
    b = _as_array(benchmark_returns)
    if len(a) != len(b):
        raise InvalidInputError(
            f"Return series lengths differ: {len(a)} vs {len(b)}"
        )
    if len(a) == 0:
        raise InvalidInputError("Return series are empty")
    n = len(a)
    if n < 2:
        raise InsufficientDataError(
            "At least 2 returns are needed for sample statistics",
            available=n,
            required=2,
        )

    if _is_constant(b):
        raise InvalidBenchmarkVarianceError(
            f"Benchmark returns are constant ({b[0]}); beta is undefined"
        )

    # the mean of a repeated non-dyadic value is not exact; flat legs get zero deviations
    dev_a = np.zeros(n) if _is_constant(a) else a - a.mean()
    dev_b = b - b.mean()
    covariance = float(np.sum(dev_a * dev_b) / (n - 1))
    benchmark_variance = float(np.sum(dev_b ** 2) / (n - 1))
    asset_variance = float(np.sum(dev_a ** 2) / (n - 1))

    if benchmark_variance <= np.finfo(float).eps * max(1.0, float(b.mean()) ** 2):
        raise InvalidBenchmarkVarianceError(
            f"Benchmark variance is {benchmark_variance}; beta is undefined"
        )

    beta = covariance / benchmark_variance
    if asset_variance > 0:
        correlation = covariance / (math.sqrt(asset_variance) * math.sqrt(benchmark_variance))
        correlation = max(-1.0, min(1.0, correlation))
    else:
        correlation = 0.0

    estimate = BetaEstimate(
        beta=beta,
        covariance=covariance,
        benchmark_variance=benchmark_variance,
        correlation=correlation,
        sample_size=n,
        confidence=grade_confidence(n, correlation),
        quality_score=quality_score(n, correlation),
    )
    logger.debug(
        "Beta %.4f (corr %.3f, n=%d, confidence %s)",
        beta, correlation, n, estimate.confidence.value,
    )
    return estimate


def estimate_beta_or_assume(
    asset_returns: ReturnSeries | Sequence[float] | np.ndarray,
    benchmark_returns: ReturnSeries | Sequence[float] | np.ndarray,
    assumed_beta: float,
) -> BetaEstimate:
    """
    Estimate beta, substituting ``assumed_beta`` when the data cannot support one.

    The substitute is returned with ``estimated=True``. Mismatched inputs
    still raise.
    """
    try:
        return estimate_beta(asset_returns, benchmark_returns)
    except (InsufficientDataError, InvalidBenchmarkVarianceError) as exc:
        logger.warning("Beta not computable (%s); using assumed beta %.3f", exc, assumed_beta)
        return BetaEstimate.assumed(assumed_beta)


def _as_array(values: ReturnSeries | Sequence[float] | np.ndarray) -> np.ndarray:
    if isinstance(values, ReturnSeries):
        return np.asarray(values.values, dtype=float)
    arr = np.asarray(values, dtype=float)
    if not np.all(np.isfinite(arr)):
        raise InvalidInputError("Return series contains non-finite values")
    return arr


def _is_constant(values: np.ndarray) -> bool:
    return bool(np.ptp(values) == 0)


def _round_or_none(value: float, digits: int) -> float | None:
    return None if math.isnan(value) else round(value, digits)
