"""Dated price series, strict inner-join alignment and simple returns."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime

import numpy as np
import pandas as pd

from risk_analytics.errors import InsufficientDataError, InvalidInputError

logger = logging.getLogger(__name__)

DEFAULT_MIN_POINTS = 30


def _frozen(values: Iterable[float]) -> np.ndarray:
    arr = np.array(values, dtype=float)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class PricePoint:
    """A single closing price observed on a calendar day."""

    date: date
    price: float

    def __post_init__(self) -> None:
        if isinstance(self.date, datetime):
            object.__setattr__(self, "date", self.date.date())
        if not math.isfinite(self.price) or self.price <= 0:
            raise InvalidInputError(
                f"Price on {self.date} must be positive and finite, got {self.price}"
            )


@dataclass(frozen=True)
class PriceSeries:
    """Chronologically ordered prices with unique dates."""

    points: tuple[PricePoint, ...]
    name: str = "price"

    def __post_init__(self) -> None:
        if len(self.points) == 0:
            raise InvalidInputError(f"Price series '{self.name}' is empty")
        for prev, cur in zip(self.points, self.points[1:]):
            if cur.date <= prev.date:
                raise InvalidInputError(
                    f"Price series '{self.name}' dates must be strictly increasing "
                    f"({prev.date} followed by {cur.date})"
                )

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_records(
        cls,
        records: Iterable[PricePoint | Mapping | tuple],
        name: str = "price",
    ) -> PriceSeries:
        """
        Build a series from untrusted provider records.

        Records may be ``PricePoint`` objects, ``(timestamp, price)`` pairs or
        mappings with a ``date``/``timestamp`` key and a ``price`` key.
        Numeric timestamps are read as Unix seconds. Records are sorted by
        timestamp and, when several fall on the same calendar day, the last
        chronological one is kept.
        """
        stamps: list = []
        prices: list[float] = []
        for rec in records:
            if isinstance(rec, PricePoint):
                stamp, price = rec.date, rec.price
            elif isinstance(rec, Mapping):
                stamp = rec.get("date", rec.get("timestamp"))
                price = rec.get("price")
            else:
                stamp, price = rec
            if stamp is None or price is None:
                raise InvalidInputError(f"Malformed price record: {rec!r}")
            stamps.append(stamp)
            prices.append(float(price))

        if not stamps:
            raise InvalidInputError(f"Price series '{name}' is empty")

        frame = pd.DataFrame({"ts": _to_datetime(stamps), "price": prices})
        frame = frame.sort_values("ts", kind="mergesort")
        frame["date"] = frame["ts"].dt.normalize()
        deduped = frame.drop_duplicates(subset="date", keep="last")
        if len(deduped) < len(frame):
            logger.debug(
                "Series '%s': collapsed %d same-day records",
                name, len(frame) - len(deduped),
            )

        points = tuple(
            PricePoint(ts.date(), float(p))
            for ts, p in zip(deduped["date"], deduped["price"])
        )
        return cls(points=points, name=name)

    @classmethod
    def from_pandas(cls, series: pd.Series, name: str | None = None) -> PriceSeries:
        """Build a series from a pandas Series indexed by date."""
        label = name or (str(series.name) if series.name is not None else "price")
        return cls.from_records(zip(series.index, series.values), name=label)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self.points)

    @property
    def dates(self) -> tuple[date, ...]:
        return tuple(p.date for p in self.points)

    @property
    def prices(self) -> np.ndarray:
        return _frozen([p.price for p in self.points])

    @property
    def first(self) -> PricePoint:
        return self.points[0]

    @property
    def last(self) -> PricePoint:
        return self.points[-1]

    def to_pandas(self) -> pd.Series:
        return pd.Series(
            [p.price for p in self.points],
            index=pd.DatetimeIndex(pd.to_datetime(list(self.dates)), name="date"),
            name=self.name,
        )


@dataclass(frozen=True, eq=False)
class ReturnSeries:
    """Simple periodic returns r_t = (p_t - p_{t-1}) / p_{t-1}."""

    values: np.ndarray
    skipped: int = 0

    def __post_init__(self) -> None:
        if not np.all(np.isfinite(self.values)):
            raise InvalidInputError("Return series contains non-finite values")

    def __len__(self) -> int:
        return len(self.values)

    @property
    def mean(self) -> float:
        return float(np.mean(self.values))

    @property
    def std(self) -> float:
        """Sample standard deviation (n - 1 denominator)."""
        if len(self.values) < 2:
            return 0.0
        return float(np.std(self.values, ddof=1))

    def annualized_volatility(self, periods_per_year: int = 365) -> float:
        return self.std * math.sqrt(periods_per_year)


@dataclass(frozen=True, eq=False)
class AlignedPair:
    """Two price legs sharing exactly the same dates."""

    dates: tuple[date, ...]
    first: np.ndarray
    second: np.ndarray

    def __post_init__(self) -> None:
        if not (len(self.dates) == len(self.first) == len(self.second)):
            raise InvalidInputError(
                f"Aligned legs differ in length: {len(self.dates)} dates, "
                f"{len(self.first)} and {len(self.second)} prices"
            )

    def __len__(self) -> int:
        return len(self.dates)

    def returns(self) -> tuple[ReturnSeries, ReturnSeries]:
        """
        Returns of both legs over the same steps.

        A step undefined on either leg is dropped from both so the two
        return series stay index-aligned.
        """
        r_a, ok_a = _step_returns(self.first)
        r_b, ok_b = _step_returns(self.second)
        keep = ok_a & ok_b
        if keep.sum() < 1:
            raise InvalidInputError("Fewer than 2 usable points in aligned pair")
        skipped = int(len(keep) - keep.sum())
        return (
            ReturnSeries(_frozen(r_a[keep]), skipped=skipped),
            ReturnSeries(_frozen(r_b[keep]), skipped=skipped),
        )


# ----------------------------------------------------------------------
# Operations
# ----------------------------------------------------------------------


def resample_last(series: PriceSeries, freq: str = "M") -> PriceSeries:
    """
    Reduce a series to one observation per period.

    The last chronological observation of each period is kept and dated at
    the period's final calendar day. No averaging, no interpolation.
    """
    s = series.to_pandas()
    grouped = s.groupby(s.index.to_period(freq)).last()
    period_end = grouped.index.end_time.normalize()
    return PriceSeries.from_records(
        zip(period_end, grouped.values), name=series.name
    )


def align(
    series_a: PriceSeries,
    series_b: PriceSeries,
    min_points: int = DEFAULT_MIN_POINTS,
    freq: str | None = None,
) -> AlignedPair:
    """
    Strict inner join of two series on their date keys.

    Args:
        series_a: First leg (usually the asset).
        series_b: Second leg (usually the benchmark).
        min_points: Minimum number of shared dates required.
        freq: Optional pandas period alias (e.g. ``"M"``). When given, both
            series are first reduced with :func:`resample_last` and joined on
            the period key.

    Raises:
        InsufficientDataError: fewer than ``min_points`` shared dates.
    """
    if freq is not None:
        series_a = resample_last(series_a, freq)
        series_b = resample_last(series_b, freq)

    joined = pd.concat(
        [series_a.to_pandas().rename("first"), series_b.to_pandas().rename("second")],
        axis=1,
        join="inner",
    ).sort_index()

    logger.debug(
        "Aligned '%s' (%d) with '%s' (%d): %d shared dates",
        series_a.name, len(series_a), series_b.name, len(series_b), len(joined),
    )
    if len(joined) < min_points:
        raise InsufficientDataError(
            f"Only {len(joined)} shared dates between '{series_a.name}' and "
            f"'{series_b.name}', at least {min_points} required",
            available=len(joined),
            required=min_points,
        )

    return AlignedPair(
        dates=tuple(ts.date() for ts in joined.index),
        first=_frozen(joined["first"].to_numpy()),
        second=_frozen(joined["second"].to_numpy()),
    )


def returns(series: PriceSeries | Sequence[float] | np.ndarray) -> ReturnSeries:
    """
    Simple returns of a price sequence.

    A step whose previous price is non-positive (or either price is not
    finite) has no defined return and is skipped.

    Raises:
        InvalidInputError: fewer than 2 usable points.
    """
    prices = series.prices if isinstance(series, PriceSeries) else np.asarray(series, dtype=float)
    if len(prices) < 2:
        raise InvalidInputError(f"Need at least 2 prices for returns, got {len(prices)}")

    values, ok = _step_returns(prices)
    if ok.sum() < 1:
        raise InvalidInputError("Fewer than 2 usable points remain after skipping undefined steps")
    return ReturnSeries(_frozen(values[ok]), skipped=int(len(ok) - ok.sum()))


def _step_returns(prices: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    prev = prices[:-1]
    cur = prices[1:]
    ok = np.isfinite(prev) & np.isfinite(cur) & (prev > 0)
    out = np.zeros(len(prev))
    np.divide(cur - prev, prev, out=out, where=ok)
    return out, ok


def _to_datetime(stamps: list) -> pd.Series:
    if all(isinstance(s, (int, float, np.integer, np.floating)) for s in stamps):
        return pd.Series(pd.to_datetime(stamps, unit="s"))
    return pd.Series(pd.to_datetime(stamps))
