"""Contracts for market/macro data collaborators and a CSV-backed provider."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Protocol

import pandas as pd

from risk_analytics.errors import (
    InvalidInputError,
    RiskAnalyticsError,
    UpstreamDataUnavailableError,
)
from risk_analytics.series import PriceSeries

logger = logging.getLogger(__name__)


class MarketDataProvider(Protocol):
    """Returns ``{timestamp, price}`` records for an asset, in any order."""

    def get_prices(
        self,
        asset: str,
        start: date | None = None,
        end: date | None = None,
    ) -> Iterable[Mapping]:
        ...


class MacroDataProvider(Protocol):
    """Returns the latest scalar value of a macro series (e.g. a rate index)."""

    def get_value(self, series_id: str) -> float | None:
        ...


@dataclass(frozen=True)
class RateQuote:
    """A macro value, tagged when it is a caller-supplied substitute."""

    series_id: str
    value: float
    estimated: bool = False


def fetch_price_series(
    provider: MarketDataProvider,
    asset: str,
    start: date | None = None,
    end: date | None = None,
) -> PriceSeries:
    """
    Fetch and sanitise a price history.

    Records are re-sorted and same-day duplicates collapsed by
    :meth:`PriceSeries.from_records`.

    Raises:
        UpstreamDataUnavailableError: the provider failed or returned nothing.
        InvalidInputError: the provider returned malformed prices.
    """
    try:
        records = list(provider.get_prices(asset, start, end))
    except RiskAnalyticsError:
        raise
    except Exception as exc:
        raise UpstreamDataUnavailableError(
            f"Market data for '{asset}' could not be fetched: {exc}"
        ) from exc

    if not records:
        raise UpstreamDataUnavailableError(f"Market data provider returned no prices for '{asset}'")

    series = PriceSeries.from_records(records, name=asset)
    logger.debug("Fetched %d price points for '%s' (%d raw records)", len(series), asset, len(records))
    return series


def resolve_rate(
    provider: MacroDataProvider,
    series_id: str,
    default: float | None = None,
) -> RateQuote:
    """
    Look up a macro value.

    ``default`` is only used when the caller passes one; the returned quote
    is then marked ``estimated``.

    Raises:
        UpstreamDataUnavailableError: no value and no default.
    """
    try:
        value = provider.get_value(series_id)
        failure: Exception | None = None
    except Exception as exc:
        value = None
        failure = exc

    if value is not None and math.isfinite(value):
        return RateQuote(series_id, float(value))

    if default is None:
        message = f"Macro series '{series_id}' is unavailable"
        if failure is not None:
            raise UpstreamDataUnavailableError(f"{message}: {failure}") from failure
        raise UpstreamDataUnavailableError(message)

    logger.warning("Macro series '%s' unavailable; using caller default %.4f", series_id, default)
    return RateQuote(series_id, float(default), estimated=True)


class CsvMarketDataProvider:
    """
    Serves price histories from ``<directory>/<asset>.csv`` files.

    Each file needs a ``date`` column and a ``price`` column.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def path_for(self, asset: str) -> Path:
        return self.directory / f"{asset}.csv"

    def get_prices(
        self,
        asset: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[dict]:
        df = load_price_csv(self.path_for(asset))
        if start is not None:
            df = df[df["date"] >= pd.Timestamp(start)]
        if end is not None:
            df = df[df["date"] <= pd.Timestamp(end)]
        return df.to_dict("records")


def load_price_csv(path: str | Path) -> pd.DataFrame:
    """Load a ``date,price`` CSV into a DataFrame with parsed dates."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")
    df = pd.read_csv(path)
    missing = {"date", "price"} - set(df.columns)
    if missing:
        raise InvalidInputError(f"Price CSV {path.name} missing columns: {missing}")
    df["date"] = pd.to_datetime(df["date"])
    return df[["date", "price"]]
