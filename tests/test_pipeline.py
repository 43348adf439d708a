"""Tests for the end-to-end analysis pipeline."""

from dataclasses import replace
from datetime import date, timedelta

import numpy as np
import pytest

from risk_analytics.config import AnalysisSettings
from risk_analytics.errors import InsufficientDataError
from risk_analytics.pipeline import AnalysisResult, InvestmentAssumptions, run_analysis
from risk_analytics.series import PricePoint, PriceSeries
from risk_analytics.valuation import npv, project_cash_flows


def _make_series(n_days: int = 400, seed: int = 42) -> tuple[PriceSeries, PriceSeries]:
    rng = np.random.default_rng(seed)
    bench_ret = rng.normal(0.0004, 0.01, n_days - 1)
    asset_ret = 1.5 * bench_ret + rng.normal(0.0, 0.005, n_days - 1)

    start = date(2023, 1, 1)
    dates = [start + timedelta(days=i) for i in range(n_days)]
    bench = 4000.0 * np.concatenate([[1.0], np.cumprod(1 + bench_ret)])
    asset = 30_000.0 * np.concatenate([[1.0], np.cumprod(1 + asset_ret)])

    return (
        PriceSeries(tuple(PricePoint(d, p) for d, p in zip(dates, asset)), name="btc"),
        PriceSeries(tuple(PricePoint(d, p) for d, p in zip(dates, bench)), name="sp500"),
    )


def _make_assumptions(**overrides) -> InvestmentAssumptions:
    params = {
        "initial_investment": 10_000.0,
        "horizon_years": 2,
        "risk_free_rate": 0.04,
        "market_return": 0.10,
    }
    params.update(overrides)
    return InvestmentAssumptions(**params)


def _settings(**overrides) -> AnalysisSettings:
    return replace(AnalysisSettings(scenario_count=200, workers=1, block_size=100), **overrides)


def test_run_analysis_end_to_end():
    asset, bench = _make_series()
    result = run_analysis(asset, bench, _make_assumptions(liquidity_premium=0.01), settings=_settings(), seed=42)

    assert isinstance(result, AnalysisResult)
    assert result.aligned_points == 400
    assert result.beta.sample_size == 399
    assert result.beta.beta == pytest.approx(1.5, abs=0.2)
    assert result.discount_rate == pytest.approx(0.04 + result.beta.beta * 0.06 + 0.01)
    assert result.monte_carlo.scenario_count == 200
    assert result.cash_flows.horizon == 2


def test_deterministic_npv_uses_capm_rate_and_last_price():
    asset, bench = _make_series()
    result = run_analysis(asset, bench, _make_assumptions(growth_rate=0.15), settings=_settings(), seed=1)

    schedule = project_cash_flows(10_000.0, asset.last.price, 0.15, 2)
    assert result.npv.npv == pytest.approx(npv(schedule, result.discount_rate).npv)
    assert result.growth_rate == 0.15
    assert result.irr is not None
    assert abs(npv(result.cash_flows, result.irr).npv) < 1e-4


def test_inflation_adjusted_npv_is_lower():
    asset, bench = _make_series()
    result = run_analysis(
        asset, bench, _make_assumptions(growth_rate=0.2, inflation_rate=0.03), settings=_settings(), seed=1
    )
    assert result.inflation_adjusted_npv.discount_rate == pytest.approx(result.discount_rate + 0.03)
    assert result.inflation_adjusted_npv.npv < result.npv.npv


def test_zero_volatility_simulation_matches_deterministic_npv():
    asset, bench = _make_series()
    result = run_analysis(
        asset,
        bench,
        _make_assumptions(growth_rate=0.12, annualized_volatility=0.0),
        settings=_settings(),
        seed=3,
    )
    assert result.monte_carlo.expected_npv == pytest.approx(result.npv.npv, rel=1e-9)


@pytest.mark.parametrize(
    "overrides",
    [
        {"transaction_cost_rate": 0.01},
        {"periodic_yield_rate": 0.05},
        {"transaction_cost_rate": 0.02, "periodic_yield_rate": 0.03},
    ],
)
def test_zero_volatility_simulation_carries_costs_and_yield(overrides):
    asset, bench = _make_series()
    result = run_analysis(
        asset,
        bench,
        _make_assumptions(growth_rate=0.12, annualized_volatility=0.0, horizon_years=3, **overrides),
        settings=_settings(),
        seed=3,
    )

    assert result.monte_carlo.expected_npv == pytest.approx(result.npv.npv, rel=1e-9)
    assert result.monte_carlo.percentile_5 == pytest.approx(result.monte_carlo.percentile_95, rel=1e-12)


def test_realised_growth_and_volatility_used_by_default():
    asset, bench = _make_series()
    result = run_analysis(asset, bench, _make_assumptions(), settings=_settings(), seed=5)

    assert result.annualized_volatility > 0
    assert np.isfinite(result.growth_rate)


def test_same_seed_same_result():
    asset, bench = _make_series()
    r1 = run_analysis(asset, bench, _make_assumptions(), settings=_settings(), seed=9)
    r2 = run_analysis(asset, bench, _make_assumptions(), settings=_settings(), seed=9)

    assert r1.to_dict() == r2.to_dict()


def test_monthly_alignment_respects_minimum_points():
    asset, bench = _make_series()

    with pytest.raises(InsufficientDataError):
        run_analysis(asset, bench, _make_assumptions(), settings=_settings(), seed=1, freq="M")

    result = run_analysis(
        asset, bench, _make_assumptions(), settings=_settings(min_aligned_points=12), seed=1, freq="M"
    )
    assert result.aligned_points == 14
    assert result.beta.sample_size == 13


def test_to_dict_sections():
    asset, bench = _make_series()
    d = run_analysis(asset, bench, _make_assumptions(), settings=_settings(), seed=1).to_dict()

    for key in ("beta", "discount_rate", "npv", "inflation_adjusted_npv", "irr", "monte_carlo"):
        assert key in d
