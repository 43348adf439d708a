"""End-to-end valuation request: alignment, beta, DCF and Monte Carlo."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from risk_analytics.beta import BetaEstimate, estimate_beta
from risk_analytics.config import AnalysisSettings
from risk_analytics.errors import InvalidInputError
from risk_analytics.monte_carlo import MonteCarloResult, MonteCarloRiskSimulator, ScenarioAssumptions
from risk_analytics.series import PriceSeries, align, returns
from risk_analytics.valuation import (
    CashFlowSchedule,
    NPVResult,
    discount_rate,
    inflation_adjusted_npv,
    irr,
    npv,
    project_cash_flows,
    series_growth_rate,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InvestmentAssumptions:
    """
    Caller inputs for a single valuation request.

    ``growth_rate`` and ``annualized_volatility`` default to the asset's
    realised CAGR and realised volatility when left as ``None``.
    """

    initial_investment: float
    horizon_years: int
    risk_free_rate: float
    market_return: float
    liquidity_premium: float = 0.0
    growth_rate: float | None = None
    annualized_volatility: float | None = None
    periodic_yield_rate: float = 0.0
    transaction_cost_rate: float = 0.0
    inflation_rate: float = 0.0
    momentum: float = 1.0


@dataclass(frozen=True)
class AnalysisResult:
    """Everything computed for one request."""

    beta: BetaEstimate
    discount_rate: float
    growth_rate: float
    annualized_volatility: float
    cash_flows: CashFlowSchedule
    npv: NPVResult
    inflation_adjusted_npv: NPVResult
    irr: float | None
    monte_carlo: MonteCarloResult
    aligned_points: int

    def to_dict(self) -> dict:
        return {
            "beta": self.beta.to_dict(),
            "discount_rate": round(self.discount_rate, 6),
            "growth_rate": round(self.growth_rate, 6),
            "annualized_volatility": round(self.annualized_volatility, 6),
            "npv": self.npv.to_dict(),
            "inflation_adjusted_npv": round(self.inflation_adjusted_npv.npv, 2),
            "irr": round(self.irr, 6) if self.irr is not None else None,
            "monte_carlo": self.monte_carlo.to_dict(),
            "aligned_points": self.aligned_points,
        }


def run_analysis(
    asset: PriceSeries,
    benchmark: PriceSeries,
    assumptions: InvestmentAssumptions,
    settings: AnalysisSettings | None = None,
    seed: int | np.random.SeedSequence | None = None,
    freq: str | None = None,
) -> AnalysisResult:
    """
    Value a position in ``asset`` against ``benchmark``.

    Steps:
        1. Inner-join the two price histories (optionally per period).
        2. Estimate beta from the aligned simple returns.
        3. Build the CAPM discount rate.
        4. Project cash flows and compute NPV, inflation-adjusted NPV and IRR.
        5. Simulate the NPV distribution with the same discount rate.
    """
    settings = settings or AnalysisSettings()

    pair = align(asset, benchmark, min_points=settings.min_aligned_points, freq=freq)
    asset_returns, benchmark_returns = pair.returns()
    beta = estimate_beta(asset_returns, benchmark_returns)

    rate = discount_rate(
        assumptions.risk_free_rate,
        beta,
        assumptions.market_return,
        assumptions.liquidity_premium,
    )

    growth = assumptions.growth_rate
    if growth is None:
        growth = series_growth_rate(asset)
    volatility = assumptions.annualized_volatility
    if volatility is None:
        volatility = returns(asset).annualized_volatility(settings.days_per_year)
    logger.info(
        "Beta %.3f (%s), discount rate %.2f%%, growth %.2f%%, volatility %.2f%%",
        beta.beta, beta.confidence.value, rate * 100, growth * 100, volatility * 100,
    )

    schedule = project_cash_flows(
        assumptions.initial_investment,
        asset.last.price,
        growth,
        assumptions.horizon_years,
        assumptions.periodic_yield_rate,
        assumptions.transaction_cost_rate,
    )
    base = npv(schedule, rate)
    real = inflation_adjusted_npv(schedule, rate, assumptions.inflation_rate)
    try:
        internal_rate: float | None = irr(
            schedule,
            tolerance=settings.irr_tolerance,
            max_iterations=settings.irr_max_iterations,
        )
    except InvalidInputError:
        # no sign change, so no IRR exists
        internal_rate = None

    simulator = MonteCarloRiskSimulator(
        settings.scenario_count,
        seed=seed,
        workers=settings.workers,
        block_size=settings.block_size,
        min_scenarios=settings.min_scenario_count,
    )
    simulation = simulator.run(
        ScenarioAssumptions(
            initial_investment=assumptions.initial_investment,
            base_growth_rate=growth,
            annualized_volatility=volatility,
            horizon_years=assumptions.horizon_years,
            periodic_yield_rate=assumptions.periodic_yield_rate,
            discount_rate=rate,
            transaction_cost_rate=assumptions.transaction_cost_rate,
            momentum=assumptions.momentum,
            days_per_year=settings.days_per_year,
        )
    )

    return AnalysisResult(
        beta=beta,
        discount_rate=rate,
        growth_rate=growth,
        annualized_volatility=volatility,
        cash_flows=schedule,
        npv=base,
        inflation_adjusted_npv=real,
        irr=internal_rate,
        monte_carlo=simulation,
        aligned_points=len(pair),
    )
