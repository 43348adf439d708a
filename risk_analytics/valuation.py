"""Discounted cash-flow valuation: CAPM discount rate, NPV and IRR."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

import numpy as np

from risk_analytics.beta import BetaEstimate
from risk_analytics.errors import InvalidInputError, NonConvergenceError
from risk_analytics.series import PriceSeries

logger = logging.getLogger(__name__)

DAYS_PER_YEAR_CALENDAR = 365.25
IRR_INITIAL_GUESS = 0.1
IRR_RATE_FLOOR = -0.99


@dataclass(frozen=True)
class CashFlowSchedule:
    """Signed cash flows for periods 0..T; period 0 is the initial outlay."""

    flows: tuple[float, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "flows", tuple(float(cf) for cf in self.flows))
        if len(self.flows) == 0:
            raise InvalidInputError("Cash-flow schedule is empty")
        if not all(math.isfinite(cf) for cf in self.flows):
            raise InvalidInputError("Cash-flow schedule contains non-finite values")

    def __len__(self) -> int:
        return len(self.flows)

    def __iter__(self) -> Iterator[float]:
        return iter(self.flows)

    def __getitem__(self, period: int) -> float:
        return self.flows[period]

    @property
    def horizon(self) -> int:
        return len(self.flows) - 1

    @property
    def has_sign_change(self) -> bool:
        signs = [cf > 0 for cf in self.flows if cf != 0]
        return any(s != signs[0] for s in signs[1:]) if signs else False


@dataclass(frozen=True)
class NPVResult:
    """Net present value with its per-period breakdown."""

    npv: float
    discount_rate: float
    cash_flows: tuple[float, ...]
    present_values: tuple[float, ...]

    @property
    def discount_factors(self) -> tuple[float, ...]:
        return tuple(1 / (1 + self.discount_rate) ** t for t in range(len(self.cash_flows)))

    def to_dict(self) -> dict:
        return {
            "NPV": round(self.npv, 2),
            "Discount_Rate": round(self.discount_rate, 6),
            "Cash_Flows": [round(cf, 2) for cf in self.cash_flows],
            "Present_Values": [round(pv, 2) for pv in self.present_values],
        }


# ----------------------------------------------------------------------
# Discount rate
# ----------------------------------------------------------------------


def discount_rate(
    risk_free_rate: float,
    beta: float | BetaEstimate,
    market_return: float,
    liquidity_premium: float = 0.0,
) -> float:
    """CAPM discount rate: r_f + beta * (r_m - r_f) + liquidity premium."""
    b = beta.beta if isinstance(beta, BetaEstimate) else float(beta)
    rate = risk_free_rate + b * (market_return - risk_free_rate) + liquidity_premium
    if not math.isfinite(rate) or rate <= -1:
        raise InvalidInputError(f"Discount rate {rate} is not usable for discounting")
    logger.debug(
        "Discount rate %.4f = rf %.4f + beta %.3f * (rm %.4f - rf) + liquidity %.4f",
        rate, risk_free_rate, b, market_return, liquidity_premium,
    )
    return rate


# ----------------------------------------------------------------------
# Cash-flow projection
# ----------------------------------------------------------------------


def project_cash_flows(
    initial_investment: float,
    current_price: float,
    growth_rate: float,
    horizon_periods: int,
    periodic_yield_rate: float = 0.0,
    transaction_cost_rate: float = 0.0,
) -> CashFlowSchedule:
    """
    Project the cash flows of buying, holding and finally selling an asset.

    The investment buys ``initial_investment / current_price`` units. Each
    period the holding earns ``periodic_yield_rate`` in units, paid out at
    that period's projected price, while the held quantity compounds by the
    same rate. The quantity held going into the last period is sold at the
    terminal price ``current_price * (1 + growth_rate) ** T`` net of
    transaction costs, which are also charged on the purchase.
    """
    if initial_investment <= 0:
        raise InvalidInputError("initial_investment must be positive")
    if current_price <= 0:
        raise InvalidInputError("current_price must be positive")
    if horizon_periods < 1:
        raise InvalidInputError("horizon_periods must be at least 1")
    if growth_rate <= -1:
        raise InvalidInputError("growth_rate must be greater than -100%")
    if periodic_yield_rate < 0:
        raise InvalidInputError("periodic_yield_rate cannot be negative")
    if not 0 <= transaction_cost_rate < 1:
        raise InvalidInputError("transaction_cost_rate must be in [0, 1)")

    quantity = initial_investment / current_price
    flows = [-initial_investment * (1 + transaction_cost_rate)]

    for period in range(1, horizon_periods + 1):
        price = current_price * (1 + growth_rate) ** period
        income = quantity * periodic_yield_rate * price
        if period < horizon_periods:
            flows.append(income)
            quantity *= 1 + periodic_yield_rate
        else:
            sale = quantity * price * (1 - transaction_cost_rate)
            flows.append(income + sale)

    return CashFlowSchedule(tuple(flows))


# ----------------------------------------------------------------------
# NPV / IRR
# ----------------------------------------------------------------------


def npv(cash_flows: CashFlowSchedule | Iterable[float], rate: float) -> NPVResult:
    """Net present value: sum of CF_t / (1 + rate) ** t."""
    flows = _flows(cash_flows)
    if rate <= -1:
        raise InvalidInputError(f"Discount rate must exceed -100%, got {rate}")
    periods = np.arange(len(flows))
    present = np.asarray(flows) / (1 + rate) ** periods
    return NPVResult(
        npv=float(present.sum()),
        discount_rate=rate,
        cash_flows=flows,
        present_values=tuple(float(pv) for pv in present),
    )


def inflation_adjusted_npv(
    cash_flows: CashFlowSchedule | Iterable[float],
    rate: float,
    inflation_rate: float,
) -> NPVResult:
    """NPV discounted at the nominal rate plus inflation."""
    return npv(cash_flows, rate + inflation_rate)


def irr(
    cash_flows: CashFlowSchedule | Iterable[float],
    tolerance: float = 1e-4,
    max_iterations: int = 100,
    guess: float = IRR_INITIAL_GUESS,
) -> float:
    """
    Internal rate of return by Newton-Raphson on f(r) = NPV(r).

    The derivative is analytic, f'(r) = sum(-t * CF_t / (1 + r) ** (t + 1)).
    Iterates are floored at -99% to keep (1 + r) positive.

    Raises:
        InvalidInputError: the flows never change sign, so no IRR exists.
        NonConvergenceError: the derivative vanishes or ``max_iterations``
            pass without |f(r)| < tolerance.
    """
    flows = np.asarray(_flows(cash_flows))
    if not CashFlowSchedule(tuple(flows)).has_sign_change:
        raise InvalidInputError("IRR is undefined for cash flows without a sign change")

    periods = np.arange(len(flows))
    rate = guess
    for iteration in range(max_iterations):
        discount = (1 + rate) ** periods
        value = float(np.sum(flows / discount))
        if abs(value) < tolerance:
            logger.debug("IRR %.6f after %d iterations", rate, iteration)
            return rate

        slope = float(np.sum(-periods * flows / (discount * (1 + rate))))
        if slope == 0 or not math.isfinite(slope):
            raise NonConvergenceError(
                f"IRR derivative vanished at rate {rate}",
                last_estimate=rate,
                iterations=iteration,
            )
        rate = max(rate - value / slope, IRR_RATE_FLOOR)

    if abs(npv(flows, rate).npv) < tolerance:
        return rate
    raise NonConvergenceError(
        f"IRR did not converge within {max_iterations} iterations",
        last_estimate=rate,
        iterations=max_iterations,
    )


# ----------------------------------------------------------------------
# Growth assumptions
# ----------------------------------------------------------------------


def implied_growth_rate(start_value: float, end_value: float, years: float) -> float:
    """Compound annual growth rate between two values."""
    if start_value <= 0 or end_value <= 0:
        raise InvalidInputError("Growth rate needs positive start and end values")
    if years <= 0:
        raise InvalidInputError("Growth rate needs a positive number of years")
    return (end_value / start_value) ** (1 / years) - 1


def series_growth_rate(series: PriceSeries) -> float:
    """CAGR between the first and last observation of a price series."""
    days = (series.last.date - series.first.date).days
    if days <= 0:
        raise InvalidInputError(
            f"Series '{series.name}' spans no time; growth rate is undefined"
        )
    return implied_growth_rate(series.first.price, series.last.price, days / DAYS_PER_YEAR_CALENDAR)


def _flows(cash_flows: CashFlowSchedule | Iterable[float]) -> tuple[float, ...]:
    if isinstance(cash_flows, CashFlowSchedule):
        return cash_flows.flows
    return CashFlowSchedule(tuple(cash_flows)).flows
