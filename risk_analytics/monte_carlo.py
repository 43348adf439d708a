"""Monte Carlo simulation of the NPV distribution of a buy-and-hold position."""

from __future__ import annotations

import logging
import math
import multiprocessing as mp
import os
from collections.abc import Callable
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from itertools import repeat

import numpy as np

from risk_analytics.errors import InsufficientDataError, InvalidInputError

logger = logging.getLogger(__name__)

MIN_SCENARIOS = 100
DEFAULT_BLOCK_SIZE = 250
TAIL_FRACTION = 0.10

# Builds the generator for one block from its seed sub-stream.
RngFactory = Callable[[np.random.SeedSequence], np.random.Generator]


@dataclass(frozen=True)
class ScenarioAssumptions:
    """Economic inputs shared by every simulated scenario."""

    initial_investment: float
    base_growth_rate: float
    annualized_volatility: float
    horizon_years: int
    periodic_yield_rate: float
    discount_rate: float
    transaction_cost_rate: float = 0.0
    momentum: float = 1.0        # caller-supplied multiplier on every step return
    initial_shock: float = 0.0   # immediate fractional move before day 1
    days_per_year: int = 365

    def __post_init__(self) -> None:
        if self.initial_investment <= 0:
            raise InvalidInputError("initial_investment must be positive")
        if self.base_growth_rate <= -1:
            raise InvalidInputError("base_growth_rate must be greater than -100%")
        if self.annualized_volatility < 0:
            raise InvalidInputError("annualized_volatility cannot be negative")
        if self.horizon_years < 1:
            raise InvalidInputError("horizon_years must be at least 1")
        if self.periodic_yield_rate < 0:
            raise InvalidInputError("periodic_yield_rate cannot be negative")
        if self.discount_rate <= -1:
            raise InvalidInputError("discount_rate must be greater than -100%")
        if not 0 <= self.transaction_cost_rate < 1:
            raise InvalidInputError("transaction_cost_rate must be in [0, 1)")
        if not math.isfinite(self.momentum):
            raise InvalidInputError("momentum must be finite")
        if self.initial_shock <= -1:
            raise InvalidInputError("initial_shock must be greater than -100%")
        if self.days_per_year < 1:
            raise InvalidInputError("days_per_year must be positive")

    @property
    def steps(self) -> int:
        return self.horizon_years * self.days_per_year

    @property
    def daily_growth(self) -> float:
        return (1 + self.base_growth_rate) ** (1 / self.days_per_year) - 1

    @property
    def daily_volatility(self) -> float:
        return self.annualized_volatility / math.sqrt(self.days_per_year)


@dataclass(frozen=True, eq=False)
class MonteCarloResult:
    """Distribution of scenario NPVs and the risk metrics derived from it."""

    expected_npv: float
    percentile_5: float
    percentile_95: float
    probability_of_loss: float
    value_at_risk: float
    expected_shortfall: float
    scenario_count: int
    excluded_count: int
    npvs: np.ndarray             # finite scenario NPVs, sorted ascending
    seed_entropy: int | tuple[int, ...]
    max_drawdown: float = 0.0    # worst peak-to-trough price fall of any scenario
    mean_drawdown: float = 0.0

    @property
    def std_npv(self) -> float:
        return float(np.std(self.npvs))

    @property
    def probability_of_profit(self) -> float:
        return 1.0 - self.probability_of_loss

    def percentile(self, q: float) -> float:
        """Nearest-rank percentile, ``q`` in [0, 100]."""
        if not 0 <= q <= 100:
            raise InvalidInputError(f"Percentile must be in [0, 100], got {q}")
        return _nearest_rank(self.npvs, q / 100)

    def histogram(self, buckets: int = 20) -> list[tuple[float, float]]:
        """(bucket mid-point NPV, probability) pairs over the simulated range."""
        counts, edges = np.histogram(self.npvs, bins=buckets)
        mids = (edges[:-1] + edges[1:]) / 2
        total = counts.sum()
        return [(float(m), float(c / total)) for m, c in zip(mids, counts)]

    def to_dict(self) -> dict:
        return {
            "Expected_NPV": round(self.expected_npv, 2),
            "Percentile_5": round(self.percentile_5, 2),
            "Percentile_95": round(self.percentile_95, 2),
            "Probability_of_Loss": round(self.probability_of_loss, 4),
            "Value_at_Risk": round(self.value_at_risk, 2),
            "Expected_Shortfall": round(self.expected_shortfall, 2),
            "Scenario_Count": self.scenario_count,
            "Excluded_Count": self.excluded_count,
            "Max_Drawdown": round(self.max_drawdown, 4),
            "Mean_Drawdown": round(self.mean_drawdown, 4),
        }


# ----------------------------------------------------------------------
# Scenario kernel (runs inside worker processes)
# ----------------------------------------------------------------------


def box_muller(rng: np.random.Generator, shape: tuple[int, ...]) -> np.ndarray:
    """Standard-normal variates from two independent uniform(0, 1) draws."""
    u = 1.0 - rng.random(shape)  # (0, 1], keeps log finite
    v = rng.random(shape)
    return np.sqrt(-2.0 * np.log(u)) * np.cos(2.0 * np.pi * v)


def simulate_block(
    assumptions: ScenarioAssumptions,
    seed: np.random.SeedSequence,
    n_scenarios: int,
    rng_factory: RngFactory = np.random.default_rng,
) -> tuple[np.ndarray, np.ndarray]:
    """
    NPVs and maximum drawdowns of ``n_scenarios`` price paths drawn from ``seed``.

    Prices are normalised to 1 at purchase, so the position starts with
    ``initial_investment`` units. Cash flows follow the same schedule as
    :func:`risk_analytics.valuation.project_cash_flows`, priced at each
    simulated year-end.
    """
    a = assumptions
    rng = rng_factory(seed)
    z = box_muller(rng, (n_scenarios, a.steps))

    step_returns = (a.daily_growth + a.daily_volatility * z) * a.momentum
    with np.errstate(over="ignore", invalid="ignore"):
        # a step below -100% wipes the position out and the price stays at zero
        growth = np.maximum(1 + step_returns, 0.0)
        paths = (1 + a.initial_shock) * np.cumprod(growth, axis=1)
        year_end = paths[:, a.days_per_year - 1::a.days_per_year]
        return _position_npv(a, year_end), _max_drawdown(paths)


def _position_npv(a: ScenarioAssumptions, year_end: np.ndarray) -> np.ndarray:
    """Discounted yield income plus net sale proceeds, less the gross purchase cost."""
    periods = np.arange(1, a.horizon_years + 1)
    held = a.initial_investment * (1 + a.periodic_yield_rate) ** (periods - 1)
    discount = (1 + a.discount_rate) ** -periods.astype(float)

    income = (held * a.periodic_yield_rate * year_end) @ discount
    sale = held[-1] * year_end[:, -1] * (1 - a.transaction_cost_rate) * discount[-1]
    return income + sale - a.initial_investment * (1 + a.transaction_cost_rate)


def _max_drawdown(paths: np.ndarray) -> np.ndarray:
    """Largest fall from a running peak, per path, measured from the purchase price of 1."""
    peaks = np.maximum(np.maximum.accumulate(paths, axis=1), 1.0)
    return np.max((peaks - paths) / peaks, axis=1)


# ----------------------------------------------------------------------
# Simulator
# ----------------------------------------------------------------------


class MonteCarloRiskSimulator:
    """Block-parallel Monte Carlo NPV simulator with reproducible seeding."""

    def __init__(
        self,
        n_scenarios: int = 10_000,
        seed: int | np.random.SeedSequence | None = None,
        workers: int | None = 1,
        block_size: int = DEFAULT_BLOCK_SIZE,
        min_scenarios: int = MIN_SCENARIOS,
        rng_factory: RngFactory = np.random.default_rng,
    ) -> None:
        """
        Args:
            n_scenarios: Number of independent scenarios to simulate.
            seed: Master seed, or a ``SeedSequence`` to draw from. ``None``
                seeds from OS entropy; the entropy used is reported on the
                result so the run can be replayed.
            workers: Worker processes. ``None`` uses one per available core.
            block_size: Scenarios per RNG sub-stream. Blocks, not workers,
                own the sub-streams, so results do not depend on ``workers``.
            min_scenarios: Smallest scenario count accepted.
            rng_factory: Builds the generator for each block from its
                ``SeedSequence``, e.g. to swap the bit generator. It must be
                picklable when more than one worker is used.
        """
        if n_scenarios < min_scenarios:
            raise InvalidInputError(
                f"{n_scenarios} scenarios is too few to be meaningful "
                f"(minimum {min_scenarios})"
            )
        if block_size < 1:
            raise InvalidInputError("block_size must be positive")
        if workers is not None and workers < 1:
            raise InvalidInputError("workers must be positive")

        self.n_scenarios = n_scenarios
        self.block_size = block_size
        self.rng_factory = rng_factory
        self.workers = workers if workers is not None else (os.cpu_count() or 1)
        if isinstance(seed, np.random.SeedSequence):
            self.seed_sequence = seed
        else:
            self.seed_sequence = np.random.SeedSequence(seed)

    # ------------------------------------------------------------------
    # Partitioning
    # ------------------------------------------------------------------

    def _blocks(self) -> tuple[list[np.random.SeedSequence], list[int]]:
        full, rest = divmod(self.n_scenarios, self.block_size)
        sizes = [self.block_size] * full + ([rest] if rest else [])
        root = self.seed_sequence
        seeds = [
            np.random.SeedSequence(
                entropy=root.entropy,
                spawn_key=tuple(root.spawn_key) + (index,),
                pool_size=root.pool_size,
            )
            for index in range(len(sizes))
        ]
        return seeds, sizes

    # ------------------------------------------------------------------
    # Core simulation
    # ------------------------------------------------------------------

    def run(self, assumptions: ScenarioAssumptions) -> MonteCarloResult:
        """
        Simulate every scenario and aggregate the NPV distribution.

        Scenarios whose NPV is not finite are excluded from aggregation and
        counted in ``excluded_count``.
        """
        seeds, sizes = self._blocks()
        pool_size = min(self.workers, len(sizes))
        logger.info(
            "Simulating %d scenarios over %d years (%d blocks, %d workers)",
            self.n_scenarios, assumptions.horizon_years, len(sizes), pool_size,
        )

        if pool_size <= 1:
            parts = list(map(
                simulate_block, repeat(assumptions), seeds, sizes, repeat(self.rng_factory)
            ))
        else:
            with ProcessPoolExecutor(
                max_workers=pool_size,
                mp_context=mp.get_context("spawn"),
            ) as exe:
                parts = list(exe.map(
                    simulate_block, repeat(assumptions), seeds, sizes, repeat(self.rng_factory)
                ))

        npv_parts, drawdown_parts = zip(*parts)
        return self._aggregate(np.concatenate(npv_parts), np.concatenate(drawdown_parts), assumptions)

    def _aggregate(
        self,
        raw: np.ndarray,
        drawdowns: np.ndarray,
        assumptions: ScenarioAssumptions,
    ) -> MonteCarloResult:
        finite = np.isfinite(raw)
        excluded = int(raw.size - finite.sum())
        if excluded:
            logger.warning("Excluded %d of %d scenarios with non-finite outcomes", excluded, raw.size)
        npvs = np.sort(raw[finite])
        if npvs.size == 0:
            raise InsufficientDataError(
                "Every simulated scenario produced a non-finite outcome",
                available=0,
                required=1,
            )
        npvs.setflags(write=False)
        kept_drawdowns = drawdowns[finite]

        n = npvs.size
        expected = float(np.mean(npvs))
        p5 = _nearest_rank(npvs, 0.05)
        p95 = _nearest_rank(npvs, 0.95)
        tail = npvs[: max(1, int(n * TAIL_FRACTION))]

        if not p5 <= expected <= p95:
            logger.warning(
                "Expected NPV %.2f lies outside the 5-95%% band [%.2f, %.2f]",
                expected, p5, p95,
            )

        result = MonteCarloResult(
            expected_npv=expected,
            percentile_5=p5,
            percentile_95=p95,
            probability_of_loss=float(np.count_nonzero(npvs <= 0) / n),
            value_at_risk=assumptions.initial_investment - p5,
            expected_shortfall=float(np.mean(tail)),
            scenario_count=self.n_scenarios,
            excluded_count=excluded,
            npvs=npvs,
            seed_entropy=_entropy(self.seed_sequence),
            max_drawdown=float(np.max(kept_drawdowns)),
            mean_drawdown=float(np.mean(kept_drawdowns)),
        )
        logger.info(
            "Expected NPV %.2f, 5-95%% [%.2f, %.2f], P(loss) %.1f%%",
            expected, p5, p95, result.probability_of_loss * 100,
        )
        return result


def simulate(
    initial_investment: float,
    base_growth_rate: float,
    annualized_volatility: float,
    horizon_years: int,
    periodic_yield_rate: float,
    discount_rate: float,
    scenario_count: int = 10_000,
    seed: int | np.random.SeedSequence | None = None,
    workers: int | None = 1,
    momentum: float = 1.0,
    transaction_cost_rate: float = 0.0,
) -> MonteCarloResult:
    """Run a simulation from plain arguments."""
    assumptions = ScenarioAssumptions(
        initial_investment=initial_investment,
        base_growth_rate=base_growth_rate,
        annualized_volatility=annualized_volatility,
        horizon_years=horizon_years,
        periodic_yield_rate=periodic_yield_rate,
        discount_rate=discount_rate,
        transaction_cost_rate=transaction_cost_rate,
        momentum=momentum,
    )
    simulator = MonteCarloRiskSimulator(scenario_count, seed=seed, workers=workers)
    return simulator.run(assumptions)


def _nearest_rank(sorted_values: np.ndarray, p: float) -> float:
    index = min(int(math.floor(sorted_values.size * p)), sorted_values.size - 1)
    return float(sorted_values[index])


def _entropy(seq: np.random.SeedSequence) -> int | tuple[int, ...]:
    entropy = seq.entropy
    return int(entropy) if np.isscalar(entropy) else tuple(int(e) for e in entropy)
