"""Tests for the Monte Carlo simulation module."""

import numpy as np
import pytest

from risk_analytics.errors import InsufficientDataError, InvalidInputError
from risk_analytics.monte_carlo import (
    MonteCarloResult,
    MonteCarloRiskSimulator,
    ScenarioAssumptions,
    box_muller,
    simulate,
)
from risk_analytics.valuation import npv, project_cash_flows


def _make_assumptions(**overrides) -> ScenarioAssumptions:
    params = {
        "initial_investment": 10_000.0,
        "base_growth_rate": 0.20,
        "annualized_volatility": 0.60,
        "horizon_years": 1,
        "periodic_yield_rate": 0.0,
        "discount_rate": 0.12,
    }
    params.update(overrides)
    return ScenarioAssumptions(**params)


def _run(n: int = 400, seed: int = 42, workers: int = 1, **overrides) -> MonteCarloResult:
    simulator = MonteCarloRiskSimulator(n, seed=seed, workers=workers, block_size=100)
    return simulator.run(_make_assumptions(**overrides))


# ----------------------------------------------------------------------
# Deterministic limit
# ----------------------------------------------------------------------


def test_zero_volatility_matches_deterministic_npv():
    result = simulate(1000.0, 0.15, 0.0, 3, 0.0, 0.10, scenario_count=200, seed=1)
    expected = npv(project_cash_flows(1000.0, 1.0, 0.15, 3), 0.10).npv

    assert result.expected_npv == pytest.approx(expected, rel=1e-9)
    assert result.percentile_5 == result.percentile_95
    assert result.percentile_5 == pytest.approx(result.expected_npv, rel=1e-12)
    assert result.std_npv == pytest.approx(0.0, abs=1e-9)
    assert result.excluded_count == 0


def test_zero_volatility_with_yield_matches_cash_flow_schedule():
    result = _run(200, annualized_volatility=0.0, periodic_yield_rate=0.05, horizon_years=2)
    schedule = project_cash_flows(10_000.0, 1.0, 0.20, 2, periodic_yield_rate=0.05)
    expected = npv(schedule, 0.12).npv

    assert result.expected_npv == pytest.approx(expected, rel=1e-9)
    # 10,000 units: year 1 pays 500 units at 1.2, year 2 pays 525 units at 1.44
    assert expected == pytest.approx(
        600 / 1.12 + (756 + 10_500 * 1.44) / 1.12 ** 2 - 10_000
    )


def test_zero_volatility_with_costs_matches_cash_flow_schedule():
    result = _run(200, annualized_volatility=0.0, transaction_cost_rate=0.01, horizon_years=3)
    schedule = project_cash_flows(10_000.0, 1.0, 0.20, 3, transaction_cost_rate=0.01)

    assert result.expected_npv == pytest.approx(npv(schedule, 0.12).npv, rel=1e-9)
    assert result.expected_npv < _run(200, annualized_volatility=0.0, horizon_years=3).expected_npv


def test_momentum_scales_step_returns():
    # a zero multiplier freezes the price, leaving only discounting
    result = _run(200, momentum=0.0)
    assert result.expected_npv == pytest.approx(10_000 / 1.12 - 10_000)
    assert result.percentile_5 == result.percentile_95


def test_initial_shock_moves_starting_price():
    calm = _run(200, annualized_volatility=0.0)
    shocked = _run(200, annualized_volatility=0.0, initial_shock=-0.5)

    assert shocked.expected_npv + 10_000 == pytest.approx((calm.expected_npv + 10_000) / 2)


# ----------------------------------------------------------------------
# Reproducibility
# ----------------------------------------------------------------------


def test_same_seed_reproducible():
    r1 = _run(seed=123)
    r2 = _run(seed=123)

    np.testing.assert_array_equal(r1.npvs, r2.npvs)
    assert r1.expected_npv == r2.expected_npv
    assert r1.percentile_5 == r2.percentile_5
    assert r1.expected_shortfall == r2.expected_shortfall


def test_different_seeds_differ():
    r1 = _run(seed=1)
    r2 = _run(seed=2)
    assert not np.allclose(r1.npvs, r2.npvs)


def test_results_independent_of_worker_count():
    serial = _run(300, seed=7, workers=1)
    parallel = _run(300, seed=7, workers=2)

    np.testing.assert_array_equal(serial.npvs, parallel.npvs)
    assert serial.expected_npv == parallel.expected_npv


def test_seed_sequence_can_be_injected():
    seq = np.random.SeedSequence(99)
    r1 = MonteCarloRiskSimulator(200, seed=seq).run(_make_assumptions())
    r2 = MonteCarloRiskSimulator(200, seed=99).run(_make_assumptions())

    np.testing.assert_array_equal(r1.npvs, r2.npvs)
    assert r1.seed_entropy == 99


def test_unseeded_run_reports_entropy_for_replay():
    first = MonteCarloRiskSimulator(200, seed=None).run(_make_assumptions())
    replay = MonteCarloRiskSimulator(200, seed=first.seed_entropy).run(_make_assumptions())

    np.testing.assert_array_equal(first.npvs, replay.npvs)


# ----------------------------------------------------------------------
# Aggregated metrics
# ----------------------------------------------------------------------


def test_percentiles_use_nearest_rank():
    result = _run(400)

    assert result.percentile_5 == result.npvs[20]
    assert result.percentile_95 == result.npvs[380]
    assert result.percentile(50) == result.npvs[200]


def test_metric_ordering():
    result = _run(1000)

    assert result.percentile_5 <= result.percentile(50) <= result.percentile_95
    assert result.percentile_5 <= result.expected_npv <= result.percentile_95
    assert result.expected_shortfall <= result.percentile(10)


def test_probability_of_loss_matches_distribution():
    result = _run(500)

    assert 0.0 <= result.probability_of_loss <= 1.0
    assert result.probability_of_loss == pytest.approx(np.mean(result.npvs <= 0))
    assert result.probability_of_profit == pytest.approx(1 - result.probability_of_loss)


def test_value_at_risk_and_expected_shortfall():
    result = _run(500)

    assert result.value_at_risk == pytest.approx(10_000 - result.percentile_5)
    assert result.expected_shortfall == pytest.approx(np.mean(result.npvs[:50]))


def test_scenario_count_and_sorting():
    result = _run(250)

    assert result.scenario_count == 250
    assert result.npvs.shape == (250,)
    assert np.all(np.diff(result.npvs) >= 0)


def test_histogram_probabilities_sum_to_one():
    buckets = _run(300).histogram(buckets=20)

    assert len(buckets) == 20
    assert sum(p for _, p in buckets) == pytest.approx(1.0)


def test_percentile_out_of_range():
    with pytest.raises(InvalidInputError):
        _run(200).percentile(101)


def test_to_dict_keys():
    d = _run(200).to_dict()
    for key in (
        "Expected_NPV",
        "Percentile_5",
        "Percentile_95",
        "Probability_of_Loss",
        "Value_at_Risk",
        "Expected_Shortfall",
        "Scenario_Count",
        "Excluded_Count",
    ):
        assert key in d


# ----------------------------------------------------------------------
# Failure modes
# ----------------------------------------------------------------------


def test_too_few_scenarios_rejected():
    with pytest.raises(InvalidInputError, match="too few"):
        MonteCarloRiskSimulator(99)
    with pytest.raises(InvalidInputError):
        simulate(1000.0, 0.1, 0.5, 1, 0.0, 0.1, scenario_count=10)


def test_non_finite_scenarios_excluded_and_counted():
    simulator = MonteCarloRiskSimulator(100, seed=0)
    raw = np.concatenate([np.linspace(-49.0, 48.0, 98), [np.nan, np.inf]])

    result = simulator._aggregate(raw, np.zeros(raw.size), _make_assumptions())

    assert result.excluded_count == 2
    assert result.scenario_count == 100
    assert result.npvs.size == 98
    assert np.isfinite(result.expected_npv)


def test_all_scenarios_non_finite_raises():
    simulator = MonteCarloRiskSimulator(100, seed=0)
    raw = np.full(100, np.nan)

    with pytest.raises(InsufficientDataError):
        simulator._aggregate(raw, np.zeros(100), _make_assumptions())


def test_price_is_floored_at_zero():
    # daily moves of roughly 200% drive every path through zero
    result = _run(200, annualized_volatility=40.0)

    assert result.excluded_count == 0
    assert result.npvs.min() >= -10_000
    assert result.percentile_5 == -10_000
    assert result.probability_of_loss == 1.0
    assert result.max_drawdown == 1.0


@pytest.mark.parametrize(
    "overrides",
    [
        {"initial_investment": 0.0},
        {"annualized_volatility": -0.1},
        {"horizon_years": 0},
        {"discount_rate": -1.0},
        {"momentum": float("nan")},
        {"transaction_cost_rate": 1.0},
    ],
)
def test_invalid_assumptions_rejected(overrides):
    with pytest.raises(InvalidInputError):
        _make_assumptions(**overrides)


def test_daily_parameter_conversion():
    a = _make_assumptions(base_growth_rate=0.10, annualized_volatility=0.365)

    assert (1 + a.daily_growth) ** 365 == pytest.approx(1.10)
    assert a.daily_volatility == pytest.approx(0.365 / np.sqrt(365))
    assert a.steps == 365


def test_box_muller_is_standard_normal():
    z = box_muller(np.random.default_rng(0), (200_000,))

    assert abs(z.mean()) < 0.01
    assert z.std() == pytest.approx(1.0, abs=0.01)
    assert np.all(np.isfinite(z))


# ----------------------------------------------------------------------
# Drawdown
# ----------------------------------------------------------------------


def test_steady_growth_has_no_drawdown():
    result = _run(200, annualized_volatility=0.0)

    assert result.max_drawdown == 0.0
    assert result.mean_drawdown == 0.0


def test_initial_shock_is_a_drawdown_from_purchase():
    result = _run(200, annualized_volatility=0.0, initial_shock=-0.5)
    assert result.max_drawdown == pytest.approx(0.5, abs=1e-3)


def test_drawdown_bounds():
    result = _run(300)

    assert 0.0 < result.mean_drawdown <= result.max_drawdown <= 1.0
    assert result.to_dict()["Max_Drawdown"] == round(result.max_drawdown, 4)


# ----------------------------------------------------------------------
# Generator injection
# ----------------------------------------------------------------------


def _dxsm_generator(seed: np.random.SeedSequence) -> np.random.Generator:
    return np.random.Generator(np.random.PCG64DXSM(seed))


def test_default_factory_is_default_rng():
    explicit = MonteCarloRiskSimulator(200, seed=5, rng_factory=np.random.default_rng)
    implicit = MonteCarloRiskSimulator(200, seed=5)

    np.testing.assert_array_equal(
        explicit.run(_make_assumptions()).npvs,
        implicit.run(_make_assumptions()).npvs,
    )


def test_custom_generator_factory_is_used_per_block():
    seen = []

    def factory(seed):
        seen.append(seed.spawn_key)
        return _dxsm_generator(seed)

    simulator = MonteCarloRiskSimulator(300, seed=5, block_size=100, rng_factory=factory)
    first = simulator.run(_make_assumptions())

    assert seen == [(0,), (1,), (2,)]
    assert not np.allclose(first.npvs, _run(300, seed=5).npvs)

    again = MonteCarloRiskSimulator(300, seed=5, block_size=100, rng_factory=_dxsm_generator)
    np.testing.assert_array_equal(first.npvs, again.run(_make_assumptions()).npvs)
