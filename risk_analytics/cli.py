"""Command-line interface for the investment risk analytics core."""

from __future__ import annotations

import argparse
import sys
from dataclasses import replace

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from risk_analytics.config import AnalysisSettings
from risk_analytics.errors import RiskAnalyticsError
from risk_analytics.logging_setup import setup_logging
from risk_analytics.pipeline import AnalysisResult, InvestmentAssumptions, run_analysis
from risk_analytics.providers import CsvMarketDataProvider, fetch_price_series


console = Console()


def build_parser(settings: AnalysisSettings | None = None) -> argparse.ArgumentParser:
    settings = settings or AnalysisSettings()
    parser = argparse.ArgumentParser(
        prog="risk-analytics",
        description="Beta, DCF and Monte Carlo risk analysis of a single asset.",
    )

    parser.add_argument(
        "--data-dir",
        type=str,
        default="data",
        help="Directory holding <asset>.csv price files with date,price columns (default: data/)",
    )
    parser.add_argument("--asset", required=True, help="Asset identifier, e.g. btc")
    parser.add_argument("--benchmark", required=True, help="Benchmark identifier, e.g. sp500")
    parser.add_argument(
        "--investment",
        type=float,
        default=10_000.0,
        help="Initial investment (default: 10,000)",
    )
    parser.add_argument(
        "--horizon", "-y",
        type=int,
        default=3,
        help="Holding period in years (default: 3)",
    )
    parser.add_argument(
        "--risk-free-rate",
        type=float,
        required=True,
        help="Annual risk-free rate, e.g. 0.04",
    )
    parser.add_argument(
        "--market-return",
        type=float,
        required=True,
        help="Expected annual market return, e.g. 0.10",
    )
    parser.add_argument(
        "--liquidity-premium",
        type=float,
        default=0.0,
        help="Extra discount-rate premium for illiquid assets (default: 0)",
    )
    parser.add_argument(
        "--growth",
        type=float,
        default=None,
        help="Annual growth assumption (default: realised CAGR of the asset)",
    )
    parser.add_argument(
        "--volatility",
        type=float,
        default=None,
        help="Annualised volatility (default: realised volatility of the asset)",
    )
    parser.add_argument(
        "--yield", dest="yield_rate",
        type=float,
        default=0.0,
        help="Annual staking/dividend yield paid in units (default: 0)",
    )
    parser.add_argument(
        "--transaction-cost",
        type=float,
        default=0.0,
        help="Fractional cost on purchase and sale (default: 0)",
    )
    parser.add_argument(
        "--inflation",
        type=float,
        default=0.0,
        help="Inflation rate added to the discount rate for the real NPV (default: 0)",
    )
    parser.add_argument(
        "--momentum",
        type=float,
        default=1.0,
        help="Multiplier applied to every simulated daily return (default: 1.0)",
    )
    parser.add_argument(
        "--simulations", "-n",
        type=int,
        default=settings.scenario_count,
        help=f"Number of Monte Carlo scenarios (default: {settings.scenario_count:,})",
    )
    parser.add_argument(
        "--workers", "-w",
        type=int,
        default=settings.workers,
        help="Worker processes for the simulation (default: one per core)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for reproducibility",
    )
    parser.add_argument(
        "--monthly",
        action="store_true",
        help="Estimate beta from month-end prices instead of daily prices",
    )
    parser.add_argument(
        "--min-points",
        type=int,
        default=settings.min_aligned_points,
        help=f"Minimum shared observations (default: {settings.min_aligned_points})",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=settings.log_level,
        help=f"Logging level (default: {settings.log_level})",
    )

    return parser


def _metric_table(title: str, rows: dict) -> Table:
    table = Table(title=title)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    for label, value in rows.items():
        table.add_row(label.replace("_", " "), "N/A" if value is None else str(value))
    return table


def render(result: AnalysisResult, investment: float) -> None:
    """Print the analysis as rich tables."""
    console.print(_metric_table("Beta Estimate", result.beta.to_dict()))

    dcf_table = Table(title="Discounted Cash Flows")
    dcf_table.add_column("Period", justify="right", style="cyan")
    dcf_table.add_column("Cash Flow", justify="right")
    dcf_table.add_column("Present Value", justify="right")
    for period, (cf, pv) in enumerate(zip(result.npv.cash_flows, result.npv.present_values)):
        dcf_table.add_row(str(period), f"${cf:,.2f}", f"${pv:,.2f}")
    console.print(dcf_table)

    console.print(_metric_table("Valuation", {
        "Discount_Rate": f"{result.discount_rate * 100:.2f}%",
        "Growth_Rate": f"{result.growth_rate * 100:.2f}%",
        "NPV": f"${result.npv.npv:,.2f}",
        "Inflation_Adjusted_NPV": f"${result.inflation_adjusted_npv.npv:,.2f}",
        "IRR": None if result.irr is None else f"{result.irr * 100:.2f}%",
    }))

    mc = result.monte_carlo
    console.print(_metric_table("Monte Carlo Results", {
        "Initial_Investment": f"${investment:,.2f}",
        "Expected_NPV": f"${mc.expected_npv:,.2f}",
        "5th_Percentile": f"${mc.percentile_5:,.2f}",
        "95th_Percentile": f"${mc.percentile_95:,.2f}",
        "Probability_of_Loss": f"{mc.probability_of_loss * 100:.1f}%",
        "Value_at_Risk": f"${mc.value_at_risk:,.2f}",
        "Expected_Shortfall": f"${mc.expected_shortfall:,.2f}",
        "Max_Drawdown": f"{mc.max_drawdown * 100:.1f}% (mean {mc.mean_drawdown * 100:.1f}%)",
        "Scenarios": f"{mc.scenario_count:,} ({mc.excluded_count} excluded)",
    }))


def run(args: argparse.Namespace, settings: AnalysisSettings | None = None) -> AnalysisResult:
    """Execute the full analysis pipeline."""
    settings = replace(
        settings or AnalysisSettings(),
        scenario_count=args.simulations,
        workers=args.workers,
        min_aligned_points=args.min_points,
        log_level=args.log_level,
    )
    settings.validate()

    console.print(Panel.fit(
        "[bold blue]Investment Risk Analytics[/bold blue]\n"
        "CAPM beta, discounted cash flows and Monte Carlo risk",
        border_style="blue",
    ))

    console.print("\n[bold]Loading price histories...[/bold]")
    provider = CsvMarketDataProvider(args.data_dir)
    asset = fetch_price_series(provider, args.asset)
    benchmark = fetch_price_series(provider, args.benchmark)
    console.print(f"  {asset.name}: {len(asset)} prices, {asset.first.date} to {asset.last.date}")
    console.print(f"  {benchmark.name}: {len(benchmark)} prices, {benchmark.first.date} to {benchmark.last.date}")

    assumptions = InvestmentAssumptions(
        initial_investment=args.investment,
        horizon_years=args.horizon,
        risk_free_rate=args.risk_free_rate,
        market_return=args.market_return,
        liquidity_premium=args.liquidity_premium,
        growth_rate=args.growth,
        annualized_volatility=args.volatility,
        periodic_yield_rate=args.yield_rate,
        transaction_cost_rate=args.transaction_cost,
        inflation_rate=args.inflation,
        momentum=args.momentum,
    )

    console.print(f"\n[bold]Running analysis ({settings.scenario_count:,} scenarios, {args.horizon} years)...[/bold]")
    result = run_analysis(
        asset,
        benchmark,
        assumptions,
        settings=settings,
        seed=args.seed,
        freq="M" if args.monthly else None,
    )
    render(result, args.investment)
    console.print("\n[bold green]Analysis complete.[/bold green]")
    return result


def main(argv: list[str] | None = None) -> None:
    try:
        settings = AnalysisSettings.load()
    except RiskAnalyticsError as exc:
        console.print(f"[red]Invalid configuration:[/red] {exc}")
        sys.exit(1)

    parser = build_parser(settings)
    args = parser.parse_args(argv)
    setup_logging(args.log_level)
    try:
        run(args, settings)
    except (RiskAnalyticsError, FileNotFoundError) as exc:
        console.print(f"[red]Analysis failed:[/red] {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
