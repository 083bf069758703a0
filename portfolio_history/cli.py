from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer

from portfolio_history.config import load_config
from portfolio_history.holdings import load_holdings
from portfolio_history.pipeline import PERIODS, analyze_portfolio, stock_history
from portfolio_history.transactions import read_activity_sources
from portfolio_history.util import parse_date

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False, no_args_is_help=True)


def _setup_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _load_inputs(holdings: Path, activity: list[Path], config: Optional[Path], benchmark: Optional[str], as_of: Optional[str]):
    if not holdings.exists():
        raise typer.BadParameter(f"Holdings file not found: {holdings}")
    if config is not None and not config.exists():
        raise typer.BadParameter(f"Config file not found: {config}")
    as_of_d = parse_date(as_of) if as_of is not None else None
    if as_of is not None and as_of_d is None:
        raise typer.BadParameter(f"Invalid --as-of date: {as_of}")

    cfg, cfg_path = load_config(config)
    logger.debug("Config: %s", cfg_path or "defaults")
    if benchmark:
        cfg = cfg.model_copy(update={"benchmark_symbol": benchmark.strip().upper()})
    rows, warnings = load_holdings(holdings, skip_symbols=[cfg.cash_sweep_symbol])
    if not rows:
        raise typer.BadParameter(f"No holdings parsed from {holdings}")
    sources, read_warnings = read_activity_sources(activity)
    warnings.extend(read_warnings)
    return cfg, rows, sources, warnings, as_of_d


def _emit(payload: str, out: Optional[Path]) -> None:
    if out is None:
        typer.echo(payload)
        return
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(payload, encoding="utf-8")
    typer.echo(f"Wrote {out}")


@app.command()
def analyze(
    holdings: Path = typer.Option(..., help="Present-day positions CSV (Symbol, Quantity)."),
    activity: List[Path] = typer.Option([], help="Brokerage activity CSV; repeat for several years."),
    period: str = typer.Option("1y", help="One of: 3m, 6m, ytd, 1y, 2y, all."),
    benchmark: Optional[str] = typer.Option(None, help="Benchmark ticker (overrides config)."),
    config: Optional[Path] = typer.Option(None, help="YAML config file."),
    as_of: Optional[str] = typer.Option(None, help="Valuation date (YYYY-MM-DD); default today."),
    out: Optional[Path] = typer.Option(None, help="Write JSON here instead of stdout."),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """
    Historical portfolio analytics: risk metrics vs the benchmark, sparkline, heatmap and attribution.
    """
    _setup_logging(verbose)
    if period.strip().lower() not in PERIODS:
        raise typer.BadParameter(f"Unknown --period {period!r}; expected one of {', '.join(PERIODS)}")
    cfg, rows, sources, warnings, as_of_d = _load_inputs(holdings, activity, config, benchmark, as_of)
    result = analyze_portfolio(rows, sources, period=period.strip().lower(), config=cfg, as_of=as_of_d)
    result.warnings[:0] = warnings
    _emit(result.model_dump_json(indent=2), out)


@app.command("stock-history")
def stock_history_cmd(
    holdings: Path = typer.Option(..., help="Present-day positions CSV (Symbol, Quantity)."),
    activity: List[Path] = typer.Option([], help="Brokerage activity CSV; repeat for several years."),
    benchmark: Optional[str] = typer.Option(None, help="Benchmark ticker (overrides config)."),
    config: Optional[Path] = typer.Option(None, help="YAML config file."),
    as_of: Optional[str] = typer.Option(None, help="Valuation date (YYYY-MM-DD); default today."),
    out: Optional[Path] = typer.Option(None, help="Write JSON here instead of stdout."),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """
    Per-symbol history: cost basis, total return, CAGR and dollar-weighted alpha for every symbol ever held.
    """
    _setup_logging(verbose)
    cfg, rows, sources, warnings, as_of_d = _load_inputs(holdings, activity, config, benchmark, as_of)
    report = stock_history(rows, sources, config=cfg, as_of=as_of_d)
    report.warnings[:0] = warnings
    _emit(report.model_dump_json(indent=2), out)


if __name__ == "__main__":
    app()
