#!/usr/bin/env python3
"""
Command-line entry point for Folio Lens.

Enrich ad-hoc tickers, print the portfolio dashboard, show provider quota
status, or run the HTTP API.
"""

import argparse
import asyncio
import logging
import sys

import structlog
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from folio_lens.brokerage.exceptions import BrokerageAuthError, BrokerageError
from folio_lens.config import Settings, config
from folio_lens.data.models import FallbackResult
from folio_lens.portfolio.models import PortfolioDashboard, ProviderStatusEntry
from folio_lens.services import Services, build_services

logger = structlog.get_logger(__name__)
console = Console()


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Folio Lens - portfolio fundamentals enrichment",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Fundamentals for a few tickers
  python -m folio_lens.main --tickers AAPL MSFT ASML

  # Full dashboard from the brokerage account
  python -m folio_lens.main --portfolio

  # Dashboard from the built-in demo portfolio, no keys needed
  python -m folio_lens.main --portfolio --demo

  # Provider quota status
  python -m folio_lens.main --status

  # Run the HTTP API
  python -m folio_lens.main --serve --port 8000
        """,
    )

    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument(
        "--tickers",
        nargs="+",
        metavar="TICKER",
        help="Enrich the given ticker symbols",
    )
    mode.add_argument(
        "--portfolio",
        action="store_true",
        help="Build the enriched portfolio dashboard",
    )
    mode.add_argument(
        "--status",
        action="store_true",
        help="Show provider quota status and cache statistics",
    )
    mode.add_argument(
        "--serve",
        action="store_true",
        help="Run the HTTP API with uvicorn",
    )

    parser.add_argument(
        "--demo",
        action="store_true",
        help="Allow synthetic demo data when providers and cache are exhausted",
    )
    parser.add_argument("--host", default="127.0.0.1", help="API bind host (--serve)")
    parser.add_argument("--port", type=int, default=8000, help="API port (--serve)")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    return parser.parse_args(argv)


def _fmt(value, pattern: str = "{:,.2f}") -> str:
    return "-" if value is None else pattern.format(value)


def display_fallback(outcome) -> None:
    """Banner describing how the data was produced, when degraded."""
    if outcome.outcome == "done" and not outcome.degraded_features:
        console.print(f"[green]{outcome.user_message}[/green]")
        return
    style = "red" if outcome.outcome == "failed" else "yellow"
    body = outcome.user_message
    if outcome.reasons:
        body += "\n" + "\n".join(f"  - {r}" for r in outcome.reasons)
    console.print(Panel(body, title=f"Data: {outcome.outcome}", border_style=style))


def display_enrichment(result: FallbackResult) -> None:
    enrichment = result.data
    table = Table(show_header=True, box=box.ROUNDED, title="Fundamentals")
    table.add_column("Ticker", style="cyan")
    table.add_column("Company")
    table.add_column("Sector", style="magenta")
    table.add_column("Country")
    table.add_column("P/E", justify="right")
    table.add_column("EPS", justify="right")
    table.add_column("Div. Yield", justify="right")
    table.add_column("Source", style="blue")

    if enrichment is not None:
        for symbol, record in enrichment.records.items():
            table.add_row(
                symbol,
                record.company_name,
                record.sector or "-",
                record.country or "-",
                _fmt(record.pe_ratio),
                _fmt(record.eps),
                _fmt(record.dividend_yield, "{:.2%}"),
                enrichment.sources.get(symbol, record.source_provider),
            )
        for symbol in enrichment.not_found:
            table.add_row(symbol, "[dim]not found[/dim]", "", "", "", "", "", "")
        for symbol in enrichment.failed:
            table.add_row(symbol, "[red]unavailable[/red]", "", "", "", "", "", "")

    console.print(table)
    display_fallback(result)


def display_provider_status(entries: list[ProviderStatusEntry], cache_stats: dict) -> None:
    table = Table(show_header=True, box=box.ROUNDED, title="Providers")
    table.add_column("Provider", style="cyan")
    table.add_column("Available")
    table.add_column("Minute", justify="right")
    table.add_column("Hour", justify="right")
    table.add_column("Day", justify="right")
    table.add_column("Daily usage", style="yellow")
    table.add_column("Notes")

    for entry in entries:
        notes = entry.warning_message or ""
        if entry.last_error:
            notes = f"{notes} last error: {entry.last_error}".strip()
        table.add_row(
            entry.provider_name,
            "✓" if entry.can_make_request else "✗",
            _fmt(entry.remaining_minute, "{}"),
            _fmt(entry.remaining_hour, "{}"),
            _fmt(entry.remaining_day, "{}"),
            entry.daily_usage,
            notes,
        )
    console.print(table)
    console.print(
        f"Cache: {cache_stats['fresh']} fresh, {cache_stats['expired']} expired, "
        f"{cache_stats['stale']} stale, hit rate {cache_stats['cache_hit_rate']}%"
    )


def display_dashboard(dashboard: PortfolioDashboard) -> None:
    metrics = dashboard.metrics
    summary = dashboard.summary

    header = (
        f"[bold]Total value:[/bold] {_fmt(metrics.total_value)}    "
        f"[bold]P&L:[/bold] {_fmt(metrics.total_pnl)} ({metrics.total_pnl_percent:.2f}%)\n"
        f"[bold]Diversification:[/bold] {metrics.diversification_score:.1f}/100    "
        f"[bold]Risk:[/bold] {metrics.risk_score:.1f}/100    "
        f"[bold]Positions:[/bold] {metrics.position_count}"
    )
    console.print(Panel(header, title="Portfolio", border_style="cyan"))

    table = Table(show_header=True, box=box.ROUNDED)
    table.add_column("Symbol", style="cyan")
    table.add_column("Company")
    table.add_column("Sector", style="magenta")
    table.add_column("Value", justify="right")
    table.add_column("Weight", justify="right")
    table.add_column("P&L %", justify="right")
    table.add_column("Risk", justify="right")
    table.add_column("Source", style="blue")
    for p in dashboard.positions:
        pnl_style = "green" if p.pnl >= 0 else "red"
        table.add_row(
            p.symbol,
            p.company_name,
            p.sector,
            _fmt(p.value),
            f"{p.weight:.1f}%",
            f"[{pnl_style}]{p.pnl_percent:.2f}%[/{pnl_style}]",
            f"{p.risk_score:.0f}",
            (p.data_source or "-") + (" (stale)" if p.is_stale else ""),
        )
    console.print(table)

    sectors = Table(show_header=True, box=box.SIMPLE, title="Sectors")
    sectors.add_column("Sector")
    sectors.add_column("%", justify="right")
    for s in dashboard.allocations.sector:
        sectors.add_row(s.name, f"{s.percentage:.1f}")
    console.print(sectors)

    for alert in metrics.alerts:
        style = "red" if alert.level == "high" else "yellow"
        console.print(f"[{style}]{alert.message}[/{style}] - {alert.recommendation}")

    console.print(
        f"Processed {summary.total_processed}: {summary.from_cache} from cache, "
        f"{summary.freshly_fetched} fetched, {summary.skipped_or_failed} skipped/failed. "
        f"API usage today {summary.daily_api_usage}, cache hit rate {summary.cache_hit_rate}"
    )
    display_fallback(dashboard.fallback)


async def run(args: argparse.Namespace, settings: Settings) -> int:
    services: Services = build_services(settings)
    try:
        if args.tickers:
            result = await services.portfolio.enrich_tickers(args.tickers)
            display_enrichment(result)
            return 0 if result.ok else 1
        if args.portfolio:
            dashboard = await services.portfolio.get_dashboard()
            display_dashboard(dashboard)
            return 0
        display_provider_status(services.portfolio.provider_status(), services.cache.stats())
        return 0
    finally:
        await services.close()


def serve(args: argparse.Namespace, settings: Settings) -> None:
    import uvicorn

    from folio_lens.api import create_app

    uvicorn.run(create_app(settings), host=args.host, port=args.port)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the application."""
    args = parse_arguments(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    settings = config.model_copy(update={"allow_demo_data": True}) if args.demo else config

    if args.serve:
        serve(args, settings)
        return

    try:
        sys.exit(asyncio.run(run(args, settings)))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user.[/yellow]\n")
        sys.exit(1)
    except BrokerageAuthError as e:
        console.print(f"\n[bold red]Brokerage authentication failed:[/bold red] {e}\n")
        console.print("Check TRADING212_API_KEY / TRADING212_API_SECRET, or use --demo.\n")
        sys.exit(1)
    except BrokerageError as e:
        console.print(f"\n[bold red]Brokerage error:[/bold red] {e}\n")
        sys.exit(1)


if __name__ == "__main__":
    main()
