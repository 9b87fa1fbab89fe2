#!/usr/bin/env python3
"""CLI tool for operating the portfolio rebalancer.

State lives in the SQLite database named in the config; prices come from the
YAML price file (static oracle) or the HTTP oracle configured via .env.

Usage:
    python scripts/rebalancer_cli.py --caller admin init --admin admin
    python scripts/rebalancer_cli.py --caller alice create alice -a XLM=60 -a USDC=40
    python scripts/rebalancer_cli.py --caller alice deposit 1 XLM 5000000000
    python scripts/rebalancer_cli.py check 1
    python scripts/rebalancer_cli.py plan 1
    python scripts/rebalancer_cli.py --caller alice execute 1 -b XLM=3000 -b USDC=2000
    python scripts/rebalancer_cli.py --caller admin stop --on
    python scripts/rebalancer_cli.py report 1
"""

import sys
from pathlib import Path
from typing import Dict, Optional

import click
from rich.console import Console
from rich.table import Table

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from rebalancer.api.portfolio_api import PortfolioAPI
from rebalancer.engine.authorization import SessionAuthorizer
from rebalancer.engine.events import CompositeEventSink, JsonEventLog, LoggingEventSink
from rebalancer.engine.portfolio_rebalancer import PortfolioRebalancer
from rebalancer.oracle.http_oracle import HttpPriceOracle
from rebalancer.oracle.registry import OracleRegistry
from rebalancer.oracle.static_oracle import StaticPriceOracle
from rebalancer.storage.sqlite_store import SQLitePortfolioStore
from rebalancer.utils.config import (
    RebalancerSettings,
    load_config,
    load_oracle_config,
    resolve_path,
)
from rebalancer.utils.exceptions import ConfigurationError, RebalancerError
from rebalancer.utils.logging import setup_logging_from_config

console = Console()


def parse_amounts(pairs: tuple) -> Dict[str, int]:
    """Parse "ASSET=amount" strings into a dictionary.

    Raises:
        click.BadParameter: If an entry is malformed
    """
    amounts = {}
    for pair in pairs:
        if "=" not in pair:
            raise click.BadParameter(f"Invalid entry '{pair}', expected 'ASSET=amount'")
        asset, value = pair.split("=", 1)
        try:
            amounts[asset.strip()] = int(value)
        except ValueError:
            raise click.BadParameter(f"Amount for {asset} must be an integer, got '{value}'")
    return amounts


def build_rebalancer(
    config, caller: Optional[str], event_log_dir: Optional[Path] = None
) -> PortfolioRebalancer:
    """Wire store, oracles and event sinks from the loaded config."""
    oracles = OracleRegistry()

    prices_file = config.get("oracle.prices_file")
    if prices_file:
        oracles.register("static", StaticPriceOracle.from_file(resolve_path(prices_file)))

    try:
        oracles.register("http", HttpPriceOracle.from_settings(load_oracle_config(config)))
    except ConfigurationError:
        pass  # HTTP oracle not configured

    database = config.get("storage.database", "data/rebalancer.db")
    if database != ":memory:":
        database = str(resolve_path(database))

    sinks = [LoggingEventSink()]
    if event_log_dir is not None:
        sinks.append(JsonEventLog(log_dir=event_log_dir))

    return PortfolioRebalancer(
        store=SQLitePortfolioStore(database),
        oracles=oracles,
        authorizer=SessionAuthorizer(caller),
        event_sink=CompositeEventSink(sinks),
        settings=RebalancerSettings.from_config(config),
    )


def create_drift_table(report) -> Table:
    """Create allocation table from a PortfolioAPI allocation report.

    Args:
        report: DataFrame from ``PortfolioAPI.allocation_report``

    Returns:
        Rich Table with one row per asset
    """
    table = Table(title="Allocation", show_header=True, header_style="bold magenta")
    table.add_column("Asset", style="cyan", no_wrap=True)
    table.add_column("Balance", justify="right")
    table.add_column("Value", justify="right")
    table.add_column("Current %", justify="right")
    table.add_column("Target %", justify="right")
    table.add_column("Drift", justify="right")

    for _, row in report.iterrows():
        drift = "-" if row["drift"] is None else str(row["drift"])
        current = "n/a" if row["current_pct"] is None else str(row["current_pct"])
        style = "red" if not row["priced"] else None
        table.add_row(
            row["asset"],
            str(row["balance"]),
            str(row["value"]),
            current,
            str(row["target_pct"]),
            drift,
            style=style,
        )

    return table


@click.group()
@click.option("--config", "config_path", type=click.Path(), default=None, help="YAML config file")
@click.option("--caller", default=None, help="Identity the command acts as")
@click.pass_context
def cli(ctx, config_path: Optional[str], caller: Optional[str]):
    """Portfolio Rebalancer"""
    config = load_config(config_path)
    event_log_dir = setup_logging_from_config(config)
    try:
        rebalancer = build_rebalancer(config, caller, event_log_dir)
    except RebalancerError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)

    ctx.obj = {"config": config, "rebalancer": rebalancer}


@cli.command()
@click.option("--admin", required=True, help="Admin identity")
@click.option("--oracle", "oracle_address", default=None, help="Oracle address (static/http)")
@click.pass_context
def init(ctx, admin: str, oracle_address: Optional[str]):
    """Record admin and oracle address (once)."""
    config = ctx.obj["config"]
    address = oracle_address or config.get("oracle.address", "static")
    try:
        ctx.obj["rebalancer"].initialize(admin=admin, oracle_address=address)
        console.print(f"[bold green]Initialized[/bold green] (admin={admin}, oracle={address})")
    except RebalancerError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


@cli.command()
@click.argument("user")
@click.option("--allocation", "-a", multiple=True, required=True, help="Target ASSET=percent")
@click.option("--threshold", "-t", type=int, default=5, help="Drift threshold in points (1-50)")
@click.option("--slippage", "-s", type=int, default=100, help="Slippage tolerance in bps (10-500)")
@click.pass_context
def create(ctx, user: str, allocation: tuple, threshold: int, slippage: int):
    """Create a portfolio for USER."""
    try:
        portfolio_id = ctx.obj["rebalancer"].create_portfolio(
            user, parse_amounts(allocation), threshold, slippage
        )
        console.print(f"[bold green]Created portfolio {portfolio_id}[/bold green]")
    except RebalancerError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


@cli.command()
@click.argument("portfolio_id", type=int)
@click.argument("asset")
@click.argument("amount", type=int)
@click.pass_context
def deposit(ctx, portfolio_id: int, asset: str, amount: int):
    """Deposit AMOUNT of ASSET into a portfolio."""
    try:
        ctx.obj["rebalancer"].deposit(portfolio_id, asset, amount)
        console.print(f"[bold green]Deposited {amount} {asset}[/bold green]")
    except RebalancerError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


@cli.command()
@click.argument("portfolio_id", type=int)
@click.pass_context
def check(ctx, portfolio_id: int):
    """Show whether a portfolio drifted beyond its threshold."""
    try:
        result = PortfolioAPI(ctx.obj["rebalancer"]).check(portfolio_id)
    except RebalancerError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)

    table = Table(title=f"Drift (threshold {result['threshold']})", header_style="bold magenta")
    table.add_column("Asset", style="cyan")
    table.add_column("Current %", justify="right")
    table.add_column("Target %", justify="right")
    table.add_column("Drift", justify="right")
    for row in result["drift"]:
        table.add_row(
            row["asset"],
            "n/a" if row["current_pct"] is None else str(row["current_pct"]),
            str(row["target_pct"]),
            "-" if row["drift"] is None else str(row["drift"]),
            style="red" if row["exceeds_threshold"] else None,
        )
    console.print(table)

    if result["needs_rebalance"]:
        console.print("[bold yellow]Rebalance needed[/bold yellow]")
    else:
        console.print("[green]Within threshold[/green]")


@cli.command()
@click.argument("portfolio_id", type=int)
@click.pass_context
def plan(ctx, portfolio_id: int):
    """Show advisory trades that restore the target allocation."""
    try:
        trades = ctx.obj["rebalancer"].plan_rebalance(portfolio_id)
    except RebalancerError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)

    if not trades:
        console.print("[green]No trades above the minimum size[/green]")
        return

    table = Table(title="Planned Trades", header_style="bold magenta")
    table.add_column("Asset", style="cyan")
    table.add_column("Action")
    table.add_column("Amount", justify="right")
    for asset, amount in trades.items():
        action = "[green]BUY[/green]" if amount > 0 else "[red]SELL[/red]"
        table.add_row(asset, action, str(abs(amount)))
    console.print(table)


@cli.command()
@click.argument("portfolio_id", type=int)
@click.option("--balance", "-b", multiple=True, help="Proposed ASSET=amount after the rebalance")
@click.pass_context
def execute(ctx, portfolio_id: int, balance: tuple):
    """Authorize a rebalance with the given proposed balances."""
    try:
        result = ctx.obj["rebalancer"].execute_rebalance(portfolio_id, parse_amounts(balance))
    except RebalancerError as e:
        console.print(f"[bold red]Rejected:[/bold red] {e}")
        sys.exit(1)

    console.print(
        f"[bold green]Rebalance recorded[/bold green] at {result.timestamp} "
        f"(total value {result.total_value})"
    )
    for asset, bps in result.slippage_bps.items():
        console.print(f"  {asset}: {bps} bps")


@cli.command()
@click.option("--on/--off", "active", default=True, help="Activate or clear the stop")
@click.pass_context
def stop(ctx, active: bool):
    """Toggle the emergency stop (admin only)."""
    try:
        ctx.obj["rebalancer"].set_emergency_stop(active)
    except RebalancerError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)

    if active:
        console.print("[bold red]Emergency stop ACTIVE[/bold red]")
    else:
        console.print("[green]Emergency stop cleared[/green]")


@cli.command()
@click.argument("portfolio_id", type=int)
@click.pass_context
def report(ctx, portfolio_id: int):
    """Show portfolio summary and allocation."""
    api = PortfolioAPI(ctx.obj["rebalancer"])
    try:
        summary = api.summary(portfolio_id)
        allocation = api.allocation_report(portfolio_id)
    except RebalancerError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)

    table = Table(title=f"Portfolio {portfolio_id}", header_style="bold magenta")
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")
    for key in (
        "user",
        "total_value",
        "cached_total_value",
        "last_rebalance_at",
        "rebalance_threshold",
        "slippage_tolerance",
        "needs_rebalance",
        "emergency_stop",
    ):
        table.add_row(key, str(summary[key]))
    console.print(table)
    console.print(create_drift_table(allocation))


if __name__ == "__main__":
    cli()
