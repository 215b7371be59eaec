#!/usr/bin/env python3
"""CLI tool for planning, executing and scheduling portfolio rebalances.

Usage:
    python scripts/optimizer_cli.py plan recommendation.json
    python scripts/optimizer_cli.py execute recommendation.json --yes
    python scripts/optimizer_cli.py run recommendation.json --current current.json
    python scripts/optimizer_cli.py status
    python scripts/optimizer_cli.py history
    python scripts/optimizer_cli.py enable
    python scripts/optimizer_cli.py disable
    python scripts/optimizer_cli.py settings --interval-hours 12
"""

import json
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table
from rich.text import Text

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from compoundefi.execution.executor import OperationExecutor
from compoundefi.execution.simulated_signer import SimulatedSigner
from compoundefi.execution.state_machine import ExecutionSession, ExecutionStep
from compoundefi.monitoring.notifications import LoggingNotifier
from compoundefi.monitoring.optimization_tracker import OptimizationTracker
from compoundefi.orchestration.scheduler import AutoOptimizer, format_time_remaining, utc_now
from compoundefi.orchestration.store import InMemoryStore, create_store
from compoundefi.orchestration.workflows import RebalanceWorkflow
from compoundefi.planning.base import PlanResult, Recommendation
from compoundefi.planning.planner import AllocationPlanner
from compoundefi.portfolio.base import StaticPortfolioProvider
from compoundefi.utils.config import load_optimizer_config
from compoundefi.utils.exceptions import CompounDefiError
from compoundefi.utils.logging import setup_logging
from compoundefi.utils.logging_enhanced import OptimizerEventLogger


console = Console()

STATUS_STYLES = {
    "success": "green",
    "partial": "yellow",
    "failed": "red",
    "skipped": "dim",
}


def load_json(path: str):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def load_recommendation(path: str) -> Recommendation:
    return Recommendation.from_dict(load_json(path))


def build_optimizer(
    config,
    recommendation: Optional[Recommendation] = None,
    current_allocation=None,
    current_apr: float = 0.0,
    reject=(),
    store=None,
) -> AutoOptimizer:
    """Wire an AutoOptimizer around a simulated signer."""
    event_logger = OptimizerEventLogger(log_dir=config.get("logging.event_log_dir", "logs"))
    executor = OperationExecutor.from_config(config, event_logger=event_logger)
    workflow = RebalanceWorkflow(
        AllocationPlanner.from_config(config),
        executor,
        SimulatedSigner(reject_addresses=reject),
        event_logger=event_logger,
    )
    portfolio = None
    if recommendation is not None:
        portfolio = StaticPortfolioProvider(recommendation, current_allocation, current_apr)

    return AutoOptimizer.from_config(
        config,
        store if store is not None else create_store(config),
        workflow,
        portfolio,
        notifier=LoggingNotifier(),
        event_logger=event_logger,
    )


def create_plan_table(plan: PlanResult) -> Table:
    """Create table of planned operations.

    Args:
        plan: Planner output

    Returns:
        Rich Table with one row per operation
    """
    table = Table(title="📋 Planned Operations", show_header=True, header_style="bold magenta")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Protocol", style="cyan", no_wrap=True)
    table.add_column("Operation", style="white")
    table.add_column("Amount", justify="right", style="green")
    table.add_column("APR", justify="right")
    table.add_column("Entry Point", style="dim", overflow="fold")

    for i, op in enumerate(plan.operations, 1):
        table.add_row(
            str(i),
            op.protocol,
            op.operation_type.value,
            f"{op.amount:,.2f}",
            f"{op.expected_apr:.2f}%",
            op.entry_point,
        )

    return table


def create_skip_table(plan: PlanResult) -> Table:
    table = Table(title="⚠️  Skipped Items", show_header=True, header_style="bold yellow")
    table.add_column("Item", justify="right")
    table.add_column("Protocol", style="cyan")
    table.add_column("Reason", style="yellow")
    for skip in plan.skipped:
        table.add_row(str(skip.index), skip.protocol, skip.reason)
    return table


def create_status_table(optimizer: AutoOptimizer) -> Table:
    """Create auto-optimizer status table."""
    state = optimizer.state
    now = utc_now()
    metrics = state.metrics

    table = Table(title="🤖 Auto-Optimizer Status", show_header=True, header_style="bold magenta")
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")

    enabled_text = Text("Enabled", style="green") if state.enabled else Text("Disabled", style="red")
    table.add_row("State", enabled_text)
    table.add_row("Next Run", str(state.next_run_at or "-"))
    table.add_row("Time Remaining", format_time_remaining(state.next_run_at, now))
    table.add_row("Last Run", str(state.last_run_at or "-"))

    table.add_row("", "")  # Separator
    table.add_row("Interval", f"{state.settings.interval_hours:g}h")
    table.add_row("Drift Threshold", f"{state.settings.drift_threshold_percent:g}%")
    table.add_row("Max Slippage", f"{state.settings.max_slippage_percent:g}%")
    table.add_row("Preserve Staked", "Yes" if state.settings.preserve_staked_positions else "No")

    table.add_row("", "")  # Separator
    table.add_row("Total Optimizations", str(metrics.total_optimizations))
    table.add_row("Total APR Increase", f"{metrics.total_apr_increase:+.2f}%")
    table.add_row("Average APR Increase", f"{metrics.average_apr_increase:+.2f}%")
    table.add_row("Total Value Saved", f"${metrics.total_value_saved:,.2f}")

    return table


def create_history_table(tracker: OptimizationTracker) -> Table:
    """Create run history table (newest first)."""
    df = tracker.to_dataframe()

    table = Table(title="🕑 Optimization History", show_header=True, header_style="bold magenta")
    table.add_column("Time", style="cyan")
    table.add_column("Status")
    table.add_column("Ops", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Max Drift", justify="right")
    table.add_column("Reason", style="dim", overflow="fold")

    for timestamp, row in df.iterrows():
        style = STATUS_STYLES.get(row["status"], "white")
        table.add_row(
            str(timestamp),
            Text(row["status"], style=style),
            str(row["operations"]),
            str(row["failed"]),
            f"{row['max_drift']:.2f}%",
            row["reason"] or "",
        )

    return table


@click.group()
@click.option("--config", "config_file", type=click.Path(exists=True), help="YAML config file")
@click.option("--env-file", type=click.Path(exists=True), help=".env file with overrides")
@click.pass_context
def cli(ctx, config_file: Optional[str], env_file: Optional[str]):
    """Allocation execution and auto-optimizer tool."""
    config = load_optimizer_config(config_file, env_file)
    setup_logging(config.get("logging.level", "INFO"))
    ctx.obj = config


@cli.command()
@click.argument("recommendation_file", type=click.Path(exists=True))
@click.pass_obj
def plan(config, recommendation_file: str):
    """Show the operations a recommendation would produce."""
    try:
        recommendation = load_recommendation(recommendation_file)
        result = AllocationPlanner.from_config(config).plan(recommendation)

        console.print(create_plan_table(result))
        if result.skipped:
            console.print(create_skip_table(result))

        apr = result.weighted_apr()
        console.print(
            f"\nTotal: [bold]{result.total_amount:,.2f}[/bold] APT across "
            f"{len(result.operations)} operations"
            + (f", weighted APR {apr:.2f}%" if apr is not None else "")
        )

    except (CompounDefiError, OSError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


@cli.command()
@click.argument("recommendation_file", type=click.Path(exists=True))
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
@click.option("--reject", multiple=True, help="Contract address the simulated signer rejects")
@click.pass_obj
def execute(config, recommendation_file: str, yes: bool, reject):
    """Confirm and execute a recommendation with a simulated signer."""
    try:
        recommendation = load_recommendation(recommendation_file)
        result = AllocationPlanner.from_config(config).plan(recommendation)
        console.print(create_plan_table(result))

        executor = OperationExecutor.from_config(config)
        session = ExecutionSession(
            result.operations,
            SimulatedSigner(reject_addresses=reject),
            executor,
            notifier=LoggingNotifier(),
        )
        executor.progress.subscribe(
            lambda update: console.print(f"[dim]{update.percent:5.1f}%[/dim] {update.status_message}")
        )

        if not yes and not click.confirm("Execute these operations?"):
            session.cancel()
            console.print("[yellow]Cancelled.[/yellow]")
            return

        session.confirm()
        if session.step == ExecutionStep.COMPLETE:
            console.print(f"[bold green]✓ {session.result.summary()}[/bold green]")
        else:
            console.print(f"[bold red]✗ {session.error}[/bold red]")
            sys.exit(1)

    except (CompounDefiError, OSError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


@cli.command()
@click.argument("recommendation_file", type=click.Path(exists=True))
@click.option("--current", "current_file", type=click.Path(exists=True),
              help="JSON list of current positions (protocol, percentage)")
@click.option("--current-apr", type=float, default=0.0, help="Current blended APR")
@click.option("--reject", multiple=True, help="Contract address the simulated signer rejects")
@click.option("--record", is_flag=True, help="Record the run in the configured state store")
@click.pass_obj
def run(config, recommendation_file: str, current_file: Optional[str], current_apr: float,
        reject, record: bool):
    """Run one auto-optimizer cycle now (simulated signer)."""
    try:
        recommendation = load_recommendation(recommendation_file)
        current = load_json(current_file) if current_file else []
        optimizer = build_optimizer(
            config,
            recommendation,
            current_allocation=current,
            current_apr=current_apr,
            reject=reject,
            store=None if record else InMemoryStore(),
        )

        run_record = optimizer.run_rebalance()
        style = STATUS_STYLES.get(run_record.status.value, "white")
        console.print(
            f"Run finished: [{style}]{run_record.status.value}[/{style}] "
            f"({run_record.operation_count} succeeded, {run_record.failed_count} failed, "
            f"max drift {run_record.max_drift:.2f}%)"
        )
        if run_record.reason:
            console.print(f"[dim]{run_record.reason}[/dim]")

    except (CompounDefiError, OSError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


@cli.command()
@click.pass_obj
def status(config):
    """Show auto-optimizer state, settings and metrics."""
    try:
        optimizer = build_optimizer(config)
        console.print(create_status_table(optimizer))
    except CompounDefiError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


@cli.command()
@click.pass_obj
def history(config):
    """Show recent optimization runs."""
    try:
        optimizer = build_optimizer(config)
        tracker = OptimizationTracker(
            optimizer.state.history, optimizer.state.metrics, optimizer.history_limit
        )
        if not tracker.history:
            console.print("[yellow]No optimization runs recorded yet.[/yellow]")
            return
        console.print(create_history_table(tracker))
        console.print(f"\nSuccess rate: {tracker.success_rate():.0%}")
    except CompounDefiError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


@cli.command()
@click.pass_obj
def enable(config):
    """Enable scheduled optimization."""
    try:
        next_run = build_optimizer(config).enable()
        console.print(f"[bold green]Auto-optimization enabled.[/bold green] Next run at {next_run}")
    except CompounDefiError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


@cli.command()
@click.pass_obj
def disable(config):
    """Disable scheduled optimization."""
    try:
        build_optimizer(config).disable()
        console.print("[yellow]Auto-optimization disabled.[/yellow]")
    except CompounDefiError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


@cli.command()
@click.option("--interval-hours", type=float, help="Hours between runs")
@click.option("--drift-threshold", type=float, help="Drift threshold in percent")
@click.option("--max-slippage", type=float, help="Maximum slippage in percent")
@click.option("--preserve-staked/--no-preserve-staked", default=None,
              help="Keep staked positions when rebalancing")
@click.pass_obj
def settings(config, interval_hours, drift_threshold, max_slippage, preserve_staked):
    """Update auto-optimizer settings."""
    changes = {
        "interval_hours": interval_hours,
        "drift_threshold_percent": drift_threshold,
        "max_slippage_percent": max_slippage,
        "preserve_staked_positions": preserve_staked,
    }
    changes = {k: v for k, v in changes.items() if v is not None}

    try:
        optimizer = build_optimizer(config)
        if changes:
            optimizer.update_settings(**changes)
        console.print(create_status_table(optimizer))
    except CompounDefiError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
