"""CLI entry point for Pathfinder."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from pathfinder.errors import ConfigurationError, PersistenceError
from pathfinder.executor.executor import SuiteExecutionResult
from pathfinder.models.config import FrameworkConfig
from pathfinder.models.regression import IgnoreRegion
from pathfinder.orchestrator import Orchestrator

console = Console()

DEFAULT_CONFIG = "pathfinder.json"


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load(config: str) -> Orchestrator:
    try:
        cfg = FrameworkConfig.load(config)
    except FileNotFoundError:
        console.print(f"[red]Config file not found: {config}[/red]")
        console.print("Run 'pathfinder init' to create a default config.")
        sys.exit(1)
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    return Orchestrator(cfg)


def _print_summary(outcome: SuiteExecutionResult) -> None:
    table = Table(title="Run Summary")
    table.add_column("Scenario", style="bold")
    table.add_column("Viewport")
    table.add_column("Status")
    table.add_column("Duration")
    for r in outcome.results:
        colour = "green" if r.status == "pass" else "red"
        table.add_row(
            r.scenario_name,
            f"{r.viewport} ({r.viewport_size})",
            f"[{colour}]{r.status.upper()}[/{colour}]",
            f"{r.duration_ms / 1000:.1f}s",
        )
    console.print(table)

    s = outcome.summary
    console.print(
        f"Run [blue]{outcome.run.id}[/blue]: {s.total} total, "
        f"[green]{s.passed} passed[/green], [red]{s.failed} failed[/red]"
    )


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Scenario execution and visual regression for web apps"""
    setup_logging(verbose)


@cli.command()
@click.option("--path", "-p", default=DEFAULT_CONFIG, help="Where to write the config")
def init(path: str) -> None:
    """Create a default configuration file."""
    config_path = Path(path)
    if config_path.exists():
        if not click.confirm(f"{config_path} already exists. Overwrite?"):
            return

    FrameworkConfig().save(config_path)
    console.print(f"[green]Created {config_path}[/green]")
    console.print("\nImport a suite and run it:")
    console.print("  [blue]pathfinder suite import suite.json[/blue]")
    console.print("  [blue]pathfinder run --suite <id> --viewport desktop[/blue]")


# ----------------------------------------------------------------------
# Suites
# ----------------------------------------------------------------------

@cli.group()
def suite() -> None:
    """Manage stored test suites."""
    pass


@suite.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def suite_import(path: str, config: str) -> None:
    """Import a suite definition from a JSON file."""
    orchestrator = _load(config)
    imported = orchestrator.import_suite(path)
    console.print(
        f"[green]Imported suite[/green] {imported.id} "
        f"({len(imported.scenarios)} scenarios)"
    )


@suite.command("list")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def suite_list(config: str) -> None:
    """List stored suites."""
    orchestrator = _load(config)
    suites = orchestrator.storage.list_suites()
    if not suites:
        console.print("[yellow]No suites stored[/yellow]")
        return
    table = Table(title="Test Suites")
    table.add_column("ID", style="bold")
    table.add_column("Name")
    table.add_column("Target")
    table.add_column("Scenarios", justify="right")
    for s in suites:
        table.add_row(s.id, s.name, s.target_url, str(len(s.scenarios)))
    console.print(table)


# ----------------------------------------------------------------------
# Execution
# ----------------------------------------------------------------------

@cli.command()
@click.option("--suite", "-s", "suite_id", required=True, help="Suite ID to execute")
@click.option("--viewport", "-w", "viewports", multiple=True, default=("desktop",),
              help="Viewport preset (repeatable)")
@click.option("--screenshot-every-step", is_flag=True, default=None,
              help="Capture a screenshot after every passing step")
@click.option("--stream", is_flag=True, help="Print progress events as they happen")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def run(suite_id: str, viewports: tuple[str, ...], screenshot_every_step: bool | None,
        stream: bool, config: str) -> None:
    """Execute every scenario of a suite across the given viewports."""
    orchestrator = _load(config)
    test_suite = orchestrator.storage.get_suite(suite_id)
    if test_suite is None:
        console.print(f"[red]Test suite not found: {suite_id}[/red]")
        sys.exit(1)
    if not test_suite.scenarios:
        console.print(f"[red]No scenarios found for suite {suite_id}[/red]")
        sys.exit(1)
    try:
        resolved = orchestrator.resolve_viewports(list(viewports))
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    if stream:
        async def _stream() -> SuiteExecutionResult:
            execution = orchestrator.executor.start(test_suite, resolved, screenshot_every_step)
            async for event in execution.events():
                if event.event == "log":
                    console.print(f"[dim]{event.data.get('message', '')}[/dim]")
                elif event.event == "scenario-complete":
                    colour = "green" if event.data.get("status") == "pass" else "red"
                    console.print(
                        f"[{colour}]{event.data.get('status', '').upper()}[/{colour}] "
                        f"{event.data.get('name')} ({event.data.get('viewport')})"
                    )
                elif event.event == "error":
                    console.print(f"[red]{event.data.get('message', '')}[/red]")
            return await execution.result()

        outcome = asyncio.run(_stream())
    else:
        outcome = orchestrator.run_suite(test_suite, resolved, screenshot_every_step)

    _print_summary(outcome)
    if outcome.summary.failed:
        sys.exit(1)


@cli.command()
@click.argument("target_url")
@click.option("--steps", "steps_file", required=True, type=click.Path(exists=True, dir_okay=False),
              help="JSON file with a list of steps (or an object with a \"steps\" key)")
@click.option("--viewport", "-w", default="desktop", help="Viewport preset")
@click.option("--name", "-n", default="Ad-hoc scenario", help="Name recorded on the result")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def adhoc(target_url: str, steps_file: str, viewport: str, name: str, config: str) -> None:
    """Run an unsaved list of steps against a URL."""
    orchestrator = _load(config)
    with open(steps_file) as f:
        data = json.load(f)
    steps = data.get("steps", []) if isinstance(data, dict) else data
    if not steps:
        console.print(f"[red]No steps found in {steps_file}[/red]")
        sys.exit(1)
    try:
        resolved = orchestrator.resolve_viewports([viewport])[0]
        outcome = orchestrator.run_adhoc(target_url, steps, resolved, name)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    _print_summary(outcome)
    if outcome.summary.failed:
        sys.exit(1)


# ----------------------------------------------------------------------
# Visual regression
# ----------------------------------------------------------------------

@cli.command()
@click.argument("run_id")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def analyze(run_id: str, config: str) -> None:
    """Compare a run's screenshots with its suite's baseline."""
    orchestrator = _load(config)
    report = orchestrator.analyze(run_id)
    if not report.success:
        console.print(f"[red]{report.message}[/red]")
        sys.exit(1)

    console.print(f"[green]{report.message}[/green]")
    if report.details:
        table = Table(title="Visual Comparisons")
        table.add_column("Scenario", style="bold")
        table.add_column("Viewport")
        table.add_column("Step")
        table.add_column("Diff %", justify="right")
        table.add_column("Significant")
        for d in report.details:
            table.add_row(
                d.test_name,
                d.viewport,
                d.step_name or "-",
                f"{d.comparison.percentage_different:.2f}",
                "[red]yes[/red]" if d.comparison.is_significant else "[green]no[/green]",
            )
        console.print(table)
    console.print(
        f"{report.total_comparisons} comparisons, "
        f"{report.significant_regressions} significant, "
        f"average difference {report.average_difference:.2f}%"
    )


@cli.group()
def baseline() -> None:
    """Manage suite baselines."""
    pass


@baseline.command("set")
@click.argument("suite_id")
@click.argument("run_id")
@click.option("--notes", "-n", default=None, help="Why this run is the new reference")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def baseline_set(suite_id: str, run_id: str, notes: str | None, config: str) -> None:
    """Mark a run as the suite's visual baseline."""
    orchestrator = _load(config)
    try:
        orchestrator.set_baseline(suite_id, run_id, notes)
    except PersistenceError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print(f"[green]Baseline for {suite_id} set to {run_id}[/green]")


@baseline.command("clear")
@click.argument("suite_id")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def baseline_clear(suite_id: str, config: str) -> None:
    """Remove a suite's baseline."""
    orchestrator = _load(config)
    orchestrator.clear_baseline(suite_id)
    console.print(f"[green]Baseline cleared for {suite_id}[/green]")


@baseline.command("show")
@click.argument("suite_id")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def baseline_show(suite_id: str, config: str) -> None:
    """Show a suite's baseline."""
    orchestrator = _load(config)
    current = orchestrator.get_baseline(suite_id)
    if current is None:
        console.print(f"[yellow]No baseline set for {suite_id}[/yellow]")
        return
    console.print(f"Run: [blue]{current.baseline_run_id}[/blue]")
    console.print(f"Set at: {current.baseline_set_at}")
    if current.baseline_notes:
        console.print(f"Notes: {current.baseline_notes}")


@cli.group()
def threshold() -> None:
    """Manage comparison thresholds."""
    pass


@threshold.command("set")
@click.argument("suite_id")
@click.argument("value", type=float)
@click.option("--viewport", "-w", default=None, help="Only apply to this viewport")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def threshold_set(suite_id: str, value: float, viewport: str | None, config: str) -> None:
    """Set the significance threshold (fraction, 0.1 = 10%)."""
    orchestrator = _load(config)
    try:
        orchestrator.set_threshold(suite_id, value, viewport)
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    scope = f"{suite_id}/{viewport}" if viewport else suite_id
    console.print(f"[green]Threshold for {scope} set to {value}[/green]")


@threshold.command("show")
@click.argument("suite_id")
@click.option("--viewport", "-w", default=None, help="Viewport to resolve for")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def threshold_show(suite_id: str, viewport: str | None, config: str) -> None:
    """Show the threshold that applies to a suite (and viewport)."""
    orchestrator = _load(config)
    console.print(str(orchestrator.storage.get_threshold(
        suite_id, viewport, default=orchestrator.config.diff.default_threshold,
    )))


@cli.group()
def ignore() -> None:
    """Manage regions excluded from comparison."""
    pass


@ignore.command("add")
@click.argument("suite_id")
@click.option("--x", type=int, required=True)
@click.option("--y", type=int, required=True)
@click.option("--width", type=int, required=True)
@click.option("--height", type=int, required=True)
@click.option("--reason", default="", help="Why this region is ignored")
@click.option("--test-name", default=None, help="Only for this scenario")
@click.option("--viewport", "-w", default=None, help="Only for this viewport")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def ignore_add(suite_id: str, x: int, y: int, width: int, height: int, reason: str,
               test_name: str | None, viewport: str | None, config: str) -> None:
    """Add an ignore region."""
    orchestrator = _load(config)
    region = IgnoreRegion(
        x=x, y=y, width=width, height=height, reason=reason,
        suite_id=suite_id, test_name=test_name, viewport=viewport,
    )
    orchestrator.add_ignore_region(region)
    console.print(f"[green]Ignoring {width}x{height} at ({x}, {y}) for {suite_id}[/green]")


@ignore.command("list")
@click.argument("suite_id")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def ignore_list(suite_id: str, config: str) -> None:
    """List ignore regions for a suite."""
    orchestrator = _load(config)
    regions = orchestrator.storage.get_ignore_regions(suite_id)
    if not regions:
        console.print("[yellow]No ignore regions configured[/yellow]")
        return
    for i, r in enumerate(regions, 1):
        scope = " ".join(filter(None, [r.test_name, r.viewport])) or "all"
        console.print(f"  {i}. ({r.x}, {r.y}) {r.width}x{r.height} [{scope}] {r.reason}")


@cli.command()
@click.argument("regression_id")
@click.argument("status")
@click.option("--notes", "-n", default=None)
@click.option("--by", "reviewed_by", default=None, help="Reviewer name")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def review(regression_id: str, status: str, notes: str | None, reviewed_by: str | None,
           config: str) -> None:
    """Record a review decision on a regression."""
    orchestrator = _load(config)
    try:
        updated = orchestrator.review(regression_id, status, notes, reviewed_by)
    except (ConfigurationError, PersistenceError) as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print(f"[green]{updated.id} marked {updated.status}[/green]")


@cli.command()
@click.argument("run_id")
@click.option("--status", "-s", default=None, help="Filter by review status")
@click.option("--significant", is_flag=True, help="Only significant regressions")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def regressions(run_id: str, status: str | None, significant: bool, config: str) -> None:
    """List regressions recorded for a run."""
    orchestrator = _load(config)
    found = orchestrator.regressions(run_id, status, significant)
    if not found:
        console.print("[yellow]No regressions found[/yellow]")
        return

    table = Table(title=f"Regressions for {run_id}")
    table.add_column("ID", style="bold")
    table.add_column("Scenario")
    table.add_column("Viewport")
    table.add_column("Diff %", justify="right")
    table.add_column("Status")
    for r in found:
        table.add_row(r.id, r.test_name, r.viewport, f"{r.percentage_different:.2f}", r.status)
    console.print(table)

    stats = orchestrator.regression_stats(run_id)
    console.print(
        f"{stats.total} total, {stats.significant} significant, {stats.pending} pending review"
    )


@cli.command()
@click.option("--host", default=None, help="Override the configured host")
@click.option("--port", type=int, default=None, help="Override the configured port")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def serve(host: str | None, port: int | None, config: str) -> None:
    """Serve the HTTP API."""
    from pathfinder.api.server import serve as serve_api

    try:
        cfg = FrameworkConfig.load(config)
    except FileNotFoundError:
        console.print(f"[red]Config file not found: {config}[/red]")
        sys.exit(1)
    if host:
        cfg.server.host = host
    if port:
        cfg.server.port = port
    serve_api(cfg)


if __name__ == "__main__":
    cli()
