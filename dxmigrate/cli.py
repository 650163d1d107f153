"""dxmigrate CLI — check, analyze, migrate, view."""

from __future__ import annotations

import signal
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(name="dxmigrate", help="Dependency-ordered Directus migration")
console = Console()


@app.command()
def check(
    config_path: Path = typer.Argument(..., help="Path to migration.yaml"),
) -> None:
    """Verify that source and target are reachable with the configured credentials."""
    from dxmigrate.errors import ConnectivityError
    from dxmigrate.models.config import load_migration_config
    from dxmigrate.transport.directus import get_transport

    config = load_migration_config(config_path)
    failed = False
    for side, conn in (("source", config.source), ("target", config.target)):
        try:
            info = get_transport(conn).check_connection()
            version = (info.get("directus") or {}).get("version", "unknown")
            console.print(f"  {side}: [green]OK[/green] ({conn.url}, version {version})")
        except ConnectivityError as e:
            console.print(f"  {side}: [red]FAILED[/red] {e}")
            failed = True

    if failed:
        raise typer.Exit(1)


@app.command()
def analyze(
    config_path: Optional[Path] = typer.Option(None, "--config", help="Read the schema from a live instance"),
    side: str = typer.Option("source", help="Which connection to analyze: source or target"),
    schema_file: Optional[Path] = typer.Option(None, "--schema-file", help="Offline JSON with collections and relations"),
    collections: Optional[list[str]] = typer.Option(None, "--collection", "-c", help="Restrict to these collections"),
    custom_order: Optional[str] = typer.Option(None, "--custom-order", help="Comma-separated order to validate"),
) -> None:
    """Show migration order, levels, batches and cycles for collections."""
    from dxmigrate.analysis.graph import build_graph
    from dxmigrate.analysis.ordering import (
        calculate_order,
        format_dependency_info,
        group_into_batches,
        validate_custom_order,
    )
    from dxmigrate.analysis.schema import fetch_schema, load_schema_file

    reserved_prefix = "directus_"
    if schema_file:
        names, relations = load_schema_file(schema_file)
    elif config_path:
        from dxmigrate.models.config import load_migration_config
        from dxmigrate.transport.directus import get_transport

        config = load_migration_config(config_path)
        reserved_prefix = config.reserved_prefix
        conn = config.source if side == "source" else config.target
        names, relations = fetch_schema(get_transport(conn), reserved_prefix)
    else:
        console.print("[red]Provide --schema-file or --config.[/red]")
        raise typer.Exit(1)

    graph = build_graph(names, relations, reserved_prefix)
    selected = collections or list(graph)
    analysis = calculate_order(graph, selected)

    table = Table(title="Migration Order")
    table.add_column("#")
    table.add_column("Collection")
    table.add_column("Dependencies")
    for i, name in enumerate(analysis.order, start=1):
        table.add_row(str(i), name, format_dependency_info(analysis.dependencies[name]))
    console.print(table)

    console.print("\n[bold]Levels[/bold]")
    for level, members in analysis.levels.items():
        console.print(f"  {level}: {', '.join(members)}")

    console.print("\n[bold]Batches[/bold]")
    for i, batch in enumerate(group_into_batches(analysis.dependencies, analysis.order), start=1):
        console.print(f"  {i}: {', '.join(batch)}")

    if analysis.cycles:
        console.print("\n[bold]Cycles[/bold]")
        for cycle in analysis.cycles:
            console.print(f"  [yellow]{' → '.join(cycle)}[/yellow]")

    for warning in analysis.warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")

    if custom_order:
        proposed = [name.strip() for name in custom_order.split(",") if name.strip()]
        validation = validate_custom_order(analysis.dependencies, proposed)
        if validation.valid:
            console.print("\n[green]Custom order is valid.[/green]")
        else:
            console.print("\n[red]Custom order is invalid:[/red]")
            for error in validation.errors:
                console.print(f"  [red]{error}[/red]")
            raise typer.Exit(1)


@app.command()
def migrate(
    config_path: Path = typer.Argument(..., help="Path to migration.yaml"),
    results_dir: Optional[Path] = typer.Option(None, "--results-dir", help="Override results directory"),
    previous_run: Optional[Path] = typer.Option(
        None, "--previous", help="Earlier run whose identifier maps are reused (default: latest matching run)"
    ),
) -> None:
    """Run the migration described by a config file."""
    from dxmigrate.errors import ConnectivityError, OrderingViolation, RunInterrupted
    from dxmigrate.models.config import load_migration_config
    from dxmigrate.orchestrator.runner import run_migration
    from dxmigrate.reporting.report import find_previous_run, generate_markdown_report, load_run, save_run
    from dxmigrate.transfer.engine import CancellationToken

    config = load_migration_config(config_path)
    results_root = results_dir or config.results_dir
    previous_path = previous_run or config.previous_run
    if previous_path is not None:
        previous = load_run(previous_path)
    else:
        previous = find_previous_run(results_root, config.source.url, config.target.url)
    if previous is not None:
        console.print(f"[dim]Reusing identifier maps from the run started {previous.started_at.isoformat()}[/dim]")

    cancel = CancellationToken()

    def _request_cancel(signum, frame):
        console.print("\n[yellow]Cancellation requested, finishing current record...[/yellow]")
        cancel.cancel()

    previous_handler = signal.signal(signal.SIGINT, _request_cancel)
    try:
        run = run_migration(config, cancel=cancel, previous=previous)
    except RunInterrupted as e:
        run = e.run
    except (ConnectivityError, OrderingViolation) as e:
        console.print(f"[red]Migration aborted: {e}[/red]")
        raise typer.Exit(1)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    run_dir = results_root / datetime.now().strftime("%Y%m%d_%H%M%S")
    save_run(run, run_dir)
    generate_markdown_report(run, run_dir)
    _print_summary(run)

    if not run.succeeded or run.cancelled:
        raise typer.Exit(1)


@app.command()
def view(
    results_path: Path = typer.Argument(..., help="Run directory or run_result.json"),
) -> None:
    """Show the summary of a saved run."""
    from dxmigrate.reporting.report import load_run

    _print_summary(load_run(results_path))


def _print_summary(run) -> None:
    table = Table(title="Migration Summary")
    table.add_column("Type")
    table.add_column("Success")
    table.add_column("Error")
    table.add_column("Skipped")

    for name, counts in run.summary.items():
        if name == "total":
            continue
        table.add_row(
            name,
            f"[green]{counts.success}[/green]",
            f"[red]{counts.error}[/red]" if counts.error else "0",
            f"[yellow]{counts.skipped}[/yellow]" if counts.skipped else "0",
        )

    console.print(table)
    total = run.summary["total"]
    console.print(
        f"\n{total.success} succeeded, {total.error} failed, {total.skipped} skipped"
        f" in {run.duration_seconds:.0f}s"
    )
    for warning in run.warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")
    if run.cancelled:
        console.print("[yellow]Run was cancelled before completion.[/yellow]")


if __name__ == "__main__":
    app()
