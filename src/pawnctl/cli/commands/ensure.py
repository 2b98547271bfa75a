"""
Ensure Command - Resolve, vendor and lock dependencies.

Usage:
    pawnctl ensure                 # Resolve using pawn.lock where possible
    pawnctl ensure --update        # Ignore locked commits, pull latest
    pawnctl ensure --pin-tagless   # Pin unversioned dependencies first
"""

from __future__ import annotations

import sys

import click
from rich.console import Console
from rich.table import Table

from ...core.errors import PawnctlError
from ...core.resolver import ResolutionResult
from ..utils import build_resolver

console = Console()


@click.command()
@click.option(
    "--project-dir",
    "-p",
    type=click.Path(exists=True, file_okay=False),
    default=".",
    help="Project directory containing pawn.json or pawn.yaml",
)
@click.option("--update", "-u", is_flag=True, help="Ignore pawn.lock and pull the latest changes")
@click.option("--no-lock", is_flag=True, help="Do not read or write pawn.lock")
@click.option("--offline", is_flag=True, help="Skip the override feed and release API")
@click.option("--platform", help="Target platform for resources (linux, windows, darwin)")
@click.option("--pin-tagless", is_flag=True, help="Pin dependencies without a version to their latest tag")
@click.option("--timeout", type=float, help="Give up after this many seconds")
def ensure(
    project_dir: str,
    update: bool,
    no_lock: bool,
    offline: bool,
    platform: str | None,
    pin_tagless: bool,
    timeout: float | None,
):
    """
    Resolve and vendor all dependencies.

    Every dependency is cloned into the shared cache, copied into
    ./dependencies and checked out at its locked commit or declared
    version. pawn.lock is updated when anything changed.

    \b
    Examples:
        pawnctl ensure
        pawnctl ensure --update
        pawnctl ensure --platform windows
    """
    try:
        resolver = build_resolver(
            project_dir,
            update=update,
            offline=offline,
            use_lockfile=not no_lock,
            platform=platform,
            timeout=timeout,
        )
        with resolver, console.status("[bold]📦 Ensuring dependencies...[/bold]"):
            result = resolver.ensure(pin_tagless=pin_tagless)
    except PawnctlError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    print_result(result)
    if not result.success:
        sys.exit(1)


def print_result(result: ResolutionResult) -> None:
    """Print the vendored dependencies, warnings and lockfile changes."""
    if not result.dependencies and not result.failures:
        console.print("[yellow]No dependencies declared[/yellow]")
        return

    table = Table(title="Dependencies")
    table.add_column("Dependency", style="cyan")
    table.add_column("Version")
    table.add_column("Commit", style="dim")
    table.add_column("Source")

    for dep in result.dependencies:
        source = "lockfile" if dep.from_lockfile else "resolved"
        if dep.transitive:
            source += f" (via {', '.join(dep.required_by)})"
        table.add_row(str(dep.descriptor), dep.version, dep.commit[:8], source)

    console.print(table)

    if result.graph.plugins:
        console.print(f"🔌 Plugins: {', '.join(str(p) for p in result.graph.plugins)}")
    for warning in result.warnings:
        console.print(f"[yellow]⚠ {warning}[/yellow]")
    for key in result.pruned:
        console.print(f"[dim]🗑️  Pruned {key} from pawn.lock[/dim]")
    if result.lockfile_written:
        console.print("[green]🔒 pawn.lock updated[/green]")
