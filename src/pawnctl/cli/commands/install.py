"""
Install Commands - Add or remove declared dependencies.

Usage:
    pawnctl install pawn-lang/YSI-Includes          # Pin to latest tag, then ensure
    pawnctl install --dev Southclaws/pawn-errors:1.2
    pawnctl uninstall pawn-lang/YSI-Includes
"""

from __future__ import annotations

import sys

import click
from rich.console import Console

from ...core.errors import PawnctlError
from ..utils import build_resolver
from .ensure import print_result

console = Console()

_project_dir = click.option(
    "--project-dir",
    "-p",
    type=click.Path(exists=True, file_okay=False),
    default=".",
    help="Project directory containing pawn.json or pawn.yaml",
)
_dev = click.option("--dev", is_flag=True, help="Use the development dependency list")


@click.command()
@click.argument("targets", nargs=-1, required=True)
@_dev
@_project_dir
@click.option("--offline", is_flag=True, help="Skip the override feed and release API")
def install(targets: tuple[str, ...], dev: bool, project_dir: str, offline: bool):
    """
    Add dependencies and ensure them.

    Dependencies given without a version are pinned to their latest tag.
    Dependencies that are already declared are left alone.

    \b
    Examples:
        pawnctl install pawn-lang/samp-stdlib
        pawnctl install --dev Southclaws/pawn-errors:1.2.3
    """
    try:
        resolver = build_resolver(project_dir, offline=offline)
        with resolver, console.status("[bold]📦 Installing dependencies...[/bold]"):
            result = resolver.install(list(targets), dev=dev)
    except PawnctlError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    if result is None:
        console.print("[dim]Nothing to install[/dim]")
        return

    print_result(result)
    if not result.success:
        sys.exit(1)


@click.command()
@click.argument("targets", nargs=-1, required=True)
@_dev
@_project_dir
def uninstall(targets: tuple[str, ...], dev: bool, project_dir: str):
    """
    Remove dependencies from the package definition.

    Vendored copies and pawn.lock entries are cleaned up by the next ensure.
    """
    try:
        resolver = build_resolver(project_dir, offline=True)
        with resolver:
            removed = resolver.uninstall(list(targets), dev=dev)
    except PawnctlError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    if not removed:
        console.print("[dim]Nothing to uninstall[/dim]")
        return
    for raw in removed:
        console.print(f"[green]➖ Removed {raw}[/green]")
