"""
Pin Command - Pin tagless dependencies to their latest tag.

Usage:
    pawnctl pin
    pawnctl pin --offline    # Use cached tags only
"""

from __future__ import annotations

import sys

import click
from rich.console import Console

from ...core.errors import PawnctlError
from ...core.tagless import TaglessPinError
from ..utils import build_resolver, echo_warning

console = Console()


@click.command()
@click.option(
    "--project-dir",
    "-p",
    type=click.Path(exists=True, file_okay=False),
    default=".",
    help="Project directory containing pawn.json or pawn.yaml",
)
@click.option("--offline", is_flag=True, help="Skip the release API and use cached tags only")
def pin(project_dir: str, offline: bool):
    """
    Pin dependencies that have no version.

    Looks up the newest release (or the newest cached tag) for every
    dependency declared without a tag, branch or commit and writes the
    pinned strings back to the package definition.
    """
    try:
        resolver = build_resolver(project_dir, offline=offline)
        with resolver, console.status("[bold]🏷️  Looking up latest tags...[/bold]"):
            changed = resolver.pin_tagless()
    except TaglessPinError as e:
        console.print(f"[red]Error:[/red] {e}")
        if not e.rolled_back:
            echo_warning("The package definition was modified; review it before retrying.")
        sys.exit(1)
    except PawnctlError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    if changed:
        console.print("[green]✅ Pinned tagless dependencies[/green]")
    else:
        console.print("[dim]Nothing to pin[/dim]")
