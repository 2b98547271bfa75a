"""
Overrides Command - Manage dependency redirects.

Usage:
    pawnctl overrides list
    pawnctl overrides add Zeex/samp-plugin-crashdetect AmyrAhmady/samp-plugin-crashdetect
    pawnctl overrides remove Zeex/samp-plugin-crashdetect
    pawnctl overrides clear-cache
"""

from __future__ import annotations

import sys

import click
from rich.console import Console
from rich.table import Table

from ...config import LOCAL_OVERRIDES_FILE, get_config_dir
from ...core.overrides import OverrideTable, RemoteOverrideFeed, read_overrides_file, save_local_overrides
from ..utils import echo_error, echo_success

console = Console()

_LAYER_STYLES = {"builtin": "dim", "remote": "blue", "local": "green"}


@click.group()
def overrides():
    """Manage dependency overrides."""
    pass


@overrides.command("list")
@click.option("--offline", is_flag=True, help="Do not refresh the remote override feed")
def list_cmd(offline: bool):
    """List every active override and the layer it came from."""
    active = OverrideTable.load(use_remote=not offline)

    if not len(active):
        console.print("[dim]No overrides configured[/dim]")
        return

    table = Table(title="Dependency Overrides")
    table.add_column("Original", style="cyan")
    table.add_column("Replacement")
    table.add_column("Source")

    for entry in active.entries():
        style = _LAYER_STYLES.get(entry.layer, "")
        table.add_row(entry.original, entry.replacement, f"[{style}]{entry.layer}[/{style}]")

    console.print(table)


@overrides.command("add")
@click.argument("original")
@click.argument("replacement")
def add(original: str, replacement: str):
    """Redirect ORIGINAL to REPLACEMENT in the local override file."""
    path = get_config_dir() / LOCAL_OVERRIDES_FILE
    current = read_overrides_file(path).unwrap_or({}) if path.exists() else {}
    current[original] = replacement
    save_local_overrides(current, path)
    echo_success(f"{original} -> {replacement}")


@overrides.command("remove")
@click.argument("original")
def remove(original: str):
    """Remove ORIGINAL from the local override file."""
    path = get_config_dir() / LOCAL_OVERRIDES_FILE
    current = read_overrides_file(path).unwrap_or({})
    if original not in current:
        echo_error(f"No local override for {original}")
        sys.exit(1)
    del current[original]
    save_local_overrides(current, path)
    echo_success(f"Removed override for {original}")


@overrides.command("clear-cache")
def clear_cache():
    """Delete the cached remote override feed so it is fetched again."""
    if RemoteOverrideFeed().clear_cache():
        console.print("[green]🗑️  Cleared remote override cache[/green]")
    else:
        console.print("[dim]No cached override feed[/dim]")
