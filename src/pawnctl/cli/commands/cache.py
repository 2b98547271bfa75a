"""
Cache Command - Manage the repository cache.

Usage:
    pawnctl cache list
    pawnctl cache stats
    pawnctl cache clean --older-than 30
    pawnctl cache invalidate pawn-lang/samp-stdlib
    pawnctl cache verify
"""

from __future__ import annotations

import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from ...core.cache import CacheManager
from ..utils import echo_info

console = Console()


def _manager(cache_dir: str | None) -> CacheManager:
    return CacheManager(Path(cache_dir) if cache_dir else None)


cache_dir_option = click.option(
    "--cache-dir",
    type=click.Path(file_okay=False),
    envvar="PAWNCTL_CACHE_DIR",
    help="Cache directory (default: ~/.pawnctl/cache)",
)


@click.group()
def cache():
    """Manage cached repositories."""
    pass


@cache.command("list")
@cache_dir_option
def list_cmd(cache_dir: str | None):
    """List cached repositories."""
    items = _manager(cache_dir).list()

    if not items:
        console.print("[dim]Cache is empty[/dim]")
        return

    table = Table(title="Cached Repositories")
    table.add_column("Repository", style="cyan")
    table.add_column("SHA", style="dim")
    table.add_column("Size", justify="right")
    table.add_column("Updated")

    for item in items:
        table.add_row(item.name, item.short_sha, item.size_human, item.age_human)

    console.print(table)


@cache.command("stats")
@cache_dir_option
def stats(cache_dir: str | None):
    """Show cache totals."""
    manager = _manager(cache_dir)
    s = manager.get_stats()

    console.print(f"📁 Cache directory: {manager.cache_dir}")
    console.print(f"   Repositories: {s.total_repos}")
    console.print(f"   Total size:   {s.total_size_human}")
    if s.oldest_update:
        console.print(f"   Oldest:       {s.oldest_update:%Y-%m-%d %H:%M}")
        console.print(f"   Newest:       {s.newest_update:%Y-%m-%d %H:%M}")


@cache.command("clean")
@cache_dir_option
@click.option("--older-than", type=int, help="Remove caches not updated for this many days")
@click.option("--larger-than", type=float, help="Remove caches larger than this many MB")
@click.option("--all", "clean_all", is_flag=True, help="Remove every cached repository")
@click.option("--dry-run", is_flag=True, help="Show what would be removed")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
def clean(
    cache_dir: str | None,
    older_than: int | None,
    larger_than: float | None,
    clean_all: bool,
    dry_run: bool,
    yes: bool,
):
    """
    Remove old or large cached repositories.

    Leftovers of interrupted clones are always removed.
    """
    manager = _manager(cache_dir)

    if clean_all:
        if dry_run:
            console.print(f"Would remove {len(manager.list())} cached repositories")
            return
        if not yes and not click.confirm("Remove every cached repository?"):
            return
        count = manager.invalidate_all()
        console.print(f"[green]🗑️  Removed {count} cached repositories[/green]")
        return

    removed = manager.clean(older_than_days=older_than, larger_than_mb=larger_than, dry_run=dry_run)
    if not removed:
        console.print("[dim]Nothing to clean[/dim]")
        return

    verb = "Would remove" if dry_run else "Removed"
    console.print(f"{verb} {len(removed)} entries:")
    for name in removed:
        echo_info(name)


@cache.command("invalidate")
@cache_dir_option
@click.argument("name")
def invalidate(cache_dir: str | None, name: str):
    """Remove every cached branch of NAME (owner/repo)."""
    count = _manager(cache_dir).invalidate(name)
    if count == 0:
        console.print(f"[red]Error:[/red] {name} is not cached")
        sys.exit(1)
    console.print(f"[green]🗑️  Invalidated {count} cache entries for {name}[/green]")


@cache.command("verify")
@cache_dir_option
def verify(cache_dir: str | None):
    """Check every cached repository for corruption."""
    with console.status("[bold]🔍 Verifying cache...[/bold]"):
        issues = _manager(cache_dir).verify_integrity()

    if not issues:
        console.print("[green]✅ Cache is healthy[/green]")
        return

    console.print(f"[red]Found {len(issues)} problems:[/red]")
    for issue in issues:
        console.print(f"  • {issue}")
    console.print("\nRun [bold]pawnctl cache invalidate <name>[/bold] to re-clone")
    sys.exit(1)
