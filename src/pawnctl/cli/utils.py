"""
Shared plumbing for the pawnctl commands.

Styled one-line output, logging setup, and `build_resolver`, which turns
command options into a wired DependencyResolver.
"""

import logging
from pathlib import Path
from typing import Optional

import click
from rich.logging import RichHandler

from ..core.deadline import Deadline
from ..core.git_fetcher import GitCacheStore
from ..core.overrides import OverrideTable
from ..core.releases import GitHubReleases
from ..core.resolver import DependencyResolver


def echo_success(message: str) -> None:
    """Green, prefixed with a checkmark."""
    click.echo(click.style(f"✅ {message}", fg="green"))


def echo_error(message: str) -> None:
    """Red, prefixed with a cross, written to stderr."""
    click.echo(click.style(f"❌ {message}", fg="red"), err=True)


def echo_warning(message: str) -> None:
    """Print a warning message with a yellow alert symbol."""
    click.echo(click.style(f"⚠️  {message}", fg="yellow"))


def echo_info(message: str) -> None:
    click.echo(click.style(f"   {message}", dim=True))


def configure_logging(verbose: bool) -> None:
    """Route library logging through rich; DEBUG when verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(show_path=False, markup=False)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_resolver(
    project_dir: str,
    update: bool = False,
    offline: bool = False,
    use_lockfile: bool = True,
    platform: Optional[str] = None,
    cache_dir: Optional[str] = None,
    timeout: Optional[float] = None,
) -> DependencyResolver:
    """
    Wire a DependencyResolver from command line options.

    Args:
        project_dir: Project directory containing pawn.json or pawn.yaml.
        update: Ignore locked commits and pull the latest changes.
        offline: Skip the remote override feed and the release API.
        use_lockfile: Read and write pawn.lock.
        platform: Target platform for resources.
        cache_dir: Override the cache directory.
        timeout: Overall deadline in seconds.
    """
    deadline = Deadline(timeout)
    store = GitCacheStore(Path(cache_dir) if cache_dir else None, deadline=deadline)
    return DependencyResolver(
        Path(project_dir),
        store=store,
        overrides=OverrideTable.load(use_remote=not offline),
        releases=None if offline else GitHubReleases(deadline=deadline),
        platform=platform,
        force_update=update,
        use_lockfile=use_lockfile,
        deadline=deadline,
    )
