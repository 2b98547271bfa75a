"""
Deps Command - Inspect the dependency tree.

Usage:
    pawnctl deps tree        # Show the resolved dependency tree
    pawnctl deps outdated    # Show dependencies whose constraint changed
"""

from __future__ import annotations

import sys
from typing import Dict, List, Set

import click
from rich.console import Console
from rich.tree import Tree

from ...core.errors import PawnctlError
from ...core.graph import DependencyGraph
from ...core.lockfile import dependency_key
from ...core.specifier import DependencyDescriptor
from ..utils import build_resolver

console = Console()


@click.group()
def deps():
    """Inspect project dependencies."""
    pass


@deps.command("tree")
@click.option(
    "--project-dir",
    "-p",
    type=click.Path(exists=True, file_okay=False),
    default=".",
    help="Project directory containing pawn.json or pawn.yaml",
)
@click.option("--offline", is_flag=True, help="Skip the override feed")
@click.option("--platform", help="Target platform for resources")
def tree_cmd(project_dir: str, offline: bool, platform: str | None):
    """
    Show the dependency tree.

    Every dependency is cached (cloned if necessary) so that nested
    package definitions can be read.
    """
    try:
        resolver = build_resolver(project_dir, offline=offline, platform=platform)
        with resolver, console.status("[bold]🔍 Walking dependencies...[/bold]"):
            graph = resolver.build_graph()
    except PawnctlError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    console.print(render_tree(graph))

    if graph.include_paths:
        console.print("\n[bold]Include paths:[/bold]")
        for path in graph.include_paths:
            console.print(f"  {path}")
    for message in graph.skipped:
        console.print(f"[yellow]⚠ Skipped {message}[/yellow]")


def render_tree(graph: DependencyGraph) -> Tree:
    """Nest each dependency under the packages that declared it."""
    children: Dict[str, List[DependencyDescriptor]] = {}
    by_key = {dependency_key(d): d for d in graph.dependencies + graph.local_dependencies}
    for key, requirers in graph.requirers.items():
        if key not in by_key:
            continue
        for requirer in requirers:
            children.setdefault(requirer, []).append(by_key[key])

    plugins = set(graph.plugins)
    root = Tree(f"[bold]📦 {graph.root}[/bold]")

    def label(descriptor: DependencyDescriptor) -> str:
        text = f"[cyan]{descriptor}[/cyan]"
        if descriptor in plugins:
            text += " [magenta]🔌 plugin[/magenta]"
        if descriptor.is_local:
            text += " [dim](local)[/dim]"
        return text

    def add(node: Tree, descriptor: DependencyDescriptor, seen: Set[str]) -> None:
        key = dependency_key(descriptor)
        branch = node.add(label(descriptor))
        if key in seen:
            return
        for child in children.get(key, []):
            add(branch, child, seen | {key})

    for key, descriptor in by_key.items():
        if key in graph.direct:
            add(root, descriptor, set())

    return root


@deps.command("outdated")
@click.option(
    "--project-dir",
    "-p",
    type=click.Path(exists=True, file_okay=False),
    default=".",
    help="Project directory containing pawn.json or pawn.yaml",
)
def outdated(project_dir: str):
    """Show dependencies whose declared version no longer matches pawn.lock."""
    try:
        resolver = build_resolver(project_dir, offline=True)
        with resolver:
            stale = resolver.outdated()
    except PawnctlError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    if not stale:
        console.print("[green]✅ pawn.lock is up to date[/green]")
        return

    console.print(f"[yellow]{len(stale)} dependencies changed since the last lock:[/yellow]")
    for descriptor in stale:
        console.print(f"  • {descriptor}")
    console.print("\nRun [bold]pawnctl ensure[/bold] to update pawn.lock")
