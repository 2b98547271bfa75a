"""
pawnctl CLI - Main entry point.

This module registers all CLI commands. Each command is implemented
in its own module under cli/commands/.
"""

import click

from .commands import cache, deps, ensure, install, overrides, pin
from .utils import configure_logging


@click.group()
@click.version_option(package_name="pawnctl")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def main(verbose: bool):
    """pawnctl: dependency resolution for Pawn packages.

    Resolves the dependencies declared in pawn.json / pawn.yaml into
    vendored git checkouts and records them in pawn.lock.

    \b
    Quick Start:
      pawnctl ensure
      pawnctl deps tree
      pawnctl pin
    """
    configure_logging(verbose)


main.add_command(ensure.ensure)
main.add_command(pin.pin)
main.add_command(install.install)
main.add_command(install.uninstall)
main.add_command(deps.deps)
main.add_command(cache.cache)
main.add_command(overrides.overrides)

if __name__ == "__main__":
    main()
