"""CLI commands for imgex.

This package contains all subcommand implementations.
"""

from imgex.cli.commands import config, filesystem, layers, ls, settings

__all__ = ["config", "filesystem", "layers", "ls", "settings"]
