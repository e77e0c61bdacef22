"""CLI package for imgex.

This package contains the Typer application and all subcommands.
"""

from imgex.cli.main import app

__all__ = ["app"]
