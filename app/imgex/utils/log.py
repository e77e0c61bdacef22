"""Logging setup for the CLI.

Library modules only create loggers; handlers are attached here, once, by
the CLI entry point. Records go to stderr through Rich.
"""

import logging

from rich.logging import RichHandler

from imgex.utils.formatting import err_console


def resolve_level(verbose: bool = False, quiet: bool = False) -> int:
    """Map the verbosity flags to a logging level.

    ``quiet`` wins over ``verbose``.
    """
    if quiet:
        return logging.ERROR
    if verbose:
        return logging.DEBUG
    return logging.WARNING


def configure_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure root logging with a Rich handler on stderr.

    Args:
        verbose: Log debug records.
        quiet: Only log errors.
    """
    handler = RichHandler(
        console=err_console,
        show_time=False,
        show_path=verbose,
        markup=False,
        rich_tracebacks=verbose,
    )
    logging.basicConfig(
        level=resolve_level(verbose, quiet),
        format="%(message)s",
        handlers=[handler],
        force=True,
    )
