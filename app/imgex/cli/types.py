"""Shared types and helpers for CLI commands.

This module provides the common enums, settings lookup, progress display
and export runner used across the CLI command modules.
"""

import sys
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from enum import Enum
from pathlib import Path

import typer
from rich.markup import escape
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from imgex.core.errors import ImgexError
from imgex.core.exporter import ImageExporter
from imgex.core.overlay import ProgressCallback
from imgex.core.settings import (
    ExportSettings,
    SettingsError,
    load_settings,
    load_settings_or_default,
)
from imgex.sources.base import LayerSource
from imgex.utils.formatting import err_console, format_size, print_error, print_success, print_warning


class OutputFormat(str, Enum):
    """Output format options for listings."""

    TABLE = "table"
    JSON = "json"


def stdout_is_terminal() -> bool:
    """Return True when stdout is attached to a terminal."""
    return sys.stdout.isatty()


def is_quiet(ctx: typer.Context) -> bool:
    """Return True when --quiet was given on the main command."""
    return bool(ctx.obj and ctx.obj.get("quiet"))


def get_settings(ctx: typer.Context) -> ExportSettings:
    """Load export settings for a command.

    An explicit ``--settings`` path must exist; the default path falls back
    to built-in defaults when missing.

    Raises:
        typer.Exit: If the settings file cannot be loaded.
    """
    path: Path | None = ctx.obj.get("settings_path") if ctx.obj else None
    try:
        if path is not None:
            return load_settings(path)
        return load_settings_or_default()
    except SettingsError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e


@contextmanager
def export_progress(enabled: bool) -> Iterator[ProgressCallback | None]:
    """Show a progress bar on stderr while layers are applied.

    Yields:
        A progress callback, or None when progress display is disabled.
    """
    if not enabled:
        yield None
        return

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=err_console,
        transient=True,
    ) as progress:
        task = progress.add_task("Applying layers", total=None)

        def report(current: int, total: int, description: str) -> None:
            progress.update(task, completed=current, total=total, description=escape(description))

        yield report


def run_export(
    ctx: typer.Context,
    layers: Sequence[LayerSource],
    output: Path | None,
    compress: bool,
) -> None:
    """Export layers to a file or to stdout and report the result.

    Args:
        ctx: Typer context carrying the global options.
        layers: Layer sources, oldest first.
        output: Destination file, or None for stdout.
        compress: Force gzip compression on top of the settings.

    Raises:
        typer.Exit: On any export failure.
    """
    settings = get_settings(ctx)
    if compress:
        settings = settings.model_copy(update={"compress": True})
    quiet = is_quiet(ctx)

    if output is None and stdout_is_terminal():
        print_error("Refusing to write an archive to a terminal. Use --output or redirect stdout.")
        raise typer.Exit(code=1)

    with export_progress(settings.show_progress and not quiet) as progress:
        exporter = ImageExporter(settings=settings, progress=progress)
        try:
            if output is None:
                summary = exporter.export_to_writer(layers, typer.get_binary_stream("stdout"))
            else:
                summary = exporter.export_to_file(layers, output)
        except ImgexError as e:
            print_error(str(e))
            if output is None:
                print_warning("The archive written to stdout is incomplete and unusable.")
            raise typer.Exit(code=1) from e

    if not quiet:
        destination = str(summary.output_path) if summary.output_path else "stdout"
        print_success(
            f"Exported {summary.entries} entries ({format_size(summary.archive_bytes)}) "
            f"from {summary.layers} layer(s) to {destination}"
        )
