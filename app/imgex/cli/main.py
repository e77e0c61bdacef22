"""Main CLI application entry point.

Defines the Typer application and global options.
"""

from pathlib import Path
from typing import Annotated

import typer

from imgex import __version__
from imgex.cli.commands import config, filesystem, layers, ls, settings
from imgex.utils.log import configure_logging

app = typer.Typer(
    name="imgex",
    help="Export the flattened filesystem of a container image.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"imgex version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable debug logging on stderr.",
        ),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option(
            "--quiet",
            "-q",
            help="Suppress progress and status output.",
        ),
    ] = False,
    settings_path: Annotated[
        Path | None,
        typer.Option(
            "--settings",
            help="Settings file to use instead of ~/.config/imgex/settings.toml.",
            dir_okay=False,
        ),
    ] = None,
) -> None:
    """imgex - Export the flattened filesystem of a container image.

    Applies image layers in order, honoring whiteouts, and writes the
    result as a single tar archive without a container runtime.
    """
    configure_logging(verbose=verbose, quiet=quiet)

    # Store options in context for subcommands
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["settings_path"] = settings_path


# Register commands
app.command(name="filesystem")(filesystem.export_filesystem)
app.command(name="layers")(layers.export_layers)
app.command(name="config")(config.show_config)
app.command(name="ls")(ls.list_entries)
app.add_typer(settings.app, name="settings")


if __name__ == "__main__":
    app()
