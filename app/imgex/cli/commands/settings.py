"""Settings management commands.

Shows and initializes the export settings file.
"""

from pathlib import Path
from typing import Annotated

import typer

from imgex.cli.types import get_settings
from imgex.core.paths import get_settings_path
from imgex.core.settings import ExportSettings, SettingsError, save_settings
from imgex.utils.formatting import console, print_error, print_info, print_success

app = typer.Typer(
    help="Show or initialize export settings.",
    no_args_is_help=True,
)


def _settings_path(ctx: typer.Context) -> Path:
    path: Path | None = ctx.obj.get("settings_path") if ctx.obj else None
    return path or get_settings_path()


@app.command()
def show(ctx: typer.Context) -> None:
    """Show the effective export settings as JSON."""
    path = _settings_path(ctx)
    settings = get_settings(ctx)

    source = str(path) if path.exists() else f"defaults ({path} not found)"
    print_info(f"Settings: {source}")
    console.print_json(settings.model_dump_json())


@app.command()
def init(
    ctx: typer.Context,
    force: Annotated[
        bool,
        typer.Option(
            "--force",
            "-f",
            help="Overwrite an existing settings file.",
        ),
    ] = False,
) -> None:
    """Write a settings file with default values."""
    path = _settings_path(ctx)

    if path.exists() and not force:
        print_error(f"Settings already exist: {path}")
        print_info("Use --force to overwrite.")
        raise typer.Exit(code=1)

    try:
        saved = save_settings(ExportSettings(), path)
    except SettingsError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e

    print_success(f"Settings written to {saved}")
