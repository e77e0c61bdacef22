"""Loose layer export command.

Flattens layer tar files given on the command line, oldest first.
"""

from pathlib import Path
from typing import Annotated

import typer

from imgex.cli.types import run_export
from imgex.sources.base import FileLayerSource


def export_layers(
    ctx: typer.Context,
    layers: Annotated[
        list[Path],
        typer.Argument(
            help="Layer tar files (optionally compressed), oldest first.",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ],
    output: Annotated[
        Path | None,
        typer.Option(
            "--output",
            "-o",
            help="Write the archive to this file instead of stdout.",
        ),
    ] = None,
    compress: Annotated[
        bool,
        typer.Option(
            "--compress",
            "-z",
            help="Gzip the archive (appends .gz to --output).",
        ),
    ] = False,
) -> None:
    """Flatten loose layer tarballs into one filesystem archive.

    Examples:
        imgex layers base.tar app.tar.gz -o rootfs.tar
    """
    run_export(ctx, [FileLayerSource(path) for path in layers], output, compress)
