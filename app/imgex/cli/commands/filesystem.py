"""Filesystem export command.

Flattens the layers of a local image archive into one tar archive.
"""

from pathlib import Path
from typing import Annotated

import typer

from imgex.cli.types import run_export
from imgex.core.errors import ImageArchiveError
from imgex.sources.archive import ImageArchive
from imgex.utils.formatting import print_error


def export_filesystem(
    ctx: typer.Context,
    image_tar: Annotated[
        Path,
        typer.Argument(
            help="Image tarball from 'docker save' or an OCI image layout.",
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
    image: Annotated[
        str | None,
        typer.Option(
            "--image",
            "-i",
            help="Repo tag selecting the image in a multi-image archive.",
        ),
    ] = None,
) -> None:
    """Export the flattened filesystem of an image archive.

    Examples:
        imgex filesystem alpine.tar -o rootfs.tar
        imgex filesystem alpine.tar -z -o rootfs.tar     # writes rootfs.tar.gz
        imgex filesystem app.tar -i app:1.2 > rootfs.tar
    """
    archive = ImageArchive(image_tar, reference=image)
    try:
        layers = archive.layers()
    except ImageArchiveError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e

    run_export(ctx, layers, output, compress)
