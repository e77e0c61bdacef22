"""Image configuration command."""

from pathlib import Path
from typing import Annotated

import typer

from imgex.core.errors import ImageArchiveError
from imgex.sources.archive import ImageArchive
from imgex.utils.formatting import console, print_error


def show_config(
    image_tar: Annotated[
        Path,
        typer.Argument(
            help="Image tarball from 'docker save' or an OCI image layout.",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ],
    image: Annotated[
        str | None,
        typer.Option(
            "--image",
            "-i",
            help="Repo tag selecting the image in a multi-image archive.",
        ),
    ] = None,
) -> None:
    """Print the runtime configuration of an image as JSON."""
    archive = ImageArchive(image_tar, reference=image)
    try:
        config = archive.image_config()
    except ImageArchiveError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e

    console.print_json(config.model_dump_json())
