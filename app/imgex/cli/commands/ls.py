"""Flattened filesystem listing command.

Applies the layers of an image archive and lists the resulting entries
in archive order, without writing an archive.
"""

import json
from pathlib import Path
from typing import Annotated, Any

import typer

from imgex.cli.types import OutputFormat, export_progress, get_settings, is_quiet
from imgex.core.errors import ImgexError
from imgex.core.overlay import build_snapshot
from imgex.core.serializer import order_entries
from imgex.models.entry import FilesystemEntry
from imgex.sources.archive import ImageArchive
from imgex.utils.formatting import (
    console,
    create_entry_table,
    format_entry_row,
    format_size,
    print_error,
)


def list_entries(
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
    image: Annotated[
        str | None,
        typer.Option(
            "--image",
            "-i",
            help="Repo tag selecting the image in a multi-image archive.",
        ),
    ] = None,
    output_format: Annotated[
        OutputFormat,
        typer.Option(
            "--format",
            "-f",
            help="Output format: table or json.",
            case_sensitive=False,
        ),
    ] = OutputFormat.TABLE,
    limit: Annotated[
        int | None,
        typer.Option(
            "--limit",
            "-n",
            help="Limit number of entries to display.",
            min=1,
        ),
    ] = None,
) -> None:
    """List the flattened filesystem of an image in archive order.

    Examples:
        imgex ls alpine.tar
        imgex ls alpine.tar --format json --limit 20
    """
    settings = get_settings(ctx)
    archive = ImageArchive(image_tar, reference=image)

    with export_progress(settings.show_progress and not is_quiet(ctx)) as progress:
        try:
            snapshot = build_snapshot(archive.layers(), progress=progress)
        except ImgexError as e:
            print_error(str(e))
            raise typer.Exit(code=1) from e

    entries = order_entries(snapshot)
    display_entries = entries[:limit] if limit else entries

    if output_format == OutputFormat.JSON:
        _print_json(display_entries)
        return

    _print_table(display_entries, title=image or image_tar.name)
    console.print(
        f"\n[dim]{len(entries)} entries ({format_size(snapshot.total_content_bytes)} of file content)[/dim]"
    )
    if limit and len(display_entries) < len(entries):
        console.print(f"[dim](showing {len(display_entries)} of {len(entries)}, limited to {limit})[/dim]")


def _entry_to_dict(entry: FilesystemEntry) -> dict[str, Any]:
    return {
        "path": entry.path,
        "kind": entry.kind.value,
        "mode": f"{entry.mode:04o}",
        "uid": entry.uid,
        "gid": entry.gid,
        "size": entry.size,
        "linkname": entry.linkname or None,
    }


def _print_json(entries: list[FilesystemEntry]) -> None:
    """Print entries as JSON."""
    console.print_json(json.dumps([_entry_to_dict(e) for e in entries]))


def _print_table(entries: list[FilesystemEntry], title: str) -> None:
    """Print entries as a Rich table."""
    table = create_entry_table(title=title)
    for entry in entries:
        table.add_row(*format_entry_row(entry))
    console.print(table)
