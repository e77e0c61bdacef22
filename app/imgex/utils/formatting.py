"""Rich console formatting utilities.

Provides consistent formatting for CLI output using Rich. Status messages
always go to stderr because stdout may carry the exported archive.
"""

from __future__ import annotations

import stat
import sys
import tarfile
from typing import TYPE_CHECKING, TextIO

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from imgex.core.theme import get_theme
from imgex.models.entry import EntryKind

if TYPE_CHECKING:
    from imgex.models.entry import FilesystemEntry


def _detect_color_system(stream: TextIO) -> str | None:
    """Detect the best color system for the given stream.

    Returns "truecolor" for interactive terminals to enable full hex color support,
    None otherwise so redirected output stays free of escape codes.
    """
    if stream.isatty():
        return "truecolor"
    return None


# Shared console instances (theme loaded once at import)
console = Console(theme=get_theme(), color_system=_detect_color_system(sys.stdout))
err_console = Console(theme=get_theme(), stderr=True, color_system=_detect_color_system(sys.stderr))


def format_size(size_bytes: int) -> str:
    """Return a human-readable size string."""
    size = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def format_mode(entry: FilesystemEntry) -> str:
    """Return an ``ls -l`` style mode string such as ``drwxr-xr-x``."""
    type_bits = _FILE_TYPE_BITS.get(entry.type_flag or b"", 0) or _KIND_TYPE_BITS.get(entry.kind, 0)
    return stat.filemode(type_bits | (entry.mode & 0o7777))


def create_entry_table(title: str = "Filesystem") -> Table:
    """Create a pre-configured table for displaying snapshot entries.

    Args:
        title: Table title.

    Returns:
        Rich Table configured for entry display.
    """
    table = Table(
        title=title,
        show_header=True,
        header_style="bold_header",
        border_style="border",
        row_styles=["", "on grey7"],
    )
    table.add_column("Mode", style="entry.mode", no_wrap=True)
    table.add_column("Owner", style="muted", no_wrap=True)
    table.add_column("Size", style="entry.size", justify="right")
    table.add_column("Path", no_wrap=True)
    return table


def format_entry_row(entry: FilesystemEntry) -> tuple[str, str, str, str]:
    """Format an entry as a table row with proper styling.

    Args:
        entry: The entry to format.

    Returns:
        Tuple of (mode, owner, size, path) with Rich markup.
    """
    style = f"entry.{entry.kind.value}"
    path = f"[{style}]{escape(entry.path)}[/]"
    if entry.linkname:
        arrow = "->" if entry.kind == EntryKind.SYMLINK else "=>"
        path = f"{path} [muted]{arrow} {escape(entry.linkname)}[/]"

    owner = f"{entry.uname or entry.uid}:{entry.gname or entry.gid}"
    size = format_size(entry.size) if entry.kind == EntryKind.FILE else "-"
    return (format_mode(entry), owner, size, path)


def print_info(message: str) -> None:
    """Print an info message."""
    err_console.print(f"[info]{escape(message)}[/]")


def print_warning(message: str) -> None:
    """Print a warning message."""
    err_console.print(f"[warning]Warning:[/] {escape(message)}")


def print_error(message: str) -> None:
    """Print an error message."""
    err_console.print(f"[error]Error:[/] {escape(message)}")


def print_success(message: str) -> None:
    """Print a success message."""
    err_console.print(f"[success]{escape(message)}[/]")


_KIND_TYPE_BITS: dict[EntryKind, int] = {
    EntryKind.DIRECTORY: stat.S_IFDIR,
    EntryKind.FILE: stat.S_IFREG,
    EntryKind.SYMLINK: stat.S_IFLNK,
    EntryKind.HARDLINK: stat.S_IFREG,
}

_FILE_TYPE_BITS: dict[bytes, int] = {
    tarfile.CHRTYPE: stat.S_IFCHR,
    tarfile.BLKTYPE: stat.S_IFBLK,
    tarfile.FIFOTYPE: stat.S_IFIFO,
}
