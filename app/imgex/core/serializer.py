"""Archive serializer for flattened snapshots.

Writes a snapshot as a single tar stream whose entry order is safe for
sequential extraction:

1. directories, shallowest first (so every parent precedes its children);
2. regular files and special files, by path;
3. symlinks and hardlinks, by path.

Links are only guaranteed to come after all files, not after their
specific target. Timestamps are normalized so identical snapshots always
produce byte-identical archives.
"""

import logging
import tarfile
from collections.abc import Sequence
from dataclasses import dataclass
from typing import BinaryIO, Literal

from imgex.core.errors import SerializationError
from imgex.models.entry import FilesystemEntry
from imgex.models.snapshot import Snapshot

logger = logging.getLogger(__name__)

# Modification time written for every entry (Unix epoch)
FIXED_EPOCH = 0

# Path reported when the end-of-archive marker cannot be written
END_OF_ARCHIVE = "<end-of-archive>"

# Pax time records removed from every header
_DROPPED_PAX_KEYS: tuple[str, ...] = ("atime", "ctime", "mtime")

ArchiveFormat = Literal["pax", "gnu", "ustar"]

_TAR_FORMATS: dict[ArchiveFormat, int] = {
    "pax": tarfile.PAX_FORMAT,
    "gnu": tarfile.GNU_FORMAT,
    "ustar": tarfile.USTAR_FORMAT,
}

_ENCODING = "utf-8"
_ENCODING_ERRORS = "surrogateescape"


@dataclass(frozen=True, slots=True)
class WriteStats:
    """Summary of a serialized archive.

    Attributes:
        entries: Number of entries written.
        content_bytes: Total file payload bytes written (without padding).
        archive_bytes: Total bytes written to the sink.
    """

    entries: int
    content_bytes: int
    archive_bytes: int


def sort_key(entry: FilesystemEntry) -> tuple[int, int, str]:
    """Return the archive ordering key for an entry.

    Directories sort by depth before path; every other kind sorts by
    path alone within its priority group.
    """
    depth = entry.depth if entry.is_dir else 0
    return (entry.kind.priority, depth, entry.path)


def order_entries(snapshot: Snapshot) -> list[FilesystemEntry]:
    """Order snapshot entries for single-pass extraction.

    Args:
        snapshot: Snapshot to order.

    Returns:
        Entries in archive order.
    """
    return sorted(snapshot, key=sort_key)


def normalize_tarinfo(entry: FilesystemEntry) -> tarfile.TarInfo:
    """Build the header for an entry with reproducible metadata.

    The modification time is forced to FIXED_EPOCH and access/change
    times are removed.

    Args:
        entry: Entry to convert.

    Returns:
        Normalized TarInfo.
    """
    info = entry.to_tarinfo()
    info.mtime = FIXED_EPOCH
    for key in _DROPPED_PAX_KEYS:
        info.pax_headers.pop(key, None)
    return info


class ArchiveWriter:
    """Streaming tar writer that only needs ``write()`` on its sink.

    Headers are encoded by tarfile; the writer emits them together with
    payload padding and the end-of-archive marker itself, so it can tell
    header failures from data failures and never seeks or buffers members.

    Args:
        sink: Writable binary stream.
        archive_format: Tar dialect for header encoding.
    """

    def __init__(self, sink: BinaryIO, archive_format: ArchiveFormat = "pax") -> None:
        self._sink = sink
        self._format = _TAR_FORMATS[archive_format]
        self._offset = 0

    @property
    def offset(self) -> int:
        """Number of bytes written so far."""
        return self._offset

    def write_entry(self, entry: FilesystemEntry) -> None:
        """Write one entry's header and, for files with content, its payload.

        Raises:
            SerializationError: If the header cannot be encoded or written,
                or the payload cannot be written.
        """
        try:
            header = normalize_tarinfo(entry).tobuf(self._format, _ENCODING, _ENCODING_ERRORS)
            self._write(header)
        except (OSError, ValueError) as e:
            raise SerializationError(entry.path, "header", e) from e

        if entry.content:
            try:
                self._write(entry.content)
                remainder = len(entry.content) % tarfile.BLOCKSIZE
                if remainder:
                    self._write(tarfile.NUL * (tarfile.BLOCKSIZE - remainder))
            except (OSError, ValueError) as e:
                raise SerializationError(entry.path, "data", e) from e

    def close(self) -> None:
        """Write the end-of-archive marker and pad to a full record.

        Raises:
            OSError: If the sink rejects the trailer.
        """
        self._write(tarfile.NUL * (tarfile.BLOCKSIZE * 2))
        remainder = self._offset % tarfile.RECORDSIZE
        if remainder:
            self._write(tarfile.NUL * (tarfile.RECORDSIZE - remainder))

    def _write(self, data: bytes) -> None:
        self._sink.write(data)
        self._offset += len(data)


def write_entries(
    entries: Sequence[FilesystemEntry],
    sink: BinaryIO,
    *,
    archive_format: ArchiveFormat = "pax",
) -> WriteStats:
    """Write already ordered entries as a tar stream.

    The first failure aborts serialization; bytes already written are left
    in the sink.

    Args:
        entries: Entries in archive order.
        sink: Writable binary stream.
        archive_format: Tar dialect ("pax", "gnu" or "ustar").

    Returns:
        WriteStats for the written archive.

    Raises:
        SerializationError: If a header, payload or the end-of-archive marker
            cannot be written.
    """
    writer = ArchiveWriter(sink, archive_format)
    content_bytes = 0

    for entry in entries:
        writer.write_entry(entry)
        content_bytes += entry.size if entry.content else 0

    try:
        writer.close()
    except OSError as e:
        raise SerializationError(END_OF_ARCHIVE, "data", e) from e
    logger.debug("Wrote %d entries (%d bytes) to archive", len(entries), writer.offset)
    return WriteStats(
        entries=len(entries),
        content_bytes=content_bytes,
        archive_bytes=writer.offset,
    )


def write_snapshot(
    snapshot: Snapshot,
    sink: BinaryIO,
    *,
    archive_format: ArchiveFormat = "pax",
) -> WriteStats:
    """Serialize a snapshot as a tar stream in archive order.

    Args:
        snapshot: Snapshot to serialize (not modified).
        sink: Writable binary stream.
        archive_format: Tar dialect ("pax", "gnu" or "ustar").

    Returns:
        WriteStats for the written archive.

    Raises:
        SerializationError: If any part of the archive cannot be written.
    """
    return write_entries(order_entries(snapshot), sink, archive_format=archive_format)
