"""Layer overlay engine.

Applies an ordered sequence of layer diffs (oldest first) to an empty
snapshot, reproducing union-filesystem semantics:

- ordinary entries replace whatever was at their path before;
- a whiteout (``.wh.<name>``) removes ``<name>`` and everything below it;
- an opaque whiteout (``.wh..wh..opq``) removes everything below its
  directory while keeping the directory itself.

Whiteouts only affect state accumulated before them. Entries that follow
a whiteout in the same layer are inserted normally, even at paths the
whiteout just removed.
"""

import logging
import posixpath
import tarfile
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO

from imgex.core.errors import IncompleteFileDataError, LayerReadError
from imgex.models.entry import EntryKind, FilesystemEntry
from imgex.models.snapshot import ROOT_PATH, Snapshot
from imgex.sources.base import LayerSource

logger = logging.getLogger(__name__)

WHITEOUT_PREFIX = ".wh."
OPAQUE_MARKER = ".wh..wh..opq"

# Payloads are read in chunks so a truncated stream reports how far it got
_READ_CHUNK_SIZE = 1024 * 1024

# Callback signature shared with the exporter: (current, total, description)
ProgressCallback = Callable[[int, int, str], None]


class EntryAction(str, Enum):
    """How a layer entry affects the snapshot.

    Attributes:
        UPSERT: Insert or replace the entry at its path.
        WHITEOUT: Remove the target path and its subtree.
        OPAQUE: Remove the contents of the marker's directory.
    """

    UPSERT = "upsert"
    WHITEOUT = "whiteout"
    OPAQUE = "opaque"


@dataclass(frozen=True, slots=True)
class LayerStats:
    """Counters for a single applied layer.

    Attributes:
        upserts: Entries inserted or replaced.
        whiteouts: Whiteout and opaque markers processed.
        removed: Snapshot entries deleted by markers.
    """

    upserts: int = 0
    whiteouts: int = 0
    removed: int = 0


def normalize_path(name: str) -> str:
    """Normalize a layer entry name into a snapshot key.

    Leading separators are stripped and "." components collapsed, so
    ``/etc/hosts`` and ``./etc/hosts`` both become ``etc/hosts``. The
    root directory (``/``, ``./`` or an empty name) becomes ``"."``.

    Args:
        name: Entry name as stored in the layer.

    Returns:
        Normalized relative path.
    """
    stripped = name.lstrip("/")
    if not stripped:
        return ROOT_PATH
    return posixpath.normpath(stripped).lstrip("/") or ROOT_PATH


def classify(path: str) -> tuple[EntryAction, str]:
    """Classify a normalized entry path by its final component.

    A bare ``.wh.`` component names nothing and is kept as an ordinary
    entry rather than treated as an error.

    Args:
        path: Normalized entry path.

    Returns:
        Tuple of (action, target). For UPSERT the target is the path itself,
        for OPAQUE it is the cleared directory, for WHITEOUT the removed path.
    """
    directory, base = posixpath.split(path)
    directory = directory or ROOT_PATH

    if base == OPAQUE_MARKER:
        return EntryAction.OPAQUE, directory

    if base.startswith(WHITEOUT_PREFIX) and len(base) > len(WHITEOUT_PREFIX):
        target = base[len(WHITEOUT_PREFIX) :]
        if directory == ROOT_PATH:
            return EntryAction.WHITEOUT, normalize_path(target)
        return EntryAction.WHITEOUT, normalize_path(f"{directory}/{target}")

    return EntryAction.UPSERT, path


def apply_layer(snapshot: Snapshot, stream: BinaryIO, layer_index: int) -> LayerStats:
    """Apply one layer's tar stream to the snapshot in stream order.

    Args:
        snapshot: Snapshot to mutate.
        stream: Readable layer stream (plain, gzip, bzip2 or xz tar).
        layer_index: Position of the layer, used in error reports.

    Returns:
        LayerStats for the applied layer.

    Raises:
        LayerReadError: If the stream fails or holds malformed tar data.
        IncompleteFileDataError: If a file's payload is shorter than declared.
    """
    upserts = whiteouts = removed = 0

    try:
        with tarfile.open(fileobj=stream, mode="r|*") as tar:
            for info in tar:
                path = normalize_path(info.name)
                action, target = classify(path)

                if action == EntryAction.OPAQUE:
                    count = snapshot.clear_directory(target)
                    logger.debug("Layer %d: opaque %s removed %d entries", layer_index, target, count)
                    whiteouts += 1
                    removed += count
                    continue

                if action == EntryAction.WHITEOUT:
                    count = snapshot.remove_tree(target)
                    logger.debug("Layer %d: whiteout %s removed %d entries", layer_index, target, count)
                    whiteouts += 1
                    removed += count
                    continue

                content = None
                if EntryKind.from_tarinfo(info) == EntryKind.FILE and info.size > 0:
                    content = _read_content(tar, info, path)

                snapshot.put(FilesystemEntry.from_tarinfo(info, path, content))
                upserts += 1
    except (tarfile.TarError, OSError, EOFError) as e:
        raise LayerReadError(layer_index, e) from e

    return LayerStats(upserts=upserts, whiteouts=whiteouts, removed=removed)


def build_snapshot(
    layers: Sequence[LayerSource],
    *,
    progress: ProgressCallback | None = None,
) -> Snapshot:
    """Apply all layers in order and return the flattened snapshot.

    Each layer stream is opened as a scoped resource and fully consumed
    before the next layer starts. Any failure aborts the whole build; no
    partial snapshot is returned.

    Args:
        layers: Layer sources, oldest first.
        progress: Optional callback invoked after each applied layer.

    Returns:
        Snapshot of the final filesystem.

    Raises:
        LayerReadError: If a layer cannot be opened or read.
        IncompleteFileDataError: If a file's payload is truncated.
    """
    snapshot = Snapshot()
    total = len(layers)

    for index, layer in enumerate(layers):
        try:
            with layer.open() as stream:
                stats = apply_layer(snapshot, stream, index)
        except OSError as e:
            raise LayerReadError(index, e) from e

        logger.debug(
            "Applied layer %d/%d (%s): %d upserts, %d whiteouts, %d removed",
            index + 1,
            total,
            layer.description,
            stats.upserts,
            stats.whiteouts,
            stats.removed,
        )
        if progress is not None:
            progress(index + 1, total, f"Applied layer {layer.description}")

    return snapshot


def _read_content(tar: tarfile.TarFile, info: tarfile.TarInfo, path: str) -> bytes:
    """Read exactly the declared payload of a regular file.

    Raises:
        IncompleteFileDataError: If the stream ends before info.size bytes.
    """
    handle = tar.extractfile(info)
    if handle is None:
        raise IncompleteFileDataError(path, info.size, 0)

    chunks: list[bytes] = []
    received = 0
    try:
        while received < info.size:
            chunk = handle.read(min(_READ_CHUNK_SIZE, info.size - received))
            if not chunk:
                break
            chunks.append(chunk)
            received += len(chunk)
    except (tarfile.ReadError, EOFError) as e:
        # The failed read discards its short tail; the stream position still counts it
        available = tar.fileobj.tell() - info.offset_data if tar.fileobj is not None else received
        actual = max(received, min(available, info.size - 1))
        raise IncompleteFileDataError(path, info.size, actual) from e

    if received < info.size:
        raise IncompleteFileDataError(path, info.size, received)
    return b"".join(chunks)
