"""Export pipeline: apply layers, order entries, write the archive.

The ImageExporter drives one export through an explicit state machine::

    IDLE -> APPLYING -> SORTING -> WRITING -> DONE

Any state may move to ERROR, which is terminal; there are no internal
retries. Gzip compression and atomic file output are handled here,
outside the flattening core.
"""

import gzip
import logging
import os
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import BinaryIO

from imgex.core.errors import ExportStateError, ImgexError
from imgex.core.overlay import ProgressCallback, build_snapshot
from imgex.core.serializer import order_entries, write_entries
from imgex.core.settings import ExportSettings
from imgex.sources.base import LayerSource

logger = logging.getLogger(__name__)

GZIP_SUFFIX = ".gz"


class ExportState(str, Enum):
    """Lifecycle state of an export.

    Attributes:
        IDLE: Not started.
        APPLYING: Applying layers to the snapshot.
        SORTING: Ordering snapshot entries.
        WRITING: Writing the archive.
        DONE: Archive fully written.
        ERROR: Aborted; terminal.
    """

    IDLE = "idle"
    APPLYING = "applying"
    SORTING = "sorting"
    WRITING = "writing"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class ExportSummary:
    """Result of a completed export.

    Attributes:
        layers: Number of layers applied.
        entries: Number of entries in the output archive.
        content_bytes: Total file payload bytes in the archive.
        archive_bytes: Uncompressed archive size in bytes.
        compressed: Whether the output was gzipped.
        output_path: Destination file, or None for stream exports.
    """

    layers: int
    entries: int
    content_bytes: int
    archive_bytes: int
    compressed: bool
    output_path: Path | None = None


def compressed_output_path(path: Path) -> Path:
    """Append the gzip suffix to a path unless it already ends with it."""
    if path.name.endswith(GZIP_SUFFIX):
        return path
    return path.with_name(path.name + GZIP_SUFFIX)


class ImageExporter:
    """Runs a single export of a layered image to a tar archive.

    Args:
        settings: Export settings (compression, tar dialect). Defaults apply
            when None.
        progress: Optional callback receiving (current, total, description)
            once per applied layer and once after writing.
    """

    def __init__(
        self,
        settings: ExportSettings | None = None,
        progress: ProgressCallback | None = None,
    ) -> None:
        self._settings = settings or ExportSettings()
        self._progress = progress
        self._state = ExportState.IDLE

    @property
    def state(self) -> ExportState:
        """Current pipeline state."""
        return self._state

    @property
    def settings(self) -> ExportSettings:
        """Settings used by this exporter."""
        return self._settings

    def export_to_writer(self, layers: Sequence[LayerSource], sink: BinaryIO) -> ExportSummary:
        """Flatten layers and stream the archive to a writable sink.

        On failure the sink holds an incomplete, unusable archive; nothing
        is rolled back.

        Args:
            layers: Layer sources, oldest first.
            sink: Writable binary stream (not closed by this method).

        Returns:
            ExportSummary for the written archive.

        Raises:
            ExportStateError: If this exporter has already been used.
            ImgexError: If any layer cannot be applied or the archive
                cannot be written.
        """
        if self._state != ExportState.IDLE:
            msg = f"Exporter already used (state: {self._state.value})"
            raise ExportStateError(msg)

        try:
            return self._run(layers, sink)
        except BaseException:
            self._state = ExportState.ERROR
            raise

    def export_to_file(self, layers: Sequence[LayerSource], output_path: Path) -> ExportSummary:
        """Flatten layers into an archive file.

        The archive is written to a temporary file next to the destination
        and moved into place only after a complete write. With compression
        enabled, ``.gz`` is appended to the path if missing.

        Args:
            layers: Layer sources, oldest first.
            output_path: Destination file path.

        Returns:
            ExportSummary with the final output path.

        Raises:
            ExportStateError: If this exporter has already been used.
            ImgexError: If the export fails or the file cannot be written.
        """
        if self._settings.compress:
            output_path = compressed_output_path(output_path)

        tmp_path: Path | None = None
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with NamedTemporaryFile(
                mode="wb",
                dir=output_path.parent,
                prefix=f".{output_path.name}.",
                delete=False,
                suffix=".tmp",
            ) as f:
                tmp_path = Path(f.name)
                summary = self.export_to_writer(layers, f)
            os.replace(str(tmp_path), str(output_path))
        except OSError as e:
            self._state = ExportState.ERROR
            _discard(tmp_path)
            raise ImgexError(f"Failed to write output file {output_path}: {e}") from e
        except BaseException:
            _discard(tmp_path)
            raise

        logger.info("Filesystem exported to %s", output_path)
        return ExportSummary(
            layers=summary.layers,
            entries=summary.entries,
            content_bytes=summary.content_bytes,
            archive_bytes=summary.archive_bytes,
            compressed=summary.compressed,
            output_path=output_path,
        )

    def _run(self, layers: Sequence[LayerSource], sink: BinaryIO) -> ExportSummary:
        total_steps = len(layers) + 1

        self._state = ExportState.APPLYING
        logger.info("Applying %d layer(s)", len(layers))
        snapshot = build_snapshot(layers, progress=self._report(total_steps))

        self._state = ExportState.SORTING
        logger.debug(
            "Snapshot holds %d entries (%d content bytes)",
            len(snapshot),
            snapshot.total_content_bytes,
        )
        entries = order_entries(snapshot)

        self._state = ExportState.WRITING
        if self._settings.compress:
            # Empty filename keeps the temporary output name out of the gzip header
            with gzip.GzipFile(
                filename="",
                fileobj=sink,
                mode="wb",
                compresslevel=self._settings.compress_level,
                mtime=0,
            ) as gz:
                stats = write_entries(entries, gz, archive_format=self._settings.archive_format)
        else:
            stats = write_entries(entries, sink, archive_format=self._settings.archive_format)
        sink.flush()

        if self._progress is not None:
            self._progress(total_steps, total_steps, "Wrote archive")

        self._state = ExportState.DONE
        logger.info("Wrote %d entries (%d bytes)", stats.entries, stats.archive_bytes)
        return ExportSummary(
            layers=len(layers),
            entries=stats.entries,
            content_bytes=stats.content_bytes,
            archive_bytes=stats.archive_bytes,
            compressed=self._settings.compress,
        )

    def _report(self, total_steps: int) -> ProgressCallback | None:
        """Adapt the user callback to count the write phase as a step."""
        callback = self._progress
        if callback is None:
            return None

        def report(current: int, _total: int, description: str) -> None:
            callback(current, total_steps, description)

        return report


def _discard(tmp_path: Path | None) -> None:
    """Remove a leftover temporary output file."""
    if tmp_path is not None and tmp_path.exists():
        tmp_path.unlink()
