"""Exception hierarchy for imgex.

Every error raised while flattening an image derives from ImgexError so
callers can handle the whole family with a single except clause. Each
exception carries the context needed to diagnose the failure (layer index
or entry path) without inspecting internal state.
"""

from typing import Literal

# Which half of an archive entry was being written when the sink failed
WritePhase = Literal["header", "data"]


class ImgexError(Exception):
    """Base exception for all imgex errors."""


class LayerReadError(ImgexError):
    """Raised when a layer stream fails or yields malformed tar data.

    Attributes:
        layer_index: Zero-based position of the layer (oldest first).
        cause: The underlying exception.
    """

    def __init__(self, layer_index: int, cause: BaseException) -> None:
        self.layer_index = layer_index
        self.cause = cause
        super().__init__(f"Failed to read layer {layer_index}: {cause}")


class IncompleteFileDataError(ImgexError):
    """Raised when a regular file declares more bytes than the layer holds.

    Attributes:
        path: Normalized path of the truncated file.
        expected: Size declared in the tar header.
        actual: Number of bytes that could be read.
    """

    def __init__(self, path: str, expected: int, actual: int) -> None:
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Declared size exceeds available data for {path}: "
            f"expected {expected} bytes, got {actual}"
        )


class SerializationError(ImgexError):
    """Raised when an archive header or payload cannot be written.

    Attributes:
        path: Path of the entry being written.
        phase: "header" or "data".
        cause: The underlying exception.
    """

    def __init__(self, path: str, phase: WritePhase, cause: BaseException) -> None:
        self.path = path
        self.phase = phase
        self.cause = cause
        super().__init__(f"Failed to write {phase} for {path}: {cause}")


class ExportStateError(ImgexError):
    """Raised when an exporter is used for more than one export."""


class ImageArchiveError(ImgexError):
    """Raised when an image archive is missing its index or is malformed."""
