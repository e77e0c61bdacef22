"""Abstract base class for layer sources.

This module defines the LayerSource interface that every provider of
layer diff streams implements, plus the two simple sources backed by a
file on disk and by bytes in memory.
"""

import io
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from pathlib import Path
from typing import BinaryIO


class LayerSource(ABC):
    """Abstract base class for all layer sources.

    A layer source hands out the (possibly compressed) tar stream of one
    image layer. Streams are acquired through a context manager so they
    are released on every exit path.

    Example:
        >>> source = FileLayerSource(Path("layer.tar"))
        >>> with source.open() as stream:
        ...     data = stream.read()
    """

    @property
    @abstractmethod
    def description(self) -> str:
        """Return a short human-readable label for progress and errors."""

    @abstractmethod
    def open(self) -> AbstractContextManager[BinaryIO]:
        """Open the layer stream.

        Returns:
            Context manager yielding a readable binary stream.

        Raises:
            OSError: If the layer data cannot be opened.
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.description!r})"


class FileLayerSource(LayerSource):
    """Layer stored as a standalone tar file (optionally compressed).

    Args:
        path: Path to the layer tar file.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        """Path to the layer file."""
        return self._path

    @property
    def description(self) -> str:
        return str(self._path)

    @contextmanager
    def open(self) -> Iterator[BinaryIO]:
        with self._path.open("rb") as stream:
            yield stream


class BytesLayerSource(LayerSource):
    """Layer held in memory.

    Args:
        data: Raw (possibly compressed) tar bytes of the layer.
        description: Label used in progress output.
    """

    def __init__(self, data: bytes, description: str = "<memory>") -> None:
        self._data = data
        self._description = description

    @property
    def description(self) -> str:
        return self._description

    @contextmanager
    def open(self) -> Iterator[BinaryIO]:
        with io.BytesIO(self._data) as stream:
            yield stream
