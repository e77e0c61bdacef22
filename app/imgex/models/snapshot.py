"""Snapshot of a flattened image filesystem.

A snapshot maps normalized paths to their final FilesystemEntry. It is
built from scratch for every export, mutated layer by layer, and then
handed to the serializer without further changes.
"""

from collections.abc import Iterator

from imgex.models.entry import FilesystemEntry

ROOT_PATH = "."


def is_inside(path: str, directory: str) -> bool:
    """Check whether a path lies strictly inside a directory.

    Args:
        path: Normalized path to test.
        directory: Normalized directory path ("." for the root).

    Returns:
        True if path is a descendant of directory (never the directory itself).
    """
    if directory == ROOT_PATH:
        return path != ROOT_PATH
    return path.startswith(directory + "/")


class Snapshot:
    """Mapping from normalized path to exactly one filesystem entry.

    Writes replace prior entries wholesale; metadata is never merged.
    Subtree removal scans every key, which keeps the structure a plain
    dict at the cost of deletion time proportional to the snapshot size.
    """

    def __init__(self) -> None:
        self._entries: dict[str, FilesystemEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: object) -> bool:
        return path in self._entries

    def __iter__(self) -> Iterator[FilesystemEntry]:
        return iter(self._entries.values())

    def get(self, path: str) -> FilesystemEntry | None:
        """Return the entry at path, or None if absent."""
        return self._entries.get(path)

    def paths(self) -> list[str]:
        """Return all paths in insertion order."""
        return list(self._entries)

    @property
    def total_content_bytes(self) -> int:
        """Total size of all file content held in memory."""
        return sum(len(e.content) for e in self._entries.values() if e.content is not None)

    def put(self, entry: FilesystemEntry) -> None:
        """Insert an entry, replacing any prior entry at the same path."""
        self._entries[entry.path] = entry

    def remove_tree(self, path: str) -> int:
        """Remove the entry at path and everything inside it.

        Args:
            path: Normalized path of the removed file or directory.

        Returns:
            Number of entries removed.
        """
        doomed = [p for p in self._entries if p == path or is_inside(p, path)]
        for p in doomed:
            del self._entries[p]
        return len(doomed)

    def clear_directory(self, directory: str) -> int:
        """Remove everything strictly inside a directory, keeping the directory.

        Args:
            directory: Normalized directory path ("." clears the whole tree
                except the root entry).

        Returns:
            Number of entries removed.
        """
        doomed = [p for p in self._entries if is_inside(p, directory)]
        for p in doomed:
            del self._entries[p]
        return len(doomed)
