"""Filesystem entry model for flattened image filesystems.

This module defines the data structures for representing a single path
in the final filesystem of an image, along with conversions from and to
tar headers.
"""

import tarfile
from dataclasses import dataclass, field
from enum import Enum

# Pax records that mirror header fields; tarfile gives them priority over the
# header when writing, so they must not outlive path normalization.
_MIRRORED_PAX_KEYS: frozenset[str] = frozenset(
    {"path", "linkpath", "size", "uid", "gid", "uname", "gname", "mtime", "atime", "ctime"}
)


class EntryKind(str, Enum):
    """Kind of filesystem entry.

    Attributes:
        DIRECTORY: Directory.
        FILE: Regular file (the only kind that carries content).
        SYMLINK: Symbolic link.
        HARDLINK: Hard link to another path in the archive.
        OTHER: Device nodes, FIFOs and any other special file.
    """

    DIRECTORY = "directory"
    FILE = "file"
    SYMLINK = "symlink"
    HARDLINK = "hardlink"
    OTHER = "other"

    @property
    def priority(self) -> int:
        """Archive ordering priority (lower is written first).

        Directories come first so parents exist before their children,
        links come last so that files exist before any link entry.
        """
        if self is EntryKind.DIRECTORY:
            return 1
        if self in (EntryKind.SYMLINK, EntryKind.HARDLINK):
            return 3
        return 2

    @classmethod
    def from_tarinfo(cls, info: tarfile.TarInfo) -> "EntryKind":
        """Classify a tar header."""
        if info.isdir():
            return cls.DIRECTORY
        if info.issym():
            return cls.SYMLINK
        if info.islnk():
            return cls.HARDLINK
        if info.isreg():
            return cls.FILE
        return cls.OTHER


@dataclass(frozen=True, slots=True)
class FilesystemEntry:
    """One final path in the flattened filesystem.

    Attributes:
        path: Normalized relative path ("." for the root directory).
        kind: Entry kind.
        mode: Permission bits.
        uid: Owner user id.
        gid: Owner group id.
        uname: Owner user name.
        gname: Owner group name.
        size: Declared content size in bytes (0 for non-regular entries).
        linkname: Link target for symlinks and hardlinks.
        type_flag: Raw tar type flag, kept so special files keep their type.
            None means the default flag for the kind.
        devmajor: Device major number (device nodes only).
        devminor: Device minor number (device nodes only).
        pax_headers: Entry-specific extended headers (xattrs, long values).
        content: File content, present only for non-empty regular files.
    """

    path: str
    kind: EntryKind
    mode: int = 0o644
    uid: int = 0
    gid: int = 0
    uname: str = ""
    gname: str = ""
    size: int = 0
    linkname: str = ""
    type_flag: bytes | None = None
    devmajor: int = 0
    devminor: int = 0
    pax_headers: dict[str, str] = field(default_factory=dict)
    content: bytes | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        """Validate entry data after initialization."""
        if not self.path:
            msg = "Entry path cannot be empty"
            raise ValueError(msg)
        if self.content is not None:
            if self.kind != EntryKind.FILE:
                msg = f"Only regular files carry content, got {self.kind.value} at {self.path}"
                raise ValueError(msg)
            if len(self.content) != self.size:
                msg = (
                    f"Content length {len(self.content)} does not match "
                    f"declared size {self.size} for {self.path}"
                )
                raise ValueError(msg)
        elif self.kind == EntryKind.FILE and self.size > 0:
            msg = f"Regular file {self.path} declares {self.size} bytes but has no content"
            raise ValueError(msg)

    @property
    def is_dir(self) -> bool:
        """Check if the entry is a directory."""
        return self.kind == EntryKind.DIRECTORY

    @property
    def depth(self) -> int:
        """Number of path components; the root directory has depth 0."""
        if self.path == ".":
            return 0
        return self.path.count("/") + 1

    @classmethod
    def from_tarinfo(
        cls,
        info: tarfile.TarInfo,
        path: str,
        content: bytes | None = None,
    ) -> "FilesystemEntry":
        """Build an entry from a layer's tar header.

        Args:
            info: Header read from the layer stream.
            path: Normalized path for the entry.
            content: File content for regular files (None otherwise).

        Returns:
            FilesystemEntry with the header's metadata.
        """
        kind = EntryKind.from_tarinfo(info)
        size = info.size if kind == EntryKind.FILE else 0
        # Sparse and contiguous files are written back as plain regular files
        type_flag = tarfile.REGTYPE if kind == EntryKind.FILE else info.type
        pax_headers = {
            key: value
            for key, value in info.pax_headers.items()
            if key not in _MIRRORED_PAX_KEYS and not key.startswith("GNU.sparse.")
        }
        return cls(
            path=path,
            kind=kind,
            mode=info.mode,
            uid=info.uid,
            gid=info.gid,
            uname=info.uname,
            gname=info.gname,
            size=size,
            linkname=info.linkname,
            type_flag=type_flag,
            devmajor=info.devmajor,
            devminor=info.devminor,
            pax_headers=pax_headers,
            content=content if content else None,
        )

    def to_tarinfo(self) -> tarfile.TarInfo:
        """Build a tar header for this entry.

        Returns:
            TarInfo carrying the entry's path and metadata. Timestamps are
            left at their defaults; the serializer normalizes them.
        """
        info = tarfile.TarInfo(name=self.path)
        info.type = self.type_flag or _DEFAULT_TYPE_FLAGS[self.kind]
        info.mode = self.mode
        info.uid = self.uid
        info.gid = self.gid
        info.uname = self.uname
        info.gname = self.gname
        info.size = self.size if self.kind == EntryKind.FILE else 0
        info.linkname = self.linkname
        info.devmajor = self.devmajor
        info.devminor = self.devminor
        info.pax_headers = dict(self.pax_headers)
        return info


_DEFAULT_TYPE_FLAGS: dict[EntryKind, bytes] = {
    EntryKind.DIRECTORY: tarfile.DIRTYPE,
    EntryKind.FILE: tarfile.REGTYPE,
    EntryKind.SYMLINK: tarfile.SYMTYPE,
    EntryKind.HARDLINK: tarfile.LNKTYPE,
    EntryKind.OTHER: tarfile.FIFOTYPE,
}
