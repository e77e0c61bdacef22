"""Data models for imgex.

This module exports the core data structures used throughout the application.
"""

from imgex.models.entry import EntryKind, FilesystemEntry
from imgex.models.image import ImageConfig
from imgex.models.snapshot import ROOT_PATH, Snapshot, is_inside

__all__ = [
    "ROOT_PATH",
    "EntryKind",
    "FilesystemEntry",
    "ImageConfig",
    "Snapshot",
    "is_inside",
]
