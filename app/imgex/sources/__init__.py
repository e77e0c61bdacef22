"""Layer sources for imgex.

A layer source yields a binary tar stream for one image layer; the image
archive reader resolves the layer sources of a saved image.
"""

from imgex.sources.archive import ArchiveLayerSource, ImageArchive, ImageManifest
from imgex.sources.base import BytesLayerSource, FileLayerSource, LayerSource

__all__ = [
    "ArchiveLayerSource",
    "BytesLayerSource",
    "FileLayerSource",
    "ImageArchive",
    "ImageManifest",
    "LayerSource",
]
