"""Image archive reader for ``docker save`` and OCI layout tarballs.

Resolves the ordered layer list and the config blob of an image stored
in a local tarball:

- ``docker save`` archives list images in ``manifest.json`` with their
  ``Config`` blob and ``Layers`` paths;
- OCI image layouts point from ``index.json`` to a manifest blob under
  ``blobs/<algorithm>/<hex>``, which names the config and layer blobs.

Layer members are streamed straight out of the outer tarball; nothing is
extracted to disk.
"""

import json
import logging
import posixpath
import tarfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO

from imgex.core.errors import ImageArchiveError
from imgex.models.image import ImageConfig
from imgex.sources.base import LayerSource

logger = logging.getLogger(__name__)

DOCKER_MANIFEST = "manifest.json"
OCI_LAYOUT = "oci-layout"
OCI_INDEX = "index.json"

# Nested OCI indexes are followed at most this deep
_MAX_INDEX_DEPTH = 4


@dataclass(frozen=True, slots=True)
class ImageManifest:
    """Resolved layout of one image inside an archive.

    Attributes:
        config_member: Archive member holding the image config blob.
        layer_members: Archive members holding the layers, oldest first.
        repo_tags: Tags recorded for the image (docker archives only).
    """

    config_member: str
    layer_members: tuple[str, ...]
    repo_tags: tuple[str, ...] = ()


class ArchiveLayerSource(LayerSource):
    """A layer stored as a member of an image archive.

    Args:
        archive_path: Path to the image archive.
        member: Name of the layer member inside the archive.
    """

    def __init__(self, archive_path: Path, member: str) -> None:
        self._archive_path = archive_path
        self._member = member

    @property
    def member(self) -> str:
        """Name of the layer member inside the archive."""
        return self._member

    @property
    def description(self) -> str:
        return self._member

    @contextmanager
    def open(self) -> Iterator[BinaryIO]:
        try:
            outer = tarfile.open(self._archive_path, mode="r:*")
        except tarfile.TarError as e:
            raise OSError(f"Cannot open image archive {self._archive_path}: {e}") from e
        with outer:
            try:
                stream = _extract_member(outer, self._member)
            except ImageArchiveError as e:
                raise OSError(str(e)) from e
            with stream:
                yield stream


class ImageArchive:
    """Local image archive in ``docker save`` or OCI layout format.

    Args:
        path: Path to the image tarball.
        reference: Repo tag selecting the image in multi-image docker
            archives. The first image is used when None.

    Example:
        >>> archive = ImageArchive(Path("alpine.tar"))
        >>> layers = archive.layers()
        >>> config = archive.image_config()
    """

    def __init__(self, path: Path, reference: str | None = None) -> None:
        self._path = path
        self._reference = reference
        self._manifest: ImageManifest | None = None

    @property
    def path(self) -> Path:
        """Path to the image tarball."""
        return self._path

    @property
    def manifest(self) -> ImageManifest:
        """Resolved manifest of the selected image (read lazily, cached)."""
        if self._manifest is None:
            self._manifest = self._read_manifest()
        return self._manifest

    @property
    def repo_tags(self) -> tuple[str, ...]:
        """Repo tags of the selected image."""
        return self.manifest.repo_tags

    def layers(self) -> list[ArchiveLayerSource]:
        """Return the image's layer sources, oldest first."""
        return [ArchiveLayerSource(self._path, m) for m in self.manifest.layer_members]

    def image_config(self) -> ImageConfig:
        """Read the runtime configuration of the selected image.

        Raises:
            ImageArchiveError: If the config blob is missing or not valid JSON.
        """
        with self._open() as tar:
            blob = _read_json(tar, self.manifest.config_member)
        if not isinstance(blob, dict):
            raise ImageArchiveError(f"Image config is not a JSON object: {self.manifest.config_member}")
        return ImageConfig.from_config_blob(blob)

    def _open(self) -> tarfile.TarFile:
        if not self._path.is_file():
            raise ImageArchiveError(f"Image archive not found: {self._path}")
        try:
            return tarfile.open(self._path, mode="r:*")
        except (tarfile.TarError, OSError) as e:
            raise ImageArchiveError(f"Cannot open image archive {self._path}: {e}") from e

    def _read_manifest(self) -> ImageManifest:
        with self._open() as tar:
            names = set(tar.getnames())
            if DOCKER_MANIFEST in names:
                manifest = self._read_docker_manifest(tar)
            elif OCI_INDEX in names and OCI_LAYOUT in names:
                manifest = self._read_oci_manifest(tar)
            else:
                msg = (
                    f"No {DOCKER_MANIFEST} or {OCI_INDEX} found in {self._path}; "
                    "is this an image tarball?"
                )
                raise ImageArchiveError(msg)

        logger.debug(
            "Resolved %d layer(s) in %s (config: %s)",
            len(manifest.layer_members),
            self._path,
            manifest.config_member,
        )
        return manifest

    def _read_docker_manifest(self, tar: tarfile.TarFile) -> ImageManifest:
        images = _read_json(tar, DOCKER_MANIFEST)
        if not isinstance(images, list) or not images:
            raise ImageArchiveError(f"{DOCKER_MANIFEST} lists no images")

        selected = images[0]
        if self._reference is not None:
            matches = [
                i for i in images if isinstance(i, dict) and self._reference in (i.get("RepoTags") or [])
            ]
            if not matches:
                raise ImageArchiveError(f"Image {self._reference} not found in {self._path}")
            selected = matches[0]

        try:
            return ImageManifest(
                config_member=_member_name(selected["Config"]),
                layer_members=tuple(_member_name(layer) for layer in selected["Layers"]),
                repo_tags=tuple(selected.get("RepoTags") or ()),
            )
        except (AttributeError, KeyError, TypeError) as e:
            raise ImageArchiveError(f"Malformed {DOCKER_MANIFEST}: missing or invalid field {e}") from e

    def _read_oci_manifest(self, tar: tarfile.TarFile) -> ImageManifest:
        document = _read_json(tar, OCI_INDEX)
        # Only the top-level index carries image references
        reference = self._reference

        for _ in range(_MAX_INDEX_DEPTH):
            if not isinstance(document, dict):
                raise ImageArchiveError("Malformed OCI index or manifest")
            if "layers" in document:
                break
            manifests = document.get("manifests") or []
            descriptor = self._select_descriptor(manifests, reference)
            reference = None
            document = _read_json(tar, _blob_member(descriptor))
        else:
            raise ImageArchiveError(f"OCI index nesting deeper than {_MAX_INDEX_DEPTH}")

        try:
            return ImageManifest(
                config_member=_blob_member(document["config"]),
                layer_members=tuple(_blob_member(layer) for layer in document["layers"]),
            )
        except (AttributeError, KeyError, TypeError) as e:
            raise ImageArchiveError(f"Malformed OCI manifest: missing or invalid field {e}") from e

    def _select_descriptor(
        self, manifests: list[dict[str, Any]], reference: str | None
    ) -> dict[str, Any]:
        """Pick the manifest descriptor whose annotations name the reference, else the first."""
        if not manifests:
            raise ImageArchiveError(f"OCI index in {self._path} lists no manifests")
        if reference is not None:
            for descriptor in manifests:
                annotations = descriptor.get("annotations") or {}
                if reference in annotations.values():
                    return descriptor
            raise ImageArchiveError(f"Image {reference} not found in {self._path}")
        return manifests[0]


def _member_name(name: str) -> str:
    """Normalize a member path referenced from a manifest."""
    return posixpath.normpath(name.lstrip("/"))


def _blob_member(descriptor: dict[str, Any]) -> str:
    """Map an OCI descriptor to its blob path inside the layout."""
    digest = descriptor.get("digest")
    if not isinstance(digest, str):
        raise ImageArchiveError(f"Descriptor without digest: {descriptor}")
    algorithm, _, encoded = digest.partition(":")
    if not algorithm or not encoded:
        raise ImageArchiveError(f"Invalid digest: {digest}")
    return f"blobs/{algorithm}/{encoded}"


def _extract_member(tar: tarfile.TarFile, name: str) -> BinaryIO:
    """Open an archive member for reading, accepting a leading ``./``."""
    for candidate in (name, f"./{name}"):
        try:
            handle = tar.extractfile(candidate)
        except KeyError:
            continue
        if handle is not None:
            return handle
    raise ImageArchiveError(f"Missing archive member: {name}")


def _read_json(tar: tarfile.TarFile, name: str) -> Any:
    with _extract_member(tar, name) as handle:
        try:
            return json.load(handle)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ImageArchiveError(f"Invalid JSON in {name}: {e}") from e
