"""Pytest configuration and shared fixtures.

This module contains fixtures used across all test modules. Layer and
image tarballs are built in memory with tarfile; members are described
as tuples:

    ("dir", "etc")
    ("file", "etc/hosts", b"127.0.0.1 localhost\n")
    ("symlink", "bin/sh", "busybox")
    ("hardlink", "bin/ls", "bin/busybox")
    ("fifo", "run/pipe")
"""

import gzip
import hashlib
import io
import json
import tarfile
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import pytest

Member = tuple[Any, ...]
LayerFactory = Callable[..., bytes]


def _tar_member(spec: Member) -> tuple[tarfile.TarInfo, bytes | None]:
    kind, name, *rest = spec
    info = tarfile.TarInfo(name=name)
    info.mtime = 1_700_000_000
    data: bytes | None = None

    if kind == "dir":
        info.type = tarfile.DIRTYPE
        info.mode = 0o755
    elif kind == "file":
        data = rest[0] if rest else b""
        info.type = tarfile.REGTYPE
        info.mode = 0o644
        info.size = len(data)
    elif kind == "symlink":
        info.type = tarfile.SYMTYPE
        info.linkname = rest[0]
        info.mode = 0o777
    elif kind == "hardlink":
        info.type = tarfile.LNKTYPE
        info.linkname = rest[0]
        info.mode = 0o644
    elif kind == "fifo":
        info.type = tarfile.FIFOTYPE
        info.mode = 0o600
    else:
        msg = f"Unknown member kind: {kind}"
        raise ValueError(msg)
    return info, data


def build_tar(members: Sequence[Member], compression: str = "") -> bytes:
    """Build a tar archive from member tuples."""
    buffer = io.BytesIO()
    mode = f"w:{compression}" if compression else "w"
    with tarfile.open(fileobj=buffer, mode=mode, format=tarfile.PAX_FORMAT) as tar:  # type: ignore[call-overload]
        for spec in members:
            info, data = _tar_member(spec)
            tar.addfile(info, io.BytesIO(data) if data is not None else None)
    return buffer.getvalue()


def build_blob_tar(blobs: dict[str, bytes]) -> bytes:
    """Build a tar archive of regular files from name -> content."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        for name, data in blobs.items():
            info = tarfile.TarInfo(name=name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def read_members(archive: bytes) -> list[tarfile.TarInfo]:
    """List the members of a (possibly gzipped) tar archive."""
    if archive[:2] == b"\x1f\x8b":
        archive = gzip.decompress(archive)
    with tarfile.open(fileobj=io.BytesIO(archive), mode="r:") as tar:
        return tar.getmembers()


@pytest.fixture
def make_layer() -> LayerFactory:
    """Factory building layer tar bytes from member tuples."""

    def factory(members: Sequence[Member], compression: str = "") -> bytes:
        return build_tar(members, compression)

    return factory


@pytest.fixture
def tar_members() -> Callable[[bytes], list[tarfile.TarInfo]]:
    """Parser returning the members of a tar archive."""
    return read_members


@pytest.fixture
def image_config_blob() -> dict[str, Any]:
    """Sample image config document."""
    return {
        "architecture": "amd64",
        "os": "linux",
        "config": {
            "User": "app",
            "Entrypoint": ["/bin/app"],
            "Cmd": ["--serve"],
            "WorkingDir": "/srv",
            "Env": ["PATH=/usr/bin:/bin", "MODE=prod"],
            "Labels": {"maintainer": "ops"},
        },
        "rootfs": {"type": "layers", "diff_ids": []},
    }


@pytest.fixture
def docker_archive(
    tmp_path: Path, image_config_blob: dict[str, Any]
) -> Callable[..., Path]:
    """Factory writing a ``docker save`` style image tarball."""

    def factory(
        layers: Sequence[Sequence[Member]],
        repo_tags: Sequence[str] = ("example/app:latest",),
        extra_images: Sequence[dict[str, Any]] = (),
        name: str = "image.tar",
    ) -> Path:
        blobs: dict[str, bytes] = {}
        layer_names: list[str] = []
        for index, members in enumerate(layers):
            layer_name = f"layer{index}/layer.tar"
            blobs[layer_name] = build_tar(members)
            layer_names.append(layer_name)
        blobs["config.json"] = json.dumps(image_config_blob).encode()

        manifest = [
            *extra_images,
            {"Config": "config.json", "RepoTags": list(repo_tags), "Layers": layer_names},
        ]
        blobs["manifest.json"] = json.dumps(manifest).encode()

        path = tmp_path / name
        path.write_bytes(build_blob_tar(blobs))
        return path

    return factory


@pytest.fixture
def oci_archive(tmp_path: Path, image_config_blob: dict[str, Any]) -> Callable[..., Path]:
    """Factory writing an OCI image layout tarball with a nested index."""

    def factory(layers: Sequence[Sequence[Member]], name: str = "oci.tar") -> Path:
        blobs: dict[str, bytes] = {}

        def add_blob(data: bytes, media_type: str) -> dict[str, Any]:
            digest = hashlib.sha256(data).hexdigest()
            blobs[f"blobs/sha256/{digest}"] = data
            return {"mediaType": media_type, "digest": f"sha256:{digest}", "size": len(data)}

        layer_descriptors = [
            add_blob(build_tar(members, "gz"), "application/vnd.oci.image.layer.v1.tar+gzip")
            for members in layers
        ]
        config_descriptor = add_blob(
            json.dumps(image_config_blob).encode(), "application/vnd.oci.image.config.v1+json"
        )
        manifest = {
            "schemaVersion": 2,
            "config": config_descriptor,
            "layers": layer_descriptors,
        }
        manifest_descriptor = add_blob(
            json.dumps(manifest).encode(), "application/vnd.oci.image.manifest.v1+json"
        )
        nested_index = {"schemaVersion": 2, "manifests": [manifest_descriptor]}
        nested_descriptor = add_blob(
            json.dumps(nested_index).encode(), "application/vnd.oci.image.index.v1+json"
        )
        nested_descriptor["annotations"] = {"org.opencontainers.image.ref.name": "latest"}

        blobs["oci-layout"] = json.dumps({"imageLayoutVersion": "1.0.0"}).encode()
        blobs["index.json"] = json.dumps(
            {"schemaVersion": 2, "manifests": [nested_descriptor]}
        ).encode()

        path = tmp_path / name
        path.write_bytes(build_blob_tar(blobs))
        return path

    return factory


@pytest.fixture(autouse=True)
def isolated_config_home(tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point XDG_CONFIG_HOME at an empty directory for every test."""
    config_home = tmp_path_factory.mktemp("xdg-config")
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_home))
    return config_home
