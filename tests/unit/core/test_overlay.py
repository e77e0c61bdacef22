"""Unit tests for the layer overlay engine.

Tests for path normalization, whiteout classification, and applying
layers to a snapshot.
"""

import io
from collections.abc import Callable
from contextlib import AbstractContextManager
from typing import BinaryIO
from unittest.mock import MagicMock

import pytest
from imgex.core.errors import IncompleteFileDataError, LayerReadError
from imgex.core.overlay import (
    EntryAction,
    apply_layer,
    build_snapshot,
    classify,
    normalize_path,
)
from imgex.models.entry import EntryKind
from imgex.models.snapshot import Snapshot
from imgex.sources.base import BytesLayerSource, LayerSource

LayerFactory = Callable[..., bytes]


def _flatten(make_layer: LayerFactory, *layers: list[tuple]) -> Snapshot:
    """Build a snapshot from member lists, oldest first."""
    sources = [BytesLayerSource(make_layer(members), f"layer{i}") for i, members in enumerate(layers)]
    return build_snapshot(sources)


class _FailingSource(LayerSource):
    """Layer source whose open() fails."""

    @property
    def description(self) -> str:
        return "broken"

    def open(self) -> AbstractContextManager[BinaryIO]:
        raise PermissionError("denied")


class TestNormalizePath:
    """Tests for normalize_path function."""

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("etc/hosts", "etc/hosts"),
            ("./etc/hosts", "etc/hosts"),
            ("/etc/hosts", "etc/hosts"),
            ("etc/", "etc"),
            ("./etc//ssl/./certs/", "etc/ssl/certs"),
            ("/", "."),
            ("./", "."),
            (".", "."),
            ("", "."),
        ],
    )
    def test_normalization(self, name: str, expected: str) -> None:
        """Leading separators and dot components are removed."""
        assert normalize_path(name) == expected

    def test_equivalent_spellings_share_a_key(self) -> None:
        """./a/b, /a/b and a/b normalize identically."""
        assert normalize_path("./a/b") == normalize_path("/a/b") == normalize_path("a/b")


class TestClassify:
    """Tests for classify function."""

    def test_ordinary_entry(self) -> None:
        """Normal names are upserted at their own path."""
        assert classify("etc/hosts") == (EntryAction.UPSERT, "etc/hosts")

    def test_whiteout(self) -> None:
        """A .wh. prefix removes the named sibling."""
        assert classify("etc/.wh.hosts") == (EntryAction.WHITEOUT, "etc/hosts")

    def test_whiteout_at_root(self) -> None:
        """A top-level whiteout targets a top-level path."""
        assert classify(".wh.tmp") == (EntryAction.WHITEOUT, "tmp")

    def test_opaque_marker(self) -> None:
        """The opaque marker targets its containing directory."""
        assert classify("a/b/.wh..wh..opq") == (EntryAction.OPAQUE, "a/b")

    def test_opaque_marker_at_root(self) -> None:
        """A top-level opaque marker targets the root."""
        assert classify(".wh..wh..opq") == (EntryAction.OPAQUE, ".")

    def test_bare_prefix_is_ordinary(self) -> None:
        """A bare .wh. names nothing and is kept as an ordinary entry."""
        assert classify("a/.wh.") == (EntryAction.UPSERT, "a/.wh.")


class TestApplyLayer:
    """Tests for apply_layer function."""

    def test_inserts_entries(self, make_layer: LayerFactory) -> None:
        """Entries from a layer are inserted with their content."""
        snapshot = Snapshot()
        layer = make_layer([("dir", "etc"), ("file", "etc/hosts", b"localhost\n")])

        stats = apply_layer(snapshot, io.BytesIO(layer), 0)

        assert stats.upserts == 2
        entry = snapshot.get("etc/hosts")
        assert entry is not None
        assert entry.kind == EntryKind.FILE
        assert entry.content == b"localhost\n"

    def test_reads_compressed_layers(self, make_layer: LayerFactory) -> None:
        """Gzip, bzip2 and xz layers are detected transparently."""
        for compression in ("gz", "bz2", "xz"):
            snapshot = Snapshot()
            layer = make_layer([("file", "a", b"data")], compression)
            apply_layer(snapshot, io.BytesIO(layer), 0)
            assert "a" in snapshot

    def test_whiteout_counts(self, make_layer: LayerFactory) -> None:
        """Stats count markers and removed entries."""
        snapshot = Snapshot()
        apply_layer(snapshot, io.BytesIO(make_layer([("dir", "a"), ("file", "a/b", b"x")])), 0)

        stats = apply_layer(snapshot, io.BytesIO(make_layer([("file", ".wh.a")])), 1)

        assert stats.whiteouts == 1
        assert stats.removed == 2
        assert stats.upserts == 0

    def test_malformed_stream(self) -> None:
        """Garbage input raises LayerReadError with the layer index."""
        with pytest.raises(LayerReadError) as exc_info:
            apply_layer(Snapshot(), io.BytesIO(b"not a tar archive" * 64), 3)
        assert exc_info.value.layer_index == 3

    def test_empty_stream(self) -> None:
        """An empty stream is not a valid layer."""
        with pytest.raises(LayerReadError):
            apply_layer(Snapshot(), io.BytesIO(b""), 0)

    def test_truncated_payload(self, make_layer: LayerFactory) -> None:
        """A payload shorter than declared raises IncompleteFileDataError."""
        layer = make_layer([("file", "big", b"x" * 2000)])
        truncated = layer[: 512 + 100]

        with pytest.raises(IncompleteFileDataError) as exc_info:
            apply_layer(Snapshot(), io.BytesIO(truncated), 0)

        assert exc_info.value.path == "big"
        assert exc_info.value.expected == 2000
        assert exc_info.value.actual == 100

    def test_truncated_payload_counts_bytes_within_chunk(self, make_layer: LayerFactory) -> None:
        """The reported size is the bytes present even for a large short file."""
        layer = make_layer([("file", "big", b"x" * 3_000_000)])
        truncated = layer[: 512 + 1_500_123]

        with pytest.raises(IncompleteFileDataError) as exc_info:
            apply_layer(Snapshot(), io.BytesIO(truncated), 0)

        assert exc_info.value.expected == 3_000_000
        assert exc_info.value.actual == 1_500_123

    def test_stream_error(self) -> None:
        """An OSError from the stream is wrapped with the layer index."""
        stream = MagicMock()
        stream.read.side_effect = OSError("disk gone")

        with pytest.raises(LayerReadError) as exc_info:
            apply_layer(Snapshot(), stream, 2)

        assert exc_info.value.layer_index == 2
        assert isinstance(exc_info.value.__cause__, OSError)


class TestUnionSemantics:
    """Overlay properties across multiple layers."""

    def test_later_layer_overrides(self, make_layer: LayerFactory) -> None:
        """The newest entry at a path wins and nothing else changes."""
        snapshot = _flatten(
            make_layer,
            [("dir", "etc"), ("file", "etc/a", b"old"), ("file", "etc/b", b"keep")],
            [("file", "etc/a", b"new")],
        )

        a = snapshot.get("etc/a")
        b = snapshot.get("etc/b")
        assert a is not None and a.content == b"new"
        assert b is not None and b.content == b"keep"
        assert sorted(snapshot.paths()) == ["etc", "etc/a", "etc/b"]

    def test_kind_change_replaces_entry(self, make_layer: LayerFactory) -> None:
        """A symlink replacing a file takes over the path entirely."""
        snapshot = _flatten(
            make_layer,
            [("file", "bin/sh", b"#!")],
            [("symlink", "bin/sh", "busybox")],
        )

        entry = snapshot.get("bin/sh")
        assert entry is not None
        assert entry.kind == EntryKind.SYMLINK
        assert entry.content is None

    def test_whiteout_removes_subtree(self, make_layer: LayerFactory) -> None:
        """A whiteout removes the path and all of its descendants."""
        snapshot = _flatten(
            make_layer,
            [("dir", "a"), ("dir", "a/b"), ("file", "a/b/c", b"1"), ("file", "ab", b"2")],
            [("file", ".wh.a")],
        )

        assert snapshot.paths() == ["ab"]

    def test_whiteout_of_missing_path(self, make_layer: LayerFactory) -> None:
        """Whiting out a path that does not exist is a no-op."""
        snapshot = _flatten(make_layer, [("file", "a", b"1")], [("file", ".wh.zzz")])
        assert snapshot.paths() == ["a"]

    def test_whiteout_markers_are_not_emitted(self, make_layer: LayerFactory) -> None:
        """Markers never appear in the snapshot."""
        snapshot = _flatten(
            make_layer,
            [("dir", "a"), ("file", "a/x", b"1")],
            [("file", "a/.wh.x"), ("file", "a/.wh..wh..opq")],
        )
        assert all(".wh." not in path for path in snapshot.paths())

    def test_opaque_clears_contents_only(self, make_layer: LayerFactory) -> None:
        """An opaque marker keeps the directory and removes its contents."""
        snapshot = _flatten(
            make_layer,
            [("dir", "a"), ("file", "a/x", b"1"), ("dir", "a/sub"), ("file", "a/sub/y", b"2"), ("file", "ab", b"3")],
            [("dir", "a/.wh..wh..opq")],
        )

        assert sorted(snapshot.paths()) == ["a", "ab"]

    def test_opaque_then_new_entries_same_layer(self, make_layer: LayerFactory) -> None:
        """Entries after an opaque marker in the same layer are kept."""
        snapshot = _flatten(
            make_layer,
            [("dir", "a"), ("file", "a/old", b"1")],
            [("file", "a/.wh..wh..opq"), ("file", "a/new", b"2")],
        )

        assert sorted(snapshot.paths()) == ["a", "a/new"]

    def test_whiteout_then_recreate_same_layer(self, make_layer: LayerFactory) -> None:
        """A path whited out and re-added in one layer holds the new entry."""
        snapshot = _flatten(
            make_layer,
            [("dir", "d"), ("file", "d/f", b"old")],
            [("file", ".wh.d"), ("dir", "d"), ("file", "d/g", b"new")],
        )

        assert sorted(snapshot.paths()) == ["d", "d/g"]

    def test_root_opaque_keeps_root(self, make_layer: LayerFactory) -> None:
        """An opaque marker at the root clears everything but the root."""
        snapshot = _flatten(
            make_layer,
            [("dir", "./"), ("dir", "etc"), ("file", "etc/a", b"1")],
            [("file", ".wh..wh..opq")],
        )

        assert snapshot.paths() == ["."]

    def test_equivalent_paths_override(self, make_layer: LayerFactory) -> None:
        """./x, /x and x address the same snapshot key."""
        snapshot = _flatten(
            make_layer,
            [("file", "./x", b"1")],
            [("file", "/x", b"22")],
            [("file", "x", b"333")],
        )

        assert snapshot.paths() == ["x"]
        entry = snapshot.get("x")
        assert entry is not None and entry.content == b"333"

    def test_empty_layer_list(self) -> None:
        """No layers produce an empty snapshot."""
        assert len(build_snapshot([])) == 0


class TestBuildSnapshot:
    """Tests for build_snapshot function."""

    def test_reports_progress(self, make_layer: LayerFactory) -> None:
        """The callback receives (current, total, description) per layer."""
        calls: list[tuple[int, int, str]] = []
        sources = [
            BytesLayerSource(make_layer([("file", "a", b"1")]), "base"),
            BytesLayerSource(make_layer([("file", "b", b"2")]), "app"),
        ]

        build_snapshot(sources, progress=lambda c, t, d: calls.append((c, t, d)))

        assert calls == [(1, 2, "Applied layer base"), (2, 2, "Applied layer app")]

    def test_open_failure_carries_index(self, make_layer: LayerFactory) -> None:
        """Failing to open a layer reports its position."""
        sources = [BytesLayerSource(make_layer([("file", "a", b"1")])), _FailingSource()]

        with pytest.raises(LayerReadError) as exc_info:
            build_snapshot(sources)

        assert exc_info.value.layer_index == 1

    def test_read_failure_carries_index(self, make_layer: LayerFactory) -> None:
        """Malformed data in a later layer reports that layer's index."""
        sources = [
            BytesLayerSource(make_layer([("file", "a", b"1")])),
            BytesLayerSource(make_layer([("file", "b", b"2")])),
            BytesLayerSource(b"\x00garbage" * 100),
        ]

        with pytest.raises(LayerReadError) as exc_info:
            build_snapshot(sources)

        assert exc_info.value.layer_index == 2

    def test_stream_closed_after_failure(self) -> None:
        """Layer streams are released even when applying fails."""
        opened: list[io.BytesIO] = []

        class _TrackingSource(BytesLayerSource):
            def open(self):  # type: ignore[override]
                stream = io.BytesIO(b"garbage" * 100)
                opened.append(stream)

                class _Ctx:
                    def __enter__(self) -> io.BytesIO:
                        return stream

                    def __exit__(self, *args: object) -> None:
                        stream.close()

                return _Ctx()

        with pytest.raises(LayerReadError):
            build_snapshot([_TrackingSource(b"")])

        assert opened and opened[0].closed
