"""Tests for emojiforge.core.blob_store — no-overwrite artifact storage."""

from __future__ import annotations

import errno

import pytest

from emojiforge.core import blob_store as blob_store_module
from emojiforge.core.blob_store import LocalBlobStore
from emojiforge.core.errors import StorageWriteFailed


class _FullDiskHandle:
    """File handle that accepts one byte and then reports a full disk."""

    def __init__(self, handle):
        self.handle = handle

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.handle.close()

    def write(self, data: bytes) -> int:
        self.handle.write(data[:1])
        self.handle.flush()
        raise OSError(errno.ENOSPC, "No space left on device")


class TestLocalBlobStore:
    def test_write_then_read(self, blob_store: LocalBlobStore):
        blob_store.write("a.png", b"\x89PNG data", "image/png")
        assert blob_store.read("a.png") == b"\x89PNG data"
        assert (blob_store.root / "a.png").is_file()

    def test_write_returns_name(self, blob_store: LocalBlobStore):
        assert blob_store.write("b.png", b"x", "image/png") == "b.png"

    def test_existing_name_is_not_overwritten(self, blob_store: LocalBlobStore):
        blob_store.write("a.png", b"original", "image/png")
        with pytest.raises(StorageWriteFailed):
            blob_store.write("a.png", b"replacement", "image/png")
        assert blob_store.read("a.png") == b"original"

    def test_unsupported_content_type(self, blob_store: LocalBlobStore):
        with pytest.raises(StorageWriteFailed):
            blob_store.write("a.txt", b"hello", "text/plain")
        assert not (blob_store.root / "a.txt").exists()

    @pytest.mark.parametrize("name", ["", "../escape.png", "nested/a.png", ".."])
    def test_unsafe_names_rejected(self, blob_store: LocalBlobStore, name: str):
        with pytest.raises(StorageWriteFailed):
            blob_store.write(name, b"x", "image/png")

    def test_public_url_uses_prefix(self, temp_dir):
        store = LocalBlobStore(temp_dir / "media", "https://cdn.example.com/emojis/")
        assert store.public_url("a.png") == "https://cdn.example.com/emojis/a.png"

    def test_read_missing(self, blob_store: LocalBlobStore):
        with pytest.raises(FileNotFoundError):
            blob_store.read("missing.png")

    def test_root_created(self, temp_dir):
        root = temp_dir / "deep" / "media"
        LocalBlobStore(root)
        assert root.is_dir()

    def test_failed_write_leaves_no_partial_file(self, blob_store: LocalBlobStore, monkeypatch):
        real_open = open
        monkeypatch.setattr(
            blob_store_module,
            "open",
            lambda path, mode: _FullDiskHandle(real_open(path, mode)),
            raising=False,
        )

        with pytest.raises(StorageWriteFailed):
            blob_store.write("a.png", b"\x89PNG data", "image/png")

        assert not (blob_store.root / "a.png").exists()

    def test_name_is_reusable_after_failed_write(self, blob_store: LocalBlobStore, monkeypatch):
        real_open = open
        with monkeypatch.context() as patch:
            patch.setattr(
                blob_store_module,
                "open",
                lambda path, mode: _FullDiskHandle(real_open(path, mode)),
                raising=False,
            )
            with pytest.raises(StorageWriteFailed):
                blob_store.write("a.png", b"partial", "image/png")

        blob_store.write("a.png", b"complete", "image/png")
        assert blob_store.read("a.png") == b"complete"
