from __future__ import annotations

from pathlib import Path

import pytest

from asbuilt_router.services.blob_store import (
    InMemoryBlobStore,
    LocalDirectoryBlobStore,
    build_blob_store,
    read_blob,
)


@pytest.fixture(params=["in_memory", "local_directory"])
def blob_store(request, tmp_path: Path):
    if request.param == "in_memory":
        return InMemoryBlobStore()
    return LocalDirectoryBlobStore(tmp_path / "blobs")


def test_blob_store_put_and_read(blob_store) -> None:
    stored = blob_store.put(b"%PDF-1.7", "/asbuilt/ASB-1/original.pdf/")

    assert stored.key == "asbuilt/ASB-1/original.pdf"
    assert stored.size_bytes == 8
    assert blob_store.exists("asbuilt/ASB-1/original.pdf")
    assert read_blob(blob_store, "asbuilt/ASB-1/original.pdf") == b"%PDF-1.7"


def test_blob_store_overwrites_existing_key(blob_store) -> None:
    blob_store.put(b"first", "archive/a.pdf")
    blob_store.put(b"second", "archive/a.pdf")

    assert read_blob(blob_store, "archive/a.pdf") == b"second"


def test_blob_store_missing_key_raises(blob_store) -> None:
    assert blob_store.exists("asbuilt/nope.pdf") is False
    with pytest.raises(FileNotFoundError):
        blob_store.get_stream("asbuilt/nope.pdf")


@pytest.mark.parametrize("key", ["", "   ", "asbuilt/../secret", "a//b", "./x"])
def test_blob_store_rejects_invalid_keys(blob_store, key: str) -> None:
    with pytest.raises(ValueError):
        blob_store.put(b"x", key)


def test_in_memory_blob_store_lists_keys_by_prefix() -> None:
    store = InMemoryBlobStore()
    store.put(b"1", "archive/b.pdf")
    store.put(b"2", "archive/a.pdf")
    store.put(b"3", "asbuilt/c.pdf")

    assert store.keys("archive/") == ["archive/a.pdf", "archive/b.pdf"]


def test_build_blob_store_selects_backend(tmp_path: Path) -> None:
    assert isinstance(build_blob_store(storage_dir=None), InMemoryBlobStore)
    local = build_blob_store(storage_dir=str(tmp_path / "store"))
    assert isinstance(local, LocalDirectoryBlobStore)
    assert (tmp_path / "store").is_dir()
