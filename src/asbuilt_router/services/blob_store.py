from __future__ import annotations

from dataclasses import dataclass
import io
import json
import logging
from pathlib import Path
from threading import Lock
from typing import BinaryIO, Protocol


LOGGER = logging.getLogger(__name__)

_CONTENT_TYPE_SUFFIX = ".content-type"


@dataclass(frozen=True)
class StoredBlob:
    key: str
    size_bytes: int
    content_type: str


class BlobStore(Protocol):
    def put(self, data: bytes, key: str, content_type: str = "application/pdf") -> StoredBlob: ...

    def get_stream(self, key: str) -> BinaryIO: ...

    def exists(self, key: str) -> bool: ...


def _normalize_key(key: str) -> str:
    normalized = (key or "").strip().strip("/")
    if not normalized:
        raise ValueError("blob key must be non-empty")
    parts = normalized.split("/")
    if any(part in {"", ".", ".."} for part in parts):
        raise ValueError(f"invalid blob key: {key!r}")
    return normalized


def read_blob(store: BlobStore, key: str) -> bytes:
    stream = store.get_stream(key)
    try:
        return stream.read()
    finally:
        stream.close()


class InMemoryBlobStore:
    def __init__(self) -> None:
        self._lock = Lock()
        self._blobs: dict[str, tuple[bytes, str]] = {}

    def put(self, data: bytes, key: str, content_type: str = "application/pdf") -> StoredBlob:
        normalized = _normalize_key(key)
        with self._lock:
            self._blobs[normalized] = (bytes(data), content_type)
        return StoredBlob(key=normalized, size_bytes=len(data), content_type=content_type)

    def get_stream(self, key: str) -> BinaryIO:
        normalized = _normalize_key(key)
        with self._lock:
            record = self._blobs.get(normalized)
        if record is None:
            raise FileNotFoundError(f"blob not found: {normalized}")
        return io.BytesIO(record[0])

    def exists(self, key: str) -> bool:
        with self._lock:
            return _normalize_key(key) in self._blobs

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(key for key in self._blobs if key.startswith(prefix))


class LocalDirectoryBlobStore:
    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.root / _normalize_key(key)

    def put(self, data: bytes, key: str, content_type: str = "application/pdf") -> StoredBlob:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_name(f"{path.name}.tmp")
        temp_path.write_bytes(data)
        temp_path.replace(path)
        path.with_name(f"{path.name}{_CONTENT_TYPE_SUFFIX}").write_text(
            json.dumps({"content_type": content_type}),
            encoding="utf-8",
        )
        return StoredBlob(key=_normalize_key(key), size_bytes=len(data), content_type=content_type)

    def get_stream(self, key: str) -> BinaryIO:
        path = self._path(key)
        if not path.is_file():
            raise FileNotFoundError(f"blob not found: {_normalize_key(key)}")
        return path.open("rb")

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()


def build_blob_store(*, storage_dir: str | None) -> BlobStore:
    if not storage_dir:
        LOGGER.info("Using in-memory blob store (blob_storage_dir not configured)")
        return InMemoryBlobStore()
    LOGGER.info("Using local directory blob store", extra={"storage_dir": storage_dir})
    return LocalDirectoryBlobStore(storage_dir)


__all__ = [
    "BlobStore",
    "InMemoryBlobStore",
    "LocalDirectoryBlobStore",
    "StoredBlob",
    "build_blob_store",
    "read_blob",
]
