"""Blob stores holding the original bytes of every upload."""
from __future__ import annotations

import logging
import re
import threading
from pathlib import Path
from typing import Dict, Final, Optional, Protocol

from ..errors import StorageError

LOGGER = logging.getLogger(__name__)

_KEY_SAFE_CHARS_RE: Final[re.Pattern[str]] = re.compile(r"[^A-Za-z0-9._/-]+")


class BlobNotFoundError(KeyError):
    """Raised by :meth:`BlobStore.get` when no object exists under the key."""


class BlobStore(Protocol):
    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        ...

    def get(self, key: str) -> bytes:
        ...

    def delete(self, key: str) -> None:
        ...


def sanitize_filename(filename: str) -> str:
    """Return a storage-safe filename: ASCII only, no quotes, no path components."""

    name = Path(filename.replace("\\", "/")).name if filename else ""
    name = name.encode("ascii", errors="replace").decode("ascii").replace("?", "_")
    name = name.replace('"', "").replace("'", "")
    name = re.sub(r"[\x00-\x1f\x7f]+", "_", name).strip().strip(".")
    return name or "upload"


class InMemoryBlobStore:
    """Dictionary-backed store used by tests and throwaway deployments."""

    def __init__(self) -> None:
        self._objects: Dict[str, bytes] = {}
        self._content_types: Dict[str, Optional[str]] = {}
        self._lock = threading.Lock()

    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        with self._lock:
            self._objects[key] = bytes(data)
            self._content_types[key] = content_type

    def get(self, key: str) -> bytes:
        with self._lock:
            try:
                return self._objects[key]
            except KeyError:
                raise BlobNotFoundError(key) from None

    def delete(self, key: str) -> None:
        with self._lock:
            self._objects.pop(key, None)
            self._content_types.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._objects)


class FilesystemBlobStore:
    """Stores each blob as a file below ``root``; keys map to relative paths."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        relative = _KEY_SAFE_CHARS_RE.sub("_", key).strip("/")
        parts = [part for part in relative.split("/") if part not in ("", ".", "..")]
        if not parts:
            raise StorageError(f"Invalid blob key: {key!r}")
        return self.root.joinpath(*parts)

    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_name(path.name + ".tmp")
            tmp_path.write_bytes(data)
            tmp_path.replace(path)
        except OSError as error:
            raise StorageError(f"Failed to write blob {key}", cause=error) from error
        LOGGER.debug("Stored blob %s (%s bytes, %s)", key, len(data), content_type)

    def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise BlobNotFoundError(key) from None
        except OSError as error:
            raise StorageError(f"Failed to read blob {key}", cause=error) from error

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as error:
            raise StorageError(f"Failed to delete blob {key}", cause=error) from error


def create_blob_store(kind: str, directory: str) -> BlobStore:
    if kind == "memory":
        return InMemoryBlobStore()
    if kind == "filesystem":
        return FilesystemBlobStore(directory)
    raise ValueError(f"Unsupported blob store: {kind}")


__all__ = [
    "BlobNotFoundError",
    "BlobStore",
    "FilesystemBlobStore",
    "InMemoryBlobStore",
    "create_blob_store",
    "sanitize_filename",
]
