"""Durable storage for raw uploaded files."""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath

from knowledge_rag.config import settings
from knowledge_rag.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def object_key_for(owner_id: str, doc_id: str, filename: str) -> str:
    """Key under which a document's raw bytes are stored."""
    return f"knowledge-bases/{owner_id}/{doc_id}/{filename}"


class ObjectStoreBase(ABC):
    """Key/value blob store (S3-like semantics)."""

    @abstractmethod
    def upload(self, key: str, data: bytes, metadata: dict[str, str] | None = None) -> str:
        """Store *data* under *key*; return a locator URI."""
        ...

    @abstractmethod
    def download(self, key: str) -> bytes:
        """Return the bytes stored under *key*.

        Raises
        ------
        NotFoundError
            When *key* does not exist.
        """
        ...

    @abstractmethod
    def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove *key* (no-op if absent)."""
        ...


class LocalObjectStore(ObjectStoreBase):
    """Filesystem-backed object store rooted at *root*.

    Metadata is kept in a ``<object>.meta.json`` sidecar.
    """

    def __init__(self, root: str | Path = settings.object_store_root) -> None:
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        parts = PurePosixPath(key).parts
        if not parts or PurePosixPath(key).is_absolute() or ".." in parts:
            raise ValidationError(f"Invalid object key: {key!r}", code="INVALID_OBJECT_KEY")
        return self.root.joinpath(*parts)

    def upload(self, key: str, data: bytes, metadata: dict[str, str] | None = None) -> str:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".part")
        tmp.write_bytes(data)
        os.replace(tmp, path)
        if metadata:
            path.with_name(path.name + ".meta.json").write_text(json.dumps(metadata, sort_keys=True))
        logger.info("Stored object %s (%d bytes)", key, len(data))
        return path.as_uri()

    def download(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError(f"Object not found: {key}", code="OBJECT_NOT_FOUND") from exc

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def delete(self, key: str) -> None:
        path = self._path(key)
        path.unlink(missing_ok=True)
        path.with_name(path.name + ".meta.json").unlink(missing_ok=True)
        logger.info("Deleted object %s", key)
