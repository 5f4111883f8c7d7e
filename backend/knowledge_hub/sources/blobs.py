"""Raw blob storage used by reindexing."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol


class BlobStore(Protocol):
    def put(self, tenant_id: str, document_id: str, data: bytes) -> str: ...

    def get(self, pointer: str) -> bytes | None: ...

    def delete(self, pointer: str) -> None: ...


class LocalBlobStore:
    """Stores blobs under ``<root>/<tenant>/<document>``; pointers are ``file://`` URIs."""

    def __init__(self, root: Path) -> None:
        self.root = root.expanduser()

    def _path_for(self, tenant_id: str, document_id: str) -> Path:
        safe_tenant = tenant_id.replace("/", "_").replace("..", "_")
        safe_document = document_id.replace("/", "_").replace("..", "_")
        return self.root / safe_tenant / safe_document

    def put(self, tenant_id: str, document_id: str, data: bytes) -> str:
        path = self._path_for(tenant_id, document_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path.resolve().as_uri()

    def get(self, pointer: str) -> bytes | None:
        path = self._resolve(pointer)
        if path is None or not path.is_file():
            return None
        return path.read_bytes()

    def delete(self, pointer: str) -> None:
        path = self._resolve(pointer)
        if path is not None and path.is_file():
            path.unlink()

    def _resolve(self, pointer: str) -> Path | None:
        if not pointer.startswith("file://"):
            return None
        path = Path(pointer[len("file://") :])
        if self.root.resolve() not in path.parents:
            return None
        return path


__all__ = ["BlobStore", "LocalBlobStore"]
