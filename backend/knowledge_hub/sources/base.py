"""Source collaborator interfaces and the source-type registry."""

from __future__ import annotations

from typing import Any, Callable, Protocol

from knowledge_hub.models.entities import FileDescriptor, SourceRecord

Credentials = dict[str, Any]


class Source(Protocol):
    """A connected provider able to enumerate and download files."""

    def list_files(self, credentials: Credentials, limit: int) -> list[FileDescriptor]: ...

    def fetch_content(self, credentials: Credentials, descriptor: FileDescriptor) -> bytes: ...


SourceFactory = Callable[[SourceRecord], Source]


class SourceRegistry:
    """Maps a ``source_type`` discriminator to the factory that opens it."""

    def __init__(self) -> None:
        self._factories: dict[str, SourceFactory] = {}

    def register(self, source_type: str, factory: SourceFactory) -> None:
        self._factories[source_type] = factory

    def supports(self, source_type: str) -> bool:
        return source_type in self._factories

    def open(self, record: SourceRecord, source_type: str | None = None) -> Source:
        kind = source_type or record.source_type
        factory = self._factories.get(kind)
        if factory is None:
            raise KeyError(f"no source registered for type {kind!r}")
        return factory(record)


__all__ = ["Credentials", "Source", "SourceFactory", "SourceRegistry"]
