"""Local folder source."""

from __future__ import annotations

import fnmatch
import mimetypes
from pathlib import Path
from urllib.parse import urlparse

from knowledge_hub.core.errors import FetchError, SourceEnumerationError
from knowledge_hub.models.entities import FileDescriptor, SourceRecord
from knowledge_hub.sources.base import Credentials

SOURCE_TYPE = "folder"


class LocalFolderSource:
    """Enumerates files below a directory; credentials are ignored."""

    source_type = SOURCE_TYPE

    def __init__(self, root: Path, include: str | None = None, exclude: str | None = None) -> None:
        self.root = root.expanduser()
        self.include = include
        self.exclude = exclude

    @classmethod
    def from_record(cls, record: SourceRecord) -> "LocalFolderSource":
        parsed = urlparse(record.uri)
        if parsed.scheme and parsed.scheme != "file":
            raise ValueError(f"Unsupported URI scheme: {record.uri}")
        return cls(Path(parsed.path or record.uri), include=record.include_glob, exclude=record.exclude_glob)

    def list_files(self, credentials: Credentials, limit: int) -> list[FileDescriptor]:
        if not self.root.is_dir():
            raise SourceEnumerationError(f"{self.root} is not a directory")
        descriptors: list[FileDescriptor] = []
        try:
            for file_path in sorted(self.root.rglob("*")):
                if len(descriptors) >= limit:
                    break
                if not file_path.is_file():
                    continue
                relative = file_path.relative_to(self.root).as_posix()
                if not _matches_patterns(relative, self.include, self.exclude):
                    continue
                stat = file_path.stat()
                descriptors.append(
                    FileDescriptor(
                        remote_id=relative,
                        name=file_path.name,
                        size=stat.st_size,
                        mime_type=mimetypes.guess_type(file_path.name)[0] or "application/octet-stream",
                        source_type=SOURCE_TYPE,
                        web_url=file_path.as_uri(),
                        modified_at=int(stat.st_mtime * 1000),
                    )
                )
        except OSError as exc:
            raise SourceEnumerationError(f"listing {self.root} failed: {exc}") from exc
        return descriptors

    def fetch_content(self, credentials: Credentials, descriptor: FileDescriptor) -> bytes:
        path = (self.root / descriptor.remote_id).resolve()
        if self.root.resolve() not in path.parents:
            raise FetchError(f"{descriptor.remote_id} escapes the source root")
        try:
            return path.read_bytes()
        except OSError as exc:
            raise FetchError(f"reading {descriptor.remote_id} failed: {exc}") from exc


def _matches_patterns(path_str: str, include: str | None, exclude: str | None) -> bool:
    if exclude and any(fnmatch.fnmatch(path_str, pattern) for pattern in _expand_patterns(exclude)):
        return False
    if include:
        return any(fnmatch.fnmatch(path_str, pattern) for pattern in _expand_patterns(include))
    return True


def _expand_patterns(pattern: str) -> list[str]:
    """Split a comma separated glob list, expanding one ``{a,b}`` group per pattern."""
    patterns: list[str] = []
    depth = 0
    current = ""
    for char in pattern:
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
        if char == "," and depth == 0:
            patterns.append(current)
            current = ""
        else:
            current += char
    patterns.append(current)

    expanded: list[str] = []
    for part in (item.strip() for item in patterns):
        if not part:
            continue
        if "{" in part and "}" in part:
            prefix = part[: part.index("{")]
            suffix = part[part.index("}") + 1 :]
            options = part[part.index("{") + 1 : part.index("}")].split(",")
            expanded.extend(f"{prefix}{option}{suffix}" for option in options)
        else:
            expanded.append(part)
    return expanded or [pattern]


__all__ = ["LocalFolderSource", "SOURCE_TYPE"]
