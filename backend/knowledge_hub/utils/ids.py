"""ID helpers."""

from __future__ import annotations

import uuid


def new_id(prefix: str | None = None) -> str:
    """Generate a random UUID4 hex string with optional prefix."""
    base = uuid.uuid4().hex
    return f"{prefix}_{base}" if prefix else base


def new_chunk_ids(count: int) -> list[str]:
    """Chunk ids double as vector ids, so they are plain UUID strings."""
    return [str(uuid.uuid4()) for _ in range(count)]
