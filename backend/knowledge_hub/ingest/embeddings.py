"""Embedding providers and the batching embedder."""

from __future__ import annotations

import hashlib
import math
import re
from array import array
from typing import Iterable, Protocol, Sequence

import requests
from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from knowledge_hub.core.config import Settings
from knowledge_hub.core.errors import EmbeddingBatchError, EmbeddingConfigError
from knowledge_hub.core.logging import get_logger, log_context
from knowledge_hub.core.metrics import EMBEDDING_REQUESTS, EMBEDDING_TOKENS

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"\w+")

# roughly four characters per token for English text
CHARS_PER_TOKEN = 4


class EmbeddingProvider(Protocol):
    """Anything that turns a list of texts into a list of vectors."""

    model: str

    @property
    def dimensions(self) -> int: ...

    def embed_texts(self, texts: Sequence[str]) -> list[list[float]]: ...


class ProviderCallError(Exception):
    """A single provider call failed and may be retried."""


class HashedEmbeddingProvider:
    """Lightweight hashed embedding model with deterministic output."""

    def __init__(self, model: str = "hashed", dimensions: int = 384) -> None:
        self.model = model
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for text in texts:
            vector = [0.0] * self._dimensions
            for token in _tokenize(text):
                vector[_hash_token(token, self._dimensions)] += 1.0
            _normalize(vector)
            vectors.append(vector)
        return vectors


class OpenAIEmbeddingProvider:
    """Client for an OpenAI-compatible ``/embeddings`` endpoint."""

    def __init__(
        self,
        api_key: str | None,
        model: str = "text-embedding-3-small",
        dimensions: int = 1536,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
        session: requests.Session | None = None,
    ) -> None:
        if not api_key:
            raise EmbeddingConfigError("embedding_api_key is not configured")
        self.model = model
        self._dimensions = dimensions
        self._url = f"{base_url.rstrip('/')}/embeddings"
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"Authorization": f"Bearer {api_key}"})

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        payload = {"model": self.model, "input": list(texts), "dimensions": self._dimensions}
        try:
            resp = self._session.post(self._url, json=payload, timeout=self._timeout)
        except requests.RequestException as exc:
            raise ProviderCallError(f"embedding request failed: {exc}") from exc
        if not resp.ok:
            logger.error("Embedding provider error", extra=log_context(status=resp.status_code, body=resp.text[:500]))
            raise ProviderCallError(f"embedding provider returned {resp.status_code}")
        data = resp.json().get("data") or []
        # the API may return items out of order; index is authoritative
        ordered = sorted(data, key=lambda item: item.get("index", 0))
        return [list(item.get("embedding") or []) for item in ordered]


class Embedder:
    """Order-preserving batch embedder with bounded provider batches and retries."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        batch_size: int = 100,
        max_attempts: int = 3,
        wait_min: float = 1.0,
        wait_max: float = 10.0,
    ) -> None:
        if batch_size <= 0:
            raise EmbeddingConfigError("batch_size must be positive")
        self.provider = provider
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self._wait = wait_exponential(multiplier=wait_min, min=wait_min, max=wait_max)

    @property
    def dimensions(self) -> int:
        return self.provider.dimensions

    @property
    def model(self) -> str:
        return self.provider.model

    def embed(self, text: str, tenant: str | None = None) -> list[float]:
        return self.embed_batch([text], tenant=tenant)[0]

    def embed_batch(self, texts: Sequence[str], tenant: str | None = None) -> list[list[float]]:
        """Embed ``texts``; the result is 1:1 with the input or an exception is raised."""
        items = list(texts)
        vectors: list[list[float]] = []
        for offset in range(0, len(items), self.batch_size):
            vectors.extend(self._embed_slice(items[offset : offset + self.batch_size], tenant))
        return vectors

    def _embed_slice(self, texts: list[str], tenant: str | None) -> list[list[float]]:
        tenant_label = tenant or "-"
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_exception_type(ProviderCallError),
            reraise=False,
        )
        try:
            vectors = retrying(self._call_provider, texts)
        except RetryError as exc:
            EMBEDDING_REQUESTS.labels(tenant=tenant_label, outcome="failed").inc()
            cause = exc.last_attempt.exception()
            raise EmbeddingBatchError(
                f"embedding {len(texts)} texts failed after {self.max_attempts} attempts: {cause}"
            ) from cause

        characters = sum(len(text) for text in texts)
        estimated_tokens = math.ceil(characters / CHARS_PER_TOKEN)
        EMBEDDING_REQUESTS.labels(tenant=tenant_label, outcome="ok").inc()
        EMBEDDING_TOKENS.labels(tenant=tenant_label).inc(estimated_tokens)
        logger.info(
            "Embedded batch",
            extra=log_context(
                tenant_id=tenant,
                model=self.provider.model,
                items=len(texts),
                characters=characters,
                estimated_tokens=estimated_tokens,
            ),
        )
        return vectors

    def _call_provider(self, texts: list[str]) -> list[list[float]]:
        try:
            vectors = self.provider.embed_texts(texts)
        except ProviderCallError:
            raise
        except Exception as exc:
            raise ProviderCallError(str(exc)) from exc
        if len(vectors) != len(texts):
            raise ProviderCallError(f"provider returned {len(vectors)} vectors for {len(texts)} inputs")
        dims = self.provider.dimensions
        for vector in vectors:
            if len(vector) != dims:
                raise ProviderCallError(f"provider returned a {len(vector)}-d vector, expected {dims}")
        return [list(map(float, vector)) for vector in vectors]


def build_embedder(settings: Settings) -> Embedder:
    """Construct the configured provider; raises EmbeddingConfigError when unusable."""
    provider: EmbeddingProvider
    if settings.embedding_provider == "openai":
        provider = OpenAIEmbeddingProvider(
            api_key=settings.embedding_api_key,
            model=settings.embedding_model,
            dimensions=settings.embedding_dimensions,
            base_url=settings.embedding_base_url,
            timeout=settings.embedding_timeout_seconds,
        )
    else:
        provider = HashedEmbeddingProvider(model="hashed", dimensions=settings.embedding_dimensions)
    return Embedder(
        provider,
        batch_size=settings.embedding_batch_size,
        max_attempts=settings.embedding_max_attempts,
    )


def pack_vector(vector: Iterable[float]) -> bytes:
    """Pack floats as 32-bit little-endian floats."""
    arr = array("f", vector)
    if _BIG_ENDIAN:
        arr.byteswap()
    return arr.tobytes()


def unpack_vector(blob: bytes) -> list[float]:
    arr = array("f")
    arr.frombytes(blob)
    if _BIG_ENDIAN:
        arr.byteswap()
    return arr.tolist()


_BIG_ENDIAN = array("H", [1]).tobytes()[0] == 0


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    value = int.from_bytes(digest, "big")
    return value % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = [
    "EmbeddingProvider",
    "HashedEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "ProviderCallError",
    "Embedder",
    "build_embedder",
    "pack_vector",
    "unpack_vector",
]
