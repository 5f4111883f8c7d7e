"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

REQUEST_COUNT = Counter(
    "kh_requests_total",
    "Total HTTP requests",
    labelnames=("endpoint", "method", "status"),
    registry=REGISTRY,
)

REQUEST_LATENCY = Histogram(
    "kh_request_latency_seconds",
    "Latency of HTTP requests",
    labelnames=("endpoint", "method"),
    registry=REGISTRY,
)

INGEST_DURATION = Histogram(
    "kh_ingest_duration_seconds",
    "Source enumeration and inline processing duration",
    labelnames=("source_type",),
    registry=REGISTRY,
)

FILES_TOTAL = Counter(
    "kh_files_total",
    "Files seen by the ingest pipeline by outcome",
    labelnames=("outcome",),
    registry=REGISTRY,
)

CHUNKS_INDEXED = Counter(
    "kh_chunks_indexed_total",
    "Chunks whose vectors were written to the vector store",
    registry=REGISTRY,
)

EMBEDDING_REQUESTS = Counter(
    "kh_embedding_requests_total",
    "Embedding provider calls",
    labelnames=("tenant", "outcome"),
    registry=REGISTRY,
)

EMBEDDING_TOKENS = Counter(
    "kh_embedding_tokens_estimated_total",
    "Estimated tokens sent to the embedding provider",
    labelnames=("tenant",),
    registry=REGISTRY,
)

VECTOR_STORE_ERRORS = Counter(
    "kh_vector_store_errors_total",
    "Vector store failures absorbed by the pipeline",
    labelnames=("operation",),
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "REQUEST_COUNT",
    "REQUEST_LATENCY",
    "INGEST_DURATION",
    "FILES_TOTAL",
    "CHUNKS_INDEXED",
    "EMBEDDING_REQUESTS",
    "EMBEDDING_TOKENS",
    "VECTOR_STORE_ERRORS",
    "metrics_response",
]
