"""Retrieval components."""

from .search import QueryService
from .vector_store import SQLiteVectorStore, VectorStore, cosine_similarity

__all__ = [
    "QueryService",
    "SQLiteVectorStore",
    "VectorStore",
    "cosine_similarity",
]
