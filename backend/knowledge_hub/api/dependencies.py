"""Shared FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache

from fastapi import Header

from knowledge_hub.core.config import Settings, get_settings
from knowledge_hub.db.sqlite import SQLiteDatabase
from knowledge_hub.maintenance.sweeper import OrphanSweeper
from knowledge_hub.pipeline.context import PipelineContext, build_context
from knowledge_hub.pipeline.service import IngestService
from knowledge_hub.retrieval.search import QueryService

DEFAULT_TENANT = "default"

_DB: SQLiteDatabase | None = None
_CONTEXT: PipelineContext | None = None
_QUERY_SERVICE: QueryService | None = None


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return get_settings()


def get_database() -> SQLiteDatabase:
    global _DB
    if _DB is None:
        settings = get_app_settings()
        db = SQLiteDatabase(settings.db_path)
        db.ensure_schema()
        _DB = db
    return _DB


def get_pipeline_context() -> PipelineContext:
    global _CONTEXT
    if _CONTEXT is None:
        _CONTEXT = build_context(get_app_settings(), db=get_database())
    return _CONTEXT


def get_ingest_service() -> IngestService:
    return IngestService(get_pipeline_context())


def get_query_service() -> QueryService:
    global _QUERY_SERVICE
    if _QUERY_SERVICE is None:
        context = get_pipeline_context()
        _QUERY_SERVICE = QueryService(
            db=get_database(),
            settings=get_app_settings(),
            vector_store=context.vector_store,
            embedder=context.embedder(),
        )
    return _QUERY_SERVICE


def get_sweeper() -> OrphanSweeper:
    context = get_pipeline_context()
    return OrphanSweeper(context.documents, context.chunks, context.vector_store)


def get_tenant(x_tenant_id: str = Header(default=DEFAULT_TENANT)) -> str:
    return x_tenant_id


def reset_dependencies() -> None:
    """Drop cached singletons; used when settings change between runs."""
    global _DB, _CONTEXT, _QUERY_SERVICE
    if _CONTEXT is not None and _CONTEXT.dispatcher is not None:
        _CONTEXT.dispatcher.shutdown()
    if _DB is not None:
        _DB.close()
    _DB = None
    _CONTEXT = None
    _QUERY_SERVICE = None
    get_app_settings.cache_clear()
    get_settings.cache_clear()


__all__ = [
    "DEFAULT_TENANT",
    "get_app_settings",
    "get_database",
    "get_pipeline_context",
    "get_ingest_service",
    "get_query_service",
    "get_sweeper",
    "get_tenant",
    "reset_dependencies",
]
