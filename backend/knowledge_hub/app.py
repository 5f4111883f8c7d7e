"""FastAPI application setup for Knowledge Hub."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from knowledge_hub.api.dependencies import (
    get_app_settings,
    get_database,
    get_pipeline_context,
)
from knowledge_hub.api.routes_admin import router as admin_router
from knowledge_hub.api.routes_ingest import router as ingest_router
from knowledge_hub.api.routes_jobs import router as jobs_router
from knowledge_hub.api.routes_query import router as query_router
from knowledge_hub.core.errors import ConfigurationError, InvalidTransition, JobNotFound, VectorStoreError
from knowledge_hub.core.logging import configure_logging, get_logger, log_context

settings = get_app_settings()
configure_logging(settings.log_level, use_json=settings.log_json)
logger = get_logger(__name__)

app = FastAPI(
    title="Knowledge Hub",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.include_router(ingest_router, prefix="/ingest", tags=["ingest"])
app.include_router(jobs_router, prefix="/jobs", tags=["jobs"])
app.include_router(query_router, prefix="", tags=["query"])
app.include_router(admin_router, prefix="", tags=["admin"])


@app.exception_handler(JobNotFound)
async def job_not_found(request: Request, exc: JobNotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": f"Job not found: {exc}"})


@app.exception_handler(KeyError)
async def not_found(request: Request, exc: KeyError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc.args[0]) if exc.args else "Not found"})


@app.exception_handler(InvalidTransition)
async def invalid_transition(request: Request, exc: InvalidTransition) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(VectorStoreError)
async def vector_store_unavailable(request: Request, exc: VectorStoreError) -> JSONResponse:
    logger.error("Vector store error surfaced to API", extra=log_context(path=request.url.path, error=str(exc)))
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(ConfigurationError)
async def misconfigured(request: Request, exc: ConfigurationError) -> JSONResponse:
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.on_event("startup")
async def startup() -> None:
    """Warm up core singletons on startup."""
    get_database()
    get_pipeline_context()


@app.get("/health", tags=["admin"])
def health() -> dict[str, bool]:
    """Simple liveness check."""
    return {"ok": True}
