"""Administrative routes for Knowledge Hub."""

from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException

from knowledge_hub.api.dependencies import get_ingest_service, get_pipeline_context, get_sweeper, get_tenant
from knowledge_hub.core.metrics import metrics_response
from knowledge_hub.maintenance.sweeper import OrphanReport, OrphanSweeper
from knowledge_hub.models.dto import (
    DeleteResponse,
    OrphanGroupModel,
    OrphanReportResponse,
    ReconcileRequest,
    ReconcileResponse,
    ReindexResponse,
    SourceCreateRequest,
    SourceResponse,
    StaleVectorRequest,
    StaleVectorResponse,
)
from knowledge_hub.models.entities import SourceRecord
from knowledge_hub.pipeline.context import PipelineContext
from knowledge_hub.pipeline.service import IngestService
from knowledge_hub.utils.ids import new_id
from knowledge_hub.utils.time import ms_to_datetime

router = APIRouter()


@router.get("/sources", response_model=list[SourceResponse], summary="List registered sources")
async def list_sources(
    tenant: str = Depends(get_tenant),
    context: PipelineContext = Depends(get_pipeline_context),
) -> list[SourceResponse]:
    return [_source_to_response(source) for source in context.sources.list(tenant)]


@router.post("/sources", response_model=SourceResponse, status_code=201, summary="Register a new source")
async def create_source(
    request: SourceCreateRequest,
    tenant: str = Depends(get_tenant),
    context: PipelineContext = Depends(get_pipeline_context),
) -> SourceResponse:
    if not context.registry.supports(request.source_type):
        raise HTTPException(status_code=422, detail=f"Unsupported source type: {request.source_type}")
    uri = request.uri
    if request.source_type == "folder" and not uri.startswith("file://"):
        uri = Path(uri).expanduser().resolve().as_uri()
    source = context.sources.add(
        SourceRecord(
            id=new_id("src"),
            tenant_id=tenant,
            source_type=request.source_type,
            uri=uri,
            label=request.label,
            scope=request.scope,
            workspace_label=request.workspace_label,
            include_glob=request.include_glob,
            exclude_glob=request.exclude_glob,
        )
    )
    if request.credentials:
        context.credentials.encrypt(tenant, source.id, request.credentials)
    return _source_to_response(source)


@router.delete("/sources/{source_id}", response_model=DeleteResponse, summary="Remove a source")
async def delete_source(
    source_id: str,
    tenant: str = Depends(get_tenant),
    context: PipelineContext = Depends(get_pipeline_context),
) -> DeleteResponse:
    # documents stay behind as orphans until the next reconcile
    source = context.sources.get(source_id)
    if source is None or source.tenant_id != tenant:
        raise HTTPException(status_code=404, detail="Source not found")
    context.sources.remove(source_id)
    return DeleteResponse(status="ok", deleted=1)


@router.get("/orphans", response_model=OrphanReportResponse, summary="Report orphaned chunks and documents")
async def find_orphans(
    tenant: str | None = None,
    sweeper: OrphanSweeper = Depends(get_sweeper),
) -> OrphanReportResponse:
    return _report_to_response(sweeper.find_orphans(tenant))


@router.post("/orphans/reconcile", response_model=ReconcileResponse, summary="Delete orphaned vectors and rows")
async def reconcile_orphans(
    request: ReconcileRequest,
    tenant: str | None = None,
    sweeper: OrphanSweeper = Depends(get_sweeper),
) -> ReconcileResponse:
    result = sweeper.reconcile(dry_run=request.dry_run, tenant=tenant, delete_documents=request.delete_documents)
    return ReconcileResponse(
        dry_run=result.dry_run,
        deleted_chunks=result.deleted_chunks,
        deleted_documents=result.deleted_documents,
        deleted_vectors=result.deleted_vectors,
        report=_report_to_response(result.report),
    )


@router.post("/vectors/stale/purge", response_model=StaleVectorResponse, summary="Remove vectors without chunks")
async def purge_stale_vectors(
    request: StaleVectorRequest,
    tenant: str | None = None,
    sweeper: OrphanSweeper = Depends(get_sweeper),
) -> StaleVectorResponse:
    result = sweeper.purge_stale_vectors(dry_run=request.dry_run, tenant=tenant)
    return StaleVectorResponse(
        dry_run=result.dry_run,
        found=len(result.found),
        deleted=result.deleted,
        vector_ids=[vector_id for _, vector_id in result.found],
    )


@router.post(
    "/documents/{document_id}/reindex",
    response_model=ReindexResponse,
    status_code=202,
    summary="Rechunk and re-embed a document",
)
async def reindex_document(
    document_id: str,
    tenant: str = Depends(get_tenant),
    service: IngestService = Depends(get_ingest_service),
) -> ReindexResponse:
    service.reindex(document_id, tenant)
    return ReindexResponse(document_id=document_id)


@router.get("/metrics", summary="Prometheus metrics")
async def get_metrics():
    return metrics_response()


def _source_to_response(source: SourceRecord) -> SourceResponse:
    return SourceResponse(
        id=source.id,
        tenant_id=source.tenant_id,
        source_type=source.source_type,
        uri=source.uri,
        label=source.label,
        scope=source.scope,
        workspace_label=source.workspace_label,
        include_glob=source.include_glob,
        exclude_glob=source.exclude_glob,
        is_active=source.is_active,
        last_synced_at=ms_to_datetime(source.last_synced_at),
        created_at=ms_to_datetime(source.created_at),
        updated_at=ms_to_datetime(source.updated_at),
    )


def _report_to_response(report: OrphanReport) -> OrphanReportResponse:
    return OrphanReportResponse(
        groups=[
            OrphanGroupModel(document_id=group.document_id, tenant_id=group.tenant_id, chunk_ids=group.chunk_ids)
            for group in report.groups
        ],
        document_ids=report.document_ids,
        chunk_count=report.chunk_count,
    )


__all__ = ["router"]
