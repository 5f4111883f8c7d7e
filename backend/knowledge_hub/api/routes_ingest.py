"""Ingest API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from knowledge_hub.api.dependencies import get_ingest_service, get_tenant
from knowledge_hub.api.routes_jobs import job_to_response
from knowledge_hub.models.dto import IngestRequest, JobResponse
from knowledge_hub.pipeline.service import IngestService

router = APIRouter()


@router.post("", response_model=JobResponse, status_code=202, summary="Queue an ingest run for a source")
async def trigger_ingest(
    request: IngestRequest,
    tenant: str = Depends(get_tenant),
    service: IngestService = Depends(get_ingest_service),
) -> JobResponse:
    return job_to_response(service.sync_source(request.source_id, tenant))
