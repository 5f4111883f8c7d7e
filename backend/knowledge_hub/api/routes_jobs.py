"""Ingest job status and control routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from knowledge_hub.api.dependencies import get_ingest_service, get_tenant
from knowledge_hub.models.dto import JobResponse, JobStatsModel
from knowledge_hub.models.entities import IngestJob
from knowledge_hub.pipeline.service import IngestService
from knowledge_hub.utils.time import ms_to_datetime

router = APIRouter()


@router.get("/{job_id}", response_model=JobResponse, summary="Ingest job status and stats")
async def get_job(
    job_id: str,
    tenant: str = Depends(get_tenant),
    service: IngestService = Depends(get_ingest_service),
) -> JobResponse:
    return job_to_response(service.get_job(job_id, tenant))


@router.post("/{job_id}/cancel", response_model=JobResponse, summary="Request cooperative cancellation")
async def cancel_job(
    job_id: str,
    tenant: str = Depends(get_tenant),
    service: IngestService = Depends(get_ingest_service),
) -> JobResponse:
    return job_to_response(service.cancel_job(job_id, tenant))


def job_to_response(job: IngestJob) -> JobResponse:
    return JobResponse(
        id=job.id,
        source_id=job.source_id,
        tenant_id=job.tenant_id,
        status=job.status.value,
        stats=JobStatsModel(**job.stats.to_dict()),
        error=job.error,
        started_at=ms_to_datetime(job.started_at),
        finished_at=ms_to_datetime(job.finished_at),
        created_at=ms_to_datetime(job.created_at),
    )


__all__ = ["router", "job_to_response"]
