"""Query API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from knowledge_hub.api.dependencies import get_query_service, get_tenant
from knowledge_hub.models.dto import QueryRequest, QueryResponse
from knowledge_hub.retrieval.search import QueryService

router = APIRouter()


@router.post("/query", response_model=QueryResponse, summary="Execute a retrieval query")
async def run_query(
    request: QueryRequest,
    tenant: str = Depends(get_tenant),
    service: QueryService = Depends(get_query_service),
) -> QueryResponse:
    filters = request.filters.model_dump(exclude_none=True) if request.filters else None
    payload = service.query(query_text=request.query, tenant=tenant, k=request.k, filters=filters)
    return QueryResponse(**payload)
