"""Search API routes."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from session_search.api.dependencies import get_app_settings, get_search_service, get_service
from session_search.core.config import Settings
from session_search.core.logging import get_logger, log_fields
from session_search.models.dto import CoverageModel, CoverageResponse, SearchResponseModel
from session_search.retrieval.search import SearchService

logger = get_logger(__name__)

router = APIRouter()


@router.get(
    "/search",
    response_model=SearchResponseModel,
    summary="Hybrid exact and fuzzy session search",
    responses={503: {"model": CoverageResponse}, 504: {"description": "Search timed out"}},
)
async def search_sessions(
    q: str = Query(default="", description="Free-text query"),
    source: str | None = Query(default=None, description="Restrict to one session source"),
    fuzzy: bool | None = Query(default=None, description="Override the configured fuzzy default"),
    limit: int | None = Query(default=None, ge=1, le=1000),
    strict: bool = Query(default=False, description="Refuse to answer while the index is partial"),
    service: SearchService = Depends(get_service),
    settings: Settings = Depends(get_app_settings),
):
    if strict:
        snapshot = await asyncio.to_thread(service.coverage)
        if snapshot.partial or not service.initialized:
            body = CoverageResponse(
                partial=True,
                dirty_sessions=len(service.dirty_sessions()),
                coverage=CoverageModel.from_coverage(snapshot.coverage),
            )
            return JSONResponse(status_code=503, content=body.model_dump())
    try:
        response = await asyncio.wait_for(
            asyncio.to_thread(service.search, q, source, fuzzy, limit),
            timeout=settings.search_timeout_s,
        )
    except asyncio.TimeoutError:
        logger.warning("Search timed out", extra=log_fields(query=q, timeout_s=settings.search_timeout_s))
        raise HTTPException(status_code=504, detail="Search timed out")
    return SearchResponseModel.from_response(response)


@router.get("/coverage", response_model=CoverageResponse, summary="Index completeness")
async def get_coverage(service: SearchService = Depends(get_search_service)) -> CoverageResponse:
    snapshot = await asyncio.to_thread(service.coverage)
    return CoverageResponse(
        partial=snapshot.partial,
        dirty_sessions=len(service.dirty_sessions()),
        coverage=CoverageModel.from_coverage(snapshot.coverage),
    )


__all__ = ["router"]
