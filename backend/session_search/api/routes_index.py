"""Index maintenance routes."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends

from session_search.api.dependencies import get_optional_pipeline, get_pipeline, get_search_service
from session_search.ingest.pipeline import IngestPipeline
from session_search.models.dto import (
    DirtyResponse,
    ExpectedRequest,
    IndexedStatusResponse,
    IndexRequest,
    IndexResponse,
    ReindexResponse,
    RemoveResponse,
)
from session_search.retrieval.search import SearchService

router = APIRouter()


@router.post("/index", response_model=IndexResponse, summary="Index or replace one session")
async def index_session(
    request: IndexRequest,
    service: SearchService = Depends(get_search_service),
) -> IndexResponse:
    ok = await asyncio.to_thread(
        service.index_session,
        request.session_id,
        request.source,
        request.display,
        request.project,
        request.content,
        request.timestamp,
    )
    return IndexResponse(
        status="indexed" if ok else "failed",
        session_id=request.session_id,
        source=request.source,
    )


@router.get("/index/{session_id}", response_model=IndexedStatusResponse, summary="Is a session indexed")
async def get_index_status(
    session_id: str,
    source: str | None = None,
    service: SearchService = Depends(get_search_service),
) -> IndexedStatusResponse:
    return IndexedStatusResponse(
        session_id=session_id,
        source=source,
        indexed=await asyncio.to_thread(service.is_session_indexed, session_id, source),
    )


@router.delete("/index/{session_id}", response_model=RemoveResponse, summary="Remove a session from the index")
async def remove_session(
    session_id: str,
    source: str | None = None,
    service: SearchService = Depends(get_search_service),
    pipeline: IngestPipeline | None = Depends(get_optional_pipeline),
) -> RemoveResponse:
    if pipeline is not None:
        removed = await pipeline.remove_session(session_id, source)
    else:
        removed = await asyncio.to_thread(service.remove_indexed_session, session_id, source)
    return RemoveResponse(
        status="ok" if removed else "noop",
        removed=[{"source": identity.source, "session_id": identity.session_id} for identity in removed],
    )


@router.put("/expected", response_model=DirtyResponse, summary="Replace the expected session set")
async def set_expected(
    request: ExpectedRequest,
    service: SearchService = Depends(get_search_service),
) -> DirtyResponse:
    await asyncio.to_thread(service.set_expected, request.sessions)
    return DirtyResponse(dirty=service.dirty_sessions())


@router.get("/dirty", response_model=DirtyResponse, summary="Session ids queued for reindex")
async def list_dirty(service: SearchService = Depends(get_search_service)) -> DirtyResponse:
    return DirtyResponse(dirty=service.dirty_sessions())


@router.post("/dirty/drain", response_model=DirtyResponse, summary="Take and clear the dirty queue")
async def drain_dirty(service: SearchService = Depends(get_search_service)) -> DirtyResponse:
    return DirtyResponse(dirty=service.drain_dirty())


@router.post("/dirty/{session_id}", response_model=DirtyResponse, summary="Queue a session for reindex")
async def mark_dirty(
    session_id: str,
    service: SearchService = Depends(get_search_service),
) -> DirtyResponse:
    service.mark_dirty(session_id)
    return DirtyResponse(dirty=service.dirty_sessions())


@router.post("/reindex", response_model=ReindexResponse, summary="Run a dirty sweep now")
async def reindex(pipeline: IngestPipeline = Depends(get_pipeline)) -> ReindexResponse:
    stats = await pipeline.sweep()
    return ReindexResponse(**stats.to_dict())


__all__ = ["router"]
