"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import HTTPException, Request

from session_search.core.config import Settings
from session_search.ingest.pipeline import IngestPipeline
from session_search.retrieval.search import SearchService


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_service(request: Request) -> SearchService:
    """The app's service, initialized or not; search answers empty until it is."""
    service: SearchService | None = getattr(request.app.state, "search_service", None)
    if service is None:
        raise HTTPException(status_code=500, detail="Search service is not configured")
    return service


def get_search_service(request: Request) -> SearchService:
    service = get_service(request)
    if not service.initialized:
        raise HTTPException(status_code=503, detail="Search index is not initialized")
    return service


def get_optional_pipeline(request: Request) -> IngestPipeline | None:
    return getattr(request.app.state, "pipeline", None)


def get_pipeline(request: Request) -> IngestPipeline:
    pipeline = get_optional_pipeline(request)
    if pipeline is None:
        raise HTTPException(status_code=409, detail="No session catalog configured")
    return pipeline


__all__ = ["get_app_settings", "get_service", "get_search_service", "get_optional_pipeline", "get_pipeline"]
