"""Administrative routes for Session Search."""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, Request

from session_search.core.metrics import metrics_response

router = APIRouter()


@router.get("/health", summary="Liveness and index status")
async def health(request: Request) -> dict[str, Any]:
    service = getattr(request.app.state, "search_service", None)
    initialized = bool(service is not None and service.initialized)
    payload: dict[str, Any] = {"ok": True, "initialized": initialized}
    if initialized:
        snapshot = await asyncio.to_thread(service.coverage)
        payload["partial"] = snapshot.partial
        payload["indexed_sessions"] = len(service.tracker.indexed)
    return payload


@router.get("/metrics", summary="Prometheus metrics")
async def get_metrics():
    return metrics_response()


__all__ = ["router"]
