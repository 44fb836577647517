"""FastAPI application setup for Session Search."""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from session_search.api.routes_admin import router as admin_router
from session_search.api.routes_index import router as index_router
from session_search.api.routes_search import router as search_router
from session_search.core.config import Settings, get_settings
from session_search.core.logging import configure_logging, get_logger
from session_search.core.metrics import REQUEST_COUNT, REQUEST_LATENCY
from session_search.ingest.collaborators import ContentAccessor, SessionCatalog
from session_search.ingest.events import ChangeBus
from session_search.ingest.pipeline import IngestPipeline
from session_search.ingest.watcher import SessionWatcher
from session_search.retrieval.search import SearchService

logger = get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    catalog: SessionCatalog | None = None,
    content: ContentAccessor | None = None,
    watch: bool = False,
) -> FastAPI:
    """Build the app; the ingest pipeline and watcher run only when both collaborators are given."""
    settings = settings or get_settings()
    service = SearchService(settings)
    bus = ChangeBus()
    pipeline = None
    if catalog is not None and content is not None:
        pipeline = IngestPipeline(service, catalog, content, bus=bus, settings=settings)
    watcher = None
    if watch and pipeline is not None:
        watcher = SessionWatcher(settings.watch_roots, bus, polling=settings.watch_polling)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        service.init()
        if pipeline is not None:
            await pipeline.start()
        if watcher is not None:
            watcher.start(asyncio.get_running_loop())
        try:
            yield
        finally:
            if watcher is not None:
                watcher.stop()
            if pipeline is not None:
                await pipeline.stop()
            service.close()

    app = FastAPI(
        title="Session Search",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.search_service = service
    app.state.change_bus = bus
    app.state.pipeline = pipeline
    app.state.watcher = watcher

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://127.0.0.1:12000",
            "http://localhost:12000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def record_request(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        REQUEST_COUNT.labels(endpoint=endpoint, method=request.method, status=str(response.status_code)).inc()
        REQUEST_LATENCY.labels(endpoint=endpoint, method=request.method).observe(time.perf_counter() - started)
        return response

    app.include_router(search_router, prefix="", tags=["search"])
    app.include_router(index_router, prefix="", tags=["index"])
    app.include_router(admin_router, prefix="", tags=["admin"])
    return app


def main() -> None:  # pragma: no cover - process entry point
    import uvicorn

    configure_logging()
    uvicorn.run(create_app(watch=True), host="127.0.0.1", port=12001)


__all__ = ["create_app", "main"]
