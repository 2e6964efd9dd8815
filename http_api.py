"""FastAPI application: data-set queries, stored graph reads and build triggers."""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator

from fastapi import APIRouter, Depends, FastAPI, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from build_service import BuildService
from build_store import DEFAULT_KEEP_LAST, BuildRecord, BuildStore
from dataset_service import DataSetService
from errors import NotFoundError
from page_store import PageSnapshot, PageStore
from scheduler import BuildScheduler

logger = logging.getLogger(__name__)


@dataclass
class AppResources:
    """Everything the HTTP layer needs, built once at startup."""

    dataset_service: DataSetService
    build_service: BuildService | None
    scheduler: BuildScheduler | None
    page_store: PageStore
    build_store: BuildStore
    start_scheduler: bool = True
    build_on_startup: bool = False


def get_resources(request: Request) -> AppResources:
    return request.app.state.resources


def _error(status_code: int, error: str, exc: Exception | None = None) -> JSONResponse:
    content: dict[str, str] = {"error": error}
    if exc is not None:
        content["message"] = str(exc) or type(exc).__name__
    return JSONResponse(status_code=status_code, content=content)


# =============================================================================
# Schemas
# =============================================================================


class DataSetPageOut(BaseModel):
    id: int
    name: str
    link: str


class PageConnectionsOut(BaseModel):
    pageName: str
    connections: list[int]


class BuildAccepted(BaseModel):
    message: str
    note: str


class CleanupRequest(BaseModel):
    keepLast: int | None = None


class CleanupDone(BaseModel):
    message: str
    keepLast: int


class BuildOut(BaseModel):
    id: str
    buildTimestamp: datetime
    status: str
    startedAt: datetime
    completedAt: datetime | None = None
    pagesProcessed: int
    connectionsCreated: int
    errorMessage: str | None = None

    @classmethod
    def from_record(cls, record: BuildRecord) -> "BuildOut":
        return cls(
            id=record.id,
            buildTimestamp=record.build_timestamp,
            status=str(record.status),
            startedAt=record.started_at,
            completedAt=record.completed_at,
            pagesProcessed=record.pages_processed,
            connectionsCreated=record.connections_created,
            errorMessage=record.error_message,
        )


class StoredPageOut(BaseModel):
    id: str
    wikiId: int
    title: str
    url: str
    buildId: str

    @classmethod
    def from_snapshot(cls, page: PageSnapshot) -> "StoredPageOut":
        return cls(id=page.id, wikiId=page.wiki_id, title=page.title, url=page.url, buildId=page.build_id)


# =============================================================================
# Data-set (live wiki) endpoints
# =============================================================================

dataset_router = APIRouter(prefix="/dataset", tags=["dataset"])


@dataset_router.get("/pages", response_model=list[DataSetPageOut])
async def get_all_pages(resources: AppResources = Depends(get_resources)):
    """Every page currently on the wiki."""
    try:
        pages = await resources.dataset_service.get_all_pages()
    except Exception as exc:
        logger.exception("Error in get_all_pages")
        return _error(500, "Failed to fetch pages", exc)
    return [DataSetPageOut(id=page.id, name=page.name, link=page.link) for page in pages]


@dataset_router.get("/connections/", include_in_schema=False)
async def get_page_connections_without_name():
    return _error(400, "Page name is required")


@dataset_router.get("/connections/{page_name}", response_model=PageConnectionsOut)
async def get_page_connections(page_name: str, resources: AppResources = Depends(get_resources)):
    """Wiki page ids linked from `page_name`, computed live."""
    if not page_name.strip():
        return _error(400, "Page name is required")

    try:
        connections = await resources.dataset_service.get_page_connections(page_name)
    except Exception as exc:
        logger.exception("Error in get_page_connections")
        return _error(500, "Failed to fetch page connections", exc)
    return PageConnectionsOut(pageName=page_name, connections=connections)


# =============================================================================
# Build endpoints
# =============================================================================

build_router = APIRouter(tags=["build"])


@build_router.post("/build", status_code=status.HTTP_202_ACCEPTED, response_model=BuildAccepted)
async def start_build(resources: AppResources = Depends(get_resources)):
    """Start a build in the background; progress is only visible in the logs."""
    if resources.scheduler is None:
        return _error(500, "BuildService not available")

    try:
        resources.scheduler.trigger()
    except Exception as exc:
        logger.exception("Error starting build")
        return _error(500, "Failed to start build", exc)

    return BuildAccepted(
        message="Build started successfully",
        note="Build is running in background. Check logs for progress.",
    )


@build_router.post("/build/cleanup", response_model=CleanupDone)
async def cleanup_builds(
    body: CleanupRequest | None = None,
    resources: AppResources = Depends(get_resources),
):
    """Delete archived builds beyond the most recent `keepLast` (default 3)."""
    if resources.build_service is None:
        return _error(500, "BuildService not available")

    keep_last = DEFAULT_KEEP_LAST
    if body is not None and body.keepLast is not None:
        keep_last = body.keepLast
    if keep_last < 0:
        return _error(400, "keepLast must be >= 0")

    try:
        await resources.build_service.clear_old_builds(keep_last)
    except Exception as exc:
        logger.exception("Error cleaning up old builds")
        return _error(500, "Failed to cleanup old builds", exc)

    return CleanupDone(message="Cleanup completed successfully", keepLast=keep_last)


@build_router.get("/builds", response_model=list[BuildOut])
async def list_builds(
    limit: int = Query(default=20, ge=1, le=500),
    resources: AppResources = Depends(get_resources),
):
    """Recent builds, newest first."""
    return [BuildOut.from_record(record) for record in resources.build_store.list_builds(limit)]


# =============================================================================
# Stored graph (active build) endpoints
# =============================================================================

graph_router = APIRouter(prefix="/graph", tags=["graph"])


@graph_router.get("/pages", response_model=list[StoredPageOut])
async def list_active_pages(resources: AppResources = Depends(get_resources)):
    active = resources.build_store.find_active_build()
    if active is None:
        return _error(404, "No active build found")
    return [StoredPageOut.from_snapshot(page) for page in resources.page_store.get_all_pages(active.id)]


@graph_router.get("/pages/{page_id}/connections", response_model=list[StoredPageOut])
async def list_page_connections(page_id: str, resources: AppResources = Depends(get_resources)):
    try:
        resources.page_store.get_page(page_id)
        targets = resources.page_store.get_connections(page_id)
    except NotFoundError as exc:
        return _error(404, "Page not found", exc)
    return [StoredPageOut.from_snapshot(page) for page in targets]


# =============================================================================
# Application
# =============================================================================


def create_app(resources: AppResources) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        scheduler = resources.scheduler
        if scheduler is not None and resources.start_scheduler:
            scheduler.start()
        if scheduler is not None and resources.build_on_startup:
            scheduler.trigger()

        yield

        if scheduler is not None:
            await scheduler.stop()

    app = FastAPI(
        title="Wiki Graph Snapshot",
        description="Daily snapshots of a wiki's pages and link graph",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.resources = resources

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy"}

    app.include_router(dataset_router)
    app.include_router(build_router)
    app.include_router(graph_router)
    return app
