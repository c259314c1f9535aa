"""FastAPI application for previewing release notes.

Lets release managers see the notes a tag would produce (priority banner
included) before the CI job publishes them. It provides:
- POST /announcements/preview - Compose notes for a version, no publishing
- GET /health - Health check for load balancers and monitoring

To run locally:
    uvicorn release_announcer.main:app --reload --port 8000
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from release_announcer.announcer import ReleaseAnnouncer, build_announcer
from release_announcer.config import load_config
from release_announcer.errors import ReleaseAnnouncerError
from release_announcer.logging_config import get_logger, release_context, setup_logging
from release_announcer.schemas import AnnouncementRequest, ReleaseAnnouncement

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the announcer once at startup and close its clients on shutdown."""
    setup_logging()
    config = load_config(os.environ.get("RELEASE_ANNOUNCER_CONFIG", "release-announcer.yaml"))
    app.state.announcer = build_announcer(config)
    yield
    await app.state.announcer.aclose()


app = FastAPI(
    title="Release Announcer",
    description="Release notes preview for tagged versions",
    version="0.1.0",
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Error Handling
# ---------------------------------------------------------------------------


@app.exception_handler(ReleaseAnnouncerError)
async def release_error_handler(request: Request, exc: ReleaseAnnouncerError) -> JSONResponse:
    """Report release failures (bad tags, lookup errors) as 422."""
    logger.warning("preview_failed", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=422,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


@app.post("/announcements/preview", response_model=ReleaseAnnouncement)
async def preview_announcement(
    announcement: AnnouncementRequest, request: Request
) -> ReleaseAnnouncement:
    """Compose the release notes for a version without publishing them.

    Args:
        announcement: Version (and optionally previous version) to compose
        request: The incoming HTTP request (for accessing app state)

    Returns:
        The composed ReleaseAnnouncement
    """
    announcer: ReleaseAnnouncer = request.app.state.announcer
    with release_context(version=announcement.version, preview=True):
        return await announcer.prepare(announcement.version, announcement.previous_version)
