"""
FastAPI application entry point for the clip worker.

The clip worker turns long source videos into short clips through the Klap
video-to-shorts API:
1. Jobs are enqueued per project (`POST /api/klap/jobs`)
2. An external scheduler triggers the worker (`POST /api/worker/klap`), which
   processes one job per invocation
3. Clips are stored in S3 and attached to the project
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clipworker import __version__
from clipworker.config import get_settings
from clipworker.database import create_db_engine, create_session_factory, create_tables
from clipworker.routers import health, jobs, worker
from clipworker.services.clip_pipeline import ClipPipeline
from clipworker.services.job_queue import JobQueue
from clipworker.services.klap_client import KlapClient
from clipworker.services.klap_worker import KlapWorker
from clipworker.services.progress_sink import JobProgressSink
from clipworker.services.project_service import ProjectService
from clipworker.services.storage_service import StorageService
from clipworker.services.webhook_service import get_webhook_service

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for startup and shutdown events.
    Opens the database and wires the worker services on startup.
    """
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    logger.info(f"Starting {settings.app_name}...")

    engine = create_db_engine(settings.database_url)
    create_tables(engine)
    session_factory = create_session_factory(engine)

    queue = JobQueue(session_factory, stale_after_seconds=settings.stale_job_timeout_seconds)
    projects = ProjectService(session_factory)
    klap_client = KlapClient()
    storage = StorageService()
    progress = JobProgressSink(
        queue,
        projects,
        webhook_service=get_webhook_service(),
        webhook_url=settings.notification_webhook_url,
    )
    pipeline = ClipPipeline(klap_client, storage, projects)

    # Store in app state for dependency injection
    app.state.engine = engine
    app.state.job_queue = queue
    app.state.project_service = projects
    app.state.klap_worker = KlapWorker(queue, klap_client, pipeline, projects, progress, settings)

    if not settings.klap_api_key:
        logger.warning("KLAP_API_KEY not configured - jobs will fail at task creation")
    if not settings.worker_secret:
        logger.warning("WORKER_SECRET not configured - worker route is disabled")

    logger.info(
        f"Polling policy: {settings.max_poll_attempts} attempts every {settings.poll_interval_seconds}s "
        f"within {settings.max_invocation_seconds:.0f}s per invocation"
    )

    yield

    logger.info(f"Shutting down {settings.app_name}...")
    engine.dispose()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Build the FastAPI application."""
    application = FastAPI(
        title="Clip Worker",
        description="""
Asynchronous clip generation for content projects.

## Usage

1. Enqueue a job: `POST /api/klap/jobs`
2. Trigger the worker (scheduler): `POST /api/worker/klap`
3. Poll status: `GET /api/klap/jobs/{job_id}`
        """,
        version=__version__,
        lifespan=lifespan,
    )

    # Add CORS middleware
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    application.include_router(health.router, tags=["Health"])
    application.include_router(worker.router, prefix="/api/worker", tags=["Worker"])
    application.include_router(jobs.router, prefix="/api/klap", tags=["Jobs"])

    @application.get("/")
    async def root():
        """Root endpoint with basic info."""
        return {
            "service": get_settings().app_name,
            "version": __version__,
            "status": "running",
            "docs": "/docs",
        }

    return application


app = create_app()
