"""FastAPI application factory."""

from contextlib import asynccontextmanager
from functools import partial

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from mediagen.api.routes import credits, jobs, stages
from mediagen.core.config import Settings, configure_logging
from mediagen.core.database import setup_db_session
from mediagen.models.generation_job import GenerationMode
from mediagen.services.compute.base import ComputeBackend
from mediagen.services.compute.pixio_client import PixioClient
from mediagen.services.compute.replicate_client import ReplicateBackend
from mediagen.services.credits import CreditLedger
from mediagen.services.generation.modes import build_mode_catalogue
from mediagen.services.jobs import JobService
from mediagen.services.storage.supabase_storage import SupabaseStorageClient
from mediagen.uow import create_uow_factory
from mediagen.workers.recovery import resume_in_flight_jobs
from mediagen.workers.scheduler import HttpScheduler, InProcessScheduler
from mediagen.workers.stages import StageContext, run_stage

logger = structlog.get_logger()


def build_compute_backend(settings: Settings) -> ComputeBackend:
    """Create the compute backend selected by COMPUTE_BACKEND."""
    if settings.compute_backend == "replicate":
        return ReplicateBackend(
            api_token=settings.replicate_api_token,
            deployments={
                GenerationMode.IMAGE: settings.replicate_deployment_image,
                GenerationMode.VIDEO: settings.replicate_deployment_video,
                GenerationMode.FIRST_LAST_FRAME_VIDEO: settings.replicate_deployment_first_last_frame_video,
            },
        )
    return PixioClient(
        api_url=settings.pixio_api_url,
        api_key=settings.pixio_api_key,
        deployments={
            GenerationMode.IMAGE: settings.pixio_deployment_image,
            GenerationMode.VIDEO: settings.pixio_deployment_video,
            GenerationMode.FIRST_LAST_FRAME_VIDEO: settings.pixio_deployment_first_last_frame_video,
        },
        timeout=settings.http_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: configure logging, create the session factory and pipeline
      services, resume jobs whose stage chain was lost in a restart
    - Shutdown: cancel outstanding in-process stage invocations
    """
    settings: Settings = app.state.settings

    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    if settings.stage_scheduler == "http":
        scheduler = HttpScheduler(
            base_url=settings.stage_base_url,
            api_key=settings.internal_api_key,
            timeout=settings.http_timeout_seconds,
        )
    else:
        scheduler = InProcessScheduler()

    modes = build_mode_catalogue(settings)
    ledger = CreditLedger(uow_factory)
    stage_context = StageContext(
        settings=settings,
        uow_factory=uow_factory,
        backend=build_compute_backend(settings),
        storage=SupabaseStorageClient(
            supabase_url=settings.supabase_url,
            service_role_key=settings.supabase_service_role_key,
            bucket=settings.storage_bucket,
            timeout=settings.http_timeout_seconds,
        ),
        scheduler=scheduler,
        modes=modes,
    )
    if isinstance(scheduler, InProcessScheduler):
        scheduler.handler = partial(run_stage, stage_context)

    # Store in app.state for access in routes
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.scheduler = scheduler
    app.state.ledger = ledger
    app.state.stage_context = stage_context
    app.state.job_service = JobService(uow_factory, ledger, scheduler, modes)

    try:
        await resume_in_flight_jobs(stage_context)
    except Exception as e:
        # Startup continues; new submissions are unaffected
        logger.error(
            "startup.resume_failed",
            error=str(e),
            error_type=type(e).__name__,
        )

    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        backend=stage_context.backend.name,
        scheduler=settings.stage_scheduler,
    )

    yield

    logger.info("application.shutdown", pending_invocations=scheduler.pending)
    await scheduler.aclose()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        settings: Settings to use (loaded from the environment when omitted)

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Mediagen Backend API",
        description="Credit-metered image and video generation jobs",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers carry their own prefixes
    app.include_router(jobs.router)
    app.include_router(credits.router)
    app.include_router(stages.router)

    # Health check endpoint with database validation
    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy"} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            return {"status": "healthy"}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app


# Create app instance for uvicorn
app = create_app()
