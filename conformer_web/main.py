"""Conformer pipeline web relay - FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from conformer_web.api import files as files_api
from conformer_web.api import health as health_api
from conformer_web.api import jobs as jobs_api
from conformer_web.api import pipeline as pipeline_api
from conformer_web.api.health import router as health_root_router
from conformer_web.api.router import api_router
from conformer_web.config import Settings, settings
from conformer_web.core.exceptions import register_exception_handlers
from conformer_web.core.logging import get_logger, setup_logging
from conformer_web.jobs.slot import JobSlot
from conformer_web.pipeline.container import DockerEnvironment
from conformer_web.pipeline.relay import PipelineRelay
from conformer_web.storage.workspace import WorkspaceManager

logger = get_logger(__name__)


def build_relay(config: Settings) -> PipelineRelay:
    """Assemble the relay and its collaborators from configuration."""
    workspace = WorkspaceManager(config.workspace_dir)
    environment = DockerEnvironment(
        name=config.container_name,
        docker_bin=config.docker_bin,
        workdir=config.container_workdir,
    )
    slot = JobSlot(busy_policy=config.busy_policy, history_size=config.job_history_size)
    return PipelineRelay(config, workspace, environment, slot)


def wire_relay(relay: PipelineRelay | None) -> None:
    pipeline_api.set_relay(relay)
    health_api.set_relay(relay)
    files_api.set_workspace(relay.workspace if relay else None)
    jobs_api.set_slot(relay.slot if relay else None)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    setup_logging(settings.log_level, json_format=settings.log_json)

    relay = build_relay(settings)
    wire_relay(relay)

    logger.info(
        "Starting conformer pipeline relay",
        port=settings.compute_port,
        container=settings.container_name,
        workspace=str(relay.workspace.base_dir),
        busy_policy=settings.busy_policy,
        artifact_failure_policy=settings.artifact_failure_policy,
        timeout_seconds=settings.pipeline_timeout_seconds,
    )

    yield

    logger.info("Shutting down conformer pipeline relay")
    await relay.shutdown()
    wire_relay(None)


app = FastAPI(
    title="Conformer Pipeline Relay",
    description="Runs the containerised conformer pipeline and streams its output",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Job-Id"],
)

register_exception_handlers(app)

app.include_router(health_root_router, tags=["health"])  # GET /health at root
app.include_router(api_router)  # All /api/* endpoints
