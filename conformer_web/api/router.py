"""Aggregate all API routers."""

from fastapi import APIRouter

from conformer_web.api.files import router as files_router
from conformer_web.api.health import router as health_router
from conformer_web.api.jobs import router as jobs_router
from conformer_web.api.pipeline import router as pipeline_router

api_router = APIRouter(prefix="/api")
api_router.include_router(health_router, tags=["health"])
api_router.include_router(pipeline_router, tags=["pipeline"])
api_router.include_router(files_router, tags=["files"])
api_router.include_router(jobs_router, tags=["jobs"])
