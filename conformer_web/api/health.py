"""Health check endpoint."""

import platform
import sys
from typing import Optional

from fastapi import APIRouter

from conformer_web.pipeline.relay import PipelineRelay

router = APIRouter()

_relay: Optional[PipelineRelay] = None


def set_relay(relay: Optional[PipelineRelay]):
    global _relay
    _relay = relay


@router.get("/health")
async def health_check():
    """Service status, container reachability and the active job."""
    if _relay is None:
        return {"status": "starting"}

    active = _relay.slot.active
    return {
        "status": "healthy",
        "container": _relay.environment.name,
        "container_running": await _relay.environment.is_running(),
        "active_job_id": active.id if active else None,
        "python_version": sys.version,
        "platform": platform.platform(),
    }
