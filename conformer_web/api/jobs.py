"""Job status API for the active or a recently finished job."""

from typing import Optional

from fastapi import APIRouter

from conformer_web.core.exceptions import ConformerWebError, NotFoundError
from conformer_web.jobs.slot import JobSlot

router = APIRouter()

_slot: Optional[JobSlot] = None


def set_slot(slot: Optional[JobSlot]):
    global _slot
    _slot = slot


@router.get("/jobs/{job_id}")
async def get_job_status(job_id: str):
    if _slot is None:
        raise ConformerWebError("Job slot not initialized", code="NOT_READY", status_code=503)

    job = _slot.get(job_id)
    if job is None:
        raise NotFoundError("Job", job_id)

    response = {
        "job_id": job.id,
        "status": job.status.value,
        "relay_state": job.relay_state.value,
        "exit_code": job.exit_code,
        "log_chunks": len(job.logs),
        "output_files": job.output_files,
        "created_at": job.created_at.isoformat(),
        "started_at": job.started_at.isoformat() if job.started_at else None,
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
    }
    if job.error:
        response["error"] = job.error
    return response
