"""Single job slot guarding the shared container.

The container's ``temp_*`` directories and the host workspace are both wiped
at the start of every job, so two jobs must never overlap. The slot either
rejects a second submission or makes it wait, depending on ``busy_policy``.
"""

import asyncio
from collections import OrderedDict
from typing import Optional

from conformer_web.core.exceptions import JobSlotBusyError
from conformer_web.core.logging import get_logger
from conformer_web.jobs.models import JobRecord

logger = get_logger(__name__)

BUSY_POLICIES = ("reject", "queue")


class JobSlot:
    """Holds at most one active job plus a bounded history of recent ones."""

    def __init__(self, busy_policy: str = "reject", history_size: int = 50):
        if busy_policy not in BUSY_POLICIES:
            raise ValueError(f"busy_policy must be one of {BUSY_POLICIES}, got {busy_policy!r}")
        self._busy_policy = busy_policy
        self._history_size = max(1, history_size)
        self._lock = asyncio.Lock()
        self._active: Optional[JobRecord] = None
        self._jobs: "OrderedDict[str, JobRecord]" = OrderedDict()

    @property
    def active(self) -> Optional[JobRecord]:
        return self._active

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def acquire(self, job: JobRecord) -> None:
        if self._busy_policy == "reject" and self._lock.locked():
            active_id = self._active.id if self._active else "unknown"
            logger.warning("Job rejected, slot busy", job_id=job.id, active_job_id=active_id)
            raise JobSlotBusyError(active_id)

        if self._lock.locked():
            logger.info("Job waiting for slot", job_id=job.id)
        await self._lock.acquire()
        self._active = job
        self._remember(job)

    def release(self, job: JobRecord) -> None:
        if self._active is None or self._active.id != job.id:
            return
        self._active = None
        self._lock.release()

    def get(self, job_id: str) -> Optional[JobRecord]:
        return self._jobs.get(job_id)

    def _remember(self, job: JobRecord) -> None:
        self._jobs[job.id] = job
        self._jobs.move_to_end(job.id)
        while len(self._jobs) > self._history_size:
            self._jobs.popitem(last=False)
